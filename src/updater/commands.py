"""
RouterOS command synthesis for ``/ppp secret``.

Pure string building, no I/O.  The output must match the device's
configuration language byte for byte, so the format strings below are the
wire contract.
"""

from __future__ import annotations

from typing import Iterable, List

from updater.services import ServiceRecord

ERASE_COMMAND = "/ppp secret remove [/ppp secret find]"

LOCAL_ADDRESS = "10.0.0.0"

_ADD_TEMPLATE = (
    "/ppp secret add local-address={local} name={name} password={password} "
    "remote-address={remote} disabled=yes profile={profile}"
)


def build_erase_command() -> str:
    """Return the directive that removes every existing PPP secret."""
    return ERASE_COMMAND


def build_add_command(record: ServiceRecord) -> str:
    """Render one ``/ppp secret add`` line for *record*.

    New secrets are always created with ``disabled=yes``; enabling them is
    done on the router by operators.
    """
    return _ADD_TEMPLATE.format(
        local=LOCAL_ADDRESS,
        name=record.login,
        password=record.secret,
        remote=record.remote_address,
        profile=record.bandwidth_tier,
    )


def active_records(records: Iterable[ServiceRecord]) -> List[ServiceRecord]:
    """Keep only active records, preserving order."""
    return [r for r in records if r.is_active]


def build_rebuild_payload(records: Iterable[ServiceRecord]) -> str:
    """Concatenate newline-terminated add directives for active records.

    Returns an empty string when no record is active.
    """
    return "".join(build_add_command(r) + "\n" for r in active_records(records))
