"""
Read-only access to the billing database's service table.

Uses ``asyncpg`` for async PostgreSQL access.  The single query is
parameterized ($1) and runs inside a read-only transaction so this module
can never modify billing data, even if the DB role would allow it.

Rows are streamed through a server-side cursor and decoded into
:class:`updater.services.ServiceRecord` objects in the order the database
returns them.
"""

from __future__ import annotations

import ipaddress
import logging
from typing import Any, List

import asyncpg

from updater.errors import IterationError, QueryError, ScanError, UpdaterError
from updater.services import ServiceRecord, resolve_tier

logger = logging.getLogger("updater.service_store")

_SELECT_SERVICES_SQL = """
    SELECT login, password, addressFrom, deviceState, deviceOptions
    FROM inet_serv_14
    WHERE deviceId = $1
"""

_DEFAULT_FETCH_BATCH_SIZE = 500


# ---------------------------------------------------------------------------
# Row decoding
# ---------------------------------------------------------------------------


def _decode_text(value: Any, column: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{column}: expected text, got {type(value).__name__}")
    return value


def _decode_address(value: Any) -> ipaddress.IPv4Address:
    """Decode ``addressFrom`` into an IPv4 address.

    Accepts what the drivers hand back for the column types seen in
    billing schemas: ``inet`` (IPv4Address / IPv4Interface), dotted text,
    packed 4-byte binary, or an unsigned integer.
    """
    if isinstance(value, ipaddress.IPv4Interface):
        value = value.ip
    elif isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        value = raw if len(raw) == 4 else raw.decode("ascii").strip()
    elif isinstance(value, str):
        value = value.strip()
    elif isinstance(value, bool) or value is None:
        raise TypeError(f"addressFrom: unsupported value {value!r}")

    address = ipaddress.ip_address(value)
    if not isinstance(address, ipaddress.IPv4Address):
        raise ValueError(f"addressFrom: {address} is not an IPv4 address")
    return address


def _decode_state(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError("deviceState: boolean is not a state code")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value.strip())
    raise TypeError(f"deviceState: expected integer, got {type(value).__name__}")


def _decode_option_code(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    raise TypeError(f"deviceOptions: expected text, got {type(value).__name__}")


def decode_row(row: Any) -> ServiceRecord:
    """Map one ``(login, password, addressFrom, deviceState, deviceOptions)``
    row to a ``ServiceRecord``.

    Raises:
        ScanError: If any column cannot be decoded.
    """
    try:
        login, password, address, state, option_code = (
            row[0], row[1], row[2], row[3], row[4]
        )
        return ServiceRecord(
            login=_decode_text(login, "login"),
            secret=_decode_text(password, "password"),
            remote_address=_decode_address(address),
            bandwidth_tier=resolve_tier(_decode_option_code(option_code)),
            status=_decode_state(state),
        )
    except (TypeError, ValueError, IndexError, UnicodeDecodeError) as exc:
        raise ScanError("scan failed", exc) from exc


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ServiceStore:
    """Fetches service rows for a router from PostgreSQL.

    Args:
        pool: An ``asyncpg`` connection pool (created via
              :func:`shared.db.get_connection_pool`).
        fetch_batch_size: Rows pulled from the server-side cursor per
              round-trip.
    """

    def __init__(
        self,
        pool: asyncpg.Pool,
        fetch_batch_size: int = _DEFAULT_FETCH_BATCH_SIZE,
    ) -> None:
        self._pool = pool
        self._fetch_batch_size = max(1, int(fetch_batch_size))

    async def fetch_services(self, device_id: int) -> List[ServiceRecord]:
        """Return every service configured for *device_id*.

        Records come back in store order.  Inactive services are included;
        filtering is up to the caller.

        Raises:
            QueryError: Preparing or executing the statement failed.
            ScanError: A row could not be decoded.
            IterationError: Fetching from the cursor failed mid-stream.
        """
        query_phase = f"query context with device: {device_id}"
        services: List[ServiceRecord] = []

        try:
            async with self._pool.acquire() as conn:
                async with conn.transaction(readonly=True):
                    try:
                        stmt = await conn.prepare(_SELECT_SERVICES_SQL)
                    except Exception as exc:
                        raise QueryError("prepare stmt", exc) from exc

                    try:
                        cursor = await stmt.cursor(device_id)
                    except Exception as exc:
                        raise QueryError(query_phase, exc) from exc

                    while True:
                        try:
                            rows = await cursor.fetch(self._fetch_batch_size)
                        except Exception as exc:
                            raise IterationError("rows contains error", exc) from exc
                        if not rows:
                            break
                        for row in rows:
                            services.append(decode_row(row))
        except UpdaterError:
            raise
        except Exception as exc:
            # Connection acquisition or transaction begin/commit.
            raise QueryError(query_phase, exc) from exc

        logger.debug(
            "Fetched %d services for device_id=%d", len(services), device_id
        )
        return services
