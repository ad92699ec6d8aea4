"""
Service records and the bandwidth tier table.

A ``ServiceRecord`` is one row of the billing ``inet_serv_14`` table
normalized for the router: the raw ``deviceOptions`` code is replaced by the
name of a RouterOS PPP profile.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

STATE_ACTIVE = 1

DEFAULT_PROFILE = "vpn_2Mb"

# ---------------------------------------------------------------------------
# Option code -> PPP profile.  Read-only for the lifetime of the process;
# profiles with these names must already exist on the router.
# ---------------------------------------------------------------------------
BANDWIDTH_TIERS: Mapping[str, str] = MappingProxyType(
    {
        "8": "vpn_1Mb",
        "20": "vpn_10Mb",
        "11": "vpn_1,5Mb",
        "26": "vpn_12Mb",
        "28": "vpn_15Mb",
        "9": "vpn_2Mb",
        "25": "vpn_20Mb",
        "12": "vpn_2,5Mb",
        "10": "vpn_3Mb",
        "13": "vpn_4Mb",
        "14": "vpn_5Mb",
        "30": "vpn_50Mb",
        "15": "vpn_6Mb",
        "16": "vpn_7Mb",
        "17": "vpn_8Mb",
        "18": "vpn_9Mb",
    }
)


def resolve_tier(option_code: str) -> str:
    """Return the profile for *option_code*, or ``DEFAULT_PROFILE``."""
    tier = DEFAULT_PROFILE
    if option_code in BANDWIDTH_TIERS:
        tier = BANDWIDTH_TIERS[option_code]
    return tier


@dataclass(frozen=True, slots=True, repr=False)
class ServiceRecord:
    """One PPP account as it should exist on the router."""

    login: str
    secret: str
    remote_address: ipaddress.IPv4Address
    bandwidth_tier: str
    status: int

    @property
    def is_active(self) -> bool:
        return self.status == STATE_ACTIVE

    def __repr__(self) -> str:
        # Keep the secret out of logs and tracebacks.
        return (
            f"ServiceRecord(login={self.login!r}, secret='***', "
            f"remote_address={self.remote_address}, "
            f"bandwidth_tier={self.bandwidth_tier!r}, status={self.status})"
        )
