"""
Reconciler — replaces a router's PPP secrets with the billing database view.

One :meth:`Reconciler.update` call runs three steps strictly in sequence:

    1. fetch   — read every service row for the device (read-only query).
    2. erase   — ``/ppp secret remove [/ppp secret find]`` in its own SSH
                 session.
    3. rebuild — one payload with an ``/ppp secret add`` line per active
                 service, in a second SSH session.

There is no diffing, rollback or retry.  If the erase succeeds and the
rebuild fails, the router is left without PPP secrets until the next
successful run, which rebuilds everything from scratch.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncContextManager, List, Optional, Protocol

from updater.commands import active_records, build_erase_command, build_rebuild_payload
from updater.errors import QueryError, RemoteError
from updater.services import ServiceRecord

logger = logging.getLogger("updater.reconciler")


class ServiceSource(Protocol):
    async def fetch_services(self, device_id: int) -> List[ServiceRecord]: ...


class SessionFactory(Protocol):
    def session(self) -> AsyncContextManager[Any]: ...


@dataclass(frozen=True, slots=True)
class UpdateResult:
    """Outcome of a successful :meth:`Reconciler.update`."""

    device_id: int
    fetched: int
    applied: int


class Reconciler:
    """Orchestrates fetch → erase → rebuild for one device at a time.

    Args:
        store: Source of service records (normally
               :class:`updater.service_store.ServiceStore`).
        router: Remote channel exposing ``session()`` as an async context
                manager (normally :class:`updater.router_client.RouterClient`).

    Both collaborators are long-lived and owned by the caller.  Concurrent
    ``update`` calls are not serialized against each other.
    """

    def __init__(self, store: ServiceSource, router: SessionFactory) -> None:
        self._store = store
        self._router = router

    async def _fetch(
        self, device_id: int, query_timeout: Optional[float]
    ) -> List[ServiceRecord]:
        if query_timeout is None:
            return await self._store.fetch_services(device_id)
        try:
            return await asyncio.wait_for(
                self._store.fetch_services(device_id), timeout=query_timeout
            )
        except asyncio.TimeoutError as exc:
            raise QueryError(
                f"query context with device: {device_id}", exc
            ) from exc

    async def _exec(self, command: str) -> None:
        async with self._router.session() as session:
            await session.run(command)

    async def update(
        self, device_id: int, *, query_timeout: Optional[float] = None
    ) -> UpdateResult:
        """Replace the router's PPP secrets with the services of *device_id*.

        Args:
            device_id: Billing device identifier.
            query_timeout: Upper bound in seconds for the database fetch.
                Does not apply to the SSH phases.

        Raises:
            StoreError: Fetching failed; the router was not touched.
            SessionError, RemoteCommandError: A remote phase failed, with
                ``"erase previous"`` or ``"rebuild"`` as the outer phase.
        """
        services = await self._fetch(device_id, query_timeout)

        try:
            await self._exec(build_erase_command())
        except RemoteError as exc:
            raise exc.wrap("erase previous") from exc

        active = active_records(services)
        payload = build_rebuild_payload(active)

        try:
            await self._exec(payload)
        except RemoteError as exc:
            raise exc.wrap("rebuild") from exc

        logger.debug(
            "Rebuilt device_id=%d: %d/%d services active",
            device_id,
            len(active),
            len(services),
        )
        return UpdateResult(
            device_id=device_id, fetched=len(services), applied=len(active)
        )
