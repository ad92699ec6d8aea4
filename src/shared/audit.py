"""
Structured audit logging — writes one JSON object per line to the audit
log file for every reconciliation run.

Each event carries a timestamp, service name, action, details dict and
success flag.  The file is written by a background task so callers never
block on disk I/O; write failures are logged and do not fail the run.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger("shared.audit")

_DEFAULT_LOG_PATH = Path("/var/log/ppp-updater/audit.log")


class AuditLogger:
    """Buffered JSON Lines audit logger.

    Args:
        log_path: Path to the JSON Lines audit log file.
        queue_size: Max queued events before producers backpressure.
        flush_batch_size: Number of queued events to flush per write batch.
    """

    def __init__(
        self,
        log_path: Path = _DEFAULT_LOG_PATH,
        queue_size: int = 256,
        flush_batch_size: int = 32,
    ) -> None:
        self._log_path = log_path
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(
            maxsize=max(1, queue_size)
        )
        self._flush_batch_size = max(1, flush_batch_size)
        self._worker_task: asyncio.Task[None] | None = None
        self._closed = False
        self._lifecycle_lock = asyncio.Lock()

    def _ensure_worker(self) -> None:
        if self._worker_task is None:
            loop = asyncio.get_running_loop()
            self._worker_task = loop.create_task(
                self._worker(),
                name="ppp-updater-audit-writer",
            )

    def _write_lines(self, lines: list[str]) -> None:
        try:
            self._log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._log_path, "a", encoding="utf-8") as handle:
                handle.write("".join(lines))
        except OSError:
            logger.exception("Failed to write audit log file")

    async def _worker(self) -> None:
        """Drain queue and flush lines in small batches."""
        stop = False
        while True:
            line = await self._queue.get()
            if line is None:
                self._queue.task_done()
                break

            batch = [line]
            while len(batch) < self._flush_batch_size:
                try:
                    maybe_next = self._queue.get_nowait()
                except asyncio.QueueEmpty:
                    break

                if maybe_next is None:
                    self._queue.task_done()
                    stop = True
                    break
                batch.append(maybe_next)

            await asyncio.to_thread(self._write_lines, batch)
            for _ in batch:
                self._queue.task_done()

            if stop:
                break

    async def log(
        self,
        service: str,
        action: str,
        details: Optional[Dict[str, Any]] = None,
        success: bool = True,
    ) -> None:
        """Record an audit event.

        Args:
            service: Originating service (``"updater"``).
            action: Action identifier (e.g. ``"startup"``, ``"update"``).
            details: Arbitrary JSON-serialisable metadata.
            success: Whether the action succeeded.
        """
        event = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": service,
            "action": action,
            "details": details or {},
            "success": success,
        }
        line = json.dumps(event) + "\n"
        async with self._lifecycle_lock:
            if self._closed:
                logger.debug(
                    "Dropping audit event after logger close: service=%s action=%s",
                    service,
                    action,
                )
                return
            self._ensure_worker()
            await self._queue.put(line)

    async def close(self) -> None:
        """Flush queued events and stop the background writer."""
        worker: asyncio.Task[None] | None = None
        async with self._lifecycle_lock:
            if self._closed:
                return
            self._closed = True
            worker = self._worker_task
            if worker is not None:
                await self._queue.put(None)

        if worker is not None:
            await worker
