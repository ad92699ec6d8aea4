"""
Error taxonomy for the updater.

Every failure is raised as an ``UpdaterError`` subclass that carries the
phase in which it happened and the underlying cause.  Outer layers add
their own phase with :meth:`UpdaterError.wrap`, which keeps the error kind
so callers can still tell a ``QueryError`` from a ``RemoteCommandError``::

    try:
        await reconciler.update(12)
    except RemoteError as exc:
        exc.phases   # ["erase previous", "run cmd"]
        str(exc)     # "erase previous: run cmd: exit status 1"
"""

from __future__ import annotations

from typing import List, Optional


class UpdaterError(Exception):
    """Base class for reconciliation failures.

    Args:
        phase: Short name of the step that failed (e.g. ``"scan failed"``).
        cause: The underlying exception, if any.
    """

    def __init__(self, phase: str, cause: Optional[BaseException] = None) -> None:
        self.phase = phase
        self.cause = cause
        super().__init__(phase)

    def __str__(self) -> str:
        if self.cause is None:
            return self.phase
        return f"{self.phase}: {self.cause}"

    @property
    def phases(self) -> List[str]:
        """Phase names from outermost to innermost."""
        chain = [self.phase]
        cause = self.cause
        while isinstance(cause, UpdaterError):
            chain.append(cause.phase)
            cause = cause.cause
        return chain

    def wrap(self, phase: str) -> "UpdaterError":
        """Return an error of the same kind with *phase* as the outer step."""
        return type(self)(phase, self)


# ---------------------------------------------------------------------------
# Store side
# ---------------------------------------------------------------------------


class StoreError(UpdaterError):
    """Failure while reading service rows from the database."""


class QueryError(StoreError):
    """Statement preparation or execution failed."""


class ScanError(StoreError):
    """A row could not be decoded into a ``ServiceRecord``."""


class IterationError(StoreError):
    """The result cursor failed after the query had started."""


# ---------------------------------------------------------------------------
# Remote side
# ---------------------------------------------------------------------------


class RemoteError(UpdaterError):
    """Failure on the SSH side."""


class SessionError(RemoteError):
    """An SSH session could not be opened or closed."""


class RemoteCommandError(RemoteError):
    """A command ran on the router but did not complete successfully.

    ``stderr`` holds the command output, which carries the router's error text.
    """

    def __init__(
        self,
        phase: str,
        cause: Optional[BaseException] = None,
        exit_status: Optional[int] = None,
        stderr: str = "",
    ) -> None:
        super().__init__(phase, cause)
        self.exit_status = exit_status
        self.stderr = stderr

    def __str__(self) -> str:
        if self.cause is not None:
            return super().__str__()
        detail = f"exit status {self.exit_status}"
        if self.stderr:
            detail += f" ({self.stderr.strip()})"
        return f"{self.phase}: {detail}"

    def wrap(self, phase: str) -> "RemoteCommandError":
        return RemoteCommandError(
            phase, self, exit_status=self.exit_status, stderr=self.stderr
        )
