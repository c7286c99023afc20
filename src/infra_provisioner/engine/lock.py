"""Advisory lock serializing runs against one state file."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from infra_provisioner.engine.errors import ReadinessTimeoutError, StateLockError
from infra_provisioner.engine.readiness import poll_until

if TYPE_CHECKING:
    from types import TracebackType

try:
    import fcntl  # type: ignore[attr-defined]
except ImportError:  # pragma: no cover
    fcntl = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)


class StateLock:
    """Exclusive lock on ``<state>.lock``, held for a whole plan/apply/refresh run.

    With ``timeout=None`` the lock waits for the holder indefinitely.  With a
    timeout it polls and raises :class:`StateLockError` naming the holder's
    pid once the timeout passes.
    """

    def __init__(
        self, state_path: Path, *, timeout: float | None = None, poll_interval: float = 0.1
    ) -> None:
        self._lock_path = Path(str(state_path) + ".lock")
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._file = None

    @property
    def path(self) -> Path:
        return self._lock_path

    def __enter__(self) -> StateLock:
        # Keep fd open for lifetime of the lock.
        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self._lock_path.open("a+", encoding="utf-8")
        try:
            self._acquire()
        except Exception as e:
            try:
                self._file.close()
            finally:
                self._file = None
            if isinstance(e, StateLockError):
                raise
            raise StateLockError(str(e)) from e
        self._record_holder()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._file is None:
            return
        try:
            self._file.truncate(0)
            self._release()
        finally:
            self._file.close()
            self._file = None

    def holder(self) -> str:
        """Pid recorded by the current holder, or ``"unknown"``."""
        try:
            pid = self._lock_path.read_text(encoding="utf-8").strip()
        except OSError:
            return "unknown"
        return pid or "unknown"

    def _record_holder(self) -> None:
        assert self._file is not None
        self._file.seek(0)
        self._file.truncate(0)
        self._file.write(f"{os.getpid()}\n")
        self._file.flush()

    def _acquire(self) -> None:
        if self._file is None:
            raise StateLockError("Lock file is not open")
        logger.debug("Acquiring state lock %s (timeout=%s)", self._lock_path, self._timeout)

        if fcntl is not None:
            if self._timeout is None:
                fcntl.flock(self._file.fileno(), fcntl.LOCK_EX)
                return
            self._acquire_within_timeout()
            return

        if sys.platform == "win32":  # pragma: no cover
            import msvcrt

            msvcrt.locking(self._file.fileno(), msvcrt.LK_LOCK, 1)
            return

        raise StateLockError("State locking is not supported on this platform")

    def _acquire_within_timeout(self) -> None:
        assert self._file is not None and self._timeout is not None
        fd = self._file.fileno()

        def _try() -> bool | None:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                return None
            return True

        try:
            poll_until(
                _try,
                address=str(self._lock_path),
                timeout=self._timeout,
                interval=self._poll_interval,
            )
        except ReadinessTimeoutError as e:
            raise StateLockError(
                f"State {self._lock_path.with_suffix('')} is locked by pid {self.holder()}; "
                f"gave up after {self._timeout:g}s"
            ) from e

    def _release(self) -> None:
        if self._file is None:
            return

        if fcntl is not None:
            fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
            return

        if sys.platform == "win32":  # pragma: no cover
            import msvcrt

            msvcrt.locking(self._file.fileno(), msvcrt.LK_UNLCK, 1)
            return
