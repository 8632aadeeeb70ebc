"""
Per-run scratch directory, removed on every exit path.
"""

import logging
import os
import shutil
import signal
import tempfile
from typing import Dict, Optional

from errors import WorkspaceError

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGTERM", "SIGHUP") if hasattr(signal, name)
)


class TerminationRequested(SystemExit):
    """Raised from a signal handler so cleanup runs before the process exits."""

    def __init__(self, signum: int):
        super().__init__(128 + signum)
        self.signum = signum


def _raise_termination(signum, frame):
    raise TerminationRequested(signum)


class ScratchWorkspace:
    """
    Temporary directory for preview snapshots and the inventory cache.

    Use as a context manager. While active, SIGTERM and SIGHUP raise
    TerminationRequested so the directory is removed before the process
    exits with 128 + signal number.
    """

    def __init__(self, base_dir: Optional[str] = None, prefix: str = "ssm-connect_"):
        self.base_dir = base_dir
        self.prefix = prefix
        self.path: Optional[str] = None
        self._previous_handlers: Dict[int, object] = {}

    @property
    def cache_dir(self) -> str:
        if self.path is None:
            raise WorkspaceError("Workspace is not active")
        return os.path.join(self.path, "cache")

    def _create(self) -> str:
        try:
            path = tempfile.mkdtemp(prefix=self.prefix, dir=self.base_dir)
        except OSError as e:
            raise WorkspaceError(f"Failed to create temporary directory: {e}") from e

        probe = os.path.join(path, ".write_test")
        try:
            with open(probe, "w", encoding="utf-8") as f:
                f.write("ok")
            os.unlink(probe)
            os.mkdir(os.path.join(path, "cache"))
        except OSError as e:
            shutil.rmtree(path, ignore_errors=True)
            raise WorkspaceError(f"Temporary directory is not writable: {path}") from e
        return path

    def _install_handlers(self) -> None:
        for signum in HANDLED_SIGNALS:
            try:
                self._previous_handlers[signum] = signal.signal(signum, _raise_termination)
            except ValueError:
                # Not the main thread; signals stay with their current handlers.
                logger.debug(f"Cannot install handler for signal {signum}")

    def _restore_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers = {}

    def cleanup(self) -> None:
        if self.path and os.path.isdir(self.path):
            shutil.rmtree(self.path, ignore_errors=True)
            logger.debug(f"Removed scratch workspace {self.path}")
        self.path = None

    def __enter__(self) -> "ScratchWorkspace":
        self.path = self._create()
        self._install_handlers()
        logger.debug(f"Scratch workspace: {self.path}")
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            self.cleanup()
        finally:
            self._restore_handlers()
        return False
