"""
Single Instance Lock - one agent process per data directory

Two agents sharing a state file would race on AgentState and double-submit
trades. A PID file is taken at startup; a stale file left by a dead process
is replaced.
"""

import os
from pathlib import Path
import logging

logger = logging.getLogger(__name__)


class SingleInstanceLock:
    """
    File-based single instance lock using PID files.

    Usage:
        with SingleInstanceLock("ada-trader", lock_dir="data"):
            run_agent()
    """

    def __init__(self, name: str, lock_dir: str = "data"):
        self.name = name
        self.lock_file = Path(lock_dir) / f"{name}.pid"
        self.acquired = False

    @staticmethod
    def _is_process_running(pid: int) -> bool:
        try:
            os.kill(pid, 0)
            return True
        except OSError:
            return False

    def acquire(self) -> bool:
        """
        Returns:
            True if acquired, False if another live process holds the lock
        """
        if self.acquired:
            return True
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)

        if self.lock_file.exists():
            try:
                existing_pid = int(self.lock_file.read_text().strip())
            except (ValueError, OSError) as e:
                logger.warning(f"Invalid lock file, replacing: {e}")
            else:
                if existing_pid != os.getpid() and self._is_process_running(existing_pid):
                    logger.error(f"Another agent is running (PID={existing_pid}); lock file {self.lock_file}")
                    return False
                logger.warning(f"Replacing stale lock file (PID={existing_pid})")

        self.lock_file.write_text(str(os.getpid()))
        self.acquired = True
        logger.info(f"Lock acquired (PID={os.getpid()}, file={self.lock_file})")
        return True

    def release(self) -> None:
        if not self.acquired:
            return
        try:
            self.lock_file.unlink()
            logger.info(f"Lock released (file={self.lock_file})")
        except FileNotFoundError:
            pass
        self.acquired = False

    def __enter__(self):
        if not self.acquire():
            raise RuntimeError(f"Failed to acquire lock for {self.name}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False
