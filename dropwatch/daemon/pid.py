"""PID file management for the scheduler daemon."""

import os
from pathlib import Path
from typing import Optional

PID_FILE_NAME = "dropwatch.pid"


class PIDFile:
    """Track the running scheduler process through a PID file.

    Only one scheduler daemon should run per data directory; a second
    ``run`` checks ``is_running`` before starting.

    Example:
        pid_file = PIDFile.for_data_dir(config.data_dir)
        if pid_file.is_running():
            ...
        with pid_file:
            ...
    """

    def __init__(self, path: Path):
        self.path = path

    @classmethod
    def for_data_dir(cls, data_dir: Path) -> "PIDFile":
        return cls(Path(data_dir) / PID_FILE_NAME)

    def create(self) -> None:
        """Write the current process ID, creating the directory if needed."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(str(os.getpid()))

    def remove(self) -> None:
        """Remove the PID file if it exists."""
        self.path.unlink(missing_ok=True)

    def read(self) -> Optional[int]:
        """Read the PID, or None if the file is missing or unreadable."""
        try:
            return int(self.path.read_text().strip())
        except (FileNotFoundError, ValueError, OSError):
            return None

    def is_running(self) -> bool:
        """True if the recorded process is alive."""
        pid = self.read()
        if pid is None:
            return False
        return _process_alive(pid)

    def clear_if_stale(self) -> bool:
        """Remove the PID file if its process is gone.

        Returns:
            True if a stale file was removed
        """
        pid = self.read()
        if pid is None or _process_alive(pid):
            return False
        self.remove()
        return True

    def __enter__(self) -> "PIDFile":
        self.create()
        return self

    def __exit__(self, *exc_info) -> None:
        self.remove()


def _process_alive(pid: int) -> bool:
    try:
        # Signal 0 checks for existence without delivering anything
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user
        return True
