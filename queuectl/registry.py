"""
Filesystem registry of live worker processes.

Each worker has an empty ``<pid>.pid`` marker file in one directory. Markers
are used to list and signal workers only; job claiming never consults them.
"""
import logging
import os
from pathlib import Path
from typing import List, Union

logger = logging.getLogger(__name__)

MARKER_SUFFIX = ".pid"


def pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, but owned by someone else.
        return True
    return True


class WorkerRegistry:
    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def _marker(self, pid: int) -> Path:
        return self.directory / f"{pid}{MARKER_SUFFIX}"

    def register(self, pid: int) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        marker = self._marker(pid)
        marker.touch()
        return marker

    def unregister(self, pid: int) -> bool:
        try:
            self._marker(pid).unlink()
        except FileNotFoundError:
            return False
        return True

    def list_all(self) -> List[int]:
        if not self.directory.is_dir():
            return []
        pids = []
        for entry in self.directory.glob(f"*{MARKER_SUFFIX}"):
            try:
                pids.append(int(entry.stem))
            except ValueError:
                logger.warning("Ignoring unexpected file in %s: %s", self.directory, entry.name)
        return sorted(pids)

    def list_live(self) -> List[int]:
        return [pid for pid in self.list_all() if pid_alive(pid)]
