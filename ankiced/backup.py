"""Per-session file backups of the collection database."""

from __future__ import annotations

import os
import shutil
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from .domain import BackupInfo

DEFAULT_KEEP_LAST_N = 3


@dataclass
class _PathState:
    lock: threading.Lock = field(default_factory=threading.Lock)
    done: bool = False


class BackupStore:
    """Creates at most one backup per database path and prunes old ones.

    Each path has its own lock, so concurrent callers for the same database
    produce a single backup while different databases back up in parallel.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._paths: dict[str, _PathState] = {}

    def _state_for(self, path: str) -> _PathState:
        with self._lock:
            return self._paths.setdefault(path, _PathState())

    def create_backup(self, db_path: str | Path, now: datetime | None = None) -> BackupInfo:
        """Copy ``db_path`` next to itself; an empty BackupInfo means already done."""
        if now is None:
            now = datetime.now(timezone.utc)
        db_path = str(db_path)
        state = self._state_for(db_path)
        with state.lock:
            if state.done:
                return BackupInfo()
            with open(db_path, "rb") as src:
                stamp = now.astimezone(timezone.utc).strftime("%Y%m%d_%H%M%S")
                backup_path = f"{db_path}.{stamp}.bak"
                with open(backup_path, "wb") as dst:
                    shutil.copyfileobj(src, dst)
                    dst.flush()
                    os.fsync(dst.fileno())
            state.done = True
            return BackupInfo(path=backup_path, created_at=now)

    def cleanup_backups(self, db_path: str | Path, keep_last_n: int) -> None:
        """Delete all but the newest ``keep_last_n`` backups of ``db_path``."""
        if keep_last_n < 1:
            keep_last_n = DEFAULT_KEEP_LAST_N
        directory = os.path.dirname(str(db_path)) or "."
        prefix = os.path.basename(str(db_path)) + "."
        backups = sorted(
            os.path.join(directory, name)
            for name in os.listdir(directory)
            if name.startswith(prefix) and name.endswith(".bak")
        )
        for path in backups[: max(len(backups) - keep_last_n, 0)]:
            os.remove(path)