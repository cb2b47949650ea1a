"""Effective application settings."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any


@dataclass
class Settings:
    """All runtime options; zero values mean "not set"."""

    db_path: str = ""
    anki_account: str = ""
    http_addr: str = ""
    backup_keep_last_n: int = 0
    workers: int = 0
    force_apply: bool = False
    verbose: bool = False
    full_diff: bool = False
    report_file: str = ""
    config_path: str = ""
    default_page_size: int = 0
    pragma_busy_timeout: int = 0
    pragma_journal_mode: str = ""
    pragma_synchronous: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Serialisable view of the settings; the config path is left out."""
        data = asdict(self)
        del data["config_path"]
        return data