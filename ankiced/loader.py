"""Load effective settings from flags, a config file and the environment."""

from __future__ import annotations

import json
import os
import re
import sys
from collections.abc import Iterator, Sequence
from dataclasses import fields
from typing import Any

import yaml

from . import errors
from .errors import Code
from .settings import Settings

_FLAGS: dict[str, tuple[type, Any, str]] = {
    "db-path": (str, "", "path to collection.anki2"),
    "anki-account": (str, "", "Anki profile/account folder name"),
    "http-addr": (str, "127.0.0.1:8080", "REST API bind address"),
    "config": (str, "", "config file"),
    "backup-keep": (int, 3, "number of backups to keep"),
    "workers": (int, 4, "workers"),
    "force-apply": (bool, False, "allow cleaner apply without interactive confirmation"),
    "verbose": (bool, False, "enable verbose output"),
    "full-diff": (bool, False, "show full diff"),
    "report-file": (str, "", "path to dry run report"),
    "page-size": (int, 10, "default pagination page size"),
    "busy-timeout-ms": (int, 5000, "SQLite busy_timeout in milliseconds"),
    "pragma-journal-mode": (str, "WAL", "SQLite journal_mode pragma (WAL|DELETE|TRUNCATE|MEMORY)"),
    "pragma-synchronous": (str, "NORMAL", "SQLite synchronous pragma (OFF|NORMAL|FULL|EXTRA)"),
}

# Flags that override the merged value only when given on the command line.
_VISITED_OVERRIDES = {
    "http-addr": "http_addr",
    "backup-keep": "backup_keep_last_n",
    "workers": "workers",
    "force-apply": "force_apply",
    "verbose": "verbose",
    "full-diff": "full_diff",
    "report-file": "report_file",
    "page-size": "default_page_size",
    "busy-timeout-ms": "pragma_busy_timeout",
    "pragma-journal-mode": "pragma_journal_mode",
    "pragma-synchronous": "pragma_synchronous",
}

_DEFAULT_CONFIG_CANDIDATES = (
    "config.yaml",
    "config.yml",
    "config.json",
    "ankiced.yaml",
    "ankiced.yml",
    "ankiced.json",
    os.path.join("config", "ankiced.yaml"),
    os.path.join("config", "ankiced.yml"),
    os.path.join("config", "ankiced.json"),
)

_FILE_FIELDS: dict[str, type] = {
    f.name: type(f.default) for f in fields(Settings) if f.name != "config_path"
}

_GO_BOOLS = {
    "1": True, "t": True, "T": True, "TRUE": True, "true": True, "True": True,
    "0": False, "f": False, "F": False, "FALSE": False, "false": False, "False": False,
}
_ATOI_RE = re.compile(r"[+-]?[0-9]+")
_INT_BODY_RE = re.compile(r"[0-9][0-9a-zA-Z_]*")
_LEGACY_OCTAL_RE = re.compile(r"0[0-7]+")


def _usage() -> str:
    lines = ["Usage of ankiced:"]
    for name, (kind, default, help_text) in _FLAGS.items():
        head = f"  -{name}" if kind is bool else f"  -{name} {kind.__name__ if kind is int else 'string'}"
        suffix = f" (default {default!r})" if default not in ("", False) else ""
        lines.append(f"{head}\n    \t{help_text}{suffix}")
    return "\n".join(lines)


def _flag_error(message: str) -> ValueError:
    print(message, file=sys.stderr)
    print(_usage(), file=sys.stderr)
    return ValueError(message)


def _parse_flag_int(name: str, text: str) -> int:
    body = text[1:] if text[:1] in "+-" else text
    try:
        if _LEGACY_OCTAL_RE.fullmatch(body):
            value = int(body, 8)
        elif _INT_BODY_RE.fullmatch(body):
            value = int(body, 0)
        else:
            raise ValueError(text)
    except ValueError:
        raise _flag_error(f'invalid value "{text}" for flag -{name}: parse error') from None
    value = -value if text.startswith("-") else value
    if not -(2**63) <= value < 2**63:
        raise _flag_error(f'invalid value "{text}" for flag -{name}: value out of range')
    return value


def _parse_flags(args: Sequence[str]) -> dict[str, Any]:
    """Parse flags the way the standard single-dash/double-dash syntax does.

    Parsing stops at the first non-flag argument or at "--". Returns the
    flags that were set, by name.
    """
    visited: dict[str, Any] = {}
    items: Iterator[str] = iter(args)
    for arg in items:
        if len(arg) < 2 or not arg.startswith("-"):
            break
        if arg == "--":
            break
        spec = arg[2:] if arg.startswith("--") else arg[1:]
        if not spec or spec[0] in "-=":
            raise _flag_error(f"bad flag syntax: {arg}")
        name, sep, value = spec.partition("=")
        has_value = bool(sep)
        if name not in _FLAGS:
            if name in ("h", "help"):
                raise _flag_error("flag: help requested")
            raise _flag_error(f"flag provided but not defined: -{name}")
        kind = _FLAGS[name][0]
        if kind is bool:
            if not has_value:
                visited[name] = True
            elif value in _GO_BOOLS:
                visited[name] = _GO_BOOLS[value]
            else:
                raise _flag_error(f'invalid boolean value "{value}" for -{name}: parse error')
            continue
        if not has_value:
            following = next(items, None)
            if following is None:
                raise _flag_error(f"flag needs an argument: -{name}")
            value = following
        visited[name] = _parse_flag_int(name, value) if kind is int else value
    return visited


def load(args: Sequence[str] | None = None) -> Settings:
    """Build settings: defaults < config file < environment < command-line flags."""
    if args is None:
        args = sys.argv[1:]
    visited = _parse_flags(list(args))
    config_path = visited.get("config", "")

    cfg = Settings(
        backup_keep_last_n=3,
        workers=4,
        default_page_size=10,
        pragma_busy_timeout=5000,
        pragma_journal_mode="WAL",
        pragma_synchronous="NORMAL",
        http_addr="127.0.0.1:8080",
    )

    file_cfg = load_file_config(config_path)
    if not config_path:
        discovered = discover_default_config_path()
        if discovered:
            config_path = discovered
            file_cfg = load_file_config(config_path)
    merge(cfg, file_cfg)
    apply_env(cfg)

    if visited.get("db-path"):
        cfg.db_path = visited["db-path"]
    if visited.get("anki-account"):
        cfg.anki_account = visited["anki-account"]
    if config_path:
        cfg.config_path = config_path
    for flag_name, attr in _VISITED_OVERRIDES.items():
        if flag_name in visited:
            setattr(cfg, attr, visited[flag_name])

    if not cfg.db_path:
        cfg.db_path = default_path_by_os(cfg.anki_account)
    if not cfg.db_path:
        raise errors.new(Code.DATABASE_PATH_EMPTY)
    return cfg


def discover_default_config_path() -> str:
    """Return the first well-known config file present in the working directory."""
    return next((p for p in _DEFAULT_CONFIG_CANDIDATES if os.path.exists(p)), "")


def _coerce(key: str, raw: Any, kind: type, lenient_strings: bool) -> Any:
    if kind is bool:
        if isinstance(raw, bool):
            return raw
    elif kind is int:
        if isinstance(raw, int) and not isinstance(raw, bool):
            return raw
    elif isinstance(raw, str):
        return raw
    elif lenient_strings and isinstance(raw, bool):
        return "true" if raw else "false"
    elif lenient_strings and isinstance(raw, (int, float)):
        return str(raw)
    raise ValueError(f"config field {key!r}: cannot use {type(raw).__name__} value {raw!r}")


def _settings_from_mapping(data: Any, lenient_strings: bool) -> Settings:
    if data is None:
        return Settings()
    if not isinstance(data, dict):
        raise ValueError("config file must contain a mapping of settings")
    values = {
        key: _coerce(key, raw, _FILE_FIELDS[key], lenient_strings)
        for key, raw in data.items()
        if key in _FILE_FIELDS and raw is not None
    }
    return Settings(**values)


def load_file_config(path: str | os.PathLike[str]) -> Settings:
    """Read settings from a YAML (.yaml/.yml) or JSON file; an empty path gives defaults."""
    path = os.fspath(path)
    if not path:
        return Settings()
    with open(path, encoding="utf-8") as fh:
        text = fh.read()
    if os.path.splitext(path)[1].lower() in (".yaml", ".yml"):
        return _settings_from_mapping(yaml.safe_load(text), lenient_strings=True)
    return _settings_from_mapping(json.loads(text), lenient_strings=False)


def _atoi(value: str) -> int | None:
    return int(value) if _ATOI_RE.fullmatch(value) else None


def apply_env(cfg: Settings) -> None:
    """Override ``cfg`` in place from ANKICED_* environment variables."""
    env = os.environ
    if v := env.get("ANKICED_DB_PATH", ""):
        cfg.db_path = v
    if v := env.get("ANKICED_ANKI_ACCOUNT", ""):
        cfg.anki_account = v
    if v := env.get("ANKICED_HTTP_ADDR", ""):
        cfg.http_addr = v
    if (n := _atoi(env.get("ANKICED_BACKUP_KEEP", ""))) is not None:
        cfg.backup_keep_last_n = n
    if (n := _atoi(env.get("ANKICED_WORKERS", ""))) is not None:
        cfg.workers = n
    if (b := parse_bool(env.get("ANKICED_FORCE_APPLY", ""))) is not None:
        cfg.force_apply = b
    if (b := parse_bool(env.get("ANKICED_VERBOSE", ""))) is not None:
        cfg.verbose = b
    if (n := _atoi(env.get("ANKICED_PAGE_SIZE", ""))) is not None and n > 0:
        cfg.default_page_size = n
    if (n := _atoi(env.get("ANKICED_BUSY_TIMEOUT_MS", ""))) is not None and n > 0:
        cfg.pragma_busy_timeout = n
    if v := env.get("ANKICED_PRAGMA_JOURNAL_MODE", "").strip():
        cfg.pragma_journal_mode = v
    if v := env.get("ANKICED_PRAGMA_SYNCHRONOUS", "").strip():
        cfg.pragma_synchronous = v


def parse_bool(value: str) -> bool | None:
    """Interpret yes/no style text; None when the text is not recognised."""
    text = value.strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    return None


def merge(dst: Settings, src: Settings) -> None:
    """Copy the set values of ``src`` onto ``dst``; booleans can only be switched on."""
    if src.db_path:
        dst.db_path = src.db_path
    if src.anki_account:
        dst.anki_account = src.anki_account
    if src.http_addr:
        dst.http_addr = src.http_addr
    if src.backup_keep_last_n > 0:
        dst.backup_keep_last_n = src.backup_keep_last_n
    if src.workers > 0:
        dst.workers = src.workers
    if src.report_file:
        dst.report_file = src.report_file
    if src.default_page_size > 0:
        dst.default_page_size = src.default_page_size
    if src.pragma_busy_timeout > 0:
        dst.pragma_busy_timeout = src.pragma_busy_timeout
    if src.pragma_journal_mode.strip():
        dst.pragma_journal_mode = src.pragma_journal_mode.strip()
    if src.pragma_synchronous.strip():
        dst.pragma_synchronous = src.pragma_synchronous.strip()
    dst.force_apply = dst.force_apply or src.force_apply
    dst.verbose = dst.verbose or src.verbose
    dst.full_diff = dst.full_diff or src.full_diff


def _home_dir() -> str:
    if sys.platform in ("win32", "cygwin"):
        return os.environ.get("USERPROFILE", "")
    return os.environ.get("HOME", "")


def default_path_by_os(account: str) -> str:
    """Return Anki's usual collection path for ``account``, or "" without a home directory."""
    home = _home_dir()
    if not home:
        return ""
    profile = account.strip() or "User 1"
    if sys.platform in ("win32", "cygwin"):
        base = os.path.join(home, "AppData", "Roaming", "Anki2")
    elif sys.platform == "darwin":
        base = os.path.join(home, "Library", "Application Support", "Anki2")
    else:
        base = os.path.join(home, ".local", "share", "Anki2")
    return os.path.join(base, profile, "collection.anki2")