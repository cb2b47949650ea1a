"""Wiring shared by the command-line, web and desktop entry points."""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterable

from .backup import BackupStore
from .database import Database
from .model_repo import ModelRepo
from .render import DiffRenderer, JSONReportWriter
from .repositories import DeckRepo, NoteRepo
from .sanitize import TemplateRegistry
from .services import ConfirmPrompter, Services
from .settings import Settings

ERR_LOAD_CONFIG_PREFIX = "load config"
ERR_OPEN_DB_PREFIX = "open db"
ERR_RUNTIME_PREFIX = "runtime"
ERR_BACKUP_CLEANUP = "backup cleanup"
SHUTDOWN_TIMEOUT_SECONDS = 5.0

LOGGER_NAME = "ankiced"
_LOG_FORMAT = "time=%(asctime)s level=%(levelname)s msg=%(message)s"


def new_logger(verbose: bool) -> logging.Logger:
    """Return the application logger writing to stderr; debug level when verbose."""
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False
    return logger


def _truthy(value: str) -> bool:
    return value.lower() == "true" or value == "1"


def verbose_requested(args: Iterable[str] | None) -> bool:
    """Whether the raw arguments ask for verbose output, before full parsing."""
    for arg in args or ():
        if arg == "--verbose":
            return True
        if arg.startswith("--verbose="):
            return _truthy(arg[len("--verbose="):])
    return False


def env_enabled(name: str) -> bool:
    """Whether environment variable ``name`` is "true" (any case) or "1"."""
    return _truthy(os.environ.get(name, ""))


def new_services(cfg: Settings, db: Database, confirm: ConfirmPrompter | None) -> Services:
    """Build the application services on top of an open database."""
    return Services(
        cfg=cfg,
        decks=DeckRepo(db),
        notes=NoteRepo(db),
        models=ModelRepo(db),
        backups=BackupStore(),
        confirm=confirm,
        diff=DiffRenderer(),
        reports=JSONReportWriter(),
        tx=db,
        templates=TemplateRegistry(),
    )