"""Application error type carrying a structured code."""

from __future__ import annotations

from enum import Enum


class Code(str, Enum):
    """Stable error codes shared by every presentation layer."""

    OPERATION_CANCELLED = "OPERATION_CANCELLED"
    INVALID_ESCAPE = "INVALID_ESCAPE_SEQUENCE"
    DATABASE_PATH_EMPTY = "DATABASE_PATH_EMPTY"
    DECK_NOT_FOUND = "DECK_NOT_FOUND"
    NOTE_NOT_FOUND = "NOTE_NOT_FOUND"
    MODEL_NOT_FOUND = "MODEL_NOT_FOUND"
    REPORT_WRITE_FAILED = "REPORT_WRITE_FAILED"
    TEMPLATE_NOT_FOUND = "TEMPLATE_NOT_FOUND"


_DEFAULT_MESSAGES: dict[Code, str] = {
    Code.OPERATION_CANCELLED: "operation cancelled",
    Code.REPORT_WRITE_FAILED: "failed to write report",
    Code.TEMPLATE_NOT_FOUND: "action template not found",
    Code.DECK_NOT_FOUND: "deck not found",
    Code.NOTE_NOT_FOUND: "note not found",
    Code.MODEL_NOT_FOUND: "model not found",
    Code.DATABASE_PATH_EMPTY: "database path is empty",
}


class AppError(Exception):
    """An error with a machine-readable code, a message and an optional cause."""

    def __init__(self, code: Code, message: str = "", cause: BaseException | None = None):
        self.code = code
        self.message = message
        self.cause = cause
        super().__init__(code, message)
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if self.message and self.cause is not None:
            return f"{self.message}: {self.cause}"
        if self.message:
            return self.message
        if self.cause is not None:
            return str(self.cause)
        return self.code.value

    def __repr__(self) -> str:
        return f"AppError(code={self.code.value!r}, message={self.message!r}, cause={self.cause!r})"


def new(code: Code, message: str | None = None) -> AppError:
    """Build an error for ``code``; without a message the code's standard one is used."""
    if message is None:
        message = _DEFAULT_MESSAGES.get(code, "")
    return AppError(code, message)


def wrap(code: Code, message: str, cause: BaseException) -> AppError:
    """Build an error for ``code`` that keeps ``cause`` in its chain."""
    return AppError(code, message, cause)


def _chain(err: BaseException | None):
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        yield err
        if isinstance(err, AppError) and err.cause is not None:
            err = err.cause
        else:
            err = err.__cause__


def has_code(err: BaseException | None, code: Code) -> bool:
    """Report whether the first AppError in ``err``'s cause chain has ``code``."""
    for item in _chain(err):
        if isinstance(item, AppError):
            return item.code == code
    return False