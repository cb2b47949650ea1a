"""Core domain types and the rules that govern them."""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Protocol, runtime_checkable

FIELD_SEPARATOR = "\x1f"
DEFAULT_ACTION_TEMPLATE_ID = "html_cleaner"
MAX_DECK_NAME_LENGTH = 200


@runtime_checkable
class ActionTemplate(Protocol):
    """A named transformation applied to a note field value."""

    @property
    def id(self) -> str: ...

    @property
    def name(self) -> str: ...

    def apply(self, value: str) -> str: ...


@dataclass
class Deck:
    id: int
    name: str
    card_count: int = 0


@dataclass
class Pagination:
    limit: int = 0
    offset: int = 0


@dataclass
class FilterSet:
    deck_id: int = 0
    note_id: int = 0
    search_text: str = ""
    mod_from_unix: int = 0
    mod_to_unix: int = 0


@dataclass
class NoteField:
    name: str
    value: str


@dataclass
class Note:
    id: int = 0
    guid: str = ""
    model_id: int = 0
    raw_flds: str = ""
    fields: list[NoteField] = field(default_factory=list)
    mod: int = 0
    usn: int = 0


@dataclass
class Model:
    id: int
    field_names: list[str] = field(default_factory=list)


@dataclass
class DiffRecord:
    note_id: int
    field_name: str
    before: str
    after: str


@dataclass
class DryRunSummary:
    processed: int = 0
    changed: int = 0
    skipped: int = 0
    errors: int = 0


@dataclass
class CleanerProgress:
    total: int = 0
    processed: int = 0
    changed: int = 0
    skipped: int = 0
    errors: int = 0
    stage: str = ""
    summary: DryRunSummary = field(default_factory=DryRunSummary)


@dataclass
class BackupInfo:
    path: str = ""
    created_at: datetime | None = None


class DomainError(Exception):
    """Base class for violations of domain rules."""

    message = "domain rule violated"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)


class EmptyDeckNameError(DomainError):
    message = "deck name is empty"


class DeckNameConflictError(DomainError):
    message = "deck name conflict"


class FieldCountInvalidError(DomainError):
    message = "note field count does not match model"


class DeckNameTooLongError(DomainError):
    message = "deck name is too long"


class DeckNameInvalidError(DomainError):
    message = "deck name contains invalid characters"


class DeckSearchEmptyError(DomainError):
    message = "deck search text cannot be empty"


class InvalidNoteListFiltersError(DomainError):
    message = (
        "specify a positive deck id, a positive note id, "
        "or non-empty search text for collection-wide search"
    )


class InvalidNoteIDError(DomainError):
    message = "note id must be a positive integer"


def validate_deck_rename(name: str) -> str:
    """Check a new deck name and return it trimmed."""
    trimmed = name.strip()
    if not trimmed:
        raise EmptyDeckNameError()
    if len(trimmed) > MAX_DECK_NAME_LENGTH:
        raise DeckNameTooLongError()
    if any(unicodedata.category(ch) == "Cc" for ch in trimmed):
        raise DeckNameInvalidError()
    return trimmed


def map_fields(field_values: list[str], model: Model) -> list[NoteField]:
    """Pair raw field values with the model's field names."""
    if len(field_values) != len(model.field_names):
        raise FieldCountInvalidError()
    return [NoteField(name=name, value=value) for name, value in zip(model.field_names, field_values)]


def join_field_values(fields: Iterable[NoteField]) -> list[str]:
    """Return the values of ``fields`` in order."""
    return [f.value for f in fields]