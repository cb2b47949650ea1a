"""SQLite repositories for decks and notes of an Anki collection."""

from __future__ import annotations

from typing import Any

from . import errors
from .database import Database
from .domain import Deck, FilterSet, InvalidNoteListFiltersError, Note, Pagination
from .errors import AppError, Code

DEFAULT_PAGE_LIMIT = 10
LIKE_ESCAPE_CHAR = "\\"

# Projection shared by note listing and counting so both see the same rows.
NOTES_QUERY_SHAPE = "SELECT DISTINCT n.id, n.guid, n.mid, n.flds, n.mod, n.usn"

_DECKS_SELECT = """
SELECT d.id, d.name, COALESCE(c.card_count, 0)
FROM decks d
LEFT JOIN (
    SELECT did, COUNT(*) AS card_count
    FROM cards
    GROUP BY did
) c ON c.did = d.id"""

_LIKE_CLAUSE = "LIKE ? ESCAPE '\\' COLLATE NOCASE"


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so ``value`` matches literally with ESCAPE '\\'."""
    return (
        value.replace(LIKE_ESCAPE_CHAR, LIKE_ESCAPE_CHAR * 2)
        .replace("%", LIKE_ESCAPE_CHAR + "%")
        .replace("_", LIKE_ESCAPE_CHAR + "_")
    )


def _not_found(code: Code, ident: int) -> AppError:
    return AppError(code, f"{errors.new(code).message}: {ident}")


def _note_from_row(row: tuple) -> Note:
    return Note(id=row[0], guid=row[1], model_id=row[2], raw_flds=row[3], mod=row[4], usn=row[5])


def build_notes_query(filters: FilterSet) -> tuple[str, list[Any]]:
    """Return the FROM/WHERE fragment and its arguments for note listing."""
    if filters.deck_id == 0 and filters.search_text.strip():
        fragment = f" FROM notes n WHERE n.flds {_LIKE_CLAUSE}"
        args: list[Any] = [f"%{escape_like(filters.search_text)}%"]
        if filters.mod_from_unix > 0:
            fragment += " AND n.mod >= ?"
            args.append(filters.mod_from_unix)
        if filters.mod_to_unix > 0:
            fragment += " AND n.mod <= ?"
            args.append(filters.mod_to_unix)
        return fragment, args

    if filters.deck_id <= 0:
        raise InvalidNoteListFiltersError()

    fragment = """
FROM notes n
JOIN cards c ON c.nid = n.id
WHERE c.did = ?"""
    args = [filters.deck_id]
    if filters.mod_from_unix > 0:
        fragment += " AND n.mod >= ?"
        args.append(filters.mod_from_unix)
    if filters.mod_to_unix > 0:
        fragment += " AND n.mod <= ?"
        args.append(filters.mod_to_unix)
    if filters.search_text:
        fragment += f" AND n.flds {_LIKE_CLAUSE}"
        args.append(f"%{escape_like(filters.search_text)}%")
    return fragment, args


class DeckRepo:
    """Deck queries and updates."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def _query_decks(self, sql: str, args: tuple = ()) -> list[Deck]:
        with self._db.cursor() as cur:
            rows = cur.execute(sql, args).fetchall()
        return [Deck(id=row[0], name=row[1], card_count=row[2]) for row in rows]

    def list_decks(self) -> list[Deck]:
        return self._query_decks(_DECKS_SELECT + "\nORDER BY d.id")

    def search_decks(self, search: str) -> list[Deck]:
        """Decks whose name contains ``search``, case-insensitively."""
        sql = f"{_DECKS_SELECT}\nWHERE d.name {_LIKE_CLAUSE}\nORDER BY d.id"
        return self._query_decks(sql, (f"%{escape_like(search.strip())}%",))

    def deck_name_exists(self, name: str, exclude_id: int) -> bool:
        """Whether another deck already uses ``name`` (case-insensitive)."""
        with self._db.cursor() as cur:
            row = cur.execute(
                "SELECT 1 FROM decks WHERE id != ? AND name = ? COLLATE NOCASE LIMIT 1",
                (exclude_id, name.strip()),
            ).fetchone()
        return row is not None

    def deck_exists(self, deck_id: int) -> bool:
        with self._db.cursor() as cur:
            row = cur.execute("SELECT 1 FROM decks WHERE id = ? LIMIT 1", (deck_id,)).fetchone()
        return row is not None

    def rename_deck(self, deck_id: int, name: str) -> None:
        with self._db.cursor() as cur:
            cur.execute("UPDATE decks SET name = ? WHERE id = ?", (name, deck_id))
            affected = cur.rowcount
        if affected == 0:
            raise _not_found(Code.DECK_NOT_FOUND, deck_id)


class NoteRepo:
    """Note queries and updates."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def list_notes(self, filters: FilterSet, page: Pagination) -> list[Note]:
        """One page of notes; a positive note id looks up that note alone."""
        limit = page.limit if page.limit > 0 else DEFAULT_PAGE_LIMIT
        if filters.note_id > 0:
            with self._db.cursor() as cur:
                row = cur.execute(
                    "SELECT id, guid, mid, flds, mod, usn FROM notes WHERE id = ?",
                    (filters.note_id,),
                ).fetchone()
            return [] if row is None else [_note_from_row(row)]

        fragment, args = build_notes_query(filters)
        sql = NOTES_QUERY_SHAPE + fragment + " ORDER BY n.id LIMIT ? OFFSET ?"
        with self._db.cursor() as cur:
            rows = cur.execute(sql, (*args, limit, page.offset)).fetchall()
        return [_note_from_row(row) for row in rows]

    def count_notes(self, filters: FilterSet) -> int:
        """Number of notes matching ``filters``, ignoring pagination."""
        with self._db.cursor() as cur:
            if filters.note_id > 0:
                return cur.execute(
                    "SELECT COUNT(*) FROM notes WHERE id = ?", (filters.note_id,)
                ).fetchone()[0]
            fragment, args = build_notes_query(filters)
            sql = f"SELECT COUNT(*) FROM ({NOTES_QUERY_SHAPE}{fragment})"
            return cur.execute(sql, args).fetchone()[0]

    def get_note(self, note_id: int) -> Note:
        with self._db.cursor() as cur:
            row = cur.execute(
                "SELECT id, guid, mid, flds, mod, usn FROM notes WHERE id = ?", (note_id,)
            ).fetchone()
        if row is None:
            raise _not_found(Code.NOTE_NOT_FOUND, note_id)
        return _note_from_row(row)

    def update_note(self, note: Note) -> None:
        with self._db.cursor() as cur:
            cur.execute(
                "UPDATE notes SET flds = ?, mod = ?, usn = ? WHERE id = ?",
                (note.raw_flds, note.mod, note.usn, note.id),
            )
            affected = cur.rowcount
        if affected == 0:
            raise _not_found(Code.NOTE_NOT_FOUND, note.id)

    def list_note_ids_by_deck(self, deck_id: int) -> list[int]:
        with self._db.cursor() as cur:
            rows = cur.execute(
                "SELECT DISTINCT nid FROM cards WHERE did = ? ORDER BY nid", (deck_id,)
            ).fetchall()
        return [row[0] for row in rows]