"""Resolve note models (field names) from the several Anki schema generations."""

from __future__ import annotations

import json
import sqlite3
from typing import Any

from . import errors
from .database import Database
from .domain import Model
from .errors import AppError, Code


def _model_not_found() -> AppError:
    return errors.new(Code.MODEL_NOT_FOUND)


def _is_missing_table(exc: sqlite3.Error) -> bool:
    return "no such table" in str(exc).lower()


def _field_names_from(value: Any) -> list[str]:
    """Extract the ``name`` of every entry of a decoded fields array."""
    if value is None:
        raise ValueError("no fields found")
    if not isinstance(value, list):
        raise ValueError(f"fields JSON must be an array, not {type(value).__name__}")
    names: list[str] = []
    for entry in value:
        if entry is None:
            names.append("")
            continue
        if not isinstance(entry, dict):
            raise ValueError(f"field entry must be an object, not {type(entry).__name__}")
        name = entry.get("name")
        if name is None:
            names.append("")
        elif isinstance(name, str):
            names.append(name)
        else:
            raise ValueError(f"field name must be a string, not {type(name).__name__}")
    if not names:
        raise ValueError("no fields found")
    return names


def parse_field_names(fields_json: str | None) -> list[str]:
    """Return the field names from a JSON array of ``{"name": ...}`` objects."""
    if fields_json is None or not fields_json.strip():
        raise ValueError("empty fields JSON")
    return _field_names_from(json.loads(fields_json))


class ModelRepo:
    """Looks up note models by id."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def get_model_by_id(self, model_id: int) -> Model:
        """Resolve a model from the ``fields`` table, then ``models``, then ``col.models``.

        Raises a MODEL_NOT_FOUND AppError when any lookup reported the model
        missing; otherwise the collected failures are raised together.
        """
        failures: list[Exception] = []
        for lookup in (self._from_fields_table, self._from_models_table, self._from_col):
            try:
                return lookup(model_id)
            except (AppError, ValueError, sqlite3.Error) as exc:
                failures.append(exc)
        if any(errors.has_code(exc, Code.MODEL_NOT_FOUND) for exc in failures):
            raise AppError(Code.MODEL_NOT_FOUND, f"{_model_not_found().message}: {model_id}")
        raise RuntimeError("\n".join(str(exc) for exc in failures)) from failures[0]

    def _from_fields_table(self, model_id: int) -> Model:
        try:
            with self._db.cursor() as cur:
                rows = cur.execute(
                    "SELECT name FROM fields WHERE ntid = ? ORDER BY ord", (model_id,)
                ).fetchall()
        except sqlite3.Error as exc:
            if _is_missing_table(exc):
                raise _model_not_found() from exc
            raise
        if not rows:
            raise _model_not_found()
        return Model(id=model_id, field_names=[row[0] for row in rows])

    def _from_models_table(self, model_id: int) -> Model:
        try:
            with self._db.cursor() as cur:
                row = cur.execute("SELECT flds FROM models WHERE id = ?", (model_id,)).fetchone()
        except sqlite3.Error as exc:
            if _is_missing_table(exc):
                raise _model_not_found() from exc
            raise
        if row is None:
            raise _model_not_found()
        try:
            names = parse_field_names(row[0])
        except ValueError as exc:
            raise ValueError(f"invalid models.flds JSON for model {model_id}: {exc}") from exc
        return Model(id=model_id, field_names=names)

    def _from_col(self, model_id: int) -> Model:
        try:
            with self._db.cursor() as cur:
                row = cur.execute("SELECT models FROM col LIMIT 1").fetchone()
        except sqlite3.Error as exc:
            if _is_missing_table(exc):
                raise _model_not_found() from exc
            raise
        if row is None:
            raise _model_not_found()
        models_json = row[0] or ""
        if not models_json.strip():
            raise _model_not_found()
        try:
            models = json.loads(models_json)
        except ValueError as exc:
            raise ValueError(f"invalid col.models JSON: {exc}") from exc
        if not isinstance(models, dict):
            raise ValueError("invalid col.models JSON: expected an object")
        key = str(model_id)
        if key not in models:
            raise _model_not_found()
        meta = models[key]
        if meta is not None and not isinstance(meta, dict):
            raise ValueError(f"invalid col.models entry for model {model_id}: expected an object")
        if meta is None or "flds" not in meta:
            raise ValueError(f"invalid col.models.flds for model {model_id}: empty fields JSON")
        try:
            names = _field_names_from(meta["flds"])
        except ValueError as exc:
            raise ValueError(f"invalid col.models.flds for model {model_id}: {exc}") from exc
        return Model(id=model_id, field_names=names)