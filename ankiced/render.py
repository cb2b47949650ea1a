"""Text diff rendering and JSON report output for cleaner runs."""

from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Iterable

from .domain import DiffRecord, DryRunSummary

CLIP_SIZE = 120

_JSON_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def clip(value: str, size: int) -> str:
    """Shorten ``value`` to ``size`` characters, adding "..." when cut."""
    if size <= 0:
        return ""
    if len(value) <= size:
        return value
    return value[:size] + "..."


class DiffRenderer:
    """Renders diff records and a summary as plain text."""

    def render(self, records: Iterable[DiffRecord], summary: DryRunSummary, full: bool) -> str:
        parts = []
        for r in records:
            before, after = r.before, r.after
            if not full:
                before, after = clip(before, CLIP_SIZE), clip(after, CLIP_SIZE)
            parts.append(f"note={r.note_id} field={r.field_name}\n- {before}\n+ {after}\n\n")
        parts.append(
            f"summary: processed={summary.processed} changed={summary.changed} "
            f"skipped={summary.skipped} errors={summary.errors}\n"
        )
        return "".join(parts)


class JSONReportWriter:
    """Writes diff records and a summary to a JSON file."""

    def write_report(
        self,
        path: str | Path,
        records: Iterable[DiffRecord] | None,
        summary: DryRunSummary,
    ) -> None:
        payload = {
            "records": None if records is None else [asdict(r) for r in records],
            "summary": asdict(summary),
        }
        text = json.dumps(payload, indent=2, ensure_ascii=False)
        for char, escaped in _JSON_HTML_ESCAPES.items():
            text = text.replace(char, escaped)
        Path(path).write_text(text, encoding="utf-8")