"""Application services: deck, note and cleaner use cases over abstract ports."""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable, Iterable, Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Protocol

from . import errors
from .domain import (
    FIELD_SEPARATOR,
    ActionTemplate,
    BackupInfo,
    CleanerProgress,
    Deck,
    DeckNameConflictError,
    DeckSearchEmptyError,
    DiffRecord,
    DryRunSummary,
    FilterSet,
    Model,
    Note,
    NoteField,
    Pagination,
    join_field_values,
    map_fields,
    validate_deck_rename,
)
from .errors import Code
from .settings import Settings

CONFIRM_APPLY_CHANGES_PROMPT = "Apply changes to database?"
DEFAULT_KEEP_LAST_N = 3
WRITE_BATCH_SIZE = 1000


class BackupStoreProtocol(Protocol):
    def create_backup(self, db_path: str, now: datetime) -> BackupInfo: ...

    def cleanup_backups(self, db_path: str, keep_last_n: int) -> None: ...


class ConfirmPrompter(Protocol):
    def confirm(self, prompt: str) -> bool: ...


class DeckRepository(Protocol):
    def list_decks(self) -> list[Deck]: ...

    def search_decks(self, search: str) -> list[Deck]: ...

    def deck_exists(self, deck_id: int) -> bool: ...

    def deck_name_exists(self, name: str, exclude_id: int) -> bool: ...

    def rename_deck(self, deck_id: int, name: str) -> None: ...


class NoteRepository(Protocol):
    def list_notes(self, filters: FilterSet, page: Pagination) -> list[Note]: ...

    def count_notes(self, filters: FilterSet) -> int: ...

    def get_note(self, note_id: int) -> Note: ...

    def update_note(self, note: Note) -> None: ...

    def list_note_ids_by_deck(self, deck_id: int) -> list[int]: ...


class ModelRepository(Protocol):
    def get_model_by_id(self, model_id: int) -> Model: ...


class TemplateProvider(Protocol):
    def get(self, template_id: str) -> ActionTemplate: ...

    def default(self) -> ActionTemplate: ...


class TransactionManager(Protocol):
    def with_tx(self, fn: Callable[[], None]) -> None: ...


class DiffRendererProtocol(Protocol):
    def render(self, records: Sequence[DiffRecord], summary: DryRunSummary, full: bool) -> str: ...


class ReportWriter(Protocol):
    def write_report(self, path: str, records: Sequence[DiffRecord], summary: DryRunSummary) -> None: ...


@dataclass
class _ProcessedNote:
    note_id: int
    fields: list[NoteField] = field(default_factory=list)
    records: list[DiffRecord] = field(default_factory=list)


def _progress(total: int, stage: str, summary: DryRunSummary) -> CleanerProgress:
    return CleanerProgress(
        total=total,
        processed=summary.processed,
        changed=summary.changed,
        skipped=summary.skipped,
        errors=summary.errors,
        stage=stage,
        summary=replace(summary),
    )


@dataclass
class Services:
    """Use cases of the editor, wired to repositories and helpers."""

    cfg: Settings = field(default_factory=Settings)
    # When set, returns the current settings (the database path may change at runtime).
    cfg_provider: Callable[[], Settings] | None = None
    decks: DeckRepository | None = None
    notes: NoteRepository | None = None
    models: ModelRepository | None = None
    backups: BackupStoreProtocol | None = None
    confirm: ConfirmPrompter | None = None
    diff: DiffRendererProtocol | None = None
    reports: ReportWriter | None = None
    tx: TransactionManager | None = None
    templates: TemplateProvider | None = None
    now: Callable[[], datetime] | None = None

    def current_cfg(self) -> Settings:
        """The effective settings, preferring the provider when one is set."""
        if self.cfg_provider is not None:
            return self.cfg_provider()
        return self.cfg

    def _now(self) -> datetime:
        if self.now is not None:
            return self.now()
        return datetime.now(timezone.utc)

    def ensure_backup(self, cfg: Settings) -> None:
        """Create the session backup of the database, then prune old ones."""
        if self.backups is None:
            return
        info = self.backups.create_backup(cfg.db_path, self._now())
        if info.path:
            try:
                self.cleanup_backups(cfg)
            except Exception:
                pass  # pruning is best effort

    def cleanup_backups(self, cfg: Settings) -> None:
        """Keep only the configured number of most recent backups."""
        if self.backups is None:
            return
        keep = cfg.backup_keep_last_n if cfg.backup_keep_last_n > 0 else DEFAULT_KEEP_LAST_N
        self.backups.cleanup_backups(cfg.db_path, keep)

    def list_decks(self) -> list[Deck]:
        return self.decks.list_decks()

    def search_decks(self, search: str) -> list[Deck]:
        search = search.strip()
        if not search:
            raise DeckSearchEmptyError()
        return self.decks.search_decks(search)

    def rename_deck(self, deck_id: int, new_name: str) -> None:
        """Rename a deck after validation; backs up before writing."""
        name = validate_deck_rename(new_name)
        if not self.decks.deck_exists(deck_id):
            raise errors.new(Code.DECK_NOT_FOUND)
        if self.decks.deck_name_exists(name, deck_id):
            raise DeckNameConflictError()
        self.ensure_backup(self.current_cfg())
        self.decks.rename_deck(deck_id, name)

    def list_notes(self, filters: FilterSet, page: Pagination) -> list[Note]:
        return self.notes.list_notes(filters, page)

    def count_notes(self, filters: FilterSet) -> int:
        """Total number of notes matching ``filters``, ignoring pagination."""
        return self.notes.count_notes(filters)

    def get_note(self, note_id: int) -> Note:
        """Load a note with its fields named after its model."""
        note = self.notes.get_note(note_id)
        model = self.models.get_model_by_id(note.model_id)
        fields = map_fields(note.raw_flds.split(FIELD_SEPARATOR), model)
        return replace(note, fields=fields)

    def update_note(self, note_id: int, fields: Sequence[NoteField]) -> None:
        """Replace a note's field values; backs up before writing."""
        self._update_note(note_id, fields, create_backup=True)

    def _update_note(self, note_id: int, fields: Sequence[NoteField], create_backup: bool) -> None:
        note = self.notes.get_note(note_id)
        model = self.models.get_model_by_id(note.model_id)
        values = join_field_values(fields)
        map_fields(values, model)
        if create_backup:
            self.ensure_backup(self.current_cfg())
        updated = replace(
            note,
            fields=list(fields),
            raw_flds=FIELD_SEPARATOR.join(values),
            mod=int(self._now().timestamp()),
            usn=-1,
        )
        self.notes.update_note(updated)

    def preview_cleaner(self, note_id: int, template_id: str = "") -> list[DiffRecord]:
        """Show what the template would change in one note, without writing."""
        template = self._template(template_id)
        note = self.get_note(note_id)
        records = []
        for f in note.fields:
            cleaned = template.apply(f.value)
            if cleaned != f.value:
                records.append(DiffRecord(note_id=note_id, field_name=f.name, before=f.value, after=cleaned))
        return records

    def run_cleaner(
        self,
        cfg: Settings,
        deck_id: int,
        dry_run: bool,
        template_id: str = "",
        progress: Callable[[CleanerProgress], None] | None = None,
    ) -> tuple[str, DryRunSummary]:
        """Apply a template to every note of a deck and return the rendered diff and summary.

        Progress events go to ``progress``; on failure the last event has stage
        "failed" and carries the summary so far.
        """

        def report(event: CleanerProgress) -> None:
            if progress is not None:
                progress(event)

        template = self._template(template_id)
        note_ids = list(self.notes.list_note_ids_by_deck(deck_id))
        total = len(note_ids)
        report(CleanerProgress(total=total, stage="started"))
        if not dry_run and not cfg.force_apply:
            if self.confirm is None or not self.confirm.confirm(CONFIRM_APPLY_CHANGES_PROMPT):
                raise errors.new(Code.OPERATION_CANCELLED)

        workers = max(cfg.workers, 1)
        failures: list[Exception] = []
        records: list[DiffRecord] = []
        to_write: list[_ProcessedNote] = []
        summary = DryRunSummary()
        for result in self._transform_all(note_ids, template, workers, failures):
            summary.processed += 1
            if result.records:
                summary.changed += 1
                records.extend(result.records)
                to_write.append(result)
            else:
                summary.skipped += 1
            report(_progress(total, "transforming", summary))
        report(_progress(total, "transformed" if summary.processed == total else "transforming", summary))
        if failures:
            summary.errors += 1
            report(_progress(total, "failed", summary))
            raise failures[0]

        if not dry_run:
            report(_progress(total, "writing", summary))
            try:
                self.ensure_backup(cfg)
                # One transaction per batch; committed batches survive a later failure.
                for start in range(0, len(to_write), WRITE_BATCH_SIZE):
                    batch = to_write[start : start + WRITE_BATCH_SIZE]
                    self.tx.with_tx(lambda batch=batch: self._write_batch(batch))
            except Exception:
                report(_progress(total, "failed", summary))
                raise

        if cfg.report_file and self.reports is not None:
            try:
                self.reports.write_report(cfg.report_file, records, summary)
            except Exception as exc:
                report(_progress(total, "failed", summary))
                raise errors.wrap(Code.REPORT_WRITE_FAILED, "failed to write report", exc) from exc
        report(_progress(total, "finished", summary))
        return self.diff.render(records, summary, cfg.full_diff), summary

    def _write_batch(self, batch: Iterable[_ProcessedNote]) -> None:
        for item in batch:
            self._update_note(item.note_id, item.fields, create_backup=False)

    def _clean_note(self, note_id: int, template: ActionTemplate) -> _ProcessedNote:
        note = self.get_note(note_id)
        next_fields = []
        diffs = []
        for f in note.fields:
            cleaned = template.apply(f.value)
            next_fields.append(NoteField(name=f.name, value=cleaned))
            if cleaned != f.value:
                diffs.append(DiffRecord(note_id=note.id, field_name=f.name, before=f.value, after=cleaned))
        if not diffs:
            return _ProcessedNote(note_id=note_id)
        return _ProcessedNote(note_id=note_id, fields=next_fields, records=diffs)

    def _transform_all(
        self,
        note_ids: Sequence[int],
        template: ActionTemplate,
        workers: int,
        failures: list[Exception],
    ) -> Iterator[_ProcessedNote]:
        """Clean notes in parallel, yielding results; the first failure stops the rest."""
        stop = threading.Event()
        lock = threading.Lock()

        def task(note_id: int) -> _ProcessedNote | None:
            if stop.is_set():
                return None
            try:
                return self._clean_note(note_id, template)
            except Exception as exc:
                with lock:
                    if not failures:
                        failures.append(exc)
                stop.set()
                return None

        window = max(workers * 4, 1)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            pending: deque = deque()
            for note_id in note_ids:
                if stop.is_set():
                    break
                pending.append(pool.submit(task, note_id))
                while len(pending) >= window:
                    result = pending.popleft().result()
                    if result is not None:
                        yield result
            while pending:
                result = pending.popleft().result()
                if result is not None:
                    yield result

    def _template(self, template_id: str) -> ActionTemplate:
        if self.templates is None:
            raise errors.new(Code.TEMPLATE_NOT_FOUND)
        template_id = (template_id or "").strip()
        try:
            if not template_id:
                return self.templates.default()
            return self.templates.get(template_id)
        except Exception as exc:
            raise errors.wrap(Code.TEMPLATE_NOT_FOUND, "action template not found", exc) from exc