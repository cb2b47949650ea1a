from dataclasses import replace
from datetime import datetime, timezone

import pytest

from ankiced.domain import (
    DEFAULT_ACTION_TEMPLATE_ID,
    BackupInfo,
    Deck,
    DeckNameConflictError,
    DeckSearchEmptyError,
    EmptyDeckNameError,
    FieldCountInvalidError,
    Model,
    Note,
    NoteField,
)
from ankiced.errors import AppError, Code, has_code
from ankiced.services import Services
from ankiced.settings import Settings


class StubDeckRepo:
    def __init__(self, name_exists=False, missing=False):
        self.name_exists = name_exists
        self.missing = missing
        self.renamed = ""
        self.search = ""

    def list_decks(self):
        return []

    def search_decks(self, search):
        self.search = search
        return [Deck(id=1, name="Default", card_count=2)]

    def deck_exists(self, deck_id):
        return not self.missing

    def deck_name_exists(self, name, exclude_id):
        return self.name_exists

    def rename_deck(self, deck_id, name):
        self.renamed = name


class StubNoteRepo:
    def __init__(self, note, note_ids=(), get_err_id=0):
        self.note = note
        self.note_ids = list(note_ids)
        self.get_err_id = get_err_id
        self.updated = []

    def list_notes(self, filters, page):
        return []

    def count_notes(self, filters):
        return 0

    def get_note(self, note_id):
        if self.get_err_id and self.get_err_id == note_id:
            raise RuntimeError("boom")
        return replace(self.note)

    def update_note(self, note):
        self.updated.append(note)

    def list_note_ids_by_deck(self, deck_id):
        return self.note_ids


class StubModelRepo:
    def __init__(self, model):
        self.model = model

    def get_model_by_id(self, model_id):
        return self.model


class StubConfirm:
    def __init__(self, ok):
        self.ok = ok
        self.prompts = []

    def confirm(self, prompt):
        self.prompts.append(prompt)
        return self.ok


class StubDiff:
    def render(self, records, summary, full):
        return "diff" if records else ""


class StubTx:
    def __init__(self):
        self.calls = 0

    def with_tx(self, fn):
        self.calls += 1
        fn()


class StubBackupStore:
    def __init__(self):
        self.created = 0
        self.db_path = ""
        self.cleanup_calls = []

    def create_backup(self, db_path, now):
        self.created += 1
        self.db_path = db_path
        return BackupInfo(path=db_path + ".bak", created_at=now)

    def cleanup_backups(self, db_path, keep_last_n):
        self.cleanup_calls.append((db_path, keep_last_n))


class StubTemplate:
    def __init__(self, fn):
        self._fn = fn

    @property
    def id(self):
        return DEFAULT_ACTION_TEMPLATE_ID

    @property
    def name(self):
        return "Stub Template"

    def apply(self, value):
        return self._fn(value)


class StubTemplateRegistry:
    def __init__(self, template):
        self.template = template
        self.got_id = ""

    def get(self, template_id):
        self.got_id = template_id
        return self.template

    def default(self):
        return self.template


class FailingRegistry:
    def get(self, template_id):
        raise LookupError(f"action template not found: {template_id}")

    def default(self):
        raise LookupError("no default")


class FailingReports:
    def write_report(self, path, records, summary):
        raise OSError("disk full")


def templates(fn):
    return StubTemplateRegistry(StubTemplate(fn))


FIXED_NOW = datetime.fromtimestamp(123, tz=timezone.utc)
TWO_FIELDS = Model(id=5, field_names=["Front", "Back"])


def cleaner_services(notes, backups=None, registry=None, confirm=None, reports=None):
    return Services(
        notes=notes,
        models=StubModelRepo(TWO_FIELDS),
        confirm=confirm or StubConfirm(True),
        diff=StubDiff(),
        backups=backups,
        reports=reports,
        tx=StubTx(),
        templates=registry or templates(lambda v: "clean:" + v),
        now=lambda: FIXED_NOW,
    )


def dirty_notes(note_ids=(1,)):
    return StubNoteRepo(Note(id=1, model_id=5, raw_flds="<u>a</u>\x1fb"), note_ids=note_ids)


def test_rename_deck_conflict():
    backups = StubBackupStore()
    svc = Services(decks=StubDeckRepo(name_exists=True), backups=backups)
    with pytest.raises(DeckNameConflictError):
        svc.rename_deck(1, "New")
    assert backups.created == 0


def test_rename_deck_missing_deck_does_not_create_backup():
    decks = StubDeckRepo(missing=True)
    backups = StubBackupStore()
    svc = Services(decks=decks, backups=backups)
    with pytest.raises(AppError) as info:
        svc.rename_deck(404, "New")
    assert has_code(info.value, Code.DECK_NOT_FOUND)
    assert backups.created == 0
    assert decks.renamed == ""


def test_rename_deck_creates_backup_before_write():
    decks = StubDeckRepo()
    backups = StubBackupStore()
    svc = Services(cfg=Settings(db_path="collection.anki2"), decks=decks, backups=backups)
    svc.rename_deck(1, "  New  ")
    assert backups.created == 1
    assert backups.db_path == "collection.anki2"
    assert decks.renamed == "New"


def test_rename_deck_rejects_empty_name():
    decks = StubDeckRepo()
    svc = Services(decks=decks)
    with pytest.raises(EmptyDeckNameError):
        svc.rename_deck(1, "   ")
    assert decks.renamed == ""


def test_rename_deck_uses_cfg_provider_path():
    backups = StubBackupStore()
    svc = Services(
        cfg=Settings(db_path="old.anki2"),
        cfg_provider=lambda: Settings(db_path="new.anki2"),
        decks=StubDeckRepo(),
        backups=backups,
    )
    svc.rename_deck(1, "Deck")
    assert backups.db_path == "new.anki2"
    assert svc.current_cfg().db_path == "new.anki2"


def test_search_decks_rejects_empty_query():
    svc = Services(decks=StubDeckRepo())
    with pytest.raises(DeckSearchEmptyError):
        svc.search_decks("   ")


def test_search_decks_trims_query():
    decks = StubDeckRepo()
    svc = Services(decks=decks)
    result = svc.search_decks("  def  ")
    assert decks.search == "def"
    assert result == [Deck(id=1, name="Default", card_count=2)]


def test_get_note_maps_fields():
    notes = StubNoteRepo(Note(id=10, model_id=5, raw_flds="q\x1fa"))
    svc = Services(notes=notes, models=StubModelRepo(TWO_FIELDS))
    note = svc.get_note(10)
    assert note.fields == [NoteField("Front", "q"), NoteField("Back", "a")]


def test_get_note_rejects_field_count_mismatch():
    notes = StubNoteRepo(Note(id=10, model_id=5, raw_flds="only"))
    svc = Services(notes=notes, models=StubModelRepo(TWO_FIELDS))
    with pytest.raises(FieldCountInvalidError):
        svc.get_note(10)


def test_update_note_sets_mod_and_usn():
    notes = StubNoteRepo(Note(id=10, raw_flds="a\x1fb", usn=0))
    svc = Services(
        notes=notes,
        models=StubModelRepo(Model(id=0, field_names=["Front", "Back"])),
        now=lambda: FIXED_NOW,
    )
    svc.update_note(10, [NoteField("Front", "x"), NoteField("Back", "y")])
    updated = notes.updated[-1]
    assert updated.usn == -1
    assert updated.mod == 123
    assert updated.raw_flds == "x\x1fy"


def test_update_note_creates_backup_before_write():
    notes = StubNoteRepo(Note(id=10, model_id=5, raw_flds="a\x1fb"))
    backups = StubBackupStore()
    svc = Services(
        cfg=Settings(db_path="collection.anki2"),
        notes=notes,
        models=StubModelRepo(TWO_FIELDS),
        backups=backups,
        now=lambda: FIXED_NOW,
    )
    svc.update_note(10, [NoteField("Front", "x"), NoteField("Back", "y")])
    assert backups.created == 1
    assert backups.db_path == "collection.anki2"


def test_update_note_rejects_field_count_mismatch():
    notes = StubNoteRepo(Note(id=10, model_id=5, raw_flds="a\x1fb"))
    svc = Services(notes=notes, models=StubModelRepo(TWO_FIELDS), now=lambda: FIXED_NOW)
    with pytest.raises(FieldCountInvalidError):
        svc.update_note(10, [NoteField("Front", "x")])
    assert notes.updated == []


def test_cleanup_backups_defaults_keep_to_three():
    backups = StubBackupStore()
    svc = Services(backups=backups)
    svc.cleanup_backups(Settings(db_path="c.anki2", backup_keep_last_n=0))
    svc.cleanup_backups(Settings(db_path="c.anki2", backup_keep_last_n=7))
    assert backups.cleanup_calls == [("c.anki2", 3), ("c.anki2", 7)]


def test_preview_cleaner_lists_changed_fields():
    svc = cleaner_services(dirty_notes(), registry=templates(lambda v: v.replace("<u>", "").replace("</u>", "")))
    records = svc.preview_cleaner(1, "")
    assert len(records) == 1
    assert (records[0].field_name, records[0].before, records[0].after) == ("Front", "<u>a</u>", "a")


def test_run_cleaner_dry_run_summary():
    svc = cleaner_services(dirty_notes())
    out, summary = svc.run_cleaner(Settings(workers=1, force_apply=True), 1, True, "", None)
    assert out == "diff"
    assert summary.processed == 1
    assert summary.changed == 1


def test_run_cleaner_uses_selected_template_id():
    registry = templates(lambda v: "clean:" + v)
    svc = cleaner_services(dirty_notes(), registry=registry)
    svc.run_cleaner(Settings(workers=1, force_apply=True), 1, True, "custom_template", None)
    assert registry.got_id == "custom_template"


def test_run_cleaner_reports_progress():
    svc = cleaner_services(dirty_notes())
    events = []
    svc.run_cleaner(Settings(workers=1, force_apply=True), 1, True, "", events.append)
    assert events[0].stage == "started"
    last = events[-1]
    assert last.stage == "finished"
    assert (last.total, last.processed, last.changed) == (1, 1, 1)


def test_run_cleaner_dry_run_does_not_create_backup():
    backups = StubBackupStore()
    notes = dirty_notes()
    svc = cleaner_services(notes, backups=backups)
    svc.run_cleaner(Settings(db_path="collection.anki2", workers=1, force_apply=True), 1, True, "", None)
    assert backups.created == 0
    assert notes.updated == []


def test_run_cleaner_apply_creates_single_backup():
    backups = StubBackupStore()
    notes = dirty_notes()
    svc = cleaner_services(notes, backups=backups)
    svc.run_cleaner(Settings(db_path="collection.anki2", workers=1, force_apply=True), 1, False, "", None)
    assert backups.created == 1
    assert backups.db_path == "collection.anki2"
    assert len(notes.updated) == 1
    assert notes.updated[0].raw_flds == "clean:<u>a</u>\x1fclean:b"
    assert notes.updated[0].usn == -1


def test_run_cleaner_fail_fast_on_worker_error():
    notes = StubNoteRepo(Note(id=1, model_id=5, raw_flds="a\x1fb"), note_ids=[1, 2], get_err_id=2)
    svc = cleaner_services(notes, registry=templates(lambda v: v + "!"))
    events = []
    with pytest.raises(RuntimeError, match="boom"):
        svc.run_cleaner(Settings(workers=2, force_apply=True), 1, True, "", events.append)
    assert events[-1].stage == "failed"
    assert events[-1].errors == 1
    assert events[-1].summary.errors == 1


def test_run_cleaner_declined_confirmation_cancels():
    notes = dirty_notes()
    confirm = StubConfirm(False)
    svc = cleaner_services(notes, confirm=confirm)
    with pytest.raises(AppError) as info:
        svc.run_cleaner(Settings(workers=1), 1, False, "", None)
    assert info.value.code == Code.OPERATION_CANCELLED
    assert confirm.prompts == ["Apply changes to database?"]
    assert notes.updated == []


def test_run_cleaner_without_templates_raises_template_not_found():
    svc = cleaner_services(dirty_notes())
    svc.templates = None
    with pytest.raises(AppError) as info:
        svc.run_cleaner(Settings(workers=1, force_apply=True), 1, True, "", None)
    assert info.value.code == Code.TEMPLATE_NOT_FOUND


def test_run_cleaner_unknown_template_is_wrapped():
    svc = cleaner_services(dirty_notes(), registry=FailingRegistry())
    with pytest.raises(AppError) as info:
        svc.run_cleaner(Settings(workers=1, force_apply=True), 1, True, "missing", None)
    assert info.value.code == Code.TEMPLATE_NOT_FOUND
    assert str(info.value) == "action template not found: action template not found: missing"


def test_run_cleaner_report_failure_is_wrapped():
    svc = cleaner_services(dirty_notes(), reports=FailingReports())
    events = []
    with pytest.raises(AppError) as info:
        svc.run_cleaner(
            Settings(workers=1, force_apply=True, report_file="report.json"), 1, True, "", events.append
        )
    assert has_code(info.value, Code.REPORT_WRITE_FAILED)
    assert "disk full" in str(info.value)
    assert events[-1].stage == "failed"


def test_run_cleaner_unchanged_notes_are_skipped():
    notes = StubNoteRepo(Note(id=1, model_id=5, raw_flds="a\x1fb"), note_ids=[1, 2, 3])
    svc = cleaner_services(notes, registry=templates(lambda v: v))
    out, summary = svc.run_cleaner(Settings(workers=3, force_apply=True), 1, False, "", None)
    assert out == ""
    assert (summary.processed, summary.changed, summary.skipped) == (3, 0, 3)
    assert notes.updated == []