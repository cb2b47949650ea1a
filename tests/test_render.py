import json

import pytest

from ankiced.domain import DiffRecord, DryRunSummary
from ankiced.render import DiffRenderer, JSONReportWriter, clip


def test_clip_under_limit_returns_as_is():
    assert clip("hello", 10) == "hello"


def test_clip_over_limit_truncates_and_appends_ellipsis():
    assert clip("a" * 130, 120) == "a" * 120 + "..."


def test_clip_counts_characters_not_bytes():
    got = clip("я" * 200, 50)
    assert got == "я" * 50 + "..."
    got.encode("utf-8").decode("utf-8")


def test_clip_non_positive_size_returns_empty():
    assert clip("anything", 0) == ""
    assert clip("anything", -5) == ""


def test_renderer_honours_full_flag():
    records = [DiffRecord(note_id=1, field_name="Front", before="a" * 200, after="b" * 200)]
    summary = DryRunSummary(processed=1, changed=1)

    clipped = DiffRenderer().render(records, summary, False)
    assert "a" * 120 + "..." in clipped
    assert "a" * 121 not in clipped

    full = DiffRenderer().render(records, summary, True)
    assert "a" * 200 in full
    assert "summary: processed=1 changed=1" in full


def test_renderer_with_multiple_records():
    records = [
        DiffRecord(note_id=1, field_name="Front", before="a", after="b"),
        DiffRecord(note_id=2, field_name="Back", before="c", after="d"),
    ]
    out = DiffRenderer().render(records, DryRunSummary(), True)
    for want in ("note=1", "note=2", "field=Front", "field=Back"):
        assert want in out


def test_renderer_exact_layout():
    records = [DiffRecord(note_id=3, field_name="F", before="x", after="y")]
    out = DiffRenderer().render(records, DryRunSummary(processed=1, changed=1), False)
    assert out == "note=3 field=F\n- x\n+ y\n\nsummary: processed=1 changed=1 skipped=0 errors=0\n"


def test_report_writer_writes_valid_payload(tmp_path):
    path = tmp_path / "report.json"
    records = [DiffRecord(note_id=7, field_name="F", before="x", after="y")]
    JSONReportWriter().write_report(path, records, DryRunSummary(processed=1, changed=1))

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert len(payload["records"]) == 1
    assert payload["records"][0]["note_id"] == 7
    assert payload["summary"]["processed"] == 1
    assert payload["summary"]["changed"] == 1


def test_report_writer_escapes_html_but_round_trips(tmp_path):
    path = tmp_path / "report.json"
    records = [DiffRecord(note_id=1, field_name="F", before="<b>R&D</b>", after="R&D")]
    JSONReportWriter().write_report(path, records, DryRunSummary())
    text = path.read_text(encoding="utf-8")
    assert "<" not in text
    assert json.loads(text)["records"][0]["before"] == "<b>R&D</b>"


def test_report_writer_fails_on_invalid_path(tmp_path):
    with pytest.raises(OSError):
        JSONReportWriter().write_report(tmp_path / "missing" / "deep" / "x.json", None, DryRunSummary())