"""Tests for training corpus export."""

import json
from datetime import timedelta

import pytest

from feedloop.errors import ExportIOFailure
from feedloop.export import CorpusExporter, ExportSelector
from feedloop.improvement import ImprovementLedger
from feedloop.schema import DEFAULT_PERSONA


def _seed(ledger, clock, rows):
    records = []
    for reply, gain, category in rows:
        records.append(
            ledger.append(
                source_failure_id=f"f-{reply}",
                original_prompt=f"prompt for {reply}",
                original_reply=reply,
                corrected_reply=f"better {reply}",
                score_gain_estimate=gain,
                failure_category=category,
            )
        )
        clock.advance(minutes=1)
    return records


@pytest.fixture
def ledger(db, clock):
    return ImprovementLedger(db, clock=clock)


@pytest.fixture
def exporter(db, clock, tmp_path):
    return CorpusExporter(db, tmp_path / "exports", clock=clock)


def _lines(path):
    return [json.loads(line) for line in path.read_text().splitlines()]


class TestCorpusExporter:
    def test_export_writes_chat_examples(self, ledger, exporter, clock):
        _seed(ledger, clock, [("a", 1.0, "tone"), ("b", 5.0, "empathy")])

        result = exporter.export_batch()

        assert result.example_count == 2
        assert result.path.exists()
        assert result.size_bytes == result.path.stat().st_size
        examples = _lines(result.path)
        assert [e["messages"][2]["content"] for e in examples] == ["better b", "better a"]
        first = examples[0]["messages"]
        assert first[0] == {"role": "system", "content": DEFAULT_PERSONA}
        assert first[1] == {"role": "user", "content": "prompt for b"}

    def test_batch_id_names_the_file(self, ledger, exporter, clock):
        _seed(ledger, clock, [("a", 1.0, "tone")])
        result = exporter.export_batch()
        assert result.batch_id.startswith("batch_20240304_")
        assert result.batch_id in result.path.name

    def test_exported_flag_and_no_reexport(self, ledger, exporter, clock):
        records = _seed(ledger, clock, [("a", 2.0, "tone")])
        first = exporter.export_batch()
        assert exporter.is_exported(records[0].id)
        assert all(e.exported for e in exporter.examples_for_batch(first.batch_id))

        second = exporter.export_batch()
        assert second.example_count == 0
        assert second.path is None

        again = exporter.export_batch(ExportSelector(include_exported=True))
        assert again.example_count == 1
        assert again.path != first.path

    def test_selector_filters(self, ledger, exporter, clock):
        start = clock.now
        _seed(ledger, clock, [("a", 1.0, "tone"), ("b", 3.0, "empathy"), ("c", 4.0, "tone")])

        by_gain = exporter.select(ExportSelector(min_score_gain=3.0))
        assert [r.original_reply for r in by_gain] == ["c", "b"]

        by_category = exporter.select(ExportSelector(categories=["tone"]))
        assert [r.original_reply for r in by_category] == ["c", "a"]

        window = exporter.select(
            ExportSelector(created_after=start + timedelta(minutes=1), created_before=start + timedelta(minutes=2))
        )
        assert [r.original_reply for r in window] == ["b"]

        assert len(exporter.select(ExportSelector(limit=1))) == 1

    def test_export_is_deterministic_for_same_state(self, ledger, db, clock, tmp_path):
        _seed(ledger, clock, [("a", 2.0, "tone"), ("b", 2.0, "tone"), ("c", 7.0, "accuracy")])
        selector = ExportSelector(include_exported=True)
        one = CorpusExporter(db, tmp_path / "one", clock=clock).export_batch(selector)
        two = CorpusExporter(db, tmp_path / "two", clock=clock).export_batch(selector)
        assert one.path.read_text() == two.path.read_text()

    def test_io_failure_marks_nothing_exported(self, ledger, db, clock, tmp_path):
        records = _seed(ledger, clock, [("a", 2.0, "tone")])
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("occupied")
        exporter = CorpusExporter(db, blocker / "exports", clock=clock)

        with pytest.raises(ExportIOFailure):
            exporter.export_batch()

        assert not exporter.is_exported(records[0].id)
        assert exporter.list_batches() == []
        with db.connect() as conn:
            assert conn.execute("SELECT COUNT(*) FROM training_examples").fetchone()[0] == 0

    def test_list_and_get_batches(self, ledger, exporter, clock):
        _seed(ledger, clock, [("a", 2.0, "tone")])
        result = exporter.export_batch()

        batches = exporter.list_batches()
        assert [b.batch_id for b in batches] == [result.batch_id]
        fetched = exporter.get_batch(result.batch_id)
        assert fetched.example_count == 1
        assert fetched.path == result.path
        assert exporter.get_batch("missing") is None

    def test_ledger_statistics_count_exports(self, ledger, exporter, clock):
        _seed(ledger, clock, [("a", 2.0, "tone"), ("b", 1.0, "tone")])
        exporter.export_batch(ExportSelector(min_score_gain=2.0))
        assert ledger.statistics().exported_count == 1
