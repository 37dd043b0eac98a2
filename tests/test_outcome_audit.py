"""Tests for the JSONL outcome audit trail."""

from datetime import UTC, datetime, timedelta

from sadis.monitor.audit import OutcomeAuditLog
from sadis.schemas.ingest import Downloaded, DownloadFailed, OutcomeRecord, SkippedDirectory


def _make_record(outcome, *, folder_id: str = "op", folder_name: str = "OPMET") -> OutcomeRecord:
    return OutcomeRecord(
        timestamp=datetime.now(UTC),
        folder_id=folder_id,
        folder_name=folder_name,
        outcome=outcome,
    )


class TestLogAndRead:
    def test_log_creates_file(self, tmp_path):
        path = tmp_path / "nested" / "outcomes.jsonl"
        audit = OutcomeAuditLog(path)
        audit.log(_make_record(Downloaded(name="a.dat", size=10)))
        assert path.exists()

    def test_roundtrip_keeps_variant(self, tmp_path):
        audit = OutcomeAuditLog(tmp_path / "outcomes.jsonl")
        audit.log(_make_record(DownloadFailed(name="b.dat", error="reset")))

        [record] = audit.read_entries()
        assert isinstance(record.outcome, DownloadFailed)
        assert record.outcome.error == "reset"

    def test_read_empty_returns_empty_list(self, tmp_path):
        assert OutcomeAuditLog(tmp_path / "outcomes.jsonl").read_entries() == []


class TestFiltering:
    def test_filter_by_since(self, tmp_path):
        audit = OutcomeAuditLog(tmp_path / "outcomes.jsonl")
        now = datetime.now(UTC)
        old = _make_record(Downloaded(name="old.dat"))
        old.timestamp = now - timedelta(seconds=10)
        audit.log(old)
        new = _make_record(Downloaded(name="new.dat"))
        new.timestamp = now
        audit.log(new)

        entries = audit.read_entries(since=now - timedelta(seconds=5))

        assert [e.outcome.name for e in entries] == ["new.dat"]

    def test_filter_by_folder_and_kind(self, tmp_path):
        audit = OutcomeAuditLog(tmp_path / "outcomes.jsonl")
        audit.log(_make_record(Downloaded(name="a")))
        audit.log(_make_record(SkippedDirectory(name="d")))
        audit.log(_make_record(Downloaded(name="s"), folder_id="sg", folder_name="SIGMET"))

        assert [e.outcome.name for e in audit.read_entries(folder_id="op")] == ["a", "d"]
        assert [e.outcome.name for e in audit.read_entries(kind="downloaded")] == ["a", "s"]

    def test_limit_keeps_newest(self, tmp_path):
        audit = OutcomeAuditLog(tmp_path / "outcomes.jsonl")
        for name in ["a", "b", "c"]:
            audit.log(_make_record(Downloaded(name=name)))
        assert [e.outcome.name for e in audit.read_entries(limit=2)] == ["b", "c"]
