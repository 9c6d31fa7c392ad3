"""Unit tests for regatta_check.shared: counters, reject writer, error wrapping."""

from __future__ import annotations

import csv
import json
from unittest.mock import MagicMock

import psycopg
import pytest

from regatta_check.shared import (
    ANY_CLASS,
    RejectWriter,
    RunCounters,
    StorageError,
    atomic,
    is_any_class,
    storage_guard,
    write_run_report,
)


# ---------------------------------------------------------------------------
# RunCounters
# ---------------------------------------------------------------------------

class TestRunCounters:
    def test_defaults(self):
        ctrs = RunCounters()
        assert ctrs.files_read == 0
        assert ctrs.rows_read == 0
        assert ctrs.rows_rejected == 0
        assert ctrs.roster_entries_loaded == 0
        assert ctrs.duplicate_keys_collapsed == 0
        assert ctrs.dollies_created == 0
        assert ctrs.warnings == []

    def test_to_dict_keys(self):
        d = RunCounters(rows_read=10, rows_rejected=2).to_dict()
        assert d["rows_read"] == 10
        assert d["rows_rejected"] == 2
        assert "warnings" in d

    def test_warnings_truncated_to_50(self):
        ctrs = RunCounters(warnings=[f"w{i}" for i in range(100)])
        assert len(ctrs.to_dict()["warnings"]) == 50


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class TestRejectWriter:
    def test_lazy_open(self, tmp_path):
        path = tmp_path / "sub" / "rejects.csv"
        w = RejectWriter(path)
        w.close()
        assert not path.exists()

    def test_writes_reason_column(self, tmp_path):
        path = tmp_path / "rejects.csv"
        w = RejectWriter(path)
        w.write({"sail": "", "crew": "A"}, "missing_sail")
        w.close()
        with path.open(newline="", encoding="utf-8") as fh:
            rows = list(csv.DictReader(fh))
        assert rows == [{"sail": "", "crew": "A", "_reject_reason": "missing_sail"}]
        assert w.count == 1


# ---------------------------------------------------------------------------
# write_run_report
# ---------------------------------------------------------------------------

class TestWriteRunReport:
    def test_report_written(self, tmp_path):
        path = write_run_report(
            "run-1", "2026-06-01T00:00:00", "load_roster", False,
            {"manifest": None}, RunCounters(rows_read=3), reports_dir=tmp_path,
        )
        assert path == tmp_path / "run-1.json"
        report = json.loads(path.read_text())
        assert report["mode"] == "load_roster"
        assert report["counters"]["rows_read"] == 3
        assert report["manifest"] is None


# ---------------------------------------------------------------------------
# Error wrapping
# ---------------------------------------------------------------------------

class TestStorageGuard:
    def test_psycopg_error_becomes_storage_error(self):
        with pytest.raises(StorageError, match="list_all failed") as exc_info:
            with storage_guard("list_all"):
                raise psycopg.OperationalError("connection lost")
        assert isinstance(exc_info.value.__cause__, psycopg.OperationalError)

    def test_other_errors_pass_through(self):
        with pytest.raises(KeyError):
            with storage_guard("list_all"):
                raise KeyError("x")

    def test_atomic_wraps_transaction_errors(self):
        conn = MagicMock()
        conn.transaction.return_value.__enter__.side_effect = psycopg.OperationalError("boom")
        with pytest.raises(StorageError, match="replace_all failed"):
            with atomic(conn, "replace_all"):
                pass


class TestIsAnyClass:
    def test_sentinel(self):
        assert is_any_class(ANY_CLASS)

    def test_none(self):
        assert is_any_class(None)

    def test_specific_class(self):
        assert not is_any_class("ILCA 6")
