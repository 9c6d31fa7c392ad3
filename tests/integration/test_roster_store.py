"""Integration tests for the roster store and metadata register."""

from __future__ import annotations

import pytest

from regatta_check.meta import STATE_NO_ROSTER, STATE_READY, read_meta, roster_state
from regatta_check.roster import (
    RosterRow,
    count_entries,
    find_all_by_sail,
    find_by_identity,
    is_ready,
    list_classes,
    list_entries,
    replace_all,
)
from regatta_check.shared import ANY_CLASS, StorageError, ValidationError


# ---------------------------------------------------------------------------
# Readiness
# ---------------------------------------------------------------------------

class TestReadiness:
    def test_empty_store_not_ready(self, db_conn):
        conn, _ = db_conn
        assert is_ready(conn) is False
        assert list_classes(conn) == []
        assert read_meta(conn) is None
        assert roster_state(conn) == STATE_NO_ROSTER

    def test_replace_sets_meta(self, db_conn, two_class_rows):
        conn, _ = db_conn
        result = replace_all(conn, two_class_rows)

        assert is_ready(conn) is True
        assert roster_state(conn) == STATE_READY
        assert list_classes(conn) == ["ILCA 6", "ILCA 7"]
        meta = read_meta(conn)
        assert meta.row_count == 4
        assert meta.roster_loaded_at is not None
        assert result.meta.classes == ["ILCA 6", "ILCA 7"]
        assert result.duplicate_keys_collapsed == 0

    def test_classes_sorted_and_distinct(self, db_conn):
        conn, _ = db_conn
        replace_all(conn, [
            RosterRow("Optimist", None, "1", 1, "A", None),
            RosterRow("ILCA 7", None, "2", 2, "B", None),
            RosterRow("Optimist", None, "3", 3, "C", None),
        ])
        assert list_classes(conn) == ["ILCA 7", "Optimist"]


# ---------------------------------------------------------------------------
# Wholesale replacement
# ---------------------------------------------------------------------------

class TestReplaceAll:
    def test_second_load_replaces_every_class(self, db_conn, two_class_rows):
        conn, _ = db_conn
        replace_all(conn, two_class_rows)
        replace_all(conn, [RosterRow("Optimist", "NZL", "NZL 42", 5, "E. Sailor", None)])

        assert list_classes(conn) == ["Optimist"]
        assert count_entries(conn) == 1
        assert find_by_identity(conn, "ILCA 6", "214567") is None

    def test_duplicate_keys_last_row_wins(self, db_conn):
        conn, _ = db_conn
        result = replace_all(conn, [
            RosterRow("ILCA 6", "USA", "USA 214567", 12, "First", None),
            RosterRow("ILCA 6", "USA", "214567", 99, "Second", None),
        ])
        assert result.duplicate_keys_collapsed == 1
        assert result.meta.row_count == 1
        entry = find_by_identity(conn, "ILCA 6", "214567")
        assert entry.crew == "Second"
        assert entry.bow == 99

    def test_empty_rows_keep_previous_roster(self, db_conn, two_class_rows):
        conn, _ = db_conn
        replace_all(conn, two_class_rows)
        with pytest.raises(ValidationError):
            replace_all(conn, [])
        assert count_entries(conn) == 4
        assert list_classes(conn) == ["ILCA 6", "ILCA 7"]

    def test_failed_write_keeps_previous_roster_and_meta(self, db_conn, two_class_rows):
        conn, _ = db_conn
        replace_all(conn, two_class_rows)
        before = read_meta(conn)

        bad = [
            RosterRow("Optimist", None, "1", 1, "A", None),
            RosterRow("Optimist", None, "2", 2, None, None),  # crew NOT NULL
        ]
        with pytest.raises(StorageError):
            replace_all(conn, bad)

        assert count_entries(conn) == 4
        assert read_meta(conn) == before
        assert find_by_identity(conn, "ILCA 6", "USA 214567") is not None

    def test_failed_first_load_leaves_not_ready(self, db_conn):
        conn, _ = db_conn
        with pytest.raises(StorageError):
            replace_all(conn, [RosterRow("Optimist", None, "1", 1, None, None)])
        assert is_ready(conn) is False
        assert count_entries(conn) == 0

    def test_accepts_plain_mappings(self, db_conn):
        conn, _ = db_conn
        replace_all(conn, [{
            "class_name": "ILCA 6", "country": "USA", "sail": "USA 214567",
            "bow": 12, "crew": "A. Sailor", "club": "Club X",
        }])
        assert find_by_identity(conn, "ILCA 6", "214567").crew == "A. Sailor"


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------

class TestFindByIdentity:
    def test_ilca6_example(self, db_conn, ilca6_row):
        conn, _ = db_conn
        replace_all(conn, [ilca6_row])
        entry = find_by_identity(conn, "ILCA 6", "214567")
        assert entry is not None
        assert entry.class_name == "ILCA 6"
        assert entry.country == "USA"
        assert entry.sail == "USA 214567"
        assert entry.bow == 12
        assert entry.crew == "A. Sailor"
        assert entry.club == "Club X"
        assert entry.sail_norm == "214567"

    @pytest.mark.parametrize("raw", ["usa214567", " USA-214567 ", "214567"])
    def test_raw_variants_match(self, db_conn, ilca6_row, raw):
        conn, _ = db_conn
        replace_all(conn, [ilca6_row])
        assert find_by_identity(conn, "ILCA 6", raw) is not None

    def test_wrong_class_not_found(self, db_conn, two_class_rows):
        conn, _ = db_conn
        replace_all(conn, two_class_rows)
        assert find_by_identity(conn, "ILCA 7", "214567") is None

    def test_any_class(self, db_conn, two_class_rows):
        conn, _ = db_conn
        replace_all(conn, two_class_rows)
        assert find_by_identity(conn, ANY_CLASS, "kiwi").class_name == "ILCA 7"
        assert find_by_identity(conn, None, "555").crew == "C. Sailor"

    def test_miss_returns_none(self, db_conn, two_class_rows):
        conn, _ = db_conn
        replace_all(conn, two_class_rows)
        assert find_by_identity(conn, ANY_CLASS, "000") is None
        assert find_by_identity(conn, ANY_CLASS, "") is None

    def test_any_class_ambiguity_first_by_key(self, db_conn):
        conn, _ = db_conn
        replace_all(conn, [
            RosterRow("Optimist", None, "7", 1, "Opti", None),
            RosterRow("ILCA 6", None, "7", 2, "Laser", None),
        ])
        assert find_by_identity(conn, ANY_CLASS, "7").class_name == "ILCA 6"
        matches = find_all_by_sail(conn, "7")
        assert [m.class_name for m in matches] == ["ILCA 6", "Optimist"]

    def test_find_all_by_sail_empty(self, db_conn):
        conn, _ = db_conn
        assert find_all_by_sail(conn, "") == []


class TestListEntries:
    def test_filtered_and_ordered_by_bow(self, db_conn, two_class_rows):
        conn, _ = db_conn
        replace_all(conn, two_class_rows)
        assert [e.bow for e in list_entries(conn, "ILCA 6")] == [12, 13]
        assert len(list_entries(conn)) == 4
