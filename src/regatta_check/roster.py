"""regatta_check.roster

Roster Store: one entry per (class_name, normalized sail number).

Contract notes:
  - replace_all() is wholesale.  Loading a roster clears *every* class,
    not only the classes present in the new rows.  Operators upload the
    full set of class files together.
  - Within one batch a later row with the same key overwrites an earlier
    one; the number of collapsed duplicates is reported back.
  - A wildcard lookup (class ANY_CLASS or None) returns the first entry on
    the sail_norm index ordered by key.  Two classes sharing a sail number
    are therefore ambiguous; callers that care use find_all_by_sail().
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import psycopg

from regatta_check.meta import MetaRecord, read_meta, write_meta
from regatta_check.normalize import normalize_sail
from regatta_check.shared import (
    ValidationError,
    atomic,
    is_any_class,
    storage_guard,
)

log = logging.getLogger(__name__)

_ENTRY_COLUMNS = "id, class_name, country, sail, bow, crew, club, sail_norm"


@dataclass(frozen=True)
class RosterRow:
    """One parsed ingestion row, before normalization."""

    class_name: str
    country: str | None
    sail: str
    bow: int
    crew: str
    club: str | None


@dataclass(frozen=True)
class RosterEntry:
    id: str
    class_name: str
    country: str | None
    sail: str
    bow: int
    crew: str
    club: str | None
    sail_norm: str


@dataclass(frozen=True)
class ReplaceResult:
    meta: MetaRecord
    duplicate_keys_collapsed: int


def roster_key(class_name: str, sail_norm: str) -> str:
    return f"{class_name}::{sail_norm}"


def build_entry(row: RosterRow | Mapping[str, Any]) -> RosterEntry:
    """Derive the keyed entry for an ingestion row."""
    if isinstance(row, Mapping):
        row = RosterRow(
            class_name=row["class_name"],
            country=row.get("country"),
            sail=row["sail"],
            bow=row["bow"],
            crew=row["crew"],
            club=row.get("club"),
        )
    sail_norm = normalize_sail(row.sail)
    return RosterEntry(
        id=roster_key(row.class_name, sail_norm),
        class_name=row.class_name,
        country=row.country,
        sail=row.sail,
        bow=row.bow,
        crew=row.crew,
        club=row.club,
        sail_norm=sail_norm,
    )


def _row_to_entry(row: tuple) -> RosterEntry:
    return RosterEntry(
        id=row[0],
        class_name=row[1],
        country=row[2],
        sail=row[3],
        bow=row[4],
        crew=row[5],
        club=row[6],
        sail_norm=row[7],
    )


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def replace_all(
    conn: psycopg.Connection,
    rows: Iterable[RosterRow | Mapping[str, Any]],
) -> ReplaceResult:
    """Replace the entire roster and the metadata singleton atomically.

    Raises ValidationError when no rows are supplied and StorageError when
    any write fails; in both cases the previous roster stays in place.
    """
    entries: dict[str, RosterEntry] = {}
    supplied = 0
    for row in rows:
        entry = build_entry(row)
        entries[entry.id] = entry
        supplied += 1
    if not entries:
        raise ValidationError("no roster rows supplied; previous roster kept")

    with atomic(conn, "replace_all"):
        conn.execute("DELETE FROM roster_entry")
        with conn.cursor() as cur:
            cur.executemany(
                f"INSERT INTO roster_entry ({_ENTRY_COLUMNS}) "
                "VALUES (%s, %s, %s, %s, %s, %s, %s, %s)",
                [
                    (e.id, e.class_name, e.country, e.sail, e.bow, e.crew, e.club, e.sail_norm)
                    for e in entries.values()
                ],
            )
        meta = write_meta(
            conn,
            classes=(e.class_name for e in entries.values()),
            row_count=len(entries),
        )

    collapsed = supplied - len(entries)
    log.info(
        "Roster replaced: %d entries across %d classes (%d duplicate keys collapsed)",
        meta.row_count, len(meta.classes), collapsed,
    )
    return ReplaceResult(meta=meta, duplicate_keys_collapsed=collapsed)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def find_by_identity(
    conn: psycopg.Connection,
    class_or_any: str | None,
    raw_sail: str | None,
) -> RosterEntry | None:
    """Resolve a raw sail number to a roster entry, or None if absent."""
    sail_norm = normalize_sail(raw_sail)
    if not sail_norm:
        return None
    with storage_guard("find_by_identity"):
        if is_any_class(class_or_any):
            row = conn.execute(
                f"SELECT {_ENTRY_COLUMNS} FROM roster_entry "
                "WHERE sail_norm = %s ORDER BY id ASC LIMIT 1",
                (sail_norm,),
            ).fetchone()
        else:
            row = conn.execute(
                f"SELECT {_ENTRY_COLUMNS} FROM roster_entry WHERE id = %s",
                (roster_key(class_or_any, sail_norm),),
            ).fetchone()
    return _row_to_entry(row) if row else None


def find_all_by_sail(conn: psycopg.Connection, raw_sail: str | None) -> list[RosterEntry]:
    """Every entry sharing the normalized sail, across all classes."""
    sail_norm = normalize_sail(raw_sail)
    if not sail_norm:
        return []
    with storage_guard("find_all_by_sail"):
        rows = conn.execute(
            f"SELECT {_ENTRY_COLUMNS} FROM roster_entry WHERE sail_norm = %s ORDER BY id ASC",
            (sail_norm,),
        ).fetchall()
    return [_row_to_entry(r) for r in rows]


def list_entries(conn: psycopg.Connection, class_or_any: str | None = None) -> list[RosterEntry]:
    with storage_guard("list_entries"):
        if is_any_class(class_or_any):
            rows = conn.execute(
                f"SELECT {_ENTRY_COLUMNS} FROM roster_entry ORDER BY class_name, bow, id"
            ).fetchall()
        else:
            rows = conn.execute(
                f"SELECT {_ENTRY_COLUMNS} FROM roster_entry "
                "WHERE class_name = %s ORDER BY bow, id",
                (class_or_any,),
            ).fetchall()
    return [_row_to_entry(r) for r in rows]


def count_entries(conn: psycopg.Connection) -> int:
    with storage_guard("count_entries"):
        row = conn.execute("SELECT count(*) FROM roster_entry").fetchone()
    return int(row[0])


def list_classes(conn: psycopg.Connection) -> list[str]:
    """Classes recorded by the most recent load (not recomputed from rows)."""
    meta = read_meta(conn)
    if meta is None:
        return []
    return sorted(meta.classes)


def is_ready(conn: psycopg.Connection) -> bool:
    meta = read_meta(conn)
    return meta is not None and meta.is_ready
