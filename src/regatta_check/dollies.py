"""regatta_check.dollies

Dolly Tracker: per (class_name, bow) launching-trolley status.

Rows are created lazily from the roster with status 'ok' and dolly number
equal to the bow number.  ensure_for_roster() is additive only: existing
rows keep their operator-entered status, note and dolly number, and rows
whose bow has left the roster are kept as operational history.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

import psycopg

from regatta_check.normalize import trim
from regatta_check.shared import ValidationError, atomic, is_any_class, storage_guard, utcnow

log = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_MISSING = "missing"
STATUS_BROKEN = "broken"
DOLLY_STATUSES = frozenset({STATUS_OK, STATUS_MISSING, STATUS_BROKEN})

_DOLLY_COLUMNS = "id, class_name, bow, dolly, status, note, updated_at"


@dataclass(frozen=True)
class DollyStatusEntry:
    id: str
    class_name: str
    bow: int
    dolly: int
    status: str
    note: str | None
    updated_at: datetime


def dolly_key(class_name: str, bow: int) -> str:
    return f"{class_name}::{bow}"


def _row_to_dolly(row: tuple) -> DollyStatusEntry:
    return DollyStatusEntry(
        id=row[0],
        class_name=row[1],
        bow=row[2],
        dolly=row[3],
        status=row[4],
        note=row[5],
        updated_at=row[6],
    )


def ensure_for_roster(conn: psycopg.Connection) -> int:
    """Create missing dolly rows for every roster (class, bow); return count created."""
    now = utcnow()
    with atomic(conn, "ensure_for_roster"):
        pairs = conn.execute(
            "SELECT DISTINCT class_name, bow FROM roster_entry ORDER BY class_name, bow"
        ).fetchall()
        created = 0
        for class_name, bow in pairs:
            cur = conn.execute(
                f"""
                INSERT INTO dolly_status ({_DOLLY_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, NULL, %s)
                ON CONFLICT (id) DO NOTHING
                """,
                (dolly_key(class_name, bow), class_name, bow, bow, STATUS_OK, now),
            )
            created += cur.rowcount
    log.info("Dollies ensured: %d created, %d roster bows", created, len(pairs))
    return created


def set_status(
    conn: psycopg.Connection,
    class_name: str,
    bow: int,
    status: str,
    note: str | None = None,
) -> DollyStatusEntry:
    """Upsert a dolly's status; the dolly number is kept when the row exists."""
    if status not in DOLLY_STATUSES:
        raise ValidationError(
            f"invalid dolly status {status!r}; expected one of {sorted(DOLLY_STATUSES)}"
        )
    with atomic(conn, "set_status"):
        row = conn.execute(
            f"""
            INSERT INTO dolly_status ({_DOLLY_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (id) DO UPDATE SET
              status = EXCLUDED.status,
              note = EXCLUDED.note,
              updated_at = EXCLUDED.updated_at
            RETURNING {_DOLLY_COLUMNS}
            """,
            (dolly_key(class_name, bow), class_name, bow, bow, status, trim(note), utcnow()),
        ).fetchone()
    return _row_to_dolly(row)


def list_dollies(
    conn: psycopg.Connection,
    class_or_any: str | None = None,
) -> list[DollyStatusEntry]:
    """Dolly rows ordered by (class_name, bow); optionally one class only."""
    with storage_guard("list_dollies"):
        if is_any_class(class_or_any):
            rows = conn.execute(
                f"SELECT {_DOLLY_COLUMNS} FROM dolly_status ORDER BY class_name, bow"
            ).fetchall()
        else:
            rows = conn.execute(
                f"SELECT {_DOLLY_COLUMNS} FROM dolly_status WHERE class_name = %s ORDER BY bow",
                (class_or_any,),
            ).fetchall()
    return [_row_to_dolly(r) for r in rows]
