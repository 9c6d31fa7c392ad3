"""regatta_check.meta

Metadata Register: the singleton readiness record and the full reset.

The register is a single ``app_meta`` row keyed ``'app'``.  Its load
timestamp is the only readiness signal the rest of the system consults:

    NO_ROSTER --load--> READY --load--> READY (replaced) --reset--> NO_ROSTER

``write_meta`` is only ever called from inside the roster replacement
transaction, so readers never see roster rows without matching metadata.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

import psycopg

from regatta_check.shared import atomic, storage_guard, utcnow

log = logging.getLogger(__name__)

META_KEY = "app"

STATE_NO_ROSTER = "NO_ROSTER"
STATE_READY = "READY"


@dataclass(frozen=True)
class MetaRecord:
    roster_loaded_at: datetime | None
    classes: list[str] = field(default_factory=list)
    row_count: int = 0

    @property
    def is_ready(self) -> bool:
        return self.roster_loaded_at is not None


def read_meta(conn: psycopg.Connection) -> MetaRecord | None:
    with storage_guard("read_meta"):
        row = conn.execute(
            "SELECT roster_loaded_at, classes, row_count FROM app_meta WHERE key = %s",
            (META_KEY,),
        ).fetchone()
    if row is None:
        return None
    return MetaRecord(roster_loaded_at=row[0], classes=list(row[1] or []), row_count=row[2])


def write_meta(
    conn: psycopg.Connection,
    classes: Iterable[str],
    row_count: int,
    loaded_at: datetime | None = None,
) -> MetaRecord:
    """Overwrite the singleton.  Caller owns the surrounding transaction."""
    meta = MetaRecord(
        roster_loaded_at=loaded_at or utcnow(),
        classes=sorted(set(classes)),
        row_count=row_count,
    )
    conn.execute(
        """
        INSERT INTO app_meta (key, roster_loaded_at, classes, row_count)
        VALUES (%s, %s, %s, %s)
        ON CONFLICT (key) DO UPDATE SET
          roster_loaded_at = EXCLUDED.roster_loaded_at,
          classes = EXCLUDED.classes,
          row_count = EXCLUDED.row_count
        """,
        (META_KEY, meta.roster_loaded_at, meta.classes, meta.row_count),
    )
    return meta


def roster_state(conn: psycopg.Connection) -> str:
    meta = read_meta(conn)
    return STATE_READY if meta is not None and meta.is_ready else STATE_NO_ROSTER


def reset_all(conn: psycopg.Connection) -> None:
    """Clear roster, events, dollies and metadata in one transaction."""
    with atomic(conn, "reset_all"):
        conn.execute("DELETE FROM roster_entry")
        conn.execute("DELETE FROM check_event")
        conn.execute("DELETE FROM dolly_status")
        conn.execute("DELETE FROM app_meta WHERE key = %s", (META_KEY,))
    log.info("Reset cleared roster, events, dollies and metadata")
