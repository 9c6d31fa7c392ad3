"""regatta_check.ledger

Event Ledger + Progress Aggregator.

Every check-in / check-out is appended as an immutable EventRecord that
snapshots the matched roster entry at action time.  Nothing is
deduplicated: submitting the same competitor twice yields two records.

Progress is never stored.  snapshot_progress() recomputes total/done per
class from the current roster and the full ledger on every call, so it
stays correct across any sequence of roster replacements and resets.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

import psycopg

from regatta_check.roster import RosterEntry, find_by_identity, list_classes
from regatta_check.shared import ValidationError, storage_guard, utcnow

log = logging.getLogger(__name__)

CHECK_IN = "check_in"
CHECK_OUT = "check_out"
ACTION_TYPES = frozenset({CHECK_IN, CHECK_OUT})

ORIGIN_MANUAL = "manual"
ORIGIN_CAMERA = "camera"
ORIGIN_LIVE_SCAN = "live_scan"
ORIGINS = frozenset({ORIGIN_MANUAL, ORIGIN_CAMERA, ORIGIN_LIVE_SCAN})

_EVENT_COLUMNS = "id, ts, action_type, class_name, country, sail, sail_norm, bow, crew, club, origin"


@dataclass(frozen=True)
class EventRecord:
    id: str
    ts: datetime
    action_type: str
    class_name: str
    country: str | None
    sail: str
    sail_norm: str
    bow: int
    crew: str
    club: str | None
    origin: str


@dataclass(frozen=True)
class ProgressRow:
    class_name: str
    total: int
    done: int


@dataclass(frozen=True)
class CheckResult:
    entry: RosterEntry | None
    event: EventRecord | None

    @property
    def matched(self) -> bool:
        return self.entry is not None


def new_event_id() -> str:
    """Time component plus random suffix; no store-level uniqueness check."""
    return f"ev_{time.time_ns() // 1_000_000}_{uuid.uuid4().hex[:12]}"


def _validate_action(action_type: str) -> None:
    if action_type not in ACTION_TYPES:
        raise ValidationError(
            f"invalid action_type {action_type!r}; expected one of {sorted(ACTION_TYPES)}"
        )


def _row_to_event(row: tuple) -> EventRecord:
    return EventRecord(
        id=row[0],
        ts=row[1],
        action_type=row[2],
        class_name=row[3],
        country=row[4],
        sail=row[5],
        sail_norm=row[6],
        bow=row[7],
        crew=row[8],
        club=row[9],
        origin=row[10],
    )


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

def append_event(
    conn: psycopg.Connection,
    action_type: str,
    entry: RosterEntry,
    origin: str = ORIGIN_MANUAL,
) -> EventRecord:
    """Snapshot *entry* into a new ledger record and return it."""
    _validate_action(action_type)
    if origin not in ORIGINS:
        raise ValidationError(f"invalid origin {origin!r}; expected one of {sorted(ORIGINS)}")

    event = EventRecord(
        id=new_event_id(),
        ts=utcnow(),
        action_type=action_type,
        class_name=entry.class_name,
        country=entry.country,
        sail=entry.sail,
        sail_norm=entry.sail_norm,
        bow=entry.bow,
        crew=entry.crew,
        club=entry.club,
        origin=origin,
    )
    with storage_guard("append_event"):
        conn.execute(
            f"INSERT INTO check_event ({_EVENT_COLUMNS}) "
            "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)",
            (
                event.id, event.ts, event.action_type, event.class_name,
                event.country, event.sail, event.sail_norm, event.bow,
                event.crew, event.club, event.origin,
            ),
        )
    log.debug("Recorded %s for %s (%s)", action_type, entry.id, origin)
    return event


def list_all(conn: psycopg.Connection, action_type: str | None = None) -> list[EventRecord]:
    """All ledger records, newest first; optionally one action type only."""
    with storage_guard("list_all"):
        if action_type is None:
            rows = conn.execute(
                f"SELECT {_EVENT_COLUMNS} FROM check_event ORDER BY ts DESC, id DESC"
            ).fetchall()
        else:
            _validate_action(action_type)
            rows = conn.execute(
                f"SELECT {_EVENT_COLUMNS} FROM check_event "
                "WHERE action_type = %s ORDER BY ts DESC, id DESC",
                (action_type,),
            ).fetchall()
    return [_row_to_event(r) for r in rows]


def record_check(
    conn: psycopg.Connection,
    action_type: str,
    class_or_any: str | None,
    raw_sail: str | None,
    origin: str = ORIGIN_MANUAL,
) -> CheckResult:
    """Resolve a sail against the roster and, on a match, append the event."""
    _validate_action(action_type)
    entry = find_by_identity(conn, class_or_any, raw_sail)
    if entry is None:
        return CheckResult(entry=None, event=None)
    return CheckResult(entry=entry, event=append_event(conn, action_type, entry, origin))


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------

def tally_progress(
    classes: Iterable[str],
    roster_pairs: Iterable[tuple[str, str]],
    event_pairs: Iterable[tuple[str, str]],
) -> list[ProgressRow]:
    """Fold (class_name, sail_norm) pairs into per-class total/done counts.

    *roster_pairs* are the current roster entries, *event_pairs* the events
    of one action type.  Repeat events for a sail count once.  Only events
    whose sail is still on the class roster count as done, so done never
    exceeds total after a roster replacement.
    """
    roster_by_class: dict[str, set[str]] = {}
    for class_name, sail_norm in roster_pairs:
        roster_by_class.setdefault(class_name, set()).add(sail_norm)

    done_by_class: dict[str, set[str]] = {}
    for class_name, sail_norm in event_pairs:
        if sail_norm in roster_by_class.get(class_name, ()):
            done_by_class.setdefault(class_name, set()).add(sail_norm)

    return [
        ProgressRow(
            class_name=c,
            total=len(roster_by_class.get(c, ())),
            done=len(done_by_class.get(c, ())),
        )
        for c in classes
    ]


def snapshot_progress(conn: psycopg.Connection, action_type: str) -> list[ProgressRow]:
    """Per-class total/done for *action_type*, recomputed from full state."""
    _validate_action(action_type)
    classes = list_classes(conn)
    with storage_guard("snapshot_progress"):
        roster_pairs = conn.execute(
            "SELECT class_name, sail_norm FROM roster_entry"
        ).fetchall()
        event_pairs = conn.execute(
            "SELECT DISTINCT class_name, sail_norm FROM check_event WHERE action_type = %s",
            (action_type,),
        ).fetchall()
    return tally_progress(classes, roster_pairs, event_pairs)
