"""regatta_check.shared

Shared utilities used by every store module and the CLI.
Includes the exception taxonomy, connection and transaction helpers,
schema migration, RejectWriter, RunCounters and report-writing support.
"""

from __future__ import annotations

import csv
import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

import psycopg

log = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

# Sentinel accepted wherever a class filter is optional.
ANY_CLASS = "ALL"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class RegattaCheckError(Exception):
    """Base class for errors raised by regatta_check."""


class ValidationError(RegattaCheckError):
    """Raised for malformed input the core refuses to store."""


class StorageError(RegattaCheckError):
    """Raised when the underlying transaction or write fails.

    The operation that raised it has not been applied.
    """


# ---------------------------------------------------------------------------
# Connection + transaction helpers
# ---------------------------------------------------------------------------

def connect(db_dsn: str) -> psycopg.Connection:
    """Open an autocommit connection; multi-statement writes use atomic()."""
    try:
        return psycopg.connect(db_dsn, autocommit=True)
    except psycopg.Error as exc:
        raise StorageError(f"cannot connect to database: {exc}") from exc


@contextmanager
def storage_guard(operation: str) -> Iterator[None]:
    """Re-raise psycopg errors from *operation* as StorageError."""
    try:
        yield
    except psycopg.Error as exc:
        log.error("%s failed: %s", operation, exc)
        raise StorageError(f"{operation} failed: {exc}") from exc


@contextmanager
def atomic(conn: psycopg.Connection, operation: str) -> Iterator[psycopg.Connection]:
    """Run a block as one transaction (a savepoint if one is already open).

    Any database error rolls the whole block back and surfaces as
    StorageError, so callers observe either every write or none.
    """
    with storage_guard(operation):
        with conn.transaction():
            yield conn


def is_any_class(class_or_any: str | None) -> bool:
    return class_or_any is None or class_or_any == ANY_CLASS


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def apply_migrations(conn: psycopg.Connection) -> list[str]:
    """Apply every bundled migration in filename order; return applied names.

    Migrations are written with IF NOT EXISTS so re-running is harmless.
    """
    applied: list[str] = []
    with atomic(conn, "apply_migrations"):
        for path in sorted(MIGRATIONS_DIR.glob("*.sql")):
            conn.execute(path.read_text(encoding="utf-8"))
            applied.append(path.name)
    log.info("Applied migrations: %s", ", ".join(applied))
    return applied


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for rejected roster rows."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh = None
        self._writer = None
        self.count = 0

    def write(self, row: dict[str, str], reason: str) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            fieldnames = list(row.keys()) + ["_reject_reason"]
            self._writer = csv.DictWriter(
                self._fh, fieldnames=fieldnames, extrasaction="ignore"
            )
            self._writer.writeheader()
        out = dict(row)
        out["_reject_reason"] = reason
        self._writer.writerow(out)
        self._fh.flush()
        self.count += 1

    def close(self) -> None:
        if self._fh:
            self._fh.close()


# ---------------------------------------------------------------------------
# RunCounters
# ---------------------------------------------------------------------------

@dataclass
class RunCounters:
    files_read: int = 0
    rows_read: int = 0
    rows_rejected: int = 0
    roster_entries_loaded: int = 0
    duplicate_keys_collapsed: int = 0
    dollies_created: int = 0
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "files_read": self.files_read,
            "rows_read": self.rows_read,
            "rows_rejected": self.rows_rejected,
            "roster_entries_loaded": self.roster_entries_loaded,
            "duplicate_keys_collapsed": self.duplicate_keys_collapsed,
            "dollies_created": self.dollies_created,
            "warnings": self.warnings[:50],
        }


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source_paths: dict[str, Any],
    counters: RunCounters,
    reports_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": utcnow().isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "counters": counters.to_dict(),
    }
    report_path = reports_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
