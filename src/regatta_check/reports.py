"""regatta_check.reports

CSV export of the event ledger and the per-class progress summaries.

Files written into the output directory:
    events.csv               every ledger record, newest first
    summary_check_out.csv    class_name,total,done for check_out
    summary_check_in.csv     class_name,total,done for check_in

All fields are quoted.  An empty ledger still produces events.csv with
only the header row.
"""

from __future__ import annotations

import csv
from dataclasses import asdict
from pathlib import Path
from typing import Any, Iterable

import psycopg

from regatta_check.ledger import CHECK_IN, CHECK_OUT, list_all, snapshot_progress

EVENT_FIELDS = [
    "id", "ts", "action_type", "class_name", "country", "sail",
    "sail_norm", "bow", "crew", "club", "origin",
]
SUMMARY_FIELDS = ["class_name", "total", "done"]


def write_csv(path: Path, fieldnames: list[str], rows: Iterable[dict[str, Any]]) -> int:
    path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with path.open("w", newline="", encoding="utf-8") as fh:
        w = csv.DictWriter(fh, fieldnames=fieldnames, quoting=csv.QUOTE_ALL, extrasaction="ignore")
        w.writeheader()
        for row in rows:
            w.writerow({k: ("" if v is None else v) for k, v in row.items()})
            count += 1
    return count


def export_reports(conn: psycopg.Connection, out_dir: Path) -> dict[str, Path]:
    """Write the three report files; return {name: path}."""
    events = [asdict(e) for e in list_all(conn)]
    for e in events:
        e["ts"] = e["ts"].isoformat()
    paths = {
        "events": out_dir / "events.csv",
        "summary_check_out": out_dir / f"summary_{CHECK_OUT}.csv",
        "summary_check_in": out_dir / f"summary_{CHECK_IN}.csv",
    }
    write_csv(paths["events"], EVENT_FIELDS, events)
    write_csv(
        paths["summary_check_out"], SUMMARY_FIELDS,
        (asdict(p) for p in snapshot_progress(conn, CHECK_OUT)),
    )
    write_csv(
        paths["summary_check_in"], SUMMARY_FIELDS,
        (asdict(p) for p in snapshot_progress(conn, CHECK_IN)),
    )
    return paths
