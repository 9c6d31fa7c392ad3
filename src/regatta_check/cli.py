"""regatta_check.cli

Unified CLI entrypoint for dockside check-in / check-out.

Modes (--mode):
  init_db         apply the bundled schema migrations
  load_roster     replace the roster from class CSVs (--csv-path, repeatable)
                  or a YAML manifest (--manifest); creates missing dollies
  status          show readiness, load time, classes and row count
  find            resolve --sail (within --class-name, default ALL)
  check_out       record a check-out for --sail
  check_in        record a check-in for --sail
  events          list ledger records, newest first
  progress        per-class total/done for --action-type
  dollies_ensure  create missing dolly rows for the current roster
  dolly_set       set --status/--note for --class-name + --bow
  dollies         list dolly rows (optionally one --class-name)
  export          write events + summary CSVs to --reports-dir
  reset           clear roster, events, dollies and metadata (needs --yes)

Usage:
    python -m regatta_check.cli --mode load_roster \\
        --db-dsn "$DB_DSN" \\
        --csv-path "rosters/ILCA 6.csv" --csv-path "rosters/ILCA 7.csv"

    python -m regatta_check.cli --mode check_out --class-name "ILCA 6" --sail "USA 214567"
"""

from __future__ import annotations

import logging
import sys
import uuid
from pathlib import Path

import click
import psycopg

from regatta_check.dollies import (
    DOLLY_STATUSES,
    ensure_for_roster,
    list_dollies,
    set_status,
)
from regatta_check.ledger import (
    ACTION_TYPES,
    CHECK_IN,
    CHECK_OUT,
    ORIGIN_MANUAL,
    ORIGINS,
    list_all,
    record_check,
    snapshot_progress,
)
from regatta_check.meta import read_meta, reset_all
from regatta_check.normalize import flag_emoji
from regatta_check.reports import export_reports
from regatta_check.roster import find_all_by_sail, find_by_identity, is_ready, replace_all
from regatta_check.roster_csv import ClassFile, load_manifest, parse_class_files
from regatta_check.shared import (
    ANY_CLASS,
    RegattaCheckError,
    RejectWriter,
    RunCounters,
    apply_migrations,
    connect,
    is_any_class,
    utcnow,
    write_run_report,
)

MODES = [
    "init_db", "load_roster", "status", "find", "check_out", "check_in",
    "events", "progress", "dollies_ensure", "dolly_set", "dollies",
    "export", "reset",
]

# Modes that need a loaded roster before they make sense.
_NEEDS_ROSTER = {"find", "check_out", "check_in", "progress", "dollies_ensure"}


def _describe_entry(entry) -> str:
    country = entry.country or "-"
    return (
        f"{entry.class_name} | {flag_emoji(entry.country)} {country} {entry.sail} "
        f"| bow {entry.bow} | {entry.crew} | {entry.club or '-'}"
    )


def _warn_if_ambiguous(conn: psycopg.Connection, run_id: str, class_name: str, sail: str) -> None:
    if not is_any_class(class_name):
        return
    matches = find_all_by_sail(conn, sail)
    if len(matches) > 1:
        classes = ", ".join(m.class_name for m in matches)
        click.echo(
            f"[{run_id}] WARNING: sail {sail!r} matches {len(matches)} classes ({classes}); "
            f"using {matches[0].class_name}. Pass --class-name to choose.",
            err=True,
        )


def _collect_class_files(csv_paths: tuple[str, ...], manifest: str | None) -> list[ClassFile]:
    if manifest:
        return load_manifest(Path(manifest))
    return [ClassFile(path=Path(p), class_name=Path(p).stem) for p in csv_paths]


# ---------------------------------------------------------------------------
# Mode runners
# ---------------------------------------------------------------------------

def _run_load_roster(
    run_id: str,
    started_at: str,
    db_dsn: str,
    counters: RunCounters,
    rejects: RejectWriter,
    *,
    csv_paths: tuple[str, ...],
    manifest: str | None,
    reports_dir: Path,
    dry_run: bool,
) -> None:
    if not csv_paths and not manifest:
        click.echo(f"[{run_id}] ERROR: load_roster needs --csv-path or --manifest", err=True)
        sys.exit(1)

    ensure_error: str | None = None
    files = _collect_class_files(csv_paths, manifest)
    try:
        rows = parse_class_files(files, rejects=rejects, counters=counters)
    finally:
        rejects.close()
    click.echo(
        f"[{run_id}] Parsed {len(rows)} rows from {counters.files_read} file(s); "
        f"{counters.rows_rejected} rejected"
    )

    if dry_run:
        click.echo(f"[{run_id}] DRY RUN: roster not replaced.")
    else:
        # The roster replace and the dolly ensure commit separately; a failed
        # ensure leaves the new roster in place.
        conn = connect(db_dsn)
        try:
            result = replace_all(conn, rows)
            counters.roster_entries_loaded = result.meta.row_count
            counters.duplicate_keys_collapsed = result.duplicate_keys_collapsed
            if result.duplicate_keys_collapsed:
                counters.warnings.append(
                    f"{result.duplicate_keys_collapsed} rows shared a class + sail key; last row kept"
                )
            click.echo(
                f"[{run_id}] Loaded {result.meta.row_count} sailors in "
                f"{len(result.meta.classes)} classes: {' • '.join(result.meta.classes)}"
            )
            try:
                counters.dollies_created = ensure_for_roster(conn)
            except RegattaCheckError as exc:
                ensure_error = f"roster loaded; dolly ensure failed: {exc}"
                counters.warnings.append(ensure_error)
        finally:
            conn.close()

    report_path = write_run_report(
        run_id, started_at, "load_roster", dry_run,
        {"csv_paths": [str(f.path) for f in files], "manifest": manifest},
        counters,
        reports_dir=reports_dir,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")
    if ensure_error:
        click.echo(
            f"[{run_id}] ERROR: {ensure_error}. Retry with --mode dollies_ensure",
            err=True,
        )
        sys.exit(1)


def _run_check(
    conn: psycopg.Connection,
    run_id: str,
    action_type: str,
    class_name: str,
    sail: str,
    origin: str,
) -> None:
    _warn_if_ambiguous(conn, run_id, class_name, sail)
    result = record_check(conn, action_type, class_name, sail, origin)
    if not result.matched:
        click.echo(f"[{run_id}] NOT FOUND: sail {sail!r} in {class_name}", err=True)
        sys.exit(2)
    label = "Checked out" if action_type == CHECK_OUT else "Checked in"
    click.echo(f"[{run_id}] {label}: {_describe_entry(result.entry)} ({result.event.id})")


def _run_status(conn: psycopg.Connection, run_id: str) -> None:
    meta = read_meta(conn)
    if meta is None or not meta.is_ready:
        click.echo(f"[{run_id}] NO_ROSTER: load a roster first.")
        return
    click.echo(f"[{run_id}] READY")
    click.echo(f"  loaded_at: {meta.roster_loaded_at.isoformat()}")
    click.echo(f"  row_count: {meta.row_count}")
    click.echo(f"  classes:   {' • '.join(meta.classes)}")


def _run_events(conn: psycopg.Connection, action_filter: str) -> None:
    events = list_all(conn, None if action_filter == "all" else action_filter)
    for ev in events:
        click.echo(
            f"{ev.ts.isoformat()}  {ev.action_type:<9}  {ev.class_name}  "
            f"{ev.sail}  bow {ev.bow}  {ev.crew}  [{ev.origin}]"
        )
    click.echo(f"{len(events)} event(s)")


def _run_progress(conn: psycopg.Connection, action_type: str) -> None:
    for row in snapshot_progress(conn, action_type):
        click.echo(f"{row.class_name}: {row.done}/{row.total}")


def _run_dollies(conn: psycopg.Connection, class_name: str) -> None:
    for d in list_dollies(conn, class_name):
        note = f"  {d.note}" if d.note else ""
        click.echo(f"{d.class_name}  bow {d.bow}  dolly {d.dolly}  {d.status}{note}")


# ---------------------------------------------------------------------------
# Unified CLI
# ---------------------------------------------------------------------------

@click.command()
@click.option("--mode", required=True, type=click.Choice(MODES), help="Operation to run")
@click.option("--db-dsn", required=True, envvar="DB_DSN", help="PostgreSQL DSN (or $DB_DSN)")
# load_roster flags
@click.option("--csv-path", "csv_paths", multiple=True, type=click.Path(exists=True, dir_okay=False), help="[load_roster] Class CSV; repeat per class")
@click.option("--manifest", default=None, type=click.Path(exists=True, dir_okay=False), help="[load_roster] YAML manifest listing class CSVs")
@click.option(
    "--rejects-path",
    default="./artifacts/rejects/roster_rejects.csv",
    show_default=True,
    help="[load_roster] Where rejected rows are written",
)
# check / lookup flags
@click.option("--class-name", default=ANY_CLASS, show_default=True, help="Class filter; ALL matches any class")
@click.option("--sail", default=None, help="[find|check_*] Raw sail number")
@click.option("--origin", default=ORIGIN_MANUAL, type=click.Choice(sorted(ORIGINS)), show_default=True, help="[check_*] How the sail was captured")
@click.option(
    "--action-type",
    default="all",
    type=click.Choice(["all", *sorted(ACTION_TYPES)]),
    show_default=True,
    help="[events|progress] Action filter",
)
# dolly flags
@click.option("--bow", default=None, type=int, help="[dolly_set] Bow number")
@click.option("--status", "dolly_status", default=None, type=click.Choice(sorted(DOLLY_STATUSES)), help="[dolly_set] Dolly status")
@click.option("--note", default=None, help="[dolly_set] Optional note")
# shared flags
@click.option("--reports-dir", default="./artifacts/reports", show_default=True, type=click.Path())
@click.option("--dry-run", is_flag=True, default=False, help="[load_roster] Parse only")
@click.option("--yes", is_flag=True, default=False, help="[reset] Confirm the full reset")
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option("--verbose", is_flag=True, default=False, help="Log store operations at INFO")
def main(
    mode: str,
    db_dsn: str,
    csv_paths: tuple[str, ...],
    manifest: str | None,
    rejects_path: str,
    class_name: str,
    sail: str | None,
    origin: str,
    action_type: str,
    bow: int | None,
    dolly_status: str | None,
    note: str | None,
    reports_dir: str,
    dry_run: bool,
    yes: bool,
    run_id: str | None,
    verbose: bool,
) -> None:
    """Dockside regatta check-in / check-out CLI."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = utcnow().isoformat()

    try:
        if mode == "load_roster":
            _run_load_roster(
                run_id, started_at, db_dsn, RunCounters(), RejectWriter(Path(rejects_path)),
                csv_paths=csv_paths,
                manifest=manifest,
                reports_dir=Path(reports_dir),
                dry_run=dry_run,
            )
            return

        if mode in ("find", "check_out", "check_in") and not sail:
            click.echo(f"[{run_id}] ERROR: --mode {mode} requires --sail", err=True)
            sys.exit(1)
        if mode == "dolly_set" and (bow is None or dolly_status is None or is_any_class(class_name)):
            click.echo(
                f"[{run_id}] ERROR: --mode dolly_set requires --class-name, --bow and --status",
                err=True,
            )
            sys.exit(1)
        if mode == "progress" and action_type == "all":
            click.echo(f"[{run_id}] ERROR: --mode progress requires --action-type", err=True)
            sys.exit(1)
        if mode == "reset" and not yes:
            click.echo(f"[{run_id}] ERROR: reset clears everything; pass --yes to confirm", err=True)
            sys.exit(1)

        conn = connect(db_dsn)
        try:
            if mode in _NEEDS_ROSTER and not is_ready(conn):
                click.echo(f"[{run_id}] ERROR: no roster loaded; run --mode load_roster", err=True)
                sys.exit(1)

            if mode == "init_db":
                applied = apply_migrations(conn)
                click.echo(f"[{run_id}] Applied: {', '.join(applied)}")
            elif mode == "status":
                _run_status(conn, run_id)
            elif mode == "find":
                _warn_if_ambiguous(conn, run_id, class_name, sail)  # type: ignore[arg-type]
                entry = find_by_identity(conn, class_name, sail)
                if entry is None:
                    click.echo(f"[{run_id}] NOT FOUND: sail {sail!r} in {class_name}", err=True)
                    sys.exit(2)
                click.echo(_describe_entry(entry))
            elif mode in (CHECK_OUT, CHECK_IN):
                _run_check(conn, run_id, mode, class_name, sail, origin)  # type: ignore[arg-type]
            elif mode == "events":
                _run_events(conn, action_type)
            elif mode == "progress":
                _run_progress(conn, action_type)
            elif mode == "dollies_ensure":
                created = ensure_for_roster(conn)
                click.echo(f"[{run_id}] Dollies created: {created}")
            elif mode == "dolly_set":
                d = set_status(conn, class_name, bow, dolly_status, note)  # type: ignore[arg-type]
                click.echo(f"[{run_id}] {d.class_name} bow {d.bow} dolly {d.dolly}: {d.status}")
            elif mode == "dollies":
                _run_dollies(conn, class_name)
            elif mode == "export":
                paths = export_reports(conn, Path(reports_dir))
                for name, path in paths.items():
                    click.echo(f"[{run_id}] {name}: {path}")
            elif mode == "reset":
                reset_all(conn)
                click.echo(f"[{run_id}] Cleared roster, events and dollies.")
        finally:
            conn.close()
    except (RegattaCheckError, OSError) as exc:
        click.echo(f"[{run_id}] ERROR: {exc}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
