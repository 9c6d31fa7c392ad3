"""regatta_check.roster_csv

Roster file parsing: turns one CSV per class into RosterRow values.

Input format (header row required, header names case-insensitive):
    Country,Sail,Bow,Crew,Club

Delimiter is detected from the header line (comma, semicolon or TAB,
whichever occurs most).  A leading UTF-8 BOM is ignored.  The class name
is the file stem ("ILCA 6.csv" -> "ILCA 6") unless a manifest names it.

Row rules:
  - Sail and Crew must be non-blank.
  - Bow must be a finite whole number.
Rows breaking a rule are handed to the RejectWriter with a reason and
skipped; they never abort the file.  A file that is missing a required
column, or that has no data rows, raises ValidationError.

Manifest format (YAML, optional):
    classes:
      - file: ilca6.csv          # relative to the manifest
        class_name: ILCA 6       # optional, defaults to the file stem
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from regatta_check.normalize import normalize_space, parse_bow, trim
from regatta_check.roster import RosterRow
from regatta_check.shared import RejectWriter, RunCounters, ValidationError

REQUIRED_HEADERS = ("country", "sail", "bow", "crew", "club")
_CANDIDATE_DELIMITERS = (",", ";", "\t")
_BOM = "\ufeff"


class ManifestValidationError(ValidationError):
    """Raised when a roster manifest does not match the expected shape."""


@dataclass(frozen=True)
class ClassFile:
    path: Path
    class_name: str


# ---------------------------------------------------------------------------
# Header helpers
# ---------------------------------------------------------------------------

def detect_delimiter(header_line: str) -> str:
    """Return the candidate delimiter occurring most often in the header."""
    line = header_line.lstrip(_BOM)
    counts = {d: line.count(d) for d in _CANDIDATE_DELIMITERS}
    best = max(_CANDIDATE_DELIMITERS, key=lambda d: counts[d])
    return best if counts[best] > 0 else ","


def normalize_headers(raw: dict[str | None, Any]) -> dict[str, str]:
    """Lower-case, BOM- and whitespace-stripped header keys."""
    out: dict[str, str] = {}
    for k, v in raw.items():
        if k is None:
            continue
        out[k.lstrip(_BOM).strip().lower()] = v if isinstance(v, str) else ""
    return out


def _delimiter_label(delim: str) -> str:
    return "TAB" if delim == "\t" else delim


# ---------------------------------------------------------------------------
# Row parsing
# ---------------------------------------------------------------------------

def parse_roster_row(class_name: str, row: dict[str, str]) -> tuple[RosterRow | None, str | None]:
    """Return (RosterRow, None) for a valid row, else (None, reject_reason)."""
    sail = trim(row.get("sail"))
    crew = normalize_space(row.get("crew"))
    bow = parse_bow(row.get("bow"))
    if sail is None:
        return None, "missing_sail"
    if crew is None:
        return None, "missing_crew"
    if bow is None:
        return None, "invalid_bow"
    return RosterRow(
        class_name=class_name,
        country=trim(row.get("country")),
        sail=sail,
        bow=bow,
        crew=crew,
        club=normalize_space(row.get("club")),
    ), None


def parse_roster_text(
    text: str,
    class_name: str,
    source_name: str,
    rejects: RejectWriter | None = None,
    counters: RunCounters | None = None,
) -> list[RosterRow]:
    """Parse CSV text for one class."""
    text = text.lstrip(_BOM)
    lines = [ln for ln in text.splitlines() if ln.strip()]
    if len(lines) < 2:
        raise ValidationError(f"{source_name!r} has no data rows")

    delim = detect_delimiter(lines[0])
    reader = csv.DictReader(io.StringIO("\n".join(lines)), delimiter=delim)
    headers = {(h or "").lstrip(_BOM).strip().lower() for h in (reader.fieldnames or [])}
    for required in REQUIRED_HEADERS:
        if required not in headers:
            raise ValidationError(
                f"{source_name!r} missing column: {required} "
                f"(detected delimiter: {_delimiter_label(delim)})"
            )

    rows: list[RosterRow] = []
    for raw in reader:
        row = normalize_headers(raw)
        if counters is not None:
            counters.rows_read += 1
        parsed, reason = parse_roster_row(class_name, row)
        if parsed is None:
            if counters is not None:
                counters.rows_rejected += 1
            if rejects is not None:
                rejects.write({"_source": source_name, **row}, reason or "invalid_row")
            continue
        rows.append(parsed)
    return rows


def parse_roster_file(
    path: Path,
    class_name: str | None = None,
    rejects: RejectWriter | None = None,
    counters: RunCounters | None = None,
) -> list[RosterRow]:
    """Parse one class CSV; the class defaults to the file stem.

    Bytes that are not UTF-8 (spreadsheet exports in a legacy code page)
    decode to U+FFFD instead of failing the whole load.
    """
    text = path.read_text(encoding="utf-8-sig", errors="replace")
    if counters is not None:
        counters.files_read += 1
    return parse_roster_text(
        text,
        class_name=class_name or path.stem,
        source_name=path.name,
        rejects=rejects,
        counters=counters,
    )


# ---------------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------------

def validate_manifest(data: Any) -> None:
    """Raise ManifestValidationError if data does not match the manifest shape."""
    if not isinstance(data, dict):
        raise ManifestValidationError("manifest must be a mapping with a 'classes' list")
    classes = data.get("classes")
    if not isinstance(classes, list) or not classes:
        raise ManifestValidationError("manifest 'classes' must be a non-empty list")
    for i, item in enumerate(classes):
        if not isinstance(item, dict):
            raise ManifestValidationError(f"classes[{i}] must be a mapping")
        if not trim(item.get("file")):
            raise ManifestValidationError(f"classes[{i}] is missing 'file'")
        name = item.get("class_name")
        if name is not None and not trim(str(name)):
            raise ManifestValidationError(f"classes[{i}] has a blank 'class_name'")


def load_manifest(manifest_path: Path) -> list[ClassFile]:
    """Load and validate a YAML roster manifest; paths resolve beside it."""
    raw = manifest_path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw)
    validate_manifest(data)
    base = manifest_path.parent
    out: list[ClassFile] = []
    for item in data["classes"]:
        path = base / str(item["file"]).strip()
        name = trim(str(item["class_name"])) if item.get("class_name") is not None else None
        out.append(ClassFile(path=path, class_name=name or path.stem))
    return out


def parse_class_files(
    files: list[ClassFile],
    rejects: RejectWriter | None = None,
    counters: RunCounters | None = None,
) -> list[RosterRow]:
    """Parse several class files into one combined batch for replace_all()."""
    rows: list[RosterRow] = []
    for f in files:
        rows.extend(parse_roster_file(f.path, f.class_name, rejects=rejects, counters=counters))
    return rows
