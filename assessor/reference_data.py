"""Readable content of reviewer-supplied reference files for the analysis prompt."""
from __future__ import annotations

import logging
from pathlib import Path

from assessor.models import ReferenceFile

log = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = frozenset({".csv", ".txt"})
DEFAULT_CSV_ROW_LIMIT = 100


def is_supported(filename: str) -> bool:
    return Path(filename).suffix.lower() in ALLOWED_EXTENSIONS


def select_for_industry(files: list[ReferenceFile], industry: str) -> list[ReferenceFile]:
    """Reference files tagged with *industry* (case-insensitive)."""
    wanted = industry.strip().casefold()
    return [f for f in files if f.industry.strip().casefold() == wanted]


def _read_csv(path: Path, row_limit: int) -> str:
    lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    if not lines:
        return "Empty CSV file"
    header, rows = lines[0], lines[1:]
    out = [
        f"CSV File: {path.name}",
        f"Header: {header}",
        f"Data rows (showing up to {row_limit}):",
        *rows[:row_limit],
    ]
    if len(rows) > row_limit:
        out.append(f"... ({len(rows) - row_limit} more rows)")
    return "\n".join(out)


def _read_txt(path: Path) -> str:
    return f"TXT File: {path.name}\n\n{path.read_text(encoding='utf-8', errors='replace')}"


def read_content(ref: ReferenceFile, row_limit: int = DEFAULT_CSV_ROW_LIMIT) -> str | None:
    """Prompt-ready text for one reference file, or ``None`` if unreadable."""
    path = Path(ref.stored_path)
    suffix = path.suffix.lower()
    try:
        if suffix == ".csv":
            return _read_csv(path, row_limit)
        if suffix == ".txt":
            return _read_txt(path)
    except OSError as exc:
        log.warning("Could not read reference file %s (%s): %s", ref.filename, ref.id, exc)
        return None
    log.warning("Skipping reference file %s with unsupported type %r", ref.filename, suffix)
    return None


def format_reference_section(files: list[ReferenceFile], row_limit: int = DEFAULT_CSV_ROW_LIMIT) -> str:
    """The "reference data" prompt section; empty when nothing is readable."""
    blocks: list[str] = []
    for ref in files:
        content = read_content(ref, row_limit)
        if content is None:
            continue
        lines = [f"--- File {len(blocks) + 1}: {ref.filename} ---"]
        if ref.description:
            lines.append(f"Description: {ref.description}")
        lines.append(content)
        blocks.append("\n".join(lines))
    if not blocks:
        return ""
    header = (
        "=== INDUSTRY STATISTICS AND DATA FILES ===\n"
        "The following industry-specific data files have been provided by bank officers.\n"
        "Use this data to inform your analysis, especially for market opportunity, "
        "competitive analysis, and industry benchmarks."
    )
    return header + "\n\n" + "\n\n".join(blocks)
