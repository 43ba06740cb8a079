"""Shared utility functions used across Assessor modules."""
from __future__ import annotations

import json
import os
import re
import tempfile
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

_MISSING = object()

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def new_id() -> str:
    return str(uuid.uuid4())


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Safely parse a JSON string, returning *default* on failure.

    If no default is given, returns ``{}`` on parse error.
    """
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def extract_fenced_json(text: str) -> str | None:
    """Return the body of the first ```json fenced block in *text*, if any."""
    m = _FENCED_JSON_RE.search(text or "")
    if not m:
        return None
    return m.group(1).strip()


def read_json_file(path: Path, default: Any) -> Any:
    """Read a JSON document; missing or empty files yield *default*.

    Parse errors propagate so the caller can decide how loud to be.
    """
    if not path.exists() or path.stat().st_size == 0:
        return default
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def write_json_atomic(path: Path, payload: Any) -> None:
    """Write *payload* as JSON so readers never see a half-written file.

    The document is written to a temp file in the same directory, fsynced,
    then renamed over the target.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def slugify(value: str) -> str:
    """Lower-case file-system-safe key for an industry name."""
    slug = re.sub(r"[^a-z0-9]+", "_", value.strip().casefold()).strip("_")
    return slug or "default"
