"""
Shared utility functions for the world-state synchronization engine.

Consolidates the small helpers used by the parser, merge engine, narrative
generator and the persistence collaborators:

    - boolean token parsing for presence directives
    - leading-number extraction for numeric fields
    - atomic JSON / JSONL file I/O (persistence layer only; the core never
      touches the filesystem)

All JSON writes use atomic temp-file-then-os.replace() to prevent
data corruption from crashes or concurrent access.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Token parsing
# ---------------------------------------------------------------------------

_TRUE_TOKENS = frozenset({"true", "on", "yes", "1"})
_FALSE_TOKENS = frozenset({"false", "off", "no", "0"})

_LEADING_NUMBER = re.compile(r"^(-?\d+(?:\.\d+)?)")


def parse_boolean(value) -> bool | None:
    """Interpret a presence token such as ``"on"`` or ``"0"``.

    Returns ``True``/``False`` for recognised tokens and ``None`` for
    anything else (including non-string input).
    """
    if not isinstance(value, str):
        return None
    token = value.strip().lower()
    if token in _TRUE_TOKENS:
        return True
    if token in _FALSE_TOKENS:
        return False
    return None


def parse_leading_number(value) -> float | None:
    """Return the number at the very start of *value*, or ``None``.

    ``"80"`` -> 80.0, ``"-5 (poison)"`` -> -5.0, ``"about 3"`` -> None.
    Blank strings and non-strings yield ``None``.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    match = _LEADING_NUMBER.match(value)
    return float(match.group(1)) if match else None


def format_number(value: float | int | None) -> str:
    """Render a parsed number without a spurious ``.0`` suffix."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def now_iso() -> str:
    """Return the current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# JSON I/O (atomic writes)
# ---------------------------------------------------------------------------

def safe_read_json(path, default=None):
    """Read a JSON file, returning *default* if the file is missing or corrupt.

    Parameters
    ----------
    path : str or pathlib.Path
        Absolute path to the JSON file.
    default
        Value returned when the file cannot be read (default ``None``).

    Returns
    -------
    object
        Parsed JSON content, or *default* on failure.
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return default


def safe_write_json(path, data, *, indent=2):
    """Atomically write *data* as JSON to *path*.

    Uses a temporary file in the same directory followed by
    ``os.replace()`` so that readers never see a partially-written file.
    Parent directories are created if they do not exist.
    """
    path = str(path)
    parent = os.path.dirname(path) or "."
    os.makedirs(parent, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=indent, ensure_ascii=False)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def safe_append_jsonl(path, record):
    """Append a single JSON record to a JSONL (JSON Lines) file.

    The append is a single ``write`` call followed by ``fsync`` to minimise
    partial-write risk.
    """
    path = str(path)
    parent = os.path.dirname(path) or "."
    os.makedirs(parent, exist_ok=True)

    line = json.dumps(record, ensure_ascii=False) + "\n"
    with open(path, "a", encoding="utf-8") as fh:
        fh.write(line)
        fh.flush()
        os.fsync(fh.fileno())


def read_jsonl(path) -> list:
    """Load every record of a JSONL file, skipping corrupt lines."""
    records = []
    try:
        with open(path, "r", encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.debug("Skipping corrupt JSONL line in %s", path)
                    continue
    except (FileNotFoundError, OSError):
        return []
    return records
