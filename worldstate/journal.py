"""
Memory journal for the world-state synchronization engine.

An append-only record of the narrative produced each turn.  The host's
long-term memory layer reads the most recent snapshot back (``latest()``)
and injects it into the next prompt, so every entry carries the same fixed
label that memory layer searches for.

Storage: one JSONL file, one record per turn::

    {"label": "[动态快照]", "turn": 7, "timestamp": "...", "narrative": "..."}

Entries are never edited or deleted.
"""

from __future__ import annotations

import logging
from pathlib import Path

from worldstate.storage import JOURNAL_FILENAME, default_data_dir
from worldstate.utils import now_iso, read_jsonl, safe_append_jsonl

logger = logging.getLogger(__name__)

SNAPSHOT_LABEL = "[动态快照]"


class MemoryJournal:
    """Append-only JSONL journal of per-turn narratives."""

    def __init__(self, path=None, label: str = SNAPSHOT_LABEL):
        """Initialize the journal.

        Args:
            path: Location of the JSONL file.  Defaults to
                ``memory-journal.jsonl`` in the user data directory.
            label: Tag stored with every entry; ``latest()`` only returns
                entries carrying it.
        """
        self.path = Path(path) if path else default_data_dir() / JOURNAL_FILENAME
        self.label = label

    def record(self, turn: int, narrative: str) -> dict | None:
        """Append one snapshot.  Blank narratives are not recorded.

        Returns the written entry, or ``None`` when nothing was written.
        """
        if not narrative or not narrative.strip():
            logger.debug("Turn %d produced no narrative, journal unchanged", turn)
            return None
        entry = {
            "label": self.label,
            "turn": turn,
            "timestamp": now_iso(),
            "narrative": narrative,
        }
        safe_append_jsonl(self.path, entry)
        logger.debug("Journaled narrative for turn %d", turn)
        return entry

    def entries(self) -> list[dict]:
        """All entries carrying this journal's label, oldest first."""
        return [e for e in read_jsonl(self.path) if isinstance(e, dict) and e.get("label") == self.label]

    def latest(self) -> dict | None:
        entries = self.entries()
        return entries[-1] if entries else None

    def format_latest(self) -> str:
        """The latest snapshot as the labelled text block a prompt embeds."""
        entry = self.latest()
        if entry is None:
            return ""
        return f"{self.label}\n{entry['narrative']}"
