"""
worldstate/merge_engine.py -- Reconcile parsed records with the world state.

``merge_world_state`` folds one turn's ``ParsedUpdate`` into the previous
tree and returns a new tree; the input tree is never modified.  A whole
batch is accepted or rejected:

    - A turn older than ``meta.message_count`` is a timeline contraction
      (the chat was rewound or a stale message was re-sent).  The batch is
      rejected with one warning and no field is touched.
    - Otherwise every record is reconciled field by field:

        new key + ``nil``            -> ignored
        new key                      -> appended
        existing, user-locked        -> skipped (human edits win)
        existing, older sequence     -> skipped (late data dropped)
        existing + ``nil``           -> removed
        existing                     -> values overwritten in place

Presence is structural state.  Presence directives from the parser are
applied straight to ``character_meta``, and ``sync_presence`` (also callable
on its own after a manual edit) makes a ``Meta|Present`` field and the
structural flag converge.

Nothing here raises for malformed content; decisions are returned as log
lines for the operator console.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

from worldstate.identity import resolve_character_id
from worldstate.models.base import CharacterMeta, Item, WorldState, is_deletion
from worldstate.tag_parser import META_CATEGORIES, PRESENCE_KEYS, ParsedUpdate, Record
from worldstate.utils import now_iso, parse_boolean

logger = logging.getLogger(__name__)


@dataclass
class MergeResult:
    """Outcome of one merge.

    ``warnings`` holds batch-level problems for the operator; ``logs``
    holds one line per field-level decision.  Neither signals failure.
    """

    tree: WorldState
    warnings: list[str] = field(default_factory=list)
    logs: list[str] = field(default_factory=list)

    @property
    def rejected(self) -> bool:
        return bool(self.warnings)


def merge_world_state(
    previous: WorldState,
    update: ParsedUpdate,
    turn_sequence: int,
    *,
    timestamp: str | None = None,
) -> MergeResult:
    """Merge *update* (parsed at *turn_sequence*) into *previous*.

    Parameters
    ----------
    previous : WorldState
        The current tree.  Not modified.
    update : ParsedUpdate
        Parser output for one chat turn.
    turn_sequence : int
        Monotonic turn counter of the message that produced *update*.
    timestamp : str, optional
        Value for ``meta.last_updated`` (defaults to now, UTC).

    Returns
    -------
    MergeResult
        The new tree plus warnings and decision logs.  On timeline
        contraction ``tree`` is *previous* itself.
    """
    stored = previous.meta.message_count or 0
    if turn_sequence < stored:
        warning = (
            f"Timeline contraction detected: turn {turn_sequence} is older than "
            f"the recorded turn {stored}. Update skipped."
        )
        logger.warning(warning)
        return MergeResult(tree=previous, warnings=[warning])

    tree = previous.model_copy(deep=True)
    logs: list[str] = []

    tree.meta.message_count = turn_sequence
    tree.meta.last_updated = timestamp or now_iso()

    for category, records in update.shared.items():
        target = tree.item_list(None, category, create=True)
        _merge_item_list(target, records, "Shared", logs)

    for token, categories in update.characters.items():
        character_id = _resolve(tree, token, logs)
        for category, records in categories.items():
            target = tree.item_list(character_id, category, create=True)
            _merge_item_list(target, records, f"Char:{token}", logs)

    for token, directive in update.meta.items():
        character_id = _resolve(tree, token, logs)
        meta = tree.character_meta.setdefault(character_id, CharacterMeta())
        if directive.is_present is not None and meta.is_present != directive.is_present:
            meta.is_present = directive.is_present
            logs.append(
                f"[MetaDirect] {token} ({character_id}) presence changed: "
                f"{str(directive.is_present).lower()}"
            )

    logs.extend(_sync_presence_in_place(tree))

    for line in logs:
        logger.debug(line)
    return MergeResult(tree=tree, logs=logs)


def sync_presence(tree: WorldState) -> tuple[WorldState, list[str]]:
    """Align ``character_meta`` with each character's Meta/System fields.

    Safe to run at any time (it is idempotent); the editor calls it after
    every manual edit.  Returns a new tree and the change log.
    """
    synced = tree.model_copy(deep=True)
    logs = _sync_presence_in_place(synced)
    return synced, logs


# ------------------------------------------------------------------
# Internals
# ------------------------------------------------------------------

def _resolve(tree: WorldState, token: str, logs: list[str]) -> str:
    resolution = resolve_character_id(tree.id_map, token)
    if resolution.updated_map is not tree.id_map:
        tree.id_map = dict(resolution.updated_map)
    if resolution.is_new:
        logs.append(f"[System] Registered new character mapping: {token} -> {resolution.id}")
    return resolution.id


def _merge_item_list(target: list[Item], records: list[Record], context: str, logs: list[str]) -> None:
    for record in records:
        prefix = f"[{context}][{record.category}|{record.key}]"
        index = _index_of_key(target, record.key)

        if index is None:
            if is_deletion(record.values):
                continue
            target.append(_item_from_record(record))
            logs.append(f"{prefix} added")
            continue

        existing = target[index]
        if existing.user_locked:
            logs.append(f"{prefix} user-locked, skipped")
            continue
        if record.source_sequence < existing.source_sequence:
            logs.append(
                f"{prefix} stale (turn {record.source_sequence} < "
                f"{existing.source_sequence}), skipped"
            )
            continue
        if is_deletion(record.values):
            del target[index]
            logs.append(f"{prefix} removed")
            continue

        if existing.values != record.values:
            logs.append(
                f"{prefix} updated: {_dump(existing.values)} -> {_dump(record.values)}"
            )
        existing.values = _copy_values(record.values)
        existing.source_sequence = record.source_sequence
        existing.raw_line = record.raw_line


def _index_of_key(items: list[Item], key: str) -> int | None:
    for index, item in enumerate(items):
        if item.key == key:
            return index
    return None


def _item_from_record(record: Record) -> Item:
    return Item(
        key=record.key,
        category=record.category,
        values=_copy_values(record.values),
        source_sequence=record.source_sequence,
        user_locked=False,
        raw_line=record.raw_line,
    )


def _copy_values(values):
    return [dict(v) if isinstance(v, dict) else v for v in values]


def _dump(values) -> str:
    return json.dumps(values, ensure_ascii=False)


def _sync_presence_in_place(tree: WorldState) -> list[str]:
    logs: list[str] = []
    for character_id, categories in tree.characters.items():
        presence_item = None
        for category, items in categories.items():
            if category.lower() not in META_CATEGORIES:
                continue
            presence_item = next(
                (i for i in items if i.key.lower() in PRESENCE_KEYS and i.first_value),
                None,
            )
            if presence_item is not None:
                break
        if presence_item is None:
            continue

        value = parse_boolean(presence_item.first_value)
        if value is None:
            continue
        if character_id not in tree.id_map:
            tree.id_map[character_id] = character_id
        meta = tree.character_meta.setdefault(character_id, CharacterMeta())
        if meta.is_present != value:
            meta.is_present = value
            logs.append(
                f"[SyncMeta] {character_id} presence synced: {str(value).lower()} "
                f"(from {presence_item.key})"
            )
    return logs
