"""
worldstate/manual_edits.py -- Operator edits on the world-state tree.

The editor UI changes the tree through these plain data operations.  Each
returns a new tree (the argument is left untouched) and re-runs the
presence synchronisation so a hand-edited ``Meta|Present`` field takes
effect immediately.

A manual write locks the Item (``user_locked``) so the next AI turn cannot
overwrite it; ``advance_turn`` releases every lock once the operator moves
the chat forward.

Misuse (an unknown character, a duplicate key) raises ``KeyError`` or
``ValueError`` -- unlike model output, operator calls are not free-form.
"""

from __future__ import annotations

import logging

from worldstate.identity import resolve_character_id
from worldstate.merge_engine import sync_presence
from worldstate.models.base import USER_ID, CharacterMeta, Item, WorldState
from worldstate.tag_parser import META_CATEGORIES, PRESENCE_KEYS

logger = logging.getLogger(__name__)


def _locate(tree: WorldState, character_id: str | None, category: str, key: str) -> tuple[list[Item], int]:
    if character_id is not None and character_id not in tree.characters:
        raise KeyError(f"Unknown character id: {character_id!r}")
    items = tree.item_list(character_id, category)
    if items:
        for index, item in enumerate(items):
            if item.key == key:
                return items, index
    scope = "shared" if character_id is None else character_id
    raise KeyError(f"No item '{key}' in category '{category}' ({scope})")


def _finish(tree: WorldState) -> WorldState:
    synced, logs = sync_presence(tree)
    for line in logs:
        logger.debug(line)
    return synced


def edit_item(
    tree: WorldState,
    character_id: str | None,
    category: str,
    key: str,
    values: list,
) -> WorldState:
    """Overwrite an Item's values by hand and lock it against AI writes."""
    edited = tree.model_copy(deep=True)
    items, index = _locate(edited, character_id, category, key)
    item = items[index]
    item.values = list(values)
    item.user_locked = True
    logger.info("Manual edit: [%s|%s] locked", category, key)
    return _finish(edited)


def insert_item(
    tree: WorldState,
    character_id: str | None,
    category: str,
    key: str,
    values: list,
    *,
    locked: bool = True,
) -> WorldState:
    """Append a new Item created by the operator."""
    if character_id is not None and character_id not in tree.characters:
        raise KeyError(f"Unknown character id: {character_id!r}")
    existing = tree.find_item(character_id, category, key)
    if existing is not None:
        raise ValueError(f"Item '{key}' already exists in category '{category}'")

    edited = tree.model_copy(deep=True)
    items = edited.item_list(character_id, category, create=True)
    items.append(Item(
        key=key,
        category=category,
        values=list(values),
        source_sequence=edited.meta.message_count,
        user_locked=locked,
    ))
    logger.info("Manual insert: [%s|%s]", category, key)
    return _finish(edited)


def delete_item(tree: WorldState, character_id: str | None, category: str, key: str) -> WorldState:
    """Remove an Item by hand."""
    edited = tree.model_copy(deep=True)
    items, index = _locate(edited, character_id, category, key)
    del items[index]
    logger.info("Manual delete: [%s|%s]", category, key)
    return _finish(edited)


def set_presence(tree: WorldState, character_id: str, present: bool) -> WorldState:
    """Set a character's structural presence flag directly.

    A ``Meta|Present`` style field on the character is rewritten to match,
    otherwise the presence sync would flip the flag straight back.
    """
    if character_id not in tree.id_map:
        raise KeyError(f"Unknown character id: {character_id!r}")
    edited = tree.model_copy(deep=True)
    edited.character_meta.setdefault(character_id, CharacterMeta()).is_present = present
    for category, items in (edited.characters.get(character_id) or {}).items():
        if category.lower() not in META_CATEGORIES:
            continue
        for item in items:
            if item.key.lower() in PRESENCE_KEYS:
                item.values = [str(present).lower()]
                item.user_locked = True
    return _finish(edited)


def register_character(tree: WorldState, token: str, display_name: str | None = None) -> tuple[WorldState, str]:
    """Add (or find) a character and optionally set its display name.

    Returns the new tree and the resolved character id.
    """
    edited = tree.model_copy(deep=True)
    resolution = resolve_character_id(edited.id_map, token)
    edited.id_map = dict(resolution.updated_map)
    if display_name and resolution.id != USER_ID:
        edited.id_map[resolution.id] = display_name
    edited.characters.setdefault(resolution.id, {})
    return _finish(edited), resolution.id


def advance_turn(tree: WorldState) -> tuple[WorldState, int]:
    """Move to the next turn and release every user lock.

    Unlocked Items get ``source_sequence = 0`` so the next AI write to them
    is never treated as stale.  Returns the new tree and the number of
    Items unlocked.
    """
    advanced = tree.model_copy(deep=True)
    advanced.meta.message_count = (advanced.meta.message_count or 0) + 1

    unlocked = 0
    for _character_id, _category, items in advanced.iter_item_lists():
        for item in items:
            if item.user_locked:
                item.user_locked = False
                item.source_sequence = 0
                unlocked += 1

    logger.info(
        "Advanced to turn %d, unlocked %d item(s)",
        advanced.meta.message_count, unlocked,
    )
    return advanced, unlocked
