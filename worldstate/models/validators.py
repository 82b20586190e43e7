"""
worldstate/models/validators.py -- Structural checks on a world-state tree.

Pydantic validates the *shape* of a stored tree; these checks cover the
cross-partition rules pydantic cannot express:

    - every character id under ``characters`` / ``character_meta`` has an
      ``id_map`` entry
    - the reserved user id is named "User"
    - keys are unique within one category list
    - an Item's ``category`` matches the list it lives in
    - ``unique_id`` values are never shared between Items

The checks never raise; they return plain-English messages the operator
console can show as-is.

Usage::

    from worldstate.models.validators import validate_world_state

    issues = validate_world_state(tree)
"""

from __future__ import annotations

import logging

from worldstate.models.base import USER_ID, USER_NAME, WorldState

logger = logging.getLogger(__name__)


def validate_world_state(tree: WorldState) -> list[str]:
    """Return every structural issue found in *tree* (empty when clean)."""
    issues: list[str] = []
    issues.extend(validate_id_map(tree))
    issues.extend(validate_item_lists(tree))
    if issues:
        logger.debug("World state has %d structural issue(s)", len(issues))
    return issues


def validate_id_map(tree: WorldState) -> list[str]:
    """Check id_map coverage and the reserved user entry."""
    issues: list[str] = []
    for character_id in tree.characters:
        if character_id not in tree.id_map:
            issues.append(
                f"Character '{character_id}' has data but no entry in id_map."
            )
    for character_id in tree.character_meta:
        if character_id not in tree.id_map:
            issues.append(
                f"Character '{character_id}' has presence state but no entry in id_map."
            )
    user_name = tree.id_map.get(USER_ID)
    if user_name is not None and user_name != USER_NAME:
        issues.append(
            f"The user id '{USER_ID}' must be named '{USER_NAME}', found '{user_name}'."
        )
    return issues


def validate_item_lists(tree: WorldState) -> list[str]:
    """Check key uniqueness, category agreement and unique_id reuse."""
    issues: list[str] = []
    seen_ids: dict[str, str] = {}

    for character_id, category, items in tree.iter_item_lists():
        where = _describe_scope(tree, character_id, category)
        keys: set[str] = set()
        for item in items:
            if item.key in keys:
                issues.append(f"{where} lists the key '{item.key}' more than once.")
            keys.add(item.key)

            if item.category != category:
                issues.append(
                    f"{where} holds '{item.key}' tagged with category "
                    f"'{item.category}'."
                )

            previous = seen_ids.get(item.unique_id)
            if previous is not None:
                issues.append(
                    f"{where} reuses the unique id of {previous} for '{item.key}'."
                )
            else:
                seen_ids[item.unique_id] = f"'{item.key}' in {where}"
    return issues


def _describe_scope(tree: WorldState, character_id: str | None, category: str) -> str:
    if character_id is None:
        return f"Shared category '{category}'"
    name = tree.id_map.get(character_id, character_id)
    return f"Category '{category}' of {name}"
