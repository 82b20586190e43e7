"""
worldstate/identity.py -- Character identity resolution.

Maps the free-form actor token a model writes (``Eria``, ``char_002``,
``{{user}}``) onto a stable character id, keeping the ``id_map``
(id -> display name) in step.  Resolution is "id first":

    1. ``user`` (any case) or ``{{user}}``  -> the reserved user id
    2. an existing id                       -> that id, unchanged
    3. an existing display name             -> the id it belongs to
    4. anything else                        -> a new id equal to the token

Resolution never raises and never mutates the map it is given; callers
persist ``updated_map`` when ``is_new`` is set.
"""

from __future__ import annotations

from typing import NamedTuple

from worldstate.models.base import USER_ID, USER_NAME, USER_PLACEHOLDER, WorldState

PROFILE_CATEGORY = "CP"
NAME_KEYS = ("Name", "名字", "姓名", "角色名")


class Resolution(NamedTuple):
    id: str
    is_new: bool
    updated_map: dict[str, str]


def is_user_token(token: str) -> bool:
    return token.lower() == "user" or token == USER_PLACEHOLDER


def resolve_character_id(id_map: dict[str, str], token: str) -> Resolution:
    """Resolve *token* against *id_map*.

    Returns
    -------
    Resolution
        ``id`` is the canonical character id; ``is_new`` is True when the
        map gained an entry; ``updated_map`` is the map to persist (the
        input map itself when nothing changed).
    """
    if is_user_token(token):
        is_new = USER_ID not in id_map
        if id_map.get(USER_ID) == USER_NAME:
            return Resolution(USER_ID, False, id_map)
        return Resolution(USER_ID, is_new, {**id_map, USER_ID: USER_NAME})

    # An id that happens to equal some other character's display name must
    # not be treated as a rename, so ids are checked before names.
    if token in id_map:
        return Resolution(token, False, id_map)

    for character_id, name in id_map.items():
        if name == token:
            return Resolution(character_id, False, id_map)

    return Resolution(token, True, {**id_map, token: token})


def get_character_name(id_map: dict[str, str], character_id: str) -> str:
    """Display name from the id map, falling back to the id itself."""
    if character_id == USER_ID:
        return USER_NAME
    return id_map.get(character_id) or character_id


def resolve_display_name(tree: WorldState, character_id: str) -> str:
    """Authoritative display name for *character_id*.

    The profile convention wins: the first non-empty ``Name``/``名字``/
    ``姓名``/``角色名`` Item in the character's ``CP`` category.  Otherwise
    the id map name (or the id) is used.
    """
    categories = tree.characters.get(character_id) or {}
    for item in categories.get(PROFILE_CATEGORY) or []:
        if item.key in NAME_KEYS and item.first_value:
            return item.first_value
    return get_character_name(tree.id_map, character_id)
