"""
worldstate/models/base.py -- Persisted world-state models.

The world-state tree is the single aggregate the engine reads and writes:

    WorldState
        shared          category -> [Item, ...]
        characters      character id -> category -> [Item, ...]
        id_map          character id -> display name
        character_meta  character id -> CharacterMeta
        meta            StateMeta (message_count, last_updated)

Field aliases follow the host's stored JSON (``source_id``,
``user_modified``, ``_uuid``, ``_meta`` ...) so a tree saved by the chat
host validates directly.  Keys the engine does not own (category and layout
registries, presets) are kept as opaque extras and written back unchanged.
"""

from __future__ import annotations

import uuid
from typing import Iterator, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from worldstate.models.registry import SchemaRegistry, load_schema_registry

USER_ID = "char_user"
USER_NAME = "User"
USER_PLACEHOLDER = "{{user}}"

# Single-value list that asks the merge engine to delete a field.
DELETION_SENTINEL = "nil"

STATE_VERSION = 6

ItemValues = Union[list[str], list[dict[str, str]]]


def _new_unique_id() -> str:
    return uuid.uuid4().hex


def is_deletion(values) -> bool:
    """Return True when *values* is the ``["nil"]`` deletion sentinel."""
    return len(values) == 1 and values[0] == DELETION_SENTINEL


class Item(BaseModel):
    """One persisted field of the world state."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    key: str
    category: str
    values: ItemValues = Field(default_factory=list)
    source_sequence: int = Field(0, alias="source_id")
    user_locked: bool = Field(False, alias="user_modified")
    unique_id: str = Field(default_factory=_new_unique_id, alias="_uuid")
    raw_line: Optional[str] = Field(None, alias="originalLine")

    @property
    def first_value(self) -> str:
        """First value as text (object entries yield ``""``)."""
        if self.values and isinstance(self.values[0], str):
            return self.values[0]
        return ""


class CharacterMeta(BaseModel):
    """Structural per-character state (not a display field)."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    is_present: bool = Field(True, alias="isPresent")


class StateMeta(BaseModel):
    """Bookkeeping for the whole tree."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    message_count: int = 0
    last_updated: Optional[str] = None
    version: Optional[int] = None


def _default_id_map() -> dict[str, str]:
    return {USER_ID: USER_NAME}


class WorldState(BaseModel):
    """The persisted world-state tree."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    shared: dict[str, list[Item]] = Field(default_factory=dict)
    characters: dict[str, dict[str, list[Item]]] = Field(default_factory=dict)
    id_map: dict[str, str] = Field(default_factory=_default_id_map)
    character_meta: dict[str, CharacterMeta] = Field(default_factory=dict)
    meta: StateMeta = Field(default_factory=StateMeta, alias="_meta")

    # ------------------------------------------------------------------
    # Navigation helpers
    # ------------------------------------------------------------------

    def partition(self, character_id: str | None) -> dict[str, list[Item]] | None:
        """Return the category mapping for a scope (``None`` = shared)."""
        if character_id is None:
            return self.shared
        return self.characters.get(character_id)

    def item_list(
        self, character_id: str | None, category: str, *, create: bool = False,
    ) -> list[Item] | None:
        """Return the Item list for one scope/category.

        With ``create=True`` the character partition and category list are
        created on demand; otherwise missing lists yield ``None``.
        """
        if character_id is None:
            bucket = self.shared
        elif create:
            bucket = self.characters.setdefault(character_id, {})
        else:
            bucket = self.characters.get(character_id)
            if bucket is None:
                return None
        if create:
            return bucket.setdefault(category, [])
        return bucket.get(category)

    def find_item(self, character_id: str | None, category: str, key: str) -> Item | None:
        items = self.item_list(character_id, category)
        if not items:
            return None
        for item in items:
            if item.key == key:
                return item
        return None

    def iter_item_lists(self) -> Iterator[tuple[str | None, str, list[Item]]]:
        """Yield ``(character_id, category, items)`` for every list, shared first."""
        for category, items in self.shared.items():
            yield None, category, items
        for character_id, categories in self.characters.items():
            for category, items in categories.items():
                yield character_id, category, items

    def is_present(self, character_id: str) -> bool:
        """Effective presence: anything but an explicit ``False`` is present."""
        meta = self.character_meta.get(character_id)
        return meta is None or meta.is_present is not False

    def schema_registry(self) -> SchemaRegistry:
        """Registry built from the host's stored ``item_definitions``, if any."""
        return load_schema_registry((self.model_extra or {}).get("item_definitions"))

    def to_json_dict(self) -> dict:
        """Serialise with the host's stored field names."""
        return self.model_dump(by_alias=True, mode="json")


def new_world_state() -> WorldState:
    """Return the initial tree the host creates for a fresh chat."""
    return WorldState(
        characters={USER_ID: {}},
        id_map={USER_ID: USER_NAME},
        meta=StateMeta(message_count=0, version=STATE_VERSION),
    )
