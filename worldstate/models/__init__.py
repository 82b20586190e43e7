"""
worldstate/models/ -- Pydantic v2 models for the world-state engine.

Submodules:
    base        Persisted tree models (WorldState, Item, CharacterMeta, StateMeta).
    registry    Field schema registry (FieldShape, FieldSchema, SchemaRegistry).
    validators  Structural checks on a world-state tree.
"""

from worldstate.models.base import (
    DELETION_SENTINEL,
    USER_ID,
    USER_NAME,
    CharacterMeta,
    Item,
    StateMeta,
    WorldState,
    new_world_state,
)
from worldstate.models.registry import (
    FieldSchema,
    FieldShape,
    SchemaRegistry,
    SubField,
    load_schema_registry,
)

__all__ = [
    "DELETION_SENTINEL",
    "USER_ID",
    "USER_NAME",
    "CharacterMeta",
    "FieldSchema",
    "FieldShape",
    "Item",
    "SchemaRegistry",
    "StateMeta",
    "SubField",
    "WorldState",
    "load_schema_registry",
    "new_world_state",
]
