"""
Shared pytest fixtures for the world-state synchronization test suite.

Provides:
    - registry_definitions: raw registry entries in the host's format
    - registry: the loaded SchemaRegistry for those entries
    - base_tree: a small tree with one character (Eria) at turn 5
    - make_item: factory for Items with sensible defaults
"""

import sys
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Ensure the worldstate package is importable regardless of where pytest is
# invoked
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).resolve().parent.parent

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from worldstate.models.base import CharacterMeta, Item, StateMeta, WorldState  # noqa: E402
from worldstate.models.registry import load_schema_registry  # noqa: E402


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def registry_definitions():
    """Return raw registry entries covering every field shape."""
    return [
        {
            "key": "体力",
            "type": "numeric",
            "defaultCategory": "CV",
            "description": "当前/上限/变化/原因",
            "structure": {"parts": [
                {"key": "current", "label": "当前"},
                {"key": "max", "label": "上限"},
                {"key": "change", "label": "变化"},
                {"key": "reason", "label": "原因"},
            ]},
        },
        {"key": "金币", "type": "numeric"},
        {"key": "状态", "type": "array", "separator": ","},
        {
            "key": "物品",
            "type": "list-of-objects",
            "separator": "|",
            "partSeparator": "@",
            "structure": {"parts": [
                {"key": "name", "label": "名称"},
                {"key": "count", "label": "数量"},
            ]},
        },
        {"key": "心情", "type": "text"},
    ]


@pytest.fixture
def registry(registry_definitions):
    """Return the SchemaRegistry built from ``registry_definitions``."""
    return load_schema_registry(registry_definitions)


@pytest.fixture
def make_item():
    """Return a factory building Items with default sequence 5."""
    def _make(key, values, category="CV", source_sequence=5, user_locked=False):
        return Item(
            key=key,
            category=category,
            values=list(values),
            source_sequence=source_sequence,
            user_locked=user_locked,
        )
    return _make


@pytest.fixture
def base_tree(make_item):
    """Return a tree at turn 5 with one shared field and one character.

    Eria has ``CV|体力 = 100|100`` and a profile name.
    """
    return WorldState(
        shared={"ST": [make_item("天气", ["晴"], category="ST")]},
        characters={
            "char_user": {},
            "Eria": {
                "CV": [make_item("体力", ["100", "100"])],
                "CP": [make_item("Name", ["艾莉亚"], category="CP")],
            },
        },
        id_map={"char_user": "User", "Eria": "Eria"},
        character_meta={"Eria": CharacterMeta(is_present=True)},
        meta=StateMeta(message_count=5, version=6),
    )
