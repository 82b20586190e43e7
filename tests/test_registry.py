"""
Tests for worldstate/models/registry.py -- entry validation, spellings,
format hints.
"""

import logging

from worldstate.models.base import WorldState
from worldstate.models.registry import (
    FieldShape,
    check_registry_entry,
    load_schema_registry,
)


class TestLoadSchemaRegistry:
    """Tests for building a registry from raw entries."""

    def test_host_format(self, registry):
        schema = registry.get("体力")
        assert schema.shape is FieldShape.NUMERIC
        assert schema.sub_field_names == ["current", "max", "change", "reason"]
        assert schema.index_of("max") == 1
        assert schema.index_of("missing") == -1
        assert schema.default_category == "CV"

    def test_plain_format(self):
        registry = load_schema_registry([{
            "key": "背包",
            "shape": "object-list",
            "fieldSeparator": ";",
            "subFieldSeparator": "#",
            "subFieldOrder": [{"name": "item"}, {"name": "qty", "label": "数量"}],
        }])
        schema = registry.get("背包")
        assert schema.shape is FieldShape.OBJECT_LIST
        assert schema.field_separator == ";"
        assert schema.sub_field_separator == "#"
        assert schema.sub_field_names == ["item", "qty"]
        assert schema.sub_field_order[1].label == "数量"

    def test_defaults(self):
        schema = load_schema_registry([{"key": "心情"}]).get("心情")
        assert schema.shape is FieldShape.SCALAR
        assert schema.field_separator == "|"
        assert schema.sub_field_separator == "@"
        assert not schema.has_structure

    def test_mapping_input(self):
        registry = load_schema_registry({"金币": {"type": "numeric"}, "心情": {}})
        assert "金币" in registry
        assert "心情" in registry
        assert len(registry) == 2

    def test_invalid_entries_are_skipped(self, caplog):
        with caplog.at_level(logging.WARNING, logger="worldstate.models.registry"):
            registry = load_schema_registry([
                {"key": "ok"},
                {"key": ""},
                {"type": "numeric"},
                {"key": "bad", "type": "hexagon"},
                "not-an-object",
            ])
        assert [s.key for s in registry] == ["ok"]
        assert "Skipping registry entry" in caplog.text

    def test_empty_input(self):
        assert len(load_schema_registry(None)) == 0
        assert len(load_schema_registry([])) == 0

    def test_round_trip_definitions(self, registry):
        again = load_schema_registry(registry.to_definitions())
        assert [s.key for s in again] == [s.key for s in registry]
        assert again.get("物品").sub_field_names == ["name", "count"]

    def test_registry_stored_in_tree(self, base_tree):
        assert len(base_tree.schema_registry()) == 0
        tree = WorldState.model_validate({
            **base_tree.to_json_dict(),
            "item_definitions": {"金币": {"type": "numeric"}},
        })
        assert tree.schema_registry().get("金币").shape is FieldShape.NUMERIC


class TestCheckRegistryEntry:
    """Tests for the human-readable validation messages."""

    def test_valid(self):
        assert check_registry_entry({"key": "a", "type": "array", "separator": ","}) == []

    def test_messages(self):
        assert any("missing a required field" in p for p in check_registry_entry({}))
        assert any("unsupported value" in p for p in check_registry_entry({"key": "a", "type": "x"}))
        assert any("must not be empty" in p for p in check_registry_entry({"key": "a", "separator": ""}))


class TestFormatExample:
    """Tests for the tag-format hints shown to the model."""

    def test_numeric_with_parts(self, registry):
        hint = registry.get("体力").format_example()
        assert hint.splitlines()[0] == "[角色^CV|体力::{current}|{max}|{change}|{reason}]"
        assert hint.splitlines()[1] == "# 规则: 当前/上限/变化/原因"

    def test_object_list(self, registry):
        assert registry.get("物品").format_example("CI") == "[角色^CI|物品::{name}@{count}|{name}@{count}]"

    def test_shared_fallback(self, registry):
        assert registry.get("心情").format_example() == "[世界|心情::{心情}]"
        assert registry.get("心情").format_example("Other") == "[Other|心情::{心情}]"
