"""
worldstate/models/registry.py -- Field schema registry.

The registry tells the parser how to split a tag's raw value text and tells
the narrative generator how to compare two values of the same field.  It is
external configuration: the engine only reads it, and treats one registry
instance as a read-only snapshot for a whole parse/merge/diff cycle.

Raw entries are accepted in either spelling:

    host format     {"key", "type", "separator", "partSeparator",
                     "structure": {"parts": [{"key", "label"}]}}
    plain format    {"key", "shape", "fieldSeparator", "subFieldSeparator",
                     "subFieldOrder": [{"name", "label"}]}

Every raw entry is checked with ``jsonschema`` before it becomes a
``FieldSchema``.  Invalid entries are logged and skipped; a registry load
never raises for bad content.

Usage::

    from worldstate.models.registry import load_schema_registry

    registry = load_schema_registry(definitions)
    schema = registry.get("体力")
    schema.shape                  # FieldShape.NUMERIC
    schema.index_of("max")        # 1
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Iterable, Iterator, Optional

import jsonschema
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_FIELD_SEPARATOR = "|"
DEFAULT_SUB_FIELD_SEPARATOR = "@"


class FieldShape(str, Enum):
    """Declared value structure of a field."""

    SCALAR = "text"
    NUMERIC = "numeric"
    ARRAY = "array"
    OBJECT_LIST = "list-of-objects"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            return _SHAPE_ALIASES.get(value.strip().lower())
        return None


_SHAPE_ALIASES = {
    "text": FieldShape.SCALAR,
    "scalar": FieldShape.SCALAR,
    "numeric": FieldShape.NUMERIC,
    "array": FieldShape.ARRAY,
    "list-of-objects": FieldShape.OBJECT_LIST,
    "object-list": FieldShape.OBJECT_LIST,
}


# ------------------------------------------------------------------
# Raw entry validation
# ------------------------------------------------------------------

_PART_SCHEMA = {
    "type": "object",
    "properties": {
        "key": {"type": "string", "minLength": 1},
        "name": {"type": "string", "minLength": 1},
        "label": {"type": "string"},
    },
    "anyOf": [{"required": ["key"]}, {"required": ["name"]}],
}

REGISTRY_ENTRY_SCHEMA = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["key"],
    "properties": {
        "key": {"type": "string", "minLength": 1},
        "name": {"type": "string"},
        "description": {"type": "string"},
        "defaultCategory": {"type": "string"},
        "type": {"enum": sorted(_SHAPE_ALIASES)},
        "shape": {"enum": sorted(_SHAPE_ALIASES)},
        "separator": {"type": "string", "minLength": 1},
        "fieldSeparator": {"type": "string", "minLength": 1},
        "partSeparator": {"type": "string", "minLength": 1},
        "subFieldSeparator": {"type": "string", "minLength": 1},
        "structure": {
            "type": "object",
            "properties": {"parts": {"type": "array", "items": _PART_SCHEMA}},
        },
        "subFieldOrder": {"type": "array", "items": _PART_SCHEMA},
    },
}

_ENTRY_VALIDATOR = jsonschema.Draft202012Validator(REGISTRY_ENTRY_SCHEMA)


def _humanize_error(error: jsonschema.ValidationError) -> str:
    """Turn a jsonschema error into a short plain-English sentence."""
    location = ".".join(str(p) for p in error.absolute_path) or "entry"
    if error.validator == "required":
        return f"{location} is missing a required field ({error.message})"
    if error.validator == "enum":
        return f"{location} has an unsupported value {error.instance!r}"
    if error.validator == "minLength":
        return f"{location} must not be empty"
    return f"{location}: {error.message}"


def check_registry_entry(raw: Any) -> list[str]:
    """Validate one raw registry entry, returning human-readable problems."""
    errors = sorted(_ENTRY_VALIDATOR.iter_errors(raw), key=lambda e: list(e.absolute_path))
    return [_humanize_error(e) for e in errors]


# ------------------------------------------------------------------
# Models
# ------------------------------------------------------------------

class SubField(BaseModel):
    """One named part of a numeric or object-list value."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(alias="key")
    label: str = ""


class FieldSchema(BaseModel):
    """Declared shape and separators of one field key."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    key: str
    shape: FieldShape = Field(FieldShape.SCALAR, alias="type")
    field_separator: str = Field(DEFAULT_FIELD_SEPARATOR, alias="separator")
    sub_field_separator: str = Field(DEFAULT_SUB_FIELD_SEPARATOR, alias="partSeparator")
    sub_field_order: list[SubField] = Field(default_factory=list)
    name: Optional[str] = None
    description: Optional[str] = None
    default_category: Optional[str] = Field(None, alias="defaultCategory")

    @classmethod
    def from_raw(cls, raw: dict) -> "FieldSchema":
        """Build a schema from either raw spelling (see module docstring)."""
        data = dict(raw)
        if "shape" in data and "type" not in data:
            data["type"] = data.pop("shape")
        if isinstance(data.get("type"), str):
            data["type"] = _SHAPE_ALIASES.get(data["type"].strip().lower(), data["type"])
        if "fieldSeparator" in data and "separator" not in data:
            data["separator"] = data.pop("fieldSeparator")
        if "subFieldSeparator" in data and "partSeparator" not in data:
            data["partSeparator"] = data.pop("subFieldSeparator")
        parts = data.pop("subFieldOrder", None)
        if parts is None:
            parts = (data.pop("structure", None) or {}).get("parts", [])
        data["sub_field_order"] = [
            {"key": p.get("key") or p.get("name"), "label": p.get("label", "")}
            for p in parts
        ]
        return cls.model_validate(data)

    @property
    def sub_field_names(self) -> list[str]:
        return [part.name for part in self.sub_field_order]

    @property
    def has_structure(self) -> bool:
        return bool(self.sub_field_order)

    def index_of(self, name: str) -> int:
        """Position of a named sub-field, or -1 when it is not declared."""
        for index, part in enumerate(self.sub_field_order):
            if part.name == name:
                return index
        return -1

    def format_example(self, category: str | None = None) -> str:
        """Render the tag line a model should emit for this field.

        Character-scoped categories produce ``[角色^CAT|key::...]``; a
        missing category or ``Other`` falls back to the legacy shared form.
        A ``# 规则:`` line carrying the description is appended when set.
        """
        category = category or self.default_category or ""
        if self.shape is FieldShape.OBJECT_LIST:
            if self.sub_field_order:
                one = self.sub_field_separator.join(f"{{{n}}}" for n in self.sub_field_names)
            else:
                one = "{object_part_1}@{object_part_2}"
            example = f"{one}{self.field_separator}{one}"
        elif self.sub_field_order:
            example = self.field_separator.join(f"{{{n}}}" for n in self.sub_field_names)
        elif self.shape is FieldShape.ARRAY:
            example = f"{{{self.name or self.key}}}"
        else:
            example = f"{{{self.key}}}"

        if category and category != "Other":
            line = f"[角色^{category}|{self.key}::{example}]"
        else:
            line = f"[{category or '世界'}|{self.key}::{example}]"
        if self.description:
            line += f"\n# 规则: {self.description}"
        return line


class SchemaRegistry:
    """Read-only lookup of ``FieldSchema`` by field key."""

    def __init__(self, schemas: Iterable[FieldSchema] = ()):
        self._schemas: dict[str, FieldSchema] = {}
        for schema in schemas:
            self._schemas[schema.key] = schema

    def get(self, key: str) -> FieldSchema | None:
        return self._schemas.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._schemas

    def __iter__(self) -> Iterator[FieldSchema]:
        return iter(self._schemas.values())

    def __len__(self) -> int:
        return len(self._schemas)

    def to_definitions(self) -> list[dict]:
        """Serialise back to host-format entries."""
        out = []
        for schema in self._schemas.values():
            entry = schema.model_dump(by_alias=True, exclude_none=True, mode="json")
            parts = entry.pop("sub_field_order", [])
            if parts:
                entry["structure"] = {"parts": parts}
            out.append(entry)
        return out


def load_schema_registry(definitions: Any) -> SchemaRegistry:
    """Build a ``SchemaRegistry`` from raw definitions.

    Parameters
    ----------
    definitions : list[dict] or dict[str, dict] or None
        Raw entries, either as a list or a mapping keyed by field key (the
        host's ``item_definitions``).  For mappings a missing ``key`` is
        filled from the mapping key.

    Returns
    -------
    SchemaRegistry
        Registry of every entry that passed validation.  Rejected entries
        are reported through the module logger.
    """
    if not definitions:
        return SchemaRegistry()

    if isinstance(definitions, dict):
        raw_entries = []
        for key, entry in definitions.items():
            if isinstance(entry, dict):
                entry = {"key": key, **entry}
            raw_entries.append(entry)
    else:
        raw_entries = list(definitions)

    schemas: list[FieldSchema] = []
    for raw in raw_entries:
        problems = check_registry_entry(raw)
        if problems:
            logger.warning("Skipping registry entry %r: %s", _entry_label(raw), "; ".join(problems))
            continue
        try:
            schemas.append(FieldSchema.from_raw(raw))
        except ValidationError as exc:
            logger.warning("Skipping registry entry %r: %s", _entry_label(raw), exc)
            continue
    return SchemaRegistry(schemas)


def _entry_label(raw: Any) -> str:
    if isinstance(raw, dict):
        return str(raw.get("key", "?"))
    return type(raw).__name__
