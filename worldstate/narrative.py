"""
worldstate/narrative.py -- Narrative diff generator.

Compares two world-state trees and describes what changed in prose, for
injection into the chat's long-term memory.  Two pure steps:

    detect_changes(old, new, registry)  -> [ChangeEvent, ...]
    render_narrative(events, templates) -> "line\\nline..."

Classification per field:

    numeric   ``current`` moved; dramatic when |diff| / base >= 0.30
    array     multiset difference -> added / removed / replaced
    text      first value differs
    presence  a character entered or left the scene

The field's shape comes from the schema registry when declared, otherwise
from a heuristic over the values.  Event order is deterministic: shared
categories first, then each character (presence event before field events).

Rendering looks up ``"<type>_<source>"`` then ``"<type>"`` in the template
set; events without a template are dropped.  Placeholders that cannot be
resolved stay in the text as ``{name}`` so a broken template is visible.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from worldstate.identity import resolve_display_name
from worldstate.models.base import USER_ID, USER_NAME, Item, WorldState
from worldstate.models.registry import FieldSchema, FieldShape, SchemaRegistry
from worldstate.tag_parser import META_CATEGORIES, PRESENCE_KEYS
from worldstate.templates import PLACEHOLDER_PATTERN, TemplateSet
from worldstate.utils import format_number, parse_leading_number

logger = logging.getLogger(__name__)

# Categories whose fields are always compared as collections.
SINGLE_STRUCTURE_CATEGORIES = frozenset({"CP", "CR", "CS", "AE"})
NUMERIC_RELATIVE_THRESHOLD = 0.3

PRESENCE_CATEGORY = "meta"
PRESENCE_KEY = "presence"


class ChangeType(str, Enum):
    ITEM_ADDED = "item_added"
    ITEM_REMOVED = "item_removed"
    NUMERIC_DRAMATIC_INCREASE = "numeric_dramatic_increase"
    NUMERIC_DRAMATIC_DECREASE = "numeric_dramatic_decrease"
    NUMERIC_SUBTLE_INCREASE = "numeric_subtle_increase"
    NUMERIC_SUBTLE_DECREASE = "numeric_subtle_decrease"
    ARRAY_ITEMS_ADDED = "array_items_added"
    ARRAY_ITEMS_REMOVED = "array_items_removed"
    ARRAY_ITEMS_REPLACED = "array_items_replaced"
    TEXT_CHANGE = "text_change"
    CHARACTER_ENTERS = "character_enters"
    CHARACTER_LEAVES = "character_leaves"


class DataShape(str, Enum):
    NUMERIC = "numeric"
    ARRAY = "array"
    TEXT = "text"


@dataclass(frozen=True)
class NumericReading:
    """Named parts of a numeric field, parsed from its value list."""

    current: Optional[float]
    maximum: Optional[float] = None
    change: Optional[float] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class ChangeEvent:
    source: str
    character: Optional[str]
    category: str
    key: str
    change_type: ChangeType
    data_shape: DataShape
    previous_values: Any = None
    current_values: Any = None
    details: dict = field(default_factory=dict)


# ------------------------------------------------------------------
# Shape inference and numeric readings
# ------------------------------------------------------------------

def infer_shape(item: Item, category: str, schema: FieldSchema | None = None) -> DataShape:
    """Declared shape when known, otherwise a heuristic over the values."""
    if schema is not None:
        shape = schema.shape
        if shape is FieldShape.NUMERIC:
            return DataShape.NUMERIC
        if shape in (FieldShape.ARRAY, FieldShape.OBJECT_LIST):
            return DataShape.ARRAY
        if shape is FieldShape.SCALAR:
            return DataShape.TEXT
        raise AssertionError(f"Unhandled field shape: {shape!r}")

    values = item.values
    leading = parse_leading_number(values[0]) if values else None
    if leading is not None and len(values) > 1:
        return DataShape.NUMERIC
    if category in SINGLE_STRUCTURE_CATEGORIES or (len(values) > 1 and leading is None):
        return DataShape.ARRAY
    return DataShape.TEXT


def read_numeric(values: list, schema: FieldSchema | None = None) -> NumericReading:
    """Parse ``current``/``max``/``change``/``reason`` out of *values*.

    Without a declared structure the layout is ``[current, max, change,
    reason]``.  With one, parts are found by name; ``current`` falls back to
    ``value`` and then to the first element.
    """
    current_at, max_at, change_at, reason_at = 0, 1, 2, 3
    if schema is not None and schema.has_structure:
        current_at = schema.index_of("current")
        if current_at == -1:
            current_at = schema.index_of("value")
        if current_at == -1:
            current_at = 0
        max_at = schema.index_of("max")
        change_at = schema.index_of("change")
        reason_at = schema.index_of("reason")

    def at(index: int):
        if 0 <= index < len(values) and isinstance(values[index], str):
            return values[index]
        return None

    return NumericReading(
        current=parse_leading_number(at(current_at)),
        maximum=parse_leading_number(at(max_at)),
        change=parse_leading_number(at(change_at)),
        reason=at(reason_at) or None,
    )


def numeric_ratio(old_current: float, new_current: float, maximum: float | None) -> float:
    """Relative size of a numeric change.

    Relative to ``maximum`` when one is known; otherwise relative to the old
    value, with a base of 1 when the old value is 0.
    """
    diff = new_current - old_current
    if maximum:
        return abs(diff) / maximum
    if old_current == 0:
        base = 1 if new_current != 0 else 100
    else:
        base = old_current
    return abs(diff) / abs(base)


def classify_numeric(old_current: float, new_current: float, maximum: float | None) -> ChangeType:
    ratio = numeric_ratio(old_current, new_current, maximum)
    dramatic = ratio >= NUMERIC_RELATIVE_THRESHOLD
    increase = new_current - old_current > 0
    if dramatic:
        return ChangeType.NUMERIC_DRAMATIC_INCREASE if increase else ChangeType.NUMERIC_DRAMATIC_DECREASE
    return ChangeType.NUMERIC_SUBTLE_INCREASE if increase else ChangeType.NUMERIC_SUBTLE_DECREASE


def _multiset_difference(left: list, right: list) -> list:
    remaining = list(right)
    out = []
    for value in left:
        for index, candidate in enumerate(remaining):
            if candidate == value:
                del remaining[index]
                break
        else:
            out.append(value)
    return [v for v in out if v]


# ------------------------------------------------------------------
# Change detection
# ------------------------------------------------------------------

def compare_items(
    old: Item | None,
    new: Item | None,
    character: str | None,
    category: str,
    key: str,
    schema: FieldSchema | None = None,
) -> ChangeEvent | None:
    """Classify the change of one field, or return None when unchanged."""
    reference = new if new is not None else old
    if reference is None:
        return None
    shape = infer_shape(reference, category, schema)

    if old is None:
        return ChangeEvent(
            source="user" if new.user_locked else "ai",
            character=character, category=category, key=key,
            change_type=ChangeType.ITEM_ADDED, data_shape=shape,
            previous_values=None, current_values=list(new.values),
            details={"value": list(new.values)},
        )
    if new is None:
        return ChangeEvent(
            source="ai",
            character=character, category=category, key=key,
            change_type=ChangeType.ITEM_REMOVED, data_shape=shape,
            previous_values=list(old.values), current_values=None,
            details={"value": list(old.values)},
        )
    if old.values == new.values:
        return None

    source = "user" if new.user_locked else "ai"
    common = dict(
        source=source, character=character, category=category, key=key,
        previous_values=list(old.values), current_values=list(new.values),
    )

    if shape is DataShape.NUMERIC:
        before = read_numeric(old.values, schema)
        after = read_numeric(new.values, schema)
        if before.current is None or after.current is None:
            return None
        if before.current == after.current:
            return None
        maximum = after.maximum or before.maximum
        reason = after.reason
        if not reason and len(new.values) > 3 and isinstance(new.values[3], str):
            reason = new.values[3] or None
        return ChangeEvent(
            change_type=classify_numeric(before.current, after.current, maximum),
            data_shape=DataShape.NUMERIC,
            details={
                "from": before.current,
                "to": after.current,
                "change": after.current - before.current,
                "max": maximum,
                "reason": reason,
                "ratio": numeric_ratio(before.current, after.current, maximum),
            },
            **common,
        )

    if shape is DataShape.ARRAY:
        added = _multiset_difference(new.values, old.values)
        removed = _multiset_difference(old.values, new.values)
        if added and removed:
            change_type = ChangeType.ARRAY_ITEMS_REPLACED
        elif added:
            change_type = ChangeType.ARRAY_ITEMS_ADDED
        elif removed:
            change_type = ChangeType.ARRAY_ITEMS_REMOVED
        else:
            return None
        return ChangeEvent(
            change_type=change_type, data_shape=DataShape.ARRAY,
            details={"added": added, "removed": removed},
            **common,
        )

    if shape is DataShape.TEXT:
        old_first = old.values[0] if old.values else None
        new_first = new.values[0] if new.values else None
        if old_first == new_first:
            return None
        return ChangeEvent(
            change_type=ChangeType.TEXT_CHANGE, data_shape=DataShape.TEXT,
            details={"from": old_first, "to": new_first, "value": new_first},
            **common,
        )
    raise AssertionError(f"Unhandled data shape: {shape!r}")


def detect_changes(
    old: WorldState,
    new: WorldState,
    registry: SchemaRegistry | None = None,
) -> list[ChangeEvent]:
    """List every change between two trees, in a stable order."""
    registry = registry or SchemaRegistry()
    events: list[ChangeEvent] = []

    _compare_partitions(old.shared, new.shared, None, registry, events)

    character_ids = list(dict.fromkeys(
        [*old.id_map, *old.characters, *new.id_map, *new.characters]
    ))
    for character_id in character_ids:
        label = _character_label(old, new, character_id)
        presence = _presence_event(old, new, character_id, label)
        if presence is not None:
            events.append(presence)
        _compare_partitions(
            old.characters.get(character_id) or {},
            new.characters.get(character_id) or {},
            label, registry, events,
        )

    logger.debug("Detected %d change event(s)", len(events))
    return events


def _compare_partitions(old_part, new_part, label, registry, events) -> None:
    for category in dict.fromkeys([*old_part, *new_part]):
        old_items = old_part.get(category) or []
        new_items = new_part.get(category) or []
        keys = dict.fromkeys([i.key for i in old_items] + [i.key for i in new_items])
        for key in keys:
            event = compare_items(
                _first_with_key(old_items, key),
                _first_with_key(new_items, key),
                label, category, key, registry.get(key),
            )
            if event is not None:
                events.append(event)


def _first_with_key(items: list[Item], key: str) -> Item | None:
    return next((i for i in items if i.key == key), None)


def _character_label(old: WorldState, new: WorldState, character_id: str) -> str:
    if character_id == USER_ID:
        return USER_NAME
    if character_id in new.id_map or character_id in new.characters:
        return resolve_display_name(new, character_id)
    return resolve_display_name(old, character_id)


def _presence_event(old: WorldState, new: WorldState, character_id: str, label: str) -> ChangeEvent | None:
    was_present = old.is_present(character_id)
    is_present = new.is_present(character_id)
    if was_present == is_present:
        return None
    return ChangeEvent(
        source=_presence_source(new, character_id),
        character=label,
        category=PRESENCE_CATEGORY,
        key=PRESENCE_KEY,
        change_type=ChangeType.CHARACTER_ENTERS if is_present else ChangeType.CHARACTER_LEAVES,
        data_shape=DataShape.TEXT,
        previous_values=was_present,
        current_values=is_present,
        details={"message": f"{label} {'enters' if is_present else 'leaves'}."},
    )


def _presence_source(tree: WorldState, character_id: str) -> str:
    """``user`` when the character's presence field is a locked manual edit."""
    for category, items in (tree.characters.get(character_id) or {}).items():
        if category.lower() not in META_CATEGORIES:
            continue
        for item in items:
            if item.key.lower() in PRESENCE_KEYS:
                return "user" if item.user_locked else "ai"
    return "ai"


# ------------------------------------------------------------------
# Rendering
# ------------------------------------------------------------------

def _format_entry(value, template_set: TemplateSet) -> str:
    if isinstance(value, dict):
        parts = [v for v in value.values() if v not in (None, "")]
        return str(parts[0]) if parts else ""
    if isinstance(value, list):
        return "(" + template_set.text_separator.join(str(v) for v in value) + ")"
    return str(value)


def _format_list(values, template_set: TemplateSet) -> str:
    if not isinstance(values, list):
        return "" if values is None else str(values)
    return template_set.list_separator.join(_format_entry(v, template_set) for v in values)


def _format_plain(values, template_set: TemplateSet) -> str:
    if values is None:
        return ""
    if isinstance(values, list):
        return template_set.text_separator.join(_format_entry(v, template_set) for v in values)
    return str(values)


def placeholder_values(event: ChangeEvent, template_set: TemplateSet) -> dict[str, str]:
    """Build the placeholder lookup table for one event."""
    character = event.character
    if character is None:
        name = template_set.world_label
    elif character == USER_NAME:
        name = template_set.user_label
    else:
        name = character
    prefix = f"{name}{template_set.possessive}" if character else ""

    table = {
        "name": name, "角色名": name,
        "key": event.key, "键名": event.key,
        "prefix": prefix, "前缀": prefix,
    }

    old_text = _format_plain(event.previous_values, template_set)
    new_text = _format_plain(event.current_values, template_set)
    table.update({
        "old": old_text, "旧值": old_text, "previousValue": old_text,
        "new": new_text, "新值": new_text, "value": new_text,
    })

    details = event.details
    if event.data_shape is DataShape.NUMERIC and "from" in details:
        change = details.get("change") or 0
        diff = f"+{format_number(change)}" if change > 0 else format_number(change)
        reason = details.get("reason") or template_set.unknown_reason
        table.update({
            "old": format_number(details["from"]), "旧值": format_number(details["from"]),
            "new": format_number(details["to"]), "新值": format_number(details["to"]),
            "diff": diff, "变化量": diff,
            "diff_abs": format_number(abs(change)), "变化量绝对值": format_number(abs(change)),
            "reason": reason, "原因": reason,
        })
    elif event.data_shape is DataShape.ARRAY:
        added = _format_list(details.get("added") or [], template_set)
        removed = _format_list(details.get("removed") or [], template_set)
        list_new = _format_list(event.current_values or [], template_set)
        list_old = _format_list(event.previous_values or [], template_set)
        table.update({
            "added": added, "新增项": added,
            "removed": removed, "移除项": removed,
            "list_new": list_new, "新列表": list_new,
            "list_old": list_old, "旧列表": list_old,
        })
    return table


def render_event(event: ChangeEvent, template_set: TemplateSet) -> str | None:
    """Render one event, or return None when it has no template or is excluded."""
    if event.key in template_set.excluded_keys:
        return None
    template = template_set.lookup(event.change_type.value, event.source)
    if not template:
        return None
    table = placeholder_values(event, template_set)
    return PLACEHOLDER_PATTERN.sub(lambda m: table.get(m.group(1), m.group(0)), template)


def render_narrative(events: list[ChangeEvent], template_set: TemplateSet | None = None) -> str:
    """Render *events* into newline-joined prose."""
    template_set = template_set or TemplateSet()
    lines = []
    for event in events:
        line = render_event(event, template_set)
        if line is not None:
            lines.append(line)
    return "\n".join(lines)
