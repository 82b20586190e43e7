"""
worldstate/tag_parser.py -- Tag parser for model-authored status lines.

Scans free-form chat text for bracketed assignment tags and turns each into
a typed ``Record``.  Parsing happens in two explicit stages:

    1. ``tokenize_line`` matches one line against the two line grammars and
       yields a ``TagLine`` (actor, category, key, raw value text).
    2. ``split_values`` splits the value text according to the field's
       declared shape in the schema registry.

Grammars (first match wins, anywhere in the line):

    [<actor>^<category>|<key>::<v1>|<v2>...]     character-scoped
    [<category>|<key>::<values>]                 legacy, shared scope

Lines that are blank, start with ``#``, match neither grammar, or carry an
empty value are dropped without error -- the input is model output and must
degrade gracefully.

Character-scoped tags in category ``Meta``/``System`` are presence
directives: they land in ``ParsedUpdate.meta`` and never become Records.

Usage::

    from worldstate.tag_parser import parse_tags

    update = parse_tags(text, turn_sequence=6, registry=registry)
    update.characters["Eria"]["CV"][0].values   # ["80", "100", "-5", "中毒"]
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Union

from worldstate.models.base import DELETION_SENTINEL
from worldstate.models.registry import (
    DEFAULT_FIELD_SEPARATOR,
    FieldSchema,
    FieldShape,
    SchemaRegistry,
)
from worldstate.utils import parse_boolean

logger = logging.getLogger(__name__)

COMMENT_PREFIX = "#"
META_CATEGORIES = frozenset({"meta", "system"})
PRESENCE_KEYS = frozenset({"present", "visible"})

_SCOPED_TAG = re.compile(
    r"\[([^\^|:\[\]]+)\^([a-zA-Z0-9_-]+)\|([^\^|:\[\]]+)::([^\]\^:\[\]]*)\]"
)
_LEGACY_TAG = re.compile(r"\[([a-zA-Z0-9_-]+)\|(.*?)::(.*)\]")

RecordValues = Union[list[str], list[dict[str, str]]]


@dataclass(frozen=True)
class TagLine:
    """One matched tag before any value splitting."""

    category: str
    key: str
    value_text: str
    raw_line: str
    actor: Optional[str] = None

    @property
    def is_meta(self) -> bool:
        return self.actor is not None and self.category.lower() in META_CATEGORIES


@dataclass
class Record:
    """A parsed field assignment, consumed once by the merge engine."""

    key: str
    category: str
    values: RecordValues
    source_sequence: int
    raw_line: str = ""
    actor: Optional[str] = None

    @property
    def is_shared(self) -> bool:
        return self.actor is None


@dataclass
class PresenceDirective:
    """Structural presence update for one actor."""

    is_present: Optional[bool] = None


@dataclass
class ParsedUpdate:
    """Parser output, partitioned by scope.

    ``shared`` maps category -> records; ``characters`` maps the raw actor
    token (not yet resolved to an id) -> category -> records; ``meta`` maps
    the raw actor token -> presence directive.
    """

    shared: dict[str, list[Record]] = field(default_factory=dict)
    characters: dict[str, dict[str, list[Record]]] = field(default_factory=dict)
    meta: dict[str, PresenceDirective] = field(default_factory=dict)

    def records(self) -> list[Record]:
        """Flatten every record, shared first, in parse order."""
        out: list[Record] = []
        for items in self.shared.values():
            out.extend(items)
        for categories in self.characters.values():
            for items in categories.values():
                out.extend(items)
        return out

    def is_empty(self) -> bool:
        return not (self.shared or self.characters or self.meta)


# ------------------------------------------------------------------
# Stage 1: line grammar
# ------------------------------------------------------------------

def tokenize_line(line: str) -> TagLine | None:
    """Match *line* against the scoped grammar, then the legacy one."""
    match = _SCOPED_TAG.search(line)
    if match:
        actor, category, key, value = (part.strip() for part in match.groups())
        return TagLine(category=category, key=key, value_text=value, raw_line=line, actor=actor)

    match = _LEGACY_TAG.search(line)
    if match:
        category, key, value = (part.strip() for part in match.groups())
        return TagLine(category=category, key=key, value_text=value, raw_line=line)
    return None


def iter_tag_lines(text: str):
    """Yield a ``TagLine`` for every usable line of *text*."""
    if not text:
        return
    for line in text.split("\n"):
        stripped = line.strip()
        if not stripped or stripped.startswith(COMMENT_PREFIX):
            continue
        tag = tokenize_line(line)
        if tag is None:
            continue
        if not tag.value_text:
            continue
        yield tag


# ------------------------------------------------------------------
# Stage 2: shape-directed value splitting
# ------------------------------------------------------------------

def split_values(value_text: str, schema: FieldSchema | None) -> RecordValues:
    """Split raw value text into the value list for the field's shape.

    The deletion sentinel ``nil`` is kept as ``["nil"]`` for every shape so
    the merge engine recognises it uniformly.
    """
    if value_text == DELETION_SENTINEL:
        return [DELETION_SENTINEL]
    if schema is None:
        return _split_plain(value_text, DEFAULT_FIELD_SEPARATOR)

    shape = schema.shape
    if shape is FieldShape.OBJECT_LIST:
        return _split_objects(value_text, schema)
    if shape in (FieldShape.SCALAR, FieldShape.NUMERIC, FieldShape.ARRAY):
        return _split_plain(value_text, schema.field_separator or DEFAULT_FIELD_SEPARATOR)
    raise AssertionError(f"Unhandled field shape: {shape!r}")


def _split_plain(value_text: str, separator: str) -> list[str]:
    return [part.strip() for part in value_text.split(separator)]


def _split_objects(value_text: str, schema: FieldSchema) -> RecordValues:
    names = schema.sub_field_names
    if not names:
        # No declared structure: keep the whole text as one opaque value.
        return [value_text]
    entries: list[dict[str, str]] = []
    for chunk in value_text.split(schema.field_separator or DEFAULT_FIELD_SEPARATOR):
        parts = chunk.split(schema.sub_field_separator)
        entries.append({
            name: (parts[index] if index < len(parts) else "").strip()
            for index, name in enumerate(names)
        })
    return entries


# ------------------------------------------------------------------
# Entry point
# ------------------------------------------------------------------

def parse_tags(
    text: str,
    turn_sequence: int,
    registry: SchemaRegistry | None = None,
) -> ParsedUpdate:
    """Parse every tag in *text* into a ``ParsedUpdate``.

    Parameters
    ----------
    text : str
        Raw multi-line chat text.
    turn_sequence : int
        The chat turn that produced *text*; copied onto every Record.
    registry : SchemaRegistry, optional
        Field shapes.  Unknown keys (or no registry) split on ``|``.

    Returns
    -------
    ParsedUpdate
        Records grouped by scope and category, plus presence directives.
    """
    registry = registry or SchemaRegistry()
    result = ParsedUpdate()
    dropped_meta = 0

    for tag in iter_tag_lines(text):
        if tag.is_meta:
            if not _apply_meta_tag(result, tag):
                dropped_meta += 1
            continue

        record = Record(
            key=tag.key,
            category=tag.category,
            values=split_values(tag.value_text, registry.get(tag.key)),
            source_sequence=turn_sequence,
            raw_line=tag.raw_line,
            actor=tag.actor,
        )
        if record.actor is None:
            bucket = result.shared
        else:
            bucket = result.characters.setdefault(record.actor, {})
        bucket.setdefault(record.category, []).append(record)

    logger.debug(
        "Parsed turn %d: %d record(s), %d presence directive(s), %d meta tag(s) ignored",
        turn_sequence, len(result.records()), len(result.meta), dropped_meta,
    )
    return result


def _apply_meta_tag(result: ParsedUpdate, tag: TagLine) -> bool:
    """Route a Meta/System tag into the directive partition."""
    value = parse_boolean(tag.value_text)
    if value is None:
        return False
    if tag.key.lower() not in PRESENCE_KEYS:
        return False
    directive = result.meta.setdefault(tag.actor, PresenceDirective())
    directive.is_present = value
    return True
