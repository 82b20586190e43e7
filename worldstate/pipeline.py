"""
worldstate/pipeline.py -- One synchronous sync cycle per chat turn.

Ties the core stages together for hosts that do not need them separately::

    parse_tags -> merge_world_state -> detect_changes -> render_narrative

Usage:
    from worldstate.pipeline import SyncPipeline

    pipeline = SyncPipeline(registry, template_set)
    result = pipeline.process_turn(tree, chat_text, turn_sequence=7)
    store.save(result.tree)
    print(result.narrative)

The pipeline holds only read-only configuration (registry and templates);
the tree is passed in and returned, never stored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from worldstate.merge_engine import merge_world_state
from worldstate.models.base import WorldState
from worldstate.models.registry import SchemaRegistry
from worldstate.narrative import ChangeEvent, detect_changes, render_narrative
from worldstate.tag_parser import parse_tags
from worldstate.templates import TemplateSet

logger = logging.getLogger(__name__)


@dataclass
class TurnResult:
    """Everything one turn produced."""

    tree: WorldState
    warnings: list[str] = field(default_factory=list)
    logs: list[str] = field(default_factory=list)
    events: list[ChangeEvent] = field(default_factory=list)
    narrative: str = ""

    @property
    def rejected(self) -> bool:
        return bool(self.warnings)


class SyncPipeline:
    """Parse, merge, diff and narrate one turn.

    Parameters
    ----------
    registry : SchemaRegistry, optional
        Field shapes used by both the parser and the change detector.  When
        empty, each turn uses the registry stored in the tree itself
        (``item_definitions``).
    template_set : TemplateSet, optional
        Narrative templates; defaults to the built-in set.
    """

    def __init__(self, registry: SchemaRegistry | None = None, template_set: TemplateSet | None = None):
        self.registry = registry or SchemaRegistry()
        self.template_set = template_set or TemplateSet()

    def process_turn(
        self,
        tree: WorldState,
        text: str,
        turn_sequence: int,
        *,
        timestamp: str | None = None,
    ) -> TurnResult:
        registry = self.registry if len(self.registry) else tree.schema_registry()
        update = parse_tags(text, turn_sequence, registry)
        merged = merge_world_state(tree, update, turn_sequence, timestamp=timestamp)
        if merged.rejected:
            return TurnResult(tree=merged.tree, warnings=list(merged.warnings))

        events = detect_changes(tree, merged.tree, registry)
        narrative = render_narrative(events, self.template_set)
        logger.info(
            "Turn %d: %d decision(s), %d change event(s)",
            turn_sequence, len(merged.logs), len(events),
        )
        return TurnResult(
            tree=merged.tree,
            logs=list(merged.logs),
            events=events,
            narrative=narrative,
        )
