"""
World-state synchronization engine for LLM role-play chats.

Package layout:
    models/             Pydantic models, field registry and tree validators
    tag_parser          Tag grammar -> per-turn update records
    identity            Character token -> stable id resolution
    merge_engine        Merge rules, timeline guard, presence sync
    manual_edits        Operator edits, locks and turn advancement
    narrative           Change detection and template rendering
    templates           Narrative template sets and stored configs
    pipeline            One parse/merge/diff/render cycle per turn
    storage, journal,
    narrative_configs   File-backed collaborators (outside the core)
    cli                 ``worldstate`` command
"""

__version__ = "1.0.0"
