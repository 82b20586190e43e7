"""
worldstate/cli.py -- Command-line front end.

Usage::

    worldstate apply reply.txt --turn 7 --journal
    cat reply.txt | worldstate apply - --turn 7
    worldstate advance
    worldstate validate
    worldstate hint

Every command works on the files in ``--data-dir`` (the platform user data
directory by default): ``state.json``, ``registry.json``,
``narrative-configs.json`` and ``memory-journal.jsonl``.  Individual files
can be overridden with ``--state`` / ``--registry``.  Without a registry file
the ``item_definitions`` stored in the state are used.  A state file that
exists but cannot be loaded is a usage error and is never overwritten.

Exit codes: 0 success, 1 rejected batch or validation issues, 2 usage error.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from worldstate.journal import MemoryJournal
from worldstate.manual_edits import advance_turn
from worldstate.models.base import WorldState
from worldstate.models.registry import SchemaRegistry, load_schema_registry
from worldstate.models.validators import validate_world_state
from worldstate.narrative_configs import NarrativeConfigStore
from worldstate.pipeline import SyncPipeline
from worldstate.storage import (
    JOURNAL_FILENAME,
    NARRATIVE_CONFIG_FILENAME,
    REGISTRY_FILENAME,
    STATE_FILENAME,
    StateFileError,
    WorldStateStore,
    default_data_dir,
)
from worldstate.utils import safe_read_json

logger = logging.getLogger("worldstate")

EXIT_OK = 0
EXIT_ISSUES = 1
EXIT_USAGE = 2


class UsageError(Exception):
    """Bad arguments or unreadable input files."""


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _data_dir(args) -> Path:
    return Path(args.data_dir) if args.data_dir else default_data_dir()


def _load_registry(args, tree: WorldState | None = None) -> SchemaRegistry:
    if args.registry:
        path = Path(args.registry)
        definitions = safe_read_json(path, default=None)
        if definitions is None:
            raise UsageError(f"Cannot read registry file: {path}")
        return load_schema_registry(definitions)

    definitions = safe_read_json(_data_dir(args) / REGISTRY_FILENAME, default=None)
    if definitions is None:
        logger.debug("No registry file, using the item_definitions stored in the state")
        if tree is None:
            tree = _load_state(_state_store(args))
        return tree.schema_registry()
    return load_schema_registry(definitions)


def _state_store(args) -> WorldStateStore:
    return WorldStateStore(args.state or _data_dir(args) / STATE_FILENAME)


def _load_state(store: WorldStateStore) -> WorldState:
    try:
        return store.load()
    except StateFileError as exc:
        raise UsageError(f"{exc}; fix or move the file, it was left untouched") from exc


def _read_text(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    try:
        return Path(source).read_text(encoding="utf-8")
    except OSError as exc:
        raise UsageError(f"Cannot read input text: {exc}") from exc


# ------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------

def cmd_apply(args) -> int:
    store = _state_store(args)
    tree = _load_state(store)
    registry = _load_registry(args, tree)
    configs = NarrativeConfigStore(_data_dir(args) / NARRATIVE_CONFIG_FILENAME)
    pipeline = SyncPipeline(registry, configs.active_template_set())

    turn = args.turn if args.turn is not None else tree.meta.message_count
    result = pipeline.process_turn(tree, _read_text(args.input), turn)

    for warning in result.warnings:
        print(f"WARNING: {warning}", file=sys.stderr)
    if result.rejected:
        return EXIT_ISSUES

    if args.show_log:
        for line in result.logs:
            print(line)
    if result.narrative:
        print(result.narrative)

    if args.dry_run:
        return EXIT_OK
    store.save(result.tree)
    if args.journal:
        MemoryJournal(_data_dir(args) / JOURNAL_FILENAME).record(turn, result.narrative)
    return EXIT_OK


def cmd_advance(args) -> int:
    store = _state_store(args)
    tree, unlocked = advance_turn(_load_state(store))
    store.save(tree)
    print(f"Turn {tree.meta.message_count}: {unlocked} item(s) unlocked")
    return EXIT_OK


def cmd_validate(args) -> int:
    issues = validate_world_state(_load_state(_state_store(args)))
    for issue in issues:
        print(issue)
    if issues:
        return EXIT_ISSUES
    print("OK")
    return EXIT_OK


def cmd_hint(args) -> int:
    registry = _load_registry(args)
    for schema in registry:
        print(schema.format_example())
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="worldstate", description="Keep a role-play world state in sync with chat tags")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log field-level decisions")
    parser.add_argument("--data-dir", help="Directory holding the state, registry and config files")
    parser.add_argument("--state", help="State file (overrides --data-dir)")
    parser.add_argument("--registry", help="Field registry JSON file (overrides --data-dir)")
    sub = parser.add_subparsers(dest="command", required=True)

    p_apply = sub.add_parser("apply", help="Merge the tags in a chat message into the state")
    p_apply.add_argument("input", help="Text file with the message, or '-' for stdin")
    p_apply.add_argument("--turn", type=int, help="Turn sequence of the message (default: current turn)")
    p_apply.add_argument("--journal", action="store_true", help="Append the narrative to the memory journal")
    p_apply.add_argument("--dry-run", action="store_true", help="Do not write the state file")
    p_apply.add_argument("--show-log", action="store_true", help="Print merge decisions before the narrative")
    p_apply.set_defaults(func=cmd_apply)

    p_advance = sub.add_parser("advance", help="Move to the next turn and release manual locks")
    p_advance.set_defaults(func=cmd_advance)

    p_validate = sub.add_parser("validate", help="Check the state file for structural problems")
    p_validate.set_defaults(func=cmd_validate)

    p_hint = sub.add_parser("hint", help="Print the tag format for each registered field")
    p_hint.set_defaults(func=cmd_hint)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose)
    try:
        return args.func(args)
    except UsageError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
