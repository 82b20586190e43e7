"""
Tests for worldstate/cli.py -- the ``worldstate`` command.
"""

import io
import json

import pytest

from worldstate.cli import EXIT_ISSUES, EXIT_OK, EXIT_USAGE, main
from worldstate.journal import MemoryJournal
from worldstate.models.base import WorldState
from worldstate.storage import WorldStateStore


@pytest.fixture
def data_dir(tmp_path, registry_definitions):
    """A data directory holding only a registry file."""
    path = tmp_path / "data"
    path.mkdir()
    (path / "registry.json").write_text(
        json.dumps(registry_definitions, ensure_ascii=False), encoding="utf-8",
    )
    return path


def _reply(tmp_path, text):
    path = tmp_path / "reply.txt"
    path.write_text(text, encoding="utf-8")
    return str(path)


class TestApply:
    """Tests for ``worldstate apply``."""

    def test_apply_saves_and_prints(self, tmp_path, data_dir, capsys):
        reply = _reply(tmp_path, "[Eria^CV|体力::80|100]\n")
        code = main(["--data-dir", str(data_dir), "apply", reply, "--turn", "1", "--journal"])
        assert code == EXIT_OK
        assert capsys.readouterr().out.strip() == "Eria拥有了新的体力，初始值为：80，100。"

        tree = WorldStateStore(data_dir / "state.json").load()
        assert tree.meta.message_count == 1
        assert tree.find_item("Eria", "CV", "体力").values == ["80", "100"]

        latest = MemoryJournal(data_dir / "memory-journal.jsonl").latest()
        assert latest["turn"] == 1
        assert "体力" in latest["narrative"]

    def test_show_log(self, tmp_path, data_dir, capsys):
        reply = _reply(tmp_path, "[ST|天气::晴]\n")
        main(["--data-dir", str(data_dir), "apply", reply, "--show-log"])
        out = capsys.readouterr().out.splitlines()
        assert out[0] == "[Shared][ST|天气] added"

    def test_dry_run(self, tmp_path, data_dir):
        reply = _reply(tmp_path, "[ST|天气::晴]\n")
        assert main(["--data-dir", str(data_dir), "apply", reply, "--dry-run"]) == EXIT_OK
        assert not (data_dir / "state.json").exists()

    def test_stdin(self, data_dir, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO("[ST|天气::雨]\n"))
        assert main(["--data-dir", str(data_dir), "apply", "-"]) == EXIT_OK
        tree = WorldStateStore(data_dir / "state.json").load()
        assert tree.shared["ST"][0].values == ["雨"]

    def test_rejected_batch(self, tmp_path, data_dir, base_tree, capsys):
        WorldStateStore(data_dir / "state.json").save(base_tree)
        reply = _reply(tmp_path, "[ST|天气::雨]\n")
        code = main(["--data-dir", str(data_dir), "apply", reply, "--turn", "2"])
        assert code == EXIT_ISSUES
        assert "Timeline contraction" in capsys.readouterr().err

    def test_missing_input(self, tmp_path, data_dir, capsys):
        code = main(["--data-dir", str(data_dir), "apply", str(tmp_path / "nope.txt")])
        assert code == EXIT_USAGE
        assert "Cannot read input text" in capsys.readouterr().err

    def test_invalid_state_file_is_never_overwritten(self, tmp_path, data_dir, base_tree, capsys):
        data = base_tree.to_json_dict()
        data["characters"]["Eria"]["CV"].append({"key": "金币", "category": "CV", "values": [30]})
        state = data_dir / "state.json"
        original = json.dumps(data, ensure_ascii=False)
        state.write_text(original, encoding="utf-8")
        reply = _reply(tmp_path, "[Eria^CV|体力::90|100]\n")

        assert main(["--data-dir", str(data_dir), "apply", reply, "--turn", "6"]) == EXIT_USAGE
        assert "malformed" in capsys.readouterr().err
        assert main(["--data-dir", str(data_dir), "advance"]) == EXIT_USAGE
        assert state.read_text(encoding="utf-8") == original

    def test_registry_from_state_without_registry_file(self, tmp_path, base_tree):
        data_dir = tmp_path / "bare"
        data = base_tree.to_json_dict()
        data["item_definitions"] = {"状态": {"type": "array", "separator": ","}}
        WorldStateStore(data_dir / "state.json").save(WorldState.model_validate(data))
        reply = _reply(tmp_path, "[Eria^CV|状态::中毒,流血]\n")

        assert main(["--data-dir", str(data_dir), "apply", reply, "--turn", "6"]) == EXIT_OK
        tree = WorldStateStore(data_dir / "state.json").load()
        assert tree.find_item("Eria", "CV", "状态").values == ["中毒", "流血"]
        assert "item_definitions" in tree.model_extra

    def test_explicit_state_path(self, tmp_path, data_dir):
        state = tmp_path / "elsewhere.json"
        reply = _reply(tmp_path, "[ST|天气::雨]\n")
        main(["--data-dir", str(data_dir), "--state", str(state), "apply", reply])
        assert state.exists()
        assert not (data_dir / "state.json").exists()


class TestOtherCommands:
    """Tests for advance / validate / hint and usage errors."""

    def test_advance(self, data_dir, base_tree, capsys):
        base_tree.find_item("Eria", "CV", "体力").user_locked = True
        WorldStateStore(data_dir / "state.json").save(base_tree)
        assert main(["--data-dir", str(data_dir), "advance"]) == EXIT_OK
        assert capsys.readouterr().out.strip() == "Turn 6: 1 item(s) unlocked"
        tree = WorldStateStore(data_dir / "state.json").load()
        assert tree.find_item("Eria", "CV", "体力").user_locked is False

    def test_validate_clean(self, data_dir, base_tree, capsys):
        WorldStateStore(data_dir / "state.json").save(base_tree)
        assert main(["--data-dir", str(data_dir), "validate"]) == EXIT_OK
        assert capsys.readouterr().out.strip() == "OK"

    def test_validate_issues(self, data_dir, base_tree, capsys):
        base_tree.characters["ghost"] = {}
        WorldStateStore(data_dir / "state.json").save(base_tree)
        assert main(["--data-dir", str(data_dir), "validate"]) == EXIT_ISSUES
        assert "ghost" in capsys.readouterr().out

    def test_hint(self, data_dir, capsys):
        assert main(["--data-dir", str(data_dir), "hint"]) == EXIT_OK
        out = capsys.readouterr().out
        assert "[角色^CV|体力::{current}|{max}|{change}|{reason}]" in out
        assert "[世界|心情::{心情}]" in out

    def test_hint_uses_registry_stored_in_state(self, tmp_path, base_tree, capsys):
        data = base_tree.to_json_dict()
        data["item_definitions"] = {"金币": {"type": "numeric"}}
        WorldStateStore(tmp_path / "state.json").save(WorldState.model_validate(data))
        assert main(["--data-dir", str(tmp_path), "hint"]) == EXIT_OK
        assert "金币" in capsys.readouterr().out

    def test_unreadable_registry(self, tmp_path, capsys):
        code = main(["--data-dir", str(tmp_path), "--registry", str(tmp_path / "missing.json"), "hint"])
        assert code == EXIT_USAGE
        assert "Cannot read registry file" in capsys.readouterr().err

    def test_missing_command(self):
        with pytest.raises(SystemExit) as excinfo:
            main([])
        assert excinfo.value.code == 2
