"""
Tests for the file-backed collaborators: worldstate/storage.py,
worldstate/journal.py and worldstate/narrative_configs.py.
"""

import json
import logging

import pytest

from worldstate.journal import SNAPSHOT_LABEL, MemoryJournal
from worldstate.models.base import new_world_state
from worldstate.narrative_configs import LEGACY_CONFIG_ID, NarrativeConfigStore
from worldstate.storage import StateFileError, WorldStateStore
from worldstate.templates import DEFAULT_CONFIG_ID, DEFAULT_TEMPLATES


# ------------------------------------------------------------------
# WorldStateStore
# ------------------------------------------------------------------


class TestWorldStateStore:
    """Tests for loading and saving the tree."""

    def test_missing_file_gives_fresh_tree(self, tmp_path):
        store = WorldStateStore(tmp_path / "state.json")
        assert not store.exists()
        assert store.load().model_dump() == new_world_state().model_dump()

    def test_round_trip(self, tmp_path, base_tree):
        store = WorldStateStore(tmp_path / "nested" / "state.json")
        store.save(base_tree)
        assert store.exists()
        assert store.load().model_dump() == base_tree.model_dump()

    def test_saved_file_uses_host_names(self, tmp_path, base_tree):
        path = tmp_path / "state.json"
        WorldStateStore(path).save(base_tree)
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["_meta"]["message_count"] == 5
        assert "source_id" in data["characters"]["Eria"]["CV"][0]
        assert "艾莉亚" in path.read_text(encoding="utf-8")

    def test_corrupt_file_is_an_error(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(StateFileError, match="not readable JSON"):
            WorldStateStore(path).load()
        assert path.read_text(encoding="utf-8") == "{not json"

    def test_malformed_tree_is_an_error(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"shared": {"ST": "oops"}}), encoding="utf-8")
        with pytest.raises(StateFileError, match="malformed"):
            WorldStateStore(path).load()

    def test_one_bad_item_does_not_discard_the_tree(self, tmp_path, base_tree):
        data = base_tree.to_json_dict()
        data["characters"]["Eria"]["CV"].append({"key": "金币", "category": "CV", "values": [30]})
        path = tmp_path / "state.json"
        path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
        with pytest.raises(StateFileError):
            WorldStateStore(path).load()
        assert json.loads(path.read_text(encoding="utf-8")) == data


# ------------------------------------------------------------------
# MemoryJournal
# ------------------------------------------------------------------


class TestMemoryJournal:
    """Tests for the append-only narrative journal."""

    def test_empty(self, tmp_path):
        journal = MemoryJournal(tmp_path / "journal.jsonl")
        assert journal.entries() == []
        assert journal.latest() is None
        assert journal.format_latest() == ""

    def test_record_and_latest(self, tmp_path):
        journal = MemoryJournal(tmp_path / "journal.jsonl")
        journal.record(1, "第一回合")
        journal.record(2, "第二回合")
        assert [e["turn"] for e in journal.entries()] == [1, 2]
        latest = journal.latest()
        assert latest["narrative"] == "第二回合"
        assert latest["label"] == SNAPSHOT_LABEL
        assert journal.format_latest() == f"{SNAPSHOT_LABEL}\n第二回合"

    def test_blank_narrative_is_skipped(self, tmp_path):
        journal = MemoryJournal(tmp_path / "journal.jsonl")
        assert journal.record(3, "  \n") is None
        assert not (tmp_path / "journal.jsonl").exists()

    def test_other_labels_and_corrupt_lines_ignored(self, tmp_path):
        path = tmp_path / "journal.jsonl"
        path.write_text(
            '{"label": "other", "turn": 9, "narrative": "x"}\n'
            "garbage\n",
            encoding="utf-8",
        )
        journal = MemoryJournal(path)
        journal.record(4, "ok")
        assert [e["turn"] for e in journal.entries()] == [4]


# ------------------------------------------------------------------
# NarrativeConfigStore
# ------------------------------------------------------------------


class TestNarrativeConfigStore:
    """Tests for named template configurations."""

    def test_fresh_store_has_builtin_default(self, tmp_path):
        path = tmp_path / "configs.json"
        store = NarrativeConfigStore(path)
        assert store.active_id == DEFAULT_CONFIG_ID
        assert store.active().is_built_in
        assert path.exists()
        assert store.active_template_set().templates == DEFAULT_TEMPLATES

    def test_create_and_activate(self, tmp_path):
        path = tmp_path / "configs.json"
        store = NarrativeConfigStore(path)
        config = store.create("简洁", {"text_change": "{name}: {new}"})
        store.set_active(config.id)

        reloaded = NarrativeConfigStore(path)
        assert reloaded.active_id == config.id
        templates = reloaded.active_template_set().templates
        assert templates["text_change"] == "{name}: {new}"
        assert templates["item_added"] == DEFAULT_TEMPLATES["item_added"]

    def test_builtin_is_protected(self, tmp_path):
        store = NarrativeConfigStore(tmp_path / "configs.json")
        builtin = store.get(DEFAULT_CONFIG_ID)
        changed = builtin.model_copy(update={"templates": {"text_change": "x"}})
        assert store.update(changed) is False
        assert store.delete(DEFAULT_CONFIG_ID) is False
        assert store.get(DEFAULT_CONFIG_ID).templates == {}

    def test_unknown_placeholders_are_reported(self, tmp_path, caplog):
        store = NarrativeConfigStore(tmp_path / "configs.json")
        with caplog.at_level(logging.WARNING, logger="worldstate.narrative_configs"):
            config = store.create("A", {"text_change": "{name}: {new} {mood}"})
        assert "mood" in caplog.text
        assert "'text_change'" in caplog.text

        caplog.clear()
        with caplog.at_level(logging.WARNING, logger="worldstate.narrative_configs"):
            store.update(config.model_copy(update={"templates": {"item_added": "{角色名}得到{新值}"}}))
        assert caplog.text == ""

    def test_update_and_delete(self, tmp_path):
        store = NarrativeConfigStore(tmp_path / "configs.json")
        config = store.create("A")
        store.set_active(config.id)
        assert store.update(config.model_copy(update={"name": "B"})) is True
        assert store.get(config.id).name == "B"
        assert store.delete(config.id) is True
        assert store.active_id == DEFAULT_CONFIG_ID
        assert store.update(config) is False

    def test_unknown_active_id(self, tmp_path):
        store = NarrativeConfigStore(tmp_path / "configs.json")
        with pytest.raises(KeyError):
            store.set_active("nope")

    def test_legacy_mapping_is_migrated(self, tmp_path):
        path = tmp_path / "configs.json"
        path.write_text(json.dumps({"text_change": "旧模板 {name}"}), encoding="utf-8")
        store = NarrativeConfigStore(path)
        assert store.active_id == LEGACY_CONFIG_ID
        assert store.active_template_set().templates["text_change"] == "旧模板 {name}"
        assert store.get(DEFAULT_CONFIG_ID) is not None

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["version"] == 2
        assert data["active_id"] == LEGACY_CONFIG_ID

    def test_version_one_list_is_migrated(self, tmp_path):
        path = tmp_path / "configs.json"
        path.write_text(json.dumps([{"id": "c1", "name": "One", "templates": {}}]), encoding="utf-8")
        store = NarrativeConfigStore(path)
        assert [c.id for c in store.configs] == [DEFAULT_CONFIG_ID, "c1"]
        assert store.active_id == DEFAULT_CONFIG_ID

    def test_dangling_active_id_falls_back(self, tmp_path):
        path = tmp_path / "configs.json"
        path.write_text(json.dumps({"version": 2, "active_id": "gone", "configs": []}), encoding="utf-8")
        assert NarrativeConfigStore(path).active_id == DEFAULT_CONFIG_ID

    def test_reset(self, tmp_path):
        store = NarrativeConfigStore(tmp_path / "configs.json")
        store.set_active(store.create("A").id)
        store.reset()
        assert store.active_id == DEFAULT_CONFIG_ID
