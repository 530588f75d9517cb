"""Tests for persistence and configuration."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from node_models import StudyNode
from store import (
    DEFAULT_NAMESPACE,
    ForestStore,
    forest_from_json,
    forest_to_json,
    get_data_dir,
    get_max_depth,
    get_namespace,
)
from tree_ops import DEFAULT_MAX_DEPTH, iter_nodes


class TestForestFromJson:
    """Tests for forest_from_json."""

    @pytest.mark.parametrize("raw", [None, "", "{}", '"text"', "42", "not json", "[1, 2"])
    def test_malformed_yields_empty_forest(self, raw) -> None:
        """Anything other than a JSON array degrades to an empty forest."""
        assert forest_from_json(raw) == ()

    def test_fills_missing_fields(self) -> None:
        """Missing ids are assigned and bad children become empty."""
        raw = json.dumps([{"name": "  A ", "children": "oops"}, {"id": "b", "name": "B"}])
        forest = forest_from_json(raw)
        assert forest[0].name == "A"
        assert forest[0].id
        assert forest[0].children == ()
        assert forest[1].id == "b"

    def test_duplicate_ids_are_replaced(self) -> None:
        """Ids stay unique across the whole forest."""
        raw = json.dumps(
            [{"id": "x", "name": "A", "children": [{"id": "x", "name": "a1"}]}]
        )
        forest = forest_from_json(raw)
        ids = [node.id for node, _ in iter_nodes(forest)]
        assert len(set(ids)) == 2
        assert ids[0] == "x"

    def test_result_is_normalized(self) -> None:
        """Stored parent flags are recomputed from the children."""
        raw = json.dumps(
            [{"id": "a", "name": "A", "studied": False, "children": [{"name": "a1", "studied": True}]}]
        )
        assert forest_from_json(raw)[0].studied is True

    def test_skips_non_object_entries(self) -> None:
        """Entries that are not objects are ignored."""
        assert [node.name for node in forest_from_json('[1, {"name": "A"}, null]')] == ["A"]

    def test_round_trip(self, sample_forest) -> None:
        """Serialised forests load back unchanged once normalised."""
        forest = forest_from_json(forest_to_json(sample_forest))
        assert forest_from_json(forest_to_json(forest)) == forest
        assert [node.id for node, _ in iter_nodes(forest)] == [
            node.id for node, _ in iter_nodes(sample_forest)
        ]


class TestForestStore:
    """Tests for ForestStore."""

    def test_load_missing_returns_none(self, tmp_path: Path) -> None:
        """A fresh store has nothing saved."""
        store = ForestStore("ns", tmp_path)
        assert store.load() is None
        assert store.load_forest() == ()

    def test_save_and_load_forest(self, tmp_path: Path) -> None:
        """Saved forests come back with ids and flags."""
        store = ForestStore("ns", tmp_path / "data")
        forest = (StudyNode("A", studied=True, id="a"),)
        store.save_forest(forest)
        assert ForestStore("ns", tmp_path / "data").load_forest() == forest

    def test_namespaces_are_isolated(self, tmp_path: Path) -> None:
        """Each namespace owns its own slot."""
        ForestStore("one", tmp_path).save("[]")
        assert ForestStore("two", tmp_path).load() is None

    def test_namespace_is_file_safe(self, tmp_path: Path) -> None:
        """Separators in the namespace do not escape the directory."""
        store = ForestStore(DEFAULT_NAMESPACE, tmp_path)
        assert store.path.parent == tmp_path
        assert store.path.name == "studyPlanner_v6.json"

    def test_malformed_state_is_logged_and_discarded(self, tmp_path: Path) -> None:
        """Corrupt data gives an empty forest and a RESET log line."""
        store = ForestStore("ns", tmp_path)
        store.save('{"not": "a list"}')
        assert store.load_forest() == ()
        log = store.activity_log_path.read_text(encoding="utf-8")
        assert "\tRESET\tns\t" in log

    def test_activity_log_lines(self, tmp_path: Path) -> None:
        """Events are appended as tab-separated lines."""
        store = ForestStore("ns", tmp_path)
        store.save_forest(())
        store.log_event("import", "3 record(s)")
        lines = store.activity_log_path.read_text(encoding="utf-8").splitlines()
        assert [line.split("\t")[1] for line in lines] == ["SAVE", "IMPORT"]
        assert lines[1].endswith("\tns\t3 record(s)")

    def test_reset_activity_log(self, tmp_path: Path) -> None:
        """The log can be truncated."""
        store = ForestStore("ns", tmp_path)
        store.log_event("save")
        store.reset_activity_log()
        assert store.activity_log_path.read_text(encoding="utf-8") == ""


class TestConfiguration:
    """Tests for environment-driven settings."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Unset variables fall back to defaults."""
        monkeypatch.delenv("STUDY_PLANNER_NAMESPACE", raising=False)
        monkeypatch.delenv("STUDY_PLANNER_MAX_DEPTH", raising=False)
        assert get_namespace() == DEFAULT_NAMESPACE
        assert get_max_depth() == DEFAULT_MAX_DEPTH

    def test_overrides(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Variables override the defaults."""
        monkeypatch.setenv("STUDY_PLANNER_HOME", str(tmp_path))
        monkeypatch.setenv("STUDY_PLANNER_NAMESPACE", "exam")
        monkeypatch.setenv("STUDY_PLANNER_MAX_DEPTH", "6")
        assert get_data_dir() == tmp_path
        assert get_namespace() == "exam"
        assert get_max_depth() == 6
        assert ForestStore(get_namespace()).directory == tmp_path

    @pytest.mark.parametrize("raw", ["zero", "0", "-2"])
    def test_invalid_depth_falls_back(self, monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
        """Unusable depth limits use the default."""
        monkeypatch.setenv("STUDY_PLANNER_MAX_DEPTH", raw)
        assert get_max_depth() == DEFAULT_MAX_DEPTH
