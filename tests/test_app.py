"""Tests for the terminal front-end."""

from __future__ import annotations

from pathlib import Path

import pytest

from app import (
    StudyPlannerApp,
    format_node_label,
    format_progress,
    next_filter,
    resolve_import_text,
)
from node_models import StudyNode
from store import ForestStore
from tree_ops import find_node


def _store(tmp_path: Path, forest=()) -> ForestStore:
    store = ForestStore("test", tmp_path)
    if forest:
        store.save_forest(forest)
    return store


class TestHelpers:
    """Tests for the label and status helpers."""

    def test_leaf_label(self) -> None:
        """Leaves show only the checkbox and name."""
        assert format_node_label(StudyNode("A")).plain == "[ ] A"
        assert format_node_label(StudyNode("A", studied=True)).plain == "[x] A"

    def test_branch_label_counts_children(self) -> None:
        """Branches append done/total of their direct children."""
        node = StudyNode("A", children=(StudyNode("a1", studied=True), StudyNode("a2")))
        assert format_node_label(node).plain == "[ ] A  1/2"

    def test_progress_text(self) -> None:
        """Counters are summarised for the status line."""
        forest = (StudyNode("A", studied=True), StudyNode("B"))
        assert format_progress(forest) == "1 of 2 studied (50%)"

    def test_filter_cycle(self) -> None:
        """Filters rotate all -> pending -> done -> all."""
        assert next_filter("all") == "pending"
        assert next_filter("pending") == "done"
        assert next_filter("done") == "all"

    def test_resolve_import_text_reads_csv_path(self, tmp_path: Path) -> None:
        """A pasted path to a CSV file is replaced by its content."""
        target = tmp_path / "lista.csv"
        target.write_text("disciplina\nFísica\n", encoding="utf-8")
        assert resolve_import_text(f"  {target}\n") == "disciplina\nFísica\n"

    def test_resolve_import_text_keeps_plain_text(self) -> None:
        """Anything else is returned as given."""
        text = "Física,sim\nQuímica,nao"
        assert resolve_import_text(text) is text
        assert resolve_import_text("missing.csv") == "missing.csv"


class TestStudyPlannerApp:
    """Pilot-driven tests for the Textual app."""

    @pytest.mark.asyncio
    async def test_loads_forest_from_store(self, tmp_path: Path) -> None:
        """Stored subjects appear in the tree on mount."""
        store = _store(tmp_path, (StudyNode("A", id="a"), StudyNode("B", id="b")))
        app = StudyPlannerApp(store=store)
        async with app.run_test():
            tree = app.require_tree()
            assert [child.data for child in tree.root.children] == ["a", "b"]
            assert "0 of 2 studied" in app.sub_title

    @pytest.mark.asyncio
    async def test_toggle_saves_cascade(self, tmp_path: Path) -> None:
        """Toggling a branch marks its children and persists the result."""
        branch = StudyNode("A", id="a", children=(StudyNode("a1", id="a1"),))
        store = _store(tmp_path, (branch,))
        app = StudyPlannerApp(store=store)
        async with app.run_test() as pilot:
            app.rebuild_tree(select_id="a")
            await pilot.pause(0.1)
            app.action_toggle_studied()
            await pilot.pause()
            assert find_node(app.forest, "a1").studied is True
        assert find_node(store.load_forest(), "a").studied is True

    @pytest.mark.asyncio
    async def test_add_subject_through_prompt(self, tmp_path: Path) -> None:
        """The add prompt appends a new subject."""
        store = _store(tmp_path)
        app = StudyPlannerApp(store=store)
        async with app.run_test() as pilot:
            await pilot.press("a")
            await pilot.press(*"Fisica")
            await pilot.press("enter")
            await pilot.pause()
            assert [node.name for node in app.forest] == ["Fisica"]
        assert [node.name for node in store.load_forest()] == ["Fisica"]

    @pytest.mark.asyncio
    async def test_depth_limit_refuses_sub_items(self, tmp_path: Path) -> None:
        """Sub-items cannot be added at the depth limit."""
        store = _store(tmp_path, (StudyNode("A", id="a"),))
        app = StudyPlannerApp(store=store, max_depth=1)
        async with app.run_test() as pilot:
            app.rebuild_tree(select_id="a")
            await pilot.pause(0.1)
            app.action_add_sub_items()
            await pilot.pause()
            assert "limited to 1 levels" in app.sub_title
            assert len(app.screen_stack) == 1

    @pytest.mark.asyncio
    async def test_initial_import_and_export(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A CSV given at start-up is merged and can be exported again."""
        monkeypatch.chdir(tmp_path)
        source = tmp_path / "entrada.csv"
        source.write_text("disciplina;status\nMatemática;sim\nFísica > Óptica;nao\n", encoding="utf-8")
        store = _store(tmp_path / "data")
        app = StudyPlannerApp(source, store=store)
        async with app.run_test() as pilot:
            await pilot.pause()
            assert [node.name for node in app.forest] == ["Matemática", "Física"]
            app.action_export_csv()
        exported = (tmp_path / "disciplinas.csv").read_text(encoding="utf-8")
        assert exported.split("\n") == [
            "disciplina,subdisciplina,status",
            '"Matemática",,estudada',
            '"Física","Óptica",pendente',
        ]

    @pytest.mark.asyncio
    async def test_export_refuses_empty_forest(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Nothing is written when there is nothing to export."""
        monkeypatch.chdir(tmp_path)
        app = StudyPlannerApp(store=_store(tmp_path / "data"))
        async with app.run_test():
            app.action_export_csv()
            assert "Nothing to export." in app.sub_title
        assert not (tmp_path / "disciplinas.csv").exists()
