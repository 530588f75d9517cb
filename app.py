from __future__ import annotations

from pathlib import Path
import sys
from typing import Callable, Optional

from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Vertical
from textual.message import Message
from textual.screen import ModalScreen
from textual.widgets import Footer, Header, Input, Static, Tree, TextArea
from textual.widgets._tree import TextType
from rich.text import Text

from csv_io import EXPORT_FILENAME, import_preview, import_text, to_csv
from node_models import Forest, StudyNode
from store import ForestStore, get_max_depth, get_namespace
from tree_ops import (
    StatusFilter,
    add_children,
    add_top_level,
    add_top_level_bulk,
    can_add_child,
    filter_forest,
    find_node,
    progress,
    remove_node,
    rename_node,
    set_all_studied,
    set_studied_cascade,
    sorted_for_display,
    sub_progress,
)

FILTER_CYCLE: tuple[StatusFilter, ...] = ("all", "pending", "done")
FILTER_LABELS = {"all": "all", "pending": "pending", "done": "studied"}


def _key_name_and_modifiers(key_value: str) -> tuple[str, set[str]]:
    parts = key_value.split("+")
    key_name = parts[-1].lower()
    modifiers = {part.lower() for part in parts[:-1] if part}
    return key_name, modifiers


def format_node_label(node: StudyNode) -> Text:
    """Checkbox, name and, for nodes with sub-items, ``done/total``."""
    box = "[x]" if node.studied else "[ ]"
    label = Text(f"{box} {node.name}", style="dim" if node.studied else "")
    if node.children:
        done, total = sub_progress(node)
        label.append(f"  {done}/{total}", style="italic")
    return label


def format_progress(forest: Forest) -> str:
    done, total, percent = progress(forest)
    return f"{done} of {total} studied ({percent}%)"


def next_filter(current: StatusFilter) -> StatusFilter:
    index = FILTER_CYCLE.index(current) if current in FILTER_CYCLE else -1
    return FILTER_CYCLE[(index + 1) % len(FILTER_CYCLE)]


def resolve_import_text(raw: str) -> str:
    """Treat a single-line entry naming an existing ``.csv`` file as that file's content."""
    candidate = raw.strip()
    if candidate and "\n" not in candidate and candidate.lower().endswith(".csv"):
        path = Path(candidate).expanduser()
        if path.is_file():
            return path.read_text(encoding="utf-8-sig")
    return raw


class StudyTree(Tree[str]):
    """Tree widget whose nodes carry ``StudyNode`` ids."""

    BINDINGS = [
        Binding("space", "app.toggle_studied", "Studied"),
    ]

    def process_label(self, label: TextType) -> Text:
        if isinstance(label, str):
            return Text(label, justify="left")
        return label


class TextPromptScreen(ModalScreen[Optional[str]]):
    """Single-line prompt; Enter confirms, Escape cancels."""

    DEFAULT_CSS = """
    TextPromptScreen {
        align: center middle;
        background: transparent;
    }

    #prompt-panel {
        width: 64;
        height: auto;
        background: $panel;
        border: round $secondary;
        padding: 0 1;
    }

    #prompt-title {
        text-style: bold;
        padding-bottom: 1;
    }
    """

    def __init__(self, title: str, initial_value: str = "", placeholder: str = "") -> None:
        super().__init__()
        self._title = title
        self._initial_value = initial_value
        self._placeholder = placeholder

    def compose(self) -> ComposeResult:
        with Vertical(id="prompt-panel"):
            yield Static(self._title, id="prompt-title", markup=False)
            yield Input(value=self._initial_value, placeholder=self._placeholder, id="prompt-field")

    def on_mount(self) -> None:
        self.query_one("#prompt-field", Input).focus()

    def on_key(self, event: events.Key) -> None:
        field = self.query_one("#prompt-field", Input)
        if event.key == "escape":
            event.stop()
            self.dismiss(None)
        elif event.key == "enter":
            event.stop()
            self.dismiss(field.value)


class MultiLineTextArea(TextArea):
    """TextArea that posts a submit message on Ctrl+S."""

    class Submitted(Message):
        def __init__(self, textarea: "MultiLineTextArea") -> None:
            super().__init__()
            self.textarea = textarea
            self.text = textarea.text

    async def on_event(self, event: events.Event) -> None:  # noqa: D401
        if isinstance(event, events.Key):
            key_name, modifiers = _key_name_and_modifiers(event.key)
            if key_name == "s" and "ctrl" in modifiers:
                event.stop()
                self.post_message(self.Submitted(self))
                return
        await super().on_event(event)


class MultiLineScreen(ModalScreen[Optional[str]]):
    """Modal editor for one-entry-per-line input and pasted CSV.

    ``preview`` is called with the current text after every edit; its result
    is shown below the editor.
    """

    DEFAULT_CSS = """
    MultiLineScreen {
        align: center middle;
        background: transparent;
    }

    #multiline-panel {
        width: 90;
        height: auto;
        background: $panel;
        border: round $secondary;
        padding: 0 1;
    }

    #multiline-title {
        text-style: bold;
    }

    #multiline-text {
        height: 14;
        background: $surface 6%;
    }

    #multiline-preview {
        color: $text-muted;
    }
    """

    def __init__(
        self,
        title: str,
        placeholder: str = "",
        preview: Callable[[str], str] | None = None,
    ) -> None:
        super().__init__()
        self._title = title
        self._placeholder = placeholder
        self._preview = preview

    def compose(self) -> ComposeResult:
        with Vertical(id="multiline-panel"):
            yield Static(
                f"{self._title}  (Ctrl+S to confirm, Esc to cancel)",
                id="multiline-title",
                markup=False,
            )
            yield MultiLineTextArea(id="multiline-text", placeholder=self._placeholder, soft_wrap=True)
            yield Static("", id="multiline-preview", markup=False)

    def on_mount(self) -> None:
        self.query_one("#multiline-text", MultiLineTextArea).focus()

    def on_text_area_changed(self, event: TextArea.Changed) -> None:
        if self._preview is None:
            return
        self.query_one("#multiline-preview", Static).update(self._preview(event.text_area.text))

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            event.stop()
            self.dismiss(None)

    def on_multi_line_text_area_submitted(self, message: MultiLineTextArea.Submitted) -> None:
        message.stop()
        self.dismiss(message.text)


class ConfirmScreen(ModalScreen[bool]):
    """Yes/no question answered with ``y`` or ``n``."""

    DEFAULT_CSS = """
    ConfirmScreen {
        align: center middle;
        background: transparent;
    }

    #confirm-question {
        width: auto;
        background: $panel;
        border: round $warning;
        padding: 1 2;
    }
    """

    def __init__(self, question: str) -> None:
        super().__init__()
        self._question = question

    def compose(self) -> ComposeResult:
        yield Static(f"{self._question}  (y/n)", id="confirm-question", markup=False)

    def on_key(self, event: events.Key) -> None:
        event.stop()
        if event.key == "y":
            self.dismiss(True)
        elif event.key in ("n", "escape"):
            self.dismiss(False)


class StudyPlannerApp(App[None]):
    """Textual user interface for the study checklist."""

    TITLE = "study planner"

    CSS = """
    #study-tree {
        width: 1fr;
    }
    #study-tree .tree--cursor,
    #study-tree:focus .tree--cursor {
        text-style: bold;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit", show=False),
        Binding("left", "collapse_cursor", "Collapse", show=False),
        Binding("right", "expand_cursor", "Expand", show=False),
        Binding("a", "add_subject", "Add"),
        Binding("b", "bulk_add", "Bulk"),
        Binding("+", "add_sub_items", "(sub +)"),
        Binding("e", "rename_node", "(edit)"),
        Binding("0", "delete_node", "(del)"),
        Binding("delete", "delete_node", "(del)", show=False),
        Binding("i", "import_csv", "Import"),
        Binding("x", "export_csv", "Export"),
        Binding("m", "mark_all", "All"),
        Binding("u", "unmark_all", "None"),
        Binding("f", "cycle_filter", "Filter"),
        Binding("/", "search", "Search"),
        Binding("c", "clear_all", "Clear", show=False),
    ]

    def __init__(
        self,
        initial_import_path: str | Path | None = None,
        store: ForestStore | None = None,
        max_depth: int | None = None,
    ) -> None:
        super().__init__()
        self.title = "study planner"
        self._tree_widget: Optional[StudyTree] = None
        self.store = store or ForestStore(get_namespace())
        self.max_depth = max_depth or get_max_depth()
        self.forest: Forest = ()
        self.status_filter: StatusFilter = "all"
        self.query_text = ""
        self._initial_import_path: Optional[Path] = (
            Path(initial_import_path).expanduser() if initial_import_path else None
        )

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        tree = StudyTree("Subjects", id="study-tree")
        tree.show_root = False
        tree.auto_expand = False
        self._tree_widget = tree
        yield tree
        yield Footer()

    def on_mount(self) -> None:
        self.forest = self.store.load_forest()
        self.rebuild_tree()
        if self._initial_import_path:
            self._import_file(self._initial_import_path)
        else:
            self.show_status()

    def require_tree(self) -> StudyTree:
        if self._tree_widget is None:
            raise RuntimeError("Tree widget not initialised")
        return self._tree_widget

    def rebuild_tree(self, select_id: str | None = None) -> None:
        tree = self.require_tree()
        expanded = self._capture_expand_state()
        if select_id is None:
            select_id = self.get_selected_id()
        tree.clear()
        for node in filter_forest(self.forest, self.status_filter, self.query_text):
            self.populate_tree(tree.root, node, expanded)
        tree.root.expand()
        tree.focus()
        tree.refresh(layout=True)
        if select_id:
            # Line numbers are only assigned once the tree has been laid out.
            tree.call_after_refresh(self._select_by_id, select_id)

    def _select_by_id(self, node_id: str) -> None:
        target = self._find_tree_node(node_id)
        if target is not None:
            self.require_tree().select_node(target)

    def populate_tree(
        self, parent: Tree.Node[str], node: StudyNode, expanded: dict[str, bool]
    ) -> None:
        label = format_node_label(node)
        if node.is_leaf:
            parent.add_leaf(label, data=node.id)
            return
        tree_node = parent.add(label, data=node.id, expand=expanded.get(node.id, False))
        for child in sorted_for_display(node.children):
            self.populate_tree(tree_node, child, expanded)

    def _capture_expand_state(self) -> dict[str, bool]:
        tree = self.require_tree()
        state: dict[str, bool] = {}
        stack = list(tree.root.children)
        while stack:
            node = stack.pop()
            if node.data is not None:
                state[node.data] = node.is_expanded
            stack.extend(node.children)
        return state

    def _find_tree_node(self, node_id: str) -> Optional[Tree.Node[str]]:
        stack = list(self.require_tree().root.children)
        while stack:
            node = stack.pop()
            if node.data == node_id:
                return node
            stack.extend(node.children)
        return None

    def get_selected_id(self) -> Optional[str]:
        cursor = self.require_tree().cursor_node
        return cursor.data if cursor is not None else None

    def get_selected_node(self) -> Optional[StudyNode]:
        node_id = self.get_selected_id()
        return find_node(self.forest, node_id) if node_id else None

    def _require_selection(self) -> Optional[StudyNode]:
        node = self.get_selected_node()
        if node is None:
            self.bell()
            self.show_status("No item selected.")
        return node

    def commit(self, updated: Forest, message: str, *, select_id: str | None = None) -> bool:
        """Adopt ``updated`` and persist it; an unchanged forest is a no-op."""
        if updated is self.forest:
            return False
        self.forest = updated
        self.store.save_forest(updated)
        self.rebuild_tree(select_id)
        self.show_status(message)
        return True

    def action_toggle_studied(self) -> None:
        node = self._require_selection()
        if node is None:
            return
        value = not node.studied
        updated = set_studied_cascade(self.forest, node.id, value)
        state = "studied" if value else "pending"
        self.commit(updated, f"'{node.name}' marked {state}.", select_id=node.id)

    def action_add_subject(self) -> None:
        def apply(result: str | None) -> None:
            if result is None:
                return
            updated, added = add_top_level(self.forest, result)
            if not added:
                self.bell()
                self.show_status("Name is empty or already exists.")
                return
            self.commit(updated, f"Added '{updated[-1].name}'.", select_id=updated[-1].id)

        self.push_screen(TextPromptScreen("New subject", placeholder="Subject name"), apply)

    def action_bulk_add(self) -> None:
        def apply(result: str | None) -> None:
            if result is None:
                return
            updated, added = add_top_level_bulk(self.forest, result)
            if not added:
                self.bell()
                self.show_status("Nothing was added (duplicates?).")
                return
            self.commit(updated, f"Added {added} subject(s).")

        self.push_screen(
            MultiLineScreen("Bulk add: one subject per line", placeholder="Constitutional Law\nPortuguese"),
            apply,
        )

    def action_add_sub_items(self) -> None:
        node = self._require_selection()
        if node is None:
            return
        if not can_add_child(self.forest, node.id, self.max_depth):
            self.bell()
            self.show_status(f"Sub-items are limited to {self.max_depth} levels.")
            return
        parent_id = node.id

        def apply(result: str | None) -> None:
            if result is None:
                return
            updated = add_children(self.forest, parent_id, result)
            if self.commit(updated, "Sub-items added.", select_id=parent_id):
                tree_node = self._find_tree_node(parent_id)
                if tree_node is not None:
                    tree_node.expand()
            else:
                self.show_status("Nothing was added.")

        self.push_screen(MultiLineScreen(f"Sub-items for '{node.name}': one per line"), apply)

    def action_rename_node(self) -> None:
        node = self._require_selection()
        if node is None:
            return
        node_id = node.id

        def apply(result: str | None) -> None:
            if result is None:
                return
            updated = rename_node(self.forest, node_id, result)
            if not self.commit(updated, "Renamed.", select_id=node_id):
                self.show_status("Name unchanged.")

        self.push_screen(TextPromptScreen("New name", initial_value=node.name), apply)

    def action_delete_node(self) -> None:
        node = self._require_selection()
        if node is None:
            return
        self.commit(remove_node(self.forest, node.id), f"Removed '{node.name}'.")

    def _preview_import(self, text: str) -> str:
        try:
            source = resolve_import_text(text)
        except (OSError, UnicodeDecodeError) as exc:
            return f"Cannot read file: {exc}"
        summary = import_preview(self.forest, source)
        if summary is None:
            return ""
        return f"{summary.lines} line(s) detected, {summary.new_top_level} new subject(s)."

    def _apply_import(self, text: str, origin: str) -> None:
        result = import_text(self.forest, text)
        if not result.records:
            self.bell()
            self.show_status("Nothing to import.")
            return
        self.store.log_event("import", f"{len(result.records)} record(s) from {origin}")
        if not self.commit(result.forest, f"Imported {len(result.records)} line(s)."):
            self.show_status("Import matched existing items; nothing changed.")

    def _import_file(self, path: Path) -> bool:
        target = path.expanduser()
        if not target.exists():
            self.bell()
            self.show_status(f"{target} not found.")
            return False
        try:
            text = target.read_text(encoding="utf-8-sig")
        except (OSError, UnicodeDecodeError) as exc:
            self.bell()
            self.show_status(f"Failed to read {target}: {exc}")
            return False
        self._apply_import(text, target.name)
        return True

    def action_import_csv(self) -> None:
        def apply(result: str | None) -> None:
            if result is None:
                return
            try:
                text = resolve_import_text(result)
            except (OSError, UnicodeDecodeError) as exc:
                self.bell()
                self.show_status(f"Failed to read file: {exc}")
                return
            self._apply_import(text, "pasted text" if text is result else result.strip())

        self.push_screen(
            MultiLineScreen(
                "Import CSV: paste content or a .csv path",
                placeholder="disciplina,subdisciplina,status",
                preview=self._preview_import,
            ),
            apply,
        )

    def action_export_csv(self) -> None:
        if not self.forest:
            self.bell()
            self.show_status("Nothing to export.")
            return
        path = Path(EXPORT_FILENAME)
        try:
            path.write_text(to_csv(self.forest), encoding="utf-8")
        except OSError as exc:
            self.bell()
            self.show_status(f"Export failed: {exc}")
            return
        self.store.log_event("export", str(path.resolve()))
        self.show_status(f"Exported to {path}")

    def action_mark_all(self) -> None:
        self.commit(set_all_studied(self.forest, True), "All items marked studied.")

    def action_unmark_all(self) -> None:
        self.commit(set_all_studied(self.forest, False), "All items marked pending.")

    def action_clear_all(self) -> None:
        if not self.forest:
            self.show_status("Nothing to clear.")
            return

        def apply(confirmed: bool | None) -> None:
            if confirmed:
                self.commit((), "All items removed.")

        self.push_screen(ConfirmScreen("Remove every subject?"), apply)

    def action_cycle_filter(self) -> None:
        self.status_filter = next_filter(self.status_filter)
        self.rebuild_tree()
        self.show_status()

    def action_search(self) -> None:
        def apply(result: str | None) -> None:
            if result is None:
                return
            self.query_text = result.strip()
            self.rebuild_tree()
            self.show_status()

        self.push_screen(TextPromptScreen("Search", initial_value=self.query_text), apply)

    def action_collapse_cursor(self) -> None:
        node = self.require_tree().cursor_node
        if node:
            node.collapse()

    def action_expand_cursor(self) -> None:
        node = self.require_tree().cursor_node
        if node:
            node.expand()

    def show_status(self, message: str | None = None) -> None:
        parts = [format_progress(self.forest), f"Filter: {FILTER_LABELS[self.status_filter]}"]
        if self.query_text:
            parts.append(f"Search: {self.query_text}")
        if not self.forest:
            parts.append("No subjects yet. Add one or import a CSV.")
        if message:
            parts.append(message)
        self.sub_title = " · ".join(parts)


def main() -> None:
    initial_path = sys.argv[1] if len(sys.argv) > 1 else None
    StudyPlannerApp(initial_path).run()


if __name__ == "__main__":
    main()
