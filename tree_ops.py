"""Pure operations over a study forest.

Every function takes a forest and returns a forest. Only the path from the
root to a mutated node is rebuilt; untouched subtrees keep their identity, and
an operation that changes nothing hands back the very same forest object.
"""

import math
import unicodedata
from dataclasses import replace
from typing import Callable, Iterable, Iterator, List, Literal, Optional, Tuple

import regex

from node_models import Forest, StudyNode, new_id

DEFAULT_MAX_DEPTH = 4

StatusFilter = Literal["all", "done", "pending"]

_MARKS_PATTERN = regex.compile(r"\p{M}+")


def _same_items(left: Tuple[StudyNode, ...], right: Tuple[StudyNode, ...]) -> bool:
    return len(left) == len(right) and all(a is b for a, b in zip(left, right))


def _normalize_node(node: StudyNode) -> StudyNode:
    if not node.children:
        return node
    children = tuple(_normalize_node(child) for child in node.children)
    studied = all(child.studied for child in children)
    if studied == node.studied and _same_items(children, node.children):
        return node
    return replace(node, studied=studied, children=children)


def normalize(forest: Forest) -> Forest:
    """Recompute every derived ``studied`` flag bottom-up.

    A node with children is studied iff all of its children are; a leaf keeps
    its own flag.
    """
    forest = tuple(forest)
    nodes = tuple(_normalize_node(node) for node in forest)
    return forest if _same_items(nodes, forest) else nodes


def _rebuild(
    nodes: Tuple[StudyNode, ...],
    node_id: str,
    update: Callable[[StudyNode], Optional[StudyNode]],
) -> Tuple[Tuple[StudyNode, ...], bool]:
    """Apply ``update`` to the node with ``node_id`` below ``nodes``.

    ``update`` returns the replacement node, or ``None`` to drop it. Returns the
    rebuilt sequence and whether the node was found.
    """
    for index, node in enumerate(nodes):
        if node.id == node_id:
            replacement = update(node)
            if replacement is node:
                return nodes, True
            if replacement is None:
                return nodes[:index] + nodes[index + 1 :], True
            return nodes[:index] + (replacement,) + nodes[index + 1 :], True
        children, found = _rebuild(node.children, node_id, update)
        if found:
            if children is node.children:
                return nodes, True
            rebuilt = replace(node, children=children)
            return nodes[:index] + (rebuilt,) + nodes[index + 1 :], True
    return nodes, False


def add_child(forest: Forest, parent_id: str, name: str) -> Forest:
    """Append a new leaf named ``name`` under ``parent_id``.

    The caller is responsible for normalising afterwards.
    """
    title = (name or "").strip()
    if not title:
        return forest
    child = StudyNode(title, id=new_id(forest_ids(forest)))
    rebuilt, _ = _rebuild(
        tuple(forest),
        parent_id,
        lambda node: replace(node, children=node.children + (child,)),
    )
    return rebuilt


def remove_node(forest: Forest, node_id: str) -> Forest:
    rebuilt, _ = _rebuild(tuple(forest), node_id, lambda node: None)
    return rebuilt


def _mark(node: StudyNode, value: bool) -> StudyNode:
    return replace(
        node,
        studied=value,
        children=tuple(_mark(child, value) for child in node.children),
    )


def set_studied_cascade(forest: Forest, node_id: str, value: bool) -> Forest:
    """Set ``value`` on the node and all of its descendants, then normalise.

    Ancestors are never forced; they follow from normalisation.
    """
    rebuilt, _ = _rebuild(tuple(forest), node_id, lambda node: _mark(node, bool(value)))
    return normalize(rebuilt)


def rename_node(forest: Forest, node_id: str, new_name: str) -> Forest:
    title = (new_name or "").strip()
    if not title:
        return forest
    rebuilt, _ = _rebuild(
        tuple(forest),
        node_id,
        lambda node: node if node.name == title else replace(node, name=title),
    )
    return rebuilt


def add_top_level(forest: Forest, name: str) -> Tuple[Forest, bool]:
    """Append a new top-level leaf unless the name is blank or taken."""
    title = (name or "").strip()
    if not title:
        return forest, False
    wanted = title.lower()
    if any(node.name.lower() == wanted for node in forest):
        return forest, False
    return tuple(forest) + (StudyNode(title, id=new_id(forest_ids(forest))),), True


def add_top_level_bulk(forest: Forest, text: str) -> Tuple[Forest, int]:
    """Add one top-level item per non-blank line; duplicates are skipped."""
    added = 0
    for line in (text or "").splitlines():
        forest, ok = add_top_level(forest, line)
        if ok:
            added += 1
    return forest, added


def add_children(forest: Forest, parent_id: str, text: str) -> Forest:
    """Add one sub-item per non-blank line under ``parent_id``."""
    updated = forest
    for line in (text or "").splitlines():
        updated = add_child(updated, parent_id, line)
    if updated is forest:
        return forest
    return normalize(updated)


def set_all_studied(forest: Forest, value: bool) -> Forest:
    return normalize(tuple(_mark(node, bool(value)) for node in forest))


def iter_nodes(forest: Iterable[StudyNode], depth: int = 1) -> Iterator[Tuple[StudyNode, int]]:
    """Yield ``(node, depth)`` depth-first; top-level nodes are depth 1."""
    for node in forest:
        yield node, depth
        yield from iter_nodes(node.children, depth + 1)


def forest_ids(forest: Iterable[StudyNode]) -> set:
    return {node.id for node, _ in iter_nodes(forest)}


def find_node(forest: Forest, node_id: str) -> Optional[StudyNode]:
    for node, _ in iter_nodes(forest):
        if node.id == node_id:
            return node
    return None


def node_depth(forest: Forest, node_id: str) -> Optional[int]:
    for node, depth in iter_nodes(forest):
        if node.id == node_id:
            return depth
    return None


def can_add_child(forest: Forest, parent_id: str, max_depth: int = DEFAULT_MAX_DEPTH) -> bool:
    """Interaction-layer guard: children may only be added above ``max_depth``."""
    depth = node_depth(forest, parent_id)
    return depth is not None and depth < max_depth


def collation_key(name: str) -> str:
    """Case- and accent-insensitive comparison key for display ordering."""
    decomposed = unicodedata.normalize("NFD", name)
    return _MARKS_PATTERN.sub("", decomposed).casefold()


def sorted_for_display(nodes: Iterable[StudyNode]) -> List[StudyNode]:
    """Unstudied before studied, then by name ignoring case and accents."""
    return sorted(nodes, key=lambda node: (node.studied, collation_key(node.name), node.name))


def progress(forest: Forest) -> Tuple[int, int, int]:
    """Return ``(done, total, percent)`` over the top-level nodes."""
    total = len(forest)
    done = sum(1 for node in forest if node.studied)
    percent = math.floor(done * 100 / total + 0.5) if total else 0
    return done, total, percent


def sub_progress(node: StudyNode) -> Tuple[int, int]:
    return sum(1 for child in node.children if child.studied), len(node.children)


def _matches(node: StudyNode, query: str) -> bool:
    if query in node.name.casefold():
        return True
    return any(_matches(child, query) for child in node.children)


def filter_forest(forest: Forest, status: StatusFilter = "all", query: str = "") -> List[StudyNode]:
    """Top-level view: keep nodes matching the status filter and the search.

    The query matches a node whose own name, or any descendant's name,
    contains it (case-insensitive).
    """
    needle = (query or "").strip().casefold()
    kept = []
    for node in forest:
        if status == "done" and not node.studied:
            continue
        if status == "pending" and node.studied:
            continue
        if needle and not _matches(node, needle):
            continue
        kept.append(node)
    return sorted_for_display(kept)
