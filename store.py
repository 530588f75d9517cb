from __future__ import annotations

import json
import os
import re
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

from node_models import Forest, StudyNode, new_id
from tree_ops import DEFAULT_MAX_DEPTH, normalize

DEFAULT_NAMESPACE = "studyPlanner:v6"
DEFAULT_HOME = "~/.study_planner"
ACTIVITY_LOG_NAME = "activity.log"
_activity_log_lock = threading.Lock()
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def get_data_dir() -> Path:
    return Path(os.getenv("STUDY_PLANNER_HOME", DEFAULT_HOME)).expanduser()


def get_namespace() -> str:
    return os.getenv("STUDY_PLANNER_NAMESPACE", "").strip() or DEFAULT_NAMESPACE


def get_max_depth() -> int:
    raw = os.getenv("STUDY_PLANNER_MAX_DEPTH", "")
    try:
        value = int(raw)
    except ValueError:
        return DEFAULT_MAX_DEPTH
    return value if value >= 1 else DEFAULT_MAX_DEPTH


def _node_to_dict(node: StudyNode) -> dict:
    return {
        "id": node.id,
        "name": node.name,
        "studied": node.studied,
        "children": [_node_to_dict(child) for child in node.children],
    }


def forest_to_json(forest: Forest) -> str:
    return json.dumps([_node_to_dict(node) for node in forest], ensure_ascii=False)


def _node_from_dict(raw: dict, seen_ids: set[str]) -> StudyNode:
    node_id = raw.get("id")
    if not isinstance(node_id, str) or not node_id or node_id in seen_ids:
        node_id = new_id(seen_ids)
    seen_ids.add(node_id)
    raw_children = raw.get("children")
    if not isinstance(raw_children, list):
        raw_children = []
    children = tuple(
        _node_from_dict(child, seen_ids) for child in raw_children if isinstance(child, dict)
    )
    return StudyNode(
        name=str(raw.get("name") or "").strip(),
        studied=bool(raw.get("studied")),
        children=children,
        id=node_id,
    )


def _decode_forest(raw: Optional[str]) -> tuple[Forest, bool]:
    """Decode stored text; the flag is False when the data had to be discarded."""
    if not raw:
        return (), True
    try:
        parsed = json.loads(raw)
    except ValueError:
        return (), False
    if not isinstance(parsed, list):
        return (), False
    seen_ids: set[str] = set()
    nodes = tuple(_node_from_dict(item, seen_ids) for item in parsed if isinstance(item, dict))
    return normalize(nodes), True


def forest_from_json(raw: Optional[str]) -> Forest:
    """Rebuild a forest from stored JSON.

    Missing or duplicate ids get fresh ones, missing children become empty and
    the result is normalised. Anything that is not a JSON array yields an
    empty forest.
    """
    forest, _ = _decode_forest(raw)
    return forest


class ForestStore:
    """File-backed key-value slot holding one serialised forest."""

    def __init__(self, namespace: str = DEFAULT_NAMESPACE, directory: str | Path | None = None) -> None:
        self.namespace = namespace
        self.directory = Path(directory).expanduser() if directory else get_data_dir()

    @property
    def path(self) -> Path:
        safe = _UNSAFE_FILENAME_CHARS.sub("_", self.namespace).strip("_") or "default"
        return self.directory / f"{safe}.json"

    @property
    def activity_log_path(self) -> Path:
        return self.directory / ACTIVITY_LOG_NAME

    def load(self) -> Optional[str]:
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="utf-8")

    def save(self, text: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self.path.write_text(text, encoding="utf-8")

    def load_forest(self) -> Forest:
        try:
            raw = self.load()
        except (OSError, UnicodeDecodeError) as exc:
            self.log_event("reset", f"unreadable {self.path.name}: {exc}")
            return ()
        forest, valid = _decode_forest(raw)
        if not valid:
            self.log_event("reset", f"discarded malformed {self.path.name}")
        else:
            self.log_event("load", f"{len(forest)} top-level item(s)")
        return forest

    def save_forest(self, forest: Forest) -> None:
        self.save(forest_to_json(forest))
        self.log_event("save", f"{len(forest)} top-level item(s)")

    def log_event(self, status: str, detail: str | None = None) -> None:
        timestamp = datetime.now().isoformat(timespec="seconds")
        message = detail.strip() if detail else ""
        line = f"{timestamp}\t{status.upper()}\t{self.namespace}"
        if message:
            line = f"{line}\t{message}"
        with _activity_log_lock:
            self.directory.mkdir(parents=True, exist_ok=True)
            with self.activity_log_path.open("a", encoding="utf-8") as log:
                log.write(line + "\n")

    def reset_activity_log(self) -> None:
        with _activity_log_lock:
            self.directory.mkdir(parents=True, exist_ok=True)
            self.activity_log_path.write_text("", encoding="utf-8")
