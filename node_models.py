import secrets
from dataclasses import dataclass, field
from typing import Container, Tuple


def new_id(taken: Container[str] = frozenset()) -> str:
    """Return a fresh opaque node identifier not present in ``taken``."""
    node_id = secrets.token_hex(4)
    while node_id in taken:
        node_id = secrets.token_hex(4)
    return node_id


@dataclass(frozen=True)
class StudyNode:
    name: str
    studied: bool = False
    children: Tuple["StudyNode", ...] = ()
    id: str = field(default_factory=new_id)

    @property
    def is_leaf(self) -> bool:
        return not self.children


# Top-level nodes in storage (insertion) order.
Forest = Tuple[StudyNode, ...]


@dataclass(frozen=True)
class ImportRecord:
    name: str
    # " > "-joined segments below the top-level node; empty for the node itself.
    sub_path: str = ""
    studied: bool = False
