import re
from dataclasses import replace
from typing import Dict, FrozenSet, List, NamedTuple, Optional, Sequence, Set

from node_models import Forest, ImportRecord, StudyNode, new_id
from tree_ops import forest_ids, normalize

EXPORT_HEADER = "disciplina,subdisciplina,status"
EXPORT_FILENAME = "disciplinas.csv"
EXPORT_MEDIA_TYPE = "text/csv;charset=utf-8"
STATUS_STUDIED = "estudada"
STATUS_PENDING = "pendente"
PATH_SEPARATOR = ">"

# Header tokens per logical column. Matching is exact on the lower-cased
# header cell; add synonyms here rather than in the mapping code.
HEADER_VOCABULARY: Dict[str, FrozenSet[str]] = {
    "name": frozenset({"disciplina", "matéria", "materia", "nome", "assunto", "subject"}),
    "status": frozenset({"status", "situacao", "situação", "done", "estudada"}),
    "sub": frozenset({"subdisciplina", "sub", "submatéria", "submateria"}),
}

# Status cells (lower-cased) that mean "studied"; anything else is pending.
STUDIED_TOKENS: FrozenSet[str] = frozenset(
    {"1", "true", "sim", "feito", "done", "estudada", "estudado"}
)
STUDIED_PREFIX = "estud"

_LINE_BREAK_PATTERN = re.compile(r"\r\n|\r|\n")


class ImportResult(NamedTuple):
    forest: Forest
    records: List[ImportRecord]


class ImportPreview(NamedTuple):
    lines: int
    new_top_level: int


def detect_delimiter(text: str) -> str:
    """Pick ``;`` or ``,`` from the first non-blank line.

    Only separators outside double quotes are counted. ``;`` wins only when it
    strictly outnumbers ``,``.
    """
    first = next((line for line in _LINE_BREAK_PATTERN.split(text or "") if line.strip()), "")
    commas = semicolons = 0
    inside = False
    for char in first:
        if char == '"':
            inside = not inside
        elif inside:
            continue
        elif char == ",":
            commas += 1
        elif char == ";":
            semicolons += 1
    return ";" if semicolons > commas else ","


def parse_rows(text: str) -> List[List[str]]:
    """Split delimited text into rows of trimmed fields.

    - ``""`` inside a quoted field is a literal quote.
    - Delimiters and line breaks inside quotes are content.
    - ``\\n``, ``\\r\\n`` and a bare ``\\r`` end a row.
    - Rows whose fields are all blank are dropped.
    """
    if not text:
        return []
    delimiter = detect_delimiter(text)
    rows: List[List[str]] = []
    row: List[str] = []
    field: List[str] = []
    inside = False
    i = 0
    length = len(text)

    while i < length:
        char = text[i]
        if char == '"':
            if inside and i + 1 < length and text[i + 1] == '"':
                field.append('"')
                i += 1
            else:
                inside = not inside
        elif char == delimiter and not inside:
            row.append("".join(field))
            field = []
        elif char in "\r\n" and not inside:
            if char == "\r" and i + 1 < length and text[i + 1] == "\n":
                i += 1
            row.append("".join(field))
            field = []
            rows.append(row)
            row = []
        else:
            field.append(char)
        i += 1

    if field or row:
        row.append("".join(field))
        rows.append(row)

    trimmed = [[cell.strip() for cell in cells] for cells in rows]
    return [cells for cells in trimmed if any(cells)]


def _cell(row: Sequence[str], index: int) -> str:
    if index < 0 or index >= len(row):
        return ""
    return row[index] or ""


def _header_columns(header: Sequence[str]) -> Optional[Dict[str, int]]:
    """Return the column index per role, or ``None`` if this is not a header."""
    lowered = [cell.lower() for cell in header]
    if not any(cell in tokens for cell in lowered for tokens in HEADER_VOCABULARY.values()):
        return None
    columns: Dict[str, int] = {}
    for role, tokens in HEADER_VOCABULARY.items():
        columns[role] = next((index for index, cell in enumerate(lowered) if cell in tokens), -1)
    return columns


def is_studied_token(value: str) -> bool:
    token = (value or "").lower()
    return token in STUDIED_TOKENS or token.startswith(STUDIED_PREFIX)


def split_path(path: str) -> List[str]:
    return [segment.strip() for segment in (path or "").split(PATH_SEPARATOR) if segment.strip()]


def map_rows(rows: Sequence[Sequence[str]]) -> List[ImportRecord]:
    """Turn parsed rows into import records.

    A first row containing any known header token is a header and column roles
    come from it. Otherwise column 0 is the name and column 1, when present,
    the status. A name such as ``A > B > C`` with no sub-item column value is
    split into the top-level ``A`` and the path ``B > C``.
    """
    if not rows:
        return []

    columns = _header_columns(rows[0])
    if columns is not None:
        data = rows[1:]
    else:
        data = rows
        columns = {"name": 0, "status": 1 if len(rows[0]) > 1 else -1, "sub": -1}

    records: List[ImportRecord] = []
    for row in data:
        name = _cell(row, columns["name"])
        if not name.strip():
            continue
        sub_path = _cell(row, columns["sub"])
        if not sub_path:
            parts = split_path(name)
            if len(parts) > 1:
                name = parts[0]
                sub_path = " > ".join(parts[1:])
        studied = columns["status"] > -1 and is_studied_token(_cell(row, columns["status"]))
        records.append(ImportRecord(name=name.strip(), sub_path=sub_path.strip(), studied=studied))
    return records


def _new_node(name: str, taken: Set[str]) -> StudyNode:
    node = StudyNode(name, id=new_id(taken))
    taken.add(node.id)
    return node


def _ensure_path(
    node: StudyNode, segments: Sequence[str], studied: bool, taken: Set[str]
) -> StudyNode:
    """Find or create ``segments`` below ``node``; only the last one gets ``studied``.

    Ids of created nodes are drawn outside ``taken``, which is updated.
    """
    if not segments:
        if studied and not node.studied:
            return replace(node, studied=True)
        return node
    head, rest = segments[0], segments[1:]
    wanted = head.lower()
    for index, child in enumerate(node.children):
        if child.name.lower() == wanted:
            updated = _ensure_path(child, rest, studied, taken)
            if updated is child:
                return node
            children = node.children[:index] + (updated,) + node.children[index + 1 :]
            return replace(node, children=children)
    created = _ensure_path(_new_node(head, taken), rest, studied, taken)
    return replace(node, children=node.children + (created,))


def merge_records(forest: Forest, records: Sequence[ImportRecord]) -> Forest:
    """Upsert records into the forest by case-insensitive name, then normalise.

    Re-importing the same records never duplicates nodes.
    """
    if not records:
        return forest
    nodes = list(forest)
    taken = forest_ids(nodes)
    positions = {}
    for index, node in enumerate(nodes):
        positions.setdefault(node.name.lower(), index)

    for record in records:
        key = record.name.lower()
        index = positions.get(key)
        if index is None:
            nodes.append(_new_node(record.name, taken))
            index = positions[key] = len(nodes) - 1
        top = nodes[index]
        if record.sub_path:
            segments = split_path(record.sub_path)
            if segments:
                top = _ensure_path(top, segments, record.studied, taken)
        elif record.studied:
            top = _ensure_path(top, (), True, taken)
        nodes[index] = top

    return normalize(tuple(nodes))


def import_text(forest: Forest, text: str) -> ImportResult:
    """Parse, map and merge ``text``; the forest is untouched when nothing maps.

    Paths nested too deeply to walk are refused as a whole.
    """
    records = map_rows(parse_rows(text))
    if not records:
        return ImportResult(forest, [])
    try:
        merged = merge_records(forest, records)
    except RecursionError:
        return ImportResult(forest, [])
    return ImportResult(merged, records)


def import_preview(forest: Forest, text: str) -> Optional[ImportPreview]:
    """Summarise what importing ``text`` would do, or ``None`` if nothing maps."""
    records = map_rows(parse_rows(text))
    if not records:
        return None
    existing = {node.name.lower() for node in forest}
    incoming = {record.name.lower() for record in records}
    return ImportPreview(lines=len(records), new_top_level=len(incoming - existing))


def _quote(value: str) -> str:
    return '"' + str(value).replace('"', '""') + '"'


def _status_word(node: StudyNode) -> str:
    return STATUS_STUDIED if node.studied else STATUS_PENDING


def to_csv(forest: Forest) -> str:
    """Serialise every leaf as ``path,leaf,status`` under a fixed header.

    A top-level leaf is written as ``"name",,status``; a deeper leaf carries
    its ancestors joined by `` > `` in the first column and its own name in
    the second. Text fields are always quoted.
    """
    if forest is None:
        raise ValueError("forest must not be None")

    lines: List[str] = [EXPORT_HEADER]

    def walk(parent_path: str, node: StudyNode) -> None:
        if node.is_leaf:
            if parent_path:
                lines.append(f"{_quote(parent_path)},{_quote(node.name)},{_status_word(node)}")
            else:
                lines.append(f"{_quote(node.name)},,{_status_word(node)}")
            return
        path = f"{parent_path} > {node.name}" if parent_path else node.name
        for child in node.children:
            walk(path, child)

    for node in forest:
        walk("", node)

    return "\n".join(lines)
