"""Block-level markdown reader shared by the document parsers.

Splits markdown text into an ordered tree of block nodes (headings,
paragraphs, lists, GFM tables, fenced code, block quotes, thematic
breaks and a leading YAML front-matter block). Inline markup is kept
verbatim, so ``**Status**: Draft`` flattens to exactly that string and
the parsers can match bold labels and back-ticked names with regexes.

Reading is total: text that does not fit any construct becomes a
paragraph, and nothing here raises on malformed input.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

import yaml

logger = logging.getLogger("speckit.markdown")

BOM = "\ufeff"

_HEADING = re.compile(r"^ {0,3}(#{1,6})(?:[ \t]+(.*?))?(?:[ \t]+#+)?[ \t]*$")
_SETEXT_UNDERLINE = re.compile(r"^ {0,3}=+[ \t]*$")
_FENCE = re.compile(r"^ {0,3}(`{3,}|~{3,})(.*)$")
_THEMATIC_BREAK = re.compile(r"^ {0,3}([-*_])(?:[ \t]*\1){2,}[ \t]*$")
_BLOCKQUOTE = re.compile(r"^ {0,3}>[ ]?(.*)$")
_LIST_ITEM = re.compile(
    r"^(?P<indent>[ \t]*)(?P<marker>[-*+]|\d{1,9}[.)])(?P<space>[ \t]+|$)(?P<content>.*)$"
)
_TASK_CHECKBOX = re.compile(r"^\[( |x|X)\](?:[ \t]+|$)")
_TABLE_DELIMITER = re.compile(r"^[ \t]*\|?[ \t]*:?-+:?[ \t]*(?:\|[ \t]*:?-+:?[ \t]*)*\|?[ \t]*$")
_CELL_SPLIT = re.compile(r"(?<!\\)\|")

_TEXT_SEPARATORS = {
    "blockquote": "\n",
    "list": "\n",
    "list_item": "\n",
    "table": "\n",
    "table_row": " | ",
}


@dataclass
class Node:
    """One node of the document tree.

    Leaf nodes (``text``, ``code``, ``front_matter``) carry ``value``;
    container nodes carry ``children``. ``depth`` is set on headings,
    ``ordered``/``start`` on lists, ``checked`` on GFM task list items,
    ``lang`` on fenced code and ``data`` on front-matter.
    """

    type: str
    children: List["Node"] = field(default_factory=list)
    value: Optional[str] = None
    depth: Optional[int] = None
    ordered: Optional[bool] = None
    start: Optional[int] = None
    checked: Optional[bool] = None
    lang: Optional[str] = None
    data: Optional[Dict[str, Any]] = None

    def iter_text(self) -> Iterator[str]:
        """Yield the text of this node and its descendants, depth-first."""
        if self.value is not None:
            yield self.value
            return
        separator = _TEXT_SEPARATORS.get(self.type, "")
        for index, child in enumerate(self.children):
            if index and separator:
                yield separator
            yield from child.iter_text()

    def text(self) -> str:
        """Flatten the node into a plain string."""
        return "".join(self.iter_text())

    @property
    def items(self) -> List["Node"]:
        return self.children

    def is_heading(self, depth: Optional[int] = None) -> bool:
        return self.type == "heading" and (depth is None or self.depth == depth)


@dataclass
class DocumentTree:
    """Ordered top-level blocks of a markdown document."""

    children: List[Node] = field(default_factory=list)
    front_matter: Dict[str, Any] = field(default_factory=dict)

    def __iter__(self) -> Iterator[Node]:
        return iter(self.children)

    def __len__(self) -> int:
        return len(self.children)

    def headings(self, depth: Optional[int] = None) -> List[Node]:
        return [node for node in self.children if node.is_heading(depth)]

    def walk(self) -> Iterator[Node]:
        """Iterate over every node in document order."""
        stack = list(reversed(self.children))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))


def parse_markdown(text: str) -> DocumentTree:
    """Parse markdown text into a DocumentTree."""
    if text.startswith(BOM):
        text = text[len(BOM):]
    lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    front_matter, raw_front_matter, start = _read_front_matter(lines)

    children: List[Node] = []
    if raw_front_matter is not None:
        children.append(Node("front_matter", value=raw_front_matter, data=front_matter))

    try:
        children.extend(_parse_blocks(lines[start:]))
    except RecursionError:
        # Pathologically deep nesting: keep the text as flat paragraphs.
        logger.warning("Markdown nesting too deep, falling back to flat paragraphs", exc_info=True)
        children.extend(_flat_paragraphs(lines[start:]))

    return DocumentTree(children=children, front_matter=front_matter)


# ----------------------------------------------------------------------
# Front-matter
# ----------------------------------------------------------------------

def _read_front_matter(lines: List[str]) -> Tuple[Dict[str, Any], Optional[str], int]:
    if not lines or lines[0].strip() != "---":
        return {}, None, 0

    for index in range(1, len(lines)):
        if lines[index].strip() in ("---", "..."):
            raw = "\n".join(lines[1:index])
            try:
                data = yaml.safe_load(raw) or {}
            except yaml.YAMLError as e:
                logger.debug(f"Ignoring undecodable front-matter: {e}")
                data = {}
            if not isinstance(data, dict):
                data = {}
            return data, raw, index + 1

    return {}, None, 0


# ----------------------------------------------------------------------
# Block segmentation
# ----------------------------------------------------------------------

def _indent_width(line: str) -> int:
    expanded = line.expandtabs(4)
    return len(expanded) - len(expanded.lstrip(" "))


def _dedent(line: str, width: int) -> str:
    expanded = line.expandtabs(4)
    strip = min(width, _indent_width(expanded))
    return expanded[strip:]


def _starts_table(lines: List[str], index: int) -> bool:
    if index + 1 >= len(lines):
        return False
    header, delimiter = lines[index], lines[index + 1]
    return "|" in header and "|" in delimiter and bool(_TABLE_DELIMITER.match(delimiter))


def _starts_block(lines: List[str], index: int) -> bool:
    line = lines[index]
    return bool(
        _HEADING.match(line)
        or _FENCE.match(line)
        or _THEMATIC_BREAK.match(line)
        or _BLOCKQUOTE.match(line)
        or _LIST_ITEM.match(line)
        or _starts_table(lines, index)
    )


def _parse_blocks(lines: List[str]) -> List[Node]:
    nodes: List[Node] = []
    index = 0
    while index < len(lines):
        line = lines[index]
        if not line.strip():
            index += 1
            continue

        fence = _FENCE.match(line)
        heading = _HEADING.match(line)
        if fence:
            node, index = _read_code(lines, index, fence)
        elif heading:
            node = _heading(len(heading.group(1)), heading.group(2) or "")
            index += 1
        elif _THEMATIC_BREAK.match(line):
            node = Node("thematic_break")
            index += 1
        elif _BLOCKQUOTE.match(line):
            node, index = _read_blockquote(lines, index)
        elif _LIST_ITEM.match(line):
            node, index = _read_list(lines, index)
        elif _starts_table(lines, index):
            node, index = _read_table(lines, index)
        else:
            node, index = _read_paragraph(lines, index)
        nodes.append(node)
    return nodes


def _heading(depth: int, text: str) -> Node:
    return Node("heading", depth=depth, children=[Node("text", value=text.strip())])


def _paragraph(text: str) -> Node:
    return Node("paragraph", children=[Node("text", value=text)])


def _read_code(lines: List[str], index: int, fence: re.Match) -> Tuple[Node, int]:
    marker = fence.group(1)
    info = fence.group(2).strip()
    closing = re.compile(r"^ {0,3}" + re.escape(marker[0]) + "{" + str(len(marker)) + r",}[ \t]*$")

    body: List[str] = []
    cursor = index + 1
    while cursor < len(lines) and not closing.match(lines[cursor]):
        body.append(lines[cursor])
        cursor += 1

    lang = info.split()[0] if info else None
    # unterminated fences run to the end of the document
    return Node("code", value="\n".join(body), lang=lang), cursor + 1


def _read_blockquote(lines: List[str], index: int) -> Tuple[Node, int]:
    inner: List[str] = []
    cursor = index
    while cursor < len(lines):
        match = _BLOCKQUOTE.match(lines[cursor])
        if not match:
            break
        inner.append(match.group(1))
        cursor += 1
    return Node("blockquote", children=_parse_blocks(inner)), cursor


def _read_paragraph(lines: List[str], index: int) -> Tuple[Node, int]:
    collected = [lines[index].strip()]
    cursor = index + 1
    while cursor < len(lines):
        line = lines[cursor]
        if not line.strip():
            break
        # "---" under a paragraph is read as a thematic break, not a setext heading
        if _SETEXT_UNDERLINE.match(line):
            return _heading(1, " ".join(collected)), cursor + 1
        if _starts_block(lines, cursor):
            break
        collected.append(line.strip())
        cursor += 1
    return _paragraph("\n".join(collected)), cursor


def _is_ordered(match: re.Match) -> bool:
    return match.group("marker")[0].isdigit()


def _continues_list(lines: List[str], index: int, base_indent: int, ordered: bool) -> Optional[re.Match]:
    line = lines[index]
    if _THEMATIC_BREAK.match(line):
        return None
    match = _LIST_ITEM.match(line)
    if not match or _indent_width(match.group("indent")) != base_indent or _is_ordered(match) != ordered:
        return None
    return match


def _read_list(lines: List[str], index: int) -> Tuple[Node, int]:
    first = _LIST_ITEM.match(lines[index])
    base_indent = _indent_width(first.group("indent"))
    ordered = _is_ordered(first)
    start = int(first.group("marker")[:-1]) if ordered else None

    items: List[Node] = []
    cursor = index
    match: Optional[re.Match] = first
    while match is not None:
        item, cursor = _read_list_item(lines, cursor, match, base_indent)
        items.append(item)

        lookahead = cursor
        while lookahead < len(lines) and not lines[lookahead].strip():
            lookahead += 1
        if lookahead >= len(lines):
            break
        match = _continues_list(lines, lookahead, base_indent, ordered)
        if match is not None:
            cursor = lookahead

    return Node("list", children=items, ordered=ordered, start=start), cursor


def _read_list_item(lines: List[str], index: int, match: re.Match, base_indent: int) -> Tuple[Node, int]:
    content = match.group("content")
    content_offset = _indent_width(match.group("indent")) + len(match.group("marker")) + 1

    checked: Optional[bool] = None
    checkbox = _TASK_CHECKBOX.match(content)
    if checkbox:
        checked = checkbox.group(1).lower() == "x"
        content = content[checkbox.end():]

    body = [content.strip()]
    cursor = index + 1
    while cursor < len(lines):
        line = lines[cursor]
        if not line.strip():
            lookahead = cursor
            while lookahead < len(lines) and not lines[lookahead].strip():
                lookahead += 1
            if lookahead < len(lines) and _indent_width(lines[lookahead]) > base_indent:
                body.extend([""] * (lookahead - cursor))
                cursor = lookahead
                continue
            break

        if _indent_width(line) > base_indent:
            body.append(_dedent(line, content_offset))
        elif body[-1].strip() and not _starts_block(lines, cursor):
            # lazy paragraph continuation
            body.append(line.strip())
        else:
            break
        cursor += 1

    return Node("list_item", children=_parse_blocks(body), checked=checked), cursor


def _split_row(line: str) -> List[str]:
    stripped = line.strip()
    if stripped.startswith("|"):
        stripped = stripped[1:]
    if stripped.endswith("|") and not stripped.endswith("\\|"):
        stripped = stripped[:-1]
    return [cell.strip().replace("\\|", "|") for cell in _CELL_SPLIT.split(stripped)]


def _table_row(cells: List[str]) -> Node:
    return Node(
        "table_row",
        children=[Node("table_cell", children=[Node("text", value=cell)]) for cell in cells],
    )


def _read_table(lines: List[str], index: int) -> Tuple[Node, int]:
    rows = [_table_row(_split_row(lines[index]))]
    cursor = index + 2
    while cursor < len(lines):
        line = lines[cursor]
        if not line.strip() or "|" not in line:
            break
        if _HEADING.match(line) or _FENCE.match(line) or _BLOCKQUOTE.match(line):
            break
        rows.append(_table_row(_split_row(line)))
        cursor += 1
    return Node("table", children=rows), cursor


def _flat_paragraphs(lines: List[str]) -> List[Node]:
    chunks: List[Node] = []
    current: List[str] = []
    for line in lines:
        if line.strip():
            current.append(line.strip())
        elif current:
            chunks.append(_paragraph("\n".join(current)))
            current = []
    if current:
        chunks.append(_paragraph("\n".join(current)))
    return chunks
