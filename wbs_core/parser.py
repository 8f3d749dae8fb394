"""
Outline parser - turns outline text or row sets into a WbsNode tree.

Two dialects are supported:
- Indentation: hierarchy encoded by leading whitespace ("  " per level).
- Coded table: each row starts with a dotted code ("1.2.3") followed by a
  tab or two or more spaces and the name.

`parse()` picks the dialect once per call and never raises: empty or
malformed input yields a root with no children.
"""

import logging
import re
from collections.abc import Mapping, Sequence
from typing import Any, Optional

from .models import INDENT_UNIT, ROOT_ID, WbsNode
from . import importers

logger = logging.getLogger(__name__)


TAB_WIDTH = 2
SYNTHETIC_ROOT_LABEL = "Project"

# Minimum number of matching lines before text is treated as a coded table
CODED_MIN_LINES = 2

# Used for detection only: requires at least one dot and a wide separator
CODED_LINE_RE = re.compile(r"^\s*\d+(?:\.\d+)+\s*(?:\t+| {2,})\s*\S.*$")

# Used to split a line once the coded dialect has been chosen
CODE_AND_NAME_RE = re.compile(r"^\s*(\d+(?:\.\d+)*)\.?\s+(\S.*)$")

CODE_RE = re.compile(r"^\d+(?:\.\d+)*$")


class IdGenerator:
    """Mints unique ids for a single parse call.

    Created at the start of a parse and dropped at the end, so two parses
    of the same input always produce the same ids.
    """

    def __init__(self):
        self._used: set[str] = set()
        self._line_seq = 0

    def claim(self, node_id: str) -> str:
        """Reserve `node_id`, or mint `<node_id>#<n>` if it is taken."""
        candidate = node_id
        n = 1
        while candidate in self._used:
            n += 1
            candidate = f"{node_id}#{n}"
        self._used.add(candidate)
        return candidate

    def line_id(self) -> str:
        """Id for a row that carries no code."""
        self._line_seq += 1
        return self.claim(f"line-{self._line_seq}")


# --- Text normalization ---

def normalize_lines(text: str, tab_width: int = TAB_WIDTH) -> list[str]:
    """Split text into non-blank lines.

    Line endings are normalized, tabs expanded, non-breaking spaces turned
    into plain spaces and trailing whitespace removed.
    """
    text = (text or "").replace("\r\n", "\n").replace("\r", "\n")
    lines = []
    for line in text.split("\n"):
        line = line.replace("\t", " " * tab_width).replace("\u00a0", " ").rstrip()
        if line.strip():
            lines.append(line)
    return lines


def indent_of(line: str) -> int:
    """Number of leading spaces of an already normalized line."""
    return len(line) - len(line.lstrip(" "))


def detect_dialect(lines: Sequence[str]) -> str:
    """Return "coded" if enough lines look like coded rows, else "indented"."""
    matches = 0
    for line in lines:
        if CODED_LINE_RE.match(line):
            matches += 1
            if matches >= CODED_MIN_LINES:
                return "coded"
    return "indented"


def make_first_line_root(text: str, tab_width: int = TAB_WIDTH) -> str:
    """
    Indent every non-blank line after the first one by one level.

    Nothing is changed when some later line is already indented by at least
    one level; that outline already has a single root.
    """
    if not text:
        return text

    lines = text.replace("\r\n", "\n").split("\n")
    first = next((i for i, line in enumerate(lines) if line.strip()), None)
    if first is None:
        return text

    for line in lines[first + 1:]:
        if not line.strip():
            continue
        expanded = line.replace("\t", " " * tab_width).replace("\u00a0", " ")
        if indent_of(expanded) >= len(INDENT_UNIT):
            return text

    return "\n".join(
        line if i <= first or not line.strip() else INDENT_UNIT + line
        for i, line in enumerate(lines)
    )


# --- Indentation dialect ---

def empty_root() -> WbsNode:
    """The virtual sentinel root with no children."""
    return WbsNode(id=ROOT_ID, label=ROOT_ID, level=0, virtual=True)


def parse_indented(text: str, tab_width: int = TAB_WIDTH) -> WbsNode:
    """
    Parse an indented outline.

    Every line is a child of the nearest preceding line with a smaller
    indent. Top-level lines hang off a virtual root. Ids are dot paths of
    1-based sibling indices ("1", "1.2", "1.2.1").
    """
    root = empty_root()

    # (node, indent) frames; the sentinel sits below any real indent
    stack: list[tuple[WbsNode, int]] = [(root, -1)]

    for line in normalize_lines(text, tab_width):
        indent = indent_of(line)
        label = line.strip()

        while stack[-1][1] >= indent:
            stack.pop()
        parent = stack[-1][0]

        index = len(parent.children) + 1
        node_id = str(index) if parent.virtual else f"{parent.id}.{index}"
        node = WbsNode(id=node_id, label=label, level=parent.level + 1)
        parent.children.append(node)
        stack.append((node, indent))

    return root


# --- Coded-table dialect ---

def code_sort_key(code: str) -> tuple[int, ...]:
    """Numeric-aware sort key: "1.10" sorts after "1.2"."""
    return tuple(int(part) for part in code.split("."))


def split_coded_line(line: str) -> tuple[str, str]:
    """Split a text line into (code, name); code is "" when absent."""
    m = CODE_AND_NAME_RE.match(line)
    if m is None:
        return ("", line.strip())
    return (m.group(1), m.group(2).strip())


def _common_prefix(paths: list[tuple[int, ...]]) -> tuple[int, ...]:
    prefix = paths[0]
    for path in paths[1:]:
        n = 0
        while n < len(prefix) and n < len(path) and prefix[n] == path[n]:
            n += 1
        prefix = prefix[:n]
        if not prefix:
            break
    return prefix


def normalize_levels(root: WbsNode, level: int = 0) -> WbsNode:
    """Overwrite levels so `root` is `level` and children are parent + 1."""
    stack = [(root, level)]
    while stack:
        node, depth = stack.pop()
        node.level = depth
        stack.extend((child, depth + 1) for child in node.children)
    return root


def parse_coded_rows(
    rows: Sequence[tuple[str, str]],
    root_label: str = SYNTHETIC_ROOT_LABEL,
) -> WbsNode:
    """
    Build a tree from (code, name) rows.

    The row whose code is the common prefix of every code becomes the root;
    otherwise a root labeled `root_label` is synthesized. A row whose
    parent code is missing is attached to its nearest present ancestor, or
    to the root; rows are never dropped. Duplicate codes get minted ids
    ("1.2#2"), rows without a code become children of the root.
    """
    ids = IdGenerator()

    coded: list[tuple[tuple[int, ...], str, str]] = []
    uncoded: list[str] = []
    for code, name in rows:
        code = (code or "").strip().rstrip(".")
        name = (name or "").strip()
        if not code and not name:
            continue
        if CODE_RE.match(code):
            coded.append((code_sort_key(code), code, name or code))
        else:
            uncoded.append(" ".join(part for part in (code, name) if part))

    if not coded and not uncoded:
        return empty_root()

    # Stable sort keeps duplicates in input order
    coded.sort(key=lambda row: row[0])

    root: Optional[WbsNode] = None
    root_path: tuple[int, ...] = ()
    if coded:
        paths = [row[0] for row in coded]
        min_depth = min(len(p) for p in paths)
        prefix = _common_prefix(paths)
        if prefix and len(prefix) == min_depth:
            for path, code, name in coded:
                if path == prefix:
                    root = WbsNode(id=ids.claim(code), label=name, level=0)
                    root_path = path
                    break

    if root is None:
        root = WbsNode(id=ids.claim(ROOT_ID), label=root_label, level=0)

    by_path: dict[tuple[int, ...], WbsNode] = {}
    if root_path:
        by_path[root_path] = root

    nodes: list[tuple[tuple[int, ...], WbsNode]] = []
    root_claimed = False
    for path, code, name in coded:
        if path == root_path and not root_claimed:
            root_claimed = True
            continue
        node = WbsNode(id=ids.claim(code), label=name, level=len(path) - 1)
        by_path.setdefault(path, node)
        nodes.append((path, node))

    for path, node in nodes:
        parent = None
        ancestor = path[:-1]
        while ancestor:
            candidate = by_path.get(ancestor)
            if candidate is not None and candidate is not node:
                parent = candidate
                break
            ancestor = ancestor[:-1]
        if parent is None:
            parent = root
        elif ancestor != path[:-1]:
            logger.debug(
                "Code %s has no parent row, attached under %s", node.id, parent.id
            )
        parent.children.append(node)

    for text in uncoded:
        root.children.append(WbsNode(id=ids.line_id(), label=text, level=1))

    return normalize_levels(root)


def parse_coded_text(text: str, root_label: str = SYNTHETIC_ROOT_LABEL,
                     tab_width: int = TAB_WIDTH) -> WbsNode:
    """Parse text already known to be in the coded dialect."""
    rows = [split_coded_line(line) for line in normalize_lines(text, tab_width)]
    return parse_coded_rows(rows, root_label=root_label)


# --- Entry point ---

def parse(
    source: Any,
    *,
    tab_width: int = TAB_WIDTH,
    root_label: str = SYNTHETIC_ROOT_LABEL,
) -> WbsNode:
    """
    Parse outline text, a list of records, or a 2-D table into a tree.

    Args:
        source: Text, a sequence of mappings (header -> value) or a
            sequence of row sequences
        tab_width: Spaces per tab in indented text
        root_label: Label of the synthesized root for coded tables

    Returns:
        The tree root. Indented input is wrapped in a virtual root.
    """
    if source is None:
        return empty_root()

    if isinstance(source, str):
        lines = normalize_lines(source, tab_width)
        if detect_dialect(lines) == "coded":
            return parse_coded_text(source, root_label=root_label, tab_width=tab_width)
        return parse_indented(source, tab_width)

    if not isinstance(source, Sequence) or isinstance(source, (bytes, bytearray)):
        logger.debug("Unsupported parser input: %s", type(source).__name__)
        return empty_root()

    rows = list(source)
    if not rows:
        return empty_root()

    if all(isinstance(row, Mapping) for row in rows):
        normalized = importers.normalize_records(rows)
    elif all(isinstance(row, Sequence) and not isinstance(row, str) for row in rows):
        normalized = importers.normalize_table(rows)
    else:
        logger.debug("Mixed row types in parser input")
        return empty_root()

    if isinstance(normalized, str):
        return parse_indented(normalized, tab_width)
    return parse_coded_rows(normalized, root_label=root_label)
