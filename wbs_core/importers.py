"""
Row-set and clipboard importers.

Spreadsheet readers hand us records (header -> value) or raw 2-D cell
arrays. These helpers normalize them into one of the two parser inputs:
- a list of (code, name) rows for the coded-table dialect, or
- indented outline text for the indentation dialect.

Headers are matched case-insensitively after trimming. Nothing here raises
on odd input; readers that need to reject a file do so themselves.
"""

import math
import re
from collections.abc import Mapping, Sequence
from html.parser import HTMLParser
from typing import Any, Optional, Union

from .models import INDENT_UNIT


SAMPLE_OUTLINE = """Project
  Planning
    Define scope
    Identify stakeholders
  Monitoring
    Meeting
    Meeting
  Execution
    Build feature A
    Build feature B
    Build feature C
  Closeout
    Handover
    Retrospective
    Test"""

CODE_HEADERS = ("wbs", "wbs code", "code")
NAME_HEADERS = ("name", "task name", "title", "task")
TASK_HEADERS = ("task", "name", "title")

CODE_CELL_RE = re.compile(r"^\d+(?:\.\d+)*\.?$")

# Either coded rows or outline text
Normalized = Union[list[tuple[str, str]], str]


def normalize_header(header: Any) -> str:
    return str(header or "").strip().lower()


def cell_text(value: Any) -> str:
    """Stringify a spreadsheet cell; whole floats lose their ".0"."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).replace("\u00a0", " ").strip()


def _first_header(headers: Sequence[str], candidates: Sequence[str]) -> Optional[str]:
    for candidate in candidates:
        if candidate in headers:
            return candidate
    return None


def _normalize_record(record: Mapping) -> dict[str, str]:
    return {normalize_header(k): cell_text(v) for k, v in record.items()}


def _to_number(value: str) -> Optional[float]:
    try:
        number = float(value)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def has_code_schema(headers: Sequence[str]) -> bool:
    """True when both a code column and a name column are present."""
    code = _first_header(headers, CODE_HEADERS)
    name = _first_header([h for h in headers if h != code], NAME_HEADERS)
    return code is not None and name is not None


def records_to_coded_rows(records: Sequence[Mapping]) -> list[tuple[str, str]]:
    """(code, name) pairs from records with a code and a name column."""
    normalized = [_normalize_record(r) for r in records]
    headers = list(normalized[0]) if normalized else []
    code_key = _first_header(headers, CODE_HEADERS)
    name_key = _first_header([h for h in headers if h != code_key], NAME_HEADERS)

    rows = []
    for record in normalized:
        code = record.get(code_key, "")
        name = record.get(name_key, "")
        if code or name:
            rows.append((code, name))
    return rows


def rows_to_outline(records: Sequence[Mapping]) -> str:
    """
    Convert records to indented outline text.

    Coded records are sorted by code and indented by code depth. Otherwise
    the generic schema applies: a task column (task, name or title) plus an
    optional level (1 = top) or indent (0 = top) column; missing or invalid
    values put the row at the top level.
    """
    if not records:
        return ""

    headers = [normalize_header(h) for h in records[0]]
    out: list[str] = []

    if has_code_schema(headers):
        rows = [
            (code.rstrip("."), name)
            for code, name in records_to_coded_rows(records)
            if code and name
        ]
        rows.sort(key=lambda row: [int(p) if p.isdigit() else 0 for p in row[0].split(".")])
        for code, name in rows:
            depth = max(1, len([p for p in code.split(".") if p]))
            out.append(f"{INDENT_UNIT * (depth - 1)}{name}")
        return "\n".join(out)

    for record in records:
        values = _normalize_record(record)
        task_key = _first_header(list(values), TASK_HEADERS)
        task = values.get(task_key, "") if task_key else ""
        if not task:
            continue

        level = None
        raw_level = _to_number(values.get("level", ""))
        if raw_level is not None and raw_level >= 1:
            level = int(raw_level)
        if level is None:
            raw_indent = _to_number(values.get("indent", ""))
            if raw_indent is not None and raw_indent >= 0:
                level = int(raw_indent) + 1
        if level is None:
            level = 1

        out.append(f"{INDENT_UNIT * (level - 1)}{task}")
    return "\n".join(out)


def normalize_records(records: Sequence[Mapping]) -> Normalized:
    """Coded rows when a code and name column exist, else outline text."""
    if not records:
        return ""
    headers = [normalize_header(h) for h in records[0]]
    if has_code_schema(headers):
        return records_to_coded_rows(records)
    return rows_to_outline(records)


def normalize_table(cells: Sequence[Sequence[Any]]) -> Normalized:
    """
    Normalize a raw 2-D cell array.

    - A first row holding known headers turns the rest into records.
    - Rows led by a dotted code (at least two of them, or all rows) become
      coded rows.
    - Otherwise the column of a row's first non-empty cell is its indent.
    """
    rows = [[cell_text(c) for c in row] for row in cells]
    rows = [row for row in rows if any(row)]
    if not rows:
        return ""

    header = [normalize_header(c) for c in rows[0]]
    if has_code_schema(header) or _first_header(header, TASK_HEADERS):
        records = [dict(zip(rows[0], row)) for row in rows[1:]]
        return normalize_records(records) if records else ""

    coded: list[tuple[str, str]] = []
    code_count = 0
    for row in rows:
        filled = [c for c in row if c]
        if len(filled) >= 2 and CODE_CELL_RE.match(filled[0]):
            code_count += 1
            coded.append((filled[0], " ".join(filled[1:])))
        else:
            coded.append(("", " ".join(filled)))

    if code_count >= 2 or code_count == len(rows):
        return coded

    out = []
    for row in rows:
        column = next(i for i, c in enumerate(row) if c)
        out.append(f"{INDENT_UNIT * column}{row[column]}")
    return "\n".join(out)


# --- HTML clipboard ---

_HTML_LIST_RE = re.compile(r"<(ul|ol|li|br)", re.IGNORECASE)


class _ListOutlineParser(HTMLParser):
    """Collects the first top-level <ul>/<ol> as nested items."""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.items: list[dict] = []
        self.plain: list[str] = []
        self.saw_list = False
        self._stack: list[dict] = []
        self._list_depth = 0
        self._done = False

    def _close_items(self, depth: int):
        while self._stack and self._stack[-1]["depth"] > depth:
            self._stack.pop()

    def handle_starttag(self, tag, attrs):
        if tag == "br":
            self.plain.append("\n")
            if self._stack and not self._done:
                self._stack[-1]["text"].append("\n")
            return
        if self._done:
            return
        if tag in ("ul", "ol"):
            self.saw_list = True
            self._list_depth += 1
        elif tag == "li" and self._list_depth > 0:
            self._close_items(self._list_depth - 1)
            item = {"depth": self._list_depth, "text": [], "children": []}
            siblings = self._stack[-1]["children"] if self._stack else self.items
            siblings.append(item)
            self._stack.append(item)

    def handle_endtag(self, tag):
        if self._done:
            return
        if tag in ("ul", "ol") and self._list_depth > 0:
            self._list_depth -= 1
            self._close_items(self._list_depth)
            if self._list_depth == 0:
                self._done = True
        elif tag == "li":
            self._close_items(self._list_depth - 1)

    def handle_data(self, data):
        data = re.sub(r"\s+", " ", data.replace("\u00a0", " "))
        self.plain.append(data)
        if self._stack and not self._done:
            self._stack[-1]["text"].append(data)


def _item_lines(items: list[dict], depth: int, out: list[str]):
    for item in items:
        for part in "".join(item["text"]).split("\n"):
            part = part.strip()
            if part:
                out.append(f"{INDENT_UNIT * depth}{part}")
        _item_lines(item["children"], depth + 1, out)


def html_list_to_outline(html: str) -> Optional[str]:
    """
    Convert pasted HTML lists into indented outline text.

    Only the first top-level list is used; nested lists become deeper
    indentation and <br> splits an item into sibling lines. HTML without
    lists but with <br> becomes plain lines. Returns None when the HTML
    has neither, so callers can fall back to the plain-text clipboard.
    """
    if not html or not _HTML_LIST_RE.search(html):
        return None

    parser = _ListOutlineParser()
    parser.feed(html)
    parser.close()

    if not parser.saw_list:
        lines = "".join(parser.plain).split("\n")
        return "\n".join(line.strip() for line in lines if line.strip())

    out: list[str] = []
    _item_lines(parser.items, 0, out)
    return "\n".join(out)
