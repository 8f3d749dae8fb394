#!/usr/bin/env python3
"""WBS diagram CLI - drives the backend API and prints JSON."""

import argparse
import csv
import json
import os
import sys
import urllib.request
import urllib.error
import urllib.parse
from pathlib import Path

from wbs_core.importers import CODE_HEADERS, TASK_HEADERS, normalize_header

API_BASE = os.environ.get("WBS_DIAGRAM_API", "http://127.0.0.1:8765/api")


class RowSourceError(ValueError):
    """A row file has no structure the parser can use."""


def _json_out(data):
    print(json.dumps(data))
    sys.exit(0)


def _api_request(method, endpoint, data=None, params=None):
    """Make a request to the WBS diagram backend."""
    url = f"{API_BASE}{endpoint}"

    if params:
        filtered = {k: v for k, v in params.items() if v is not None}
        if filtered:
            url = f"{url}?{urllib.parse.urlencode(filtered)}"

    headers = {"Content-Type": "application/json"}
    body = json.dumps(data).encode() if data is not None else None

    req = urllib.request.Request(url, data=body, headers=headers, method=method)

    try:
        with urllib.request.urlopen(req, timeout=30) as response:
            return json.loads(response.read().decode())
    except urllib.error.HTTPError as e:
        error_body = e.read().decode()
        try:
            error_data = json.loads(error_body)
            _json_out({"status": "error", "error": f"API error: {error_data.get('detail', 'Unknown error')}"})
        except json.JSONDecodeError:
            _json_out({"status": "error", "error": f"API error ({e.code}): {error_body}"})
    except urllib.error.URLError as e:
        _json_out({"status": "error", "error": f"Connection failed: {e.reason}. Is wbs-diagram-backend running?"})


def read_csv_records(path):
    """
    Read a CSV file with a header row into records.

    Raises RowSourceError when the file is empty or no header names a code
    or task column.
    """
    with open(path, newline="", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)
        headers = [normalize_header(h) for h in (reader.fieldnames or [])]
        if not headers:
            raise RowSourceError(f"{path}: file is empty")
        known = set(CODE_HEADERS) | set(TASK_HEADERS)
        if not known.intersection(headers):
            raise RowSourceError(
                f"{path}: no recognizable header; expected one of "
                f"{', '.join(sorted(known))} (found: {', '.join(headers)})"
            )
        records = [row for row in reader if any((v or "").strip() for v in row.values() if isinstance(v, str))]
    if not records:
        raise RowSourceError(f"{path}: header found but no rows")
    return records


# ── Diagram ──────────────────────────────────────────────────────────────────

def cmd_health(args):
    _json_out(_api_request("GET", "/health"))


def cmd_build(args):
    data = {
        "layout_mode": args.layout,
        "title": args.title,
        "make_first_line_root": args.first_line_root,
    }
    if args.csv:
        try:
            data["records"] = read_csv_records(args.csv)
        except (OSError, RowSourceError) as e:
            _json_out({"status": "error", "error": str(e)})
    elif args.file:
        try:
            data["text"] = Path(args.file).read_text(encoding="utf-8")
        except OSError as e:
            _json_out({"status": "error", "error": str(e)})
    else:
        data["text"] = args.text
    _json_out(_api_request("POST", "/diagram/build", data=data))


def cmd_state(args):
    _json_out(_api_request("GET", "/diagram"))


def cmd_export(args):
    result = _api_request("GET", "/diagram/export")
    if args.output:
        Path(args.output).write_text(json.dumps(result, indent=2), encoding="utf-8")
        _json_out({"status": "ok", "path": args.output})
    _json_out(result)


def cmd_validate(args):
    _json_out(_api_request("GET", "/diagram/validate"))


def cmd_summary(args):
    _json_out(_api_request("GET", "/diagram/summary"))


# ── Outline ──────────────────────────────────────────────────────────────────

def cmd_outline(args):
    result = _api_request("GET", "/outline")
    if args.raw:
        print(result.get("text", ""))
        sys.exit(0)
    _json_out(result)


def cmd_save(args):
    _json_out(_api_request("POST", "/outline/save", data={"text": None}))


def cmd_load(args):
    _json_out(_api_request("POST", "/outline/load"))


def cmd_import_csv(args):
    try:
        records = read_csv_records(args.path)
    except (OSError, RowSourceError) as e:
        _json_out({"status": "error", "error": str(e)})
    _json_out(_api_request("POST", "/outline/import", data={"records": records}))


# ── Nodes ────────────────────────────────────────────────────────────────────

def cmd_rename(args):
    _json_out(_api_request("POST", f"/nodes/{args.node_id}/rename", data={"label": args.label}))


def cmd_collapse(args):
    _json_out(_api_request("POST", f"/nodes/{args.node_id}/collapse"))


def cmd_autofit(args):
    if args.all:
        _json_out(_api_request("POST", "/nodes/autofit-all"))
    if not args.node_id:
        _json_out({"status": "error", "error": "Pass --node-id or --all"})
    _json_out(_api_request("POST", f"/nodes/{args.node_id}/autofit"))


def cmd_resize(args):
    _json_out(_api_request("POST", f"/nodes/{args.node_id}/resize", data={"width": args.width}))


def cmd_reset_size(args):
    _json_out(_api_request("POST", f"/nodes/{args.node_id}/reset-size"))


# ── Layout & history ─────────────────────────────────────────────────────────

def cmd_layout(args):
    if args.reset:
        _json_out(_api_request("POST", "/layout/reset"))
    _json_out(_api_request("POST", "/layout", data={"mode": args.mode}))


def cmd_undo(args):
    _json_out(_api_request("POST", "/undo"))


def cmd_redo(args):
    _json_out(_api_request("POST", "/redo"))


COMMANDS = {
    "health": cmd_health,
    "build": cmd_build,
    "state": cmd_state,
    "export": cmd_export,
    "validate": cmd_validate,
    "summary": cmd_summary,
    "outline": cmd_outline,
    "save": cmd_save,
    "load": cmd_load,
    "import-csv": cmd_import_csv,
    "rename": cmd_rename,
    "collapse": cmd_collapse,
    "autofit": cmd_autofit,
    "resize": cmd_resize,
    "reset-size": cmd_reset_size,
    "layout": cmd_layout,
    "undo": cmd_undo,
    "redo": cmd_redo,
}


def build_parser():
    parser = argparse.ArgumentParser(prog="wbs-diagram", description="WBS diagram CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("health")

    p = sub.add_parser("build")
    source = p.add_mutually_exclusive_group()
    source.add_argument("--file", default=None)
    source.add_argument("--csv", default=None)
    source.add_argument("--text", default=None)
    p.add_argument("--layout", default=None, choices=["horizontal", "vertical", "radial"])
    p.add_argument("--title", default=None)
    p.add_argument("--first-line-root", action="store_true")

    sub.add_parser("state")

    p = sub.add_parser("export")
    p.add_argument("--output", default=None)

    sub.add_parser("validate")
    sub.add_parser("summary")

    p = sub.add_parser("outline")
    p.add_argument("--raw", action="store_true")

    sub.add_parser("save")
    sub.add_parser("load")

    p = sub.add_parser("import-csv")
    p.add_argument("path")

    p = sub.add_parser("rename")
    p.add_argument("--node-id", required=True)
    p.add_argument("--label", required=True)

    p = sub.add_parser("collapse")
    p.add_argument("--node-id", required=True)

    p = sub.add_parser("autofit")
    p.add_argument("--node-id", default=None)
    p.add_argument("--all", action="store_true")

    p = sub.add_parser("resize")
    p.add_argument("--node-id", required=True)
    p.add_argument("--width", type=float, required=True)

    p = sub.add_parser("reset-size")
    p.add_argument("--node-id", required=True)

    p = sub.add_parser("layout")
    p.add_argument("--mode", default="vertical", choices=["horizontal", "vertical", "radial"])
    p.add_argument("--reset", action="store_true")

    sub.add_parser("undo")
    sub.add_parser("redo")

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    COMMANDS[args.command](args)


if __name__ == "__main__":
    main()
