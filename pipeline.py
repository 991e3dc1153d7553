"""
Edit pipeline — upload, edit and export a workbook in one go.

Usage:
    python pipeline.py <excel_file> --changes changes.json [-o out.xlsx] [--fresh]
    python pipeline.py <excel_file> --message "Add a Total column" [-o out.xlsx]

Steps:
  1. Parse the workbook into the normalized model
  2. Apply a JSON change list, or ask the assistant for one
  3. Export, patching the original file unless ``--fresh`` is given
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from assistant.bridge import AssistantBridge
from dto.changes import ApplyReport, Change, parse_changes
from dto.chat import ChatRequest
from errors import ProviderNotConfiguredError
from export.exporter import edited_file_name
from grid.editor import WorkbookEditor
from parser import parse_workbook, validate_upload

logger = logging.getLogger(__name__)


class EditPipeline:
    def __init__(self, bridge: Optional[AssistantBridge] = None):
        self._bridge = bridge

    def run(
        self,
        excel_path: str,
        changes: Optional[List[Change]] = None,
        message: Optional[str] = None,
        fresh: bool = False,
    ) -> bytes:
        raw = Path(excel_path).read_bytes()
        validate_upload(excel_path, len(raw))
        editor = WorkbookEditor(parse_workbook(raw, file_name=Path(excel_path).name), original=raw)

        if message:
            bridge = self._bridge or AssistantBridge()
            response = bridge.chat(ChatRequest(message=message, spreadsheet_data=editor.snapshot()))
            logger.info("Assistant: %s", response.message)
            changes = list(changes or []) + list(response.changes)

        report = editor.apply_changes(changes) if changes else ApplyReport()
        logger.info("Applied %d change(s), skipped %d", report.applied, len(report.skipped))
        for skipped in report.skipped:
            logger.warning("  #%d %s: %s", skipped.index, skipped.change_type, skipped.reason)

        return editor.export(fresh=fresh)


def _load_changes(path: str) -> List[Change]:
    with open(path, encoding="utf-8") as f:
        raw = json.load(f)
    # Accept either a bare list or {"changes": [...]}.
    if isinstance(raw, dict):
        raw = raw.get("changes", [])
    return parse_changes(raw)


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    )
    parser = argparse.ArgumentParser(
        description="Apply edits to an Excel workbook and export the result.",
    )
    parser.add_argument(
        "excel_file",
        help="Path to the .xlsx file to edit",
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--changes",
        default=None,
        help="JSON file with a list of change objects",
    )
    source.add_argument(
        "--message",
        default=None,
        help="Natural-language request for the assistant",
    )
    parser.add_argument(
        "-o",
        "--output",
        default=None,
        help="Output .xlsx path (default: <input_name>_edited.xlsx)",
    )
    parser.add_argument(
        "--fresh",
        action="store_true",
        help="Write a fresh workbook instead of patching the original file",
    )
    args = parser.parse_args()

    excel_path = args.excel_file
    if not os.path.isfile(excel_path):
        logger.error("File not found: %s", excel_path)
        sys.exit(1)

    output_path = args.output or str(Path(excel_path).with_name(edited_file_name(excel_path)))

    try:
        changes = _load_changes(args.changes) if args.changes else None
        content = EditPipeline().run(excel_path, changes=changes, message=args.message, fresh=args.fresh)
    except (ValueError, ValidationError, ProviderNotConfiguredError) as exc:
        logger.error("%s", exc)
        sys.exit(1)

    with open(output_path, "wb") as f:
        f.write(content)

    logger.info("Output written to %s", output_path)


if __name__ == "__main__":
    main()
