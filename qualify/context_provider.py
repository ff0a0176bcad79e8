"""
Context Provider

Reads workspace files for the server and converts between the editor's
line/column positions and the byte offsets the engine works in.

Guards:
  • Skips binary files (null-byte check)
  • Caps reads at MAX_BYTES to prevent memory issues
  • Handles encoding errors gracefully
"""

import os
import logging
from typing import List, Optional, Tuple

from qualify.model import Edit

logger = logging.getLogger(__name__)

MAX_BYTES = 8 * 1024 * 1024  # safety cap for very large files


def line_col_to_offset(source: bytes, line: int, column: int) -> Optional[int]:
    """1-based line and character column → byte offset, None if out of range."""
    if line < 1 or column < 1:
        return None
    lines = source.split(b"\n")
    if line > len(lines):
        return None
    text = lines[line - 1].decode("utf-8", errors="replace")
    if column - 1 > len(text):
        return None
    start = sum(len(l) + 1 for l in lines[:line - 1])
    return start + len(text[:column - 1].encode("utf-8"))


def offset_to_line_col(source: bytes, offset: int) -> Tuple[int, int]:
    """Byte offset → 1-based (line, character column)."""
    offset = max(0, min(offset, len(source)))
    before = source[:offset]
    line = before.count(b"\n") + 1
    line_start = before.rfind(b"\n") + 1
    column = len(before[line_start:].decode("utf-8", errors="replace")) + 1
    return line, column


class ContextProvider:
    def __init__(self, workspace_root: str):
        self.workspace_root = workspace_root

    # ────────────────────────────────────────────────────────────────
    #  Internal helpers
    # ────────────────────────────────────────────────────────────────

    def _resolve(self, file_path: str) -> str:
        # Normalise separators so 'src/main.rs' works on Windows too
        native = file_path.replace("/", os.sep).replace("\\", os.sep)
        return os.path.join(self.workspace_root, native)

    def read_bytes(self, file_path: str) -> Optional[bytes]:
        """File contents with binary-file guard and size cap."""
        full_path = self._resolve(file_path)
        if not os.path.isfile(full_path):
            return None
        try:
            with open(full_path, "rb") as fb:
                data = fb.read(MAX_BYTES + 1)
        except OSError as e:
            logger.error("Error reading %s: %s", full_path, e)
            return None
        if b"\x00" in data[:8192]:
            logger.warning("Skipping binary file: %s", full_path)
            return None
        if len(data) > MAX_BYTES:
            logger.warning("File %s exceeds %d bytes — skipped", full_path, MAX_BYTES)
            return None
        return data

    def _read_lines(self, file_path: str) -> Optional[List[str]]:
        data = self.read_bytes(file_path)
        if data is None:
            return None
        return data.decode("utf-8", errors="replace").splitlines(keepends=True)

    # ────────────────────────────────────────────────────────────────
    #  Positions
    # ────────────────────────────────────────────────────────────────

    def offset_at(self, file_path: str, line: int, column: int) -> Optional[int]:
        data = self.read_bytes(file_path)
        if data is None:
            return None
        return line_col_to_offset(data, line, column)

    # ────────────────────────────────────────────────────────────────
    #  Lines and previews
    # ────────────────────────────────────────────────────────────────

    def get_line(self, file_path: str, line_number: int) -> str:
        """Return a single line from a file (1-indexed)."""
        lines = self._read_lines(file_path)
        if lines is None:
            return ""
        if 1 <= line_number <= len(lines):
            return lines[line_number - 1]
        return ""

    def preview_edit(self, file_path: str, edit: Edit) -> Optional[Tuple[str, str]]:
        """(before, after) text of the lines an Edit touches."""
        data = self.read_bytes(file_path)
        if data is None or edit.target.end > len(data):
            return None
        line_start = data.rfind(b"\n", 0, edit.target.start) + 1
        line_end = data.find(b"\n", edit.target.end)
        if line_end == -1:
            line_end = len(data)
        before = data[line_start:line_end]
        after = (data[line_start:edit.target.start] + edit.replacement.encode("utf-8")
                 + data[edit.target.end:line_end])
        return (before.decode("utf-8", errors="replace"),
                after.decode("utf-8", errors="replace"))
