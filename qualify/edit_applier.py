import os
import logging
from dataclasses import dataclass
from typing import List, Optional

from qualify.model import Edit
from qualify.syntax import parse_bytes

logger = logging.getLogger(__name__)


class EditError(ValueError):
    pass


@dataclass
class ApplyResult:
    applied: int
    skipped: int
    message: str
    content: Optional[bytes] = None


def apply_edits(source: bytes, edits: List[Edit]) -> ApplyResult:
    """
    Apply non-overlapping edits to `source`, bottom-up so earlier offsets
    stay valid.  Out-of-bounds or overlapping edits are skipped.
    """
    content = bytearray(source)
    applied = 0
    skipped = 0
    last_start = float("inf")
    for edit in sorted(edits, key=lambda e: e.target.start, reverse=True):
        start, end = edit.target.start, edit.target.end
        if end > len(content):
            logger.warning("Edit %d-%d is out of bounds (%d bytes). Skipping edit.", start, end, len(content))
            skipped += 1
            continue
        if end > last_start:
            logger.warning("Overlap detected at offset %d-%d. Skipping edit.", start, end)
            skipped += 1
            continue
        content[start:end] = edit.replacement.encode("utf-8")
        last_start = start
        applied += 1
    return ApplyResult(applied, skipped, f"Applied {applied} edit(s)", bytes(content))


def apply_edit(source: bytes, edit: Edit) -> bytes:
    """Apply a single Edit; raises EditError when it does not fit `source`."""
    result = apply_edits(source, [edit])
    if not result.applied:
        raise EditError(f"edit {edit.target.start}-{edit.target.end} does not fit a {len(source)}-byte text")
    return result.content


class EditApplier:
    """
    Applies a chosen Edit to a file of the workspace.
    The result is re-parsed; if the edit introduced syntax errors the
    original bytes are kept.
    """

    def __init__(self, workspace_root: str):
        self.workspace_root = workspace_root

    def _resolve(self, file_path: str) -> str:
        native = file_path.replace("/", os.sep).replace("\\", os.sep)
        return os.path.join(self.workspace_root, native)

    def apply_to_file(self, file_path: str, edit: Edit, dry_run: bool = False) -> ApplyResult:
        full_path = self._resolve(file_path)
        if not os.path.isfile(full_path):
            raise FileNotFoundError(f"File not found: {file_path}")

        with open(full_path, "rb") as f:
            original = f.read()

        result = apply_edits(original, [edit])
        if not result.applied:
            return ApplyResult(0, result.skipped, f"Edit does not fit {file_path}; nothing applied.")

        had_errors = parse_bytes(original).root_node.has_error
        if parse_bytes(result.content).root_node.has_error and not had_errors:
            logger.warning("Edit to %s introduces parse errors; rolled back", file_path)
            return ApplyResult(0, 1, f"Edit to {file_path} produced invalid Rust (parse errors detected). "
                                     f"Rolled back to original.")

        if dry_run:
            return ApplyResult(result.applied, 0, f"[Dry Run] Would apply 1 edit to {file_path}", result.content)

        with open(full_path, "wb") as f:
            f.write(result.content)
        logger.info("Applied `%s` to %s", edit.label, file_path)
        return ApplyResult(result.applied, 0, f"Applied 1 edit to {file_path}", result.content)

