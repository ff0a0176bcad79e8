"""
Qualify Fix Engine — turns an unresolved reference into qualification edits.

Pipeline per request:
  1. Locator     — smallest path / method call under the cursor
  2. Classifier  — asks the oracle for candidates, builds the ReferenceShape
  3. Synthesizer — one Edit per candidate path, all over the same range
  4. Grouper     — one AssistGroup labelled "Qualify <name>"

Every request is independent and read-only: nothing here touches the file.
"""

import logging
from typing import List, Optional

from qualify.assists import Assists
from qualify.classifier import Classification, ReferenceOracle, classify
from qualify.locator import LocatedReference, find_reference_at
from qualify.model import (
    AssistGroup, AssistId, QualifierStart, TraitAssocItem, TraitMethod,
    UnqualifiedName, shape_name,
)
from qualify.ranges import SourceRange, original_offset
from qualify.semantic_oracle import SemanticOracle
from qualify.source_file import SourceFile
from qualify.syntax import path_segments
from qualify.workspace_index import WorkspaceIndex

logger = logging.getLogger(__name__)

QUALIFY_PATH = AssistId("qualify_path", "quickfix")

# Argument-list children that are not arguments
_NON_ARGUMENTS = {"line_comment", "block_comment", "attribute_item"}


def compute_qualify_fixes(source_file: SourceFile, offset: int,
                          oracle: ReferenceOracle) -> List[AssistGroup]:
    """All qualification assists for the reference at `offset`.

    Returns an empty list whenever the assist does not apply.
    """
    reference = find_reference_at(source_file, offset)
    if reference is None:
        return []
    classification = classify(reference, oracle)
    if classification is None:
        return []

    assists = Assists(QUALIFY_PATH)
    if not synthesize(classification, assists):
        return []
    groups = assists.finish()
    logger.info("qualify_path: %d choice(s) for %r in %s",
                len(assists), reference.text(), source_file.path)
    return groups


# ═══════════════════════════════════════════════════════════════════════
#  Edit synthesis
# ═══════════════════════════════════════════════════════════════════════

def synthesize(classification: Classification, assists: Assists) -> bool:
    """Add one choice per candidate; False if the target cannot be mapped."""
    shape = classification.shape
    reference = classification.reference
    group_label = f"Qualify {shape_name(shape)}"

    if isinstance(shape, QualifierStart):
        target = reference.range(path_segments(reference.node)[0])
        for path in classification.candidates:
            assists.add_group(group_label, f"Qualify with `{path}`", target,
                              f"{path}::{shape.leading_segment_text}")
        return True

    if isinstance(shape, UnqualifiedName):
        target = reference.range()
        for path in classification.candidates:
            assists.add_group(group_label, f"Qualify as `{path}`", target, str(path))
        return True

    if isinstance(shape, TraitAssocItem):
        target = reference.range()
        for path in classification.candidates:
            assists.add_group(group_label, f"Qualify with cast as `{path}`", target,
                              f"<{shape.concrete_type_text} as {path}>::{shape.item_segment_text}")
        return True

    if isinstance(shape, TraitMethod):
        target = method_call_target(reference)
        if target is None:
            logger.debug("malformed-node: method call %r spans macro tokens", reference.text())
            return False
        separator = ", " if _has_arguments(reference) else ""
        turbofish = f"::{shape.type_arguments_text}" if shape.type_arguments_text else ""
        for path in classification.candidates:
            replacement = (f"{path}::{shape.method_name_text}{turbofish}("
                           f"{shape.self_kind(path).borrow_prefix}{shape.receiver_text}{separator}")
            assists.add_group(group_label, f"Qualify `{path}`", target, replacement)
        return True

    raise TypeError(f"unknown reference shape: {shape!r}")


def _has_arguments(reference: LocatedReference) -> bool:
    arguments = reference.node.child_by_field_name("arguments")
    if arguments is None:
        return False
    return any(c.type not in _NON_ARGUMENTS for c in arguments.named_children)


def method_call_target(reference: LocatedReference) -> Optional[SourceRange]:
    """From the receiver's start to just past `(`.

    Everything after `(` stays in place, so the rewrite `T::m(&recv, `
    keeps `a, b)` untouched along with any comments between them.
    """
    node = reference.node
    arguments = node.child_by_field_name("arguments")
    end = original_offset(reference.file, arguments.start_byte + 1, at_end=True)
    start = original_offset(reference.file, node.start_byte)
    if start is None or end is None or end < start:
        return None
    return SourceRange(start, end)


# ═══════════════════════════════════════════════════════════════════════
#  Engine over an indexed workspace
# ═══════════════════════════════════════════════════════════════════════

class FixEngine:
    """Computes qualify_path assists for files of an indexed workspace."""

    def __init__(self, index: WorkspaceIndex, oracle: Optional[ReferenceOracle] = None):
        self.index = index
        self.oracle = oracle if oracle is not None else SemanticOracle(index)

    def compute_qualify_fixes(self, file_path: str, offset: int) -> List[AssistGroup]:
        source_file = self.index.get_file(file_path)
        if source_file is None:
            logger.warning("File not indexed: %s", file_path)
            return []
        return compute_qualify_fixes(source_file, offset, self.oracle)
