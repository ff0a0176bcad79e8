"""
Candidate Classifier — decide whether and how a located reference can be
qualified.

Semantic questions (does it resolve, what would make it resolve) are
delegated to a ReferenceOracle.  The classifier owns the syntactic side:
it rejects references inside `use` declarations, checks that the oracle's
verdict fits the node, copies the verbatim texts the rewrite needs, and is
the only place that constructs a ReferenceShape.

Every decline is silent (None), logged at DEBUG with its reason:
  • not-applicable  — inside `use`, already resolves, already imported
  • no-candidates   — unresolved, but nothing would resolve it
  • malformed-node  — an expected child is missing (incomplete code)
"""

import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import FrozenSet, Optional, Tuple

from qualify.locator import LocatedReference
from qualify.model import (
    QualifiedPath, QualifierStart, ReferenceShape, SelfKind,
    TraitAssocItem, TraitMethod, UnqualifiedName,
)
from qualify.syntax import (
    in_use_declaration, method_call_function, method_type_arguments,
    path_qualifier, path_segments,
)

logger = logging.getLogger(__name__)


class CandidateKind(enum.Enum):
    QUALIFIER_START = "qualifier_start"
    UNQUALIFIED_NAME = "unqualified_name"
    TRAIT_ASSOC_ITEM = "trait_assoc_item"
    TRAIT_METHOD = "trait_method"


@dataclass(frozen=True)
class OracleAnswer:
    """What the oracle knows about an unresolved reference."""
    kind: CandidateKind
    paths: FrozenSet[QualifiedPath]
    # Declared receiver per candidate trait (TRAIT_METHOD only)
    self_kinds: Tuple[Tuple[QualifiedPath, SelfKind], ...] = ()


class ReferenceOracle(ABC):
    """Name-resolution capability the classifier depends on.

    Implementations return None when the reference resolves already (also
    when it resolves through an existing import), and otherwise the kind of
    reference plus every path that, substituted, makes it resolve to the
    reported definition.
    """

    @abstractmethod
    def find_candidates(self, reference: LocatedReference) -> Optional[OracleAnswer]:
        ...


@dataclass(frozen=True)
class Classification:
    reference: LocatedReference
    shape: ReferenceShape
    candidates: Tuple[QualifiedPath, ...]


def classify(reference: LocatedReference, oracle: ReferenceOracle) -> Optional[Classification]:
    if reference.is_path and in_use_declaration(reference.node):
        logger.debug("not-applicable: %r is inside a use declaration", reference.text())
        return None

    answer = oracle.find_candidates(reference)
    if answer is None:
        logger.debug("not-applicable: %r resolves or has no semantic context", reference.text())
        return None
    if not answer.paths:
        logger.debug("no-candidates: nothing qualifies %r", reference.text())
        return None

    shape = _build_shape(reference, answer)
    if shape is None:
        logger.debug("malformed-node: %r does not fit %s", reference.text(), answer.kind.value)
        return None
    return Classification(reference=reference, shape=shape, candidates=tuple(sorted(answer.paths)))


def _build_shape(reference: LocatedReference, answer: OracleAnswer) -> Optional[ReferenceShape]:
    node = reference.node
    kind = answer.kind

    if kind is CandidateKind.QUALIFIER_START:
        if not reference.is_path:
            return None
        segments = path_segments(node)
        if len(segments) < 2:
            return None
        return QualifierStart(reference.text(segments[0]))

    if kind is CandidateKind.UNQUALIFIED_NAME:
        if not reference.is_path or path_qualifier(node) is not None:
            return None
        return UnqualifiedName(reference.text())

    if kind is CandidateKind.TRAIT_ASSOC_ITEM:
        if not reference.is_path:
            return None
        qualifier = path_qualifier(node)
        item = node.child_by_field_name("name")
        if qualifier is None or item is None:
            return None
        return TraitAssocItem(reference.text(qualifier), reference.text(item))

    if kind is CandidateKind.TRAIT_METHOD:
        if reference.is_path:
            return None
        function = method_call_function(node)
        receiver = function.child_by_field_name("value") if function is not None else None
        method = function.child_by_field_name("field") if function is not None else None
        if receiver is None or method is None or node.child_by_field_name("arguments") is None:
            return None
        type_arguments = method_type_arguments(node)
        return TraitMethod(reference.text(receiver), reference.text(method), answer.self_kinds,
                           reference.text(type_arguments) if type_arguments is not None else "")

    raise TypeError(f"unknown candidate kind: {kind!r}")
