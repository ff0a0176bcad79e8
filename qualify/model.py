"""
Value objects for the qualify_path assist.

Everything here is immutable and recomputed per request:
  • QualifiedPath   — a `a::b::c` path offered as a candidate
  • ReferenceShape  — the four syntactic shapes a reference can take
  • Edit            — one single-range text substitution
  • AssistGroup     — alternative Edits for one reference, one shared label
"""

import enum
from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

from qualify.ranges import SourceRange


@dataclass(frozen=True)
class QualifiedPath:
    """An ordered, non-empty sequence of identifier segments."""
    segments: Tuple[str, ...]

    def __post_init__(self):
        if not self.segments:
            raise ValueError("QualifiedPath needs at least one segment")

    @classmethod
    def parse(cls, text: str) -> "QualifiedPath":
        return cls(tuple(s.strip() for s in text.split("::")))

    def parent(self) -> Optional["QualifiedPath"]:
        if len(self.segments) < 2:
            return None
        return QualifiedPath(self.segments[:-1])

    def __str__(self):
        return "::".join(self.segments)

    def __lt__(self, other: "QualifiedPath") -> bool:
        return str(self) < str(other)


class SelfKind(enum.Enum):
    """Declared receiver of a trait method."""
    VALUE = "self"
    REF = "&self"
    REF_MUT = "&mut self"

    @property
    def borrow_prefix(self) -> str:
        if self is SelfKind.REF:
            return "&"
        if self is SelfKind.REF_MUT:
            return "&mut "
        return ""


# ═══════════════════════════════════════════════════════════════════════
#  Reference shapes
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class QualifierStart:
    """`mod2::mod3::Item` where `mod2` does not resolve."""
    leading_segment_text: str


@dataclass(frozen=True)
class UnqualifiedName:
    """A complete single-segment path that does not resolve."""
    name_text: str


@dataclass(frozen=True)
class TraitAssocItem:
    """`Type::item` where `item` only comes from a trait impl."""
    concrete_type_text: str
    item_segment_text: str


@dataclass(frozen=True)
class TraitMethod:
    """`receiver.method(..)` where `method` only comes from a trait impl."""
    receiver_text: str
    method_name_text: str
    self_kinds: Tuple[Tuple[QualifiedPath, SelfKind], ...] = ()
    # Turbofish `<T>` of `receiver.method::<T>(..)`, empty without one
    type_arguments_text: str = ""

    def self_kind(self, trait_path: QualifiedPath) -> SelfKind:
        for path, kind in self.self_kinds:
            if path == trait_path:
                return kind
        return SelfKind.REF


ReferenceShape = Union[QualifierStart, UnqualifiedName, TraitAssocItem, TraitMethod]


def shape_name(shape: ReferenceShape) -> str:
    """The identifier being qualified, used for the group label."""
    if isinstance(shape, QualifierStart):
        return shape.leading_segment_text
    if isinstance(shape, UnqualifiedName):
        return shape.name_text
    if isinstance(shape, TraitAssocItem):
        return shape.item_segment_text
    if isinstance(shape, TraitMethod):
        return shape.method_name_text
    raise TypeError(f"unknown reference shape: {shape!r}")


# ═══════════════════════════════════════════════════════════════════════
#  Assists
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AssistId:
    name: str
    kind: str = "quickfix"


@dataclass(frozen=True)
class Edit:
    """Replace `target` in the original text with `replacement`."""
    target: SourceRange
    replacement: str
    label: str


@dataclass(frozen=True)
class AssistGroup:
    """Mutually exclusive Edits for one reference."""
    id: AssistId
    label: str
    choices: Tuple[Edit, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not self.choices:
            raise ValueError(f"assist group '{self.label}' has no choices")
        targets = {c.target for c in self.choices}
        if len(targets) != 1:
            raise ValueError(f"assist group '{self.label}' mixes target ranges: {sorted(targets)}")

    @property
    def target(self) -> SourceRange:
        return self.choices[0].target

    def to_markdown(self) -> str:
        md = f"### {self.label}\n"
        md += f"`{self.id.name}` ({self.id.kind}) — target bytes {self.target.start}..{self.target.end}\n\n"
        for i, choice in enumerate(self.choices):
            md += f"{i}. {choice.label} → `{choice.replacement}`\n"
        return md
