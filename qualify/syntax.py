"""
Rust syntax helpers on top of tree-sitter.

tree-sitter-rust flattens paths: `a::b::c` is a `scoped_identifier` whose
`path` field holds `a::b` and whose `name` field holds `c`.  The helpers
below give that tree a path/segment vocabulary:

  • path nodes     — identifier / type_identifier / scoped_identifier /
                     scoped_type_identifier in reference position
  • segments       — the per-segment nodes of a path, generic arguments
                     included (`Vec::<u8>` is one segment)
  • method calls   — call_expression whose function is a field_expression,
                     possibly wrapped in a turbofish generic_function
"""

import logging
from typing import Iterator, List, Optional, Set

import tree_sitter_rust as tsrust
from tree_sitter import Language, Node, Parser

logger = logging.getLogger(__name__)

RUST_LANGUAGE = Language(tsrust.language())
_parser = Parser(RUST_LANGUAGE)

PATH_TYPES = {"identifier", "type_identifier", "scoped_identifier", "scoped_type_identifier"}
SCOPED_PATH_TYPES = {"scoped_identifier", "scoped_type_identifier"}
SPECIAL_SEGMENTS = {"self", "super", "crate"}

# Items whose `name` field declares rather than references a name
_DECLARATION_TYPES = {
    "function_item", "function_signature_item", "struct_item", "enum_item",
    "union_item", "trait_item", "type_item", "mod_item", "const_item",
    "static_item", "macro_definition", "enum_variant", "field_declaration",
    "associated_type", "extern_crate_declaration",
}

_PATTERN_PARENTS = {
    "closure_parameters", "tuple_pattern", "slice_pattern", "ref_pattern",
    "mut_pattern", "captured_pattern", "field_pattern", "or_pattern",
}

_NON_REFERENCE_PARENTS = {
    "type_parameters", "constrained_type_parameter", "optional_type_parameter",
    "lifetime", "label", "loop_label", "use_as_clause_alias",
}

_OPAQUE_ANCESTORS = {"attribute_item", "inner_attribute_item", "macro_definition", "token_tree"}


def parse_bytes(source: bytes):
    return _parser.parse(source)


def node_text(node: Node, source: bytes) -> str:
    return source[node.start_byte:node.end_byte].decode("utf-8", errors="replace")


def same_node(a: Optional[Node], b: Optional[Node]) -> bool:
    if a is None or b is None:
        return False
    return a.start_byte == b.start_byte and a.end_byte == b.end_byte and a.type == b.type


def walk_type(node: Node, types: Set[str]) -> Iterator[Node]:
    """Yield all descendant nodes whose type is in `types`."""
    cursor = node.walk()
    visited = False
    while True:
        if not visited and cursor.node.type in types:
            yield cursor.node
        if not visited and cursor.goto_first_child():
            visited = False
            continue
        if cursor.goto_next_sibling():
            visited = False
            continue
        if cursor.goto_parent():
            visited = True
            continue
        break


def find_enclosing(node: Node, types: Set[str]) -> Optional[Node]:
    """Walk up the tree to find the nearest enclosing node of given types."""
    current = node.parent
    while current:
        if current.type in types:
            return current
        current = current.parent
    return None


def touching_leaves(root: Node, offset: int) -> List[Node]:
    """Leaf tokens whose span touches `offset` (at most one per side)."""
    leaves = []

    def descend(node: Node):
        if node.child_count == 0:
            leaves.append(node)
            return
        for child in node.children:
            if child.start_byte <= offset <= child.end_byte:
                descend(child)

    if root.start_byte <= offset <= root.end_byte:
        descend(root)
    return leaves


def ancestors(node: Node) -> Iterator[Node]:
    current = node
    while current is not None:
        yield current
        current = current.parent


# ────────────────────────────────────────────────────────────────
#  Paths
# ────────────────────────────────────────────────────────────────

def _is_field(parent: Node, field: str, node: Node) -> bool:
    return same_node(parent.child_by_field_name(field), node)


def is_path_node(node: Node) -> bool:
    """True for the path nodes a reference can be located on."""
    if node.type not in PATH_TYPES:
        return False
    parent = node.parent
    if parent is None:
        return False
    if parent.type in SCOPED_PATH_TYPES and _is_field(parent, "name", node):
        return False
    if parent.type in _DECLARATION_TYPES and _is_field(parent, "name", node):
        return False
    if parent.type == "use_as_clause" and _is_field(parent, "alias", node):
        return False
    if parent.type in _NON_REFERENCE_PARENTS or parent.type in _PATTERN_PARENTS:
        return False
    if _is_field(parent, "pattern", node):
        return False
    if find_enclosing(node, _OPAQUE_ANCESTORS) is not None:
        return False
    return True


def method_call_function(node: Node) -> Optional[Node]:
    """The `recv.method` field_expression of a method call, turbofish unwrapped."""
    if node.type != "call_expression":
        return None
    function = node.child_by_field_name("function")
    if function is not None and function.type == "generic_function":
        function = function.child_by_field_name("function")
    if function is None or function.type != "field_expression":
        return None
    return function


def method_type_arguments(node: Node) -> Optional[Node]:
    """`<T>` of `recv.method::<T>(..)`, None without a turbofish."""
    function = node.child_by_field_name("function")
    if function is None or function.type != "generic_function":
        return None
    return function.child_by_field_name("type_arguments")


def is_method_call(node: Node) -> bool:
    return method_call_function(node) is not None


def path_qualifier(node: Node) -> Optional[Node]:
    if node.type in SCOPED_PATH_TYPES:
        return node.child_by_field_name("path")
    return None


def path_segments(node: Node) -> List[Node]:
    """Per-segment nodes of a path, leading segment first."""
    if node.type in SCOPED_PATH_TYPES:
        qualifier = node.child_by_field_name("path")
        name = node.child_by_field_name("name")
        head = path_segments(qualifier) if qualifier is not None else []
        return head + ([name] if name is not None else [])
    if node.type == "generic_type":
        inner = node.child_by_field_name("type")
        if inner is not None and inner.type in SCOPED_PATH_TYPES:
            return path_segments(inner)
    return [node]


def segment_name(segment: Node, source: bytes) -> str:
    """Identifier of a segment, generic arguments stripped."""
    if segment.type == "generic_type":
        inner = segment.child_by_field_name("type")
        if inner is not None:
            segments = path_segments(inner)
            return segment_name(segments[-1], source) if segments else node_text(inner, source)
    return node_text(segment, source)


def path_names(node: Node, source: bytes) -> List[str]:
    return [segment_name(s, source) for s in path_segments(node)]


def is_type_position(node: Node) -> bool:
    """True when the path's leading segment must name a type or module."""
    parent = node.parent
    return parent is not None and parent.type in SCOPED_PATH_TYPES | {"generic_type"} \
        and (_is_field(parent, "path", node) or _is_field(parent, "type", node))


def in_use_declaration(node: Node) -> bool:
    return find_enclosing(node, {"use_declaration"}) is not None


def self_parameter_kind(parameters: Optional[Node], source: bytes) -> Optional[str]:
    """'self', '&self' or '&mut self' for a function's receiver, None if it has none."""
    if parameters is None:
        return None
    for child in parameters.named_children:
        if child.type == "self_parameter":
            text = node_text(child, source).replace(" ", "")
            if text.startswith("&"):
                return "&mut self" if "mut" in text else "&self"
            return "self"
        if child.type == "parameter":
            pattern = child.child_by_field_name("pattern")
            if pattern is not None and pattern.type == "self":
                ty = child.child_by_field_name("type")
                ty_text = node_text(ty, source).replace(" ", "") if ty is not None else ""
                if ty_text.startswith("&mut"):
                    return "&mut self"
                if ty_text.startswith("&"):
                    return "&self"
                return "self"
        # Only the first parameter can be a receiver
        return None
    return None
