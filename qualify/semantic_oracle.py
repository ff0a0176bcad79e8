"""
Semantic Oracle — answers "does this resolve, and what would make it
resolve?" for a located reference, using the NameResolver.

Decisions per reference:
  • path, leading segment unresolved         → QUALIFIER_START
  • single segment unresolved                → UNQUALIFIED_NAME
  • `Type::item`, item only via trait impl   → TRAIT_ASSOC_ITEM
  • `recv.method()`, method only via trait   → TRAIT_METHOD
Anything that resolves (locals, generics, prelude names, imported items,
in-scope traits) yields None.  Names are looked up in the blocks around the
reference first, then in its module, so a `use` or item inside a function
body counts as in scope.
"""

import logging
from typing import List, Optional, Sequence, Set

from tree_sitter import Node

from qualify.classifier import CandidateKind, OracleAnswer, ReferenceOracle
from qualify.locator import LocatedReference
from qualify.model import QualifiedPath, SelfKind
from qualify.name_resolver import AssocResolution, NameResolver
from qualify.syntax import (
    PATH_TYPES, SPECIAL_SEGMENTS, ancestors, find_enclosing, is_type_position,
    method_call_function, path_names, walk_type,
)
from qualify.workspace_index import (
    ADT_KINDS, ANY, MACROS, TYPES, VALUES, BlockScope, ItemDef, ModuleScope,
    WorkspaceIndex, block_scope, type_names,
)

logger = logging.getLogger(__name__)

# Names every module sees without an import
PRELUDE_NAMES = {
    # primitive types
    "bool", "char", "str", "u8", "u16", "u32", "u64", "u128", "usize",
    "i8", "i16", "i32", "i64", "i128", "isize", "f32", "f64",
    # std prelude
    "Option", "Some", "None", "Result", "Ok", "Err", "Vec", "String", "Box",
    "ToString", "ToOwned", "Clone", "Copy", "Send", "Sync", "Sized", "Unpin",
    "Drop", "Fn", "FnMut", "FnOnce", "Default", "Iterator", "IntoIterator",
    "Extend", "DoubleEndedIterator", "ExactSizeIterator", "PartialEq", "Eq",
    "PartialOrd", "Ord", "AsRef", "AsMut", "Into", "From", "TryFrom", "TryInto",
    "FromIterator", "Debug", "Hash", "drop",
    # std crates
    "std", "core", "alloc",
    # common std macros
    "println", "print", "eprintln", "eprint", "format", "vec", "panic",
    "assert", "assert_eq", "assert_ne", "debug_assert", "debug_assert_eq",
    "write", "writeln", "unreachable", "unimplemented", "todo", "matches",
    "include_str", "concat", "stringify", "env", "cfg", "line", "file",
}

_SCOPE_NODES = {"function_item", "closure_expression"}
_BINDING_CONTAINERS = {
    "let_declaration", "parameter", "for_expression", "let_condition",
    "match_arm", "closure_parameters", "if_let_expression", "while_let_expression",
}
_GENERIC_OWNERS = {
    "function_item", "function_signature_item", "impl_item", "struct_item",
    "enum_item", "union_item", "trait_item", "type_item",
}

_SELF_KINDS = {"self": SelfKind.VALUE, "&self": SelfKind.REF, "&mut self": SelfKind.REF_MUT}


class SemanticOracle(ReferenceOracle):
    """ReferenceOracle backed by an indexed workspace."""

    def __init__(self, index: WorkspaceIndex, resolver: Optional[NameResolver] = None):
        self.index = index
        self.resolver = resolver if resolver is not None else NameResolver(index)

    def find_candidates(self, reference: LocatedReference) -> Optional[OracleAnswer]:
        original = reference.file.original
        module = self.index.module_at(original.path, reference.original_offset)
        if module is None:
            logger.debug("No module for %s at %d", original.path, reference.original_offset)
            return None
        blocks = self.enclosing_blocks(reference, module)
        if reference.is_path:
            return self._path_candidates(reference, module, blocks)
        return self._method_candidates(reference, module, blocks)

    @staticmethod
    def enclosing_blocks(reference: LocatedReference, module: ModuleScope) -> List[BlockScope]:
        """Scopes of the blocks around the reference, innermost first.

        Inside a macro expansion the walk continues from the macro call.
        A `mod` in between ends it: block names do not reach into modules.
        """
        scopes = []
        file, node = reference.file, reference.node
        while node is not None:
            for ancestor in ancestors(node.parent):
                if ancestor.type == "mod_item":
                    return scopes
                if ancestor.type == "block":
                    scopes.append(block_scope(ancestor, file.source, module, file.original.path))
            if file.expansion is None:
                break
            call = file.expansion.call_range
            file = file.parent
            node = file.root.descendant_for_byte_range(call.start, call.end)
        return scopes

    # ────────────────────────────────────────────────────────────────
    #  Paths
    # ────────────────────────────────────────────────────────────────

    def _path_candidates(self, reference: LocatedReference, module: ModuleScope,
                         blocks: List[BlockScope]) -> Optional[OracleAnswer]:
        node = reference.node
        source = reference.file.source
        names = path_names(node, source)
        if not names:
            return None
        namespaces = self._namespaces(node)
        leading = names[0]

        if leading in SPECIAL_SEGMENTS or leading == "Self":
            if self.resolver.resolve_path(module, names, namespaces, blocks):
                return None
            return self._assoc_candidates(names, module, blocks) if len(names) > 1 else None

        if len(names) == 1:
            if self._is_locally_bound(node, leading, source):
                return None
            if self.resolver.lookup_in_scope(module, leading, namespaces, blocks) or leading in PRELUDE_NAMES:
                return None
            if namespaces is MACROS and self._macro_in_textual_scope(leading, module):
                return None
            paths = set()
            for item in self.resolver.items_named(leading, module):
                if item.kind == "crate" or item.kind not in namespaces:
                    continue
                path = self.resolver.find_use_path(item, module)
                if path is not None and len(path.segments) > 1:
                    paths.add(path)
            return OracleAnswer(CandidateKind.UNQUALIFIED_NAME, frozenset(paths))

        if self.resolver.resolve_path(module, names, namespaces, blocks):
            return None
        if self.resolver.lookup_in_scope(module, leading, TYPES, blocks) or leading in PRELUDE_NAMES \
                or self._is_generic_param(node, leading, source):
            return self._assoc_candidates(names, module, blocks)
        return self._qualifier_candidates(names, module, namespaces)

    def _qualifier_candidates(self, names: List[str], module: ModuleScope, namespaces) -> OracleAnswer:
        """Prefixes naming the leading segment's module.

        Prefixes under which the whole path resolves are preferred; when none
        does (the tail is itself unknown) every prefix is offered.
        """
        qualifiers = set()
        for item in self.resolver.items_named(names[0], module):
            if item.kind == "crate" or item.kind not in TYPES:
                continue
            use_path = self.resolver.find_use_path(item, module)
            if use_path is not None and len(use_path.segments) > 1:
                qualifiers.add(use_path.parent())
        sound = {q for q in qualifiers
                 if self.resolver.resolve_path(module, list(q.segments) + names, namespaces)}
        return OracleAnswer(CandidateKind.QUALIFIER_START, frozenset(sound or qualifiers))

    def _assoc_candidates(self, names: List[str], module: ModuleScope,
                          blocks: List[BlockScope]) -> Optional[OracleAnswer]:
        """Traits whose impl on the qualifier type provides the last segment."""
        qualifiers = self.resolver.resolve_path(module, names[:-1], TYPES, blocks)
        adts = [q for q in qualifiers if isinstance(q, ItemDef) and q.kind in ADT_KINDS]
        if not adts:
            return None
        paths = set()
        for adt in adts:
            for resolution in self.resolver.trait_impls_providing(adt, names[-1]):
                path = self._trait_path(resolution, module)
                if path is not None:
                    paths.add(path)
        return OracleAnswer(CandidateKind.TRAIT_ASSOC_ITEM, frozenset(paths))

    def _trait_path(self, resolution: AssocResolution, module: ModuleScope) -> Optional[QualifiedPath]:
        trait = resolution.trait
        if trait is None:
            return None
        return self.resolver.find_use_path(trait, module)

    @staticmethod
    def _macro_in_textual_scope(name: str, module: ModuleScope) -> bool:
        """`macro_rules!` of the same crate defined in an enclosing module."""
        return any(item.kind == "macro" and module.is_within(item.module)
                   for item in module.crate.items_by_name.get(name, []))

    @staticmethod
    def _namespaces(node: Node):
        parent = node.parent
        if parent is not None and parent.type == "macro_invocation":
            return MACROS
        if node.type in ("type_identifier", "scoped_type_identifier") or is_type_position(node):
            return TYPES
        if parent is not None and parent.type in ("struct_expression", "struct_pattern"):
            return TYPES | VALUES
        if parent is not None and parent.type == "call_expression":
            return VALUES | TYPES
        return ANY

    # ────────────────────────────────────────────────────────────────
    #  Locals and generics
    # ────────────────────────────────────────────────────────────────

    @staticmethod
    def _bound_names(node: Node, source: bytes) -> Set[str]:
        names = set()
        for ident in walk_type(node, {"identifier"}):
            names.add(source[ident.start_byte:ident.end_byte].decode("utf-8", errors="replace"))
        return names

    def _is_locally_bound(self, node: Node, name: str, source: bytes) -> bool:
        if node.type != "identifier":
            return False
        scope = find_enclosing(node, _SCOPE_NODES)
        while scope is not None:
            for container in walk_type(scope, _BINDING_CONTAINERS):
                if container.start_byte >= node.start_byte:
                    continue
                pattern = container.child_by_field_name("pattern")
                if container.type == "closure_parameters":
                    pattern = container
                if pattern is not None and name in self._bound_names(pattern, source):
                    return True
            scope = find_enclosing(scope, _SCOPE_NODES)
        return False

    @staticmethod
    def _is_generic_param(node: Node, name: str, source: bytes) -> bool:
        owner = find_enclosing(node, _GENERIC_OWNERS)
        while owner is not None:
            params = owner.child_by_field_name("type_parameters")
            if params is not None:
                for ident in walk_type(params, {"type_identifier"}):
                    if source[ident.start_byte:ident.end_byte].decode("utf-8", errors="replace") == name:
                        return True
            owner = find_enclosing(owner, _GENERIC_OWNERS)
        return False

    # ────────────────────────────────────────────────────────────────
    #  Method calls
    # ────────────────────────────────────────────────────────────────

    def _method_candidates(self, reference: LocatedReference, module: ModuleScope,
                           blocks: List[BlockScope]) -> Optional[OracleAnswer]:
        function = method_call_function(reference.node)
        receiver = function.child_by_field_name("value") if function is not None else None
        method = function.child_by_field_name("field") if function is not None else None
        if receiver is None or method is None:
            return None
        source = reference.file.source
        adt = self.infer_type(receiver, source, module, blocks)
        if adt is None:
            logger.debug("Receiver type of %r unknown", reference.text(receiver))
            return None

        name = reference.text(method)
        if self.resolver.assoc_items_in_scope(adt, name, module, blocks):
            return None

        paths = set()
        self_kinds = []
        for resolution in self.resolver.trait_impls_providing(adt, name):
            if resolution.item.kind != "fn" or resolution.item.self_kind is None:
                continue
            path = self._trait_path(resolution, module)
            if path is None or path in paths:
                continue
            paths.add(path)
            self_kinds.append((path, _SELF_KINDS[resolution.item.self_kind]))
        return OracleAnswer(CandidateKind.TRAIT_METHOD, frozenset(paths), tuple(sorted(self_kinds)))

    def infer_type(self, node: Node, source: bytes, module: ModuleScope,
                   blocks: Sequence[BlockScope] = ()) -> Optional[ItemDef]:
        """ADT of an expression, for the handful of forms that name it directly."""
        t = node.type
        if t in ("parenthesized_expression", "reference_expression", "unary_expression"):
            inner = node.child_by_field_name("value") or (node.named_children[-1] if node.named_children else None)
            return self.infer_type(inner, source, module, blocks) if inner is not None else None
        if t == "struct_expression":
            return self._adt_of_type(node.child_by_field_name("name"), source, module, blocks)
        if t == "self":
            impl = find_enclosing(node, {"impl_item"})
            return self._adt_of_type(impl.child_by_field_name("type"), source, module) if impl else None
        if t == "identifier":
            bound = self._binding_type(node, source, module, blocks)
            if bound is not None:
                return bound
        if t in ("identifier", "scoped_identifier"):
            return self._adt_of_value(path_names(node, source), module, blocks)
        if t == "call_expression":
            return self._call_result_type(node, source, module, blocks)
        return None

    def _adt_of_type(self, type_node: Optional[Node], source: bytes, module: ModuleScope,
                     blocks: Sequence[BlockScope] = ()) -> Optional[ItemDef]:
        names = type_names(type_node, source)
        if names is None:
            return None
        for r in self.resolver.resolve_path(module, names, TYPES, blocks):
            if isinstance(r, ItemDef) and r.kind in ADT_KINDS:
                return r
        return None

    def _adt_of_value(self, names: List[str], module: ModuleScope,
                      blocks: Sequence[BlockScope]) -> Optional[ItemDef]:
        for r in self.resolver.resolve_path(module, names, VALUES, blocks):
            if isinstance(r, ItemDef):
                if r.kind == "variant":
                    return r.parent_enum
                if r.kind == "struct":
                    return r
        return None

    def _call_result_type(self, node: Node, source: bytes, module: ModuleScope,
                          blocks: Sequence[BlockScope]) -> Optional[ItemDef]:
        function = node.child_by_field_name("function")
        if function is None or function.type not in PATH_TYPES:
            return None
        names = path_names(function, source)
        for r in self.resolver.resolve_path(module, names, VALUES, blocks):
            if isinstance(r, ItemDef):
                if r.kind in ("struct", "variant"):
                    return r if r.kind == "struct" else r.parent_enum
                if r.kind == "fn" and r.return_type:
                    return self._resolve_return(r.return_type, None, r.module)
            elif isinstance(r, AssocResolution) and r.item.return_type:
                return self._resolve_return(r.item.return_type, r.owner, module)
        return None

    def _resolve_return(self, names: List[str], owner: Optional[ItemDef], module: ModuleScope) -> Optional[ItemDef]:
        if names == ["Self"]:
            return owner if owner is not None and owner.kind in ADT_KINDS else None
        for r in self.resolver.resolve_path(module, names, TYPES):
            if isinstance(r, ItemDef) and r.kind in ADT_KINDS:
                return r
        return None

    def _binding_type(self, node: Node, source: bytes, module: ModuleScope,
                      blocks: Sequence[BlockScope]) -> Optional[ItemDef]:
        """Type of a local `let` binding or parameter named like `node`."""
        name = source[node.start_byte:node.end_byte].decode("utf-8", errors="replace")
        scope = find_enclosing(node, _SCOPE_NODES)
        if scope is None:
            return None
        latest = None
        for container in walk_type(scope, {"let_declaration", "parameter"}):
            if container.start_byte >= node.start_byte:
                continue
            pattern = container.child_by_field_name("pattern")
            if pattern is not None and pattern.type == "mut_pattern" and pattern.named_children:
                pattern = pattern.named_children[-1]
            if pattern is None or pattern.type != "identifier":
                continue
            if source[pattern.start_byte:pattern.end_byte].decode("utf-8", errors="replace") == name:
                latest = container
        if latest is None:
            return None
        declared = latest.child_by_field_name("type")
        if declared is not None:
            return self._adt_of_type(declared, source, module, blocks)
        value = latest.child_by_field_name("value")
        if value is not None:
            return self.infer_type(value, source, module, blocks)
        return None
