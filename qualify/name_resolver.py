"""
Name Resolver — scope lookups, path resolution and use-path search over a
WorkspaceIndex.

Implements the subset of Rust's name resolution the assist needs:
  • names in a module: own items, `use` imports (aliases, globs),
    extern crate bindings, `crate` / `self` / `super`
  • names declared inside function-body blocks, which shadow the module
  • multi-segment paths through modules, enum variants and associated
    items of inherent and in-scope trait impls
  • visibility: `pub`, `pub(crate)`, `pub(super)` and private
  • shortest visible path from a module to an item (`find_use_path`)
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set, Tuple

from qualify.model import QualifiedPath
from qualify.workspace_index import (
    ADT_KINDS, ANY, TYPES, AssocItem, BlockScope, ImplBlock, ItemDef,
    ModuleScope, UseImport, WorkspaceIndex,
)

logger = logging.getLogger(__name__)

# Upper bound on path length explored by find_use_path
MAX_PATH_DEPTH = 8

_CONTAINER_KINDS = {"mod", "crate", "enum"}


@dataclass(frozen=True)
class AssocResolution:
    """An associated item reached through a type or a trait."""
    owner: ItemDef
    item: AssocItem
    trait: Optional[ItemDef] = None


class NameResolver:
    """Resolves names for one WorkspaceIndex; caches per instance."""

    def __init__(self, index: WorkspaceIndex):
        self.index = index
        self._impls_by_type: Optional[Dict[int, List[ImplBlock]]] = None
        self._impl_traits: Dict[int, Optional[ItemDef]] = {}
        self._traits_in_scope: Dict[int, List[ItemDef]] = {}
        self._resolving: Set[Tuple[int, int]] = set()

    # ────────────────────────────────────────────────────────────────
    #  Visibility
    # ────────────────────────────────────────────────────────────────

    @staticmethod
    def is_visible(item: ItemDef, from_module: ModuleScope) -> bool:
        vis = item.visibility
        if vis == "pub":
            return True
        if vis == "crate":
            return from_module.crate is item.crate
        owner = item.module
        if vis == "super" and owner.parent is not None:
            owner = owner.parent
        return from_module.is_within(owner)

    @staticmethod
    def _import_visible(imp: UseImport, declared_in: ModuleScope, from_module: ModuleScope) -> bool:
        if imp.visibility == "pub":
            return True
        if imp.visibility == "crate":
            return from_module.crate is declared_in.crate
        owner = declared_in
        if imp.visibility == "super" and owner.parent is not None:
            owner = owner.parent
        return from_module.is_within(owner)

    # ────────────────────────────────────────────────────────────────
    #  Scope lookups
    # ────────────────────────────────────────────────────────────────

    def lookup_in_scope(self, module: ModuleScope, name: str, namespaces=ANY,
                        blocks: Sequence[BlockScope] = ()) -> List[ItemDef]:
        """Items the single name `name` denotes inside `module`.

        `blocks` are the function-body blocks around the lookup, innermost
        first; the first one declaring `name` shadows everything outside it.
        """
        if name == "crate":
            return [module.crate.root_item]
        if name == "self":
            return [module.item] if module.item is not None else []
        if name == "super":
            return [module.parent.item] if module.parent is not None and module.parent.item else []
        for i, block in enumerate(blocks):
            found = self._lookup_in_block(block, blocks[i + 1:], module, name, namespaces)
            if found:
                return found

        found = [i for i in module.items.get(name, []) if i.kind in namespaces]
        for imp in module.imports:
            if imp.binding == name:
                found.extend(i for i in self._resolve_import(module, imp) if i.kind in namespaces)
        for imp in module.imports:
            if imp.is_glob:
                for container in self._resolve_import(module, imp):
                    found.extend(self._glob_lookup(container, name, module, namespaces))
        if not found and "crate" in namespaces:
            dep_name = module.crate.deps.get(name)
            dep = self.index.crates.get(dep_name) if dep_name else None
            if dep is not None:
                found.append(dep.root_item)
        return _unique(found)

    def _lookup_in_block(self, block: BlockScope, outer: Sequence[BlockScope], module: ModuleScope,
                         name: str, namespaces) -> List[ItemDef]:
        found = [i for i in block.items.get(name, []) if i.kind in namespaces]
        for imp in block.imports:
            if imp.binding == name:
                found.extend(r for r in self._resolve_block_import(block, imp, module, outer)
                             if r.kind in namespaces)
        if found:
            return _unique(found)
        for imp in block.imports:
            if imp.is_glob:
                for container in self._resolve_block_import(block, imp, module, outer):
                    found.extend(self._glob_lookup(container, name, module, namespaces))
        return _unique(found)

    def _resolve_block_import(self, block: BlockScope, imp: UseImport, module: ModuleScope,
                              outer: Sequence[BlockScope]) -> List[ItemDef]:
        key = (id(block), id(imp))
        if key in self._resolving or not imp.path:
            return []
        self._resolving.add(key)
        try:
            namespaces = TYPES if imp.is_glob else ANY
            return [r for r in self.resolve_path(module, imp.path, namespaces, outer) if isinstance(r, ItemDef)]
        finally:
            self._resolving.discard(key)

    def _glob_lookup(self, container: ItemDef, name: str, from_module: ModuleScope,
                     namespaces) -> List[ItemDef]:
        if container.kind == "enum":
            variant = container.variants.get(name)
            return [variant] if variant is not None and variant.kind in namespaces else []
        return [i for i in self.lookup_in_container(container, name, from_module, namespaces)
                if isinstance(i, ItemDef)]

    def _resolve_import(self, module: ModuleScope, imp: UseImport) -> List[ItemDef]:
        key = (id(module), id(imp))
        if key in self._resolving or not imp.path:
            return []
        self._resolving.add(key)
        try:
            namespaces = TYPES if imp.is_glob else ANY
            return [r for r in self.resolve_path(module, imp.path, namespaces) if isinstance(r, ItemDef)]
        finally:
            self._resolving.discard(key)

    def scope_bindings(self, module: ModuleScope) -> List[Tuple[str, ItemDef]]:
        """Every (name, item) pair a path in `module` can start with."""
        bindings = [(item.name, item) for item in module.all_items()]
        for imp in module.imports:
            if imp.is_glob:
                for container in self._resolve_import(module, imp):
                    bindings.extend(self.container_bindings(container, module))
            elif imp.binding not in (None, "_"):
                bindings.extend((imp.binding, i) for i in self._resolve_import(module, imp))
        for binding, crate_name in module.crate.deps.items():
            dep = self.index.crates.get(crate_name)
            if dep is not None:
                bindings.append((binding, dep.root_item))
        return bindings

    def container_bindings(self, container: ItemDef, from_module: ModuleScope) -> List[Tuple[str, ItemDef]]:
        """(name, item) pairs reachable as `container::name` from `from_module`."""
        if container.kind == "enum":
            return list(container.variants.items())
        if container.body is None:
            return []
        body = container.body
        bindings = [(i.name, i) for i in body.all_items() if self.is_visible(i, from_module)]
        for imp in body.imports:
            if not self._import_visible(imp, body, from_module):
                continue
            if imp.is_glob:
                for inner in self._resolve_import(body, imp):
                    if inner is not container:
                        bindings.extend((n, i) for n, i in self._shallow_bindings(inner, from_module))
            elif imp.binding not in (None, "_"):
                bindings.extend((imp.binding, i) for i in self._resolve_import(body, imp))
        return bindings

    def _shallow_bindings(self, container: ItemDef, from_module: ModuleScope) -> List[Tuple[str, ItemDef]]:
        if container.kind == "enum":
            return list(container.variants.items())
        if container.body is None:
            return []
        return [(i.name, i) for i in container.body.all_items() if self.is_visible(i, from_module)]

    # ────────────────────────────────────────────────────────────────
    #  Paths
    # ────────────────────────────────────────────────────────────────

    def resolve_path(self, module: ModuleScope, names: List[str], namespaces=ANY,
                     blocks: Sequence[BlockScope] = ()) -> List:
        """Definitions `a::b::c` denotes from `module`: ItemDefs or AssocResolutions."""
        if not names:
            return []
        current = self.lookup_in_scope(module, names[0], TYPES if len(names) > 1 else namespaces, blocks)
        for i, name in enumerate(names[1:], 1):
            last = i == len(names) - 1
            ns = namespaces if last else TYPES
            following = []
            for container in current:
                if isinstance(container, ItemDef):
                    following.extend(self.lookup_in_container(container, name, module, ns, blocks))
            if not following:
                return []
            current = following
        return _unique(current)

    def lookup_in_container(self, container: ItemDef, name: str, from_module: ModuleScope,
                            namespaces=ANY, blocks: Sequence[BlockScope] = ()) -> List:
        if container.kind in ("mod", "crate"):
            return [i for n, i in self.container_bindings(container, from_module)
                    if n == name and i.kind in namespaces]
        if container.kind == "trait":
            item = container.assoc_items.get(name)
            return [AssocResolution(container, item, container)] if item is not None else []

        found: List = []
        if container.kind == "enum" and name in container.variants:
            variant = container.variants[name]
            if variant.kind in namespaces:
                found.append(variant)
        if container.kind in ADT_KINDS:
            found.extend(self.assoc_items_in_scope(container, name, from_module, blocks))
        return found

    # ────────────────────────────────────────────────────────────────
    #  Impls and traits
    # ────────────────────────────────────────────────────────────────

    def _type_of_impl(self, impl: ImplBlock) -> Optional[ItemDef]:
        for r in self.resolve_path(impl.module, impl.self_type, TYPES):
            if isinstance(r, ItemDef) and r.kind in ADT_KINDS:
                return r
        return None

    def impls_for(self, adt: ItemDef) -> List[ImplBlock]:
        if self._impls_by_type is None:
            self._impls_by_type = {}
            for impl in self.index.all_impls():
                target = self._type_of_impl(impl)
                if target is not None:
                    self._impls_by_type.setdefault(id(target), []).append(impl)
        return self._impls_by_type.get(id(adt), [])

    def impl_trait(self, impl: ImplBlock) -> Optional[ItemDef]:
        if impl.trait_path is None:
            return None
        key = id(impl)
        if key not in self._impl_traits:
            self._impl_traits[key] = next(
                (r for r in self.resolve_path(impl.module, impl.trait_path, TYPES)
                 if isinstance(r, ItemDef) and r.kind == "trait"),
                None,
            )
        return self._impl_traits[key]

    def traits_in_scope(self, module: ModuleScope, blocks: Sequence[BlockScope] = ()) -> List[ItemDef]:
        key = id(module)
        if key not in self._traits_in_scope:
            traits = [item for _, item in self.scope_bindings(module) if item.kind == "trait"]
            # `use Trait as _;` brings the methods without binding a name
            for imp in module.imports:
                if imp.alias == "_":
                    traits.extend(i for i in self._resolve_import(module, imp) if i.kind == "trait")
            self._traits_in_scope[key] = _unique(traits)
        if not blocks:
            return self._traits_in_scope[key]

        traits = list(self._traits_in_scope[key])
        for i, block in enumerate(blocks):
            outer = blocks[i + 1:]
            traits.extend(item for items in block.items.values() for item in items if item.kind == "trait")
            for imp in block.imports:
                resolved = self._resolve_block_import(block, imp, module, outer)
                if imp.is_glob:
                    for container in resolved:
                        traits.extend(item for _, item in self.container_bindings(container, module)
                                      if item.kind == "trait")
                else:
                    traits.extend(r for r in resolved if r.kind == "trait")
        return _unique(traits)

    def assoc_items_in_scope(self, adt: ItemDef, name: str, from_module: ModuleScope,
                             blocks: Sequence[BlockScope] = ()) -> List[AssocResolution]:
        """`name` on `adt`: inherent items first, else items of in-scope traits."""
        inherent = [AssocResolution(adt, impl.items[name])
                    for impl in self.impls_for(adt)
                    if impl.trait_path is None and name in impl.items]
        if inherent:
            return inherent
        in_scope = self.traits_in_scope(from_module, blocks)
        return [r for r in self.trait_impls_providing(adt, name)
                if any(r.trait is t for t in in_scope)]

    def trait_impls_providing(self, adt: ItemDef, name: str) -> List[AssocResolution]:
        """Every trait impl of `adt` defining `name`, whether in scope or not."""
        found = []
        for impl in self.impls_for(adt):
            if impl.trait_path is None:
                continue
            trait = self.impl_trait(impl)
            if trait is None:
                continue
            item = impl.items.get(name) or trait.assoc_items.get(name)
            if item is not None:
                found.append(AssocResolution(adt, trait.assoc_items.get(name, item), trait))
        return found

    # ────────────────────────────────────────────────────────────────
    #  Candidates and use paths
    # ────────────────────────────────────────────────────────────────

    def items_named(self, name: str, from_module: ModuleScope) -> List[ItemDef]:
        """Items called `name` in the current crate and everything it depends on."""
        found = []
        for crate in self.index.dependency_closure(from_module.crate):
            found.extend(crate.items_by_name.get(name, []))
        return found

    def find_use_path(self, target: ItemDef, from_module: ModuleScope) -> Optional[QualifiedPath]:
        """Shortest path naming `target` from `from_module`; ties break on text."""
        frontier: List[Tuple[List[str], ItemDef]] = [
            ([name], item) for name, item in self.scope_bindings(from_module)]
        if not from_module.is_root:
            frontier.append((["crate"], from_module.crate.root_item))

        expanded: Set[int] = set()
        for _ in range(MAX_PATH_DEPTH):
            hits = [segments for segments, item in frontier if item is target]
            if hits:
                return QualifiedPath(tuple(min(hits, key="::".join)))
            following = []
            for segments, item in frontier:
                if item.kind not in _CONTAINER_KINDS or id(item) in expanded:
                    continue
                expanded.add(id(item))
                following.extend((segments + [name], child)
                                 for name, child in self.container_bindings(item, from_module))
            if not following:
                break
            frontier = following
        return None


def _unique(items: List) -> List:
    seen = []
    for item in items:
        if not any(item is s or (isinstance(item, AssocResolution) and item == s) for s in seen):
            seen.append(item)
    return seen
