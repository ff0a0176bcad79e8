"""
Workspace Index — crate graph and item tables for name resolution.

Scans a set of Rust crates to build:
  • Crate graph   — crates, their root files and dependency bindings
  • Module tree   — inline `mod x { }` and out-of-line `mod x;` modules
  • Item tables   — structs, enums (+ variants), traits (+ assoc items),
                    fns, consts, statics, type aliases, macros
  • Impl blocks   — inherent and trait impls with their assoc items
  • Imports       — `use` trees, globs, aliases, `extern crate`
  • Block scopes  — items and `use` imports of a function body, built per
                    query by `block_scope`

Crates come either from Cargo manifests under a workspace root
(`discover_crates`) or from in-memory sources (see qualify.fixture).
"""

import logging
import os
import posixpath
import tomllib
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from pydantic import BaseModel, Field
from tree_sitter import Node

from qualify.macro_expander import MacroDefinition, MacroExpander, collect_macro_definitions
from qualify.source_file import SourceFile
from qualify.syntax import (
    PATH_TYPES, SCOPED_PATH_TYPES, node_text, parse_bytes, path_names,
    self_parameter_kind, walk_type,
)

logger = logging.getLogger(__name__)

# Directories never containing crates we index
_SKIP_DIRS = {".git", "target", "__pycache__", "node_modules", ".vscode", ".idea", "venv", ".venv"}

TYPES = frozenset({"mod", "crate", "struct", "enum", "union", "trait", "type"})
VALUES = frozenset({"fn", "const", "static", "variant", "struct"})
MACROS = frozenset({"macro"})
ANY = TYPES | VALUES | MACROS

ADT_KINDS = frozenset({"struct", "enum", "union"})

_ITEM_KINDS = {
    "struct_item": "struct",
    "union_item": "union",
    "enum_item": "enum",
    "trait_item": "trait",
    "type_item": "type",
    "function_item": "fn",
    "function_signature_item": "fn",
    "const_item": "const",
    "static_item": "static",
}

# Declarations the module indexer handles separately but blocks treat as items
_BLOCK_ONLY_KINDS = {"mod_item": "mod", "macro_definition": "macro"}


def _norm_path(p: str) -> str:
    """Normalise to forward slashes, no leading './' or '/'."""
    p = p.replace("\\", "/")
    while p.startswith("./"):
        p = p[2:]
    return posixpath.normpath(p.lstrip("/")) if p else p


# ═══════════════════════════════════════════════════════════════════════
#  Data types
# ═══════════════════════════════════════════════════════════════════════

class CrateManifest(BaseModel):
    """One crate of the graph: name, root file and dependency bindings."""
    name: str
    root_file: str
    # binding name used in code → crate name
    deps: Dict[str, str] = Field(default_factory=dict)
    manifest_path: Optional[str] = None


@dataclass
class AssocItem:
    """An fn / const / type inside a trait or impl."""
    name: str
    kind: str                          # "fn", "const", "type"
    self_kind: Optional[str] = None    # receiver of methods; None for associated fns
    return_type: Optional[List[str]] = None


@dataclass(eq=False)
class ItemDef:
    """A named item declared in a module."""
    name: str
    kind: str            # "mod", "crate", "struct", "enum", "union", "trait",
                         # "type", "fn", "const", "static", "variant", "macro"
    visibility: str      # "pub", "crate", "super", "private"
    module: "ModuleScope"
    file_path: str
    start_byte: int
    body: Optional["ModuleScope"] = None
    variants: Dict[str, "ItemDef"] = field(default_factory=dict)
    assoc_items: Dict[str, AssocItem] = field(default_factory=dict)
    parent_enum: Optional["ItemDef"] = None
    return_type: Optional[List[str]] = None

    @property
    def crate(self) -> "Crate":
        return self.module.crate

    def __repr__(self):
        return f"ItemDef({self.kind} {'::'.join(self.module.path + [self.name])})"


@dataclass
class UseImport:
    path: List[str]
    alias: Optional[str] = None
    is_glob: bool = False
    visibility: str = "private"

    @property
    def binding(self) -> Optional[str]:
        if self.is_glob:
            return None
        if self.alias is not None:
            return self.alias
        return self.path[-1] if self.path else None


@dataclass(eq=False)
class ImplBlock:
    module: "ModuleScope"
    self_type: List[str]
    trait_path: Optional[List[str]]
    items: Dict[str, AssocItem]
    file_path: str
    start_byte: int


class ModuleScope:
    """A module: its items, imports and place in the module tree."""

    def __init__(self, crate: "Crate", name: str, parent: Optional["ModuleScope"],
                 file_path: str, body_range: Optional[Tuple[int, int]] = None):
        self.crate = crate
        self.name = name
        self.parent = parent
        self.file_path = file_path
        self.body_range = body_range    # None: the whole file
        self.items: Dict[str, List[ItemDef]] = {}
        self.imports: List[UseImport] = []
        self.item: Optional[ItemDef] = None

    @property
    def path(self) -> List[str]:
        if self.parent is None:
            return []
        return self.parent.path + [self.name]

    @property
    def is_root(self) -> bool:
        return self.parent is None

    def add(self, item: ItemDef):
        self.items.setdefault(item.name, []).append(item)

    def is_within(self, other: "ModuleScope") -> bool:
        """True if this module is `other` or nested inside it."""
        current = self
        while current is not None:
            if current is other:
                return True
            current = current.parent
        return False

    def all_items(self) -> List[ItemDef]:
        return [i for items in self.items.values() for i in items]

    def __repr__(self):
        return f"ModuleScope({self.crate.name}::{'::'.join(self.path)})"


@dataclass
class BlockScope:
    """Items and `use` imports declared directly inside a `{ ... }` block.

    They are visible throughout the block, before their declaration too,
    and shadow the enclosing module's names.  Block items are not entered
    into the crate tables: nothing outside the block can name them.
    """
    items: Dict[str, List[ItemDef]] = field(default_factory=dict)
    imports: List[UseImport] = field(default_factory=list)


class Crate:
    def __init__(self, manifest: CrateManifest):
        self.name = manifest.name
        self.root_file = _norm_path(manifest.root_file)
        self.deps: Dict[str, str] = dict(manifest.deps)
        self.root = ModuleScope(self, manifest.name, None, self.root_file)
        self.root_item = ItemDef(
            name=manifest.name, kind="crate", visibility="pub",
            module=self.root, file_path=self.root_file, start_byte=0, body=self.root,
        )
        self.root.item = self.root_item
        self.files: Dict[str, SourceFile] = {}
        self.impls: List[ImplBlock] = []
        self.macros: List[MacroDefinition] = []
        self.items_by_name: Dict[str, List[ItemDef]] = {}

    @property
    def exported_macros(self) -> List[MacroDefinition]:
        return [m for m in self.macros if m.exported]

    def register(self, item: ItemDef):
        self.items_by_name.setdefault(item.name, []).append(item)


# ═══════════════════════════════════════════════════════════════════════
#  Cargo discovery
# ═══════════════════════════════════════════════════════════════════════

def _read_cargo_toml(path: str) -> Optional[dict]:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.error("Cannot read manifest %s: %s", path, e)
        return None


def discover_crates(workspace_root: str) -> List[CrateManifest]:
    """Find every package manifest under `workspace_root`.

    A package with both `src/lib.rs` and `src/main.rs` is indexed through
    its library target.  Only path dependencies are followed; registry
    dependencies have no sources in the workspace.
    """
    found: List[Tuple[CrateManifest, Dict[str, str]]] = []
    for root, dirs, filenames in os.walk(workspace_root):
        dirs[:] = sorted(d for d in dirs if d not in _SKIP_DIRS)
        if "Cargo.toml" not in filenames:
            continue
        manifest_path = os.path.join(root, "Cargo.toml")
        data = _read_cargo_toml(manifest_path)
        if not data or "package" not in data:
            continue

        crate_dir = os.path.relpath(root, workspace_root)
        package = data["package"]
        lib = data.get("lib", {})
        name = (lib.get("name") or package.get("name", os.path.basename(root))).replace("-", "_")

        root_file = lib.get("path")
        if root_file is None:
            for candidate in ("src/lib.rs", "src/main.rs"):
                if os.path.isfile(os.path.join(root, candidate)):
                    root_file = candidate
                    break
        if root_file is None:
            logger.warning("No crate root for %s", manifest_path)
            continue

        dep_dirs = {}
        for binding, spec in data.get("dependencies", {}).items():
            if isinstance(spec, dict) and "path" in spec:
                dep_dir = os.path.normpath(os.path.join(crate_dir, spec["path"]))
                dep_dirs[binding.replace("-", "_")] = _norm_path(dep_dir)

        manifest = CrateManifest(
            name=name,
            root_file=_norm_path(os.path.join(crate_dir, root_file)),
            manifest_path=_norm_path(os.path.relpath(manifest_path, workspace_root)),
        )
        found.append((manifest, dep_dirs))

    by_dir = {posixpath.dirname(m.manifest_path) or ".": m.name for m, _ in found}
    manifests = []
    for manifest, dep_dirs in found:
        for binding, dep_dir in dep_dirs.items():
            crate_name = by_dir.get(dep_dir or ".")
            if crate_name is None:
                logger.warning("%s: path dependency %s not found in workspace", manifest.name, dep_dir)
                continue
            manifest.deps[binding] = crate_name
        manifests.append(manifest)
    logger.info("Discovered %d crates under %s", len(manifests), workspace_root)
    return manifests


# ═══════════════════════════════════════════════════════════════════════
#  AST extraction helpers
# ═══════════════════════════════════════════════════════════════════════

def _visibility(node: Node, source: bytes) -> str:
    for child in node.children:
        if child.type == "visibility_modifier":
            text = node_text(child, source).replace(" ", "")
            if text == "pub":
                return "pub"
            if text == "pub(super)":
                return "super"
            if text == "pub(self)":
                return "private"
            return "crate"
    return "private"


def type_names(node: Optional[Node], source: bytes) -> Optional[List[str]]:
    """Path names of a type, references and generic arguments stripped."""
    while node is not None and node.type in ("reference_type", "generic_type", "pointer_type"):
        node = node.child_by_field_name("type")
    if node is None:
        return None
    if node.type in PATH_TYPES:
        return path_names(node, source)
    return None


def _assoc_items(body: Optional[Node], source: bytes) -> Dict[str, AssocItem]:
    items: Dict[str, AssocItem] = {}
    if body is None:
        return items
    for child in body.named_children:
        name_node = child.child_by_field_name("name")
        if name_node is None:
            continue
        name = node_text(name_node, source)
        if child.type in ("function_item", "function_signature_item"):
            items[name] = AssocItem(
                name, "fn",
                self_kind=self_parameter_kind(child.child_by_field_name("parameters"), source),
                return_type=type_names(child.child_by_field_name("return_type"), source),
            )
        elif child.type == "const_item":
            items[name] = AssocItem(name, "const")
        elif child.type in ("type_item", "associated_type"):
            items[name] = AssocItem(name, "type")
    return items


def collect_use_imports(node: Optional[Node], source: bytes, prefix: List[str],
                        visibility: str) -> List[UseImport]:
    """Flatten a `use` tree into one UseImport per binding."""
    if node is None:
        return []
    t = node.type
    if t in PATH_TYPES or t in ("self", "super", "crate"):
        names = path_names(node, source) if t in PATH_TYPES else [t]
        if names == ["self"] and prefix:
            # `use a::{self}` binds `a`
            return [UseImport(list(prefix), visibility=visibility)]
        return [UseImport(prefix + names, visibility=visibility)]
    if t == "use_as_clause":
        path = node.child_by_field_name("path")
        alias = node.child_by_field_name("alias")
        names = prefix + (path_names(path, source) if path is not None and path.type in PATH_TYPES
                          else [node_text(path, source)] if path is not None else [])
        return [UseImport(names, alias=node_text(alias, source) if alias is not None else None,
                          visibility=visibility)]
    if t == "use_wildcard":
        inner = node.named_children[0] if node.named_children else None
        names = prefix
        if inner is not None:
            names = prefix + (path_names(inner, source) if inner.type in PATH_TYPES else [inner.type])
        return [UseImport(names, is_glob=True, visibility=visibility)]
    if t == "scoped_use_list":
        path = node.child_by_field_name("path")
        if path is not None:
            prefix = prefix + (path_names(path, source) if path.type in PATH_TYPES else [path.type])
        return collect_use_imports(node.child_by_field_name("list"), source, prefix, visibility)
    if t == "use_list":
        imports = []
        for child in node.named_children:
            imports.extend(collect_use_imports(child, source, prefix, visibility))
        return imports
    return []


def block_scope(block: Node, source: bytes, module: ModuleScope, file_path: str) -> BlockScope:
    """Declarations made directly inside `block`, owned by `module`."""
    scope = BlockScope()
    for child in block.named_children:
        t = child.type
        if t == "use_declaration":
            scope.imports.extend(collect_use_imports(
                child.child_by_field_name("argument"), source, [], "private"))
            continue
        kind = _ITEM_KINDS.get(t) or _BLOCK_ONLY_KINDS.get(t)
        name_node = child.child_by_field_name("name")
        if kind is None or name_node is None:
            continue
        item = ItemDef(name=node_text(name_node, source), kind=kind, visibility="private",
                       module=module, file_path=file_path, start_byte=child.start_byte)
        if t == "trait_item":
            item.assoc_items = _assoc_items(child.child_by_field_name("body"), source)
        elif t == "enum_item":
            body = child.child_by_field_name("body")
            for variant in body.named_children if body is not None else []:
                variant_name = variant.child_by_field_name("name")
                if variant.type == "enum_variant" and variant_name is not None:
                    name = node_text(variant_name, source)
                    item.variants[name] = ItemDef(
                        name=name, kind="variant", visibility="pub", module=module,
                        file_path=file_path, start_byte=variant.start_byte, parent_enum=item)
        scope.items.setdefault(item.name, []).append(item)
    return scope


# ═══════════════════════════════════════════════════════════════════════
#  WorkspaceIndex — Main class
# ═══════════════════════════════════════════════════════════════════════

class WorkspaceIndex:
    """
    Builds the crate graph and item tables used by the semantic oracle.

    Usage:
        index = WorkspaceIndex("/path/to/workspace")
        index.build()
        file = index.get_file("app/src/main.rs")
        module = index.module_at("app/src/main.rs", offset)
    """

    def __init__(self, workspace_root: Optional[str] = None,
                 sources: Optional[Dict[str, bytes]] = None):
        self.workspace_root = workspace_root
        self._sources: Dict[str, bytes] = {_norm_path(k): v for k, v in (sources or {}).items()}
        self._manifests: List[CrateManifest] = []
        self.crates: Dict[str, Crate] = {}
        self._file_crate: Dict[str, Crate] = {}
        self._modules_by_file: Dict[str, List[ModuleScope]] = {}
        self._built = False

    @property
    def is_built(self) -> bool:
        return self._built

    def add_crate(self, manifest: CrateManifest):
        self._manifests.append(manifest)

    def build(self):
        """Index every crate, dependencies before their dependents."""
        if not self._manifests and self.workspace_root is not None:
            self._manifests = discover_crates(self.workspace_root)

        self.crates = {}
        self._file_crate = {}
        self._modules_by_file = {}
        for manifest in self._build_order():
            crate = Crate(manifest)
            self.crates[crate.name] = crate
            self._index_crate(crate)

        self._built = True
        logger.info(
            "WorkspaceIndex built: %d crates, %d files, %d items, %d impls",
            len(self.crates),
            len(self._file_crate),
            sum(len(v) for c in self.crates.values() for v in c.items_by_name.values()),
            sum(len(c.impls) for c in self.crates.values()),
        )

    def get_summary(self) -> Dict:
        return {
            "crates": sorted(self.crates),
            "files_indexed": len(self._file_crate),
            "items": sum(len(v) for c in self.crates.values() for v in c.items_by_name.values()),
            "impls": sum(len(c.impls) for c in self.crates.values()),
            "macros": sum(len(c.macros) for c in self.crates.values()),
        }

    # ────────────────────────────────────────────────────────────────
    #  Queries
    # ────────────────────────────────────────────────────────────────

    def get_file(self, file_path: str) -> Optional[SourceFile]:
        crate = self._file_crate.get(_norm_path(file_path))
        if crate is None:
            return None
        return crate.files.get(_norm_path(file_path))

    def crate_of(self, file_path: str) -> Optional[Crate]:
        return self._file_crate.get(_norm_path(file_path))

    def module_at(self, file_path: str, offset: int) -> Optional[ModuleScope]:
        """Innermost module whose body contains `offset`."""
        best = None
        best_len = None
        for module in self._modules_by_file.get(_norm_path(file_path), []):
            if module.body_range is None:
                length = float("inf")
            else:
                start, end = module.body_range
                if not start <= offset <= end:
                    continue
                length = end - start
            if best is None or length < best_len:
                best, best_len = module, length
        return best

    def dependency_closure(self, crate: Crate) -> List[Crate]:
        """`crate` followed by all crates it depends on, transitively."""
        seen: List[Crate] = []
        stack = [crate]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.append(current)
            for dep_name in current.deps.values():
                dep = self.crates.get(dep_name)
                if dep is not None:
                    stack.append(dep)
        return seen

    def all_impls(self) -> List[ImplBlock]:
        return [impl for crate in self.crates.values() for impl in crate.impls]

    # ────────────────────────────────────────────────────────────────
    #  Internal: sources
    # ────────────────────────────────────────────────────────────────

    def _exists(self, rel_path: str) -> bool:
        rel_path = _norm_path(rel_path)
        if rel_path in self._sources:
            return True
        if self.workspace_root is None:
            return False
        return os.path.isfile(os.path.join(self.workspace_root, rel_path))

    def _read(self, rel_path: str) -> Optional[bytes]:
        rel_path = _norm_path(rel_path)
        if rel_path in self._sources:
            return self._sources[rel_path]
        if self.workspace_root is None:
            return None
        full_path = os.path.join(self.workspace_root, rel_path)
        try:
            with open(full_path, "rb") as f:
                source = f.read()
        except OSError as e:
            logger.error("Cannot read %s: %s", rel_path, e)
            return None
        if b"\x00" in source[:8192]:
            logger.warning("Skipping binary file: %s", full_path)
            return None
        return source

    def _build_order(self) -> List[CrateManifest]:
        by_name = {m.name: m for m in self._manifests}
        ordered: List[CrateManifest] = []
        visiting: Set[str] = set()

        def visit(manifest: CrateManifest):
            if manifest in ordered or manifest.name in visiting:
                return
            visiting.add(manifest.name)
            for dep in manifest.deps.values():
                if dep in by_name:
                    visit(by_name[dep])
                else:
                    logger.warning("Crate %s depends on unknown crate %s", manifest.name, dep)
            visiting.discard(manifest.name)
            ordered.append(manifest)

        for manifest in self._manifests:
            visit(manifest)
        return ordered

    # ────────────────────────────────────────────────────────────────
    #  Internal: per-crate indexing
    # ────────────────────────────────────────────────────────────────

    @staticmethod
    def _module_file(owner_file: str, dir_owner: bool, inline_path: List[str], name: str) -> List[str]:
        base = posixpath.dirname(owner_file)
        if not dir_owner:
            base = posixpath.join(base, posixpath.splitext(posixpath.basename(owner_file))[0])
        base = posixpath.join(base, *inline_path) if inline_path else base
        return [_norm_path(posixpath.join(base, f"{name}.rs")),
                _norm_path(posixpath.join(base, name, "mod.rs"))]

    def _resolve_module_file(self, owner_file: str, dir_owner: bool,
                             inline_path: List[str], name: str) -> Optional[str]:
        for candidate in self._module_file(owner_file, dir_owner, inline_path, name):
            if self._exists(candidate):
                return candidate
        return None

    def _crate_sources(self, crate: Crate) -> Dict[str, bytes]:
        """Root file plus every out-of-line module file it reaches."""
        sources: Dict[str, bytes] = {}
        queue: List[Tuple[str, bool]] = [(crate.root_file, True)]
        while queue:
            path, dir_owner = queue.pop(0)
            if path in sources:
                continue
            source = self._read(path)
            if source is None:
                continue
            sources[path] = source
            root = parse_bytes(source).root_node
            for mod in walk_type(root, {"mod_item"}):
                if mod.child_by_field_name("body") is not None:
                    continue
                name_node = mod.child_by_field_name("name")
                if name_node is None:
                    continue
                inline_path = []
                parent = mod.parent
                while parent is not None:
                    if parent.type == "mod_item":
                        inner_name = parent.child_by_field_name("name")
                        if inner_name is not None:
                            inline_path.insert(0, node_text(inner_name, source))
                    parent = parent.parent
                found = self._resolve_module_file(path, dir_owner, inline_path, node_text(name_node, source))
                if found is None:
                    logger.warning("%s: file for `mod %s;` not found", path, node_text(name_node, source))
                    continue
                queue.append((found, found.endswith("/mod.rs") or found == "mod.rs"))
        return sources

    def _index_crate(self, crate: Crate):
        sources = self._crate_sources(crate)
        if crate.root_file not in sources:
            logger.error("Crate %s: root file %s not readable", crate.name, crate.root_file)
            return

        expander = MacroExpander()
        for binding, dep_name in crate.deps.items():
            dep = self.crates.get(dep_name)
            if dep is None:
                continue
            for definition in dep.exported_macros:
                expander.add(definition)
        for path, source in sources.items():
            defs = collect_macro_definitions(parse_bytes(source).root_node, source, crate.name)
            crate.macros.extend(defs)
            for definition in defs:
                expander.add(definition)

        for path, source in sources.items():
            crate.files[path] = SourceFile.parse(path, source, expander=expander, crate_name=crate.name)
            self._file_crate[path] = crate

        self._register_module(crate.root)
        root_file = crate.files[crate.root_file]
        self._index_module_body(crate, crate.root, root_file, root_file.root, True, [])

    def _register_module(self, module: ModuleScope):
        self._modules_by_file.setdefault(module.file_path, []).append(module)

    def _add_item(self, crate: Crate, module: ModuleScope, item: ItemDef):
        module.add(item)
        crate.register(item)

    def _index_module_body(self, crate: Crate, module: ModuleScope, text: SourceFile,
                           container: Node, dir_owner: bool, inline_path: List[str]):
        source = text.source
        file_path = text.original.path
        for child in container.named_children:
            t = child.type
            start = text.call_site_offset(child.start_byte)

            if t == "mod_item":
                self._index_mod(crate, module, text, child, dir_owner, inline_path)
                continue

            if t in _ITEM_KINDS:
                name_node = child.child_by_field_name("name")
                if name_node is None:
                    continue
                item = ItemDef(
                    name=node_text(name_node, source), kind=_ITEM_KINDS[t],
                    visibility=_visibility(child, source), module=module,
                    file_path=file_path, start_byte=start,
                )
                if t == "enum_item":
                    self._index_variants(crate, item, child, source)
                elif t == "trait_item":
                    item.assoc_items = _assoc_items(child.child_by_field_name("body"), source)
                elif t == "function_item":
                    item.return_type = type_names(child.child_by_field_name("return_type"), source)
                self._add_item(crate, module, item)
                continue

            if t == "impl_item":
                impl = self._index_impl(module, child, source, file_path, start)
                if impl is not None:
                    crate.impls.append(impl)
                continue

            if t == "use_declaration":
                module.imports.extend(collect_use_imports(
                    child.child_by_field_name("argument"), source, [], _visibility(child, source)))
                continue

            if t == "extern_crate_declaration":
                name_node = child.child_by_field_name("name")
                alias = child.child_by_field_name("alias")
                if name_node is not None:
                    module.imports.append(UseImport(
                        [node_text(name_node, source)],
                        alias=node_text(alias, source) if alias is not None else None,
                        visibility=_visibility(child, source),
                    ))
                continue

            if t == "macro_definition":
                name_node = child.child_by_field_name("name")
                if name_node is None:
                    continue
                name = node_text(name_node, source)
                exported = any(m.name == name and m.exported for m in crate.macros)
                item = ItemDef(name=name, kind="macro", visibility="pub" if exported else "crate",
                               module=crate.root if exported else module,
                               file_path=file_path, start_byte=start)
                self._add_item(crate, item.module, item)
                continue

            invocation = child
            if t == "expression_statement" and child.named_children:
                invocation = child.named_children[0]
            if invocation.type == "macro_invocation" and text.expansion is None:
                for expanded in text.expansions:
                    if expanded.expansion.call_range.start == invocation.start_byte and expanded.expansion.is_items:
                        self._index_module_body(crate, module, expanded, expanded.root, dir_owner, inline_path)

    def _index_mod(self, crate: Crate, module: ModuleScope, text: SourceFile, node: Node,
                   dir_owner: bool, inline_path: List[str]):
        source = text.source
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return
        name = node_text(name_node, source)
        body = node.child_by_field_name("body")
        file_path = text.original.path

        if body is not None:
            body_range = (text.call_site_offset(body.start_byte), text.call_site_offset(body.end_byte))
            child_module = ModuleScope(crate, name, module, file_path, body_range)
            child_text, child_container = text, body
            child_dir_owner, child_inline = dir_owner, inline_path + [name]
        else:
            found = self._resolve_module_file(file_path, dir_owner, inline_path, name)
            if found is None or found not in crate.files:
                return
            child_module = ModuleScope(crate, name, module, found)
            child_text = crate.files[found]
            child_container = child_text.root
            child_dir_owner, child_inline = found.endswith("mod.rs"), []

        item = ItemDef(name=name, kind="mod", visibility=_visibility(node, source), module=module,
                       file_path=file_path, start_byte=text.call_site_offset(node.start_byte),
                       body=child_module)
        child_module.item = item
        self._add_item(crate, module, item)
        self._register_module(child_module)
        self._index_module_body(crate, child_module, child_text, child_container, child_dir_owner, child_inline)

    def _index_variants(self, crate: Crate, enum: ItemDef, node: Node, source: bytes):
        body = node.child_by_field_name("body")
        if body is None:
            return
        for variant in body.named_children:
            if variant.type != "enum_variant":
                continue
            name_node = variant.child_by_field_name("name")
            if name_node is None:
                continue
            item = ItemDef(
                name=node_text(name_node, source), kind="variant", visibility="pub",
                module=enum.module, file_path=enum.file_path, start_byte=variant.start_byte,
                parent_enum=enum,
            )
            enum.variants[item.name] = item
            crate.register(item)

    def _index_impl(self, module: ModuleScope, node: Node, source: bytes,
                    file_path: str, start: int) -> Optional[ImplBlock]:
        self_type = type_names(node.child_by_field_name("type"), source)
        if self_type is None:
            return None
        trait = node.child_by_field_name("trait")
        trait_path = None
        if trait is not None:
            trait_path = type_names(trait, source)
            if trait_path is None:
                return None
        return ImplBlock(
            module=module, self_type=self_type, trait_path=trait_path,
            items=_assoc_items(node.child_by_field_name("body"), source),
            file_path=file_path, start_byte=start,
        )
