"""
Parsed Rust source text, with the macro expansions it contains.

An expansion is itself a SourceFile whose `expansion` attribute carries the
map back to the call site in its `parent` file.
"""

import logging
from typing import List, Optional, Tuple

from tree_sitter import Node

from qualify.macro_expander import MacroExpander, MacroExpansion, collect_macro_definitions
from qualify.syntax import node_text, parse_bytes

logger = logging.getLogger(__name__)


class SourceFile:
    """A read-only parse tree plus the bytes it was parsed from."""

    def __init__(self, path: str, source: bytes, tree,
                 expansion: Optional[MacroExpansion] = None,
                 parent: Optional["SourceFile"] = None):
        self.path = path
        self.source = source
        self.tree = tree
        self.expansion = expansion
        self.parent = parent
        self.expansions: List["SourceFile"] = []

    @classmethod
    def parse(cls, path: str, source: bytes,
              expander: Optional[MacroExpander] = None,
              crate_name: str = "crate") -> "SourceFile":
        """Parse `source` and expand the macro calls it makes.

        Without an explicit expander only the file's own `macro_rules!`
        definitions are known.
        """
        tree = parse_bytes(source)
        file = cls(path, source, tree)
        if expander is None:
            expander = MacroExpander(collect_macro_definitions(tree.root_node, source, crate_name))
        for expansion in expander.expand_all(tree.root_node, source):
            file.expansions.append(file._parse_expansion(expansion))
        if tree.root_node.has_error:
            logger.debug("%s has syntax errors", path)
        return file

    @classmethod
    def from_text(cls, path: str, text: str, **kwargs) -> "SourceFile":
        return cls.parse(path, text.encode("utf-8"), **kwargs)

    def _parse_expansion(self, expansion: MacroExpansion) -> "SourceFile":
        tree = parse_bytes(expansion.parse_buffer())
        if tree.root_node.has_error:
            expansion.wrap_in_function()
            tree = parse_bytes(expansion.parse_buffer())
        path = f"{self.path}!{expansion.macro_name}@{expansion.call_range.start}"
        return SourceFile(path, expansion.parse_buffer(), tree, expansion=expansion, parent=self)

    @property
    def root(self) -> Node:
        return self.tree.root_node

    @property
    def original(self) -> "SourceFile":
        return self.parent if self.parent is not None else self

    @property
    def text(self) -> str:
        return self.source.decode("utf-8", errors="replace")

    def node_text(self, node: Node) -> str:
        return node_text(node, self.source)

    def expansions_at(self, offset: int) -> List[Tuple["SourceFile", int]]:
        """Expansions that copied the token at `offset`, with the mapped offset."""
        found = []
        for expanded in self.expansions:
            mapped = expanded.expansion.map_original(offset)
            if mapped is not None:
                found.append((expanded, mapped))
        return found

    def call_site_offset(self, offset: int) -> int:
        """Position in the original file standing in for `offset` of this text."""
        if self.expansion is None:
            return offset
        return self.expansion.call_range.start
