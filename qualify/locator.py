"""
Reference Locator — find the reference under the cursor.

Search order:
  1. smallest path node touching the offset
  2. smallest method call touching the offset
Each search looks inside macro expansions before the file's own tree, since
tokens inside a macro call only form paths once expanded.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from tree_sitter import Node

from qualify.ranges import SourceRange, original_range
from qualify.source_file import SourceFile
from qualify.syntax import ancestors, is_method_call, is_path_node, touching_leaves

logger = logging.getLogger(__name__)

PATH = "path"
METHOD_CALL = "method_call"


@dataclass(frozen=True)
class LocatedReference:
    """A path or method-call node plus the text it was parsed from."""
    node: Node
    file: SourceFile
    kind: str

    @property
    def is_path(self) -> bool:
        return self.kind == PATH

    def text(self, node: Optional[Node] = None) -> str:
        return self.file.node_text(node if node is not None else self.node)

    def range(self, node: Optional[Node] = None) -> SourceRange:
        return original_range(self.file, node if node is not None else self.node)

    @property
    def original_offset(self) -> int:
        """Start of the reference in the user's file (call site for expansions)."""
        return self.file.call_site_offset(self.node.start_byte)


def _smallest_at(root: Node, offset: int, predicate: Callable[[Node], bool]) -> Optional[Node]:
    best = None
    for leaf in touching_leaves(root, offset):
        for node in ancestors(leaf):
            if predicate(node):
                if best is None or node.end_byte - node.start_byte < best.end_byte - best.start_byte:
                    best = node
                break
    return best


def _find_smallest(file: SourceFile, offset: int,
                   predicate: Callable[[Node], bool]) -> Optional[Tuple[SourceFile, Node]]:
    for expanded, mapped in file.expansions_at(offset):
        node = _smallest_at(expanded.root, mapped, predicate)
        if node is not None:
            return expanded, node
    node = _smallest_at(file.root, offset, predicate)
    if node is not None:
        return file, node
    return None


def find_reference_at(file: SourceFile, offset: int) -> Optional[LocatedReference]:
    """Smallest path, else smallest method call, enclosing `offset`."""
    for predicate, kind in ((is_path_node, PATH), (is_method_call, METHOD_CALL)):
        found = _find_smallest(file, offset, predicate)
        if found is not None:
            text, node = found
            logger.debug("Located %s %r at %d in %s", kind, text.node_text(node), offset, text.path)
            return LocatedReference(node=node, file=text, kind=kind)
    logger.debug("No path or method call at offset %d in %s", offset, file.path)
    return None
