"""
Range Resolver — map syntax nodes back to byte spans of the original file.

A node parsed from a macro expansion lives in a separate text.  Its span is
translated through the expansion's token map; when the node is not entirely
made of tokens copied from the call site, the whole macro call is used.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True, order=True)
class SourceRange:
    """Half-open `[start, end)` byte range into the original text."""
    start: int
    end: int

    def __post_init__(self):
        if self.start < 0 or self.end < self.start:
            raise ValueError(f"invalid range [{self.start}, {self.end})")

    def __len__(self):
        return self.end - self.start

    def contains(self, offset: int) -> bool:
        """Inclusive of both ends: a cursor right after a token still touches it."""
        return self.start <= offset <= self.end


def original_range(text, node) -> SourceRange:
    """Span of `node` (parsed from `text`) in the original file."""
    expansion = text.expansion
    if expansion is None:
        return SourceRange(node.start_byte, node.end_byte)

    start = expansion.map_offset(node.start_byte, at_end=False)
    end = expansion.map_offset(node.end_byte, at_end=True)
    if start is not None and end is not None and start <= end \
            and expansion.same_span(node.start_byte, node.end_byte):
        return SourceRange(start, end)
    return expansion.call_range


def original_offset(text, offset: int, at_end: bool = False) -> Optional[int]:
    """Translate a single offset; None when it has no exact counterpart."""
    if text.expansion is None:
        return offset
    return text.expansion.map_offset(offset, at_end=at_end)
