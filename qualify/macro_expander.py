"""
Minimal `macro_rules!` expander.

Expands declarative macro invocations so that names written inside a macro
call can be located, resolved and rewritten:

  • collects `macro_rules!` definitions (and `#[macro_export]`)
  • matches an invocation's tokens against each rule in order
  • transcribes the first matching rule, copying captured fragments
    verbatim from the call site
  • records a token span map (expanded offset → original offset) for each
    copied fragment, so edits inside the expansion land on the call site

Supported matchers: literal tokens and `$name:fragment` bindings.  Rules
with repetitions (`$( ... )*`) are skipped.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from tree_sitter import Node

from qualify.ranges import SourceRange
from qualify.syntax import find_enclosing, node_text, walk_type

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(
    rb"""
    (?P<ws>\s+)
    | (?P<comment>//[^\n]*|/\*.*?\*/)
    | (?P<meta>\$[A-Za-z_]\w*)
    | (?P<string>b?"(?:\\.|[^"\\])*")
    | (?P<char>b?'(?:\\.|[^'\\])')
    | (?P<lifetime>'[A-Za-z_]\w*)
    | (?P<number>\d[\w.]*)
    | (?P<ident>[A-Za-z_]\w*)
    | (?P<punct>::|=>|->|==|!=|<=|>=|&&|\|\||\.\.=|\.\.|\S)
    """,
    re.VERBOSE | re.DOTALL,
)

_OPENERS = {b"(": b")", b"[": b"]", b"{": b"}"}
_CLOSERS = {b")", b"]", b"}"}

# Fragments captured as exactly one token / one token tree
_SINGLE_TOKEN_FRAGMENTS = {"ident", "lifetime", "literal"}

# Wrapper used when an expansion does not parse as a list of items
_EXPR_WRAPPER_PREFIX = b"fn __expansion__() {\n"
_EXPR_WRAPPER_SUFFIX = b"\n}\n"


@dataclass
class Token:
    kind: str
    text: bytes
    start: int      # absolute byte offset in the file it came from
    end: int


def tokenize(source: bytes, start: int, end: int) -> List[Token]:
    """Tokenize `source[start:end]`, dropping whitespace and comments."""
    tokens = []
    pos = start
    while pos < end:
        m = _TOKEN_RE.match(source, pos, end)
        if m is None:
            break
        kind = m.lastgroup
        if kind not in ("ws", "comment"):
            tokens.append(Token(kind, m.group(), m.start(), m.end()))
        pos = m.end()
    return tokens


# ═══════════════════════════════════════════════════════════════════════
#  Definitions
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class MacroRule:
    matcher: List[Token]
    transcriber: List[Token]
    body_start: int             # byte range of the transcriber's inner text
    body_end: int


@dataclass
class MacroDefinition:
    name: str
    rules: List[MacroRule]
    source: bytes
    exported: bool = False
    crate_name: str = "crate"


def _is_macro_exported(node: Node, source: bytes) -> bool:
    sibling = node.prev_named_sibling
    while sibling is not None and sibling.type == "attribute_item":
        if "macro_export" in node_text(sibling, source):
            return True
        sibling = sibling.prev_named_sibling
    return False


def collect_macro_definitions(root: Node, source: bytes, crate_name: str = "crate") -> List[MacroDefinition]:
    """All `macro_rules!` definitions in a parsed file."""
    definitions = []
    for node in walk_type(root, {"macro_definition"}):
        name_node = node.child_by_field_name("name")
        if name_node is None:
            continue
        rules = []
        for rule in node.named_children:
            if rule.type != "macro_rule":
                continue
            left = rule.child_by_field_name("left")
            right = rule.child_by_field_name("right")
            if left is None or right is None or right.end_byte - right.start_byte < 2:
                continue
            rules.append(MacroRule(
                matcher=tokenize(source, left.start_byte + 1, left.end_byte - 1),
                transcriber=tokenize(source, right.start_byte + 1, right.end_byte - 1),
                body_start=right.start_byte + 1,
                body_end=right.end_byte - 1,
            ))
        definitions.append(MacroDefinition(
            name=node_text(name_node, source),
            rules=rules,
            source=source,
            exported=_is_macro_exported(node, source),
            crate_name=crate_name,
        ))
    return definitions


# ═══════════════════════════════════════════════════════════════════════
#  Expansion result
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class MacroExpansion:
    """Expanded text of one macro call plus its map back to the call site."""
    macro_name: str
    call_range: SourceRange
    text: bytes
    # (expanded_start, expanded_end, original_start) per copied fragment,
    # offsets relative to `text`
    spans: List[Tuple[int, int, int]] = field(default_factory=list)
    # Bytes of wrapper text before `text` in the parsed buffer
    offset_base: int = 0

    @property
    def is_items(self) -> bool:
        return self.offset_base == 0

    def _span_at(self, offset: int, at_end: bool) -> Optional[Tuple[int, int, int]]:
        local = offset - self.offset_base
        for exp_start, exp_end, orig_start in self.spans:
            if at_end and exp_start < local <= exp_end:
                return exp_start, exp_end, orig_start
            if not at_end and exp_start <= local < exp_end:
                return exp_start, exp_end, orig_start
        return None

    def map_offset(self, offset: int, at_end: bool = False) -> Optional[int]:
        """Expanded (parsed-buffer) offset → original file offset."""
        span = self._span_at(offset, at_end)
        if span is None:
            return None
        exp_start, _, orig_start = span
        return orig_start + (offset - self.offset_base - exp_start)

    def same_span(self, start: int, end: int) -> bool:
        first = self._span_at(start, at_end=False)
        last = self._span_at(end, at_end=True)
        return first is not None and first == last

    def map_original(self, offset: int) -> Optional[int]:
        """Original file offset → parsed-buffer offset, if it was copied."""
        for exp_start, exp_end, orig_start in self.spans:
            if orig_start <= offset <= orig_start + (exp_end - exp_start):
                return self.offset_base + exp_start + (offset - orig_start)
        return None

    def wrap_in_function(self):
        """Parse the expansion as a function body instead of as items."""
        self.offset_base = len(_EXPR_WRAPPER_PREFIX)

    def parse_buffer(self) -> bytes:
        if self.offset_base:
            return _EXPR_WRAPPER_PREFIX + self.text + _EXPR_WRAPPER_SUFFIX
        return self.text


# ═══════════════════════════════════════════════════════════════════════
#  Expander
# ═══════════════════════════════════════════════════════════════════════

class MacroExpander:
    """Expands invocations against a table of known definitions."""

    def __init__(self, definitions: Optional[List[MacroDefinition]] = None):
        self.definitions: Dict[str, MacroDefinition] = {}
        for definition in definitions or []:
            self.add(definition)

    def add(self, definition: MacroDefinition):
        # Later definitions shadow earlier ones, as with textual scoping
        self.definitions[definition.name] = definition

    def expand(self, invocation: Node, source: bytes) -> Optional[MacroExpansion]:
        """Expand one `macro_invocation` node of `source`."""
        macro = invocation.child_by_field_name("macro")
        body = next((c for c in invocation.named_children if c.type == "token_tree"), None)
        if macro is None or body is None:
            return None
        name = node_text(macro, source).split("::")[-1]
        definition = self.definitions.get(name)
        if definition is None:
            return None

        tokens = tokenize(source, body.start_byte + 1, body.end_byte - 1)
        for rule in definition.rules:
            captures = _match(rule.matcher, tokens)
            if captures is None:
                continue
            transcribed = _transcribe(rule, definition, captures, source)
            if transcribed is None:
                continue
            text, spans = transcribed
            logger.debug("Expanded %s! at %d (%d bytes)", name, invocation.start_byte, len(text))
            return MacroExpansion(
                macro_name=name,
                call_range=SourceRange(invocation.start_byte, invocation.end_byte),
                text=text,
                spans=spans,
            )
        logger.debug("No rule of %s! matches the call at %d", name, invocation.start_byte)
        return None

    def expand_all(self, root: Node, source: bytes) -> List[MacroExpansion]:
        expansions = []
        for invocation in walk_type(root, {"macro_invocation"}):
            if find_enclosing(invocation, {"macro_definition", "token_tree"}) is not None:
                continue
            expansion = self.expand(invocation, source)
            if expansion is not None:
                expansions.append(expansion)
        return expansions


def _skip_group(tokens: List[Token], i: int) -> int:
    """Index just past the balanced group opened at tokens[i]."""
    depth = 0
    while i < len(tokens):
        if tokens[i].text in _OPENERS:
            depth += 1
        elif tokens[i].text in _CLOSERS:
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    return i


def _match(matcher: List[Token], tokens: List[Token]) -> Optional[Dict[str, Optional[Tuple[int, int]]]]:
    """Bind matcher metavariables to (start, end) spans of the call site."""
    captures: Dict[str, Optional[Tuple[int, int]]] = {}
    i = 0
    k = 0
    while k < len(matcher):
        current = matcher[k]
        if current.kind == "meta":
            if k + 2 >= len(matcher) or matcher[k + 1].text != b":" or matcher[k + 2].kind != "ident":
                return None
            name = current.text[1:].decode()
            fragment = matcher[k + 2].text.decode()
            k += 3
            if i >= len(tokens) and fragment != "vis":
                return None
            if fragment in _SINGLE_TOKEN_FRAGMENTS:
                if fragment == "ident" and tokens[i].kind != "ident":
                    return None
                j = i + 1
            elif fragment == "tt":
                j = _skip_group(tokens, i) if tokens[i].text in _OPENERS else i + 1
            else:
                stop = matcher[k].text if k < len(matcher) and matcher[k].kind != "meta" else None
                j = _capture_fragment(tokens, i, stop, angle=fragment in ("ty", "path"))
                if j == i and fragment != "vis":
                    return None
            captures[name] = (tokens[i].start, tokens[j - 1].end) if j > i else None
            i = j
            continue
        if current.text == b"$":
            # repetition `$( ... )*`
            return None
        if i >= len(tokens) or tokens[i].text != current.text:
            return None
        i += 1
        k += 1
    return captures if i == len(tokens) else None


def _capture_fragment(tokens: List[Token], i: int, stop: Optional[bytes], angle: bool) -> int:
    depth = 0
    j = i
    while j < len(tokens):
        text = tokens[j].text
        if depth == 0 and stop is not None and text == stop:
            break
        if text in _OPENERS or (angle and text == b"<"):
            depth += 1
        elif text in _CLOSERS or (angle and text == b">"):
            if depth == 0:
                break
            depth -= 1
        j += 1
    return j


def _transcribe(rule: MacroRule, definition: MacroDefinition,
                captures: Dict[str, Optional[Tuple[int, int]]],
                call_source: bytes) -> Optional[Tuple[bytes, List[Tuple[int, int, int]]]]:
    """Copy the transcriber text, substituting captured fragments."""
    body = definition.source
    out = bytearray()
    spans: List[Tuple[int, int, int]] = []
    pos = rule.body_start
    for tok in rule.transcriber:
        if tok.text == b"$":
            # repetition `$( ... )*`
            return None
        if tok.kind != "meta":
            continue
        name = tok.text[1:].decode()
        out += body[pos:tok.start]
        if name == "crate":
            out += definition.crate_name.encode()
        elif name not in captures:
            return None
        elif captures[name] is not None:
            start, end = captures[name]
            spans.append((len(out), len(out) + (end - start), start))
            out += call_source[start:end]
        pos = tok.end
    out += body[pos:rule.body_end]
    return bytes(out), spans
