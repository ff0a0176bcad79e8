"""
Tests for the macro_rules! expander and the offset maps between an
expansion and its call site.
"""

import os
import sys
import unittest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from qualify.locator import find_reference_at
from qualify.macro_expander import (
    MacroExpander, MacroExpansion, collect_macro_definitions, tokenize,
)
from qualify.ranges import SourceRange
from qualify.source_file import SourceFile
from qualify.syntax import parse_bytes


IDENT_MACRO = b"""macro_rules! foo {
    ($i:ident) => { fn foo(a: $i) {} }
}
foo!(PubStruct);
"""


def expand_all(source: bytes, crate_name: str = "crate"):
    root = parse_bytes(source).root_node
    expander = MacroExpander(collect_macro_definitions(root, source, crate_name))
    return expander.expand_all(root, source)


class TestTokenize(unittest.TestCase):

    def test_tokens_and_offsets(self):
        source = b"  $i:ident => a::b // note\n 'x' \"s\""
        tokens = tokenize(source, 0, len(source))
        self.assertEqual([t.text for t in tokens],
                         [b"$i", b":", b"ident", b"=>", b"a", b"::", b"b", b"'x'", b"\"s\""])
        self.assertEqual(tokens[0].kind, "meta")
        self.assertEqual(source[tokens[4].start:tokens[4].end], b"a")


class TestDefinitions(unittest.TestCase):

    def test_collects_rules_and_export(self):
        source = b"""#[macro_export]
macro_rules! exported {
    () => ();
    ($e:expr) => ($e);
}
macro_rules! local { () => () }
"""
        definitions = collect_macro_definitions(parse_bytes(source).root_node, source, "dep")
        by_name = {d.name: d for d in definitions}
        self.assertEqual(set(by_name), {"exported", "local"})
        self.assertTrue(by_name["exported"].exported)
        self.assertFalse(by_name["local"].exported)
        self.assertEqual(len(by_name["exported"].rules), 2)
        self.assertEqual(by_name["exported"].crate_name, "dep")


class TestExpansion(unittest.TestCase):

    def test_ident_fragment_is_copied(self):
        expansions = expand_all(IDENT_MACRO)
        self.assertEqual(len(expansions), 1)
        expansion = expansions[0]
        self.assertEqual(expansion.macro_name, "foo")
        self.assertEqual(expansion.text.strip(), b"fn foo(a: PubStruct) {}")
        call_start = IDENT_MACRO.index(b"foo!(")
        self.assertEqual(expansion.call_range, SourceRange(call_start, IDENT_MACRO.index(b";", call_start)))

    def test_span_map_round_trip(self):
        expansion = expand_all(IDENT_MACRO)[0]
        original = IDENT_MACRO.index(b"PubStruct")
        expanded = expansion.text.index(b"PubStruct")
        self.assertEqual(expansion.map_original(original + 3), expanded + 3)
        self.assertEqual(expansion.map_offset(expanded), original)
        self.assertEqual(expansion.map_offset(expanded + len(b"PubStruct"), at_end=True),
                         original + len(b"PubStruct"))
        self.assertTrue(expansion.same_span(expanded, expanded + len(b"PubStruct")))

    def test_transcriber_text_is_not_mapped(self):
        expansion = expand_all(IDENT_MACRO)[0]
        self.assertIsNone(expansion.map_offset(expansion.text.index(b"fn")))
        self.assertIsNone(expansion.map_original(IDENT_MACRO.index(b"macro_rules")))

    def test_dollar_crate(self):
        source = b"""macro_rules! make {
    () => { fn made() { $crate::inner(); } }
}
make!();
"""
        expansion = expand_all(source, crate_name="dep")[0]
        self.assertIn(b"dep::inner()", expansion.text)

    def test_first_matching_rule_wins(self):
        source = b"""macro_rules! pick {
    (one) => { struct One; };
    ($i:ident) => { struct $i; };
}
pick!(one);
pick!(Two);
"""
        texts = [e.text.strip() for e in expand_all(source)]
        self.assertEqual(texts, [b"struct One;", b"struct Two;"])

    def test_repetition_rules_are_skipped(self):
        source = b"""macro_rules! many {
    ($($x:expr),*) => { $( $x; )* };
}
fn main() { many!(1, 2); }
"""
        self.assertEqual(expand_all(source), [])

    def test_unknown_macro_is_left_alone(self):
        source = b"fn main() { unknown!(Foo); }\n"
        self.assertEqual(expand_all(source), [])

    def test_wrapper_shifts_offsets(self):
        expansion = MacroExpansion(
            macro_name="id", call_range=SourceRange(40, 55), text=b" Foo ", spans=[(1, 4, 44)],
        )
        self.assertTrue(expansion.is_items)
        self.assertEqual(expansion.map_offset(1), 44)

        expansion.wrap_in_function()
        self.assertFalse(expansion.is_items)
        buffer = expansion.parse_buffer()
        shifted = buffer.index(b"Foo")
        self.assertEqual(expansion.map_offset(shifted), 44)
        self.assertEqual(expansion.map_original(45), shifted + 1)


class TestExpansionsInSourceFile(unittest.TestCase):

    def test_reference_inside_item_macro(self):
        source_file = SourceFile.parse("main.rs", IDENT_MACRO)
        offset = IDENT_MACRO.index(b"PubStruct") + 3
        reference = find_reference_at(source_file, offset)
        self.assertIsNotNone(reference)
        self.assertIs(reference.file.original, source_file)
        self.assertIsNotNone(reference.file.expansion)
        self.assertEqual(reference.text(), "PubStruct")
        start = IDENT_MACRO.index(b"PubStruct")
        self.assertEqual(reference.range(), SourceRange(start, start + len(b"PubStruct")))
        self.assertEqual(reference.original_offset, IDENT_MACRO.index(b"foo!("))

    def test_reference_inside_expression_macro(self):
        source = b"""macro_rules! id {
    ($e:expr) => { $e }
}
fn main() {
    let _x = id!(PubStruct);
}
"""
        source_file = SourceFile.parse("main.rs", source)
        start = source.index(b"PubStruct")
        reference = find_reference_at(source_file, start + 1)
        self.assertEqual(reference.text(), "PubStruct")
        self.assertEqual(reference.range(), SourceRange(start, start + len(b"PubStruct")))


if __name__ == "__main__":
    unittest.main()
