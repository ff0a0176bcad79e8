"""
Tests for the reference locator, the candidate classifier and the edit
synthesizer, driven by a canned oracle instead of a workspace index.
"""

import os
import sys
import unittest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from qualify.assists import Assists
from qualify.classifier import (
    CandidateKind, Classification, OracleAnswer, ReferenceOracle, classify,
)
from qualify.fix_engine import QUALIFY_PATH, compute_qualify_fixes, synthesize
from qualify.locator import METHOD_CALL, PATH, find_reference_at
from qualify.model import QualifiedPath, SelfKind
from qualify.source_file import SourceFile


class CannedOracle(ReferenceOracle):
    """Answers every question with the same OracleAnswer and records the calls."""

    def __init__(self, answer):
        self.answer = answer
        self.calls = []

    def find_candidates(self, reference):
        self.calls.append(reference.text())
        return self.answer


def P(text):
    return QualifiedPath.parse(text)


def at_cursor(text):
    """SourceFile for `text` plus the offset of the `<|>` marker."""
    before, _, after = text.partition("<|>")
    return SourceFile.from_text("main.rs", before + after), len(before.encode("utf-8"))


def run(text, answer):
    source_file, offset = at_cursor(text)
    return compute_qualify_fixes(source_file, offset, CannedOracle(answer)), source_file


class TestLocator(unittest.TestCase):

    def test_smallest_path_wins(self):
        source_file, offset = at_cursor("fn main() { a::b<|>::c(); }")
        reference = find_reference_at(source_file, offset)
        self.assertEqual(reference.kind, PATH)
        self.assertEqual(reference.text(), "a::b")

    def test_method_call_when_no_path(self):
        source_file, offset = at_cursor("fn main() { x.me<|>thod(1); }")
        reference = find_reference_at(source_file, offset)
        self.assertEqual(reference.kind, METHOD_CALL)
        self.assertEqual(reference.text(), "x.method(1)")

    def test_nothing_at_whitespace(self):
        source_file, offset = at_cursor("fn main() {  <|>  }")
        self.assertIsNone(find_reference_at(source_file, offset))

    def test_declared_names_are_not_references(self):
        source_file, offset = at_cursor("struct Fo<|>o;")
        self.assertIsNone(find_reference_at(source_file, offset))

    def test_turbofish_method_call(self):
        source_file, offset = at_cursor("fn main() { x.me<|>thod::<u8>(1); }")
        reference = find_reference_at(source_file, offset)
        self.assertEqual(reference.kind, METHOD_CALL)
        self.assertEqual(reference.text(), "x.method::<u8>(1)")


class TestClassifier(unittest.TestCase):

    def test_use_declaration_is_never_offered(self):
        oracle = CannedOracle(OracleAnswer(CandidateKind.UNQUALIFIED_NAME, frozenset({P("m::Foo")})))
        source_file, offset = at_cursor("use Fo<|>o;")
        reference = find_reference_at(source_file, offset)
        self.assertIsNone(classify(reference, oracle))
        self.assertEqual(oracle.calls, [])

    def test_resolved_reference_declines(self):
        groups, _ = run("fn main() { Fo<|>o; }", None)
        self.assertEqual(groups, [])

    def test_empty_candidates_decline(self):
        groups, _ = run("fn main() { Fo<|>o; }",
                        OracleAnswer(CandidateKind.UNQUALIFIED_NAME, frozenset()))
        self.assertEqual(groups, [])

    def test_kind_must_fit_the_node(self):
        # A single-segment path cannot be a qualifier start
        groups, _ = run("fn main() { Fo<|>o; }",
                        OracleAnswer(CandidateKind.QUALIFIER_START, frozenset({P("m")})))
        self.assertEqual(groups, [])
        # A qualified path is not an unqualified name
        groups, _ = run("fn main() { a::Fo<|>o; }",
                        OracleAnswer(CandidateKind.UNQUALIFIED_NAME, frozenset({P("m::Foo")})))
        self.assertEqual(groups, [])
        # A path is not a method call
        groups, _ = run("fn main() { Fo<|>o; }",
                        OracleAnswer(CandidateKind.TRAIT_METHOD, frozenset({P("m::T")})))
        self.assertEqual(groups, [])

    def test_candidates_are_sorted(self):
        source_file, offset = at_cursor("fn main() { Fo<|>o; }")
        reference = find_reference_at(source_file, offset)
        answer = OracleAnswer(CandidateKind.UNQUALIFIED_NAME, frozenset({P("b::Foo"), P("a::Foo")}))
        classification = classify(reference, CannedOracle(answer))
        self.assertEqual(classification.candidates, (P("a::Foo"), P("b::Foo")))

    def test_oracle_without_find_candidates_cannot_be_built(self):
        class Incomplete(ReferenceOracle):
            pass

        with self.assertRaises(TypeError):
            Incomplete()


class TestSynthesizer(unittest.TestCase):

    def test_unqualified_name(self):
        groups, source_file = run(
            "fn main() { let _ = Fo<|>o; }",
            OracleAnswer(CandidateKind.UNQUALIFIED_NAME, frozenset({P("m::Foo")})),
        )
        self.assertEqual(len(groups), 1)
        group = groups[0]
        self.assertEqual(group.id, QUALIFY_PATH)
        self.assertEqual(group.label, "Qualify Foo")
        edit = group.choices[0]
        self.assertEqual(edit.replacement, "m::Foo")
        self.assertEqual(edit.label, "Qualify as `m::Foo`")
        self.assertEqual(source_file.text[edit.target.start:edit.target.end], "Foo")

    def test_qualifier_start_replaces_leading_segment(self):
        groups, source_file = run(
            "fn main() { mod2::mod3::Item<|>; }",
            OracleAnswer(CandidateKind.QUALIFIER_START, frozenset({P("mod1")})),
        )
        edit = groups[0].choices[0]
        self.assertEqual(groups[0].label, "Qualify mod2")
        self.assertEqual(edit.label, "Qualify with `mod1`")
        self.assertEqual(edit.replacement, "mod1::mod2")
        self.assertEqual(source_file.text[edit.target.start:edit.target.end], "mod2")

    def test_trait_assoc_item(self):
        groups, source_file = run(
            "fn main() { m::S::CON<|>ST; }",
            OracleAnswer(CandidateKind.TRAIT_ASSOC_ITEM, frozenset({P("m::Tr")})),
        )
        edit = groups[0].choices[0]
        self.assertEqual(groups[0].label, "Qualify CONST")
        self.assertEqual(edit.label, "Qualify with cast as `m::Tr`")
        self.assertEqual(edit.replacement, "<m::S as m::Tr>::CONST")
        self.assertEqual(source_file.text[edit.target.start:edit.target.end], "m::S::CONST")

    def test_trait_method_without_arguments(self):
        groups, source_file = run(
            "fn main() { s.me<|>thod(); }",
            OracleAnswer(CandidateKind.TRAIT_METHOD, frozenset({P("m::Tr")}),
                         ((P("m::Tr"), SelfKind.REF),)),
        )
        edit = groups[0].choices[0]
        self.assertEqual(groups[0].label, "Qualify method")
        self.assertEqual(edit.label, "Qualify `m::Tr`")
        self.assertEqual(edit.replacement, "m::Tr::method(&s")
        self.assertEqual(source_file.text[edit.target.start:edit.target.end], "s.method(")

    def test_trait_method_with_arguments(self):
        groups, source_file = run(
            "fn main() { s.me<|>thod(1, 2); }",
            OracleAnswer(CandidateKind.TRAIT_METHOD, frozenset({P("m::Tr")}),
                         ((P("m::Tr"), SelfKind.REF_MUT),)),
        )
        edit = groups[0].choices[0]
        self.assertEqual(edit.replacement, "m::Tr::method(&mut s, ")
        self.assertEqual(source_file.text[edit.target.start:edit.target.end], "s.method(")
        edited = source_file.text[:edit.target.start] + edit.replacement + source_file.text[edit.target.end:]
        self.assertEqual(edited, "fn main() { m::Tr::method(&mut s, 1, 2); }")

    def test_trait_method_by_value(self):
        groups, _ = run(
            "fn main() { s.me<|>thod(); }",
            OracleAnswer(CandidateKind.TRAIT_METHOD, frozenset({P("m::Tr")}),
                         ((P("m::Tr"), SelfKind.VALUE),)),
        )
        self.assertEqual(groups[0].choices[0].replacement, "m::Tr::method(s")

    def test_trait_method_keeps_comment_before_arguments(self):
        groups, source_file = run(
            "fn main() { s.me<|>thod(/* c */ 42); }",
            OracleAnswer(CandidateKind.TRAIT_METHOD, frozenset({P("m::Tr")}),
                         ((P("m::Tr"), SelfKind.REF),)),
        )
        edit = groups[0].choices[0]
        self.assertEqual(source_file.text[edit.target.start:edit.target.end], "s.method(")
        edited = source_file.text[:edit.target.start] + edit.replacement + source_file.text[edit.target.end:]
        self.assertEqual(edited, "fn main() { m::Tr::method(&s, /* c */ 42); }")

    def test_comment_alone_is_not_an_argument(self):
        groups, _ = run(
            "fn main() { s.me<|>thod(/* none */); }",
            OracleAnswer(CandidateKind.TRAIT_METHOD, frozenset({P("m::Tr")}),
                         ((P("m::Tr"), SelfKind.REF),)),
        )
        self.assertEqual(groups[0].choices[0].replacement, "m::Tr::method(&s")

    def test_trait_method_turbofish_is_kept(self):
        groups, source_file = run(
            "fn main() { s.me<|>thod::<u8, String>(); }",
            OracleAnswer(CandidateKind.TRAIT_METHOD, frozenset({P("m::Tr")}),
                         ((P("m::Tr"), SelfKind.REF),)),
        )
        edit = groups[0].choices[0]
        self.assertEqual(edit.replacement, "m::Tr::method::<u8, String>(&s")
        self.assertEqual(source_file.text[edit.target.start:edit.target.end], "s.method::<u8, String>(")

    def test_one_group_many_choices(self):
        groups, _ = run(
            "fn main() { Fo<|>o; }",
            OracleAnswer(CandidateKind.UNQUALIFIED_NAME,
                         frozenset({P("c::Foo"), P("a::Foo"), P("b::Foo")})),
        )
        self.assertEqual(len(groups), 1)
        self.assertEqual([c.replacement for c in groups[0].choices], ["a::Foo", "b::Foo", "c::Foo"])
        self.assertEqual(len({c.target for c in groups[0].choices}), 1)

    def test_unknown_shape_is_an_error(self):
        source_file, offset = at_cursor("fn main() { Fo<|>o; }")
        reference = find_reference_at(source_file, offset)
        classification = Classification(reference=reference, shape=object(), candidates=(P("m::Foo"),))
        with self.assertRaises(TypeError):
            synthesize(classification, Assists(QUALIFY_PATH))


if __name__ == "__main__":
    unittest.main()
