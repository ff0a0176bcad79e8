"""
Tests for Cargo workspace discovery and indexing against the on-disk mock
workspace in tests/mock_workspace:

  app            → depends on geometry-utils by path, serde from the registry
  geometry-utils → lib.rs, shapes.rs, shapes/units.rs, internal/mod.rs
"""

import os
import sys
import tempfile
import unittest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from qualify.edit_applier import apply_edit
from qualify.fix_engine import FixEngine
from qualify.workspace_index import CrateManifest, WorkspaceIndex, discover_crates

MOCK_WORKSPACE = os.path.join(os.path.dirname(os.path.abspath(__file__)), "mock_workspace")
MAIN_RS = "app/src/main.rs"


def write(root, rel_path, text):
    full_path = os.path.join(root, *rel_path.split("/"))
    os.makedirs(os.path.dirname(full_path), exist_ok=True)
    with open(full_path, "w", encoding="utf-8") as f:
        f.write(text)


class TestDiscovery(unittest.TestCase):

    def test_packages_found_and_virtual_manifest_skipped(self):
        manifests = {m.name: m for m in discover_crates(MOCK_WORKSPACE)}
        self.assertEqual(set(manifests), {"app", "geometry_utils"})
        self.assertEqual(manifests["app"].root_file, MAIN_RS)
        self.assertEqual(manifests["geometry_utils"].root_file, "geometry/src/lib.rs")
        self.assertEqual(manifests["app"].manifest_path, "app/Cargo.toml")

    def test_only_path_dependencies_are_linked(self):
        manifests = {m.name: m for m in discover_crates(MOCK_WORKSPACE)}
        # dashes become underscores in the binding; serde has no sources here
        self.assertEqual(manifests["app"].deps, {"geometry_utils": "geometry_utils"})
        self.assertEqual(manifests["geometry_utils"].deps, {})

    def test_library_target_preferred(self):
        with tempfile.TemporaryDirectory() as tmp:
            write(tmp, "tool/Cargo.toml", '[package]\nname = "tool"\nversion = "0.1.0"\n')
            write(tmp, "tool/src/lib.rs", "pub fn run() {}\n")
            write(tmp, "tool/src/main.rs", "fn main() { tool::run(); }\n")
            write(tmp, "target/debug/Cargo.toml", '[package]\nname = "ignored"\n')
            manifests = discover_crates(tmp)
        self.assertEqual([(m.name, m.root_file) for m in manifests], [("tool", "tool/src/lib.rs")])

    def test_broken_manifest_is_skipped(self):
        with tempfile.TemporaryDirectory() as tmp:
            write(tmp, "bad/Cargo.toml", "[package\nname = ")
            write(tmp, "good/Cargo.toml", '[package]\nname = "good"\n')
            write(tmp, "good/src/lib.rs", "")
            manifests = discover_crates(tmp)
        self.assertEqual([m.name for m in manifests], ["good"])


class TestIndex(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.index = WorkspaceIndex(MOCK_WORKSPACE)
        cls.index.build()

    def test_summary(self):
        summary = self.index.get_summary()
        self.assertEqual(summary["crates"], ["app", "geometry_utils"])
        self.assertEqual(summary["files_indexed"], 5)
        self.assertEqual(summary["impls"], 1)

    def test_module_files_followed(self):
        for path in ("geometry/src/shapes.rs", "geometry/src/shapes/units.rs",
                     "geometry/src/internal/mod.rs"):
            self.assertIsNotNone(self.index.get_file(path), path)
            self.assertEqual(self.index.crate_of(path).name, "geometry_utils")

    def test_module_at(self):
        self.assertEqual(self.index.module_at("geometry/src/shapes/units.rs", 0).path, ["shapes", "units"])
        self.assertEqual(self.index.module_at("geometry/src/internal/mod.rs", 0).path, ["internal"])
        self.assertTrue(self.index.module_at(MAIN_RS, 10).is_root)

    def test_dependency_closure(self):
        app = self.index.crates["app"]
        self.assertEqual([c.name for c in self.index.dependency_closure(app)], ["app", "geometry_utils"])

    def test_items_registered(self):
        geometry = self.index.crates["geometry_utils"]
        self.assertEqual([i.kind for i in geometry.items_by_name["Circle"]], ["struct"])
        self.assertEqual([i.kind for i in geometry.items_by_name["Area"]], ["trait"])
        self.assertIn("area", geometry.items_by_name["Area"][0].assoc_items)

    def test_unknown_file(self):
        self.assertIsNone(self.index.get_file("app/src/missing.rs"))
        self.assertEqual(FixEngine(self.index).compute_qualify_fixes("app/src/missing.rs", 0), [])


class TestQualifyInWorkspace(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.index = WorkspaceIndex(MOCK_WORKSPACE)
        cls.index.build()
        cls.engine = FixEngine(cls.index)
        with open(os.path.join(MOCK_WORKSPACE, "app", "src", "main.rs"), "rb") as f:
            cls.source = f.read()

    def fixes_at(self, needle: bytes, delta: int = 1):
        return self.engine.compute_qualify_fixes(MAIN_RS, self.source.index(needle) + delta)

    def test_struct_in_nested_module_file(self):
        groups = self.fixes_at(b"Meters")
        self.assertEqual([c.replacement for c in groups[0].choices],
                         ["geometry_utils::shapes::units::Meters"])

    def test_trait_method_from_dependency(self):
        groups = self.fixes_at(b"area()", 2)
        edit = groups[0].choices[0]
        self.assertEqual(edit.label, "Qualify `geometry_utils::shapes::Area`")
        edited = apply_edit(self.source, edit)
        self.assertIn(b"let a = geometry_utils::shapes::Area::area(&c);", edited)

    def test_private_module_item_not_offered(self):
        self.assertEqual(self.fixes_at(b"Hidden"), [])

    def test_imported_struct_resolves(self):
        self.assertEqual(self.fixes_at(b"Circle {"), [])

    def test_source_overlay_wins_over_disk(self):
        overlay = b"fn main() {\n    let m = units::Meters;\n}\n"
        index = WorkspaceIndex(MOCK_WORKSPACE, sources={MAIN_RS: overlay})
        index.build()
        groups = FixEngine(index).compute_qualify_fixes(MAIN_RS, overlay.index(b"units") + 1)
        self.assertEqual(groups[0].choices[0].replacement, "geometry_utils::shapes::units")
        self.assertEqual(groups[0].choices[0].label, "Qualify as `geometry_utils::shapes::units`")


class TestManualCrates(unittest.TestCase):

    def test_add_crate_with_renamed_dependency(self):
        index = WorkspaceIndex(sources={
            "lib.rs": b"pub struct Thing;\n",
            "main.rs": b"fn main() {\n    let _t = Thing;\n}\n",
        })
        index.add_crate(CrateManifest(name="things", root_file="lib.rs"))
        index.add_crate(CrateManifest(name="main", root_file="main.rs", deps={"renamed": "things"}))
        index.build()
        source = index.get_file("main.rs").source
        groups = FixEngine(index).compute_qualify_fixes("main.rs", source.index(b"Thing") + 1)
        self.assertEqual(groups[0].choices[0].replacement, "renamed::Thing")

    def test_dependency_cycle_does_not_hang(self):
        index = WorkspaceIndex(sources={"a.rs": b"pub struct A;\n", "b.rs": b"pub struct B;\n"})
        index.add_crate(CrateManifest(name="a", root_file="a.rs", deps={"b": "b"}))
        index.add_crate(CrateManifest(name="b", root_file="b.rs", deps={"a": "a"}))
        index.build()
        self.assertEqual(index.get_summary()["crates"], ["a", "b"])


if __name__ == "__main__":
    unittest.main()
