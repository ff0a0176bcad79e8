"""
In-memory workspaces from annotated text.

    //- /lib.rs crate:dep
    pub struct Struct;

    //- /main.rs crate:main deps:dep
    fn main() { Struct<|> }

Each `//-` header starts a file.  `crate:NAME` makes the file the root of a
crate and `deps:a,b` lists the crates it depends on.  Files without
`crate:` are reached through `mod` declarations.  Text without any header
is a single file `/main.rs`, root of crate `main`.  `<|>` marks the cursor.
"""

import textwrap
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from qualify.workspace_index import CrateManifest, WorkspaceIndex

CURSOR_MARKER = "<|>"
_HEADER = "//-"


class FixtureError(ValueError):
    pass


@dataclass
class Fixture:
    files: Dict[str, str] = field(default_factory=dict)
    manifests: List[CrateManifest] = field(default_factory=list)
    cursor_file: Optional[str] = None
    cursor_offset: Optional[int] = None

    def build_index(self) -> WorkspaceIndex:
        index = WorkspaceIndex(sources={path: text.encode("utf-8") for path, text in self.files.items()})
        for manifest in self.manifests:
            index.add_crate(manifest)
        index.build()
        return index


def _trim(text: str) -> str:
    return textwrap.dedent(text).strip("\n") + "\n"


def parse_fixture(text: str) -> Fixture:
    fixture = Fixture()
    text = _trim(text)

    if not text.lstrip().startswith(_HEADER):
        text = f"{_HEADER} /main.rs crate:main\n{text}"

    current_path = None
    current_lines: List[str] = []
    chunks = []
    for line in text.splitlines(keepends=True):
        if line.startswith(_HEADER):
            if current_path is not None:
                chunks.append((current_path, current_lines))
            current_path = line[len(_HEADER):].strip()
            current_lines = []
        else:
            current_lines.append(line)
    if current_path is not None:
        chunks.append((current_path, current_lines))

    for header, lines in chunks:
        parts = header.split()
        if not parts:
            raise FixtureError("fixture header without a path")
        path = parts[0].lstrip("/")
        meta = dict(p.split(":", 1) for p in parts[1:] if ":" in p)

        body = _trim("".join(lines)) if "".join(lines).strip() else ""
        if CURSOR_MARKER in body:
            if fixture.cursor_file is not None:
                raise FixtureError("more than one cursor marker")
            before, _, after = body.partition(CURSOR_MARKER)
            fixture.cursor_file = path
            fixture.cursor_offset = len(before.encode("utf-8"))
            body = before + after
        fixture.files[path] = body

        if "crate" in meta:
            deps = [d for d in meta.get("deps", "").split(",") if d]
            fixture.manifests.append(CrateManifest(
                name=meta["crate"], root_file=path, deps={d: d for d in deps},
            ))

    if not fixture.manifests:
        first = next(iter(fixture.files))
        fixture.manifests.append(CrateManifest(name="main", root_file=first))
    return fixture
