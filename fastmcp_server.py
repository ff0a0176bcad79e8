"""
Rust Qualify Path — MCP Server

Exposes the qualify_path assist via the Model Context Protocol:

  1. load_workspace     — discover crates from Cargo.toml files, build the index
  2. workspace_summary  — crates, files, items and impls indexed
  3. qualify_path       — list qualification choices for the name at a position
  4. apply_qualify_fix  — apply one choice, verify the re-parse, re-index

Logging is configured from the environment:
  QUALIFY_LOG               env_logger-style filter, e.g. "info,qualify.semantic_oracle=debug"
  QUALIFY_LOG_FILE          write records to this file instead of stderr
  QUALIFY_LOG_NO_BUFFERING  flush after every record when set
"""

from mcp.server.fastmcp import FastMCP
import os
import sys

# Ensure qualify modules are importable
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from qualify.context_provider import ContextProvider, offset_to_line_col
from qualify.edit_applier import EditApplier
from qualify.fix_engine import FixEngine
from qualify.logger import configure_logging
from qualify.workspace_index import WorkspaceIndex

# ═══════════════════════════════════════════════════════════════════════
#  Server Setup
# ═══════════════════════════════════════════════════════════════════════

mcp = FastMCP("Rust Qualify Path")

workspace_index = None
context_provider = None
fix_engine = None
edit_applier = None


def _build(workspace_root: str):
    global workspace_index, fix_engine
    workspace_index = WorkspaceIndex(workspace_root)
    workspace_index.build()
    fix_engine = FixEngine(workspace_index)


def _compute(file_path: str, line: int, column: int):
    """Returns (groups, offset, error_message).  Exactly one of groups/error is meaningful."""
    norm_path = file_path.replace("\\", "/")
    offset = context_provider.offset_at(norm_path, line, column)
    if offset is None:
        return None, None, f"Error: Position {line}:{column} is not inside `{norm_path}`."
    if workspace_index.get_file(norm_path) is None:
        crates = ", ".join(workspace_index.get_summary()["crates"]) or "none"
        return None, None, (f"Error: `{norm_path}` is not part of any indexed crate "
                            f"(crates: {crates}). Check the path or run `load_workspace`.")
    return fix_engine.compute_qualify_fixes(norm_path, offset), offset, None


# ═══════════════════════════════════════════════════════════════════════
#  Tool 1 — Load Workspace
# ═══════════════════════════════════════════════════════════════════════

@mcp.tool()
def load_workspace(workspace_root: str) -> str:
    """
    Indexes a Rust workspace for name resolution.

    Every Cargo.toml with a [package] table under workspace_root becomes a
    crate; path dependencies link crates together.  Modules declared with
    `mod name;` are followed to name.rs or name/mod.rs.

    Args:
        workspace_root: Root directory of the Rust workspace.
    """
    global context_provider, edit_applier

    if not os.path.isdir(workspace_root):
        return f"Error: Workspace root not found at {workspace_root}"

    try:
        context_provider = ContextProvider(workspace_root)
        edit_applier = EditApplier(workspace_root)
        _build(workspace_root)
    except Exception as e:
        return f"Error loading workspace: {e}"

    idx = workspace_index.get_summary()
    if not idx["crates"]:
        return f"No crates found under {workspace_root} (no Cargo.toml with a [package] table)."
    return (
        f"Successfully indexed {len(idx['crates'])} crate(s): {', '.join(idx['crates'])}.\n"
        f"Files: {idx['files_indexed']}, items: {idx['items']}, impls: {idx['impls']}, "
        f"macros: {idx['macros']}."
    )


# ═══════════════════════════════════════════════════════════════════════
#  Tool 2 — Workspace Summary
# ═══════════════════════════════════════════════════════════════════════

@mcp.tool()
def workspace_summary() -> str:
    """Shows what the last load_workspace indexed."""
    if workspace_index is None or not workspace_index.is_built:
        return "Error: No workspace loaded. Call load_workspace first."

    idx = workspace_index.get_summary()
    result = "## Workspace Index\n\n| Crate | Root | Dependencies |\n|-------|------|--------------|\n"
    for name in idx["crates"]:
        crate = workspace_index.crates[name]
        deps = ", ".join(f"{b}→{c}" if b != c else c for b, c in sorted(crate.deps.items())) or "—"
        result += f"| `{name}` | `{crate.root_file}` | {deps} |\n"
    result += (
        f"\n**Totals:** {idx['files_indexed']} files, {idx['items']} items, "
        f"{idx['impls']} impls, {idx['macros']} macros.\n"
    )
    return result


# ═══════════════════════════════════════════════════════════════════════
#  Tool 3 — Qualify Path
# ═══════════════════════════════════════════════════════════════════════

@mcp.tool()
def qualify_path(file_path: str, line: int, column: int) -> str:
    """
    Lists every way to qualify the unresolved name at a position.

    Handles plain names (`PubStruct` → `PubMod::PubStruct`), unresolved
    path starts, trait associated items (`<T as Trait>::item`) and trait
    method calls (`Trait::method(&recv)`).

    Args:
        file_path: Path of the file relative to the workspace root.
        line:      1-based line of the cursor.
        column:    1-based column of the cursor.
    """
    if fix_engine is None or context_provider is None:
        return "Error: No workspace loaded. Call load_workspace first."

    groups, offset, error = _compute(file_path, line, column)
    if error:
        return error
    if not groups:
        return (f"No qualification available at `{file_path}:{line}:{column}`. "
                f"The name resolves already, is inside a `use` item, or nothing in the "
                f"workspace would make it resolve.")

    result = ""
    for group in groups:
        start_line, start_col = offset_to_line_col(context_provider.read_bytes(file_path), group.target.start)
        result += group.to_markdown()
        result += f"\nTarget starts at {start_line}:{start_col}.\n"
        for i, choice in enumerate(group.choices):
            preview = context_provider.preview_edit(file_path, choice)
            if preview is None:
                continue
            before, after = preview
            result += f"\n**Choice {i}** — {choice.label}\n```diff\n- {before.strip()}\n+ {after.strip()}\n```\n"
    result += "\nCall `apply_qualify_fix` with the choice number to apply one."
    return result


# ═══════════════════════════════════════════════════════════════════════
#  Tool 4 — Apply Qualify Fix
# ═══════════════════════════════════════════════════════════════════════

@mcp.tool()
def apply_qualify_fix(file_path: str, line: int, column: int, choice: int = 0) -> str:
    """
    Applies one qualification choice to the file.

    The edited file is re-parsed; if the edit introduces syntax errors the
    file is left unchanged.  The workspace is re-indexed afterwards.

    Args:
        file_path: Path of the file relative to the workspace root.
        line:      1-based line of the cursor.
        column:    1-based column of the cursor.
        choice:    Index of the choice as listed by qualify_path.
    """
    if fix_engine is None or edit_applier is None:
        return "Error: No workspace loaded. Call load_workspace first."

    groups, offset, error = _compute(file_path, line, column)
    if error:
        return error
    if not groups:
        return f"Error: No qualification available at `{file_path}:{line}:{column}`."

    choices = groups[0].choices
    if not 0 <= choice < len(choices):
        return f"Error: Choice {choice} out of range; {len(choices)} choice(s) available."
    edit = choices[choice]

    try:
        result = edit_applier.apply_to_file(file_path.replace("\\", "/"), edit)
    except Exception as e:
        return f"Error applying fix: {e}"
    if not result.applied:
        return f"Error: {result.message}"

    try:
        _build(workspace_index.workspace_root)
    except Exception as e:
        return f"Applied `{edit.label}`, but re-indexing failed: {e}"

    new_line, _ = offset_to_line_col(result.content, edit.target.start)
    return (
        f"Successfully applied `{edit.label}` to `{file_path}`.\n\n"
        f"```rust\n{context_provider.get_line(file_path, new_line).rstrip()}\n```"
    )


if __name__ == "__main__":
    configure_logging(
        log_file=os.environ.get("QUALIFY_LOG_FILE"),
        no_buffering=bool(os.environ.get("QUALIFY_LOG_NO_BUFFERING")),
        filter=os.environ.get("QUALIFY_LOG"),
    )
    # Debug: Print loaded tools to stderr (visible in MCP logs)
    try:
        if hasattr(mcp, "_tool_manager") and hasattr(mcp._tool_manager, "_tools"):
            tools = mcp._tool_manager._tools.keys()
            print(f"DEBUG: Qualify server starting with {len(tools)} tools: {list(tools)}", file=sys.stderr)
        else:
            print("DEBUG: Qualify server starting (cannot inspect tools)", file=sys.stderr)
    except Exception as e:
        print(f"DEBUG: Error inspecting tools: {e}", file=sys.stderr)

    mcp.run()
