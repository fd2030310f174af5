"""Filesystem tools — read, write, edit, list; sandboxed to the run workspace."""

from __future__ import annotations

from pathlib import Path

from langchain_core.tools import tool

MAX_READ = 50_000


def make_filesystem_tools(workspace: Path) -> list:
    """Create filesystem tools rooted at ``workspace``; relative paths resolve inside it."""
    root = workspace.resolve()

    def _resolve(path: str) -> Path:
        p = Path(path).expanduser()
        resolved = (p if p.is_absolute() else root / p).resolve()
        if resolved != root and root not in resolved.parents:
            raise PermissionError(f"Error: path '{path}' is outside the workspace")
        return resolved

    @tool
    def read_file(path: str) -> str:
        """Read a text file from the workspace."""
        try:
            p = _resolve(path)
        except PermissionError as e:
            return str(e)
        if not p.is_file():
            return f"Error: file not found: {path}"
        content = p.read_text(encoding="utf-8", errors="replace")
        if len(content) > MAX_READ:
            return content[:MAX_READ] + f"\n\n... truncated ({len(content)} chars total)"
        return content

    @tool
    def write_file(path: str, content: str) -> str:
        """Write content to a file in the workspace, creating parent directories."""
        try:
            p = _resolve(path)
        except PermissionError as e:
            return str(e)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(content, encoding="utf-8")
        return f"Written {len(content)} chars to {path}"

    @tool
    def edit_file(path: str, old_text: str, new_text: str) -> str:
        """Replace one exact occurrence of old_text in a workspace file."""
        try:
            p = _resolve(path)
        except PermissionError as e:
            return str(e)
        if not p.is_file():
            return f"Error: file not found: {path}"
        content = p.read_text(encoding="utf-8")
        count = content.count(old_text)
        if count != 1:
            return f"Error: old_text found {count} times, must be exactly once"
        p.write_text(content.replace(old_text, new_text, 1), encoding="utf-8")
        return f"Edited {path}"

    @tool
    def list_dir(path: str = ".") -> str:
        """List a workspace directory."""
        try:
            p = _resolve(path)
        except PermissionError as e:
            return str(e)
        if not p.is_dir():
            return f"Error: not a directory: {path}"
        entries = sorted(p.iterdir(), key=lambda e: (not e.is_dir(), e.name))
        if not entries:
            return f"{path}: (empty)"
        return "\n".join(
            f"[DIR]  {e.name}" if e.is_dir() else f"[{_human_size(e.stat().st_size)}]  {e.name}"
            for e in entries
        )

    return [read_file, write_file, edit_file, list_dir]


def _human_size(size: float) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.0f}{unit}" if unit == "B" else f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}TB"
