"""Filesystem read/write tools for CLI agents."""

from pathlib import Path

from cadre.tools.registry import ToolRegistry, tool

MAX_READ_CHARS = 20_000


@tool(description="Read contents of a file")
async def read_file(path: str) -> str:
    """Read and return the contents of a file.

    Args:
        path: Path to the file to read (can be relative or absolute)

    Returns:
        File contents, truncated to 20KB
    """
    file_path = Path(path).expanduser().resolve()

    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    if not file_path.is_file():
        raise IsADirectoryError(f"Path is not a file: {path}")

    content = file_path.read_text(encoding="utf-8", errors="replace")
    if len(content) > MAX_READ_CHARS:
        omitted = len(content) - MAX_READ_CHARS
        content = content[:MAX_READ_CHARS] + f"\n... (truncated, {omitted} chars omitted)"
    return content


@tool(description="Write content to a file", requires_confirmation=True)
async def write_file(path: str, content: str, append: bool = False) -> str:
    """Write content to a file.

    Args:
        path: Path to the file to write (can be relative or absolute)
        content: Content to write to the file
        append: Append instead of overwriting

    Returns:
        Confirmation message
    """
    file_path = Path(path).expanduser().resolve()
    file_path.parent.mkdir(parents=True, exist_ok=True)

    with open(file_path, "a" if append else "w", encoding="utf-8") as f:
        f.write(content)

    action = "appended to" if append else "written to"
    return f"Successfully {action} {path} ({len(content)} chars)"


@tool(description="List the entries of a directory")
async def list_directory(path: str = ".") -> str:
    """List files and subdirectories, directories marked with a trailing slash.

    Args:
        path: Directory to list
    """
    dir_path = Path(path).expanduser().resolve()
    if not dir_path.is_dir():
        raise NotADirectoryError(f"Not a directory: {path}")

    entries = sorted(dir_path.iterdir(), key=lambda p: (not p.is_dir(), p.name))
    return "\n".join(f"{p.name}/" if p.is_dir() else p.name for p in entries) or "(empty)"


def filesystem_tools() -> ToolRegistry:
    """Registry holding the filesystem tools."""
    return ToolRegistry([read_file, write_file, list_directory])
