"""servers/demo_tools/server.py

FastMCP stdio server with a few harmless local tools.

Register it as a process tool server with command ``python`` and args
``["servers/demo_tools/server.py"]``; the command resolves to the bundled
interpreter.  File tools are confined to ``DEMO_TOOLS_ROOT`` (default: the
working directory).
"""

from __future__ import annotations

# Standard Library
import json
import logging
import os
from datetime import datetime
from pathlib import Path

# Third-Party Libraries
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

logger = logging.getLogger(__name__)

MAX_READ_BYTES = 64_000

mcp: FastMCP = FastMCP(
    "aiworker-demo-tools",
    instructions="Local demo tools: current time, directory listing and text file reading.",
)


def _root() -> Path:
    return Path(os.getenv("DEMO_TOOLS_ROOT", os.getcwd())).resolve()


def _confine(path: str) -> Path:
    """Resolve ``path`` under the tool root, refusing anything outside it."""
    root = _root()
    target = (root / path).resolve()
    if target != root and root not in target.parents:
        raise ToolError(f"Path is outside the allowed directory: {path}")
    return target


@mcp.tool()
def get_current_time() -> str:
    """Get the current local date and time.

    Returns:
        JSON with ISO 8601 and human-readable forms.
    """
    now = datetime.now()
    return json.dumps(
        {
            "iso_format": now.isoformat(),
            "readable": now.strftime("%A, %B %d, %Y at %I:%M:%S %p"),
        },
        indent=2,
    )


@mcp.tool()
def list_files(path: str = ".") -> str:
    """List the entries of a directory.

    Args:
        path: Directory relative to the tool root.

    Returns:
        JSON list of ``{"name", "type", "size"}`` entries, directories first.
    """
    target = _confine(path)
    if not target.is_dir():
        raise ToolError(f"Not a directory: {path}")
    entries = [
        {
            "name": child.name,
            "type": "directory" if child.is_dir() else "file",
            "size": child.stat().st_size if child.is_file() else None,
        }
        for child in target.iterdir()
    ]
    entries.sort(key=lambda e: (e["type"] != "directory", e["name"]))
    return json.dumps(entries, indent=2)


@mcp.tool()
def read_file(path: str, max_bytes: int = MAX_READ_BYTES) -> str:
    """Read a UTF-8 text file.

    Args:
        path: File relative to the tool root.
        max_bytes: Truncate after this many bytes.

    Returns:
        The file content, with a marker when truncated.
    """
    target = _confine(path)
    if not target.is_file():
        raise ToolError(f"File not found: {path}")
    limit = max(1, min(max_bytes, MAX_READ_BYTES))
    with target.open("rb") as handle:
        data = handle.read(limit + 1)
    text = data[:limit].decode("utf-8", errors="replace")
    if len(data) > limit:
        text += f"\n\n[truncated after {limit} bytes]"
    logger.info("read_file: %s (%d bytes)", target, min(len(data), limit))
    return text


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    mcp.run()
