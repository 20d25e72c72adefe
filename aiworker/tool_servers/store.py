"""aiworker/tool_servers/store.py

JSON persistence for the ordered list of tool server descriptors.
"""

from __future__ import annotations

# Standard Library
import logging
import os
import tempfile
from pathlib import Path

# Third-Party Libraries
from pydantic import TypeAdapter, ValidationError

# Local Modules
from aiworker.models import ToolServerDescriptor, TransportKind

logger = logging.getLogger(__name__)

_DESCRIPTORS = TypeAdapter(list[ToolServerDescriptor])


def default_descriptors() -> list[ToolServerDescriptor]:
    """Servers seeded on first run: a browser and a step-by-step reasoner."""
    return [
        ToolServerDescriptor(
            id="default-playwright",
            name="Playwright",
            description="Browser automation: open pages, click, type and read content.",
            transport_kind=TransportKind.PROCESS,
            command="npx",
            args=["-y", "@playwright/mcp@latest"],
        ),
        ToolServerDescriptor(
            id="default-sequential-thinking",
            name="Sequential Thinking",
            description="Structured, step-by-step problem solving.",
            transport_kind=TransportKind.PROCESS,
            command="npx",
            args=["-y", "@modelcontextprotocol/server-sequential-thinking"],
        ),
    ]


class DescriptorStore:
    """Loads and saves descriptors as a JSON array.

    Args:
        path: File to read and write.  Missing files yield the defaults.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> list[ToolServerDescriptor]:
        if not self.path.exists():
            logger.info("[store] %s not found, using default tool servers", self.path)
            return default_descriptors()
        try:
            descriptors = _DESCRIPTORS.validate_json(self.path.read_bytes())
        except ValidationError as exc:
            logger.error("[store] %s is invalid, using default tool servers: %s", self.path, exc)
            return default_descriptors()
        logger.info("[store] loaded %d tool servers from %s", len(descriptors), self.path)
        return descriptors

    def save(self, descriptors: list[ToolServerDescriptor]) -> None:
        """Write atomically so a crash mid-save never leaves a truncated file."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = _DESCRIPTORS.dump_json(descriptors, indent=2)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        logger.debug("[store] saved %d tool servers to %s", len(descriptors), self.path)
