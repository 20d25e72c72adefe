"""AI-Worker orchestration core: LLM backends, MCP tool servers and the turn loop."""

__version__ = "0.1.0"
