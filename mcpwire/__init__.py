"""Wire-level building blocks for Model Context Protocol sessions: JSON-RPC framing, method dispatch, tools and streamable HTTP helpers."""

__version__ = "0.1.0"
__all__ = ["eventid", "shared", "tool", "transport", "util"]