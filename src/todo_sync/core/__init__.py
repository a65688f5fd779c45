"""Graph client and async bridging shared between the CLI and the MCP server."""

from .async_utils import run_sync
from .client import GraphTodoClient

__all__ = ["GraphTodoClient", "run_sync"]
