"""MCP server for the note/task sync using stdio transport.

Lets AI agents run syncs between dated Markdown notes and Microsoft To Do
and inspect the identity mapping through standardized tools.

Transport: stdio (for Claude Desktop/Code integration)
Protocol: JSON-RPC 2.0 over MCP
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..core.async_utils import run_sync
from ..logger import setup_logging
from ..sync.engine import Reconciler
from ..version import check_version_consistency
from .lifespan import server_lifespan
from .tools import (
    ALL_SPECS,
    ToolRegistry,
    build_error_response,
    load_permissions_file,
)
from .tools.registry import ToolSpec

logger = logging.getLogger(__name__)

server = Server("todo-sync")

# Initialized in main() from the lifespan context
_reconciler: Reconciler | None = None

_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Ping tool (always available, no permission required)
# ---------------------------------------------------------------------------


async def _handle_ping(
    reconciler: Reconciler, args: dict
) -> types.CallToolResult:
    """Handle ping tool -- test Microsoft Graph connectivity."""
    try:
        user = await run_sync(reconciler.remote.validate_connection)
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=f"todo-sync connected to Microsoft Graph as {user or 'unknown user'}.",
                )
            ]
        )
    except Exception as e:
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=f"Microsoft Graph connection failed: {e}. Check TODO_ACCESS_TOKEN.",
                )
            ],
            isError=True,
        )


PING_SPEC = ToolSpec(
    tool=types.Tool(
        name="ping",
        description="Test Microsoft Graph connectivity and return the signed-in user",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    permissions=frozenset(),
    handler=_handle_ping,
)


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_reconciler() -> Reconciler:
    """Get the global Reconciler instance.

    Raises:
        RuntimeError: If the server lifespan has not started
    """
    if _reconciler is None:
        raise RuntimeError(
            "Reconciler not initialized. Server lifespan not started."
        )
    return _reconciler


def set_reconciler(reconciler: Reconciler | None) -> None:
    global _reconciler
    _reconciler = reconciler


def get_registry() -> ToolRegistry:
    """Get the global ToolRegistry instance.

    Raises:
        RuntimeError: If registry is not initialized
    """
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    global _registry
    _registry = registry


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """Return all registered (and permitted) tools."""
    return get_registry().list_tools()


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Handle tool execution via ToolRegistry dispatch."""
    reconciler = get_reconciler()
    try:
        return await get_registry().call_tool(name, arguments, reconciler)
    except ValueError as e:
        # Unknown or filtered-out tool name
        return build_error_response(
            "unknown_tool",
            str(e),
            "Use list_tools to see available tools.",
        )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


def build_registry(permissions_file: str | None = None) -> ToolRegistry:
    """Create the ToolRegistry, optionally filtered by a permissions file."""
    allowed_permissions = None
    if permissions_file:
        allowed_permissions = load_permissions_file(permissions_file)
        logger.info(
            "Loaded %d permissions from %s",
            len(allowed_permissions),
            permissions_file,
        )
    all_specs = [PING_SPEC] + ALL_SPECS
    registry = ToolRegistry(all_specs, allowed_permissions)
    logger.info(
        "Registered %d tools (of %d total)",
        registry.tool_count(),
        len(all_specs),
    )
    return registry


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    Logging goes to a file only; stdout carries the JSON-RPC stream.

    Args:
        config_overrides: Optional dict of CLI values (access_token,
            vault_path, list_name, state_dir, log_file, permissions_file)
    """
    overrides = config_overrides or {}

    # Must run before stdio_server so nothing reaches stdout
    setup_logging(mode="mcp", log_file=overrides.get("log_file"))

    is_consistent, message = check_version_consistency()
    if not is_consistent:
        logger.warning(message)
        sys.stderr.write(f"Warning: {message}\n")
    else:
        logger.info(message)

    permissions_file = overrides.get("permissions_file")
    registry = build_registry(permissions_file)
    if permissions_file:
        print(
            f"Permissions file: {permissions_file} "
            f"({registry.tool_count()} tools enabled)",
            file=sys.stderr,
        )
    set_registry(registry)

    # set_reconciler() is called here rather than in the lifespan so that
    # running this file as __main__ does not update a second module copy.
    async with server_lifespan(config_overrides=overrides) as ctx:
        set_reconciler(ctx["reconciler"])
        try:
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name="todo-sync",
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(read_stream, write_stream, init_options)
        finally:
            set_reconciler(None)
            set_registry(None)


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    parser = argparse.ArgumentParser(
        description="todo-sync MCP server - sync dated notes with Microsoft To Do",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config (from .env or .todo_sync/config.yml)
  todo-sync-mcp

  # Point at a vault
  todo-sync-mcp --vault ~/Notes

  # Expose only read-only tools
  todo-sync-mcp --permissions-file ~/.config/todo_sync/read-only.permissions

Note: This server uses stdio transport for JSON-RPC communication with MCP clients.
All user-facing messages are written to stderr.
        """,
    )
    parser.add_argument(
        "--vault",
        help="Vault root (takes precedence over TODO_VAULT_PATH and config files)",
    )
    parser.add_argument(
        "--list-name",
        help="Task list display name (takes precedence over TODO_LIST_NAME)",
    )
    parser.add_argument(
        "--state-dir",
        help="Directory for the identity mapping (relative paths are under the vault)",
    )
    parser.add_argument(
        "--log-file",
        default="/tmp/todo-sync.log",
        help="Log file path (default: /tmp/todo-sync.log)",
    )
    parser.add_argument(
        "--permissions-file",
        help="Path to permissions file restricting available tools. "
        "Format: one permission per line (SYNC_VIEW, SYNC_RUN, IDENTITY_ADMIN), # for comments.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"todo-sync version {__version__}",
    )

    args = parser.parse_args()

    config_overrides = {}
    if args.vault:
        config_overrides["vault_path"] = args.vault
    if args.list_name:
        config_overrides["list_name"] = args.list_name
    if args.state_dir:
        config_overrides["state_dir"] = args.state_dir
    if args.log_file:
        config_overrides["log_file"] = args.log_file
    if args.permissions_file:
        config_overrides["permissions_file"] = args.permissions_file

    try:
        asyncio.run(main(config_overrides=config_overrides))
    except RuntimeError:
        # Already reported on stderr by the lifespan
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
