#!/usr/bin/env python3
"""
MCP server for Statistics Sweden (SCB) PxWebApi v2 using FastMCP.
"""

import logging
import os
import sys
from typing import Any, Dict, List, Optional, Union

from dotenv import load_dotenv
from fastmcp import FastMCP

from app.errors import SCBError
from app.scb_client import SCBClient
from app.tools import TOOLS, run_tool
from config_loader import get_config

# ============================================================================
# Server Initialization
# ============================================================================

load_dotenv()

# stdout carries the MCP stdio channel, so logs go to stderr
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger("mcp_server")

config = get_config()
mcp = FastMCP(config.server_name)
client = SCBClient()

print("Creating MCP server...", file=sys.stderr)
print(f"✓ SCB API: {client.base_url}", file=sys.stderr)
print(f"✓ {len(TOOLS)} tools registered", file=sys.stderr)

Selection = Dict[str, Union[List[str], str]]


async def _run(name: str, arguments: Dict[str, Any]) -> dict:
    """Run a tool, turning SCB errors into a structured error payload."""
    try:
        return await run_tool(client, name, arguments)
    except SCBError as exc:
        logger.warning("Tool %s failed with %s: %s", name, exc.kind, exc.message)
        return {"error": exc.to_dict(), "tool": name}


# ============================================================================
# MCP Tools
# ============================================================================


@mcp.tool()
async def scb_get_api_status() -> dict:
    """Get API configuration and rate limit information from Statistics Sweden."""
    return await _run("scb_get_api_status", {})


@mcp.tool()
async def scb_search_tables(
    query: Optional[str] = None,
    page_size: int = 20,
    page_number: int = 1,
    past_days: Optional[int] = None,
    include_discontinued: bool = False,
    language: str = "en",
) -> dict:
    """
    Search for statistical tables in the SCB database.

    Args:
        query: Search term, e.g. 'population' or 'befolkning'. Empty lists all tables.
        page_size: Results per page (max 100)
        page_number: Page number, starting at 1
        past_days: Only tables updated within this many days
        include_discontinued: Include discontinued tables
        language: 'en' or 'sv'
    """
    return await _run(
        "scb_search_tables",
        {
            "query": query,
            "page_size": page_size,
            "page_number": page_number,
            "past_days": past_days,
            "include_discontinued": include_discontinued,
            "language": language,
        },
    )


@mcp.tool()
async def scb_get_table_info(table_id: str, language: str = "en") -> dict:
    """Get detailed metadata about a table: its variables, value counts and sample values."""
    return await _run("scb_get_table_info", {"table_id": table_id, "language": language})


@mcp.tool()
async def scb_get_table_data(table_id: str, selection: Optional[Selection] = None, language: str = "en") -> dict:
    """
    Get statistical data from a table as flat records.

    The selection is checked against the table before any data is fetched, and
    invalid variables or values come back with suggestions instead of data.

    Args:
        table_id: Table ID, e.g. 'TAB638'
        selection: {variable: [values]}. Variables and values may be codes, labels
                   or common names ('region', 'kön', 'women'). Use '*' for all values,
                   or expressions like 'TOP(5)'.
        language: 'en' or 'sv'
    """
    return await _run("scb_get_table_data", {"table_id": table_id, "selection": selection, "language": language})


@mcp.tool()
async def scb_check_usage() -> dict:
    """Check current API usage and rate limits. Makes no API call."""
    return await _run("scb_check_usage", {})


@mcp.tool()
async def scb_search_regions(query: str, language: str = "en") -> dict:
    """Search region codes (country, counties, municipalities) by name, e.g. 'Stockholm'."""
    return await _run("scb_search_regions", {"query": query, "language": language})


@mcp.tool()
async def scb_find_region_code(query: str, table_id: Optional[str] = None, language: str = "en") -> dict:
    """
    Find the exact region code for a municipality or county.

    Args:
        query: Region name, e.g. 'Göteborg'
        table_id: Optional table whose region variable is searched
        language: 'en' or 'sv'
    """
    return await _run("scb_find_region_code", {"query": query, "table_id": table_id, "language": language})


@mcp.tool()
async def scb_get_table_variables(table_id: str, variable_name: Optional[str] = None, language: str = "en") -> dict:
    """Get available variables and values for a table, optionally for a single variable."""
    return await _run(
        "scb_get_table_variables", {"table_id": table_id, "variable_name": variable_name, "language": language}
    )


@mcp.tool()
async def scb_test_selection(table_id: str, selection: Selection, language: str = "en") -> dict:
    """Test if a selection is valid for a table, with suggestions for invalid variables or values."""
    return await _run("scb_test_selection", {"table_id": table_id, "selection": selection, "language": language})


@mcp.tool()
async def scb_preview_data(table_id: str, selection: Optional[Selection] = None, language: str = "en") -> dict:
    """Get a small preview of a table. Unselected variables are narrowed to a single value."""
    return await _run("scb_preview_data", {"table_id": table_id, "selection": selection, "language": language})


@mcp.tool()
async def scb_browse_folders(folder_id: Optional[str] = None, language: str = "en") -> dict:
    """Browse database folders. Not available in API v2; use scb_search_tables instead."""
    return await _run("scb_browse_folders", {"folder_id": folder_id, "language": language})


# ============================================================================
# Main Entry Point
# ============================================================================


def main() -> None:
    """Run the MCP server."""
    transport = os.getenv("MCP_TRANSPORT", "stdio").lower()
    if transport == "http":
        print(f"Starting HTTP transport on port {config.http_port}...", file=sys.stderr)
        mcp.run(transport="http", host="0.0.0.0", port=config.http_port)
    else:
        print("Starting stdio transport...", file=sys.stderr)
        mcp.run(transport="stdio")


if __name__ == "__main__":
    print("Script starting...", file=sys.stderr)
    try:
        main()
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        import traceback

        traceback.print_exc(file=sys.stderr)
