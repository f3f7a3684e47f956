"""MySQL 읽기 전용 MCP 서버 - show_tables / describe_table / execute_query Tool 제공"""

import json
import logging
from typing import Any

from mcp.server import Server
from mcp.types import TextContent, Tool

from mysql_mcp.context import AppContext
from mysql_mcp.tools import describe_table, execute_query, show_tables
from mysql_mcp.tools.results import error_result

logger = logging.getLogger("MCP_SERVER")

SERVER_NAME = "mysql-tools"


def build_tools(max_rows: int) -> list[Tool]:
    """사용 가능한 Tool 목록"""
    return [
        Tool(
            name="show_tables",
            description="List all tables in the current database",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="describe_table",
            description="Get detailed schema information for a specific table",
            inputSchema={
                "type": "object",
                "properties": {
                    "table": {"type": "string", "description": "Name of the table to describe"}
                },
                "required": ["table"],
            },
        ),
        Tool(
            name="execute_query",
            description="Execute a read-only SQL query with automatic sanitization",
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "SQL query to execute (read-only operations only)",
                    },
                    "limit": {
                        "type": "integer",
                        "minimum": 1,
                        "description": f"Maximum number of rows to return (default: {max_rows})",
                    },
                },
                "required": ["query"],
            },
        ),
    ]


async def dispatch(ctx: AppContext, name: str, arguments: dict | None) -> dict[str, Any]:
    """Tool 이름별 실행 (stdio/HTTP 공용)"""
    arguments = arguments or {}

    if name == "show_tables":
        return await show_tables(ctx)

    elif name == "describe_table":
        table = arguments.get("table")
        if not table:
            return error_result("table is required", "Invalid arguments.", code="invalid_arguments")
        return await describe_table(ctx, str(table))

    elif name == "execute_query":
        query = arguments.get("query")
        if not query:
            return error_result("query is required", "Invalid arguments.", code="invalid_arguments")
        return await execute_query(ctx, str(query), arguments.get("limit"))

    else:
        return error_result(f"Unknown tool: {name}", "Unknown tool.", code="unknown_tool")


def to_text_content(result: dict[str, Any]) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(result, ensure_ascii=False, default=str))]


def create_server(ctx: AppContext) -> Server:
    app = Server(SERVER_NAME)
    tools = build_tools(ctx.settings.max_rows)

    @app.list_tools()
    async def list_tools() -> list[Tool]:
        return tools

    @app.call_tool()
    async def call_tool(name: str, arguments: dict) -> list[TextContent]:
        try:
            result = await dispatch(ctx, name, arguments)
        except Exception as e:
            logger.exception("Tool %s failed", name)
            result = error_result(e, "Tool execution failed.")
        return to_text_content(result)

    return app
