"""현재 데이터베이스의 테이블 목록 조회."""

import logging
from typing import Any

from mysql_mcp.context import AppContext
from mysql_mcp.errors import MySQLMCPError
from mysql_mcp.tools.results import error_result

logger = logging.getLogger("TOOLS")


async def show_tables(ctx: AppContext) -> dict[str, Any]:
    try:
        result = await ctx.db.execute_query("SHOW TABLES")
    except MySQLMCPError as e:
        logger.error("show_tables failed: %s", e)
        return error_result(e, f"Failed to list tables: {e}")

    # SHOW TABLES 결과는 컬럼이 하나 (Tables_in_<db>)
    tables = [str(next(iter(row.values()))) for row in result.rows if row]

    if not tables:
        return {
            "success": True,
            "tables": [],
            "count": 0,
            "message": "No tables found in the database",
        }

    return {
        "success": True,
        "tables": tables,
        "count": len(tables),
        "message": f"Found {len(tables)} table(s)",
    }
