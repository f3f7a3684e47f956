"""테이블 상세 스키마 (컬럼, 인덱스, 메타데이터) 조회."""

import logging
import re
from typing import Any, Optional

from mysql_mcp.context import AppContext
from mysql_mcp.db.serialize import rows_to_json
from mysql_mcp.errors import MySQLMCPError
from mysql_mcp.tools.results import error_result

logger = logging.getLogger("TOOLS")

_IDENTIFIER_STRIP_RE = re.compile(r"[^A-Za-z0-9_]")


def sanitize_table_name(table: str) -> str:
    """식별자는 바인딩할 수 없으므로 [A-Za-z0-9_] 외 문자를 제거."""
    return _IDENTIFIER_STRIP_RE.sub("", table or "")


def format_columns(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            "field": row.get("Field"),
            "type": row.get("Type"),
            "nullable": row.get("Null") == "YES",
            "key": row.get("Key"),
            "default": row.get("Default"),
            "extra": row.get("Extra"),
        }
        for row in rows
    ]


def group_indexes(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """SHOW INDEX 결과를 인덱스 이름별로 묶고 Seq_in_index 순으로 정렬."""
    index_map: dict[str, dict[str, Any]] = {}
    for row in rows:
        name = row.get("Key_name")
        if name not in index_map:
            index_map[name] = {
                "name": name,
                "unique": not int(row.get("Non_unique") or 0),
                "columns": [],
            }
        index_map[name]["columns"].append({
            "column": row.get("Column_name"),
            "sequence": row.get("Seq_in_index"),
        })

    for index in index_map.values():
        index["columns"].sort(key=lambda c: c["sequence"] or 0)
    return list(index_map.values())


def like_literal(name: str) -> str:
    """LIKE 패턴에서 `_` 가 와일드카드로 해석되지 않도록 이스케이프 (이름은 [A-Za-z0-9_] 만 포함)."""
    return name.replace("_", "\\_")


def extract_metadata(rows: list[dict[str, Any]], table_name: str) -> Optional[dict[str, Any]]:
    """SHOW TABLE STATUS 결과 중 이름이 일치하는 행의 메타데이터."""
    status = next(
        (row for row in rows if str(row.get("Name", "")).lower() == table_name.lower()),
        None,
    )
    if status is None:
        return None
    return {
        "engine": status.get("Engine"),
        "rows": status.get("Rows"),
        "data_length": status.get("Data_length"),
        "index_length": status.get("Index_length"),
        "create_time": status.get("Create_time"),
        "update_time": status.get("Update_time"),
        "collation": status.get("Collation"),
        "comment": status.get("Comment"),
    }


async def describe_table(ctx: AppContext, table: str) -> dict[str, Any]:
    table_name = sanitize_table_name(table)
    if not table_name:
        return error_result(
            "Table name is empty after sanitization",
            f"Failed to describe table '{table}'",
            code="invalid_table_name",
        )

    try:
        columns = await ctx.db.execute_query(f"DESCRIBE `{table_name}`")
        indexes = await ctx.db.execute_query(f"SHOW INDEX FROM `{table_name}`")
        status = await ctx.db.execute_query("SHOW TABLE STATUS LIKE %s", [like_literal(table_name)])
    except MySQLMCPError as e:
        logger.error("describe_table failed for %s: %s", table_name, e)
        return error_result(e, f"Failed to describe table '{table}': {e}")

    formatted_columns = format_columns(rows_to_json(columns.rows))
    formatted_indexes = group_indexes(rows_to_json(indexes.rows))

    return {
        "success": True,
        "table": table_name,
        "columns": formatted_columns,
        "indexes": formatted_indexes,
        "metadata": extract_metadata(rows_to_json(status.rows), table_name),
        "summary": (
            f"Table '{table_name}' has {len(formatted_columns)} columns "
            f"and {len(formatted_indexes)} indexes"
        ),
    }
