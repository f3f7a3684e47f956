"""읽기 전용 쿼리 실행 (검사 -> 행 제한 -> 타임아웃 내 실행)."""

import logging
import time
from typing import Any, Optional

from mysql_mcp.context import AppContext
from mysql_mcp.db.serialize import rows_to_json
from mysql_mcp.errors import AdmissionRejected, MySQLMCPError, QueryTimeout
from mysql_mcp.middleware.result_limiter import apply_row_limit
from mysql_mcp.tools.results import error_result

logger = logging.getLogger("TOOLS")

REJECTED_MESSAGE = (
    "Query rejected: This appears to be a mutation operation. "
    "Only read-only queries are allowed."
)


def _validate_limit(limit: Any) -> Optional[str]:
    if limit is None:
        return None
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        return f"limit must be a positive integer (got {limit!r})"
    return None


async def execute_query(ctx: AppContext, query: str, limit: Optional[int] = None) -> dict[str, Any]:
    limit_error = _validate_limit(limit)
    if limit_error:
        return error_result(limit_error, "Invalid arguments.", code="invalid_arguments")

    sanitized = ctx.classifier.sanitize(query)
    if not sanitized.is_valid:
        return error_result(sanitized.error, REJECTED_MESSAGE, code=AdmissionRejected.code)

    limited = apply_row_limit(sanitized.sanitized_query, ctx.settings.max_rows, limit)

    start = time.perf_counter()
    try:
        result = await ctx.db.execute_query(limited.query)
    except QueryTimeout as e:
        logger.warning("Query timed out: %s", e)
        return error_result(e, "Query execution failed.")
    except MySQLMCPError as e:
        logger.error("Query execution failed: %s", e)
        return error_result(e, "Query execution failed.")
    execution_time_ms = round((time.perf_counter() - start) * 1000, 2)

    row_count = len(result.rows)
    truncated = limited.applied_limit is not None and row_count == limited.applied_limit
    if truncated:
        message = f"Query executed successfully. Showing first {limited.applied_limit} rows."
    else:
        message = f"Query executed successfully. {row_count} row(s) returned."

    return {
        "success": True,
        "data": rows_to_json(result.rows),
        "columns": result.columns,
        "row_count": row_count,
        "truncated": truncated,
        "execution_time_ms": execution_time_ms,
        "message": message,
    }
