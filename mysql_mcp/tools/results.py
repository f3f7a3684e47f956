"""도구 결과 공통 형식."""

from typing import Any

from mysql_mcp.errors import MySQLMCPError


def error_result(error: Any, message: str, code: str | None = None) -> dict[str, Any]:
    """실패 결과 생성 (success=False, 사람이 읽는 메시지 + 기계 판별용 코드)."""
    if code is None:
        code = error.code if isinstance(error, MySQLMCPError) else MySQLMCPError.code
    return {
        "success": False,
        "error": str(error),
        "error_code": code,
        "message": message,
    }
