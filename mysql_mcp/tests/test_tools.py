import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from config.settings import Settings
from mysql_mcp.context import AppContext
from mysql_mcp.db.db_manager import QueryResult
from mysql_mcp.errors import DriverError, QueryTimeout
from mysql_mcp.server.app import dispatch, to_text_content
from mysql_mcp.tools import describe_table, execute_query, show_tables
from mysql_mcp.tools.describe_table import extract_metadata, group_indexes, like_literal, sanitize_table_name
from mysql_mcp.tools.execute_query import REJECTED_MESSAGE


def _ctx(result=None, side_effect=None) -> AppContext:
    db = MagicMock()
    db.execute_query = AsyncMock(return_value=result, side_effect=side_effect)
    return AppContext(settings=Settings(_env_file=None, max_rows=1000), db=db)


# =================================================================
# execute_query
# =================================================================

@pytest.mark.asyncio
async def test_execute_query_rejects_mutation_without_touching_db():
    """변경 쿼리는 DB 호출 없이 거부 결과를 반환하는지 테스트."""
    ctx = _ctx()
    result = await execute_query(ctx, "DELETE FROM users")

    assert result["success"] is False
    assert result["error"] == "Query contains mutation operation: DELETE"
    assert result["error_code"] == "admission_rejected"
    assert result["message"] == REJECTED_MESSAGE
    ctx.db.execute_query.assert_not_awaited()


@pytest.mark.asyncio
async def test_execute_query_appends_default_limit():
    ctx = _ctx(QueryResult(columns=["id"], rows=[{"id": 1}]))
    result = await execute_query(ctx, "SELECT id FROM users -- all")

    ctx.db.execute_query.assert_awaited_once_with("SELECT id FROM users LIMIT 1000")
    assert result["success"] is True
    assert result["data"] == [{"id": 1}]
    assert result["columns"] == ["id"]
    assert result["row_count"] == 1
    assert result["truncated"] is False
    assert result["message"] == "Query executed successfully. 1 row(s) returned."
    assert result["execution_time_ms"] >= 0


@pytest.mark.asyncio
async def test_execute_query_marks_truncated_results():
    rows = [{"id": 1}, {"id": 2}]
    ctx = _ctx(QueryResult(columns=["id"], rows=rows))
    result = await execute_query(ctx, "SELECT id FROM users", limit=2)

    ctx.db.execute_query.assert_awaited_once_with("SELECT id FROM users LIMIT 2")
    assert result["truncated"] is True
    assert result["message"] == "Query executed successfully. Showing first 2 rows."


@pytest.mark.asyncio
async def test_execute_query_serializes_driver_values():
    created = datetime.datetime(2024, 3, 1, 9, 0)
    ctx = _ctx(QueryResult(columns=["created"], rows=[{"created": created}]))
    result = await execute_query(ctx, "SHOW TABLE STATUS")

    ctx.db.execute_query.assert_awaited_once_with("SHOW TABLE STATUS")
    assert result["data"] == [{"created": "2024-03-01T09:00:00"}]
    assert result["truncated"] is False


@pytest.mark.asyncio
@pytest.mark.parametrize("limit", [0, -1, "5", True, 1.5])
async def test_execute_query_rejects_invalid_limit(limit):
    ctx = _ctx()
    result = await execute_query(ctx, "SELECT 1", limit=limit)

    assert result["success"] is False
    assert result["error_code"] == "invalid_arguments"
    ctx.db.execute_query.assert_not_awaited()


@pytest.mark.asyncio
async def test_execute_query_timeout_is_reported():
    ctx = _ctx(side_effect=QueryTimeout("Query timeout after 30000ms"))
    result = await execute_query(ctx, "SELECT SLEEP(100)")

    assert result["success"] is False
    assert result["error"] == "Query timeout after 30000ms"
    assert result["error_code"] == "query_timeout"
    assert result["message"] == "Query execution failed."


# =================================================================
# show_tables
# =================================================================

@pytest.mark.asyncio
async def test_show_tables():
    ctx = _ctx(QueryResult(
        columns=["Tables_in_shop"],
        rows=[{"Tables_in_shop": "orders"}, {"Tables_in_shop": "users"}],
    ))
    result = await show_tables(ctx)

    assert result == {
        "success": True,
        "tables": ["orders", "users"],
        "count": 2,
        "message": "Found 2 table(s)",
    }


@pytest.mark.asyncio
async def test_show_tables_empty():
    ctx = _ctx(QueryResult(columns=["Tables_in_shop"], rows=[]))
    result = await show_tables(ctx)

    assert result["success"] is True
    assert result["tables"] == []
    assert result["count"] == 0
    assert result["message"] == "No tables found in the database"


@pytest.mark.asyncio
async def test_show_tables_driver_error():
    ctx = _ctx(side_effect=DriverError("Query execution failed: gone away"))
    result = await show_tables(ctx)

    assert result["success"] is False
    assert result["error_code"] == "driver_error"


# =================================================================
# describe_table
# =================================================================

def test_sanitize_table_name():
    assert sanitize_table_name("users`; DROP TABLE x") == "usersDROPTABLEx"
    assert sanitize_table_name("order_items2") == "order_items2"


def test_group_indexes_orders_columns_by_sequence():
    rows = [
        {"Key_name": "idx_name", "Non_unique": 1, "Column_name": "last", "Seq_in_index": 2},
        {"Key_name": "PRIMARY", "Non_unique": 0, "Column_name": "id", "Seq_in_index": 1},
        {"Key_name": "idx_name", "Non_unique": 1, "Column_name": "first", "Seq_in_index": 1},
    ]
    assert group_indexes(rows) == [
        {
            "name": "idx_name",
            "unique": False,
            "columns": [
                {"column": "first", "sequence": 1},
                {"column": "last", "sequence": 2},
            ],
        },
        {"name": "PRIMARY", "unique": True, "columns": [{"column": "id", "sequence": 1}]},
    ]


@pytest.mark.asyncio
async def test_describe_table():
    responses = {
        "DESCRIBE `users`": QueryResult(rows=[
            {"Field": "id", "Type": "int", "Null": "NO", "Key": "PRI", "Default": None, "Extra": "auto_increment"},
            {"Field": "email", "Type": "varchar(255)", "Null": "YES", "Key": "", "Default": None, "Extra": ""},
        ]),
        "SHOW INDEX FROM `users`": QueryResult(rows=[
            {"Key_name": "PRIMARY", "Non_unique": 0, "Column_name": "id", "Seq_in_index": 1},
        ]),
        "SHOW TABLE STATUS LIKE %s": QueryResult(rows=[
            {"Name": "users", "Engine": "InnoDB", "Rows": 42, "Collation": "utf8mb4_general_ci", "Comment": ""},
        ]),
    }

    async def fake_execute(query, params=None):
        return responses[query]

    ctx = _ctx(side_effect=fake_execute)
    result = await describe_table(ctx, "users")

    assert result["success"] is True
    assert result["table"] == "users"
    assert result["columns"][0] == {
        "field": "id",
        "type": "int",
        "nullable": False,
        "key": "PRI",
        "default": None,
        "extra": "auto_increment",
    }
    assert result["columns"][1]["nullable"] is True
    assert result["indexes"] == [{"name": "PRIMARY", "unique": True, "columns": [{"column": "id", "sequence": 1}]}]
    assert result["metadata"]["engine"] == "InnoDB"
    assert result["metadata"]["rows"] == 42
    assert result["summary"] == "Table 'users' has 2 columns and 1 indexes"
    ctx.db.execute_query.assert_any_await("SHOW TABLE STATUS LIKE %s", ["users"])


def test_like_literal_escapes_underscore():
    assert like_literal("order_items") == "order\\_items"
    assert like_literal("users") == "users"


def test_extract_metadata_picks_matching_table():
    rows = [
        {"Name": "a1b", "Engine": "MyISAM", "Rows": 1},
        {"Name": "a_b", "Engine": "InnoDB", "Rows": 7},
    ]
    assert extract_metadata(rows, "a_b")["engine"] == "InnoDB"
    assert extract_metadata(rows, "A_B")["rows"] == 7
    assert extract_metadata([{"Name": "a1b", "Engine": "MyISAM"}], "a_b") is None
    assert extract_metadata([], "a_b") is None


@pytest.mark.asyncio
async def test_describe_table_underscore_name_is_not_a_wildcard():
    """`_` 가 포함된 테이블은 이스케이프된 LIKE 값으로 조회하고 같은 이름의 상태 행만 사용하는지 테스트."""
    responses = {
        "DESCRIBE `a_b`": QueryResult(rows=[]),
        "SHOW INDEX FROM `a_b`": QueryResult(rows=[]),
        "SHOW TABLE STATUS LIKE %s": QueryResult(rows=[
            {"Name": "a1b", "Engine": "MyISAM"},
            {"Name": "a_b", "Engine": "InnoDB"},
        ]),
    }

    async def fake_execute(query, params=None):
        return responses[query]

    ctx = _ctx(side_effect=fake_execute)
    result = await describe_table(ctx, "a_b")

    ctx.db.execute_query.assert_any_await("SHOW TABLE STATUS LIKE %s", ["a\\_b"])
    assert result["metadata"]["engine"] == "InnoDB"


@pytest.mark.asyncio
async def test_describe_table_rejects_empty_identifier():
    ctx = _ctx()
    result = await describe_table(ctx, "`;--")

    assert result["success"] is False
    assert result["error_code"] == "invalid_table_name"
    ctx.db.execute_query.assert_not_awaited()


@pytest.mark.asyncio
async def test_describe_missing_table():
    ctx = _ctx(side_effect=DriverError("Query execution failed: (1146, \"Table 'shop.nope' doesn't exist\")"))
    result = await describe_table(ctx, "nope")

    assert result["success"] is False
    assert result["error_code"] == "driver_error"
    assert result["message"].startswith("Failed to describe table 'nope'")


# =================================================================
# dispatch
# =================================================================

@pytest.mark.asyncio
async def test_dispatch_unknown_tool():
    result = await dispatch(_ctx(), "drop_everything", {})
    assert result["success"] is False
    assert result["error_code"] == "unknown_tool"


@pytest.mark.asyncio
async def test_dispatch_missing_arguments():
    ctx = _ctx()
    assert (await dispatch(ctx, "execute_query", {}))["error_code"] == "invalid_arguments"
    assert (await dispatch(ctx, "describe_table", None))["error_code"] == "invalid_arguments"


@pytest.mark.asyncio
async def test_dispatch_routes_execute_query_limit():
    ctx = _ctx(QueryResult(columns=["id"], rows=[{"id": 1}]))
    result = await dispatch(ctx, "execute_query", {"query": "SELECT id FROM t", "limit": 5})

    assert result["success"] is True
    ctx.db.execute_query.assert_awaited_once_with("SELECT id FROM t LIMIT 5")


def test_to_text_content_is_json():
    content = to_text_content({"success": True, "message": "테이블 없음"})
    assert content[0].type == "text"
    assert content[0].text == '{"success": true, "message": "테이블 없음"}'
