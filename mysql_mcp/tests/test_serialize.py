import datetime
import json
from decimal import Decimal

from mysql_mcp.db.serialize import CellType, rows_to_json, tag_row, tag_value


def test_tag_value_types():
    assert tag_value(None).type == CellType.NULL
    assert tag_value(True).type == CellType.BOOLEAN
    assert tag_value(3).type == CellType.INTEGER
    assert tag_value(1.5).type == CellType.FLOAT
    assert tag_value(b"\x00").type == CellType.BYTES
    assert tag_value(datetime.date(2024, 1, 2)).type == CellType.TIMESTAMP
    assert tag_value("x").type == CellType.STRING


def test_decimal_keeps_precision_as_string():
    cell = tag_value(Decimal("12345678901234567890.123"))
    assert cell.type == CellType.STRING
    assert cell.value == "12345678901234567890.123"


def test_tag_row_keeps_column_order():
    row = {"b": 1, "a": "x", "c": None}
    assert [name for name, _ in tag_row(row)] == ["b", "a", "c"]


def test_rows_to_json_is_json_safe():
    rows = [
        {
            "id": 1,
            "blob": b"hi",
            "created": datetime.datetime(2024, 5, 1, 12, 30),
            "elapsed": datetime.timedelta(hours=1),
            "score": float("nan"),
            "price": Decimal("9.99"),
        }
    ]
    out = rows_to_json(rows)
    assert out == [
        {
            "id": 1,
            "blob": "aGk=",
            "created": "2024-05-01T12:30:00",
            "elapsed": "1:00:00",
            "score": None,
            "price": "9.99",
        }
    ]
    json.dumps(out)
