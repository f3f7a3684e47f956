"""드라이버 행을 타입 태그가 붙은 셀로 변환하고 JSON 안전 값으로 직렬화."""

import base64
import datetime
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable


class CellType(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    BYTES = "bytes"
    TIMESTAMP = "timestamp"
    NULL = "null"


@dataclass(frozen=True)
class Cell:
    type: CellType
    value: Any


# 컬럼 순서를 유지하는 (컬럼명, 셀) 목록
TypedRow = list[tuple[str, Cell]]


def tag_value(value: Any) -> Cell:
    """드라이버 값 하나에 타입 태그 부여. 모르는 타입은 문자열로 처리."""
    if value is None:
        return Cell(CellType.NULL, None)
    # bool 은 int 의 하위 클래스이므로 먼저 검사
    if isinstance(value, bool):
        return Cell(CellType.BOOLEAN, value)
    if isinstance(value, int):
        return Cell(CellType.INTEGER, value)
    if isinstance(value, float):
        return Cell(CellType.FLOAT, value)
    if isinstance(value, Decimal):
        # 정밀도 유지를 위해 문자열
        return Cell(CellType.STRING, str(value))
    if isinstance(value, (bytes, bytearray, memoryview)):
        return Cell(CellType.BYTES, bytes(value))
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return Cell(CellType.TIMESTAMP, value)
    if isinstance(value, datetime.timedelta):
        # MySQL TIME 컬럼
        return Cell(CellType.STRING, str(value))
    if isinstance(value, str):
        return Cell(CellType.STRING, value)
    return Cell(CellType.STRING, str(value))


def tag_row(row: dict[str, Any]) -> TypedRow:
    return [(name, tag_value(value)) for name, value in row.items()]


def cell_to_json(cell: Cell) -> Any:
    if cell.type == CellType.BYTES:
        return base64.b64encode(cell.value).decode("ascii")
    if cell.type == CellType.TIMESTAMP:
        return cell.value.isoformat()
    if cell.type == CellType.FLOAT and cell.value != cell.value:
        # NaN 은 JSON 표현 불가
        return None
    return cell.value


def row_to_json(row: TypedRow) -> dict[str, Any]:
    return {name: cell_to_json(cell) for name, cell in row}


def rows_to_json(rows: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """드라이버 행 목록 -> JSON 직렬화 가능한 dict 목록."""
    return [row_to_json(tag_row(row)) for row in rows]
