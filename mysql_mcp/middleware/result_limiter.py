"""허용된 SELECT 쿼리에 행 제한(LIMIT) 부여."""

import re
from dataclasses import dataclass
from typing import Optional

_LIMIT_RE = re.compile(r"\bLIMIT\s+\d+", re.IGNORECASE)
_SELECT_RE = re.compile(r"^\s*SELECT\s+", re.IGNORECASE)


@dataclass(frozen=True)
class LimitedQuery:
    query: str
    applied_limit: Optional[int] = None  # LIMIT을 붙이지 않았으면 None


def apply_row_limit(query: str, max_rows: int, limit: Optional[int] = None) -> LimitedQuery:
    """
    LIMIT이 없는 SELECT 쿼리에만 LIMIT을 덧붙인다.

    SHOW/DESCRIBE/EXPLAIN/SET @ 는 스키마 크기로 결과가 제한되므로 그대로 둔다.
    WITH(CTE)도 현재는 붙이지 않는다 (최종 SELECT가 제한되지 않을 수 있음).
    """
    effective = limit or max_rows
    if _LIMIT_RE.search(query):
        return LimitedQuery(query=query)
    if not _SELECT_RE.search(query):
        return LimitedQuery(query=query)
    # 허용된 마지막 세미콜론 뒤에 붙으면 문법 오류
    base = query.rstrip().rstrip(";").rstrip()
    return LimitedQuery(query=f"{base} LIMIT {int(effective)}", applied_limit=int(effective))
