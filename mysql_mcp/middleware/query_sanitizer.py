"""SQL 읽기 전용 검사 미들웨어 (admission engine).

파서 없이 정규식 규칙으로 쿼리를 허용/거부한다. 처리 순서:

1. 주석 제거 (``--``, ``/* */``, ``#``)
2. 빈 쿼리 검사
3. 변경(mutation) 구문 접두어 검사
4. 허용 접두어 검사
5. 위험 키워드 부분 문자열 검사
6. 다중 구문(statement stacking) 검사

구문 분석이 아니므로 저장 프로시저 내부, 중첩 주석, 방언별 주석 문법은
보지 못한다. 최선의 방화벽일 뿐 안전성 증명이 아니다.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Protocol

logger = logging.getLogger("QUERY_SANITIZER")


@dataclass(frozen=True)
class SanitizationResult:
    is_valid: bool
    sanitized_query: str = ""
    error: Optional[str] = None

    @classmethod
    def rejected(cls, error: str) -> "SanitizationResult":
        return cls(is_valid=False, sanitized_query="", error=error)

    @classmethod
    def accepted(cls, query: str) -> "SanitizationResult":
        return cls(is_valid=True, sanitized_query=query)


class QueryClassifier(Protocol):
    """쿼리 허용 여부 판별기 인터페이스 (파서 기반 구현으로 교체 가능)."""

    def sanitize(self, query: str) -> SanitizationResult: ...


_LINE_COMMENT_RE = re.compile(r"--[^\n]*")
_BLOCK_COMMENT_RE = re.compile(r"/\*[\s\S]*?\*/")
_HASH_COMMENT_RE = re.compile(r"#[^\n]*")  # MySQL 전용


def remove_comments(query: str) -> str:
    """SQL 주석 제거 (중첩 블록 주석은 지원하지 않음)."""
    query = _LINE_COMMENT_RE.sub("", query)
    query = _BLOCK_COMMENT_RE.sub("", query)
    query = _HASH_COMMENT_RE.sub("", query)
    return query


def has_multiple_statements(query: str) -> bool:
    """문자열 리터럴 밖의 세미콜론 뒤에 내용이 더 있으면 True."""
    in_string = False
    string_char = ""
    escaped = False

    for i, char in enumerate(query):
        if escaped:
            escaped = False
            continue

        if char == "\\":
            escaped = True
            continue

        if not in_string and char in ("'", '"'):
            in_string = True
            string_char = char
        elif in_string and char == string_char:
            in_string = False
        elif not in_string and char == ";":
            # 마지막 세미콜론은 허용
            if query[i + 1:].strip():
                return True

    return False


class QuerySanitizer:
    """
    읽기 전용 쿼리만 통과시키는 검사기.
    거부 목록과 허용 목록을 모두 평가한다 (한쪽만으로는 부족함).
    """

    # 구문 시작 위치의 변경 구문 (순서대로 검사, 첫 매치에서 거부)
    MUTATION_PATTERNS = [
        ("INSERT", re.compile(r"^\s*INSERT\s+", re.IGNORECASE)),
        ("UPDATE", re.compile(r"^\s*UPDATE\s+", re.IGNORECASE)),
        ("DELETE", re.compile(r"^\s*DELETE\s+", re.IGNORECASE)),
        ("DROP", re.compile(r"^\s*DROP\s+", re.IGNORECASE)),
        ("CREATE", re.compile(r"^\s*CREATE\s+", re.IGNORECASE)),
        ("ALTER", re.compile(r"^\s*ALTER\s+", re.IGNORECASE)),
        ("TRUNCATE", re.compile(r"^\s*TRUNCATE\s+", re.IGNORECASE)),
        ("RENAME", re.compile(r"^\s*RENAME\s+", re.IGNORECASE)),
        ("REPLACE", re.compile(r"^\s*REPLACE\s+", re.IGNORECASE)),
        ("LOAD", re.compile(r"^\s*LOAD\s+", re.IGNORECASE)),
        ("GRANT", re.compile(r"^\s*GRANT\s+", re.IGNORECASE)),
        ("REVOKE", re.compile(r"^\s*REVOKE\s+", re.IGNORECASE)),
        ("FLUSH", re.compile(r"^\s*FLUSH\s+", re.IGNORECASE)),
        ("LOCK", re.compile(r"^\s*LOCK\s+", re.IGNORECASE)),
        ("UNLOCK", re.compile(r"^\s*UNLOCK\s+", re.IGNORECASE)),
        # 세션 변수(SET @...)만 허용
        ("SET", re.compile(r"^\s*SET\s+(?!.*@)", re.IGNORECASE)),
        # 저장 프로시저는 데이터를 변경할 수 있음
        ("CALL", re.compile(r"^\s*CALL\s+", re.IGNORECASE)),
        ("START TRANSACTION", re.compile(r"^\s*START\s+TRANSACTION", re.IGNORECASE)),
        ("BEGIN", re.compile(r"^\s*BEGIN", re.IGNORECASE)),
        ("COMMIT", re.compile(r"^\s*COMMIT", re.IGNORECASE)),
        ("ROLLBACK", re.compile(r"^\s*ROLLBACK", re.IGNORECASE)),
        ("SAVEPOINT", re.compile(r"^\s*SAVEPOINT", re.IGNORECASE)),
        ("RELEASE SAVEPOINT", re.compile(r"^\s*RELEASE\s+SAVEPOINT", re.IGNORECASE)),
    ]

    ALLOWED_PATTERNS = [
        re.compile(r"^\s*SELECT\s+", re.IGNORECASE),
        re.compile(r"^\s*SHOW\s+", re.IGNORECASE),
        re.compile(r"^\s*DESCRIBE\s+", re.IGNORECASE),
        re.compile(r"^\s*DESC\s+", re.IGNORECASE),
        re.compile(r"^\s*EXPLAIN\s+", re.IGNORECASE),
        re.compile(r"^\s*WITH\s+", re.IGNORECASE),  # CTE
        re.compile(r"^\s*SET\s+@", re.IGNORECASE),
    ]

    ALLOWED_PREFIX_ERROR = "Query must start with SELECT, SHOW, DESCRIBE, DESC, EXPLAIN, WITH, or SET @"

    # SELECT 형태 쿼리 중간에도 나올 수 있는 위험 구문 (단어 사이 공백 종류/개수 무관)
    DANGEROUS_KEYWORDS = [
        ("INTO OUTFILE", re.compile(r"\bINTO\s+OUTFILE\b", re.IGNORECASE)),
        ("INTO DUMPFILE", re.compile(r"\bINTO\s+DUMPFILE\b", re.IGNORECASE)),
        ("FOR UPDATE", re.compile(r"\bFOR\s+UPDATE\b", re.IGNORECASE)),
        ("LOCK IN SHARE MODE", re.compile(r"\bLOCK\s+IN\s+SHARE\s+MODE\b", re.IGNORECASE)),
    ]

    def sanitize(self, query: str) -> SanitizationResult:
        """쿼리 검사 후 허용 시 주석 제거/trim 된 쿼리를 반환."""
        sanitized = remove_comments(query or "").strip()

        if not sanitized:
            return SanitizationResult.rejected("Query is empty")

        for name, pattern in self.MUTATION_PATTERNS:
            if pattern.search(sanitized):
                return self._reject(f"Query contains mutation operation: {name}")

        if not any(pattern.search(sanitized) for pattern in self.ALLOWED_PATTERNS):
            return self._reject(self.ALLOWED_PREFIX_ERROR)

        for keyword, pattern in self.DANGEROUS_KEYWORDS:
            if pattern.search(sanitized):
                return self._reject(f"Query contains dangerous keyword: {keyword}")

        if has_multiple_statements(sanitized):
            return self._reject("Multiple statements are not allowed")

        return SanitizationResult.accepted(sanitized)

    def is_read_only(self, query: str) -> bool:
        return self.sanitize(query).is_valid

    @staticmethod
    def _reject(error: str) -> SanitizationResult:
        logger.info("Query rejected: %s", error)
        return SanitizationResult.rejected(error)
