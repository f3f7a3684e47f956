"""MCP 도구 구현 패키지."""

from .describe_table import describe_table
from .execute_query import execute_query
from .show_tables import show_tables

__all__ = [
    "describe_table",
    "execute_query",
    "show_tables",
]
