"""Cloud SQL Proxy 패키지 초기화."""

from .cloud_sql_proxy import CloudSQLProxy, ProxyConfig, ProxyState

__all__ = [
    "CloudSQLProxy",
    "ProxyConfig",
    "ProxyState",
]
