"""MySQL 연결 풀 및 Cloud SQL Proxy 관리, 쿼리 실행."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

import aiomysql
import pymysql

from config.settings import Settings
from mysql_mcp.errors import ConnectivityFailure, DriverError, QueryTimeout
from mysql_mcp.proxy.cloud_sql_proxy import CloudSQLProxy, ProxyConfig

logger = logging.getLogger("DB_MANAGER")


@dataclass(frozen=True)
class QueryResult:
    columns: list[str] = field(default_factory=list)
    rows: list[dict[str, Any]] = field(default_factory=list)


class DBManager:
    """
    풀과 프록시를 함께 소유하는 연결 관리자.

    최초 초기화(프록시 기동 -> 풀 생성 -> ping)는 진행 중인 단일 Task로
    묶어서, 동시에 들어온 요청들이 같은 초기화를 기다리게 한다.
    """

    def __init__(
        self,
        settings: Settings,
        proxy_factory: Callable[[ProxyConfig], CloudSQLProxy] = CloudSQLProxy,
    ):
        self.settings = settings
        self._proxy_factory = proxy_factory
        self._pool: Optional[aiomysql.Pool] = None
        self._init_task: Optional[asyncio.Task] = None
        self.proxy: Optional[CloudSQLProxy] = None

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    async def get_pool(self) -> aiomysql.Pool:
        if self._pool is not None:
            return self._pool
        if self._init_task is None:
            self._init_task = asyncio.create_task(self._initialize())
        # 대기 중인 호출자가 취소돼도 공유 초기화는 계속 진행
        return await asyncio.shield(self._init_task)

    async def _initialize(self) -> aiomysql.Pool:
        try:
            # 풀은 프록시가 RUNNING 이 된 뒤에만 생성
            if self.settings.cloud_sql_proxy_enabled:
                await self._start_proxy()

            target = self._connection_target()
            pool = None
            try:
                pool = await aiomysql.create_pool(
                    host=target["host"],
                    port=target["port"],
                    user=self.settings.mysql_user,
                    password=self.settings.mysql_password,
                    db=self.settings.mysql_database or None,
                    minsize=1,
                    maxsize=self.settings.mysql_connection_limit,
                    connect_timeout=self.settings.connect_timeout_seconds,
                    autocommit=True,
                    cursorclass=aiomysql.DictCursor,
                )
                # liveness probe
                async with pool.acquire() as conn:
                    await conn.ping()
            except Exception as e:
                if pool is not None:
                    pool.close()
                    await pool.wait_closed()
                await self._stop_proxy()
                raise ConnectivityFailure(f"Failed to connect to MySQL: {e}") from e

            self._pool = pool
            logger.info(
                "DB pool initialized (%s:%s, max=%s)",
                target["host"],
                target["port"],
                self.settings.mysql_connection_limit,
            )
            return pool
        finally:
            self._init_task = None

    def _connection_target(self) -> dict:
        """프록시 사용 시 로컬 프록시 엔드포인트, 아니면 설정된 호스트."""
        if self.settings.cloud_sql_proxy_enabled and self.proxy is not None:
            return self.proxy.get_connection_config()
        return {"host": self.settings.mysql_host, "port": self.settings.mysql_port}

    async def _start_proxy(self) -> None:
        if self.proxy is not None:
            return
        proxy = self._proxy_factory(self.settings.proxy_config())
        # 실패 시 프록시가 스스로 프로세스를 정리하므로 참조만 남기지 않음
        await proxy.start()
        self.proxy = proxy

    async def _stop_proxy(self) -> None:
        if self.proxy is not None:
            await self.proxy.stop()
            self.proxy = None

    def _log_pool_usage(self, pool: aiomysql.Pool, tag: str = "usage") -> None:
        """풀 사용량 로그 (used/total)."""
        logger.debug("DB pool %s: used=%s total=%s", tag, pool.size - pool.freesize, pool.size)

    async def execute_query(
        self,
        query: str,
        params: Optional[Sequence[Any]] = None,
        *,
        timeout: Optional[float] = None,
    ) -> QueryResult:
        """바인딩 파라미터로 쿼리 실행. 시간 초과 시 QueryTimeout."""
        pool = await self.get_pool()
        budget = timeout if timeout is not None else self.settings.query_timeout_seconds
        try:
            return await asyncio.wait_for(self._run(pool, query, params), timeout=budget)
        except asyncio.TimeoutError as e:
            raise QueryTimeout(f"Query timeout after {int(budget * 1000)}ms") from e

    async def _run(self, pool: aiomysql.Pool, query: str, params: Optional[Sequence[Any]]) -> QueryResult:
        try:
            async with pool.acquire() as conn:
                self._log_pool_usage(pool, "acquire")
                async with conn.cursor() as cursor:
                    await cursor.execute(query, tuple(params) if params else None)
                    rows = await cursor.fetchall()
                    columns = [desc[0] for desc in cursor.description] if cursor.description else []
        except pymysql.err.MySQLError as e:
            raise DriverError(f"Query execution failed: {e}") from e
        return QueryResult(columns=columns, rows=list(rows or []))

    async def close(self) -> None:
        """풀 해제 후 프록시 종료. 시작된 것이 없으면 아무 것도 하지 않음."""
        if self._init_task is not None:
            try:
                await self._init_task
            except Exception as e:
                logger.warning("Pending initialization failed during close: %s", e)

        if self._pool is not None:
            self._pool.close()
            await self._pool.wait_closed()
            self._pool = None
            logger.info("DB pool closed")

        await self._stop_proxy()

    def abort(self) -> None:
        """종료 유예 시간 초과 시 프록시 프로세스만 즉시 강제 종료."""
        if self.proxy is not None:
            self.proxy.kill()
