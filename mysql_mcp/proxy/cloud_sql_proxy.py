"""Cloud SQL Proxy 서브프로세스 수명주기 관리."""

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from mysql_mcp.errors import ProxyStartupFailure
from mysql_mcp.proxy.binary_manager import ensure_binary

logger = logging.getLogger("CLOUD_SQL_PROXY")
stdout_logger = logging.getLogger("CLOUD_SQL_PROXY:stdout")
stderr_logger = logging.getLogger("CLOUD_SQL_PROXY:stderr")

PROXY_HOST = "127.0.0.1"
CHECK_INTERVAL = 0.5        # 준비 상태 폴링 간격 (초)
CONNECT_TIMEOUT = 1.0       # TCP 연결 확인 타임아웃 (초)
STOP_GRACE_PERIOD = 5.0     # SIGTERM 후 SIGKILL 까지 대기 (초)
READER_DRAIN_TIMEOUT = 1.0  # 종료 후 남은 로그 수집 대기 (초)
STREAM_LIMIT = 1024 * 1024

_ERROR_LEVELS = {"error", "fatal", "critical"}


class ProxyState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    FAILED = "failed"


@dataclass(frozen=True)
class ProxyConfig:
    instance_connection_name: str
    port: int = 3307
    credentials_file: Optional[str] = None
    binary_path: Optional[str] = None
    auto_download: bool = True
    startup_timeout: float = 30.0  # 초


def parse_structured_error(line: str) -> Optional[str]:
    """구조화 로그(JSON 한 줄)가 error 레벨이면 메시지를 반환."""
    try:
        record = json.loads(line)
    except ValueError:
        return None
    if not isinstance(record, dict):
        return None
    level = str(record.get("level") or record.get("severity") or "").lower()
    if level not in _ERROR_LEVELS:
        return None
    return record.get("message") or record.get("msg") or line


class CloudSQLProxy:
    """
    Cloud SQL Proxy 프로세스 감독자.

    STOPPED -> STARTING -> RUNNING -> STOPPING -> STOPPED
    STARTING 에서 실패하면 FAILED (프로세스 핸들 없음, 다시 start 가능).
    start/stop 동시 호출은 지원하지 않으며 호출자(DBManager)가 직렬화한다.
    """

    def __init__(self, config: ProxyConfig):
        self.config = config
        self.state = ProxyState.STOPPED
        self.last_error = ""
        self._process: Optional[asyncio.subprocess.Process] = None
        # 프로세스 종료 여부의 단일 신호 (결과값: 종료 코드)
        self._exit_future: Optional[asyncio.Future] = None
        self._readers: list[asyncio.Task] = []
        self._watcher: Optional[asyncio.Task] = None

    def build_args(self) -> list[str]:
        """프록시 실행 인자 생성 (INSTANCE?port=PORT 형식)."""
        args = [f"{self.config.instance_connection_name}?port={self.config.port}"]
        if self.config.credentials_file:
            args.extend(["--credentials-file", self.config.credentials_file])
        args.append("--structured-logs")
        return args

    async def check_connection(self) -> bool:
        """로컬 포트로 TCP 연결이 되는지 확인."""
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(PROXY_HOST, self.config.port),
                timeout=CONNECT_TIMEOUT,
            )
        except (OSError, asyncio.TimeoutError):
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    async def start(self) -> None:
        if self.state == ProxyState.RUNNING and self.is_healthy():
            logger.info("Proxy already running")
            return

        if self._process is not None:
            # 실행 중 종료된 이전 프로세스 정리
            await self.stop()

        if not self.config.instance_connection_name:
            raise ProxyStartupFailure(
                "Cloud SQL instance connection name is required. "
                "Set CLOUD_SQL_INSTANCE environment variable (format: project:region:instance)"
            )

        binary_path = await ensure_binary(
            binary_path=self.config.binary_path,
            auto_download=self.config.auto_download,
        )
        args = self.build_args()

        logger.info("Starting proxy: %s %s", binary_path, " ".join(args))
        self.state = ProxyState.STARTING
        self.last_error = ""

        try:
            process = await asyncio.create_subprocess_exec(
                str(binary_path),
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            self.state = ProxyState.FAILED
            self.last_error = str(e)
            raise ProxyStartupFailure(f"Failed to launch Cloud SQL Proxy: {e}") from e

        self._process = process
        self._exit_future = asyncio.get_running_loop().create_future()
        self._readers = [
            asyncio.create_task(self._read_stdout(process.stdout)),
            asyncio.create_task(self._read_stderr(process.stderr)),
        ]
        self._watcher = asyncio.create_task(self._watch_exit(process, self._exit_future))

        try:
            await self._wait_until_ready()
        except BaseException:
            # 실패/타임아웃/취소 시 프로세스를 남기지 않음
            await self.stop()
            self.state = ProxyState.FAILED
            raise

    async def _wait_until_ready(self) -> None:
        loop = asyncio.get_running_loop()
        timeout = self.config.startup_timeout
        deadline = loop.time() + timeout
        exit_future = self._exit_future

        logger.info("Waiting for proxy to be ready (timeout: %sms)...", int(timeout * 1000))
        while loop.time() < deadline:
            if exit_future.done():
                await self._drain_readers()
                raise ProxyStartupFailure(
                    f"Cloud SQL Proxy exited unexpectedly (code: {exit_future.result()}). "
                    f"Error: {self.last_error or 'Unknown error'}"
                )

            # 연결 성공 직후에도 종료 신호를 다시 확인 (종료된 프로세스를 RUNNING으로 보고하지 않음)
            if await self.check_connection() and not exit_future.done():
                self.state = ProxyState.RUNNING
                logger.info("Proxy ready on %s:%s", PROXY_HOST, self.config.port)
                return

            await asyncio.sleep(CHECK_INTERVAL)

        details = f" Last error: {self.last_error}" if self.last_error else ""
        raise ProxyStartupFailure(
            f"Cloud SQL Proxy failed to start within {int(timeout * 1000)}ms.{details} "
            "Check credentials and instance connection name."
        )

    async def stop(self) -> None:
        process = self._process
        if process is None:
            return

        logger.info("Stopping proxy...")
        self.state = ProxyState.STOPPING
        try:
            if not self._exit_future.done():
                try:
                    process.terminate()
                except ProcessLookupError:
                    pass
                try:
                    await asyncio.wait_for(asyncio.shield(self._exit_future), timeout=STOP_GRACE_PERIOD)
                except asyncio.TimeoutError:
                    logger.warning("Force killing proxy...")
                    try:
                        process.kill()
                    except ProcessLookupError:
                        pass
                    await asyncio.shield(self._exit_future)
        except asyncio.CancelledError:
            # 대기 중 취소되면 프로세스를 남기지 않도록 즉시 강제 종료
            self.kill()
            raise
        finally:
            await self._cancel_tasks()
            self._process = None
            self._exit_future = None
            self.state = ProxyState.STOPPED
            logger.info("Proxy stopped")

    def kill(self) -> None:
        """대기 없이 SIGKILL (강제 종료 경로 전용)."""
        if self._process is not None and self._process.returncode is None:
            try:
                self._process.kill()
            except ProcessLookupError:
                pass

    def is_healthy(self) -> bool:
        return (
            self.state == ProxyState.RUNNING
            and self._process is not None
            and self._process.returncode is None
        )

    def get_connection_config(self) -> dict:
        """MySQL 드라이버가 접속할 로컬 엔드포인트."""
        return {"host": PROXY_HOST, "port": self.config.port}

    async def _watch_exit(self, process: asyncio.subprocess.Process, exit_future: asyncio.Future) -> None:
        code = await process.wait()
        if not exit_future.done():
            exit_future.set_result(code)

        if code is not None and code < 0:
            logger.info("Process killed by signal %s", -code)
        else:
            logger.info("Process exited with code %s", code)

        # RUNNING 중 비정상 종료
        if self._process is process and self.state == ProxyState.RUNNING:
            logger.error("Proxy exited while running. Last error: %s", self.last_error or "Unknown error")
            self.state = ProxyState.STOPPED

    async def _read_stdout(self, stream: asyncio.StreamReader) -> None:
        async for raw in stream:
            message = raw.decode("utf-8", errors="replace").strip()
            if not message:
                continue
            stdout_logger.info(message)
            error = parse_structured_error(message)
            if error:
                self.last_error = error

    async def _read_stderr(self, stream: asyncio.StreamReader) -> None:
        async for raw in stream:
            message = raw.decode("utf-8", errors="replace").strip()
            if not message:
                continue
            stderr_logger.warning(message)
            self.last_error = message

    async def _drain_readers(self) -> None:
        """종료된 프로세스의 남은 출력 수집 (last_error 보강)."""
        if self._readers:
            await asyncio.wait(self._readers, timeout=READER_DRAIN_TIMEOUT)

    async def _cancel_tasks(self) -> None:
        tasks = [t for t in [*self._readers, self._watcher] if t is not None]
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._readers = []
        self._watcher = None
