"""MCP 서버 실행 진입점 (stdio 기본, http 선택)."""

import asyncio
import logging
import signal
import sys
from typing import Optional

from dotenv import load_dotenv

from config.settings import Settings
from mysql_mcp.context import AppContext, build_context
from mysql_mcp.server.app import create_server

logger = logging.getLogger("MCP_SERVER")


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, shutdown: asyncio.Event) -> None:
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown.set)
        except NotImplementedError:
            # Windows 이벤트 루프는 지원하지 않음 (KeyboardInterrupt 로 종료)
            logger.debug("Signal handler for %s not supported on this platform", sig)


def _install_exception_handler(loop: asyncio.AbstractEventLoop, shutdown: asyncio.Event) -> None:
    def handler(loop: asyncio.AbstractEventLoop, context: dict) -> None:
        logger.error(
            "Unhandled async error: %s",
            context.get("message"),
            exc_info=context.get("exception"),
        )
        shutdown.set()

    loop.set_exception_handler(handler)


async def _serve_stdio(ctx: AppContext) -> None:
    from mcp.server.stdio import stdio_server

    server = create_server(ctx)
    async with stdio_server() as (read, write):
        await server.run(read, write, server.create_initialization_options())


async def run_stdio(ctx: AppContext) -> int:
    """stdio 서버 실행. 시그널/비정상 종료 시 단일 종료 경로로 정리 후 종료 코드 반환."""
    loop = asyncio.get_running_loop()
    shutdown = asyncio.Event()
    _install_signal_handlers(loop, shutdown)
    _install_exception_handler(loop, shutdown)

    server_task = asyncio.create_task(_serve_stdio(ctx))
    shutdown_task = asyncio.create_task(shutdown.wait())
    done, _ = await asyncio.wait({server_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)

    exit_code = 0
    if server_task in done:
        error = server_task.exception()
        if error is not None:
            logger.error("Server stopped with error: %s", error, exc_info=error)
            exit_code = 1
    else:
        logger.info("Shutdown requested, stopping server...")
        server_task.cancel()
        await asyncio.gather(server_task, return_exceptions=True)

    shutdown_task.cancel()
    await asyncio.gather(shutdown_task, return_exceptions=True)

    if not await ctx.shutdown(ctx.settings.shutdown_grace_timeout):
        exit_code = 1
    return exit_code


def _run_http(ctx: AppContext) -> None:
    import uvicorn

    from mysql_mcp.server.http import create_http_app

    uvicorn.run(create_http_app(ctx), host=ctx.settings.mcp_http_host, port=ctx.settings.port)


def main(argv: Optional[list[str]] = None) -> None:
    """MCP 서버 실행"""
    argv = sys.argv[1:] if argv is None else argv

    # 프록시 서브프로세스도 .env 값(GOOGLE_APPLICATION_CREDENTIALS 등)을 상속받도록 먼저 로드
    load_dotenv()
    settings = Settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        stream=sys.stderr,
    )

    ctx = build_context(settings)

    # "http" 인자가 있으면 uvicorn 실행
    transport = "http" if argv and argv[0] == "http" else settings.mcp_transport.lower()
    if transport == "http":
        _run_http(ctx)
        return

    sys.exit(asyncio.run(run_stdio(ctx)))


if __name__ == "__main__":
    main()
