"""MCP Tool HTTP 어댑터 (GET /tools, POST /call)."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from mysql_mcp.context import AppContext
from mysql_mcp.server.app import build_tools, dispatch

logger = logging.getLogger("MCP_HTTP")


class CallToolRequest(BaseModel):
    name: str
    arguments: dict = {}


def create_http_app(ctx: AppContext) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """종료 시 풀/프록시 정리."""
        yield
        await ctx.shutdown(ctx.settings.shutdown_grace_timeout)

    http_app = FastAPI(title="MySQL Read-only MCP", lifespan=lifespan)
    tools = build_tools(ctx.settings.max_rows)

    @http_app.get("/tools")
    async def handle_list_tools():
        return [{"name": t.name, "description": t.description, "inputSchema": t.inputSchema} for t in tools]

    @http_app.post("/call")
    async def handle_call_tool(req: CallToolRequest):
        try:
            return await dispatch(ctx, req.name, req.arguments)
        except Exception as e:
            logger.exception("Tool %s failed", req.name)
            raise HTTPException(status_code=500, detail=str(e))

    return http_app
