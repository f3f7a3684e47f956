"""프로세스 시작 시 한 번 만들어 모든 도구에 전달하는 실행 컨텍스트."""

import asyncio
import logging
from dataclasses import dataclass, field

from config.settings import Settings
from mysql_mcp.db.db_manager import DBManager
from mysql_mcp.middleware.query_sanitizer import QueryClassifier, QuerySanitizer

logger = logging.getLogger("APP_CONTEXT")


@dataclass
class AppContext:
    settings: Settings
    db: DBManager
    classifier: QueryClassifier = field(default_factory=QuerySanitizer)

    async def close(self) -> None:
        await self.db.close()

    async def shutdown(self, grace_timeout: float) -> bool:
        """유예 시간 안에 close() 실행. 실패/초과 시 프록시를 강제 종료하고 False."""
        try:
            await asyncio.wait_for(self.close(), timeout=grace_timeout)
            return True
        except asyncio.TimeoutError:
            logger.error("Shutdown did not finish within %ss, forcing exit", grace_timeout)
        except Exception as e:
            logger.error("Shutdown failed: %s", e)
        self.db.abort()
        return False


def build_context(settings: Settings) -> AppContext:
    return AppContext(settings=settings, db=DBManager(settings))
