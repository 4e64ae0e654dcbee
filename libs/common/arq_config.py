"""arq plumbing shared by the service workers.

Each service keeps its own ``WorkerSettings``; the Redis connection, startup
hook and job wrapper live here.
"""

from typing import Any, Awaitable, Callable

from arq.connections import RedisSettings
from libs.common.config import get_settings
from libs.common.logging import configure_logging, get_logger

logger = get_logger(__name__)


def get_redis_settings() -> RedisSettings:
    """Redis connection for arq, taken from ``REDIS_URL``."""
    return RedisSettings.from_dsn(get_settings().REDIS_URL)


async def worker_startup(ctx: dict) -> None:
    configure_logging()
    logger.info("arq worker started")


async def run_job(name: str, job: Callable[[], Awaitable[Any]]) -> Any:
    """Run a periodic job; failures are logged and left to arq to record."""
    logger.info("Running: %s", name)
    try:
        return await job()
    except Exception:
        logger.exception("Job %s failed", name)
        raise
