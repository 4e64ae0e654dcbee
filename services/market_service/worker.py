"""ARQ worker for market service housekeeping."""

from arq import cron
from libs.common.arq_config import get_redis_settings, run_job, worker_startup


async def task_purge_guest_carts(ctx: dict):
    from services.market_service.tasks import purge_guest_carts

    return await run_job("purge_guest_carts", purge_guest_carts)


class WorkerSettings:
    redis_settings = get_redis_settings()
    on_startup = worker_startup

    functions = [task_purge_guest_carts]

    cron_jobs = [
        cron(task_purge_guest_carts, hour={3}, minute={15}, run_at_startup=True),
    ]
