"""ARQ worker for payments reconciliation."""

from arq import cron
from libs.common.arq_config import get_redis_settings, run_job, worker_startup


async def task_reconcile_pending_payments(ctx: dict):
    from services.payments_service.tasks import reconcile_pending_razorpay_payments

    return await run_job(
        "reconcile_pending_razorpay_payments", reconcile_pending_razorpay_payments
    )


class WorkerSettings:
    redis_settings = get_redis_settings()
    on_startup = worker_startup
    max_jobs = 1

    functions = [task_reconcile_pending_payments]

    cron_jobs = [
        cron(
            task_reconcile_pending_payments,
            minute=set(range(0, 60, 5)),
            run_at_startup=True,
            unique=True,
        ),
    ]
