import asyncio
import signal

import click

from newsdesk.config import settings
from newsdesk.db.redis import RedisClient
from newsdesk.db.session import Database
from newsdesk.jobs.queue import AnalyticsQueue
from newsdesk.jobs.scheduler import DailyAggregationScheduler
from newsdesk.jobs.worker import AnalyticsWorker, build_analytics_handlers
from newsdesk.logging_config import configure_logging


async def run_worker(concurrency: int, schedule: bool) -> None:
    database = Database()
    redis_client = RedisClient()
    await database.connect()
    await redis_client.connect()

    queue = AnalyticsQueue(redis_client.client)
    worker = AnalyticsWorker(
        queue, build_analytics_handlers(database), concurrency=concurrency, recover_on_start=True
    )
    scheduler = DailyAggregationScheduler(queue, redis_client.client) if schedule else None

    def _stop() -> None:
        worker.stop()
        if scheduler is not None:
            scheduler.stop()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _stop)

    tasks = [worker.run()]
    if scheduler is not None:
        tasks.append(scheduler.run())
    try:
        await asyncio.gather(*tasks)
    finally:
        await redis_client.close()
        await database.close()


@click.command()
@click.option("--concurrency", default=settings.worker_concurrency, show_default=True, help="Jobs processed in parallel")
@click.option("--schedule/--no-schedule", default=True, show_default=True, help="Also enqueue the daily aggregation")
def main(concurrency: int, schedule: bool) -> None:
    """Consume the analytics queue (read events + daily aggregation)."""
    configure_logging()
    click.echo(f"Worker: queue={settings.analytics_queue_name}, concurrency={concurrency}, schedule={schedule}")
    asyncio.run(run_worker(concurrency, schedule))
    click.echo("Worker stopped.")


if __name__ == "__main__":
    main()
