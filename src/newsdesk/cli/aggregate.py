import asyncio
from datetime import date, datetime, timedelta, timezone

import click

from newsdesk.db.session import Database
from newsdesk.logging_config import configure_logging
from newsdesk.services.analytics import AggregationResult, aggregate_daily_analytics


def backfill_days(end_day: date, days: int) -> list[date]:
    """The ``days`` consecutive days ending at ``end_day``, oldest first."""
    return [end_day - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


async def run_aggregation(days: list[date]) -> list[AggregationResult]:
    database = Database()
    await database.connect()
    results: list[AggregationResult] = []
    try:
        for day in days:
            async with database.session() as session:
                results.append(await aggregate_daily_analytics(session, day))
    finally:
        await database.close()
    return results


@click.command()
@click.option(
    "-d",
    "--date",
    "target_date",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="UTC day to aggregate (YYYY-MM-DD). Defaults to today.",
)
@click.option("--days", default=1, show_default=True, help="Backfill this many days ending at --date.")
def main(target_date: datetime | None, days: int) -> None:
    """Recompute daily per-article view counts from the read log."""
    configure_logging()

    if days < 1:
        raise click.BadParameter("must be at least 1", param_hint="--days")

    end_day = target_date.date() if target_date else datetime.now(timezone.utc).date()
    targets = backfill_days(end_day, days)
    click.echo(f"Aggregating {len(targets)} day(s): {targets[0].isoformat()} .. {targets[-1].isoformat()}")

    results = asyncio.run(run_aggregation(targets))

    failed_total = 0
    for result in results:
        failed_total += len(result.failed_article_ids)
        click.echo(f"  {result.day.isoformat()}: processed={result.processed} failed={len(result.failed_article_ids)}")

    if failed_total:
        click.echo(f"{failed_total} upsert(s) failed; rerun the same dates to retry.")
        raise SystemExit(1)
    click.echo("Aggregation complete.")


if __name__ == "__main__":
    main()
