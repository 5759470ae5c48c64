from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from newsdesk.db.queries import (
    count_reads_by_article,
    get_daily_view_rows,
    list_author_articles,
    upsert_daily_analytics,
)
from newsdesk.models.db import Article

logger = structlog.get_logger(__name__)


@dataclass
class AggregationResult:
    day: date
    processed: int = 0
    failed_article_ids: list[str] = field(default_factory=list)


@dataclass
class DashboardItem:
    id: str
    title: str
    category: str
    status: str
    created_at: datetime
    total_views: int


@dataclass
class DashboardPage:
    items: list[DashboardItem]
    total: int


def utc_day(target: date | datetime | None = None) -> date:
    if target is None:
        return datetime.now(timezone.utc).date()
    if isinstance(target, datetime):
        if target.tzinfo is None:
            target = target.replace(tzinfo=timezone.utc)
        return target.astimezone(timezone.utc).date()
    return target


def utc_day_bounds(day: date) -> tuple[datetime, datetime]:
    """Inclusive [00:00:00.000000, 23:59:59.999999] UTC range for ``day``."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    end = datetime.combine(day, time.max, tzinfo=timezone.utc)
    return start, end


async def aggregate_daily_analytics(
    session: AsyncSession,
    target: date | datetime | None = None,
) -> AggregationResult:
    """Recompute per-article view counts for one UTC day from the raw read log.

    Counts replace whatever was stored for (article, day), so reruns and
    backfills are idempotent. Articles without reads get no row. A failed
    upsert is logged and skipped; the remaining articles are still written.
    """
    day = utc_day(target)
    start, end = utc_day_bounds(day)
    result = AggregationResult(day=day)

    read_counts = await count_reads_by_article(session, start, end)
    for article_id, view_count in read_counts:
        try:
            await upsert_daily_analytics(session, article_id, day, view_count)
        except Exception:
            await session.rollback()
            logger.exception("daily_analytics_upsert_failed", article_id=article_id, day=day.isoformat())
            result.failed_article_ids.append(article_id)
            continue
        result.processed += 1

    logger.info(
        "daily_analytics_aggregated",
        day=day.isoformat(),
        articles=len(read_counts),
        processed=result.processed,
        failed=len(result.failed_article_ids),
    )
    return result


def fold_total_views(articles: list[Article], view_rows: list[tuple[str, int]]) -> list[DashboardItem]:
    totals: dict[str, int] = {}
    for article_id, view_count in view_rows:
        totals[article_id] = totals.get(article_id, 0) + view_count

    return [
        DashboardItem(
            id=article.id,
            title=article.title,
            category=article.category,
            status=article.status,
            created_at=article.created_at,
            total_views=totals.get(article.id, 0),
        )
        for article in articles
    ]


async def get_author_dashboard(
    session: AsyncSession,
    author_id: str,
    page: int = 1,
    size: int = 10,
) -> DashboardPage:
    """An author's non-deleted articles with lifetime views summed from the daily rows.

    Totals only cover days already aggregated; today's reads show up after the next run.
    """
    articles, total = await list_author_articles(session, author_id, page, size, include_deleted=False)
    view_rows = await get_daily_view_rows(session, [article.id for article in articles])
    return DashboardPage(items=fold_total_views(articles, view_rows), total=total)
