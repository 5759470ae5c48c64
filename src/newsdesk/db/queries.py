from datetime import date, datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from newsdesk.models.db import Article, DailyAnalytics, ReadEvent, User
from newsdesk.models.schemas import ArticleStatus


# Users


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def create_user(session: AsyncSession, name: str, email: str, password_hash: str, role: str) -> User:
    user = User(name=name, email=email, password_hash=password_hash, role=role)
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


# Articles


async def get_article_by_id(session: AsyncSession, article_id: str) -> Article | None:
    result = await session.execute(select(Article).where(Article.id == article_id))
    return result.scalar_one_or_none()


async def create_article(
    session: AsyncSession,
    author_id: str,
    title: str,
    content: str,
    category: str,
    status: str,
) -> Article:
    article = Article(author_id=author_id, title=title, content=content, category=category, status=status)
    session.add(article)
    await session.commit()
    await session.refresh(article)
    return article


async def update_article(session: AsyncSession, article: Article, changes: dict) -> Article:
    for field, value in changes.items():
        setattr(article, field, value)
    await session.commit()
    await session.refresh(article)
    return article


async def list_author_articles(
    session: AsyncSession,
    author_id: str,
    page: int = 1,
    size: int = 10,
    include_deleted: bool = False,
) -> tuple[list[Article], int]:
    query = select(Article).where(Article.author_id == author_id)
    count_query = select(func.count(Article.id)).where(Article.author_id == author_id)

    if not include_deleted:
        query = query.where(Article.deleted_at.is_(None))
        count_query = count_query.where(Article.deleted_at.is_(None))

    total = (await session.execute(count_query)).scalar_one()

    query = query.order_by(Article.created_at.desc()).offset((page - 1) * size).limit(size)
    result = await session.execute(query)
    return list(result.scalars().all()), total


async def list_public_articles(
    session: AsyncSession,
    page: int = 1,
    size: int = 10,
    category: str | None = None,
    author: str | None = None,
    q: str | None = None,
) -> tuple[list[Article], int]:
    """Published, non-deleted articles, newest first."""
    conditions = [Article.status == ArticleStatus.PUBLISHED.value, Article.deleted_at.is_(None)]
    if category:
        conditions.append(Article.category == category)
    if q:
        conditions.append(Article.title.ilike(f"%{q}%"))

    query = select(Article).where(*conditions)
    count_query = select(func.count(Article.id)).where(*conditions)

    if author:
        query = query.join(User, Article.author_id == User.id).where(User.name.ilike(f"%{author}%"))
        count_query = count_query.join(User, Article.author_id == User.id).where(User.name.ilike(f"%{author}%"))

    total = (await session.execute(count_query)).scalar_one()

    query = query.order_by(Article.created_at.desc()).offset((page - 1) * size).limit(size)
    result = await session.execute(query)
    return list(result.scalars().all()), total


async def soft_delete_article(session: AsyncSession, article: Article) -> None:
    article.deleted_at = datetime.now(timezone.utc)
    await session.commit()


# Read tracking


async def record_read_event(session: AsyncSession, article_id: str, reader_id: str | None) -> ReadEvent:
    event = ReadEvent(article_id=article_id, reader_id=reader_id, read_at=datetime.now(timezone.utc))
    session.add(event)
    await session.commit()
    return event


async def count_reads_by_article(session: AsyncSession, start: datetime, end: datetime) -> list[tuple[str, int]]:
    """Read counts per article for events with start <= read_at <= end."""
    result = await session.execute(
        select(ReadEvent.article_id, func.count(ReadEvent.id))
        .where(ReadEvent.read_at >= start, ReadEvent.read_at <= end)
        .group_by(ReadEvent.article_id)
    )
    return [(article_id, int(count)) for article_id, count in result.all()]


def build_daily_analytics_upsert(article_id: str, day: date, view_count: int):
    stmt = pg_insert(DailyAnalytics).values(article_id=article_id, date=day, view_count=view_count)
    # Full replace: reruns for the same day recompute from the raw log.
    return stmt.on_conflict_do_update(
        constraint="uq_daily_analytics_article_date",
        set_={"view_count": stmt.excluded.view_count},
    )


async def upsert_daily_analytics(session: AsyncSession, article_id: str, day: date, view_count: int) -> None:
    await session.execute(build_daily_analytics_upsert(article_id, day, view_count))
    await session.commit()


async def get_daily_view_rows(session: AsyncSession, article_ids: list[str]) -> list[tuple[str, int]]:
    if not article_ids:
        return []
    result = await session.execute(
        select(DailyAnalytics.article_id, DailyAnalytics.view_count).where(DailyAnalytics.article_id.in_(article_ids))
    )
    return [(article_id, int(view_count)) for article_id, view_count in result.all()]
