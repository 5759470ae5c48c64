from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from newsdesk.api.deps import get_read_tracker, optional_user, require_author
from newsdesk.db.queries import (
    create_article,
    get_article_by_id,
    list_author_articles,
    list_public_articles,
    soft_delete_article,
    update_article,
)
from newsdesk.db.session import get_async_session
from newsdesk.errors import ForbiddenError, GoneError, NotFoundError
from newsdesk.models.db import Article
from newsdesk.models.schemas import (
    ApiResponse,
    ArticleCreate,
    ArticleOut,
    ArticleUpdate,
    PaginatedResponse,
    TokenPayload,
)
from newsdesk.services.read_tracking import ReadTracker

router = APIRouter(prefix="/articles", tags=["articles"])


async def _get_owned_article(session: AsyncSession, article_id: str, author_id: str, action: str) -> Article:
    article = await get_article_by_id(session, article_id)
    if article is None or article.deleted_at is not None:
        raise NotFoundError("Article not found")
    if article.author_id != author_id:
        raise ForbiddenError(f"You can only {action} your own articles")
    return article


@router.get("/me", response_model=PaginatedResponse[ArticleOut])
async def get_my_articles(
    page: int = Query(1, ge=1),
    size: int = Query(10, ge=1, le=100),
    include_deleted: bool = Query(False, alias="includeDeleted"),
    user: TokenPayload = Depends(require_author),
    session: AsyncSession = Depends(get_async_session),
):
    articles, total = await list_author_articles(session, user.sub, page, size, include_deleted)
    return PaginatedResponse[ArticleOut](
        Message="Articles retrieved successfully",
        Object=[ArticleOut.model_validate(a) for a in articles],
        PageNumber=page,
        PageSize=size,
        TotalSize=total,
    )


@router.get("", response_model=PaginatedResponse[ArticleOut])
async def get_public_feed(
    page: int = Query(1, ge=1),
    size: int = Query(10, ge=1, le=100),
    category: str | None = None,
    author: str | None = Query(None, description="Partial, case-insensitive author name"),
    q: str | None = Query(None, description="Keyword searched in titles"),
    session: AsyncSession = Depends(get_async_session),
):
    articles, total = await list_public_articles(session, page, size, category, author, q)
    return PaginatedResponse[ArticleOut](
        Message="Articles retrieved successfully",
        Object=[ArticleOut.model_validate(a) for a in articles],
        PageNumber=page,
        PageSize=size,
        TotalSize=total,
    )


@router.get("/{article_id}", response_model=ApiResponse[ArticleOut])
async def read_article(
    article_id: str,
    request: Request,
    user: TokenPayload | None = Depends(optional_user),
    session: AsyncSession = Depends(get_async_session),
    tracker: ReadTracker = Depends(get_read_tracker),
):
    article = await get_article_by_id(session, article_id)
    if article is None:
        raise NotFoundError("Article not found")
    if article.deleted_at is not None:
        raise GoneError("News article no longer available")

    # Not awaited: tracking outcome never affects this response.
    tracker.spawn(article.id, user.sub if user else None, request.client.host if request.client else None)

    return ApiResponse[ArticleOut](Message="Article retrieved successfully", Object=ArticleOut.model_validate(article))


@router.post("", response_model=ApiResponse[ArticleOut], status_code=201)
async def create(
    body: ArticleCreate,
    user: TokenPayload = Depends(require_author),
    session: AsyncSession = Depends(get_async_session),
):
    article = await create_article(session, user.sub, body.title, body.content, body.category, body.status.value)
    return ApiResponse[ArticleOut](Message="Article created successfully", Object=ArticleOut.model_validate(article))


@router.put("/{article_id}", response_model=ApiResponse[ArticleOut])
async def update(
    article_id: str,
    body: ArticleUpdate,
    user: TokenPayload = Depends(require_author),
    session: AsyncSession = Depends(get_async_session),
):
    article = await _get_owned_article(session, article_id, user.sub, "edit")
    changes = body.model_dump(exclude_none=True, mode="json")
    article = await update_article(session, article, changes)
    return ApiResponse[ArticleOut](Message="Article updated successfully", Object=ArticleOut.model_validate(article))


@router.delete("/{article_id}", response_model=ApiResponse[None])
async def delete(
    article_id: str,
    user: TokenPayload = Depends(require_author),
    session: AsyncSession = Depends(get_async_session),
):
    article = await _get_owned_article(session, article_id, user.sub, "delete")
    await soft_delete_article(session, article)
    return ApiResponse[None](Message="Article deleted successfully")
