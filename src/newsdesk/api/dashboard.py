from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from newsdesk.api.deps import require_author
from newsdesk.db.session import get_async_session
from newsdesk.models.schemas import DashboardItemOut, PaginatedResponse, TokenPayload
from newsdesk.services.analytics import get_author_dashboard

router = APIRouter(prefix="/author", tags=["dashboard"])


@router.get("/dashboard", response_model=PaginatedResponse[DashboardItemOut])
async def get_dashboard(
    page: int = Query(1, ge=1),
    size: int = Query(10, ge=1, le=100),
    user: TokenPayload = Depends(require_author),
    session: AsyncSession = Depends(get_async_session),
):
    dashboard = await get_author_dashboard(session, user.sub, page, size)
    return PaginatedResponse[DashboardItemOut](
        Message="Dashboard data retrieved successfully",
        Object=[DashboardItemOut.model_validate(item) for item in dashboard.items],
        PageNumber=page,
        PageSize=size,
        TotalSize=dashboard.total,
    )
