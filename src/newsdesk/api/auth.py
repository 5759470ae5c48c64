from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from newsdesk.db.session import get_async_session
from newsdesk.models.schemas import ApiResponse, LoginRequest, LoginResult, SignupRequest, UserOut
from newsdesk.services import auth as auth_service

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/signup", response_model=ApiResponse[UserOut], status_code=201)
async def signup(body: SignupRequest, session: AsyncSession = Depends(get_async_session)):
    user = await auth_service.signup(session, body)
    return ApiResponse[UserOut](Message="User registered successfully", Object=UserOut.model_validate(user))


@router.post("/login", response_model=ApiResponse[LoginResult])
async def login(body: LoginRequest, session: AsyncSession = Depends(get_async_session)):
    result = await auth_service.login(session, body)
    return ApiResponse[LoginResult](Message="Login successful", Object=result)
