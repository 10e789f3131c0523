from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from conduit.database import get_db
from conduit.dependencies import get_current_user, get_token_service
from conduit.models import User
from conduit.projection import user_view
from conduit.schemas import LoginRequest, RegisterRequest, UserResponse, UserUpdateRequest
from conduit.security import TokenService
from conduit.services import user_service

router = APIRouter(prefix="/api", tags=["users"])

@router.post("/users", status_code=201, response_model=UserResponse)
async def register(
    payload: RegisterRequest,
    db: AsyncSession = Depends(get_db, scope="function"),
    tokens: TokenService = Depends(get_token_service),
):
    user = await user_service.register_user(db, payload.user)
    return UserResponse(user=user_view(user, tokens.issue(user.id)))

@router.post("/users/login", response_model=UserResponse)
async def login(
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db, scope="function"),
    tokens: TokenService = Depends(get_token_service),
):
    user = await user_service.authenticate(db, payload.user)
    return UserResponse(user=user_view(user, tokens.issue(user.id)))

@router.get("/user", response_model=UserResponse)
async def current_user(
    user: User = Depends(get_current_user),
    tokens: TokenService = Depends(get_token_service),
):
    return UserResponse(user=user_view(user, tokens.issue(user.id)))

@router.put("/user", response_model=UserResponse)
async def update_current_user(
    payload: UserUpdateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db, scope="function"),
    tokens: TokenService = Depends(get_token_service),
):
    user = await user_service.update_user(db, user, payload.user)
    return UserResponse(user=user_view(user, tokens.issue(user.id)))
