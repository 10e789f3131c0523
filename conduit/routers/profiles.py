from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from conduit.database import get_db
from conduit.dependencies import get_current_user, get_optional_user
from conduit.models import User
from conduit.projection import profile_view
from conduit.schemas import ProfileResponse
from conduit.services import profile_service

router = APIRouter(prefix="/api/profiles", tags=["profiles"])

@router.get("/{username}", response_model=ProfileResponse)
async def get_profile(
    username: str,
    viewer: User | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db, scope="function"),
):
    profile = await profile_service.get_profile(db, username, viewer.id if viewer else None)
    return ProfileResponse(profile=profile_view(profile))

@router.post("/{username}/follow", response_model=ProfileResponse)
async def follow(
    username: str,
    viewer: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db, scope="function"),
):
    profile = await profile_service.follow(db, viewer.id, username)
    return ProfileResponse(profile=profile_view(profile))

@router.delete("/{username}/follow", response_model=ProfileResponse)
async def unfollow(
    username: str,
    viewer: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db, scope="function"),
):
    profile = await profile_service.unfollow(db, viewer.id, username)
    return ProfileResponse(profile=profile_view(profile))
