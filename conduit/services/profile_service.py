"""
Profile service — public user profiles and the directed follow graph.

Follow and unfollow are idempotent: repeating either is a successful
no-op.  Following yourself is rejected; unfollowing yourself has nothing
to remove and succeeds.
"""
import logging
from typing import Iterable

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from conduit.aggregates import ProfileAggregate
from conduit.exceptions import NotFound, ValidationError
from conduit.models import Follow, User

logger = logging.getLogger(__name__)


async def get_user_by_username(db: AsyncSession, username: str) -> User:
    result = await db.execute(select(User).where(User.username == username))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFound("profile")
    return user


async def is_following(db: AsyncSession, viewer_id: int | None, target_id: int) -> bool:
    """Projection helper only; never used to gate a mutation."""
    return target_id in await following_ids(db, viewer_id, [target_id])


async def following_ids(
    db: AsyncSession, viewer_id: int | None, target_ids: Iterable[int]
) -> set[int]:
    """Return the subset of *target_ids* that *viewer_id* follows, in one query."""
    target_ids = set(target_ids)
    if viewer_id is None or not target_ids:
        return set()
    q = select(Follow.followee_id).where(
        Follow.follower_id == viewer_id,
        Follow.followee_id.in_(target_ids),
    )
    return set((await db.execute(q)).scalars().all())


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def get_profile(
    db: AsyncSession, username: str, viewer_id: int | None = None
) -> ProfileAggregate:
    user = await get_user_by_username(db, username)
    return ProfileAggregate(user=user, following=await is_following(db, viewer_id, user.id))


async def follow(db: AsyncSession, follower_id: int, username: str) -> ProfileAggregate:
    target = await get_user_by_username(db, username)
    if target.id == follower_id:
        raise ValidationError({"profile": "cannot follow yourself"})

    if await is_following(db, follower_id, target.id):
        logger.debug("User %s already follows %s", follower_id, target.id)
        return ProfileAggregate(user=target, following=True)

    try:
        async with db.begin_nested():
            db.add(Follow(follower_id=follower_id, followee_id=target.id))
    except IntegrityError:
        # A concurrent request inserted the same edge first.
        logger.debug("Follow %s -> %s raced with a concurrent insert", follower_id, target.id)
    return ProfileAggregate(user=target, following=True)


async def unfollow(db: AsyncSession, follower_id: int, username: str) -> ProfileAggregate:
    target = await get_user_by_username(db, username)
    await db.execute(
        delete(Follow).where(
            Follow.follower_id == follower_id,
            Follow.followee_id == target.id,
        )
    )
    return ProfileAggregate(user=target, following=False)
