"""
Feed service — articles written by the users a viewer follows.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from conduit.aggregates import ArticleAggregate
from conduit.models import Article, Follow
from conduit.services import article_service


async def get_feed(
    db: AsyncSession,
    viewer_id: int,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[ArticleAggregate], int]:
    """
    Return the viewer's feed page, most recent first, and its total size.

    Following nobody yields an empty page rather than an error.  Offset
    pagination is only stable while no new articles are inserted.
    """
    followed = select(Follow.followee_id).where(Follow.follower_id == viewer_id)
    return await article_service.fetch_page(
        db, [Article.author_id.in_(followed)], limit, offset, viewer_id
    )
