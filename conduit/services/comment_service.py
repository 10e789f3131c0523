"""
Comment service — comments scoped to a single article.

A comment is addressed by (article slug, comment id); an id that exists
but belongs to another article is reported as not found.  Only the
comment's own author may delete it; the article's author has no extra
rights over other users' comments.
"""
from typing import Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from conduit.aggregates import CommentAggregate
from conduit.exceptions import Forbidden, NotFound
from conduit.models import Article, Comment
from conduit.schemas import CommentCreate
from conduit.services import profile_service

# Upper bound of the INTEGER primary key column.
_MAX_ROW_ID = 2**31 - 1


async def _article_id(db: AsyncSession, slug: str) -> int:
    result = await db.execute(select(Article.id).where(Article.slug == slug))
    article_id = result.scalar_one_or_none()
    if article_id is None:
        raise NotFound("article")
    return article_id


def _comment_query():
    return select(Comment).options(joinedload(Comment.author))


async def _load_aggregates(
    db: AsyncSession, comments: Sequence[Comment], viewer_id: int | None
) -> list[CommentAggregate]:
    following = await profile_service.following_ids(
        db, viewer_id, {c.author_id for c in comments}
    )
    return [CommentAggregate(comment=c, following=c.author_id in following) for c in comments]


async def _get_scoped(db: AsyncSession, slug: str, comment_id: int) -> Comment:
    article_id = await _article_id(db, slug)
    if not 1 <= comment_id <= _MAX_ROW_ID:
        raise NotFound("comment")
    q = _comment_query().where(Comment.id == comment_id, Comment.article_id == article_id)
    comment = (await db.execute(q)).unique().scalar_one_or_none()
    if comment is None:
        raise NotFound("comment")
    return comment


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def add_comment(
    db: AsyncSession, slug: str, author_id: int, data: CommentCreate
) -> CommentAggregate:
    """Append a comment by *author_id*; an empty body is accepted."""
    article_id = await _article_id(db, slug)
    comment = Comment(body=data.body, article_id=article_id, author_id=author_id)
    db.add(comment)
    await db.flush()

    q = (
        _comment_query()
        .where(Comment.id == comment.id)
        .execution_options(populate_existing=True)
    )
    comment = (await db.execute(q)).unique().scalar_one()
    (aggregate,) = await _load_aggregates(db, [comment], author_id)
    return aggregate


async def list_comments(
    db: AsyncSession, slug: str, viewer_id: int | None = None
) -> list[CommentAggregate]:
    """All comments of the article, oldest first."""
    article_id = await _article_id(db, slug)
    q = (
        _comment_query()
        .where(Comment.article_id == article_id)
        .order_by(Comment.created_at.asc(), Comment.id.asc())
    )
    comments = (await db.execute(q)).unique().scalars().all()
    return await _load_aggregates(db, comments, viewer_id)


async def get_comment(
    db: AsyncSession, slug: str, comment_id: int, viewer_id: int | None = None
) -> CommentAggregate:
    comment = await _get_scoped(db, slug, comment_id)
    (aggregate,) = await _load_aggregates(db, [comment], viewer_id)
    return aggregate


async def delete_comment(db: AsyncSession, slug: str, comment_id: int, viewer_id: int) -> None:
    comment = await _get_scoped(db, slug, comment_id)
    if comment.author_id != viewer_id:
        raise Forbidden("comment")
    await db.execute(delete(Comment).where(Comment.id == comment.id))
