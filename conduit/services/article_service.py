"""
Article service — business logic for the Article aggregate.

Design notes
------------
- Slugs are ``slugify(title)`` plus a short random suffix.  The insert runs
  inside a SAVEPOINT so a unique-constraint collision rolls back only the
  attempt, which is retried with a fresh suffix.  No read-then-write check
  is involved, so concurrent creations with identical titles cannot both
  claim one slug.  The slug never changes after creation.
- Every read returns ``ArticleAggregate`` values: the article with author
  (``joinedload``) and tags (``selectinload``) loaded, plus the favorites
  count and the viewer-relative flags.  A page costs a fixed number of
  statements regardless of its size: COUNT, the page itself, tags, favorite
  counts, viewer favorites and viewer follows.
- ``favorites_count`` is always a ``COUNT`` over ``favorites``; nothing
  caches it.
- Service functions flush but do not commit; the transaction boundary
  is owned by the ``get_db`` dependency in the router layer.
"""
import logging
import re
import secrets
import string
import unicodedata
from typing import Sequence

from sqlalchemy import and_, delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, selectinload

from conduit.aggregates import ArticleAggregate
from conduit.config import settings
from conduit.exceptions import Forbidden, NotFound
from conduit.models import Article, Comment, Favorite, Tag, User, article_tags
from conduit.schemas import ArticleCreate, ArticleUpdate
from conduit.services import profile_service

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_SLUG_SEPARATOR_RE = re.compile(r"[^a-z0-9]+")
_SLUG_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
_SLUG_BASE_MAX_LENGTH = 300


def slugify(text: str) -> str:
    """
    ASCII-fold and lowercase *text*, then collapse every run of characters
    outside ``[a-z0-9]`` into one ``-``.  Letters with no ASCII form drop out.
    """
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    return _SLUG_SEPARATOR_RE.sub("-", text.lower()).strip("-")


def slug_suffix(length: int | None = None) -> str:
    length = settings.SLUG_SUFFIX_LENGTH if length is None else length
    return "".join(secrets.choice(_SLUG_SUFFIX_ALPHABET) for _ in range(length))


def candidate_slug(title: str) -> str:
    """A fresh slug candidate for *title*; never empty."""
    base = slugify(title)[:_SLUG_BASE_MAX_LENGTH].rstrip("-")
    suffix = slug_suffix()
    return f"{base}-{suffix}" if base else suffix


def normalize_tag_names(names: Sequence[str]) -> list[str]:
    """Trim, drop empties and de-duplicate while keeping first-seen order."""
    seen: dict[str, None] = {}
    for name in names:
        name = name.strip()
        if name:
            seen.setdefault(name, None)
    return list(seen)


def _article_query():
    return select(Article).options(joinedload(Article.author), selectinload(Article.tags))


def _filtered(q, filters: Sequence):
    return q.where(and_(*filters)) if filters else q


# ---------------------------------------------------------------------------
# Tag resolution helper (used by create / update)
# ---------------------------------------------------------------------------

async def _resolve_tags(db: AsyncSession, tag_names: Sequence[str]) -> list[Tag]:
    """
    Return Tag rows for *tag_names*, reusing existing rows and creating the
    missing ones.  A tag inserted concurrently by another request is
    picked up instead of duplicated.
    """
    names = normalize_tag_names(tag_names)
    if not names:
        return []

    result = await db.execute(select(Tag).where(Tag.name.in_(names)))
    by_name = {tag.name: tag for tag in result.scalars().all()}

    for name in names:
        if name in by_name:
            continue
        tag = Tag(name=name)
        try:
            async with db.begin_nested():
                db.add(tag)
        except IntegrityError:
            logger.debug("Tag %r created concurrently; reusing it", name)
            tag = (await db.execute(select(Tag).where(Tag.name == name))).scalar_one()
        by_name[name] = tag

    return [by_name[name] for name in names]


# ---------------------------------------------------------------------------
# Aggregate loading
# ---------------------------------------------------------------------------

async def load_aggregates(
    db: AsyncSession, articles: Sequence[Article], viewer_id: int | None
) -> list[ArticleAggregate]:
    """
    Attach favorites counts and viewer-relative flags to *articles* (which
    must already have author and tags loaded), preserving their order.
    """
    if not articles:
        return []
    ids = [a.id for a in articles]

    counts_q = (
        select(Favorite.article_id, func.count())
        .where(Favorite.article_id.in_(ids))
        .group_by(Favorite.article_id)
    )
    counts = {article_id: count for article_id, count in (await db.execute(counts_q)).all()}

    favorited: set[int] = set()
    if viewer_id is not None:
        favorited_q = select(Favorite.article_id).where(
            Favorite.user_id == viewer_id, Favorite.article_id.in_(ids)
        )
        favorited = set((await db.execute(favorited_q)).scalars().all())

    following = await profile_service.following_ids(
        db, viewer_id, {a.author_id for a in articles}
    )

    return [
        ArticleAggregate(
            article=a,
            favorites_count=counts.get(a.id, 0),
            favorited=a.id in favorited,
            following=a.author_id in following,
        )
        for a in articles
    ]


async def _load_one(db: AsyncSession, article_id: int, viewer_id: int | None) -> ArticleAggregate:
    q = (
        _article_query()
        .where(Article.id == article_id)
        .execution_options(populate_existing=True)
    )
    article = (await db.execute(q)).unique().scalar_one()
    (aggregate,) = await load_aggregates(db, [article], viewer_id)
    return aggregate


async def fetch_page(
    db: AsyncSession,
    filters: Sequence,
    limit: int,
    offset: int,
    viewer_id: int | None,
) -> tuple[list[ArticleAggregate], int]:
    """
    Return one most-recent-first page of articles matching every clause in
    *filters*, together with the total match count.
    """
    count_q = _filtered(select(func.count()).select_from(Article), filters)
    total: int = (await db.execute(count_q)).scalar_one()
    if total == 0:
        return [], 0

    page_q = (
        _filtered(_article_query(), filters)
        .order_by(Article.created_at.desc(), Article.id.desc())
        .offset(offset)
        .limit(limit)
    )
    articles = (await db.execute(page_q)).unique().scalars().all()
    return await load_aggregates(db, articles, viewer_id), total


async def _get_row(db: AsyncSession, slug: str) -> Article:
    q = select(Article).where(Article.slug == slug).options(selectinload(Article.tags))
    article = (await db.execute(q)).scalar_one_or_none()
    if article is None:
        raise NotFound("article")
    return article


async def _get_owned(db: AsyncSession, slug: str, viewer_id: int) -> Article:
    article = await _get_row(db, slug)
    if article.author_id != viewer_id:
        raise Forbidden("article")
    return article


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def get_article(
    db: AsyncSession, slug: str, viewer_id: int | None = None
) -> ArticleAggregate:
    q = _article_query().where(Article.slug == slug)
    article = (await db.execute(q)).unique().scalar_one_or_none()
    if article is None:
        raise NotFound("article")
    (aggregate,) = await load_aggregates(db, [article], viewer_id)
    return aggregate


async def list_articles(
    db: AsyncSession,
    tag: str | None = None,
    author: str | None = None,
    favorited: str | None = None,
    limit: int = 20,
    offset: int = 0,
    viewer_id: int | None = None,
) -> tuple[list[ArticleAggregate], int]:
    """
    Return a page of articles and the total count.

    *tag*, *author* (username) and *favorited* (username of a user who
    favorited the article) are AND-combined.  Unknown names simply match
    nothing.
    """
    filters = []
    if tag is not None:
        filters.append(Article.tags.any(Tag.name == tag))
    if author is not None:
        filters.append(Article.author.has(User.username == author))
    if favorited is not None:
        favorited_by = (
            select(Favorite.article_id)
            .join(User, User.id == Favorite.user_id)
            .where(User.username == favorited)
        )
        filters.append(Article.id.in_(favorited_by))

    return await fetch_page(db, filters, limit, offset, viewer_id)


async def create_article(
    db: AsyncSession, author_id: int, data: ArticleCreate
) -> ArticleAggregate:
    """
    Create an article owned by *author_id* and return its aggregate.

    Empty title, description and body are accepted.  Raises the last
    ``IntegrityError`` if ``SLUG_MAX_ATTEMPTS`` consecutive slug candidates
    all collide.
    """
    tags = await _resolve_tags(db, data.tag_list)

    for attempt in range(1, settings.SLUG_MAX_ATTEMPTS + 1):
        article = Article(
            slug=candidate_slug(data.title),
            title=data.title,
            description=data.description,
            body=data.body,
            author_id=author_id,
        )
        try:
            async with db.begin_nested():
                db.add(article)
        except IntegrityError:
            if attempt == settings.SLUG_MAX_ATTEMPTS:
                logger.warning(
                    "Giving up on slug for %r after %d collisions", data.title, attempt
                )
                raise
            logger.debug("Slug %r collided (attempt %d); retrying", article.slug, attempt)
            continue
        break

    article.tags = tags
    await db.flush()
    logger.info("Created article %s by user %s", article.slug, author_id)
    return await _load_one(db, article.id, author_id)


async def update_article(
    db: AsyncSession, slug: str, viewer_id: int, data: ArticleUpdate
) -> ArticleAggregate:
    """
    Apply the fields present in *data*; only the author may do this.

    The slug is kept even when the title changes so existing links keep
    resolving.  ``tagList``, when present, replaces the tag set.
    """
    article = await _get_owned(db, slug, viewer_id)

    patch = data.model_dump(exclude_unset=True)
    tag_names = patch.pop("tag_list", None)
    for field in ("title", "description", "body"):
        if patch.get(field) is not None:
            setattr(article, field, patch[field])

    if tag_names is not None:
        article.tags = await _resolve_tags(db, tag_names)

    await db.flush()
    return await _load_one(db, article.id, viewer_id)


async def delete_article(db: AsyncSession, slug: str, viewer_id: int) -> None:
    """
    Delete the article together with its comments, favorites and tag
    associations.  Tag rows themselves stay.
    """
    article = await _get_owned(db, slug, viewer_id)

    await db.execute(delete(Comment).where(Comment.article_id == article.id))
    await db.execute(delete(Favorite).where(Favorite.article_id == article.id))
    await db.execute(delete(article_tags).where(article_tags.c.article_id == article.id))
    await db.execute(delete(Article).where(Article.id == article.id))
    logger.info("Deleted article %s by user %s", slug, viewer_id)


async def favorite(db: AsyncSession, slug: str, viewer_id: int) -> ArticleAggregate:
    """Add *viewer_id* to the article's favorites; repeating is a no-op."""
    article = await _get_row(db, slug)

    existing = await db.execute(
        select(Favorite.user_id).where(
            Favorite.user_id == viewer_id, Favorite.article_id == article.id
        )
    )
    if existing.first() is None:
        try:
            async with db.begin_nested():
                db.add(Favorite(user_id=viewer_id, article_id=article.id))
        except IntegrityError:
            logger.debug("Favorite %s/%s raced with a concurrent insert", viewer_id, slug)
    else:
        logger.debug("User %s already favorited %s", viewer_id, slug)

    return await _load_one(db, article.id, viewer_id)


async def unfavorite(db: AsyncSession, slug: str, viewer_id: int) -> ArticleAggregate:
    """Remove *viewer_id* from the article's favorites; absent is a no-op."""
    article = await _get_row(db, slug)
    await db.execute(
        delete(Favorite).where(
            Favorite.user_id == viewer_id, Favorite.article_id == article.id
        )
    )
    return await _load_one(db, article.id, viewer_id)


async def get_tags(db: AsyncSession) -> list[str]:
    """Every known tag name, alphabetically."""
    result = await db.execute(select(Tag.name).order_by(Tag.name))
    return list(result.scalars().all())
