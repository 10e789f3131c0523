from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from conduit.database import get_db
from conduit.dependencies import PaginationParams, get_current_user, get_optional_user
from conduit.models import User
from conduit.projection import article_view, comment_view
from conduit.schemas import (
    ArticleCreateRequest,
    ArticleResponse,
    ArticleUpdateRequest,
    CommentCreateRequest,
    CommentResponse,
    MultipleArticlesResponse,
    MultipleCommentsResponse,
)
from conduit.services import article_service, comment_service, feed_service

router = APIRouter(prefix="/api/articles", tags=["articles"])


def _viewer_id(viewer: User | None) -> int | None:
    return viewer.id if viewer else None


def _many(aggregates, total: int) -> MultipleArticlesResponse:
    return MultipleArticlesResponse(
        articles=[article_view(a) for a in aggregates],
        articles_count=total,
    )

@router.get("", response_model=MultipleArticlesResponse)
async def list_articles(
    tag: str | None = None,
    author: str | None = None,
    favorited: str | None = None,
    pagination: PaginationParams = Depends(),
    viewer: User | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db, scope="function"),
):
    aggregates, total = await article_service.list_articles(
        db,
        tag=tag,
        author=author,
        favorited=favorited,
        limit=pagination.limit,
        offset=pagination.offset,
        viewer_id=_viewer_id(viewer),
    )
    return _many(aggregates, total)

# Declared before "/{slug}" so "feed" is never taken for a slug.
@router.get("/feed", response_model=MultipleArticlesResponse)
async def feed(
    pagination: PaginationParams = Depends(),
    viewer: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db, scope="function"),
):
    aggregates, total = await feed_service.get_feed(
        db, viewer.id, limit=pagination.limit, offset=pagination.offset
    )
    return _many(aggregates, total)

@router.post("", status_code=201, response_model=ArticleResponse)
async def create_article(
    payload: ArticleCreateRequest,
    viewer: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db, scope="function"),
):
    aggregate = await article_service.create_article(db, viewer.id, payload.article)
    return ArticleResponse(article=article_view(aggregate))

@router.get("/{slug}", response_model=ArticleResponse)
async def get_article(
    slug: str,
    viewer: User | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db, scope="function"),
):
    aggregate = await article_service.get_article(db, slug, _viewer_id(viewer))
    return ArticleResponse(article=article_view(aggregate))

@router.put("/{slug}", response_model=ArticleResponse)
async def update_article(
    slug: str,
    payload: ArticleUpdateRequest,
    viewer: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db, scope="function"),
):
    aggregate = await article_service.update_article(db, slug, viewer.id, payload.article)
    return ArticleResponse(article=article_view(aggregate))

@router.delete("/{slug}")
async def delete_article(
    slug: str,
    viewer: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db, scope="function"),
):
    await article_service.delete_article(db, slug, viewer.id)
    return {}

@router.post("/{slug}/favorite", response_model=ArticleResponse)
async def favorite_article(
    slug: str,
    viewer: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db, scope="function"),
):
    aggregate = await article_service.favorite(db, slug, viewer.id)
    return ArticleResponse(article=article_view(aggregate))

@router.delete("/{slug}/favorite", response_model=ArticleResponse)
async def unfavorite_article(
    slug: str,
    viewer: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db, scope="function"),
):
    aggregate = await article_service.unfavorite(db, slug, viewer.id)
    return ArticleResponse(article=article_view(aggregate))

@router.get("/{slug}/comments", response_model=MultipleCommentsResponse)
async def list_comments(
    slug: str,
    viewer: User | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db, scope="function"),
):
    aggregates = await comment_service.list_comments(db, slug, _viewer_id(viewer))
    return MultipleCommentsResponse(comments=[comment_view(c) for c in aggregates])

@router.post("/{slug}/comments", status_code=201, response_model=CommentResponse)
async def add_comment(
    slug: str,
    payload: CommentCreateRequest,
    viewer: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db, scope="function"),
):
    aggregate = await comment_service.add_comment(db, slug, viewer.id, payload.comment)
    return CommentResponse(comment=comment_view(aggregate))

@router.delete("/{slug}/comments/{comment_id}")
async def delete_comment(
    slug: str,
    comment_id: int,
    viewer: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db, scope="function"),
):
    await comment_service.delete_comment(db, slug, comment_id, viewer.id)
    return {}
