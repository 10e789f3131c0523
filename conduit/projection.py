"""
Response projection: the single place where internal entities are shaped
into the externally visible representation.

All functions are pure; they read only what the aggregate already carries.
"""
from conduit.aggregates import ArticleAggregate, CommentAggregate, ProfileAggregate
from conduit.models import User
from conduit.schemas import ArticleView, CommentView, ProfileView, UserView


def profile_view(profile: ProfileAggregate) -> ProfileView:
    return _profile(profile.user, profile.following)


def user_view(user: User, token: str) -> UserView:
    """The authenticated user's own representation, token included."""
    return UserView(
        email=user.email,
        token=token,
        username=user.username,
        bio=user.bio,
        image=user.image,
    )


def article_view(aggregate: ArticleAggregate) -> ArticleView:
    article = aggregate.article
    return ArticleView(
        slug=article.slug,
        title=article.title,
        description=article.description,
        body=article.body,
        tag_list=sorted(tag.name for tag in article.tags),
        created_at=article.created_at,
        updated_at=article.updated_at or article.created_at,
        favorited=aggregate.favorited,
        favorites_count=aggregate.favorites_count,
        author=_profile(article.author, aggregate.following),
    )


def comment_view(aggregate: CommentAggregate) -> CommentView:
    comment = aggregate.comment
    return CommentView(
        id=comment.id,
        created_at=comment.created_at,
        updated_at=comment.updated_at or comment.created_at,
        body=comment.body,
        author=_profile(comment.author, aggregate.following),
    )


def _profile(user: User, following: bool) -> ProfileView:
    return ProfileView(
        username=user.username,
        bio=user.bio,
        image=user.image,
        following=following,
    )
