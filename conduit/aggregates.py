"""
Fully loaded read models handed from the services to the projection layer.

Each value holds the ORM entity with every relationship it needs already
loaded, plus the viewer-relative facts computed from the store in the same
request.  Nothing here issues queries.
"""
from dataclasses import dataclass

from conduit.models import Article, Comment, User


@dataclass(frozen=True)
class ProfileAggregate:
    user: User
    following: bool = False


@dataclass(frozen=True)
class ArticleAggregate:
    article: Article
    favorites_count: int = 0
    favorited: bool = False
    following: bool = False

    @property
    def slug(self) -> str:
        return self.article.slug


@dataclass(frozen=True)
class CommentAggregate:
    comment: Comment
    following: bool = False
