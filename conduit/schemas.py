from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from conduit.config import settings


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys (``tagList``, ``createdAt``...)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- User ---

class UserRegister(BaseModel):
    username: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(min_length=settings.PASSWORD_MIN_LENGTH, max_length=255)


class UserLogin(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class UserUpdate(BaseModel):
    username: str | None = Field(None, min_length=1, max_length=100)
    email: EmailStr | None = None
    password: str | None = Field(None, min_length=settings.PASSWORD_MIN_LENGTH, max_length=255)
    bio: str | None = None
    image: str | None = Field(None, max_length=500)


class RegisterRequest(BaseModel):
    user: UserRegister


class LoginRequest(BaseModel):
    user: UserLogin


class UserUpdateRequest(BaseModel):
    user: UserUpdate


class UserView(BaseModel):
    email: str
    token: str
    username: str
    bio: str | None = None
    image: str | None = None


class UserResponse(BaseModel):
    user: UserView


# --- Profile ---

class ProfileView(BaseModel):
    username: str
    bio: str | None = None
    image: str | None = None
    following: bool = False


class ProfileResponse(BaseModel):
    profile: ProfileView


# --- Article ---

# Matches the width of the tags.name column.
TagName = Annotated[str, Field(max_length=100)]


class ArticleCreate(CamelModel):
    title: str = Field(max_length=300)
    description: str
    body: str
    tag_list: list[TagName] = []


class ArticleUpdate(CamelModel):
    title: str | None = Field(None, max_length=300)
    description: str | None = None
    body: str | None = None
    tag_list: list[TagName] | None = None


class ArticleCreateRequest(BaseModel):
    article: ArticleCreate


class ArticleUpdateRequest(BaseModel):
    article: ArticleUpdate


class ArticleView(CamelModel):
    slug: str
    title: str
    description: str
    body: str
    tag_list: list[str]
    created_at: datetime
    updated_at: datetime
    favorited: bool
    favorites_count: int
    author: ProfileView


class ArticleResponse(BaseModel):
    article: ArticleView


class MultipleArticlesResponse(CamelModel):
    articles: list[ArticleView]
    articles_count: int


# --- Comment ---

class CommentCreate(BaseModel):
    body: str


class CommentCreateRequest(BaseModel):
    comment: CommentCreate


class CommentView(CamelModel):
    id: int
    created_at: datetime
    updated_at: datetime
    body: str
    author: ProfileView


class CommentResponse(BaseModel):
    comment: CommentView


class MultipleCommentsResponse(BaseModel):
    comments: list[CommentView]


# --- Tag ---

class TagsResponse(BaseModel):
    tags: list[str]
