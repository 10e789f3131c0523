"""
Direct service-layer tests — exercise business logic without HTTP: slug
generation and collision retry, tag reuse, derived favorite counts,
ownership, and cascade on delete.
"""
import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from conduit.exceptions import Forbidden, NotFound, ValidationError, InvalidCredentials
from conduit.models import Favorite, Tag, article_tags
from conduit.projection import article_view
from conduit.schemas import (
    ArticleCreate,
    ArticleUpdate,
    CommentCreate,
    UserLogin,
    UserRegister,
    UserUpdate,
)
from conduit.services import article_service, comment_service, user_service
from conftest import make_user


def _article(title: str = "Service Article", tags: list[str] | None = None) -> ArticleCreate:
    return ArticleCreate(title=title, description="d", body="b", tag_list=tags or [])


async def _count(db: AsyncSession, table) -> int:
    return (await db.execute(select(func.count()).select_from(table))).scalar_one()


# ---------------------------------------------------------------------------
# slugify
# ---------------------------------------------------------------------------

def test_slugify():
    assert article_service.slugify("Hello World!") == "hello-world"
    assert article_service.slugify("  Spaces  Everywhere  ") == "spaces-everywhere"
    assert article_service.slugify("UPPER-case---dashes") == "upper-case-dashes"
    assert article_service.slugify("a & b @ c") == "a-b-c"
    assert article_service.slugify("snake_case_title") == "snake-case-title"
    assert article_service.slugify("!!!") == ""


def test_slugify_is_ascii_only():
    assert article_service.slugify("Café Crème") == "cafe-creme"
    assert article_service.slugify("café привет") == "cafe"
    assert article_service.slugify("привет") == ""


def test_candidate_slug_is_never_empty(monkeypatch):
    monkeypatch.setattr(article_service, "slug_suffix", lambda length=None: "abc123")
    assert article_service.candidate_slug("Hi") == "hi-abc123"
    assert article_service.candidate_slug("") == "abc123"
    assert article_service.candidate_slug("???") == "abc123"


def test_slug_suffix_alphabet():
    suffix = article_service.slug_suffix(32)
    assert len(suffix) == 32
    assert suffix.isalnum() and suffix == suffix.lower()


def test_normalize_tag_names():
    assert article_service.normalize_tag_names([" go ", "go", "", "  ", "py"]) == ["go", "py"]


# ---------------------------------------------------------------------------
# Slug uniqueness
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_slug_collision_is_retried(db_session: AsyncSession, monkeypatch):
    user = await make_user(db_session)
    suffixes = iter(["aaaaaa", "aaaaaa", "bbbbbb"])
    monkeypatch.setattr(article_service, "slug_suffix", lambda length=None: next(suffixes))

    first = await article_service.create_article(db_session, user.id, _article("Test Article"))
    second = await article_service.create_article(db_session, user.id, _article("Test Article"))

    assert first.slug == "test-article-aaaaaa"
    assert second.slug == "test-article-bbbbbb"
    assert (await article_service.get_article(db_session, second.slug)).article.id == second.article.id


@pytest.mark.asyncio
async def test_slug_collision_exhaustion_raises(db_session: AsyncSession, monkeypatch):
    user = await make_user(db_session)
    monkeypatch.setattr(article_service, "slug_suffix", lambda length=None: "stuck1")

    await article_service.create_article(db_session, user.id, _article("Same"))
    with pytest.raises(IntegrityError):
        await article_service.create_article(db_session, user.id, _article("Same"))


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_tags_are_reused_not_duplicated(db_session: AsyncSession):
    user = await make_user(db_session)
    await article_service.create_article(db_session, user.id, _article("One", ["python", "web"]))
    await article_service.create_article(db_session, user.id, _article("Two", ["python"]))

    assert await _count(db_session, Tag) == 2
    assert await article_service.get_tags(db_session) == ["python", "web"]


@pytest.mark.asyncio
async def test_duplicate_tags_in_one_request_collapse(db_session: AsyncSession):
    user = await make_user(db_session)
    created = await article_service.create_article(
        db_session, user.id, _article("Dupes", ["go", "go", " go "])
    )
    assert article_view(created).tag_list == ["go"]


# ---------------------------------------------------------------------------
# Update / ownership
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_update_only_touches_present_fields(db_session: AsyncSession):
    user = await make_user(db_session)
    created = await article_service.create_article(db_session, user.id, _article("Before"))

    updated = await article_service.update_article(
        db_session, created.slug, user.id, ArticleUpdate(description="new description")
    )
    assert updated.article.title == "Before"
    assert updated.article.description == "new description"
    assert updated.article.body == "b"
    assert updated.slug == created.slug


@pytest.mark.asyncio
async def test_update_and_delete_require_ownership(db_session: AsyncSession):
    owner = await make_user(db_session, "owner")
    other = await make_user(db_session, "other")
    created = await article_service.create_article(db_session, owner.id, _article())

    with pytest.raises(Forbidden):
        await article_service.update_article(db_session, created.slug, other.id, ArticleUpdate(title="x"))
    with pytest.raises(Forbidden):
        await article_service.delete_article(db_session, created.slug, other.id)
    with pytest.raises(NotFound):
        await article_service.delete_article(db_session, "missing", owner.id)


# ---------------------------------------------------------------------------
# Favorites
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_favorites_count_is_derived(db_session: AsyncSession):
    author = await make_user(db_session, "author")
    fans = [await make_user(db_session, f"fan{i}") for i in range(3)]
    created = await article_service.create_article(db_session, author.id, _article())

    for fan in fans:
        await article_service.favorite(db_session, created.slug, fan.id)
    again = await article_service.favorite(db_session, created.slug, fans[0].id)
    assert again.favorites_count == 3
    assert again.favorited is True

    after = await article_service.unfavorite(db_session, created.slug, fans[1].id)
    assert after.favorites_count == 2
    assert after.favorited is False

    anonymous = await article_service.get_article(db_session, created.slug)
    assert anonymous.favorites_count == 2
    assert anonymous.favorited is False
    assert await _count(db_session, Favorite) == 2


@pytest.mark.asyncio
async def test_list_articles_favorited_flags(db_session: AsyncSession):
    author = await make_user(db_session, "author")
    fan = await make_user(db_session, "fan")
    liked = await article_service.create_article(db_session, author.id, _article("Liked"))
    await article_service.create_article(db_session, author.id, _article("Ignored"))
    await article_service.favorite(db_session, liked.slug, fan.id)

    page, total = await article_service.list_articles(db_session, viewer_id=fan.id)
    assert total == 2
    flags = {a.article.title: (a.favorited, a.favorites_count) for a in page}
    assert flags == {"Liked": (True, 1), "Ignored": (False, 0)}


# ---------------------------------------------------------------------------
# Delete cascade
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_delete_cascades_to_dependents_but_not_tags(db_session: AsyncSession):
    author = await make_user(db_session, "author")
    fan = await make_user(db_session, "fan")
    created = await article_service.create_article(
        db_session, author.id, _article("Cascade", ["shared"])
    )
    await article_service.favorite(db_session, created.slug, fan.id)
    await comment_service.add_comment(db_session, created.slug, fan.id, CommentCreate(body="bye"))

    await article_service.delete_article(db_session, created.slug, author.id)

    assert await _count(db_session, Favorite) == 0
    assert await _count(db_session, article_tags) == 0
    assert await _count(db_session, Tag) == 1
    with pytest.raises(NotFound):
        await article_service.get_article(db_session, created.slug)


# ---------------------------------------------------------------------------
# user_service
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_register_and_authenticate(db_session: AsyncSession):
    first = await user_service.register_user(
        db_session, UserRegister(username="u1", email="u1@example.com", password="password123")
    )
    second = await user_service.register_user(
        db_session, UserRegister(username="u2", email="u2@example.com", password="password123")
    )
    assert first.id != second.id
    assert first.password_hash != "password123"

    user = await user_service.authenticate(
        db_session, UserLogin(email="u1@example.com", password="password123")
    )
    assert user.id == first.id

    with pytest.raises(InvalidCredentials):
        await user_service.authenticate(
            db_session, UserLogin(email="u1@example.com", password="nope-nope")
        )


@pytest.mark.asyncio
async def test_register_reports_every_conflicting_field(db_session: AsyncSession):
    await make_user(db_session, "taken", "taken@example.com")
    with pytest.raises(ValidationError) as excinfo:
        await user_service.register_user(
            db_session,
            UserRegister(username="taken", email="taken@example.com", password="password123"),
        )
    assert excinfo.value.errors == {
        "username": ["has already been taken"],
        "email": ["has already been taken"],
    }


@pytest.mark.asyncio
async def test_get_user_not_found(db_session: AsyncSession):
    with pytest.raises(NotFound):
        await user_service.get_user(db_session, 99999)


@pytest.mark.asyncio
async def test_register_race_reports_per_field_errors(db_session: AsyncSession, monkeypatch):
    await make_user(db_session, "racer", "racer@example.com")
    check = user_service._uniqueness_conflicts
    calls = []

    # The first check misses the competing row, as if it committed just after.
    async def late_check(db, username, email, exclude_id=None):
        calls.append(username)
        if len(calls) == 1:
            return {}
        return await check(db, username, email, exclude_id)

    monkeypatch.setattr(user_service, "_uniqueness_conflicts", late_check)
    with pytest.raises(ValidationError) as excinfo:
        await user_service.register_user(
            db_session,
            UserRegister(username="racer", email="other@example.com", password="password123"),
        )
    assert excinfo.value.errors == {"username": ["has already been taken"]}
    assert len(calls) == 2

    # The session is still usable after the lost race.
    survivor = await user_service.register_user(
        db_session,
        UserRegister(username="calm", email="calm@example.com", password="password123"),
    )
    assert survivor.id is not None


@pytest.mark.asyncio
async def test_update_race_reports_per_field_errors(db_session: AsyncSession, monkeypatch):
    await make_user(db_session, "holder", "holder@example.com")
    mover = await make_user(db_session, "mover", "mover@example.com")
    check = user_service._uniqueness_conflicts
    calls = []

    async def late_check(db, username, email, exclude_id=None):
        calls.append(email)
        if len(calls) == 1:
            return {}
        return await check(db, username, email, exclude_id)

    monkeypatch.setattr(user_service, "_uniqueness_conflicts", late_check)
    with pytest.raises(ValidationError) as excinfo:
        await user_service.update_user(
            db_session, mover, UserUpdate(email="holder@example.com")
        )
    assert excinfo.value.errors == {"email": ["has already been taken"]}
