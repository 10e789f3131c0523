"""
User service — registration, login and profile edits for the User aggregate.

Username and email uniqueness is checked up front so the caller gets a
field-level error, and again by the database constraints; an insert that
loses a race is translated into the same ``ValidationError``.
"""
import logging

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from conduit.exceptions import InvalidCredentials, NotFound, ValidationError
from conduit.models import User
from conduit.schemas import UserLogin, UserRegister, UserUpdate
from conduit.security import hash_password, pwd_context, verify_password

logger = logging.getLogger(__name__)

_TAKEN = "has already been taken"


async def _uniqueness_conflicts(
    db: AsyncSession,
    username: str | None,
    email: str | None,
    exclude_id: int | None = None,
) -> dict[str, str]:
    clauses = []
    if username is not None:
        clauses.append(User.username == username)
    if email is not None:
        clauses.append(User.email == email)
    if not clauses:
        return {}

    q = select(User.username, User.email).where(or_(*clauses))
    if exclude_id is not None:
        q = q.where(User.id != exclude_id)

    conflicts: dict[str, str] = {}
    for taken_username, taken_email in (await db.execute(q)).all():
        if username is not None and taken_username == username:
            conflicts["username"] = _TAKEN
        if email is not None and taken_email == email:
            conflicts["email"] = _TAKEN
    return conflicts


async def _race_conflicts(
    db: AsyncSession,
    username: str | None,
    email: str | None,
    exclude_id: int | None = None,
) -> ValidationError:
    """
    Build the error for an insert or update that lost a uniqueness race.

    The savepoint has been rolled back, so the session can query again and
    report the same per-field errors as the up-front check.
    """
    conflicts = await _uniqueness_conflicts(db, username, email, exclude_id)
    logger.debug("Uniqueness race lost on %s", sorted(conflicts) or "unknown field")
    return ValidationError(conflicts or {"username or email": _TAKEN})


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def register_user(db: AsyncSession, data: UserRegister) -> User:
    """Create a user with a bcrypt-hashed password and return it."""
    email = str(data.email)
    conflicts = await _uniqueness_conflicts(db, data.username, email)
    if conflicts:
        raise ValidationError(conflicts)

    user = User(
        username=data.username,
        email=email,
        password_hash=await run_in_threadpool(hash_password, data.password),
    )
    try:
        async with db.begin_nested():
            db.add(user)
    except IntegrityError:
        raise await _race_conflicts(db, data.username, email)
    logger.info("Registered user %s (id=%s)", user.username, user.id)
    return user


async def authenticate(db: AsyncSession, data: UserLogin) -> User:
    """
    Return the user owning *data.email* if the password verifies.

    Unknown email and wrong password raise the same ``InvalidCredentials``.
    A dummy verification runs for unknown emails so both paths cost one
    bcrypt round.
    """
    result = await db.execute(select(User).where(User.email == str(data.email)))
    user = result.scalar_one_or_none()
    if user is None:
        await run_in_threadpool(pwd_context.dummy_verify)
        raise InvalidCredentials()
    if not await run_in_threadpool(verify_password, data.password, user.password_hash):
        raise InvalidCredentials()
    return user


async def get_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFound("user")
    return user


async def update_user(db: AsyncSession, user: User, data: UserUpdate) -> User:
    """
    Apply the fields explicitly present in *data* to *user*.

    ``username``, ``email`` and ``password`` ignore explicit nulls;
    ``bio`` and ``image`` may be cleared with null.
    """
    patch = data.model_dump(exclude_unset=True)
    for field in ("username", "email", "password"):
        if patch.get(field) is None:
            patch.pop(field, None)

    if "email" in patch:
        patch["email"] = str(patch["email"])

    conflicts = await _uniqueness_conflicts(
        db, patch.get("username"), patch.get("email"), exclude_id=user.id
    )
    if conflicts:
        raise ValidationError(conflicts)

    user_id = user.id
    password = patch.pop("password", None)
    password_hash = None
    if password is not None:
        password_hash = await run_in_threadpool(hash_password, password)

    # Changes are made inside the savepoint so a lost race rolls back only them.
    try:
        async with db.begin_nested():
            if password_hash is not None:
                user.password_hash = password_hash
            for field, value in patch.items():
                setattr(user, field, value)
    except IntegrityError:
        raise await _race_conflicts(
            db, patch.get("username"), patch.get("email"), exclude_id=user_id
        )
    return user
