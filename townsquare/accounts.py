"""Account directory: identities, display names and role memberships."""

from __future__ import annotations

from typing import Iterable, Sequence

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from .errors import Forbidden, NotFound, ValidationError
from .models import Role, User, UserRole
from .utils import clean_text

ADMIN_ROLE = "Admin"
USER_ROLE = "User"
KNOWN_ROLES = (ADMIN_ROLE, USER_ROLE)

DISPLAY_NAME_MAX = 80
EMAIL_MAX = 255


def get_account(session: Session, user_id: str | None) -> User | None:
    if not user_id:
        return None
    return session.get(User, user_id)


def require_account(session: Session, user_id: str | None) -> User:
    user = get_account(session, user_id)
    if not user:
        raise NotFound("Account not found")
    return user


def get_account_by_email(session: Session, email: str) -> User | None:
    normalized = clean_text(email).lower()
    if not normalized:
        return None
    return session.scalars(select(User).where(User.email == normalized)).first()


def account_exists(session: Session, user_id: str | None) -> bool:
    if not user_id:
        return False
    return bool(session.scalar(select(exists().where(User.id == user_id))))


def display_name_for(session: Session, user_id: str | None) -> str | None:
    if not user_id:
        return None
    return session.scalar(select(User.display_name).where(User.id == user_id))


def roles_for(session: Session, user_id: str | None) -> set[str]:
    if not user_id:
        return set()
    stmt = select(UserRole.role_name).where(UserRole.user_id == user_id)
    return set(session.scalars(stmt).all())


def is_admin(session: Session, user_id: str | None) -> bool:
    if not user_id:
        return False
    stmt = select(
        exists().where(UserRole.user_id == user_id, UserRole.role_name == ADMIN_ROLE)
    )
    return bool(session.scalar(stmt))


def require_admin(session: Session, actor_id: str | None) -> None:
    if not is_admin(session, actor_id):
        raise Forbidden("Administrator privileges required")


def ensure_role(session: Session, name: str) -> Role:
    role = session.get(Role, name)
    if role:
        return role
    role = Role(name=name)
    session.add(role)
    session.flush()
    return role


def add_membership(session: Session, user_id: str, role_name: str) -> bool:
    """Attach ``role_name`` to the account; returns False when already held."""
    if session.get(UserRole, (user_id, role_name)):
        return False
    session.add(UserRole(user_id=user_id, role_name=role_name))
    session.flush()
    return True


def remove_membership(session: Session, user_id: str, role_name: str) -> bool:
    membership = session.get(UserRole, (user_id, role_name))
    if not membership:
        return False
    session.delete(membership)
    session.flush()
    return True


def _validate_account_fields(display_name: str, email: str) -> dict[str, str]:
    errors: dict[str, str] = {}
    if not display_name:
        errors["display_name"] = "Display name is required"
    elif len(display_name) > DISPLAY_NAME_MAX:
        errors["display_name"] = (
            f"Display name must be at most {DISPLAY_NAME_MAX} characters"
        )
    if not email or "@" not in email:
        errors["email"] = "A valid email address is required"
    elif len(email) > EMAIL_MAX:
        errors["email"] = f"Email must be at most {EMAIL_MAX} characters"
    return errors


def create_account(
    session: Session,
    *,
    display_name: str,
    email: str,
    roles: Iterable[str] = (USER_ROLE,),
) -> User:
    """Register a new account and attach its initial roles."""
    cleaned_name = clean_text(display_name)
    cleaned_email = clean_text(email).lower()
    errors = _validate_account_fields(cleaned_name, cleaned_email)
    if not errors and get_account_by_email(session, cleaned_email):
        errors["email"] = "An account with this email already exists"
    if errors:
        raise ValidationError(errors)

    user = User(display_name=cleaned_name, email=cleaned_email)
    session.add(user)
    session.flush()
    for role_name in roles:
        ensure_role(session, role_name)
        add_membership(session, user.id, role_name)
    return user


def search_accounts(
    session: Session, search_term: str | None = None, limit: int | None = None
) -> Sequence[User]:
    stmt = select(User).order_by(User.display_name.asc(), User.email.asc())
    term = clean_text(search_term)
    if term:
        like = f"%{term}%"
        stmt = stmt.where(User.display_name.ilike(like) | User.email.ilike(like))
    if limit and limit > 0:
        stmt = stmt.limit(limit)
    return session.scalars(stmt).all()
