from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from indent_portal.auth import Principal
from indent_portal.models import Site, User, UserRole


def load_principal(db: Session, user_id: int) -> Principal | None:
    user = db.execute(select(User).where(User.id == user_id)).scalar_one_or_none()
    if user is None or not user.is_active:
        return None
    return Principal(
        id=user.id,
        username=user.username,
        role=UserRole(user.role),
        site_id=user.site_id,
        full_name=user.full_name,
        active=user.is_active,
    )


def find_user_with_site(db: Session, username: str) -> tuple[User, Site | None] | None:
    row = db.execute(
        select(User, Site).outerjoin(Site, Site.id == User.site_id).where(User.username == username)
    ).one_or_none()
    if row is None:
        return None
    return row[0], row[1]


def user_profile(user: User, site: Site | None) -> dict:
    return {
        'id': user.id,
        'username': user.username,
        'role': UserRole(user.role).value,
        'full_name': user.full_name,
        'email': user.email,
        'site_id': user.site_id,
        'site_code': site.site_code if site else None,
        'site_name': site.site_name if site else None,
    }
