from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi import Depends, Request

from indent_portal.errors import AuthenticationError, AuthorizationError, NotFoundError, SiteIsolationError
from indent_portal.models import UserRole as Role

ALL_ROLES = (Role.SITE_ENGINEER, Role.PURCHASE_TEAM, Role.DIRECTOR)
APPROVER_ROLES = (Role.PURCHASE_TEAM, Role.DIRECTOR)
PRICING_FIELDS = frozenset({'unit_price', 'total_price', 'total_amount'})


@dataclass(frozen=True)
class Principal:
    id: int
    username: str
    role: Role
    site_id: int | None
    full_name: str
    active: bool = True

    @property
    def is_site_engineer(self) -> bool:
        return self.role == Role.SITE_ENGINEER


def get_current_principal(request: Request) -> Principal:
    principal = getattr(request.state, 'principal', None)
    if principal is None:
        raise AuthenticationError(getattr(request.state, 'auth_error', None))
    if not principal.active:
        raise AuthenticationError('Invalid or inactive user')
    return principal


def ensure_role(principal: Principal, *allowed: Role) -> Principal:
    if principal.role not in allowed:
        raise AuthorizationError()
    if principal.is_site_engineer and principal.site_id is None:
        raise AuthorizationError('Site Engineer must be assigned to a site')
    return principal


def require_role(*allowed: Role):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        return ensure_role(principal, *allowed)

    return _dep


def validate_site_access(principal: Principal, resource_site_id: int | None) -> bool:
    if principal.role in APPROVER_ROLES:
        return True
    if principal.role == Role.SITE_ENGINEER:
        return principal.site_id is not None and principal.site_id == resource_site_id
    return False


def assert_site_scope(principal: Principal, resource_site_id: int | None) -> None:
    if not validate_site_access(principal, resource_site_id):
        raise SiteIsolationError()


def site_filter(principal: Principal) -> int | None:
    """Site id that list queries must be narrowed to, or None for cross-site roles."""
    if principal.is_site_engineer:
        return principal.site_id
    return None


def redact_pricing(principal: Principal, payload: Any) -> Any:
    if not principal.is_site_engineer:
        return payload
    if isinstance(payload, dict):
        return {key: redact_pricing(principal, value) for key, value in payload.items() if key not in PRICING_FIELDS}
    if isinstance(payload, list):
        return [redact_pricing(principal, value) for value in payload]
    return payload


def missing_resource(principal: Principal, message: str) -> Exception:
    # Site engineers get the isolation error so ids from other sites cannot be discovered.
    if principal.is_site_engineer:
        return SiteIsolationError()
    return NotFoundError(message)
