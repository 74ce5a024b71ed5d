from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from indent_portal.auth import Principal, get_current_principal
from indent_portal.db import get_db
from indent_portal.dependencies import get_client_ip, get_settings
from indent_portal.config import Settings
from indent_portal.errors import AuthenticationError, NotFoundError
from indent_portal.models import UserRole
from indent_portal.schemas import LoginRequest
from indent_portal.security.credentials import issue_access_token, verify_password
from indent_portal.services.audit_service import log_audit, log_auth_event
from indent_portal.services.directory_service import find_user_with_site, user_profile

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/api/auth', tags=['auth'])

INVALID_CREDENTIALS = 'Invalid credentials'


def _login_failure_reason(found, payload: LoginRequest) -> str | None:
    if found is None:
        return 'UNKNOWN_USERNAME'
    user, site = found
    if not user.is_active:
        return 'INACTIVE_USER'
    if not verify_password(payload.password, user.password_hash):
        return 'BAD_PASSWORD'
    if UserRole(user.role) == UserRole.SITE_ENGINEER:
        if site is None:
            return 'NO_SITE_ASSIGNED'
        if payload.site_code and payload.site_code.strip() != site.site_code:
            return 'SITE_MISMATCH'
    return None


@router.post('/login')
def login(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    username = payload.username.strip()
    ip = get_client_ip(request)
    user_agent = request.headers.get('user-agent')

    found = find_user_with_site(db, username)
    failure_reason = _login_failure_reason(found, payload)
    if failure_reason is not None:
        log_auth_event(
            db,
            attempted_username=username,
            success=False,
            failure_reason=failure_reason,
            user_id=found[0].id if found else None,
            ip=ip,
            user_agent=user_agent,
        )
        db.commit()
        logger.info('Login failed for %s (%s)', username, failure_reason)
        raise AuthenticationError(INVALID_CREDENTIALS)

    user, site = found
    log_auth_event(
        db,
        attempted_username=username,
        success=True,
        user_id=user.id,
        ip=ip,
        user_agent=user_agent,
    )
    log_audit(
        db,
        actor_user_id=user.id,
        action='AUTH_LOGIN',
        entity_type='user',
        entity_id=user.id,
        ip=ip,
        metadata={'username': username},
    )
    db.commit()

    return {
        'message': 'Login successful',
        'token': issue_access_token(settings, user.id),
        'user': user_profile(user, site),
    }


@router.post('/logout')
def logout(
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    log_audit(
        db,
        actor_user_id=principal.id,
        action='AUTH_LOGOUT',
        entity_type='user',
        entity_id=principal.id,
        ip=get_client_ip(request),
    )
    db.commit()
    return {'message': 'Logout successful'}


@router.get('/me')
def me(db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    found = find_user_with_site(db, principal.username)
    if found is None:
        raise NotFoundError('User not found')
    user, site = found
    return {'user': user_profile(user, site)}
