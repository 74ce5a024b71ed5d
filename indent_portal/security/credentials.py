from __future__ import annotations

from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt
from pwdlib import PasswordHash

from indent_portal.config import Settings
from indent_portal.errors import AuthenticationError

password_hash = PasswordHash.recommended()


def hash_password(raw_password: str) -> str:
    return password_hash.hash(raw_password)


def verify_password(raw_password: str, hashed_password: str) -> bool:
    return password_hash.verify(raw_password, hashed_password)


def issue_access_token(settings: Settings, user_id: int, *, now: datetime | None = None) -> str:
    issued_at = now or datetime.now(tz=timezone.utc)
    claims = {
        'sub': str(user_id),
        'iat': issued_at,
        'exp': issued_at + timedelta(hours=settings.token_ttl_hours),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(settings: Settings, token: str) -> int:
    """Return the user id carried by a valid token.

    Only the subject is trusted; role and site are always re-read from the
    directory by the caller.
    """
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError as exc:
        raise AuthenticationError('Token expired') from exc
    except JWTError as exc:
        raise AuthenticationError('Invalid token') from exc

    subject = claims.get('sub')
    try:
        return int(subject)
    except (TypeError, ValueError) as exc:
        raise AuthenticationError('Invalid token') from exc
