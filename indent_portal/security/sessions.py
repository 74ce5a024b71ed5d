from __future__ import annotations

from fastapi import FastAPI, Request

from indent_portal.errors import AuthenticationError
from indent_portal.security.credentials import decode_access_token
from indent_portal.services.directory_service import load_principal

AUTH_EXEMPT_PATHS = {'/api/auth/login', '/health', '/api', '/docs', '/openapi.json'}


def bearer_token(request: Request) -> str | None:
    header = request.headers.get('authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def install_auth_middleware(app: FastAPI) -> None:
    @app.middleware('http')
    async def auth_middleware(request: Request, call_next):
        request.state.principal = None
        request.state.auth_error = None

        if request.url.path not in AUTH_EXEMPT_PATHS and request.method != 'OPTIONS':
            token = bearer_token(request)
            if token is None:
                request.state.auth_error = 'Access token required'
            else:
                try:
                    user_id = decode_access_token(request.app.state.settings, token)
                    with request.app.state.database.session() as db:
                        principal = load_principal(db, user_id)
                    if principal is None:
                        request.state.auth_error = 'Invalid or inactive user'
                    request.state.principal = principal
                except AuthenticationError as exc:
                    request.state.auth_error = exc.message

        return await call_next(request)
