from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from indent_portal.config import Settings, settings as default_settings
from indent_portal.db import Database
from indent_portal.errors import install_error_handlers
from indent_portal.logging_config import setup_logging
from indent_portal.routers import auth, dashboard, indents, materials, orders, receipts, reports, uploads
from indent_portal.security.headers import install_security_headers
from indent_portal.security.sessions import install_auth_middleware
from indent_portal.services.evidence_store import EvidenceStore

logger = logging.getLogger(__name__)

ENDPOINT_CATALOGUE = {
    'auth': {
        'POST /api/auth/login': 'Exchange credentials for a bearer token',
        'POST /api/auth/logout': 'End the current session',
        'GET /api/auth/me': 'Current user profile',
    },
    'materials': {
        'GET /api/materials': 'Search the material catalogue',
        'GET /api/materials/categories': 'Distinct material categories',
        'GET /api/materials/{id}': 'Material detail',
    },
    'indents': {
        'POST /api/indents': 'Raise an indent (Site Engineer)',
        'GET /api/indents': 'List indents',
        'GET /api/indents/{id}': 'Indent detail',
        'PUT /api/indents/{id}/approve': 'Approve or reject an indent (Purchase Team, Director)',
    },
    'orders': {
        'POST /api/orders': 'Place an order for a director-approved indent (Purchase Team)',
        'PUT /api/orders/{id}': 'Replace vendor details and items of a pending order (Purchase Team)',
        'GET /api/orders': 'List orders',
        'GET /api/orders/{id}': 'Order detail',
    },
    'receipts': {
        'POST /api/receipts': 'Record a delivery with optional photos (Site Engineer)',
        'GET /api/receipts': 'List receipts',
        'GET /api/receipts/{id}': 'Receipt detail',
    },
    'dashboard': {'GET /api/dashboard/stats': 'Indent counts by status and recent activity'},
    'reports': {
        'GET /api/reports/data': 'Monthly aggregation as JSON (Purchase Team, Director)',
        'GET /api/reports/monthly': 'Monthly report workbook (Purchase Team, Director)',
    },
    'uploads': {'GET /uploads/{filename}': 'Receipt photo'},
    'health': {'GET /health': 'Database connectivity'},
}


def create_app(app_settings: Settings | None = None) -> FastAPI:
    app_settings = app_settings or default_settings
    setup_logging(app_settings)

    app = FastAPI(title='Site Indent Portal')
    app.state.settings = app_settings
    app.state.database = Database(app_settings.database_url_normalized, echo=app_settings.database_echo)
    app.state.evidence_store = EvidenceStore(
        app_settings.upload_dir,
        max_bytes=app_settings.max_upload_bytes,
        max_files=app_settings.max_upload_files,
    )

    install_error_handlers(app)
    install_auth_middleware(app)
    install_security_headers(app)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=['*'],
        allow_headers=['*'],
    )

    app.include_router(auth.router)
    app.include_router(materials.router)
    app.include_router(indents.router)
    app.include_router(orders.router)
    app.include_router(receipts.router)
    app.include_router(dashboard.router)
    app.include_router(reports.router)
    app.include_router(uploads.router)

    @app.get('/health')
    def health(request: Request):
        try:
            request.app.state.database.ping()
        except SQLAlchemyError as exc:
            logger.error('Health check failed: %s', exc)
            return JSONResponse(status_code=503, content={'status': 'unhealthy', 'database': 'disconnected'})
        return {'status': 'healthy', 'database': 'connected', 'environment': request.app.state.settings.app_env}

    @app.get('/api')
    def api_catalogue():
        return {'name': 'Site Indent Portal API', 'endpoints': ENDPOINT_CATALOGUE}

    logger.info('Site Indent Portal configured (env=%s)', app_settings.app_env)
    return app


app = create_app()
