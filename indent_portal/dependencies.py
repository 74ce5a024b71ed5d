from fastapi import Request

from indent_portal.config import Settings
from indent_portal.services.evidence_store import EvidenceStore


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_evidence_store(request: Request) -> EvidenceStore:
    return request.app.state.evidence_store


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None
