from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from indent_portal.auth import ALL_ROLES, Principal, require_role
from indent_portal.db import get_db
from indent_portal.dependencies import get_evidence_store
from indent_portal.services.evidence_store import EvidenceStore
from indent_portal.services.receipt_service import resolve_receipt_image

router = APIRouter(prefix='/uploads', tags=['uploads'])


@router.get('/{filename}')
def serve_upload(
    filename: str,
    db: Session = Depends(get_db),
    store: EvidenceStore = Depends(get_evidence_store),
    principal: Principal = Depends(require_role(*ALL_ROLES)),
):
    return FileResponse(resolve_receipt_image(db, actor=principal, store=store, filename=filename))
