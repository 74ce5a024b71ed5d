from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from indent_portal.auth import ALL_ROLES, Principal, Role, redact_pricing, require_role
from indent_portal.config import Settings
from indent_portal.db import get_db
from indent_portal.dependencies import get_client_ip, get_evidence_store, get_settings
from indent_portal.schemas import parse_receipt_items
from indent_portal.services.audit_service import log_audit
from indent_portal.services.dashboard_service import dashboard_stats
from indent_portal.services.evidence_store import EvidenceImage, EvidenceStore
from indent_portal.services.receipt_service import ReceiptInput, create_receipt, get_receipt_detail, list_receipts

router = APIRouter(prefix='/api/receipts', tags=['receipts'])
engineer_access = require_role(Role.SITE_ENGINEER)
any_role = require_role(*ALL_ROLES)


async def _evidence_images(request: Request, uploads: list[UploadFile]) -> list[EvidenceImage]:
    form = await request.form()
    images = []
    for idx, upload in enumerate(uploads):
        images.append(
            EvidenceImage(
                filename=upload.filename or '',
                content_type=upload.content_type or '',
                content=await upload.read(),
                image_type=str(form.get(f'image_type_{idx}') or 'general'),
                description=str(form.get(f'image_description_{idx}') or ''),
            )
        )
    return images


@router.post('', status_code=status.HTTP_201_CREATED)
async def receipt_create(
    request: Request,
    order_id: int = Form(..., gt=0),
    received_date: date = Form(...),
    items: str = Form(...),
    delivery_challan_number: str | None = Form(None, max_length=100),
    is_partial: bool = Form(False),
    notes: str | None = Form(None, max_length=500),
    images: list[UploadFile] | None = File(None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(engineer_access),
    settings: Settings = Depends(get_settings),
    store: EvidenceStore = Depends(get_evidence_store),
):
    data = ReceiptInput(
        order_id=order_id,
        received_date=received_date,
        items=parse_receipt_items(items),
        delivery_challan_number=delivery_challan_number,
        is_partial=is_partial,
        notes=notes,
        images=await _evidence_images(request, images or []),
    )
    # create_receipt locks rows and writes files, so it runs off the event loop.
    return await run_in_threadpool(
        _record_receipt,
        db,
        principal=principal,
        data=data,
        store=store,
        cumulative=settings.cumulative_fulfillment,
        ip=get_client_ip(request),
    )


def _record_receipt(
    db: Session,
    *,
    principal: Principal,
    data: ReceiptInput,
    store: EvidenceStore,
    cumulative: bool,
    ip: str | None,
) -> dict:
    result = create_receipt(db, actor=principal, data=data, store=store, cumulative=cumulative)
    try:
        log_audit(
            db,
            actor_user_id=principal.id,
            action='RECEIPT_CREATED',
            entity_type='receipt',
            entity_id=result.receipt.id,
            ip=ip,
            metadata={
                'receipt_number': result.receipt.receipt_number,
                'order_id': data.order_id,
                'order_status': result.order_status.value,
                'images': len(result.image_names),
            },
        )
        db.commit()
    except Exception:
        store.discard(result.image_names)
        raise
    return {
        'message': 'Receipt created successfully',
        'receipt_id': result.receipt.id,
        'receipt_number': result.receipt.receipt_number,
        'order_status': result.order_status.value,
    }


@router.get('')
def receipt_index(
    order_id: int | None = Query(None, gt=0),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(any_role),
):
    receipts = list_receipts(db, actor=principal, order_id=order_id, limit=limit, offset=offset)
    return {'receipts': redact_pricing(principal, receipts), 'pagination': {'limit': limit, 'offset': offset}}


@router.get('/dashboard/stats')
def receipt_dashboard_stats(db: Session = Depends(get_db), principal: Principal = Depends(any_role)):
    return dashboard_stats(db, actor=principal)


@router.get('/{receipt_id}')
def receipt_detail(receipt_id: int, db: Session = Depends(get_db), principal: Principal = Depends(any_role)):
    return redact_pricing(principal, get_receipt_detail(db, actor=principal, receipt_id=receipt_id))
