from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from indent_portal.auth import APPROVER_ROLES, Principal, require_role
from indent_portal.db import get_db
from indent_portal.dependencies import get_client_ip
from indent_portal.services.audit_service import log_audit
from indent_portal.services.report_service import MAX_REPORT_YEAR, MIN_REPORT_YEAR, build_monthly_report, report_payload
from indent_portal.services.report_workbook import XLSX_MEDIA_TYPE, build_monthly_workbook, report_filename

router = APIRouter(prefix='/api/reports', tags=['reports'])
report_access = require_role(*APPROVER_ROLES)


@router.get('/data')
def report_data(
    year: int = Query(..., ge=MIN_REPORT_YEAR, le=MAX_REPORT_YEAR),
    month: int = Query(..., ge=1, le=12),
    site_id: int | None = Query(None, gt=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(report_access),
):
    report = build_monthly_report(db, actor=principal, year=year, month=month, site_id=site_id)
    return report_payload(report)


@router.get('/monthly')
def report_monthly(
    request: Request,
    year: int = Query(..., ge=MIN_REPORT_YEAR, le=MAX_REPORT_YEAR),
    month: int = Query(..., ge=1, le=12),
    site_id: int | None = Query(None, gt=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(report_access),
):
    report = build_monthly_report(db, actor=principal, year=year, month=month, site_id=site_id)
    content = build_monthly_workbook(report, generated_by=principal.full_name)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='REPORT_EXPORTED',
        entity_type='report',
        entity_id=None,
        ip=get_client_ip(request),
        metadata={'year': year, 'month': month, 'site_id': site_id, 'indents': report.total_indents},
    )
    db.commit()
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={'Content-Disposition': f'attachment; filename={report_filename(report)}'},
    )
