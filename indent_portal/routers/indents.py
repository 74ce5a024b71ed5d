from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from indent_portal.auth import ALL_ROLES, APPROVER_ROLES, Principal, Role, require_role
from indent_portal.db import get_db
from indent_portal.dependencies import get_client_ip
from indent_portal.models import IndentStatus
from indent_portal.schemas import IndentCreate, IndentDecision
from indent_portal.services.audit_service import log_audit
from indent_portal.services.indent_service import create_indent, decide_indent, get_indent_detail, list_indents
from indent_portal.services.workflow_rules import ApprovalAction

router = APIRouter(prefix='/api/indents', tags=['indents'])
engineer_access = require_role(Role.SITE_ENGINEER)
approver_access = require_role(*APPROVER_ROLES)
any_role = require_role(*ALL_ROLES)


@router.post('', status_code=status.HTTP_201_CREATED)
def indent_create(
    payload: IndentCreate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(engineer_access),
):
    indent = create_indent(db, actor=principal, items=[item.to_input() for item in payload.items])
    log_audit(
        db,
        actor_user_id=principal.id,
        action='INDENT_CREATED',
        entity_type='indent',
        entity_id=indent.id,
        ip=get_client_ip(request),
        metadata={'indent_number': indent.indent_number, 'items': len(payload.items)},
    )
    db.commit()
    return {'message': 'Indent created successfully', 'indent_id': indent.id, 'indent_number': indent.indent_number}


@router.get('')
def indent_index(
    status_filter: IndentStatus | None = Query(None, alias='status'),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(any_role),
):
    indents = list_indents(db, actor=principal, status=status_filter, limit=limit, offset=offset)
    return {'indents': indents, 'pagination': {'limit': limit, 'offset': offset}}


@router.get('/{indent_id}')
def indent_detail(indent_id: int, db: Session = Depends(get_db), principal: Principal = Depends(any_role)):
    return get_indent_detail(db, actor=principal, indent_id=indent_id)


@router.put('/{indent_id}/approve')
def indent_decide(
    indent_id: int,
    payload: IndentDecision,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(approver_access),
):
    indent = decide_indent(
        db,
        actor=principal,
        indent_id=indent_id,
        action=payload.action,
        rejection_reason=payload.rejection_reason,
    )
    rejected = payload.action == ApprovalAction.REJECT
    log_audit(
        db,
        actor_user_id=principal.id,
        action='INDENT_REJECTED' if rejected else 'INDENT_APPROVED',
        entity_type='indent',
        entity_id=indent.id,
        ip=get_client_ip(request),
        metadata={'new_status': IndentStatus(indent.status).value, 'role': principal.role.value},
    )
    db.commit()
    return {
        'message': f"Indent {'rejected' if rejected else 'approved'} successfully",
        'new_status': IndentStatus(indent.status).value,
    }
