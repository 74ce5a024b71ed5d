from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from indent_portal.auth import ALL_ROLES, Principal, Role, redact_pricing, require_role
from indent_portal.db import get_db
from indent_portal.dependencies import get_client_ip
from indent_portal.models import OrderStatus
from indent_portal.schemas import OrderCreate, OrderPayload
from indent_portal.services.audit_service import log_audit
from indent_portal.services.order_service import create_order, get_order_detail, list_orders, update_order

router = APIRouter(prefix='/api/orders', tags=['orders'])
purchase_access = require_role(Role.PURCHASE_TEAM)
any_role = require_role(*ALL_ROLES)


@router.post('', status_code=status.HTTP_201_CREATED)
def order_create(
    payload: OrderCreate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(purchase_access),
):
    order = create_order(
        db,
        actor=principal,
        indent_id=payload.indent_id,
        vendor=payload.vendor(),
        items=payload.lines(),
    )
    log_audit(
        db,
        actor_user_id=principal.id,
        action='ORDER_CREATED',
        entity_type='order',
        entity_id=order.id,
        ip=get_client_ip(request),
        metadata={'order_number': order.order_number, 'indent_id': payload.indent_id},
    )
    db.commit()
    return {'message': 'Order created successfully', 'order_id': order.id, 'order_number': order.order_number}


@router.put('/{order_id}')
def order_update(
    order_id: int,
    payload: OrderPayload,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(purchase_access),
):
    order = update_order(
        db,
        actor=principal,
        order_id=order_id,
        vendor=payload.vendor(),
        items=payload.lines(),
        expected_version=payload.version,
    )
    log_audit(
        db,
        actor_user_id=principal.id,
        action='ORDER_UPDATED',
        entity_type='order',
        entity_id=order.id,
        ip=get_client_ip(request),
        metadata={'order_number': order.order_number, 'version': order.version},
    )
    db.commit()
    return {'message': 'Order updated successfully', 'order_number': order.order_number, 'version': order.version}


@router.get('')
def order_index(
    status_filter: OrderStatus | None = Query(None, alias='status'),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(any_role),
):
    orders = list_orders(db, actor=principal, status=status_filter, limit=limit, offset=offset)
    return {'orders': redact_pricing(principal, orders), 'pagination': {'limit': limit, 'offset': offset}}


@router.get('/{order_id}')
def order_detail(order_id: int, db: Session = Depends(get_db), principal: Principal = Depends(any_role)):
    return redact_pricing(principal, get_order_detail(db, actor=principal, order_id=order_id))
