from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from indent_portal.auth import Principal, Role, assert_site_scope, ensure_role, missing_resource, site_filter
from indent_portal.errors import NotFoundError, StateConflictError, ValidationError
from indent_portal.models import (
    MONEY_PLACES,
    QUANTITY_PLACES,
    Indent,
    IndentStatus,
    Material,
    Order,
    OrderItem,
    OrderStatus,
    Site,
    User,
)
from indent_portal.services.document_numbers import order_number
from indent_portal.services.material_service import ensure_active_materials
from indent_portal.services.workflow_rules import precision_problem

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True)
class VendorDetails:
    vendor_name: str
    vendor_contact: str
    expected_delivery_date: date
    vendor_address: str | None = None


@dataclass(frozen=True)
class OrderLineInput:
    material_id: int
    quantity: Decimal
    unit_price: Decimal
    specifications: dict = field(default_factory=dict)

    @property
    def total_price(self) -> Decimal:
        return self.quantity * self.unit_price


def order_total(lines: list[OrderLineInput]) -> Decimal:
    return sum((line.total_price for line in lines), Decimal('0'))


def _validate_order_input(vendor: VendorDetails, lines: list[OrderLineInput], *, today: date) -> None:
    problems = []
    if not vendor.vendor_name.strip():
        problems.append('vendor_name is required')
    if not vendor.vendor_contact.strip():
        problems.append('vendor_contact is required')
    if vendor.expected_delivery_date < today:
        problems.append('expected_delivery_date cannot be in the past')
    if not lines:
        problems.append('items must contain at least 1 item')
    for idx, line in enumerate(lines):
        for name, places in (('quantity', QUANTITY_PLACES), ('unit_price', MONEY_PLACES)):
            value = getattr(line, name)
            problem = precision_problem(value, places=places)
            if problem:
                problems.append(f'items.{idx}.{name} {problem}')
            elif value <= 0:
                problems.append(f'items.{idx}.{name} must be greater than 0')
    if problems:
        raise ValidationError(details=problems)


def _insert_items(db: Session, order_id: int, lines: list[OrderLineInput]) -> None:
    for position, line in enumerate(lines):
        db.add(
            OrderItem(
                order_id=order_id,
                position=position,
                material_id=line.material_id,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total_price=line.total_price,
                specifications=line.specifications or None,
            )
        )


def create_order(
    db: Session,
    *,
    actor: Principal,
    indent_id: int,
    vendor: VendorDetails,
    items: list[OrderLineInput],
) -> Order:
    ensure_role(actor, Role.PURCHASE_TEAM)
    today = _now().date()
    _validate_order_input(vendor, items, today=today)

    indent = db.execute(select(Indent).where(Indent.id == indent_id).with_for_update()).scalar_one_or_none()
    if indent is None:
        raise NotFoundError('Indent not found')
    if IndentStatus(indent.status) != IndentStatus.DIRECTOR_APPROVED:
        raise StateConflictError('Indent is not approved by director')
    existing = db.execute(select(Order.id).where(Order.indent_id == indent_id)).scalar_one_or_none()
    if existing is not None:
        raise StateConflictError('Order already exists for this indent')
    ensure_active_materials(db, {line.material_id for line in items})

    order = Order(
        indent_id=indent.id,
        order_number=order_number(indent.id),
        vendor_name=vendor.vendor_name.strip(),
        vendor_contact=vendor.vendor_contact.strip(),
        vendor_address=(vendor.vendor_address or '').strip() or None,
        order_date=today,
        expected_delivery_date=vendor.expected_delivery_date,
        total_amount=order_total(items),
        status=OrderStatus.PENDING,
        created_by=actor.id,
    )
    db.add(order)
    db.flush()
    _insert_items(db, order.id, items)
    db.flush()
    logger.info('Order %s created for indent %s by user %s', order.order_number, indent.indent_number, actor.id)
    return order


def update_order(
    db: Session,
    *,
    actor: Principal,
    order_id: int,
    vendor: VendorDetails,
    items: list[OrderLineInput],
    expected_version: int | None = None,
) -> Order:
    ensure_role(actor, Role.PURCHASE_TEAM)
    _validate_order_input(vendor, items, today=_now().date())

    order = db.execute(select(Order).where(Order.id == order_id).with_for_update()).scalar_one_or_none()
    if order is None:
        raise NotFoundError('Order not found')
    if expected_version is not None and expected_version != order.version:
        raise StateConflictError('Order was modified by another request; reload and retry')
    if OrderStatus(order.status) != OrderStatus.PENDING:
        raise StateConflictError('Only orders that have not received goods can be edited')
    ensure_active_materials(db, {line.material_id for line in items})

    order.vendor_name = vendor.vendor_name.strip()
    order.vendor_contact = vendor.vendor_contact.strip()
    order.vendor_address = (vendor.vendor_address or '').strip() or None
    order.expected_delivery_date = vendor.expected_delivery_date
    order.total_amount = order_total(items)
    order.updated_at = _now()

    try:
        db.flush()
        db.execute(delete(OrderItem).where(OrderItem.order_id == order.id))
        _insert_items(db, order.id, items)
        db.flush()
    except StaleDataError as exc:
        raise StateConflictError('Order was modified by another request; reload and retry') from exc
    logger.info('Order %s updated by user %s (version %s)', order.order_number, actor.id, order.version)
    return order


def _order_header_query():
    return (
        select(
            Order,
            Indent.indent_number,
            Indent.site_id,
            Site.site_name,
            Site.site_code,
            User.full_name.label('created_by_name'),
        )
        .join(Indent, Indent.id == Order.indent_id)
        .join(Site, Site.id == Indent.site_id)
        .join(User, User.id == Order.created_by)
    )


def _order_header(row) -> dict:
    order = row.Order
    return {
        'id': order.id,
        'indent_id': order.indent_id,
        'indent_number': row.indent_number,
        'order_number': order.order_number,
        'site_id': row.site_id,
        'site_name': row.site_name,
        'site_code': row.site_code,
        'vendor_name': order.vendor_name,
        'vendor_contact': order.vendor_contact,
        'vendor_address': order.vendor_address,
        'order_date': order.order_date,
        'expected_delivery_date': order.expected_delivery_date,
        'total_amount': order.total_amount,
        'status': OrderStatus(order.status).value,
        'version': order.version,
        'created_by': order.created_by,
        'created_by_name': row.created_by_name,
        'created_at': order.created_at,
        'updated_at': order.updated_at,
    }


def list_orders(
    db: Session,
    *,
    actor: Principal,
    status: OrderStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict]:
    ensure_role(actor, Role.SITE_ENGINEER, Role.PURCHASE_TEAM, Role.DIRECTOR)
    query = _order_header_query()
    scoped_site_id = site_filter(actor)
    if scoped_site_id is not None:
        query = query.where(Indent.site_id == scoped_site_id)
    if status is not None:
        query = query.where(Order.status == status)
    rows = db.execute(query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).offset(offset)).all()
    return [_order_header(row) for row in rows]


def get_order_detail(db: Session, *, actor: Principal, order_id: int) -> dict:
    ensure_role(actor, Role.SITE_ENGINEER, Role.PURCHASE_TEAM, Role.DIRECTOR)
    row = db.execute(_order_header_query().where(Order.id == order_id)).one_or_none()
    if row is None:
        raise missing_resource(actor, 'Order not found')
    assert_site_scope(actor, row.site_id)

    item_rows = db.execute(
        select(OrderItem, Material)
        .join(Material, Material.id == OrderItem.material_id)
        .where(OrderItem.order_id == order_id)
        .order_by(OrderItem.position.asc(), OrderItem.id.asc())
    ).all()
    items = [
        {
            'id': item.id,
            'material_id': item.material_id,
            'material_name': material.material_name,
            'material_code': material.material_code,
            'unit': material.unit,
            'category': material.category,
            'quantity': item.quantity,
            'unit_price': item.unit_price,
            'total_price': item.total_price,
            'specifications': item.specifications or {},
        }
        for item, material in item_rows
    ]
    return {'order': _order_header(row), 'items': items}
