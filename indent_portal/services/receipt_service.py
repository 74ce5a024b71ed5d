from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from indent_portal.auth import Principal, Role, assert_site_scope, ensure_role, missing_resource, site_filter
from indent_portal.errors import ValidationError
from indent_portal.models import (
    QUANTITY_PLACES,
    Indent,
    IndentStatus,
    Material,
    Order,
    OrderItem,
    OrderStatus,
    Receipt,
    ReceiptImage,
    ReceiptItem,
    Site,
    User,
)
from indent_portal.services.document_numbers import receipt_number
from indent_portal.services.evidence_store import UPLOAD_URL_PREFIX, EvidenceImage, EvidenceStore
from indent_portal.services.workflow_rules import (
    ReceivedLine,
    accounted_by_order_item,
    advance_order_status,
    derive_order_status,
    precision_problem,
)

logger = logging.getLogger(__name__)

ZERO = Decimal('0')


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True)
class ReceiptLineInput:
    order_item_id: int
    received_quantity: Decimal
    damaged_quantity: Decimal = ZERO
    returned_quantity: Decimal = ZERO
    damage_description: str | None = None
    return_reason: str | None = None
    condition_notes: str | None = None

    def as_received_line(self) -> ReceivedLine:
        return ReceivedLine(
            order_item_id=self.order_item_id,
            received_quantity=self.received_quantity,
            damaged_quantity=self.damaged_quantity,
            returned_quantity=self.returned_quantity,
        )


@dataclass(frozen=True)
class ReceiptInput:
    order_id: int
    received_date: date
    items: list[ReceiptLineInput]
    delivery_challan_number: str | None = None
    is_partial: bool = False
    notes: str | None = None
    images: list[EvidenceImage] = field(default_factory=list)


@dataclass(frozen=True)
class ReceiptResult:
    receipt: Receipt
    order_status: OrderStatus
    indent_completed: bool
    image_names: list[str]


def _validate_receipt_input(data: ReceiptInput, *, today: date) -> None:
    problems = []
    if data.received_date > today:
        problems.append('received_date cannot be in the future')
    if not data.items:
        problems.append('items must contain at least 1 item')
    seen: set[int] = set()
    for idx, line in enumerate(data.items):
        if line.order_item_id in seen:
            problems.append(f'items.{idx}.order_item_id {line.order_item_id} is listed more than once')
        seen.add(line.order_item_id)
        for name in ('received_quantity', 'damaged_quantity', 'returned_quantity'):
            value = getattr(line, name)
            problem = precision_problem(value, places=QUANTITY_PLACES)
            if problem:
                problems.append(f'items.{idx}.{name} {problem}')
            elif value < 0:
                problems.append(f'items.{idx}.{name} cannot be negative')
    if problems:
        raise ValidationError(details=problems)


def _accounted_quantities(
    db: Session, *, order_id: int, current_lines: list[ReceiptLineInput], cumulative: bool
) -> dict[int, Decimal]:
    if not cumulative:
        return accounted_by_order_item(line.as_received_line() for line in current_lines)
    rows = db.execute(
        select(
            ReceiptItem.order_item_id,
            func.coalesce(func.sum(ReceiptItem.received_quantity), 0),
            func.coalesce(func.sum(ReceiptItem.damaged_quantity), 0),
            func.coalesce(func.sum(ReceiptItem.returned_quantity), 0),
        )
        .join(Receipt, Receipt.id == ReceiptItem.receipt_id)
        .where(Receipt.order_id == order_id)
        .group_by(ReceiptItem.order_item_id)
    ).all()
    return accounted_by_order_item(
        ReceivedLine(
            order_item_id=row[0],
            received_quantity=Decimal(str(row[1])),
            damaged_quantity=Decimal(str(row[2])),
            returned_quantity=Decimal(str(row[3])),
        )
        for row in rows
    )


def create_receipt(
    db: Session,
    *,
    actor: Principal,
    data: ReceiptInput,
    store: EvidenceStore,
    cumulative: bool = True,
) -> ReceiptResult:
    ensure_role(actor, Role.SITE_ENGINEER)
    _validate_receipt_input(data, today=_now().date())
    store.validate(data.images)

    row = db.execute(
        select(Order, Indent).join(Indent, Indent.id == Order.indent_id).where(Order.id == data.order_id).with_for_update()
    ).one_or_none()
    if row is None:
        raise missing_resource(actor, 'Order not found')
    order, indent = row
    assert_site_scope(actor, indent.site_id)

    ordered_by_item = {
        item.id: Decimal(item.quantity)
        for item in db.execute(select(OrderItem).where(OrderItem.order_id == order.id)).scalars().all()
    }
    foreign = [line.order_item_id for line in data.items if line.order_item_id not in ordered_by_item]
    if foreign:
        raise ValidationError(
            details=[f'order_item_id {item_id} does not belong to order {order.id}' for item_id in foreign]
        )

    receipt = Receipt(
        order_id=order.id,
        receipt_number=receipt_number(order.id),
        received_by=actor.id,
        received_date=data.received_date,
        delivery_challan_number=(data.delivery_challan_number or '').strip() or None,
        is_partial=data.is_partial,
        notes=(data.notes or '').strip() or None,
    )
    db.add(receipt)
    db.flush()
    for line in data.items:
        db.add(
            ReceiptItem(
                receipt_id=receipt.id,
                order_item_id=line.order_item_id,
                received_quantity=line.received_quantity,
                damaged_quantity=line.damaged_quantity,
                returned_quantity=line.returned_quantity,
                damage_description=line.damage_description,
                return_reason=line.return_reason,
                condition_notes=line.condition_notes,
            )
        )
    db.flush()

    stored = store.save_all(data.images)
    names = [image.name for image in stored]
    try:
        for image in stored:
            db.add(
                ReceiptImage(
                    receipt_id=receipt.id,
                    image_path=image.url,
                    image_type=image.image_type,
                    description=image.description,
                )
            )

        accounted = _accounted_quantities(db, order_id=order.id, current_lines=data.items, cumulative=cumulative)
        previous = OrderStatus(order.status)
        new_status = advance_order_status(previous, derive_order_status(ordered_by_item, accounted))
        now = _now()
        order.status = new_status
        order.updated_at = now

        indent_completed = False
        if new_status == OrderStatus.COMPLETED and IndentStatus(indent.status) != IndentStatus.COMPLETED:
            indent.status = IndentStatus.COMPLETED
            indent.updated_at = now
            indent_completed = True
        db.flush()
    except Exception:
        store.discard(names)
        raise

    logger.info(
        'Receipt %s recorded for order %s by user %s; order %s -> %s',
        receipt.receipt_number,
        order.order_number,
        actor.id,
        previous.value,
        new_status.value,
    )
    return ReceiptResult(receipt=receipt, order_status=new_status, indent_completed=indent_completed, image_names=names)


def _receipt_header_query():
    return (
        select(
            Receipt,
            Order.order_number,
            Indent.indent_number,
            Indent.site_id,
            Site.site_name,
            Site.site_code,
            User.full_name.label('received_by_name'),
        )
        .join(Order, Order.id == Receipt.order_id)
        .join(Indent, Indent.id == Order.indent_id)
        .join(Site, Site.id == Indent.site_id)
        .join(User, User.id == Receipt.received_by)
    )


def _receipt_header(row) -> dict:
    receipt = row.Receipt
    return {
        'id': receipt.id,
        'order_id': receipt.order_id,
        'order_number': row.order_number,
        'indent_number': row.indent_number,
        'receipt_number': receipt.receipt_number,
        'site_id': row.site_id,
        'site_name': row.site_name,
        'site_code': row.site_code,
        'received_by': receipt.received_by,
        'received_by_name': row.received_by_name,
        'received_date': receipt.received_date,
        'delivery_challan_number': receipt.delivery_challan_number,
        'is_partial': receipt.is_partial,
        'notes': receipt.notes,
        'created_at': receipt.created_at,
    }


def list_receipts(
    db: Session,
    *,
    actor: Principal,
    order_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict]:
    ensure_role(actor, Role.SITE_ENGINEER, Role.PURCHASE_TEAM, Role.DIRECTOR)
    query = _receipt_header_query()
    scoped_site_id = site_filter(actor)
    if scoped_site_id is not None:
        query = query.where(Indent.site_id == scoped_site_id)
    if order_id is not None:
        query = query.where(Receipt.order_id == order_id)
    rows = db.execute(
        query.order_by(Receipt.created_at.desc(), Receipt.id.desc()).limit(limit).offset(offset)
    ).all()
    return [_receipt_header(row) for row in rows]


def get_receipt_detail(db: Session, *, actor: Principal, receipt_id: int) -> dict:
    ensure_role(actor, Role.SITE_ENGINEER, Role.PURCHASE_TEAM, Role.DIRECTOR)
    row = db.execute(_receipt_header_query().where(Receipt.id == receipt_id)).one_or_none()
    if row is None:
        raise missing_resource(actor, 'Receipt not found')
    assert_site_scope(actor, row.site_id)

    item_rows = db.execute(
        select(ReceiptItem, OrderItem, Material)
        .join(OrderItem, OrderItem.id == ReceiptItem.order_item_id)
        .join(Material, Material.id == OrderItem.material_id)
        .where(ReceiptItem.receipt_id == receipt_id)
        .order_by(OrderItem.position.asc(), ReceiptItem.id.asc())
    ).all()
    items = [
        {
            'id': item.id,
            'order_item_id': item.order_item_id,
            'ordered_quantity': order_item.quantity,
            'received_quantity': item.received_quantity,
            'damaged_quantity': item.damaged_quantity,
            'returned_quantity': item.returned_quantity,
            'damage_description': item.damage_description,
            'return_reason': item.return_reason,
            'condition_notes': item.condition_notes,
            'unit_price': order_item.unit_price,
            'total_price': order_item.total_price,
            'material_id': material.id,
            'material_name': material.material_name,
            'material_code': material.material_code,
            'unit': material.unit,
            'category': material.category,
        }
        for item, order_item, material in item_rows
    ]
    images = [
        {
            'id': image.id,
            'image_path': image.image_path,
            'image_type': image.image_type,
            'description': image.description,
            'uploaded_at': image.uploaded_at,
        }
        for image in db.execute(
            select(ReceiptImage).where(ReceiptImage.receipt_id == receipt_id).order_by(ReceiptImage.id.asc())
        ).scalars().all()
    ]
    return {'receipt': _receipt_header(row), 'items': items, 'images': images}


def resolve_receipt_image(db: Session, *, actor: Principal, store: EvidenceStore, filename: str) -> Path:
    """Path of a stored receipt photo, if the caller may see the receipt it belongs to."""
    ensure_role(actor, Role.SITE_ENGINEER, Role.PURCHASE_TEAM, Role.DIRECTOR)
    site_id = db.execute(
        select(Indent.site_id)
        .join(Order, Order.indent_id == Indent.id)
        .join(Receipt, Receipt.order_id == Order.id)
        .join(ReceiptImage, ReceiptImage.receipt_id == Receipt.id)
        .where(ReceiptImage.image_path == f'{UPLOAD_URL_PREFIX}/{filename}')
        .limit(1)
    ).scalar_one_or_none()
    if site_id is None:
        raise missing_resource(actor, 'File not found')
    assert_site_scope(actor, site_id)
    return store.resolve(filename)
