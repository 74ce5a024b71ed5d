from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, aliased

from indent_portal.auth import Principal, Role, ensure_role, missing_resource, assert_site_scope, site_filter
from indent_portal.errors import AuthorizationError, StateConflictError, ValidationError
from indent_portal.models import (
    MONEY_PLACES,
    QUANTITY_PLACES,
    Indent,
    IndentItem,
    IndentStatus,
    Material,
    Order,
    Site,
    User,
)
from indent_portal.services.document_numbers import indent_number
from indent_portal.services.material_service import ensure_active_materials
from indent_portal.services.workflow_rules import (
    ApprovalAction,
    ApprovalTier,
    TransitionFailure,
    precision_problem,
    transition_indent,
)

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True)
class IndentLineInput:
    material_id: int
    quantity: Decimal
    specifications: dict = field(default_factory=dict)
    estimated_unit_cost: Decimal | None = None

    @property
    def estimated_total_cost(self) -> Decimal | None:
        if self.estimated_unit_cost is None:
            return None
        return self.quantity * self.estimated_unit_cost


def estimated_total(lines: list[IndentLineInput]) -> Decimal:
    return sum(
        (line.estimated_total_cost for line in lines if line.estimated_total_cost is not None),
        Decimal('0'),
    )


def _validate_lines(lines: list[IndentLineInput]) -> None:
    if not lines:
        raise ValidationError(details=['items must contain at least 1 item'])
    problems = []
    for idx, line in enumerate(lines):
        problem = precision_problem(line.quantity, places=QUANTITY_PLACES)
        if problem:
            problems.append(f'items.{idx}.quantity {problem}')
        elif line.quantity <= 0:
            problems.append(f'items.{idx}.quantity must be greater than 0')
        if line.estimated_unit_cost is not None:
            problem = precision_problem(line.estimated_unit_cost, places=MONEY_PLACES)
            if problem:
                problems.append(f'items.{idx}.estimated_unit_cost {problem}')
            elif line.estimated_unit_cost <= 0:
                problems.append(f'items.{idx}.estimated_unit_cost must be greater than 0')
    if problems:
        raise ValidationError(details=problems)


def create_indent(db: Session, *, actor: Principal, items: list[IndentLineInput]) -> Indent:
    ensure_role(actor, Role.SITE_ENGINEER)
    _validate_lines(items)
    ensure_active_materials(db, {line.material_id for line in items})

    indent = Indent(
        indent_number=indent_number(actor.site_id),
        site_id=actor.site_id,
        created_by=actor.id,
        status=IndentStatus.PENDING,
        total_estimated_cost=estimated_total(items),
    )
    db.add(indent)
    db.flush()

    for position, line in enumerate(items):
        db.add(
            IndentItem(
                indent_id=indent.id,
                position=position,
                material_id=line.material_id,
                quantity=line.quantity,
                specifications=line.specifications or None,
                estimated_unit_cost=line.estimated_unit_cost,
                estimated_total_cost=line.estimated_total_cost,
            )
        )
    db.flush()
    logger.info('Indent %s created by user %s for site %s', indent.indent_number, actor.id, actor.site_id)
    return indent


def _indent_header_query():
    creator = aliased(User)
    purchase_approver = aliased(User)
    director_approver = aliased(User)
    return (
        select(
            Indent,
            Site.site_name,
            Site.site_code,
            creator.full_name.label('created_by_name'),
            purchase_approver.full_name.label('purchase_approved_by_name'),
            director_approver.full_name.label('director_approved_by_name'),
        )
        .join(Site, Site.id == Indent.site_id)
        .join(creator, creator.id == Indent.created_by)
        .outerjoin(purchase_approver, purchase_approver.id == Indent.purchase_approved_by)
        .outerjoin(director_approver, director_approver.id == Indent.director_approved_by)
    )


def _indent_header(row) -> dict:
    indent = row.Indent
    return {
        'id': indent.id,
        'indent_number': indent.indent_number,
        'site_id': indent.site_id,
        'site_name': row.site_name,
        'site_code': row.site_code,
        'status': IndentStatus(indent.status).value,
        'total_estimated_cost': indent.total_estimated_cost,
        'created_by': indent.created_by,
        'created_by_name': row.created_by_name,
        'purchase_approved_by': indent.purchase_approved_by,
        'purchase_approved_by_name': row.purchase_approved_by_name,
        'purchase_approved_at': indent.purchase_approved_at,
        'director_approved_by': indent.director_approved_by,
        'director_approved_by_name': row.director_approved_by_name,
        'director_approved_at': indent.director_approved_at,
        'rejection_reason': indent.rejection_reason,
        'created_at': indent.created_at,
        'updated_at': indent.updated_at,
    }


def list_indents(
    db: Session,
    *,
    actor: Principal,
    status: IndentStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict]:
    ensure_role(actor, Role.SITE_ENGINEER, Role.PURCHASE_TEAM, Role.DIRECTOR)
    query = _indent_header_query()
    scoped_site_id = site_filter(actor)
    if scoped_site_id is not None:
        query = query.where(Indent.site_id == scoped_site_id)
    if status is not None:
        query = query.where(Indent.status == status)
    rows = db.execute(
        query.order_by(Indent.created_at.desc(), Indent.id.desc()).limit(limit).offset(offset)
    ).all()
    return [_indent_header(row) for row in rows]


def get_indent_detail(db: Session, *, actor: Principal, indent_id: int) -> dict:
    ensure_role(actor, Role.SITE_ENGINEER, Role.PURCHASE_TEAM, Role.DIRECTOR)
    row = db.execute(_indent_header_query().where(Indent.id == indent_id)).one_or_none()
    if row is None:
        raise missing_resource(actor, 'Indent not found')
    assert_site_scope(actor, row.Indent.site_id)

    item_rows = db.execute(
        select(IndentItem, Material)
        .join(Material, Material.id == IndentItem.material_id)
        .where(IndentItem.indent_id == indent_id)
        .order_by(IndentItem.position.asc(), IndentItem.id.asc())
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
            'specifications': item.specifications or {},
            'estimated_unit_cost': item.estimated_unit_cost,
            'estimated_total_cost': item.estimated_total_cost,
        }
        for item, material in item_rows
    ]
    return {'indent': _indent_header(row), 'items': items}


def decide_indent(
    db: Session,
    *,
    actor: Principal,
    indent_id: int,
    action: ApprovalAction,
    rejection_reason: str | None = None,
) -> Indent:
    ensure_role(actor, Role.PURCHASE_TEAM, Role.DIRECTOR)

    # Row lock so the status check and the write see the same state.
    indent = db.execute(select(Indent).where(Indent.id == indent_id).with_for_update()).scalar_one_or_none()
    if indent is None:
        raise missing_resource(actor, 'Indent not found')
    assert_site_scope(actor, indent.site_id)

    current = IndentStatus(indent.status)
    transition = transition_indent(actor.role, current, action, rejection_reason)
    if transition.failure == TransitionFailure.ROLE_NOT_PERMITTED:
        raise AuthorizationError()
    if transition.failure == TransitionFailure.REASON_REQUIRED:
        raise ValidationError(details=[transition.message])
    if not transition.ok:
        raise StateConflictError(transition.message)

    now = _now()
    if transition.new_status == IndentStatus.REJECTED:
        has_order = db.execute(select(Order.id).where(Order.indent_id == indent.id)).scalar_one_or_none()
        if has_order is not None:
            raise StateConflictError('Indent already has an order and cannot be rejected')
        indent.rejection_reason = rejection_reason.strip()
    elif transition.tier == ApprovalTier.PURCHASE:
        indent.purchase_approved_by = actor.id
        indent.purchase_approved_at = now
    elif transition.tier == ApprovalTier.DIRECTOR:
        indent.director_approved_by = actor.id
        indent.director_approved_at = now

    indent.status = transition.new_status
    indent.updated_at = now
    db.flush()
    logger.info(
        'Indent %s moved %s -> %s by user %s (%s)',
        indent.indent_number,
        current.value,
        transition.new_status.value,
        actor.id,
        actor.role.value,
    )
    return indent
