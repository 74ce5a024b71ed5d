"""Pure state-machine rules for indents and orders.

Nothing here touches the database: the services load the current state,
ask these functions what the next state is, and persist the answer.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from indent_portal.models import NUMERIC_DIGITS, IndentStatus, OrderStatus, UserRole


class ApprovalAction(str, Enum):
    APPROVE = 'approve'
    REJECT = 'reject'


class TransitionFailure(str, Enum):
    ROLE_NOT_PERMITTED = 'ROLE_NOT_PERMITTED'
    INVALID_STATE = 'INVALID_STATE'
    REASON_REQUIRED = 'REASON_REQUIRED'


class ApprovalTier(str, Enum):
    PURCHASE = 'PURCHASE'
    DIRECTOR = 'DIRECTOR'


@dataclass(frozen=True)
class IndentTransition:
    new_status: IndentStatus | None = None
    tier: ApprovalTier | None = None
    failure: TransitionFailure | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None


REJECTABLE_INDENT_STATUSES = frozenset(
    {IndentStatus.PENDING, IndentStatus.PURCHASE_APPROVED, IndentStatus.DIRECTOR_APPROVED}
)

_APPROVAL_STEPS: dict[tuple[UserRole, IndentStatus], tuple[IndentStatus, ApprovalTier]] = {
    (UserRole.PURCHASE_TEAM, IndentStatus.PENDING): (IndentStatus.PURCHASE_APPROVED, ApprovalTier.PURCHASE),
    (UserRole.DIRECTOR, IndentStatus.PURCHASE_APPROVED): (IndentStatus.DIRECTOR_APPROVED, ApprovalTier.DIRECTOR),
}

_ORDER_STATUS_RANK = {
    OrderStatus.PENDING: 0,
    OrderStatus.PARTIALLY_RECEIVED: 1,
    OrderStatus.COMPLETED: 2,
}


def transition_indent(
    role: UserRole,
    current: IndentStatus,
    action: ApprovalAction,
    rejection_reason: str | None = None,
) -> IndentTransition:
    if role not in {UserRole.PURCHASE_TEAM, UserRole.DIRECTOR}:
        return IndentTransition(failure=TransitionFailure.ROLE_NOT_PERMITTED, message='Insufficient permissions')

    if action == ApprovalAction.REJECT:
        if not (rejection_reason or '').strip():
            return IndentTransition(
                failure=TransitionFailure.REASON_REQUIRED,
                message='rejection_reason is required when action is reject',
            )
        if current not in REJECTABLE_INDENT_STATUSES:
            return IndentTransition(
                failure=TransitionFailure.INVALID_STATE,
                message=f'Cannot reject an indent that is {current.value}',
            )
        return IndentTransition(new_status=IndentStatus.REJECTED)

    step = _APPROVAL_STEPS.get((role, current))
    if step is None:
        return IndentTransition(failure=TransitionFailure.INVALID_STATE, message='Invalid approval workflow state')
    new_status, tier = step
    return IndentTransition(new_status=new_status, tier=tier)


@dataclass(frozen=True)
class ReceivedLine:
    order_item_id: int
    received_quantity: Decimal
    damaged_quantity: Decimal = Decimal('0')
    returned_quantity: Decimal = Decimal('0')

    @property
    def accounted_quantity(self) -> Decimal:
        return self.received_quantity + self.damaged_quantity + self.returned_quantity


def accounted_by_order_item(lines: Iterable[ReceivedLine]) -> dict[int, Decimal]:
    totals: dict[int, Decimal] = {}
    for line in lines:
        totals[line.order_item_id] = totals.get(line.order_item_id, Decimal('0')) + line.accounted_quantity
    return totals


def derive_order_status(
    ordered_by_item: Mapping[int, Decimal],
    accounted_by_item: Mapping[int, Decimal],
) -> OrderStatus:
    # Received, damaged and returned goods all count towards closing an order line.
    fully_accounted = all(
        accounted_by_item.get(item_id, Decimal('0')) >= ordered for item_id, ordered in ordered_by_item.items()
    )
    return OrderStatus.COMPLETED if fully_accounted else OrderStatus.PARTIALLY_RECEIVED


def advance_order_status(current: OrderStatus, derived: OrderStatus) -> OrderStatus:
    if _ORDER_STATUS_RANK[derived] < _ORDER_STATUS_RANK[current]:
        return current
    return derived


def precision_problem(value: Decimal, *, places: int, digits: int = NUMERIC_DIGITS) -> str | None:
    """Why ``value`` would not survive a NUMERIC(digits, places) column unchanged."""
    if not value.is_finite():
        return 'must be a finite number'
    if value.normalize().as_tuple().exponent < -places:
        return f'must have at most {places} decimal places'
    if value and value.adjusted() >= digits - places:
        return f'must have at most {digits - places} digits before the decimal point'
    return None
