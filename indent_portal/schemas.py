from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from indent_portal.errors import ValidationError, format_validation_errors
from indent_portal.models import MONEY_PLACES, NUMERIC_DIGITS, QUANTITY_PLACES
from indent_portal.services.indent_service import IndentLineInput
from indent_portal.services.order_service import OrderLineInput, VendorDetails
from indent_portal.services.receipt_service import ReceiptLineInput
from indent_portal.services.workflow_rules import ApprovalAction


class LoginRequest(BaseModel):
    username: str = Field(min_length=3, max_length=30)
    password: str = Field(min_length=6)
    site_code: str | None = None


class IndentItemPayload(BaseModel):
    material_id: int = Field(gt=0)
    quantity: Decimal = Field(gt=0, max_digits=NUMERIC_DIGITS, decimal_places=QUANTITY_PLACES)
    specifications: dict[str, Any] = Field(default_factory=dict)
    estimated_unit_cost: Decimal | None = Field(
        default=None, gt=0, max_digits=NUMERIC_DIGITS, decimal_places=MONEY_PLACES
    )

    def to_input(self) -> IndentLineInput:
        return IndentLineInput(
            material_id=self.material_id,
            quantity=self.quantity,
            specifications=self.specifications,
            estimated_unit_cost=self.estimated_unit_cost,
        )


class IndentCreate(BaseModel):
    items: list[IndentItemPayload] = Field(min_length=1)


class IndentDecision(BaseModel):
    action: ApprovalAction
    rejection_reason: str | None = Field(default=None, max_length=1000)


class OrderItemPayload(BaseModel):
    material_id: int = Field(gt=0)
    quantity: Decimal = Field(gt=0, max_digits=NUMERIC_DIGITS, decimal_places=QUANTITY_PLACES)
    unit_price: Decimal = Field(gt=0, max_digits=NUMERIC_DIGITS, decimal_places=MONEY_PLACES)
    specifications: dict[str, Any] = Field(default_factory=dict)

    def to_input(self) -> OrderLineInput:
        return OrderLineInput(
            material_id=self.material_id,
            quantity=self.quantity,
            unit_price=self.unit_price,
            specifications=self.specifications,
        )


class OrderPayload(BaseModel):
    vendor_name: str = Field(min_length=1, max_length=255)
    vendor_contact: str = Field(min_length=1, max_length=255)
    vendor_address: str | None = Field(default=None, max_length=500)
    expected_delivery_date: date
    items: list[OrderItemPayload] = Field(min_length=1)
    version: int | None = None

    def vendor(self) -> VendorDetails:
        return VendorDetails(
            vendor_name=self.vendor_name,
            vendor_contact=self.vendor_contact,
            vendor_address=self.vendor_address,
            expected_delivery_date=self.expected_delivery_date,
        )

    def lines(self) -> list[OrderLineInput]:
        return [item.to_input() for item in self.items]


class OrderCreate(OrderPayload):
    indent_id: int = Field(gt=0)


class ReceiptItemPayload(BaseModel):
    order_item_id: int = Field(gt=0)
    received_quantity: Decimal = Field(ge=0, max_digits=NUMERIC_DIGITS, decimal_places=QUANTITY_PLACES)
    damaged_quantity: Decimal = Field(
        default=Decimal('0'), ge=0, max_digits=NUMERIC_DIGITS, decimal_places=QUANTITY_PLACES
    )
    returned_quantity: Decimal = Field(
        default=Decimal('0'), ge=0, max_digits=NUMERIC_DIGITS, decimal_places=QUANTITY_PLACES
    )
    damage_description: str | None = Field(default=None, max_length=500)
    return_reason: str | None = Field(default=None, max_length=500)
    condition_notes: str | None = Field(default=None, max_length=500)

    def to_input(self) -> ReceiptLineInput:
        return ReceiptLineInput(
            order_item_id=self.order_item_id,
            received_quantity=self.received_quantity,
            damaged_quantity=self.damaged_quantity,
            returned_quantity=self.returned_quantity,
            damage_description=self.damage_description,
            return_reason=self.return_reason,
            condition_notes=self.condition_notes,
        )


_receipt_items_adapter = TypeAdapter(list[ReceiptItemPayload])


def parse_receipt_items(raw: str) -> list[ReceiptLineInput]:
    """Receipt items arrive as a JSON string inside the multipart form."""
    try:
        payloads = _receipt_items_adapter.validate_json(raw or '[]')
    except PydanticValidationError as exc:
        raise ValidationError(details=format_validation_errors(exc.errors(), prefix='items')) from exc
    return [payload.to_input() for payload in payloads]

