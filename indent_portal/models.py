from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
Id = BigInteger().with_variant(Integer(), 'sqlite')
QUANTITY_PLACES = 3
MONEY_PLACES = 2
NUMERIC_DIGITS = 14
Money = Numeric(NUMERIC_DIGITS, MONEY_PLACES)
Quantity = Numeric(NUMERIC_DIGITS, QUANTITY_PLACES)
# quantity x unit price, held exactly
Amount = Numeric(30, QUANTITY_PLACES + MONEY_PLACES)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class Base(DeclarativeBase):
    pass


class UserRole(str, Enum):
    SITE_ENGINEER = 'Site Engineer'
    PURCHASE_TEAM = 'Purchase Team'
    DIRECTOR = 'Director'


class IndentStatus(str, Enum):
    PENDING = 'Pending'
    PURCHASE_APPROVED = 'Purchase Approved'
    DIRECTOR_APPROVED = 'Director Approved'
    REJECTED = 'Rejected'
    COMPLETED = 'Completed'


class OrderStatus(str, Enum):
    PENDING = 'Pending'
    PARTIALLY_RECEIVED = 'Partially Received'
    COMPLETED = 'Completed'


class Site(Base):
    __tablename__ = 'sites'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    site_code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    site_name: Mapped[str] = mapped_column(Text, nullable=False)
    location: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


class User(Base):
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    username: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[UserRole] = mapped_column(
        SQLEnum(UserRole, name='user_role', values_callable=_enum_values), nullable=False
    )
    site_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('sites.id'))
    full_name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='1')
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


class Material(Base):
    __tablename__ = 'materials'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    material_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    material_name: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str | None] = mapped_column(String(50))
    unit: Mapped[str] = mapped_column(String(30), nullable=False)
    specifications: Mapped[dict | None] = mapped_column(JSON)
    description: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='1')
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


class Indent(Base):
    __tablename__ = 'indents'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    indent_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    site_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('sites.id'), nullable=False, index=True)
    created_by: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id'), nullable=False)
    status: Mapped[IndentStatus] = mapped_column(
        SQLEnum(IndentStatus, name='indent_status', values_callable=_enum_values),
        nullable=False,
        default=IndentStatus.PENDING,
        server_default=IndentStatus.PENDING.value,
    )
    total_estimated_cost: Mapped[Decimal] = mapped_column(Amount, nullable=False, default=Decimal('0'))
    purchase_approved_by: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    purchase_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    director_approved_by: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    director_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now(), index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


class IndentItem(Base):
    __tablename__ = 'indent_items'
    __table_args__ = (CheckConstraint('quantity > 0', name='indent_items_quantity_positive'),)

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    indent_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('indents.id', ondelete='CASCADE'), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    material_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('materials.id'), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    specifications: Mapped[dict | None] = mapped_column(JSON)
    estimated_unit_cost: Mapped[Decimal | None] = mapped_column(Money)
    estimated_total_cost: Mapped[Decimal | None] = mapped_column(Amount)


class Order(Base):
    __tablename__ = 'orders'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    indent_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('indents.id'), nullable=False, unique=True)
    order_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    vendor_name: Mapped[str] = mapped_column(String(255), nullable=False)
    vendor_contact: Mapped[str] = mapped_column(String(255), nullable=False)
    vendor_address: Mapped[str | None] = mapped_column(String(500))
    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_delivery_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Amount, nullable=False, default=Decimal('0'))
    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name='order_status', values_callable=_enum_values),
        nullable=False,
        default=OrderStatus.PENDING,
        server_default=OrderStatus.PENDING.value,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_by: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    __mapper_args__ = {'version_id_col': version}


class OrderItem(Base):
    __tablename__ = 'order_items'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='order_items_quantity_positive'),
        CheckConstraint('unit_price > 0', name='order_items_unit_price_positive'),
    )

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('orders.id', ondelete='CASCADE'), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    material_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('materials.id'), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    specifications: Mapped[dict | None] = mapped_column(JSON)


class Receipt(Base):
    __tablename__ = 'receipts'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('orders.id'), nullable=False, index=True)
    receipt_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    received_by: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id'), nullable=False)
    received_date: Mapped[date] = mapped_column(Date, nullable=False)
    delivery_challan_number: Mapped[str | None] = mapped_column(String(100))
    is_partial: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='0')
    notes: Mapped[str | None] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


class ReceiptItem(Base):
    __tablename__ = 'receipt_items'
    __table_args__ = (
        UniqueConstraint('receipt_id', 'order_item_id', name='receipt_items_receipt_order_item_uniq'),
        CheckConstraint(
            'received_quantity >= 0 AND damaged_quantity >= 0 AND returned_quantity >= 0',
            name='receipt_items_quantities_non_negative',
        ),
    )

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    receipt_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('receipts.id', ondelete='CASCADE'), nullable=False)
    order_item_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('order_items.id'), nullable=False)
    received_quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    damaged_quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False, default=Decimal('0'))
    returned_quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False, default=Decimal('0'))
    damage_description: Mapped[str | None] = mapped_column(String(500))
    return_reason: Mapped[str | None] = mapped_column(String(500))
    condition_notes: Mapped[str | None] = mapped_column(String(500))


class ReceiptImage(Base):
    __tablename__ = 'receipt_images'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    receipt_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('receipts.id', ondelete='CASCADE'), nullable=False)
    image_path: Mapped[str] = mapped_column(Text, nullable=False)
    image_type: Mapped[str] = mapped_column(String(50), nullable=False, default='general')
    description: Mapped[str] = mapped_column(Text, nullable=False, default='')
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


class AuthEvent(Base):
    __tablename__ = 'auth_events'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    attempted_username: Mapped[str] = mapped_column(Text, nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


class AuditLog(Base):
    __tablename__ = 'audit_logs'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    actor_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[int | None] = mapped_column(BigInteger)
    ip: Mapped[str | None] = mapped_column(String(64))
    meta: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
