from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from indent_portal.auth import Principal
from indent_portal.db import Database
from indent_portal.models import Material, Site, User, UserRole
from indent_portal.security.credentials import hash_password
from indent_portal.services.indent_service import IndentLineInput, create_indent, decide_indent
from indent_portal.services.order_service import OrderLineInput, VendorDetails, create_order
from indent_portal.services.workflow_rules import ApprovalAction

PASSWORD = 'password123'


@dataclass
class Directory:
    site_a: Site
    site_b: Site
    engineer: User
    other_engineer: User
    purchase: User
    director: User
    cement: Material
    steel: Material


def make_database() -> Database:
    database = Database('sqlite://')
    database.create_all()
    return database


def principal_for(user: User) -> Principal:
    return Principal(
        id=user.id,
        username=user.username,
        role=UserRole(user.role),
        site_id=user.site_id,
        full_name=user.full_name,
        active=user.is_active,
    )


def seed_directory(db: Session, *, password_hash: str | None = None) -> Directory:
    site_a = Site(site_code='SITE001', site_name='Downtown Tower', location='Downtown')
    site_b = Site(site_code='SITE002', site_name='Riverside Residences', location='Riverside')
    db.add_all([site_a, site_b])
    db.flush()

    hashed = password_hash or hash_password(PASSWORD)
    engineer = User(
        username='engineer1', password_hash=hashed, role=UserRole.SITE_ENGINEER, site_id=site_a.id, full_name='Engineer One'
    )
    other_engineer = User(
        username='engineer2', password_hash=hashed, role=UserRole.SITE_ENGINEER, site_id=site_b.id, full_name='Engineer Two'
    )
    purchase = User(username='purchase1', password_hash=hashed, role=UserRole.PURCHASE_TEAM, full_name='Purchase Officer')
    director = User(username='director1', password_hash=hashed, role=UserRole.DIRECTOR, full_name='Project Director')
    cement = Material(material_code='CEM001', material_name='Portland Cement', category='Cement', unit='bags')
    steel = Material(material_code='STL001', material_name='TMT Steel Bar', category='Steel', unit='tonnes')
    db.add_all([engineer, other_engineer, purchase, director, cement, steel])
    db.flush()
    return Directory(
        site_a=site_a,
        site_b=site_b,
        engineer=engineer,
        other_engineer=other_engineer,
        purchase=purchase,
        director=director,
        cement=cement,
        steel=steel,
    )


def future_date(days: int = 7) -> date:
    return date.today() + timedelta(days=days)


def past_date(days: int = 1) -> date:
    return date.today() - timedelta(days=days)


def vendor(expected_delivery_date: date | None = None) -> VendorDetails:
    return VendorDetails(
        vendor_name='Acme Supplies',
        vendor_contact='+91 98765 43210',
        expected_delivery_date=expected_delivery_date or future_date(),
    )


def approved_indent(db: Session, directory: Directory, *, quantity: Decimal = Decimal('100')):
    indent = create_indent(
        db,
        actor=principal_for(directory.engineer),
        items=[IndentLineInput(material_id=directory.cement.id, quantity=quantity, estimated_unit_cost=Decimal('350'))],
    )
    decide_indent(db, actor=principal_for(directory.purchase), indent_id=indent.id, action=ApprovalAction.APPROVE)
    decide_indent(db, actor=principal_for(directory.director), indent_id=indent.id, action=ApprovalAction.APPROVE)
    return indent


def ordered_indent(db: Session, directory: Directory, *, quantity: Decimal = Decimal('100')):
    indent = approved_indent(db, directory, quantity=quantity)
    order = create_order(
        db,
        actor=principal_for(directory.purchase),
        indent_id=indent.id,
        vendor=vendor(),
        items=[OrderLineInput(material_id=directory.cement.id, quantity=quantity, unit_price=Decimal('360'))],
    )
    return indent, order
