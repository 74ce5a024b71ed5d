from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from indent_portal.config import settings
from indent_portal.db import Database
from indent_portal.logging_config import setup_logging
from indent_portal.models import Material, Site, User, UserRole
from indent_portal.security.credentials import hash_password

logger = logging.getLogger(__name__)

DEMO_PASSWORD = 'password123'

SITES = (
    ('SITE001', 'Downtown Tower', 'Downtown'),
    ('SITE002', 'Riverside Residences', 'Riverside'),
    ('SITE003', 'Hilltop Warehouse', 'Hilltop Industrial Area'),
)

USERS = (
    ('engineer1', UserRole.SITE_ENGINEER, 'SITE001', 'Site Engineer One', 'engineer1@example.com'),
    ('engineer2', UserRole.SITE_ENGINEER, 'SITE002', 'Site Engineer Two', 'engineer2@example.com'),
    ('purchase1', UserRole.PURCHASE_TEAM, None, 'Purchase Officer', 'purchase1@example.com'),
    ('director1', UserRole.DIRECTOR, None, 'Project Director', 'director1@example.com'),
)

MATERIALS = (
    ('CEM001', 'Portland Cement 53 Grade', 'Cement', 'bags', {'grade': '53', 'weight': '50kg'}),
    ('STL001', 'TMT Steel Bar 12mm', 'Steel', 'tonnes', {'diameter': '12mm', 'grade': 'Fe500'}),
    ('BRK001', 'Red Clay Brick', 'Masonry', 'nos', {'size': '230x110x75mm'}),
    ('SND001', 'River Sand', 'Aggregates', 'cubic meters', {'type': 'coarse'}),
    ('GRV001', 'Crushed Stone Aggregate 20mm', 'Aggregates', 'cubic meters', {'size': '20mm'}),
    ('PNT001', 'Exterior Emulsion Paint', 'Finishing', 'litres', {'finish': 'matt'}),
)


def seed_sites(db: Session) -> dict[str, Site]:
    sites = {}
    for code, name, location in SITES:
        site = db.execute(select(Site).where(Site.site_code == code)).scalar_one_or_none()
        if not site:
            site = Site(site_code=code, site_name=name, location=location)
            db.add(site)
            db.flush()
        sites[code] = site
    return sites


def seed_users(db: Session, sites: dict[str, Site]) -> None:
    for username, role, site_code, full_name, email in USERS:
        user = db.execute(select(User).where(User.username == username)).scalar_one_or_none()
        if user:
            continue
        db.add(
            User(
                username=username,
                password_hash=hash_password(DEMO_PASSWORD),
                role=role,
                site_id=sites[site_code].id if site_code else None,
                full_name=full_name,
                email=email,
                is_active=True,
            )
        )
    db.flush()


def seed_materials(db: Session) -> None:
    for code, name, category, unit, specifications in MATERIALS:
        material = db.execute(select(Material).where(Material.material_code == code)).scalar_one_or_none()
        if material:
            continue
        db.add(
            Material(
                material_code=code,
                material_name=name,
                category=category,
                unit=unit,
                specifications=specifications,
                is_active=True,
            )
        )
    db.flush()


def seed(database: Database) -> None:
    database.create_all()
    with database.transaction() as db:
        sites = seed_sites(db)
        seed_users(db, sites)
        seed_materials(db)
    logger.info('Seeded %s sites, %s users and %s materials', len(SITES), len(USERS), len(MATERIALS))


if __name__ == '__main__':
    setup_logging(settings)
    seed(Database(settings.database_url_normalized, echo=settings.database_echo))
