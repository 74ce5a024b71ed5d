from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from indent_portal.errors import NotFoundError
from indent_portal.models import Material


@dataclass(frozen=True)
class MaterialQuery:
    search: str | None = None
    category: str | None = None
    limit: int = 50
    offset: int = 0


def material_row(material: Material) -> dict:
    return {
        'id': material.id,
        'material_code': material.material_code,
        'material_name': material.material_name,
        'category': material.category,
        'unit': material.unit,
        'specifications': material.specifications or {},
        'description': material.description,
        'created_at': material.created_at,
    }


def _filtered(query, params: MaterialQuery):
    query = query.where(Material.is_active.is_(True))
    if params.search:
        term = f'%{params.search.strip()}%'
        query = query.where(
            or_(
                Material.material_name.ilike(term),
                Material.material_code.ilike(term),
                Material.category.ilike(term),
                Material.description.ilike(term),
            )
        )
    if params.category:
        query = query.where(Material.category == params.category)
    return query


def list_materials(db: Session, params: MaterialQuery) -> dict:
    rows = db.execute(
        _filtered(select(Material), params)
        .order_by(Material.material_name.asc(), Material.id.asc())
        .limit(params.limit)
        .offset(params.offset)
    ).scalars().all()
    total = db.execute(_filtered(select(func.count(Material.id)), params)).scalar_one()
    return {
        'materials': [material_row(row) for row in rows],
        'pagination': {
            'total': total,
            'limit': params.limit,
            'offset': params.offset,
            'hasMore': params.offset + params.limit < total,
        },
    }


def get_material(db: Session, material_id: int) -> dict:
    material = db.execute(
        select(Material).where(Material.id == material_id, Material.is_active.is_(True))
    ).scalar_one_or_none()
    if material is None:
        raise NotFoundError('Material not found')
    return material_row(material)


def list_categories(db: Session) -> list[str]:
    rows = db.execute(
        select(Material.category)
        .where(Material.is_active.is_(True), Material.category.is_not(None))
        .distinct()
        .order_by(Material.category.asc())
    ).all()
    return [row[0] for row in rows]


def ensure_active_materials(db: Session, material_ids: set[int]) -> None:
    if not material_ids:
        return
    found = set(
        db.execute(
            select(Material.id).where(Material.id.in_(material_ids), Material.is_active.is_(True))
        ).scalars().all()
    )
    missing = sorted(material_ids - found)
    if missing:
        raise NotFoundError('Material not found', details=[f'material_id {material_id} does not exist' for material_id in missing])
