from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from indent_portal.auth import ALL_ROLES, Principal, require_role
from indent_portal.db import get_db
from indent_portal.services.material_service import MaterialQuery, get_material, list_categories, list_materials

router = APIRouter(prefix='/api/materials', tags=['materials'])
any_role = require_role(*ALL_ROLES)


@router.get('')
def materials_index(
    search: str | None = Query(None, max_length=100),
    category: str | None = Query(None, max_length=50),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    _: Principal = Depends(any_role),
):
    return list_materials(db, MaterialQuery(search=search, category=category, limit=limit, offset=offset))


@router.get('/categories')
def material_categories(db: Session = Depends(get_db), _: Principal = Depends(any_role)):
    return {'categories': list_categories(db)}


@router.get('/{material_id}')
def material_detail(material_id: int, db: Session = Depends(get_db), _: Principal = Depends(any_role)):
    return {'material': get_material(db, material_id)}
