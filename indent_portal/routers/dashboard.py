from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from indent_portal.auth import ALL_ROLES, Principal, require_role
from indent_portal.db import get_db
from indent_portal.services.dashboard_service import dashboard_stats

router = APIRouter(prefix='/api/dashboard', tags=['dashboard'])


@router.get('/stats')
def dashboard(db: Session = Depends(get_db), principal: Principal = Depends(require_role(*ALL_ROLES))):
    return dashboard_stats(db, actor=principal)
