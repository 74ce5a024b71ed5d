from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from indent_portal.auth import ALL_ROLES, Principal, ensure_role, site_filter
from indent_portal.models import Indent, IndentStatus, Site, User

RECENT_INDENT_LIMIT = 10


def dashboard_stats(db: Session, *, actor: Principal) -> dict:
    ensure_role(actor, *ALL_ROLES)
    scoped_site_id = site_filter(actor)

    count_query = select(Indent.status, func.count(Indent.id)).group_by(Indent.status)
    if scoped_site_id is not None:
        count_query = count_query.where(Indent.site_id == scoped_site_id)
    counts = {IndentStatus(status): total for status, total in db.execute(count_query).all()}

    recent_query = (
        select(Indent, Site.site_name, User.full_name)
        .join(Site, Site.id == Indent.site_id)
        .join(User, User.id == Indent.created_by)
    )
    if scoped_site_id is not None:
        recent_query = recent_query.where(Indent.site_id == scoped_site_id)
    recent = db.execute(
        recent_query.order_by(Indent.updated_at.desc(), Indent.id.desc()).limit(RECENT_INDENT_LIMIT)
    ).all()

    return {
        'stats': {
            'total_indents': sum(counts.values()),
            'pending_indents': counts.get(IndentStatus.PENDING, 0),
            'purchase_approved_indents': counts.get(IndentStatus.PURCHASE_APPROVED, 0),
            'director_approved_indents': counts.get(IndentStatus.DIRECTOR_APPROVED, 0),
            'completed_indents': counts.get(IndentStatus.COMPLETED, 0),
            'rejected_indents': counts.get(IndentStatus.REJECTED, 0),
        },
        'recent_indents': [
            {
                'id': indent.id,
                'indent_number': indent.indent_number,
                'status': IndentStatus(indent.status).value,
                'site_name': site_name,
                'created_by_name': created_by_name,
                'total_estimated_cost': indent.total_estimated_cost,
                'created_at': indent.created_at,
                'updated_at': indent.updated_at,
            }
            for indent, site_name, created_by_name in recent
        ],
    }
