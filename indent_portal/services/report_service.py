from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session, aliased

from indent_portal.auth import Principal, Role, ensure_role
from indent_portal.errors import ValidationError
from indent_portal.models import Indent, IndentItem, IndentStatus, Material, Order, OrderItem, Site, User

ZERO = Decimal('0')
CENT = Decimal('0.01')
MIN_REPORT_YEAR = 2020
MAX_REPORT_YEAR = 2100
TOP_MATERIALS_LIMIT = 10
APPROVED_STATUSES = frozenset({IndentStatus.PURCHASE_APPROVED, IndentStatus.DIRECTOR_APPROVED})


@dataclass(frozen=True)
class ReportPeriod:
    year: int
    month: int

    @property
    def start(self) -> datetime:
        return datetime.combine(date(self.year, self.month, 1), time.min, tzinfo=timezone.utc)

    @property
    def end(self) -> datetime:
        if self.month == 12:
            return datetime.combine(date(self.year + 1, 1, 1), time.min, tzinfo=timezone.utc)
        return datetime.combine(date(self.year, self.month + 1, 1), time.min, tzinfo=timezone.utc)

    @property
    def label(self) -> str:
        return f'{self.month}/{self.year}'


@dataclass(frozen=True)
class IndentReportRow:
    indent_id: int
    indent_number: str
    site_name: str
    site_code: str
    created_by_name: str
    status: IndentStatus
    created_at: datetime
    total_estimated_cost: Decimal
    order_number: str | None
    actual_cost: Decimal | None
    vendor_name: str | None


@dataclass(frozen=True)
class MaterialReportRow:
    material_id: int
    material_name: str
    category: str | None
    unit: str
    total_quantity: Decimal
    avg_unit_price: Decimal
    total_cost: Decimal


@dataclass(frozen=True)
class StatusBreakdownRow:
    status: IndentStatus
    count: int
    total_cost: Decimal


@dataclass(frozen=True)
class MonthlyReport:
    period: ReportPeriod
    site_id: int | None
    indents: list[IndentReportRow]
    materials: list[MaterialReportRow]
    status_breakdown: list[StatusBreakdownRow]
    total_indents: int
    completed_indents: int
    pending_indents: int
    approved_indents: int
    total_estimated_cost: Decimal
    total_actual_cost: Decimal

    @property
    def cost_variance(self) -> Decimal:
        return self.total_actual_cost - self.total_estimated_cost

    @property
    def completion_rate(self) -> str:
        if self.total_indents == 0:
            return '0'
        rate = Decimal(self.completed_indents) * Decimal('100') / Decimal(self.total_indents)
        return str(rate.quantize(Decimal('0.1')))

    @property
    def top_materials(self) -> list[MaterialReportRow]:
        return [row for row in self.materials if row.total_cost > 0][:TOP_MATERIALS_LIMIT]


def resolve_period(year: int, month: int) -> ReportPeriod:
    problems = []
    if year < MIN_REPORT_YEAR or year > MAX_REPORT_YEAR:
        problems.append(f'year must be between {MIN_REPORT_YEAR} and {MAX_REPORT_YEAR}')
    if month < 1 or month > 12:
        problems.append('month must be between 1 and 12')
    if problems:
        raise ValidationError('Query validation error', details=problems)
    return ReportPeriod(year=year, month=month)


def _in_window(query, period: ReportPeriod, site_id: int | None):
    query = query.where(Indent.created_at >= period.start, Indent.created_at < period.end)
    if site_id is not None:
        query = query.where(Indent.site_id == site_id)
    return query


def _indent_rows(db: Session, period: ReportPeriod, site_id: int | None) -> list[IndentReportRow]:
    creator = aliased(User)
    query = (
        select(
            Indent,
            Site.site_name,
            Site.site_code,
            creator.full_name,
            Order.order_number,
            Order.total_amount,
            Order.vendor_name,
        )
        .join(Site, Site.id == Indent.site_id)
        .join(creator, creator.id == Indent.created_by)
        .outerjoin(Order, Order.indent_id == Indent.id)
    )
    rows = db.execute(_in_window(query, period, site_id).order_by(Indent.created_at.desc(), Indent.id.desc())).all()
    return [
        IndentReportRow(
            indent_id=indent.id,
            indent_number=indent.indent_number,
            site_name=site_name,
            site_code=site_code,
            created_by_name=created_by_name,
            status=IndentStatus(indent.status),
            created_at=indent.created_at,
            total_estimated_cost=indent.total_estimated_cost or ZERO,
            order_number=order_number_value,
            actual_cost=total_amount,
            vendor_name=vendor_name,
        )
        for indent, site_name, site_code, created_by_name, order_number_value, total_amount, vendor_name in rows
    ]


def _material_rows(db: Session, period: ReportPeriod, site_id: int | None) -> list[MaterialReportRow]:
    requested = db.execute(
        _in_window(
            select(
                Material.id,
                Material.material_name,
                Material.category,
                Material.unit,
                func.sum(IndentItem.quantity),
            )
            .select_from(IndentItem)
            .join(Indent, Indent.id == IndentItem.indent_id)
            .join(Material, Material.id == IndentItem.material_id),
            period,
            site_id,
        ).group_by(Material.id, Material.material_name, Material.category, Material.unit)
    ).all()

    ordered = db.execute(
        _in_window(
            select(
                OrderItem.material_id,
                func.avg(OrderItem.unit_price),
                func.sum(OrderItem.total_price),
            )
            .select_from(OrderItem)
            .join(Order, Order.id == OrderItem.order_id)
            .join(Indent, Indent.id == Order.indent_id),
            period,
            site_id,
        ).group_by(OrderItem.material_id)
    ).all()
    pricing = {
        material_id: (Decimal(str(avg_price or 0)), Decimal(str(total_cost or 0)))
        for material_id, avg_price, total_cost in ordered
    }

    rows = [
        MaterialReportRow(
            material_id=material_id,
            material_name=name,
            category=category,
            unit=unit,
            total_quantity=Decimal(str(quantity or 0)),
            avg_unit_price=pricing.get(material_id, (ZERO, ZERO))[0].quantize(CENT),
            total_cost=pricing.get(material_id, (ZERO, ZERO))[1].quantize(CENT),
        )
        for material_id, name, category, unit, quantity in requested
    ]
    rows.sort(key=lambda row: (-row.total_cost, row.material_name.lower()))
    return rows


def build_monthly_report(
    db: Session,
    *,
    actor: Principal,
    year: int,
    month: int,
    site_id: int | None = None,
) -> MonthlyReport:
    ensure_role(actor, Role.PURCHASE_TEAM, Role.DIRECTOR)
    period = resolve_period(year, month)

    indents = _indent_rows(db, period, site_id)
    materials = _material_rows(db, period, site_id)

    breakdown: dict[IndentStatus, StatusBreakdownRow] = {}
    for row in indents:
        current = breakdown.get(row.status)
        breakdown[row.status] = StatusBreakdownRow(
            status=row.status,
            count=(current.count if current else 0) + 1,
            total_cost=(current.total_cost if current else ZERO) + row.total_estimated_cost,
        )

    return MonthlyReport(
        period=period,
        site_id=site_id,
        indents=indents,
        materials=materials,
        status_breakdown=[breakdown[status] for status in IndentStatus if status in breakdown],
        total_indents=len(indents),
        completed_indents=sum(1 for row in indents if row.status == IndentStatus.COMPLETED),
        pending_indents=sum(1 for row in indents if row.status == IndentStatus.PENDING),
        approved_indents=sum(1 for row in indents if row.status in APPROVED_STATUSES),
        total_estimated_cost=sum((row.total_estimated_cost for row in indents), ZERO),
        total_actual_cost=sum((row.actual_cost for row in indents if row.actual_cost is not None), ZERO),
    )


def report_payload(report: MonthlyReport) -> dict:
    return {
        'period': {'year': report.period.year, 'month': report.period.month, 'site_id': report.site_id},
        'stats': {
            'total_indents': report.total_indents,
            'completed_indents': report.completed_indents,
            'pending_indents': report.pending_indents,
            'approved_indents': report.approved_indents,
            'total_estimated_cost': report.total_estimated_cost,
            'total_actual_cost': report.total_actual_cost,
            'cost_variance': report.cost_variance,
            'completion_rate': report.completion_rate,
        },
        'status_breakdown': [
            {'status': row.status.value, 'count': row.count, 'total_cost': row.total_cost}
            for row in report.status_breakdown
        ],
        'top_materials': [
            {
                'material_id': row.material_id,
                'material_name': row.material_name,
                'category': row.category,
                'unit': row.unit,
                'total_quantity': row.total_quantity,
                'total_cost': row.total_cost,
            }
            for row in report.top_materials
        ],
    }
