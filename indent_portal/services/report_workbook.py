from __future__ import annotations

from datetime import datetime, timezone
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter

from indent_portal.services.report_service import MonthlyReport

XLSX_MEDIA_TYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
HEADER_FONT = Font(bold=True)
HEADER_FILL = PatternFill(start_color='FFE0E0E0', end_color='FFE0E0E0', fill_type='solid')

INDENT_COLUMNS = (
    ('Indent Number', 20),
    ('Site', 25),
    ('Site Code', 12),
    ('Created By', 20),
    ('Status', 18),
    ('Created Date', 14),
    ('Estimated Cost', 16),
    ('Order Number', 22),
    ('Actual Cost', 16),
    ('Vendor', 25),
)
MATERIAL_COLUMNS = (
    ('Material', 30),
    ('Category', 18),
    ('Unit', 10),
    ('Total Quantity', 16),
    ('Avg Unit Price', 16),
    ('Total Cost', 16),
)


def report_filename(report: MonthlyReport) -> str:
    return f'Monthly_Report_{report.period.year}_{report.period.month:02d}.xlsx'


def _write_header(sheet, columns) -> None:
    for idx, (title, width) in enumerate(columns, start=1):
        cell = sheet.cell(row=1, column=idx, value=title)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        sheet.column_dimensions[get_column_letter(idx)].width = width


def _number(value):
    return float(value) if value is not None else None


def build_monthly_workbook(report: MonthlyReport, *, generated_by: str, now: datetime | None = None) -> bytes:
    generated_at = now or datetime.now(tz=timezone.utc)
    workbook = Workbook()

    indent_sheet = workbook.active
    indent_sheet.title = 'Indent Summary'
    _write_header(indent_sheet, INDENT_COLUMNS)
    for row in report.indents:
        indent_sheet.append(
            [
                row.indent_number,
                row.site_name,
                row.site_code,
                row.created_by_name,
                row.status.value,
                row.created_at.date().isoformat() if row.created_at else None,
                _number(row.total_estimated_cost),
                row.order_number or '',
                _number(row.actual_cost),
                row.vendor_name or '',
            ]
        )

    material_sheet = workbook.create_sheet('Material Summary')
    _write_header(material_sheet, MATERIAL_COLUMNS)
    for row in report.materials:
        material_sheet.append(
            [
                row.material_name,
                row.category or '',
                row.unit,
                _number(row.total_quantity),
                _number(row.avg_unit_price),
                _number(row.total_cost),
            ]
        )

    summary_sheet = workbook.create_sheet('Summary')
    _write_header(summary_sheet, (('Metric', 28), ('Value', 24)))
    for label, value in (
        ('Report Period', report.period.label),
        ('Total Indents', report.total_indents),
        ('Completed Indents', report.completed_indents),
        ('Pending Indents', report.pending_indents),
        ('Approved Indents', report.approved_indents),
        ('Total Estimated Cost', _number(report.total_estimated_cost)),
        ('Total Actual Cost', _number(report.total_actual_cost)),
        ('Cost Variance', _number(report.cost_variance)),
        ('Completion Rate (%)', report.completion_rate),
        ('Generated By', generated_by),
        ('Generated At', generated_at.strftime('%Y-%m-%d %H:%M:%S UTC')),
    ):
        summary_sheet.append([label, value])

    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()
