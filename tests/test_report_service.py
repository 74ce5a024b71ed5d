from __future__ import annotations

import unittest
from datetime import datetime, timezone
from decimal import Decimal
from io import BytesIO

from openpyxl import load_workbook

from indent_portal.errors import AuthorizationError, ValidationError
from indent_portal.models import IndentStatus
from indent_portal.services.dashboard_service import dashboard_stats
from indent_portal.services.indent_service import IndentLineInput, create_indent
from indent_portal.services.report_service import build_monthly_report, report_payload, resolve_period
from indent_portal.services.report_workbook import build_monthly_workbook, report_filename
from support import make_database, ordered_indent, principal_for, seed_directory


class ReportPeriodTests(unittest.TestCase):
    def test_december_rolls_into_next_year(self) -> None:
        period = resolve_period(2024, 12)
        self.assertEqual(period.start, datetime(2024, 12, 1, tzinfo=timezone.utc))
        self.assertEqual(period.end, datetime(2025, 1, 1, tzinfo=timezone.utc))

    def test_out_of_range_values_are_rejected(self) -> None:
        for year, month in ((2019, 5), (2101, 1), (2024, 0), (2024, 13)):
            with self.assertRaises(ValidationError):
                resolve_period(year, month)


class MonthlyReportTests(unittest.TestCase):
    def setUp(self) -> None:
        self.database = make_database()
        self.db = self.database.session()
        self.directory = seed_directory(self.db, password_hash='unused')
        self.engineer = principal_for(self.directory.engineer)
        self.director = principal_for(self.directory.director)
        now = datetime.now(tz=timezone.utc)
        self.year, self.month = now.year, now.month

    def tearDown(self) -> None:
        self.db.close()
        self.database.dispose()

    def _populate(self) -> None:
        indent, _ = ordered_indent(self.db, self.directory, quantity=Decimal('100'))
        indent.status = IndentStatus.COMPLETED
        create_indent(
            self.db,
            actor=self.engineer,
            items=[
                IndentLineInput(
                    material_id=self.directory.cement.id,
                    quantity=Decimal('10'),
                    estimated_unit_cost=Decimal('350'),
                )
            ],
        )
        self.db.flush()

    def test_empty_month(self) -> None:
        report = build_monthly_report(self.db, actor=self.director, year=self.year, month=self.month)
        payload = report_payload(report)
        self.assertEqual(payload['stats']['total_indents'], 0)
        self.assertEqual(payload['stats']['completion_rate'], '0')
        self.assertEqual(payload['stats']['total_estimated_cost'], Decimal('0'))
        self.assertEqual(payload['status_breakdown'], [])
        self.assertEqual(payload['top_materials'], [])

    def test_stats_and_material_totals(self) -> None:
        self._populate()
        report = build_monthly_report(self.db, actor=self.director, year=self.year, month=self.month)
        self.assertEqual(report.total_indents, 2)
        self.assertEqual(report.completed_indents, 1)
        self.assertEqual(report.pending_indents, 1)
        self.assertEqual(report.completion_rate, '50.0')
        self.assertEqual(report.total_estimated_cost, Decimal('38500.00'))
        self.assertEqual(report.total_actual_cost, Decimal('36000.00'))
        self.assertEqual(report.cost_variance, Decimal('-2500.00'))

        cement = report.materials[0]
        self.assertEqual(cement.material_name, 'Portland Cement')
        self.assertEqual(cement.total_quantity, Decimal('110'))
        self.assertEqual(cement.avg_unit_price, Decimal('360.00'))
        self.assertEqual(cement.total_cost, Decimal('36000.00'))
        self.assertEqual([row.material_name for row in report.top_materials], ['Portland Cement'])

        statuses = {row.status: row.count for row in report.status_breakdown}
        self.assertEqual(statuses, {IndentStatus.PENDING: 1, IndentStatus.COMPLETED: 1})

    def test_site_filter(self) -> None:
        self._populate()
        report = build_monthly_report(
            self.db, actor=self.director, year=self.year, month=self.month, site_id=self.directory.site_b.id
        )
        self.assertEqual(report.total_indents, 0)

    def test_engineers_cannot_run_reports(self) -> None:
        with self.assertRaises(AuthorizationError):
            build_monthly_report(self.db, actor=self.engineer, year=self.year, month=self.month)

    def test_workbook_has_three_styled_sheets(self) -> None:
        self._populate()
        report = build_monthly_report(self.db, actor=self.director, year=self.year, month=self.month)
        workbook = load_workbook(BytesIO(build_monthly_workbook(report, generated_by='Project Director')))
        self.assertEqual(workbook.sheetnames, ['Indent Summary', 'Material Summary', 'Summary'])

        indent_sheet = workbook['Indent Summary']
        self.assertEqual(indent_sheet['A1'].value, 'Indent Number')
        self.assertTrue(indent_sheet['A1'].font.bold)
        self.assertEqual(indent_sheet['A1'].fill.start_color.rgb, 'FFE0E0E0')
        self.assertEqual(indent_sheet.max_row, 3)

        summary = {row[0]: row[1] for row in workbook['Summary'].iter_rows(min_row=2, values_only=True)}
        self.assertEqual(summary['Total Indents'], 2)
        self.assertEqual(summary['Completion Rate (%)'], '50.0')
        self.assertEqual(summary['Generated By'], 'Project Director')
        self.assertEqual(report_filename(report), f'Monthly_Report_{self.year}_{self.month:02d}.xlsx')


class DashboardTests(unittest.TestCase):
    def setUp(self) -> None:
        self.database = make_database()
        self.db = self.database.session()
        self.directory = seed_directory(self.db, password_hash='unused')

    def tearDown(self) -> None:
        self.db.close()
        self.database.dispose()

    def test_counts_are_site_filtered_for_engineers(self) -> None:
        ordered_indent(self.db, self.directory)
        create_indent(
            self.db,
            actor=principal_for(self.directory.other_engineer),
            items=[IndentLineInput(material_id=self.directory.steel.id, quantity=Decimal('1'))],
        )

        mine = dashboard_stats(self.db, actor=principal_for(self.directory.engineer))
        self.assertEqual(mine['stats']['total_indents'], 1)
        self.assertEqual(mine['stats']['director_approved_indents'], 1)
        self.assertEqual(len(mine['recent_indents']), 1)

        everything = dashboard_stats(self.db, actor=principal_for(self.directory.director))
        self.assertEqual(everything['stats']['total_indents'], 2)
        self.assertEqual(everything['stats']['pending_indents'], 1)
        self.assertEqual(everything['recent_indents'][0]['site_name'], 'Riverside Residences')


if __name__ == '__main__':
    unittest.main()
