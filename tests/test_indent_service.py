from __future__ import annotations

import unittest
from decimal import Decimal

from indent_portal.errors import AuthorizationError, NotFoundError, SiteIsolationError, StateConflictError, ValidationError
from indent_portal.models import IndentStatus
from indent_portal.services.indent_service import (
    IndentLineInput,
    create_indent,
    decide_indent,
    get_indent_detail,
    list_indents,
)
from indent_portal.services.workflow_rules import ApprovalAction
from support import make_database, ordered_indent, principal_for, seed_directory


class IndentServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.database = make_database()
        self.db = self.database.session()
        self.directory = seed_directory(self.db, password_hash='unused')
        self.engineer = principal_for(self.directory.engineer)
        self.other_engineer = principal_for(self.directory.other_engineer)
        self.purchase = principal_for(self.directory.purchase)
        self.director = principal_for(self.directory.director)

    def tearDown(self) -> None:
        self.db.close()
        self.database.dispose()

    def _create(self, actor=None):
        return create_indent(
            self.db,
            actor=actor or self.engineer,
            items=[
                IndentLineInput(
                    material_id=self.directory.cement.id,
                    quantity=Decimal('100'),
                    specifications={'grade': '53'},
                    estimated_unit_cost=Decimal('350'),
                ),
                IndentLineInput(material_id=self.directory.steel.id, quantity=Decimal('2.5')),
            ],
        )

    def test_create_sets_site_status_and_estimate(self) -> None:
        indent = self._create()
        self.assertEqual(indent.site_id, self.directory.site_a.id)
        self.assertEqual(indent.created_by, self.directory.engineer.id)
        self.assertEqual(IndentStatus(indent.status), IndentStatus.PENDING)
        self.assertEqual(Decimal(indent.total_estimated_cost), Decimal('35000.00'))
        self.assertTrue(indent.indent_number.startswith(f'IND-{self.directory.site_a.id}-'))

        detail = get_indent_detail(self.db, actor=self.engineer, indent_id=indent.id)
        self.assertEqual(len(detail['items']), 2)
        self.assertEqual(detail['items'][0]['specifications'], {'grade': '53'})
        self.assertEqual(detail['items'][1]['specifications'], {})
        self.assertEqual(detail['indent']['created_by_name'], 'Engineer One')

    def test_only_site_engineers_create(self) -> None:
        with self.assertRaises(AuthorizationError):
            self._create(actor=self.purchase)

    def test_unknown_material_is_rejected(self) -> None:
        with self.assertRaises(NotFoundError):
            create_indent(
                self.db,
                actor=self.engineer,
                items=[IndentLineInput(material_id=9999, quantity=Decimal('1'))],
            )

    def test_empty_or_non_positive_items_fail_validation(self) -> None:
        with self.assertRaises(ValidationError):
            create_indent(self.db, actor=self.engineer, items=[])
        with self.assertRaises(ValidationError) as ctx:
            create_indent(
                self.db,
                actor=self.engineer,
                items=[IndentLineInput(material_id=self.directory.cement.id, quantity=Decimal('0'))],
            )
        self.assertIn('items.0.quantity must be greater than 0', ctx.exception.details)

    def test_values_finer_than_storage_fail_validation(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            create_indent(
                self.db,
                actor=self.engineer,
                items=[
                    IndentLineInput(
                        material_id=self.directory.cement.id,
                        quantity=Decimal('0.0004'),
                        estimated_unit_cost=Decimal('0.001'),
                    )
                ],
            )
        self.assertEqual(
            ctx.exception.details,
            [
                'items.0.quantity must have at most 3 decimal places',
                'items.0.estimated_unit_cost must have at most 2 decimal places',
            ],
        )

    def test_estimate_keeps_fractional_cents(self) -> None:
        indent = create_indent(
            self.db,
            actor=self.engineer,
            items=[
                IndentLineInput(
                    material_id=self.directory.cement.id,
                    quantity=Decimal('1.5'),
                    estimated_unit_cost=Decimal('0.33'),
                )
            ],
        )
        self.db.commit()
        self.db.expire_all()
        detail = get_indent_detail(self.db, actor=self.engineer, indent_id=indent.id)
        self.assertEqual(Decimal(detail['items'][0]['estimated_total_cost']), Decimal('0.495'))
        self.assertEqual(Decimal(detail['indent']['total_estimated_cost']), Decimal('0.495'))

    def test_two_stage_approval_records_approvers(self) -> None:
        indent = self._create()
        decide_indent(self.db, actor=self.purchase, indent_id=indent.id, action=ApprovalAction.APPROVE)
        self.assertEqual(IndentStatus(indent.status), IndentStatus.PURCHASE_APPROVED)
        self.assertEqual(indent.purchase_approved_by, self.purchase.id)
        self.assertIsNotNone(indent.purchase_approved_at)

        decide_indent(self.db, actor=self.director, indent_id=indent.id, action=ApprovalAction.APPROVE)
        self.assertEqual(IndentStatus(indent.status), IndentStatus.DIRECTOR_APPROVED)
        self.assertEqual(indent.director_approved_by, self.director.id)

    def test_director_cannot_approve_pending(self) -> None:
        indent = self._create()
        with self.assertRaises(StateConflictError) as ctx:
            decide_indent(self.db, actor=self.director, indent_id=indent.id, action=ApprovalAction.APPROVE)
        self.assertEqual(ctx.exception.message, 'Invalid approval workflow state')
        self.assertEqual(IndentStatus(indent.status), IndentStatus.PENDING)

    def test_reject_needs_reason_and_stores_it(self) -> None:
        indent = self._create()
        with self.assertRaises(ValidationError):
            decide_indent(self.db, actor=self.purchase, indent_id=indent.id, action=ApprovalAction.REJECT)
        decide_indent(
            self.db,
            actor=self.purchase,
            indent_id=indent.id,
            action=ApprovalAction.REJECT,
            rejection_reason='  Over budget ',
        )
        self.assertEqual(IndentStatus(indent.status), IndentStatus.REJECTED)
        self.assertEqual(indent.rejection_reason, 'Over budget')
        with self.assertRaises(StateConflictError):
            decide_indent(self.db, actor=self.purchase, indent_id=indent.id, action=ApprovalAction.APPROVE)

    def test_ordered_indent_cannot_be_rejected(self) -> None:
        indent, _ = ordered_indent(self.db, self.directory)
        with self.assertRaises(StateConflictError):
            decide_indent(
                self.db,
                actor=self.director,
                indent_id=indent.id,
                action=ApprovalAction.REJECT,
                rejection_reason='Changed plans',
            )

    def test_engineer_cannot_read_other_site(self) -> None:
        indent = self._create()
        with self.assertRaises(SiteIsolationError):
            get_indent_detail(self.db, actor=self.other_engineer, indent_id=indent.id)

    def test_missing_indent_is_hidden_from_engineers(self) -> None:
        with self.assertRaises(SiteIsolationError):
            get_indent_detail(self.db, actor=self.engineer, indent_id=4242)
        with self.assertRaises(NotFoundError):
            get_indent_detail(self.db, actor=self.director, indent_id=4242)

    def test_list_is_site_filtered_for_engineers(self) -> None:
        self._create()
        self._create(actor=self.other_engineer)
        self.assertEqual(len(list_indents(self.db, actor=self.engineer)), 1)
        self.assertEqual(len(list_indents(self.db, actor=self.other_engineer)), 1)
        self.assertEqual(len(list_indents(self.db, actor=self.director)), 2)
        self.assertEqual(len(list_indents(self.db, actor=self.director, status=IndentStatus.REJECTED)), 0)
        self.assertEqual(len(list_indents(self.db, actor=self.director, limit=1)), 1)


if __name__ == '__main__':
    unittest.main()
