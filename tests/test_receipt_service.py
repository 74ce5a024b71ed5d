from __future__ import annotations

import tempfile
import unittest
from decimal import Decimal
from pathlib import Path
from unittest.mock import patch

from sqlalchemy import select

from indent_portal.errors import AuthorizationError, NotFoundError, SiteIsolationError, ValidationError
from indent_portal.models import IndentStatus, OrderItem, OrderStatus
from indent_portal.services.evidence_store import EvidenceImage, EvidenceStore
from indent_portal.services.receipt_service import (
    ReceiptInput,
    ReceiptLineInput,
    create_receipt,
    get_receipt_detail,
    list_receipts,
    resolve_receipt_image,
)
from support import future_date, make_database, ordered_indent, past_date, principal_for, seed_directory

PNG_BYTES = b'\x89PNG\r\n\x1a\n' + b'\x00' * 32


class ReceiptServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.database = make_database()
        self.db = self.database.session()
        self.directory = seed_directory(self.db, password_hash='unused')
        self.engineer = principal_for(self.directory.engineer)
        self.other_engineer = principal_for(self.directory.other_engineer)
        self.purchase = principal_for(self.directory.purchase)
        self.indent, self.order = ordered_indent(self.db, self.directory, quantity=Decimal('100'))
        self.order_item_id = self.db.execute(
            select(OrderItem.id).where(OrderItem.order_id == self.order.id)
        ).scalar_one()
        self.tmp = tempfile.TemporaryDirectory()
        self.store = EvidenceStore(self.tmp.name, max_bytes=5 * 1024 * 1024, max_files=10)

    def tearDown(self) -> None:
        self.db.close()
        self.database.dispose()
        self.tmp.cleanup()

    def _receipt(self, *lines: ReceiptLineInput, images=(), received_date=None) -> ReceiptInput:
        return ReceiptInput(
            order_id=self.order.id,
            received_date=received_date or past_date(),
            items=list(lines),
            delivery_challan_number='DC-1001',
            images=list(images),
        )

    def _line(self, received: str, damaged: str = '0', returned: str = '0', order_item_id: int | None = None):
        return ReceiptLineInput(
            order_item_id=order_item_id or self.order_item_id,
            received_quantity=Decimal(received),
            damaged_quantity=Decimal(damaged),
            returned_quantity=Decimal(returned),
        )

    def _stored_files(self) -> list[Path]:
        receipts_dir = Path(self.tmp.name) / 'receipts'
        return sorted(receipts_dir.iterdir()) if receipts_dir.exists() else []

    def test_full_delivery_with_damage_completes_order_and_indent(self) -> None:
        result = create_receipt(
            self.db,
            actor=self.engineer,
            data=self._receipt(self._line('95', damaged='3', returned='2')),
            store=self.store,
        )
        self.assertEqual(result.order_status, OrderStatus.COMPLETED)
        self.assertTrue(result.indent_completed)
        self.assertEqual(IndentStatus(self.indent.status), IndentStatus.COMPLETED)
        self.assertTrue(result.receipt.receipt_number.startswith(f'REC-{self.order.id}-'))

    def test_partial_deliveries_accumulate(self) -> None:
        first = create_receipt(self.db, actor=self.engineer, data=self._receipt(self._line('40')), store=self.store)
        self.assertEqual(first.order_status, OrderStatus.PARTIALLY_RECEIVED)
        self.assertEqual(IndentStatus(self.indent.status), IndentStatus.DIRECTOR_APPROVED)

        second = create_receipt(self.db, actor=self.engineer, data=self._receipt(self._line('60')), store=self.store)
        self.assertEqual(second.order_status, OrderStatus.COMPLETED)
        self.assertEqual(IndentStatus(self.indent.status), IndentStatus.COMPLETED)
        self.assertEqual(len(list_receipts(self.db, actor=self.engineer, order_id=self.order.id)), 2)

    def test_per_receipt_mode_only_counts_current_delivery(self) -> None:
        create_receipt(
            self.db, actor=self.engineer, data=self._receipt(self._line('40')), store=self.store, cumulative=False
        )
        second = create_receipt(
            self.db, actor=self.engineer, data=self._receipt(self._line('60')), store=self.store, cumulative=False
        )
        self.assertEqual(second.order_status, OrderStatus.PARTIALLY_RECEIVED)

    def test_completed_order_does_not_regress(self) -> None:
        create_receipt(self.db, actor=self.engineer, data=self._receipt(self._line('100')), store=self.store)
        later = create_receipt(
            self.db, actor=self.engineer, data=self._receipt(self._line('1')), store=self.store, cumulative=False
        )
        self.assertEqual(later.order_status, OrderStatus.COMPLETED)

    def test_rejects_items_from_another_order(self) -> None:
        with self.assertRaises(ValidationError):
            create_receipt(
                self.db,
                actor=self.engineer,
                data=self._receipt(self._line('1', order_item_id=self.order_item_id + 100)),
                store=self.store,
            )

    def test_rejects_duplicate_lines_and_future_dates(self) -> None:
        with self.assertRaises(ValidationError):
            create_receipt(
                self.db,
                actor=self.engineer,
                data=self._receipt(self._line('10'), self._line('5')),
                store=self.store,
            )
        with self.assertRaises(ValidationError) as ctx:
            create_receipt(
                self.db,
                actor=self.engineer,
                data=self._receipt(self._line('10'), received_date=future_date(2)),
                store=self.store,
            )
        self.assertIn('received_date cannot be in the future', ctx.exception.details)

    def test_quantities_finer_than_storage_are_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            create_receipt(
                self.db,
                actor=self.engineer,
                data=self._receipt(self._line('0.0004', damaged='0.0001')),
                store=self.store,
            )
        self.assertEqual(
            ctx.exception.details,
            [
                'items.0.received_quantity must have at most 3 decimal places',
                'items.0.damaged_quantity must have at most 3 decimal places',
            ],
        )
        with self.assertRaises(ValidationError):
            ordered_indent(self.db, self.directory, quantity=Decimal('0.0004'))
        self.assertEqual(OrderStatus(self.order.status), OrderStatus.PENDING)

    def test_only_the_owning_site_engineer_records_receipts(self) -> None:
        with self.assertRaises(SiteIsolationError):
            create_receipt(self.db, actor=self.other_engineer, data=self._receipt(self._line('10')), store=self.store)
        with self.assertRaises(AuthorizationError):
            create_receipt(self.db, actor=self.purchase, data=self._receipt(self._line('10')), store=self.store)

    def test_images_are_stored_and_listed(self) -> None:
        image = EvidenceImage(
            filename='delivery.png',
            content_type='image/png',
            content=PNG_BYTES,
            image_type='delivery',
            description='Truck at gate',
        )
        result = create_receipt(
            self.db, actor=self.engineer, data=self._receipt(self._line('10'), images=[image]), store=self.store
        )
        files = self._stored_files()
        self.assertEqual(len(files), 1)
        self.assertTrue(files[0].name.startswith('receipt-'))
        self.assertEqual(files[0].suffix, '.png')

        detail = get_receipt_detail(self.db, actor=self.engineer, receipt_id=result.receipt.id)
        self.assertEqual(detail['images'][0]['image_type'], 'delivery')
        self.assertEqual(detail['images'][0]['description'], 'Truck at gate')
        self.assertEqual(Decimal(detail['items'][0]['ordered_quantity']), Decimal('100'))
        self.assertEqual(detail['receipt']['received_by_name'], 'Engineer One')
        self.assertEqual(detail['images'][0]['image_path'], f'/uploads/{files[0].name}')

    def test_photos_are_served_only_within_the_receipt_site(self) -> None:
        image = EvidenceImage(filename='delivery.png', content_type='image/png', content=PNG_BYTES)
        create_receipt(
            self.db, actor=self.engineer, data=self._receipt(self._line('10'), images=[image]), store=self.store
        )
        name = self._stored_files()[0].name

        for actor in (self.engineer, self.purchase):
            path = resolve_receipt_image(self.db, actor=actor, store=self.store, filename=name)
            self.assertEqual(path.read_bytes(), PNG_BYTES)
        with self.assertRaises(SiteIsolationError):
            resolve_receipt_image(self.db, actor=self.other_engineer, store=self.store, filename=name)
        with self.assertRaises(NotFoundError):
            resolve_receipt_image(self.db, actor=self.purchase, store=self.store, filename='receipt-0-0.png')

    def test_non_image_upload_is_rejected_before_writing(self) -> None:
        document = EvidenceImage(filename='invoice.pdf', content_type='application/pdf', content=b'%PDF')
        with self.assertRaises(ValidationError) as ctx:
            create_receipt(
                self.db, actor=self.engineer, data=self._receipt(self._line('10'), images=[document]), store=self.store
            )
        self.assertEqual(ctx.exception.message, 'Only image files are allowed.')
        self.assertEqual(self._stored_files(), [])

    def test_saved_images_are_removed_when_receipt_fails(self) -> None:
        image = EvidenceImage(filename='delivery.jpg', content_type='image/jpeg', content=PNG_BYTES)
        with patch('indent_portal.services.receipt_service.advance_order_status', side_effect=RuntimeError('boom')):
            with self.assertRaises(RuntimeError):
                create_receipt(
                    self.db, actor=self.engineer, data=self._receipt(self._line('10'), images=[image]), store=self.store
                )
        self.assertEqual(self._stored_files(), [])

    def test_engineer_cannot_read_other_site_receipt(self) -> None:
        result = create_receipt(self.db, actor=self.engineer, data=self._receipt(self._line('10')), store=self.store)
        with self.assertRaises(SiteIsolationError):
            get_receipt_detail(self.db, actor=self.other_engineer, receipt_id=result.receipt.id)
        self.assertEqual(list_receipts(self.db, actor=self.other_engineer), [])


class EvidenceStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.store = EvidenceStore(self.tmp.name, max_bytes=16, max_files=2)

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def test_limits(self) -> None:
        small = EvidenceImage(filename='a.png', content_type='image/png', content=b'x')
        with self.assertRaises(ValidationError) as ctx:
            self.store.validate([small, small, small])
        self.assertEqual(ctx.exception.message, 'Too many files. Maximum is 2 files.')
        with self.assertRaises(ValidationError):
            self.store.validate([EvidenceImage(filename='b.png', content_type='image/png', content=b'x' * 17)])

    def test_resolve_rejects_traversal_and_unservable_types(self) -> None:
        with self.assertRaises(NotFoundError):
            self.store.resolve('../secret.png')
        with self.assertRaises(AuthorizationError):
            self.store.resolve('notes.txt')
        with self.assertRaises(NotFoundError):
            self.store.resolve('missing.png')
        stored = self.store.save_all([EvidenceImage(filename='c.png', content_type='image/png', content=b'x')])
        self.assertEqual(stored[0].url, f'/uploads/{stored[0].name}')
        self.assertEqual(self.store.resolve(stored[0].name), Path(self.tmp.name) / 'receipts' / stored[0].name)
        self.store.discard([stored[0].name])
        with self.assertRaises(NotFoundError):
            self.store.resolve(stored[0].name)


if __name__ == '__main__':
    unittest.main()
