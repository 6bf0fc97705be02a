from __future__ import annotations

import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError

from app.auth import Principal, Role
from app.routers.errors import translate_service_errors
from app.routers.inventory import rebuild_inventory
from app.routers.transactions import create_transfer, reject_transaction_mutation
from app.schemas import RebuildRequest, TransferCreate
from app.services.errors import ConflictError, LedgerIntegrityError

ADMIN = Principal(id=1, username='admin', role=Role.ADMIN, warehouse_id=None, active=True)


def fake_request() -> SimpleNamespace:
    return SimpleNamespace(headers={'x-forwarded-for': '10.0.0.5, 10.0.0.1'}, client=None)


class RebuildRouteTests(unittest.TestCase):
    @patch('app.routers.inventory.log_audit')
    @patch('app.routers.inventory.rebuild_balances')
    def test_rebuild_reports_updated_count(self, rebuild_mock, log_audit_mock) -> None:
        rebuild_mock.return_value = 12
        db = MagicMock()

        result = rebuild_inventory(request=fake_request(), payload=RebuildRequest(warehouse_id=3), principal=ADMIN, db=db)

        self.assertEqual(
            result,
            {
                'success': True,
                'updated_count': 12,
                'message': 'Successfully rebuilt inventory balances. Updated 12 records.',
            },
        )
        rebuild_mock.assert_called_once_with(db, warehouse_id=3)
        self.assertEqual(log_audit_mock.call_args.kwargs['ip'], '10.0.0.5')
        db.commit.assert_called_once()

    @patch('app.routers.inventory.rebuild_balances')
    def test_store_failure_rolls_back_and_returns_500(self, rebuild_mock) -> None:
        rebuild_mock.side_effect = SQLAlchemyError('connection reset')
        db = MagicMock()

        with self.assertLogs('app.routers.errors', level='ERROR'):
            with self.assertRaises(HTTPException) as ctx:
                rebuild_inventory(request=fake_request(), payload=None, principal=ADMIN, db=db)

        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(ctx.exception.detail, 'Failed to rebuild inventory balances')
        db.rollback.assert_called_once()
        db.commit.assert_not_called()


class ServiceErrorTranslationTests(unittest.TestCase):
    def _status_for(self, exc: Exception) -> int:
        db = MagicMock()
        with self.assertRaises(HTTPException) as ctx:
            with translate_service_errors(db, 'Failed'):
                raise exc
        db.rollback.assert_called_once()
        return ctx.exception.status_code

    def test_status_codes(self) -> None:
        self.assertEqual(self._status_for(ValueError('bad input')), 400)
        self.assertEqual(self._status_for(LookupError('missing')), 404)
        self.assertEqual(self._status_for(ConflictError('duplicate')), 409)
        with self.assertLogs('app.routers.errors', level='ERROR'):
            self.assertEqual(self._status_for(LedgerIntegrityError(5, 'batch/lot is required')), 500)

    def test_http_exceptions_pass_through(self) -> None:
        db = MagicMock()
        with self.assertRaises(HTTPException) as ctx:
            with translate_service_errors(db, 'Failed'):
                raise HTTPException(status_code=403)
        self.assertEqual(ctx.exception.status_code, 403)
        db.rollback.assert_not_called()


class TransactionRouteTests(unittest.TestCase):
    def test_put_and_delete_are_not_allowed(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            reject_transaction_mutation(transaction_pk=1, principal=ADMIN)
        self.assertEqual(ctx.exception.status_code, 405)

    @patch('app.routers.transactions.transfer_inventory')
    def test_transfer_commits_both_legs_once(self, transfer_mock) -> None:
        transfer_mock.return_value = (
            SimpleNamespace(transaction_id='FMC-TRA-20240110-001', reference_id='TR-1', cartons_out=30),
            SimpleNamespace(transaction_id='VGL-TRA-20240110-001', reference_id='TR-1', cartons_in=30),
        )
        db = MagicMock()
        payload = TransferCreate(
            to_warehouse_id=2, sku_code='CS-007', batch_lot='101', cartons=30, transaction_date='2024-01-10'
        )

        result = create_transfer(request=fake_request(), payload=payload, principal=ADMIN, db=db)

        self.assertEqual(result['transaction_ids'], ['FMC-TRA-20240110-001', 'VGL-TRA-20240110-001'])
        self.assertEqual(result['reference_id'], 'TR-1')
        self.assertEqual(transfer_mock.call_args.kwargs['ip'], '10.0.0.5')
        db.commit.assert_called_once()

    @patch('app.routers.transactions.transfer_inventory')
    def test_transfer_shortfall_is_a_400(self, transfer_mock) -> None:
        transfer_mock.side_effect = ValueError('Insufficient inventory for SKU CS-007 batch 101 at FMC.')
        db = MagicMock()
        payload = TransferCreate(
            to_warehouse_id=2, sku_code='CS-007', batch_lot='101', cartons=30, transaction_date='2024-01-10'
        )

        with self.assertRaises(HTTPException) as ctx:
            create_transfer(request=fake_request(), payload=payload, principal=ADMIN, db=db)

        self.assertEqual(ctx.exception.status_code, 400)
        db.rollback.assert_called_once()
        db.commit.assert_not_called()


if __name__ == '__main__':
    unittest.main()
