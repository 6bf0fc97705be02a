from __future__ import annotations

import unittest
from datetime import date
from types import SimpleNamespace
from unittest.mock import patch

from fastapi import HTTPException
from sqlalchemy import select

from app.auth import Principal, Role
from app.dependencies import PageParams
from app.models import (
    DiscrepancySeverity,
    InventoryBalance,
    ReconciliationReport,
    ReconciliationStatus,
    TransactionType,
)
from app.routers.reconciliation import reconciliation_reports, run_reconciliation
from app.services.balance_rebuild_service import rebuild_balances
from app.services.errors import ConflictError
from app.services.reconciliation_service import (
    find_discrepancies,
    get_report,
    list_discrepancies,
    list_recent_reports,
    run_inventory_reconciliation,
    severity_for,
)
from ledger_db import add_sku, add_txn, add_warehouse, make_session

ADMIN = Principal(id=1, username='admin', role=Role.ADMIN, warehouse_id=None, active=True)


def fake_request() -> SimpleNamespace:
    return SimpleNamespace(headers={}, client=None)


class SeverityTests(unittest.TestCase):
    def test_thresholds(self) -> None:
        self.assertEqual(severity_for(101), DiscrepancySeverity.CRITICAL)
        self.assertEqual(severity_for(100), DiscrepancySeverity.HIGH)
        self.assertEqual(severity_for(51), DiscrepancySeverity.HIGH)
        self.assertEqual(severity_for(50), DiscrepancySeverity.MEDIUM)
        self.assertEqual(severity_for(11), DiscrepancySeverity.MEDIUM)
        self.assertEqual(severity_for(10), DiscrepancySeverity.LOW)
        self.assertEqual(severity_for(-150), DiscrepancySeverity.CRITICAL)


class ReconciliationServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.warehouse = add_warehouse(self.db, 'FMC')
        self.sku = add_sku(self.db, 'CS-007')

    def tearDown(self) -> None:
        self.db.close()

    def _cached(self, batch_lot: str = 'B1') -> InventoryBalance:
        return self.db.execute(
            select(InventoryBalance).where(InventoryBalance.batch_lot == batch_lot)
        ).scalar_one()

    def test_fresh_rebuild_has_no_discrepancies(self) -> None:
        add_txn(self.db, self.warehouse, self.sku, TransactionType.RECEIVE, date(2024, 1, 2), 100)
        rebuild_balances(self.db)
        total_keys, discrepancies = find_discrepancies(self.db)
        self.assertEqual(total_keys, 1)
        self.assertEqual(discrepancies, [])

    def test_drifted_cache_is_reported_with_severity(self) -> None:
        add_txn(self.db, self.warehouse, self.sku, TransactionType.RECEIVE, date(2024, 1, 2), 100)
        rebuild_balances(self.db)
        self._cached().current_cartons = 40
        self.db.flush()

        _, discrepancies = find_discrepancies(self.db)
        self.assertEqual(len(discrepancies), 1)
        found = discrepancies[0]
        self.assertEqual(found['recorded_balance'], 40)
        self.assertEqual(found['calculated_balance'], 100)
        self.assertEqual(found['difference'], 60)
        self.assertEqual(found['severity'], DiscrepancySeverity.HIGH)
        self.assertEqual(found['details']['transaction_history'][0]['cartons'], 100)
        self.assertFalse(found['details']['missing_from_cache'])

    def test_negative_ledger_balance_is_reported_even_when_cached(self) -> None:
        add_txn(self.db, self.warehouse, self.sku, TransactionType.SHIP, date(2024, 1, 2), 20)
        rebuild_balances(self.db)
        _, discrepancies = find_discrepancies(self.db)
        self.assertEqual(len(discrepancies), 1)
        self.assertEqual(discrepancies[0]['difference'], 0)
        self.assertTrue(discrepancies[0]['details']['negative_balance'])
        self.assertEqual(discrepancies[0]['severity'], DiscrepancySeverity.MEDIUM)

    def test_missing_cache_row_is_reported(self) -> None:
        add_txn(self.db, self.warehouse, self.sku, TransactionType.RECEIVE, date(2024, 1, 2), 5)
        _, discrepancies = find_discrepancies(self.db)
        self.assertTrue(discrepancies[0]['details']['missing_from_cache'])
        self.assertEqual(discrepancies[0]['recorded_balance'], 0)

    def test_run_persists_completed_report(self) -> None:
        add_txn(self.db, self.warehouse, self.sku, TransactionType.RECEIVE, date(2024, 1, 2), 300)
        rebuild_balances(self.db)
        self._cached().current_cartons = 100
        self.db.flush()

        report = run_inventory_reconciliation(self.db, principal_id=1)
        self.assertEqual(report.status, ReconciliationStatus.COMPLETED)
        self.assertEqual(report.total_discrepancies, 1)
        self.assertEqual(report.critical_discrepancies, 1)
        self.assertEqual(report.summary['discrepancies_by_warehouse'], {'FMC Warehouse': 1})
        self.assertIsNotNone(report.completed_at)

        detail = get_report(self.db, report_id=report.id)
        self.assertEqual(detail['discrepancies'][0]['sku_code'], 'CS-007')
        self.assertEqual(detail['discrepancies'][0]['severity'], 'CRITICAL')

        listed = list_discrepancies(self.db, severity=DiscrepancySeverity.CRITICAL)
        self.assertEqual(listed['pagination']['total'], 1)
        self.assertEqual(listed['summary']['by_severity'], {'CRITICAL': 1})

    def test_only_one_run_at_a_time(self) -> None:
        self.db.add(ReconciliationReport(status=ReconciliationStatus.IN_PROGRESS, summary={}))
        self.db.flush()
        with self.assertRaises(ConflictError):
            run_inventory_reconciliation(self.db, principal_id=1)

    def test_unknown_report_raises_lookup_error(self) -> None:
        with self.assertRaises(LookupError):
            get_report(self.db, report_id=404)

    def test_in_progress_report_is_committed_before_scan(self) -> None:
        seen = []

        def scan(db, *, warehouse_id=None):
            db.rollback()
            seen.append(db.execute(select(ReconciliationReport.status)).scalar_one())
            return 0, []

        with patch('app.services.reconciliation_service.find_discrepancies', side_effect=scan):
            report = run_inventory_reconciliation(self.db, principal_id=1)

        self.assertEqual(seen, [ReconciliationStatus.IN_PROGRESS])
        self.assertEqual(report.status, ReconciliationStatus.COMPLETED)

    def test_failed_run_through_route_keeps_failed_report(self) -> None:
        add_txn(self.db, self.warehouse, self.sku, TransactionType.RECEIVE, date(2024, 1, 2), 5, batch_lot='  ')
        self.db.commit()

        with self.assertLogs('app', level='ERROR'):
            with self.assertRaises(HTTPException) as ctx:
                run_reconciliation(request=fake_request(), payload=None, principal=ADMIN, db=self.db)
        self.assertEqual(ctx.exception.status_code, 500)

        # Anything uncommitted is gone after this; the FAILED report must survive.
        self.db.rollback()
        reports = self.db.execute(select(ReconciliationReport)).scalars().all()
        self.assertEqual(len(reports), 1)
        self.assertEqual(reports[0].status, ReconciliationStatus.FAILED)
        self.assertIn('batch/lot is required', reports[0].error_message)
        self.assertIsNotNone(reports[0].completed_at)

    def test_report_detail_is_paginated(self) -> None:
        for batch_lot in ('B1', 'B2', 'B3'):
            add_txn(self.db, self.warehouse, self.sku, TransactionType.RECEIVE, date(2024, 1, 2), 5, batch_lot=batch_lot)
        report = run_inventory_reconciliation(self.db, principal_id=1)

        first = get_report(self.db, report_id=report.id, limit=2)
        self.assertEqual(len(first['discrepancies']), 2)
        self.assertEqual(first['pagination'], {'total': 3, 'limit': 2, 'offset': 0, 'has_next': True})

        rest = get_report(self.db, report_id=report.id, limit=2, offset=2)
        self.assertEqual(len(rest['discrepancies']), 1)
        self.assertFalse(rest['pagination']['has_next'])


class ReportScopeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.fmc = add_warehouse(self.db, 'FMC')
        self.vgl = add_warehouse(self.db, 'VGL')
        sku = add_sku(self.db, 'CS-007')
        add_txn(self.db, self.fmc, sku, TransactionType.RECEIVE, date(2024, 1, 2), 20)
        add_txn(self.db, self.vgl, sku, TransactionType.RECEIVE, date(2024, 1, 2), 500)
        self.report = run_inventory_reconciliation(self.db, principal_id=1)
        self.staff = Principal(id=2, username='staff', role=Role.STAFF, warehouse_id=self.fmc.id, active=True)
        self.page = PageParams(page=1, limit=50)

    def tearDown(self) -> None:
        self.db.close()

    def _read(self, principal: Principal, report_id: int | None, warehouse_id: int | None = None) -> dict:
        return reconciliation_reports(
            report_id=report_id, warehouse_id=warehouse_id, principal=principal, page=self.page, db=self.db
        )

    def test_staff_only_see_their_warehouse_rows(self) -> None:
        detail = self._read(self.staff, self.report.id, warehouse_id=self.vgl.id)
        self.assertEqual({row['warehouse_code'] for row in detail['discrepancies']}, {'FMC'})
        self.assertEqual(detail['total_discrepancies'], 1)
        self.assertEqual(detail['critical_discrepancies'], 0)
        self.assertNotIn('discrepancies_by_warehouse', detail['summary'])

        full = self._read(ADMIN, self.report.id)
        self.assertEqual({row['warehouse_code'] for row in full['discrepancies']}, {'FMC', 'VGL'})
        self.assertEqual(full['critical_discrepancies'], 1)

    def test_admin_can_filter_by_warehouse(self) -> None:
        detail = self._read(ADMIN, self.report.id, warehouse_id=self.vgl.id)
        self.assertEqual([row['warehouse_code'] for row in detail['discrepancies']], ['VGL'])

    def test_other_warehouse_reports_are_hidden_from_staff(self) -> None:
        vgl_report = run_inventory_reconciliation(self.db, principal_id=1, warehouse_id=self.vgl.id)

        with self.assertRaises(HTTPException) as ctx:
            self._read(self.staff, vgl_report.id)
        self.assertEqual(ctx.exception.status_code, 404)

        listed = self._read(self.staff, None)['reports']
        self.assertEqual([report['id'] for report in listed], [self.report.id])
        self.assertEqual(
            sorted(report['id'] for report in list_recent_reports(self.db)),
            sorted([self.report.id, vgl_report.id]),
        )


if __name__ == '__main__':
    unittest.main()
