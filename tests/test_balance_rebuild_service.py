from __future__ import annotations

import unittest
from datetime import date
from unittest.mock import patch

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.models import InventoryBalance, TransactionType
from app.services import balance_rebuild_service
from app.services.balance_rebuild_service import rebuild_balances
from app.services.ledger_service import current_cartons_for_key, list_cached_balances, load_ledger_entries
from ledger_db import add_pallet_config, add_sku, add_txn, add_warehouse, make_session


class BalanceRebuildServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.warehouse = add_warehouse(self.db, 'FMC')
        self.other_warehouse = add_warehouse(self.db, 'VGL')
        self.sku = add_sku(self.db, 'CS-007', units_per_carton=10)

    def tearDown(self) -> None:
        self.db.close()

    def test_empty_ledger_rebuilds_zero_rows(self) -> None:
        self.assertEqual(rebuild_balances(self.db), 0)
        self.assertEqual(list_cached_balances(self.db), [])

    def test_rebuild_writes_one_row_per_key(self) -> None:
        add_txn(self.db, self.warehouse, self.sku, TransactionType.RECEIVE, date(2024, 1, 2), 100)
        add_txn(self.db, self.warehouse, self.sku, TransactionType.SHIP, date(2024, 1, 3), 40)
        add_txn(self.db, self.warehouse, self.sku, TransactionType.RECEIVE, date(2024, 1, 3), 5, batch_lot='B2')

        self.assertEqual(rebuild_balances(self.db), 2)
        cached = list_cached_balances(self.db)
        self.assertEqual([(row['batch_lot'], row['current_cartons'], row['current_units']) for row in cached], [
            ('B1', 60, 600),
            ('B2', 5, 50),
        ])
        self.assertEqual(cached[0]['first_receive_date'], date(2024, 1, 2))
        self.assertEqual(cached[0]['last_transaction_date'], date(2024, 1, 3))

    def test_rebuild_is_idempotent_and_keeps_row_ids(self) -> None:
        add_txn(self.db, self.warehouse, self.sku, TransactionType.RECEIVE, date(2024, 1, 2), 30)
        add_txn(self.db, self.other_warehouse, self.sku, TransactionType.SHIP, date(2024, 1, 2), 4)

        first_count = rebuild_balances(self.db)
        first = list_cached_balances(self.db)
        second_count = rebuild_balances(self.db)
        second = list_cached_balances(self.db)

        self.assertEqual(first_count, second_count)
        self.assertEqual(first, second)

    def test_negative_balances_are_cached(self) -> None:
        add_txn(self.db, self.warehouse, self.sku, TransactionType.SHIP, date(2024, 1, 2), 20)
        rebuild_balances(self.db)
        cached = list_cached_balances(self.db)
        self.assertEqual(cached[0]['current_cartons'], -20)
        self.assertEqual(cached[0]['current_pallets'], 0)

    def test_stale_cache_rows_are_removed(self) -> None:
        add_txn(self.db, self.warehouse, self.sku, TransactionType.RECEIVE, date(2024, 1, 2), 10)
        self.db.add(
            InventoryBalance(
                warehouse_id=self.warehouse.id,
                sku_id=self.sku.id,
                batch_lot='GONE',
                current_cartons=99,
                current_units=990,
                current_pallets=1,
            )
        )
        self.db.flush()

        self.assertEqual(rebuild_balances(self.db), 1)
        lots = self.db.execute(select(InventoryBalance.batch_lot)).scalars().all()
        self.assertEqual(lots, ['B1'])

    def test_warehouse_scoped_rebuild_leaves_other_warehouses(self) -> None:
        add_txn(self.db, self.warehouse, self.sku, TransactionType.RECEIVE, date(2024, 1, 2), 10)
        add_txn(self.db, self.other_warehouse, self.sku, TransactionType.RECEIVE, date(2024, 1, 2), 7)
        rebuild_balances(self.db)

        add_txn(self.db, self.other_warehouse, self.sku, TransactionType.RECEIVE, date(2024, 1, 3), 3)
        self.assertEqual(rebuild_balances(self.db, warehouse_id=self.warehouse.id), 1)

        cached = {row['warehouse_code']: row['current_cartons'] for row in list_cached_balances(self.db)}
        self.assertEqual(cached, {'FMC': 10, 'VGL': 7})

    def test_pallets_use_warehouse_config_when_ledger_has_none(self) -> None:
        add_pallet_config(self.db, self.warehouse, self.sku, storage=48, shipping=40)
        add_txn(self.db, self.warehouse, self.sku, TransactionType.RECEIVE, date(2024, 1, 2), 97)
        rebuild_balances(self.db)
        cached = list_cached_balances(self.db)[0]
        self.assertEqual(cached['current_pallets'], 3)
        self.assertEqual(cached['storage_cartons_per_pallet'], 48)

    def test_failed_rebuild_leaves_committed_cache_untouched(self) -> None:
        add_txn(self.db, self.warehouse, self.sku, TransactionType.RECEIVE, date(2024, 1, 2), 100)
        add_txn(self.db, self.warehouse, self.sku, TransactionType.RECEIVE, date(2024, 1, 2), 5, batch_lot='B2')
        rebuild_balances(self.db)
        self.db.commit()
        snapshot = list_cached_balances(self.db)

        add_txn(self.db, self.warehouse, self.sku, TransactionType.SHIP, date(2024, 1, 3), 60)
        add_txn(self.db, self.warehouse, self.sku, TransactionType.SHIP, date(2024, 1, 3), 5, batch_lot='B2')
        add_txn(self.db, self.other_warehouse, self.sku, TransactionType.RECEIVE, date(2024, 1, 3), 9)
        real_apply = balance_rebuild_service._apply_row
        calls = []

        def apply_then_fail(balance, row):
            calls.append(row.key)
            if len(calls) > 1:
                raise SQLAlchemyError('connection reset')
            real_apply(balance, row)

        with patch('app.services.balance_rebuild_service._apply_row', side_effect=apply_then_fail):
            with self.assertRaises(SQLAlchemyError):
                rebuild_balances(self.db)
        self.db.rollback()

        self.assertEqual(len(calls), 2)
        self.assertEqual(list_cached_balances(self.db), snapshot)


class LedgerServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.warehouse = add_warehouse(self.db, 'FMC')
        self.amazon = add_warehouse(self.db, 'AMZN')
        self.sku = add_sku(self.db, 'CS-007')

    def tearDown(self) -> None:
        self.db.close()

    def test_as_of_filter_stops_at_date(self) -> None:
        add_txn(self.db, self.warehouse, self.sku, TransactionType.RECEIVE, date(2024, 1, 2), 10)
        add_txn(self.db, self.warehouse, self.sku, TransactionType.RECEIVE, date(2024, 1, 5), 10)
        self.assertEqual(
            current_cartons_for_key(
                self.db, warehouse_id=self.warehouse.id, sku_id=self.sku.id, batch_lot='B1', as_of=date(2024, 1, 3)
            ),
            10,
        )

    def test_excluded_warehouse_codes_only_apply_unscoped(self) -> None:
        add_txn(self.db, self.warehouse, self.sku, TransactionType.RECEIVE, date(2024, 1, 2), 10)
        add_txn(self.db, self.amazon, self.sku, TransactionType.RECEIVE, date(2024, 1, 2), 10)

        unscoped = load_ledger_entries(self.db, exclude_warehouse_codes=['AMZN'])
        scoped = load_ledger_entries(self.db, warehouse_id=self.amazon.id, exclude_warehouse_codes=['AMZN'])
        self.assertEqual({item.warehouse_code for item in unscoped}, {'FMC'})
        self.assertEqual({item.warehouse_code for item in scoped}, {'AMZN'})

    def test_sku_code_filter_treats_wildcards_literally(self) -> None:
        add_txn(self.db, self.warehouse, self.sku, TransactionType.RECEIVE, date(2024, 1, 2), 10)
        odd = add_sku(self.db, 'CS_7%')
        add_txn(self.db, self.warehouse, odd, TransactionType.RECEIVE, date(2024, 1, 2), 4)

        self.assertEqual({item.sku_code for item in load_ledger_entries(self.db, sku_code='cs-0')}, {'CS-007'})
        self.assertEqual({item.sku_code for item in load_ledger_entries(self.db, sku_code='S_7')}, {'CS_7%'})
        self.assertEqual({item.sku_code for item in load_ledger_entries(self.db, sku_code='%')}, {'CS_7%'})
        self.assertEqual(load_ledger_entries(self.db, sku_code='CS_0'), [])


if __name__ == '__main__':
    unittest.main()
