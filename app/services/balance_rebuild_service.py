from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import InventoryBalance
from app.services.balance_aggregator import BalanceRow, aggregate_balances
from app.services.ledger_service import load_ledger_entries, load_pallet_configs

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _apply_row(balance: InventoryBalance, row: BalanceRow) -> None:
    balance.current_cartons = row.current_cartons
    balance.current_units = row.current_units
    balance.current_pallets = row.current_pallets
    balance.units_per_carton = row.units_per_carton
    balance.storage_cartons_per_pallet = row.storage_cartons_per_pallet
    balance.shipping_cartons_per_pallet = row.shipping_cartons_per_pallet
    balance.first_receive_date = row.first_receive_date
    balance.last_transaction_date = row.last_transaction_date


def rebuild_balances(db: Session, *, warehouse_id: int | None = None) -> int:
    """
    Recompute the cached inventory_balances rows for one warehouse (or all) from the ledger.

    Rows are updated in place by key, new keys are inserted and cached keys that no longer
    appear in the ledger are removed. Nothing is committed here; the caller commits so the
    whole rebuild lands in one database transaction.
    """
    entries = load_ledger_entries(db, warehouse_id=warehouse_id)
    pallet_configs = load_pallet_configs(db, as_of=date.today(), warehouse_id=warehouse_id)
    rows = aggregate_balances(entries, pallet_configs=pallet_configs)

    existing_query = select(InventoryBalance)
    if warehouse_id is not None:
        existing_query = existing_query.where(InventoryBalance.warehouse_id == warehouse_id)
    existing = {
        (balance.warehouse_id, balance.sku_id, balance.batch_lot): balance
        for balance in db.execute(existing_query).scalars().all()
    }

    rebuilt_at = _now()
    seen: set[tuple[int, int, str]] = set()
    for row in rows:
        seen.add(row.key)
        balance = existing.get(row.key)
        if balance is None:
            balance = InventoryBalance(warehouse_id=row.warehouse_id, sku_id=row.sku_id, batch_lot=row.batch_lot)
            db.add(balance)
        _apply_row(balance, row)
        balance.rebuilt_at = rebuilt_at

    removed = 0
    for key, balance in existing.items():
        if key not in seen:
            db.delete(balance)
            removed += 1

    db.flush()
    logger.info(
        'Rebuilt inventory balances',
        extra={'warehouse_id': warehouse_id, 'updated_count': len(rows), 'removed_count': removed},
    )
    return len(rows)
