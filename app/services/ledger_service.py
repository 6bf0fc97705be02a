from __future__ import annotations

from collections.abc import Iterable
from datetime import date

from sqlalchemy import Select, or_, select
from sqlalchemy.orm import Session

from app.models import InventoryBalance, InventoryTransaction, Sku, Warehouse, WarehouseSkuConfig
from app.services.balance_aggregator import LedgerEntry, PalletConfig


def _ledger_query(
    *,
    warehouse_id: int | None = None,
    sku_id: int | None = None,
    sku_code: str | None = None,
    batch_lot: str | None = None,
    as_of: date | None = None,
    exclude_warehouse_codes: Iterable[str] = (),
) -> Select:
    query = (
        select(InventoryTransaction, Sku, Warehouse)
        .join(Sku, Sku.id == InventoryTransaction.sku_id)
        .join(Warehouse, Warehouse.id == InventoryTransaction.warehouse_id)
    )
    if warehouse_id is not None:
        query = query.where(InventoryTransaction.warehouse_id == warehouse_id)
    else:
        excluded = [code for code in exclude_warehouse_codes if code]
        if excluded:
            query = query.where(Warehouse.code.not_in(excluded))
    if sku_id is not None:
        query = query.where(InventoryTransaction.sku_id == sku_id)
    if sku_code:
        query = query.where(Sku.sku_code.icontains(sku_code.strip(), autoescape=True))
    if batch_lot is not None:
        query = query.where(InventoryTransaction.batch_lot == batch_lot)
    if as_of is not None:
        query = query.where(InventoryTransaction.transaction_date <= as_of)
    return query.order_by(
        InventoryTransaction.transaction_date.asc(),
        InventoryTransaction.created_at.asc(),
        InventoryTransaction.id.asc(),
    )


def load_ledger_entries(
    db: Session,
    *,
    warehouse_id: int | None = None,
    sku_id: int | None = None,
    sku_code: str | None = None,
    batch_lot: str | None = None,
    as_of: date | None = None,
    exclude_warehouse_codes: Iterable[str] = (),
) -> list[LedgerEntry]:
    rows = db.execute(
        _ledger_query(
            warehouse_id=warehouse_id,
            sku_id=sku_id,
            sku_code=sku_code,
            batch_lot=batch_lot,
            as_of=as_of,
            exclude_warehouse_codes=exclude_warehouse_codes,
        )
    ).all()
    return [LedgerEntry.from_row(txn, sku=sku, warehouse=warehouse) for txn, sku, warehouse in rows]


def load_pallet_configs(db: Session, *, as_of: date, warehouse_id: int | None = None) -> dict[tuple[int, int], PalletConfig]:
    query = (
        select(WarehouseSkuConfig)
        .where(
            WarehouseSkuConfig.effective_date <= as_of,
            or_(WarehouseSkuConfig.end_date.is_(None), WarehouseSkuConfig.end_date >= as_of),
        )
        .order_by(WarehouseSkuConfig.effective_date.desc(), WarehouseSkuConfig.id.desc())
    )
    if warehouse_id is not None:
        query = query.where(WarehouseSkuConfig.warehouse_id == warehouse_id)

    configs: dict[tuple[int, int], PalletConfig] = {}
    for row in db.execute(query).scalars().all():
        # Newest effective config wins.
        configs.setdefault(
            (row.warehouse_id, row.sku_id),
            PalletConfig(
                storage_cartons_per_pallet=row.storage_cartons_per_pallet,
                shipping_cartons_per_pallet=row.shipping_cartons_per_pallet,
            ),
        )
    return configs


def current_cartons_for_key(
    db: Session,
    *,
    warehouse_id: int,
    sku_id: int,
    batch_lot: str,
    as_of: date | None = None,
) -> int:
    entries = load_ledger_entries(db, warehouse_id=warehouse_id, sku_id=sku_id, batch_lot=batch_lot, as_of=as_of)
    return sum(entry.net_cartons for entry in entries)


def list_cached_balances(db: Session, *, warehouse_id: int | None = None) -> list[dict]:
    query = (
        select(InventoryBalance, Sku.sku_code, Warehouse.code)
        .join(Sku, Sku.id == InventoryBalance.sku_id)
        .join(Warehouse, Warehouse.id == InventoryBalance.warehouse_id)
        .order_by(Sku.sku_code.asc(), InventoryBalance.batch_lot.asc(), Warehouse.code.asc())
    )
    if warehouse_id is not None:
        query = query.where(InventoryBalance.warehouse_id == warehouse_id)

    return [
        {
            'id': balance.id,
            'warehouse_id': balance.warehouse_id,
            'warehouse_code': warehouse_code,
            'sku_id': balance.sku_id,
            'sku_code': sku_code,
            'batch_lot': balance.batch_lot,
            'current_cartons': balance.current_cartons,
            'current_units': balance.current_units,
            'current_pallets': balance.current_pallets,
            'units_per_carton': balance.units_per_carton,
            'storage_cartons_per_pallet': balance.storage_cartons_per_pallet,
            'shipping_cartons_per_pallet': balance.shipping_cartons_per_pallet,
            'first_receive_date': balance.first_receive_date,
            'last_transaction_date': balance.last_transaction_date,
        }
        for balance, sku_code, warehouse_code in db.execute(query).all()
    ]
