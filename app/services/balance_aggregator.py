from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from math import ceil

from app.models import TransactionType
from app.services.errors import LedgerIntegrityError


IN_STOCK = 'IN_STOCK'
OUT_OF_STOCK = 'OUT_OF_STOCK'

BalanceKey = tuple[int, int, str]


@dataclass(frozen=True)
class LedgerEntry:
    id: int
    transaction_id: str
    transaction_type: TransactionType
    transaction_date: date
    created_at: datetime
    warehouse_id: int
    warehouse_code: str
    warehouse_name: str
    sku_id: int
    sku_code: str
    sku_description: str
    sku_units_per_carton: int
    batch_lot: str
    cartons_in: int = 0
    cartons_out: int = 0
    units_per_carton: int | None = None
    storage_cartons_per_pallet: int | None = None
    shipping_cartons_per_pallet: int | None = None

    def __post_init__(self) -> None:
        if self.cartons_in < 0 or self.cartons_out < 0:
            raise LedgerIntegrityError(self.id, 'carton counts cannot be negative')
        if not self.batch_lot or not self.batch_lot.strip():
            raise LedgerIntegrityError(self.id, 'batch/lot is required')
        if (self.effective_units_per_carton or 0) < 1:
            raise LedgerIntegrityError(self.id, 'units per carton must be at least 1')
        if not isinstance(self.transaction_type, TransactionType):
            raise LedgerIntegrityError(self.id, f'unknown transaction type {self.transaction_type!r}')

    @classmethod
    def from_row(cls, txn, *, sku, warehouse) -> LedgerEntry:
        try:
            transaction_type = TransactionType(txn.transaction_type)
        except ValueError as exc:
            raise LedgerIntegrityError(txn.id, f'unknown transaction type {txn.transaction_type!r}') from exc
        return cls(
            id=txn.id,
            transaction_id=txn.transaction_id,
            transaction_type=transaction_type,
            transaction_date=txn.transaction_date,
            created_at=txn.created_at,
            warehouse_id=warehouse.id,
            warehouse_code=warehouse.code,
            warehouse_name=warehouse.name,
            sku_id=sku.id,
            sku_code=sku.sku_code,
            sku_description=sku.description or '',
            sku_units_per_carton=sku.units_per_carton,
            batch_lot=txn.batch_lot,
            cartons_in=txn.cartons_in or 0,
            cartons_out=txn.cartons_out or 0,
            units_per_carton=txn.units_per_carton,
            storage_cartons_per_pallet=txn.storage_cartons_per_pallet,
            shipping_cartons_per_pallet=txn.shipping_cartons_per_pallet,
        )

    @property
    def key(self) -> BalanceKey:
        return (self.warehouse_id, self.sku_id, self.batch_lot)

    @property
    def net_cartons(self) -> int:
        return self.cartons_in - self.cartons_out

    @property
    def effective_units_per_carton(self) -> int:
        return self.units_per_carton or self.sku_units_per_carton

    @property
    def sort_key(self) -> tuple[date, datetime, int]:
        return (self.transaction_date, self.created_at, self.id)


@dataclass(frozen=True)
class PalletConfig:
    storage_cartons_per_pallet: int
    shipping_cartons_per_pallet: int


@dataclass(frozen=True)
class BalanceRow:
    warehouse_id: int
    warehouse_code: str
    warehouse_name: str
    sku_id: int
    sku_code: str
    sku_description: str
    batch_lot: str
    current_cartons: int
    current_units: int
    current_pallets: int
    units_per_carton: int
    storage_cartons_per_pallet: int | None
    shipping_cartons_per_pallet: int | None
    first_receive_date: date | None
    last_transaction_date: date | None
    last_transaction_id: str | None

    @property
    def key(self) -> BalanceKey:
        return (self.warehouse_id, self.sku_id, self.batch_lot)

    @property
    def has_inventory(self) -> bool:
        return self.current_cartons > 0

    @property
    def inventory_status(self) -> str:
        return IN_STOCK if self.current_cartons > 0 else OUT_OF_STOCK

    @property
    def needs_review(self) -> bool:
        # Unmatched outbound movements are kept as negative balances, not clamped.
        return self.current_cartons < 0

    def as_dict(self) -> dict:
        return {
            'warehouse_id': self.warehouse_id,
            'warehouse_code': self.warehouse_code,
            'warehouse_name': self.warehouse_name,
            'sku_id': self.sku_id,
            'sku_code': self.sku_code,
            'sku_description': self.sku_description,
            'batch_lot': self.batch_lot,
            'current_cartons': self.current_cartons,
            'current_units': self.current_units,
            'current_pallets': self.current_pallets,
            'units_per_carton': self.units_per_carton,
            'storage_cartons_per_pallet': self.storage_cartons_per_pallet,
            'shipping_cartons_per_pallet': self.shipping_cartons_per_pallet,
            'first_receive_date': self.first_receive_date,
            'last_transaction_date': self.last_transaction_date,
            'last_transaction_id': self.last_transaction_id,
            'has_inventory': self.has_inventory,
            'inventory_status': self.inventory_status,
            'needs_review': self.needs_review,
        }


@dataclass(frozen=True)
class BalanceSummary:
    total_skus: int
    total_batches: int
    batches_with_inventory: int
    batches_out_of_stock: int
    batches_negative: int

    def as_dict(self) -> dict:
        return {
            'total_skus': self.total_skus,
            'total_batches': self.total_batches,
            'batches_with_inventory': self.batches_with_inventory,
            'batches_out_of_stock': self.batches_out_of_stock,
            'batches_negative': self.batches_negative,
        }


@dataclass(frozen=True)
class RunningBalance:
    entry: LedgerEntry
    running_cartons: int
    running_units: int


@dataclass
class _Totals:
    first: LedgerEntry
    cartons: int = 0
    units: int = 0
    units_per_carton: int = 1
    storage_cartons_per_pallet: int | None = None
    shipping_cartons_per_pallet: int | None = None
    first_receive_date: date | None = None
    last_transaction_date: date | None = None
    last_transaction_id: str | None = None

    def apply(self, entry: LedgerEntry) -> None:
        self.cartons += entry.net_cartons
        self.units_per_carton = entry.effective_units_per_carton
        self.units = self.cartons * self.units_per_carton
        self.last_transaction_date = entry.transaction_date
        self.last_transaction_id = entry.transaction_id
        if entry.transaction_type == TransactionType.RECEIVE and self.first_receive_date is None:
            self.first_receive_date = entry.transaction_date
        if entry.storage_cartons_per_pallet:
            self.storage_cartons_per_pallet = entry.storage_cartons_per_pallet
        if entry.shipping_cartons_per_pallet:
            self.shipping_cartons_per_pallet = entry.shipping_cartons_per_pallet


def order_entries(entries: Iterable[LedgerEntry]) -> list[LedgerEntry]:
    return sorted(entries, key=lambda entry: entry.sort_key)


def _pallets_for(cartons: int, cartons_per_pallet: int) -> int:
    if cartons <= 0:
        return 0
    return ceil(cartons / max(cartons_per_pallet, 1))


def aggregate_balances(
    entries: Iterable[LedgerEntry],
    *,
    pallet_configs: Mapping[tuple[int, int], PalletConfig] | None = None,
) -> list[BalanceRow]:
    """
    Fold ledger entries into one balance row per (warehouse, SKU, batch/lot).

    Entries are replayed in (transaction date, creation time, id) order. Rows whose
    net cartons are zero or negative stay in the output.
    """
    totals: dict[BalanceKey, _Totals] = {}
    for entry in order_entries(entries):
        running = totals.get(entry.key)
        if running is None:
            running = _Totals(first=entry, units_per_carton=entry.effective_units_per_carton)
            totals[entry.key] = running
        running.apply(entry)

    pallet_configs = pallet_configs or {}
    rows: list[BalanceRow] = []
    for running in totals.values():
        head = running.first
        storage_cpp = running.storage_cartons_per_pallet
        shipping_cpp = running.shipping_cartons_per_pallet
        if storage_cpp is None:
            config = pallet_configs.get((head.warehouse_id, head.sku_id))
            if config is not None:
                storage_cpp = config.storage_cartons_per_pallet
                shipping_cpp = shipping_cpp or config.shipping_cartons_per_pallet
        rows.append(
            BalanceRow(
                warehouse_id=head.warehouse_id,
                warehouse_code=head.warehouse_code,
                warehouse_name=head.warehouse_name,
                sku_id=head.sku_id,
                sku_code=head.sku_code,
                sku_description=head.sku_description,
                batch_lot=head.batch_lot,
                current_cartons=running.cartons,
                current_units=running.units,
                current_pallets=_pallets_for(running.cartons, storage_cpp or 1),
                units_per_carton=running.units_per_carton,
                storage_cartons_per_pallet=storage_cpp,
                shipping_cartons_per_pallet=shipping_cpp,
                first_receive_date=running.first_receive_date,
                last_transaction_date=running.last_transaction_date,
                last_transaction_id=running.last_transaction_id,
            )
        )

    rows.sort(key=lambda row: (row.sku_code, row.batch_lot, row.warehouse_code))
    return rows


def summarize_balances(rows: list[BalanceRow]) -> BalanceSummary:
    return BalanceSummary(
        total_skus=len({row.sku_id for row in rows}),
        total_batches=len(rows),
        batches_with_inventory=sum(1 for row in rows if row.current_cartons > 0),
        batches_out_of_stock=sum(1 for row in rows if row.current_cartons == 0),
        batches_negative=sum(1 for row in rows if row.current_cartons < 0),
    )


def running_balances(entries: Iterable[LedgerEntry]) -> list[RunningBalance]:
    balances: dict[BalanceKey, int] = {}
    out: list[RunningBalance] = []
    for entry in order_entries(entries):
        cartons = balances.get(entry.key, 0) + entry.net_cartons
        balances[entry.key] = cartons
        out.append(
            RunningBalance(
                entry=entry,
                running_cartons=cartons,
                running_units=cartons * entry.effective_units_per_carton,
            )
        )
    return out
