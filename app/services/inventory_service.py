from __future__ import annotations

from datetime import date

from sqlalchemy.orm import Session

from app.config import settings
from app.services.balance_aggregator import aggregate_balances, summarize_balances
from app.services.ledger_service import load_ledger_entries, load_pallet_configs


def ledger_balances(db: Session, *, warehouse_id: int | None = None, sku_code: str | None = None) -> dict:
    """Current balances folded straight from the ledger, zero and negative batches included."""
    entries = load_ledger_entries(db, warehouse_id=warehouse_id, sku_code=sku_code)
    pallet_configs = load_pallet_configs(db, as_of=date.today(), warehouse_id=warehouse_id)
    rows = aggregate_balances(entries, pallet_configs=pallet_configs)
    return {
        'data': [row.as_dict() for row in rows],
        'summary': summarize_balances(rows).as_dict(),
    }


def balances_as_of(
    db: Session,
    *,
    as_of: date | None = None,
    warehouse_id: int | None = None,
    sku_code: str | None = None,
    show_zero_stock: bool = False,
) -> list[dict]:
    as_of = as_of or date.today()
    entries = load_ledger_entries(
        db,
        warehouse_id=warehouse_id,
        sku_code=sku_code,
        as_of=as_of,
        exclude_warehouse_codes=settings.excluded_warehouse_codes,
    )
    pallet_configs = load_pallet_configs(db, as_of=as_of, warehouse_id=warehouse_id)
    rows = aggregate_balances(entries, pallet_configs=pallet_configs)
    if not show_zero_stock:
        rows = [row for row in rows if row.current_cartons > 0]
    return [row.as_dict() for row in rows]
