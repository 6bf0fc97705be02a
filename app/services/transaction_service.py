from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from math import ceil

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.auth import Principal, Role, resolve_warehouse_scope
from app.config import settings
from app.models import (
    INBOUND_TYPES,
    OUTBOUND_TYPES,
    InventoryTransaction,
    Sku,
    TransactionType,
    Warehouse,
)
from app.schemas import TransactionCreate, TransactionItemIn, TransferCreate
from app.services.audit_service import log_audit
from app.services.balance_aggregator import running_balances
from app.services.errors import ConflictError
from app.services.ledger_service import current_cartons_for_key, load_ledger_entries

logger = logging.getLogger(__name__)

ADJUSTMENT_TYPES = frozenset({TransactionType.ADJUST_IN, TransactionType.ADJUST_OUT})
PATCHABLE_ATTRIBUTES = ('ship_name', 'tracking_number', 'mode_of_transportation', 'pickup_date', 'supplier')


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


def _resolve_warehouse(db: Session, *, principal: Principal, requested_id: int | None) -> Warehouse:
    if principal.role == Role.STAFF and principal.warehouse_id is None:
        raise ValueError('No warehouse assigned')
    warehouse_id = resolve_warehouse_scope(principal, requested_id)
    if warehouse_id is None:
        raise ValueError('Warehouse ID required')
    warehouse = db.execute(
        select(Warehouse).where(Warehouse.id == warehouse_id, Warehouse.active.is_(True))
    ).scalar_one_or_none()
    if not warehouse:
        raise LookupError('Warehouse not found')
    return warehouse


def _validate_items(txn_type: TransactionType, items: list[TransactionItemIn]) -> list[TransactionItemIn]:
    if txn_type in ADJUSTMENT_TYPES and len(items) != 1:
        raise ValueError('Adjustments take exactly one item')
    if not items:
        raise ValueError('Missing required fields: reference number, date, and items')

    cleaned: list[TransactionItemIn] = []
    seen: set[tuple[str, str]] = set()
    for item in items:
        sku_code = item.sku_code.strip()
        batch_lot = item.batch_lot.strip()
        if not sku_code:
            raise ValueError('Each item needs a SKU code')
        if not batch_lot:
            raise ValueError(f'Batch/Lot is required for SKU {sku_code}')
        if item.cartons <= 0:
            raise ValueError(f'Cartons must be positive integers. Invalid value for SKU {sku_code}: {item.cartons}')
        if item.cartons > settings.max_cartons_per_line:
            raise ValueError(
                f'Cartons value too large for SKU {sku_code}. Maximum allowed: {settings.max_cartons_per_line}'
            )
        if item.pallets is not None and not 0 <= item.pallets <= settings.max_pallets_per_line:
            raise ValueError(
                f'Pallets must be integers between 0 and {settings.max_pallets_per_line}. Invalid value for SKU {sku_code}'
            )
        if txn_type == TransactionType.RECEIVE and not batch_lot.isdigit():
            logger.warning('Non-numeric batch lot on receive', extra={'sku_code': sku_code, 'batch_lot': batch_lot})

        key = (sku_code, batch_lot)
        if key in seen:
            raise ValueError(f'Duplicate SKU/Batch combination found: {sku_code} - {batch_lot}')
        seen.add(key)
        cleaned.append(item.model_copy(update={'sku_code': sku_code, 'batch_lot': batch_lot}))
    return cleaned


def _ensure_not_duplicate(db: Session, *, warehouse_id: int, reference: str, txn_type: TransactionType) -> None:
    window_start = _now() - timedelta(seconds=settings.duplicate_window_seconds)
    recent = db.execute(
        select(InventoryTransaction.id).where(
            InventoryTransaction.warehouse_id == warehouse_id,
            InventoryTransaction.reference_id == reference,
            InventoryTransaction.transaction_type == txn_type,
            InventoryTransaction.created_at >= window_start,
        )
    ).first()
    if recent:
        raise ConflictError('Duplicate transaction detected. A transaction with this reference was just processed.')


def _ensure_not_backdated(db: Session, *, warehouse_id: int, transaction_date: date) -> None:
    last_date = db.execute(
        select(func.max(InventoryTransaction.transaction_date)).where(InventoryTransaction.warehouse_id == warehouse_id)
    ).scalar_one_or_none()
    if last_date is not None and transaction_date < last_date:
        raise ValueError(
            'Cannot create backdated transactions. The last transaction in this warehouse was on '
            f'{last_date.isoformat()}. New transactions must have a date on or after this date.'
        )


def _next_sequence(db: Session, *, prefix: str) -> int:
    existing = db.execute(
        select(func.count(InventoryTransaction.id)).where(InventoryTransaction.transaction_id.like(f'{prefix}-%'))
    ).scalar_one()
    return int(existing) + 1


def _first_receive_shipping_cpp(db: Session, *, warehouse_id: int, sku_id: int, batch_lot: str) -> int | None:
    return db.execute(
        select(InventoryTransaction.shipping_cartons_per_pallet)
        .where(
            InventoryTransaction.warehouse_id == warehouse_id,
            InventoryTransaction.sku_id == sku_id,
            InventoryTransaction.batch_lot == batch_lot,
            InventoryTransaction.transaction_type == TransactionType.RECEIVE,
        )
        .order_by(InventoryTransaction.transaction_date.asc(), InventoryTransaction.created_at.asc())
        .limit(1)
    ).scalar_one_or_none()


def create_transactions(
    db: Session,
    *,
    principal: Principal,
    payload: TransactionCreate,
    ip: str | None = None,
    today: date | None = None,
) -> list[InventoryTransaction]:
    txn_type = payload.transaction_type
    if txn_type == TransactionType.TRANSFER:
        raise ValueError('Transfers are posted through the transfer endpoint')
    reference = _clean(payload.reference_number)
    if not reference:
        raise ValueError('Missing required fields: reference number and date')

    today = today or date.today()
    if payload.transaction_date > today:
        raise ValueError('Transaction date cannot be in the future')

    items = _validate_items(txn_type, payload.items)
    warehouse = _resolve_warehouse(db, principal=principal, requested_id=payload.warehouse_id)
    _ensure_not_duplicate(db, warehouse_id=warehouse.id, reference=reference, txn_type=txn_type)
    _ensure_not_backdated(db, warehouse_id=warehouse.id, transaction_date=payload.transaction_date)

    sku_codes = [item.sku_code for item in items]
    skus = {sku.sku_code: sku for sku in db.execute(select(Sku).where(Sku.sku_code.in_(sku_codes))).scalars().all()}
    for item in items:
        sku = skus.get(item.sku_code)
        if not sku:
            raise ValueError(f'SKU {item.sku_code} not found. Please create the SKU first.')
        if txn_type in OUTBOUND_TYPES:
            available = current_cartons_for_key(
                db,
                warehouse_id=warehouse.id,
                sku_id=sku.id,
                batch_lot=item.batch_lot,
                as_of=payload.transaction_date,
            )
            if available < item.cartons:
                raise ValueError(
                    f'Insufficient inventory for SKU {item.sku_code} batch {item.batch_lot}. '
                    f'Available: {available}, Requested: {item.cartons}'
                )

    prefix = f'{warehouse.code}-{txn_type.value[:3]}-{today.strftime("%Y%m%d")}'
    sequence = _next_sequence(db, prefix=prefix)
    notes = _clean(payload.notes)
    created: list[InventoryTransaction] = []

    for offset, item in enumerate(items):
        sku = skus[item.sku_code]
        inbound = txn_type in INBOUND_TYPES
        storage_cpp = item.storage_cartons_per_pallet if txn_type == TransactionType.RECEIVE else None
        shipping_cpp = item.shipping_cartons_per_pallet if txn_type == TransactionType.RECEIVE else None
        pallets = item.pallets

        if txn_type == TransactionType.RECEIVE and pallets is None and storage_cpp:
            pallets = ceil(item.cartons / storage_cpp)
        elif txn_type == TransactionType.SHIP:
            shipping_cpp = item.shipping_cartons_per_pallet or _first_receive_shipping_cpp(
                db, warehouse_id=warehouse.id, sku_id=sku.id, batch_lot=item.batch_lot
            )
            if pallets is None and shipping_cpp:
                pallets = ceil(item.cartons / shipping_cpp)

        txn = InventoryTransaction(
            transaction_id=f'{prefix}-{sequence + offset:03d}',
            transaction_type=txn_type,
            transaction_date=payload.transaction_date,
            warehouse_id=warehouse.id,
            sku_id=sku.id,
            batch_lot=item.batch_lot,
            reference_id=reference,
            cartons_in=item.cartons if inbound else 0,
            cartons_out=0 if inbound else item.cartons,
            storage_pallets_in=(pallets or 0) if inbound else 0,
            shipping_pallets_out=0 if inbound else (pallets or 0),
            units_per_carton=item.units_per_carton or sku.units_per_carton,
            storage_cartons_per_pallet=storage_cpp,
            shipping_cartons_per_pallet=shipping_cpp,
            ship_name=_clean(payload.ship_name) if txn_type == TransactionType.RECEIVE else None,
            tracking_number=_clean(payload.tracking_number),
            mode_of_transportation=_clean(payload.mode_of_transportation) if txn_type == TransactionType.SHIP else None,
            supplier=_clean(payload.supplier) if txn_type == TransactionType.RECEIVE else None,
            pickup_date=payload.pickup_date or payload.transaction_date,
            notes=notes,
            created_by_principal_id=principal.id,
        )
        db.add(txn)
        created.append(txn)

    db.flush()
    for txn in created:
        log_audit(
            db,
            actor_principal_id=principal.id,
            action='INVENTORY_TRANSACTION_CREATED',
            ip=ip,
            entity_type='InventoryTransaction',
            entity_id=txn.id,
            metadata={
                'transaction_id': txn.transaction_id,
                'transaction_type': txn_type.value,
                'cartons_in': txn.cartons_in,
                'cartons_out': txn.cartons_out,
            },
        )

    logger.info(
        'Inventory transactions created',
        extra={
            'transaction_type': txn_type.value,
            'reference_number': reference,
            'warehouse_id': warehouse.id,
            'transaction_ids': [txn.transaction_id for txn in created],
            'total_cartons': sum(item.cartons for item in items),
            'principal_id': principal.id,
        },
    )
    return created


def transfer_inventory(
    db: Session,
    *,
    principal: Principal,
    payload: TransferCreate,
    ip: str | None = None,
    today: date | None = None,
) -> tuple[InventoryTransaction, InventoryTransaction]:
    """
    Move cartons of one batch between warehouses.

    Writes a TRANSFER leg out of the source and a TRANSFER leg into the destination,
    both sharing one reference, in the caller's transaction. Staff can only transfer
    out of their own warehouse.
    """
    today = today or date.today()
    if payload.transaction_date > today:
        raise ValueError('Transaction date cannot be in the future')

    (line,) = _validate_items(
        TransactionType.TRANSFER,
        [TransactionItemIn(sku_code=payload.sku_code, batch_lot=payload.batch_lot, cartons=payload.cartons)],
    )
    source = _resolve_warehouse(db, principal=principal, requested_id=payload.from_warehouse_id)
    if source.id == payload.to_warehouse_id:
        raise ValueError('Source and destination warehouses must be different')
    destination = db.execute(
        select(Warehouse).where(Warehouse.id == payload.to_warehouse_id, Warehouse.active.is_(True))
    ).scalar_one_or_none()
    if not destination:
        raise LookupError('Destination warehouse not found')

    sku = db.execute(select(Sku).where(Sku.sku_code == line.sku_code)).scalar_one_or_none()
    if not sku:
        raise ValueError(f'SKU {line.sku_code} not found. Please create the SKU first.')

    reference = _clean(payload.reference_number) or f'TRANSFER-{int(_now().timestamp() * 1000)}'
    _ensure_not_duplicate(db, warehouse_id=source.id, reference=reference, txn_type=TransactionType.TRANSFER)
    for warehouse in (source, destination):
        _ensure_not_backdated(db, warehouse_id=warehouse.id, transaction_date=payload.transaction_date)

    entries = load_ledger_entries(
        db, warehouse_id=source.id, sku_id=sku.id, batch_lot=line.batch_lot, as_of=payload.transaction_date
    )
    available = sum(entry.net_cartons for entry in entries)
    if available < line.cartons:
        raise ValueError(
            f'Insufficient inventory for SKU {line.sku_code} batch {line.batch_lot} at {source.code}. '
            f'Available: {available}, Requested: {line.cartons}'
        )
    # The destination leg keeps the unit size the batch was stocked with at the source.
    units_per_carton = entries[-1].effective_units_per_carton

    notes = _clean(payload.notes)
    legs: list[InventoryTransaction] = []
    for warehouse, inbound in ((source, False), (destination, True)):
        prefix = f'{warehouse.code}-{TransactionType.TRANSFER.value[:3]}-{today.strftime("%Y%m%d")}'
        leg = InventoryTransaction(
            transaction_id=f'{prefix}-{_next_sequence(db, prefix=prefix):03d}',
            transaction_type=TransactionType.TRANSFER,
            transaction_date=payload.transaction_date,
            warehouse_id=warehouse.id,
            sku_id=sku.id,
            batch_lot=line.batch_lot,
            reference_id=reference,
            cartons_in=line.cartons if inbound else 0,
            cartons_out=0 if inbound else line.cartons,
            units_per_carton=units_per_carton,
            pickup_date=payload.transaction_date,
            notes=notes,
            created_by_principal_id=principal.id,
        )
        db.add(leg)
        legs.append(leg)

    db.flush()
    outbound, inbound_leg = legs
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='INVENTORY_TRANSFERRED',
        ip=ip,
        entity_type='InventoryTransaction',
        entity_id=outbound.id,
        metadata={
            'reference_id': reference,
            'from_warehouse_id': source.id,
            'to_warehouse_id': destination.id,
            'sku_code': line.sku_code,
            'batch_lot': line.batch_lot,
            'cartons': line.cartons,
            'transaction_ids': [outbound.transaction_id, inbound_leg.transaction_id],
        },
    )
    logger.info(
        'Inventory transferred',
        extra={
            'reference_number': reference,
            'from_warehouse_id': source.id,
            'to_warehouse_id': destination.id,
            'cartons': line.cartons,
            'principal_id': principal.id,
        },
    )
    return outbound, inbound_leg


def update_transaction_attributes(db: Session, *, transaction_pk: int, changes: dict) -> InventoryTransaction:
    txn = db.get(InventoryTransaction, transaction_pk)
    if not txn:
        raise LookupError('Transaction not found')
    for field_name, value in changes.items():
        if field_name not in PATCHABLE_ATTRIBUTES:
            raise ValueError(f'{field_name} cannot be changed on a ledger transaction')
        setattr(txn, field_name, _clean(value) if isinstance(value, str) else value)
    txn.updated_at = _now()
    db.flush()
    return txn


def serialize_transaction(txn: InventoryTransaction, *, sku: Sku, warehouse: Warehouse) -> dict:
    return {
        'id': txn.id,
        'transaction_id': txn.transaction_id,
        'transaction_type': txn.transaction_type.value,
        'transaction_date': txn.transaction_date,
        'warehouse': {'id': warehouse.id, 'code': warehouse.code, 'name': warehouse.name},
        'sku': {
            'id': sku.id,
            'sku_code': sku.sku_code,
            'description': sku.description,
            'units_per_carton': sku.units_per_carton,
        },
        'batch_lot': txn.batch_lot,
        'reference_id': txn.reference_id,
        'cartons_in': txn.cartons_in,
        'cartons_out': txn.cartons_out,
        'storage_pallets_in': txn.storage_pallets_in,
        'shipping_pallets_out': txn.shipping_pallets_out,
        'units_per_carton': txn.units_per_carton,
        'storage_cartons_per_pallet': txn.storage_cartons_per_pallet,
        'shipping_cartons_per_pallet': txn.shipping_cartons_per_pallet,
        'ship_name': txn.ship_name,
        'tracking_number': txn.tracking_number,
        'mode_of_transportation': txn.mode_of_transportation,
        'supplier': txn.supplier,
        'pickup_date': txn.pickup_date,
        'notes': txn.notes,
        'created_by_principal_id': txn.created_by_principal_id,
        'created_at': txn.created_at,
        'updated_at': txn.updated_at,
    }


def _joined_query():
    return (
        select(InventoryTransaction, Sku, Warehouse)
        .join(Sku, Sku.id == InventoryTransaction.sku_id)
        .join(Warehouse, Warehouse.id == InventoryTransaction.warehouse_id)
    )


def get_transaction(db: Session, *, transaction_pk: int, warehouse_id: int | None = None) -> dict:
    query = _joined_query().where(InventoryTransaction.id == transaction_pk)
    if warehouse_id is not None:
        query = query.where(InventoryTransaction.warehouse_id == warehouse_id)
    row = db.execute(query).one_or_none()
    if not row:
        raise LookupError('Transaction not found')
    txn, sku, warehouse = row
    return serialize_transaction(txn, sku=sku, warehouse=warehouse)


def list_recent_transactions(db: Session, *, limit: int = 100, warehouse_id: int | None = None) -> list[dict]:
    query = _joined_query().order_by(
        InventoryTransaction.transaction_date.desc(),
        InventoryTransaction.created_at.desc(),
        InventoryTransaction.id.desc(),
    )
    if warehouse_id is not None:
        query = query.where(InventoryTransaction.warehouse_id == warehouse_id)
    rows = db.execute(query.limit(limit)).all()
    return [serialize_transaction(txn, sku=sku, warehouse=warehouse) for txn, sku, warehouse in rows]


def list_ledger(
    db: Session,
    *,
    warehouse_id: int | None = None,
    transaction_type: TransactionType | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    query = _joined_query()
    if warehouse_id is not None:
        query = query.where(InventoryTransaction.warehouse_id == warehouse_id)
    if transaction_type is not None:
        query = query.where(InventoryTransaction.transaction_type == transaction_type)
    if start_date is not None:
        query = query.where(InventoryTransaction.transaction_date >= start_date)
    if end_date is not None:
        query = query.where(InventoryTransaction.transaction_date <= end_date)
    rows = db.execute(
        query.order_by(
            InventoryTransaction.transaction_date.desc(),
            InventoryTransaction.created_at.desc(),
            InventoryTransaction.id.desc(),
        )
        .limit(limit)
        .offset(offset)
    ).all()
    return {'transactions': [serialize_transaction(txn, sku=sku, warehouse=warehouse) for txn, sku, warehouse in rows]}


def ledger_as_of(
    db: Session,
    *,
    as_of: date,
    warehouse_id: int | None = None,
    transaction_type: TransactionType | None = None,
) -> dict:
    """Point-in-time ledger: every movement up to `as_of` with its key's running balance."""
    entries = load_ledger_entries(db, warehouse_id=warehouse_id, as_of=as_of)
    movements = []
    final_by_key: dict[tuple[int, int, str], dict] = {}
    for running in running_balances(entries):
        entry = running.entry
        final_by_key[entry.key] = {
            'warehouse_id': entry.warehouse_id,
            'warehouse': entry.warehouse_name,
            'sku_id': entry.sku_id,
            'sku_code': entry.sku_code,
            'description': entry.sku_description,
            'batch_lot': entry.batch_lot,
            'current_cartons': running.running_cartons,
        }
        if transaction_type is not None and entry.transaction_type != transaction_type:
            continue
        movements.append(
            {
                'id': entry.id,
                'transaction_id': entry.transaction_id,
                'transaction_type': entry.transaction_type.value,
                'transaction_date': entry.transaction_date,
                'warehouse_code': entry.warehouse_code,
                'sku_code': entry.sku_code,
                'batch_lot': entry.batch_lot,
                'cartons_in': entry.cartons_in,
                'cartons_out': entry.cartons_out,
                'running_balance': running.running_cartons,
                'running_units': running.running_units,
            }
        )

    inventory_summary = sorted(
        (row for row in final_by_key.values() if row['current_cartons'] > 0),
        key=lambda row: (row['warehouse'], row['sku_code'], row['batch_lot']),
    )
    return {'transactions': movements, 'inventory_summary': inventory_summary}
