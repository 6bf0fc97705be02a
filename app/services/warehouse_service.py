from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models import InventoryBalance, InventoryTransaction, Principal as PrincipalModel, Warehouse
from app.schemas import WarehouseCreate, WarehouseUpdate


def _related_counts(db: Session, *, warehouse_id: int) -> dict[str, int]:
    return {
        'users': db.execute(
            select(func.count(PrincipalModel.id)).where(PrincipalModel.warehouse_id == warehouse_id)
        ).scalar_one(),
        'inventory_balances': db.execute(
            select(func.count(InventoryBalance.id)).where(InventoryBalance.warehouse_id == warehouse_id)
        ).scalar_one(),
        'inventory_transactions': db.execute(
            select(func.count(InventoryTransaction.id)).where(InventoryTransaction.warehouse_id == warehouse_id)
        ).scalar_one(),
    }


def serialize_warehouse(warehouse: Warehouse) -> dict:
    return {
        'id': warehouse.id,
        'code': warehouse.code,
        'name': warehouse.name,
        'address': warehouse.address,
        'contact_email': warehouse.contact_email,
        'contact_phone': warehouse.contact_phone,
        'active': warehouse.active,
    }


def _ensure_code_free(db: Session, *, code: str, exclude_id: int | None = None) -> None:
    query = select(Warehouse.id).where(Warehouse.code == code)
    if exclude_id is not None:
        query = query.where(Warehouse.id != exclude_id)
    if db.execute(query).first():
        raise ValueError('Warehouse code already exists')


def list_warehouses(db: Session, *, include_inactive: bool = False) -> list[dict]:
    query = select(Warehouse).order_by(Warehouse.name.asc())
    if not include_inactive:
        query = query.where(Warehouse.active.is_(True))
    return [serialize_warehouse(row) for row in db.execute(query).scalars().all()]


def create_warehouse(db: Session, *, payload: WarehouseCreate) -> Warehouse:
    code = payload.code.strip().upper()
    _ensure_code_free(db, code=code)
    warehouse = Warehouse(
        code=code,
        name=payload.name.strip(),
        address=payload.address,
        contact_email=payload.contact_email,
        contact_phone=payload.contact_phone,
        active=payload.active,
    )
    db.add(warehouse)
    db.flush()
    return warehouse


def update_warehouse(db: Session, *, warehouse_id: int, payload: WarehouseUpdate) -> Warehouse:
    warehouse = db.get(Warehouse, warehouse_id)
    if not warehouse:
        raise LookupError('Warehouse not found')

    changes = payload.model_dump(exclude_unset=True)
    if changes.get('code'):
        changes['code'] = changes['code'].strip().upper()
        _ensure_code_free(db, code=changes['code'], exclude_id=warehouse_id)
    for field_name, value in changes.items():
        setattr(warehouse, field_name, value)
    db.flush()
    return warehouse


def delete_warehouse(db: Session, *, warehouse_id: int) -> dict:
    """Hard delete an unused warehouse; deactivate one that ledger or users still reference."""
    warehouse = db.get(Warehouse, warehouse_id)
    if not warehouse:
        raise LookupError('Warehouse not found')

    if any(_related_counts(db, warehouse_id=warehouse_id).values()):
        warehouse.active = False
        db.flush()
        return {'message': 'Warehouse deactivated (has related data)', 'warehouse': serialize_warehouse(warehouse)}

    db.delete(warehouse)
    db.flush()
    return {'message': 'Warehouse deleted successfully'}
