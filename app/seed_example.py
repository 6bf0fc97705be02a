from datetime import date, timedelta

from sqlalchemy import select

from app.db import SessionLocal
from app.models import (
    InventoryTransaction,
    Principal,
    PrincipalRole,
    Sku,
    TransactionType,
    Warehouse,
    WarehouseSkuConfig,
)
from app.security.passwords import hash_password
from app.services.balance_rebuild_service import rebuild_balances


def _get_or_create_warehouse(db, *, code: str, name: str) -> Warehouse:
    warehouse = db.execute(select(Warehouse).where(Warehouse.code == code)).scalar_one_or_none()
    if not warehouse:
        warehouse = Warehouse(code=code, name=name, active=True)
        db.add(warehouse)
        db.flush()
    return warehouse


def _get_or_create_sku(db, *, sku_code: str, description: str, units_per_carton: int) -> Sku:
    sku = db.execute(select(Sku).where(Sku.sku_code == sku_code)).scalar_one_or_none()
    if not sku:
        sku = Sku(sku_code=sku_code, description=description, units_per_carton=units_per_carton, active=True)
        db.add(sku)
        db.flush()
    return sku


def seed() -> None:
    with SessionLocal() as db:
        main_wh = _get_or_create_warehouse(db, code='FMC', name='Main Warehouse')
        _get_or_create_warehouse(db, code='AMZN', name='Amazon FBA')

        bags = _get_or_create_sku(db, sku_code='CS-007', description='Drop cloth 12x9', units_per_carton=60)
        sheets = _get_or_create_sku(db, sku_code='CS-010', description='Plastic sheeting 9x12', units_per_carton=24)

        start = date.today() - timedelta(days=14)
        for sku, storage_cpp, shipping_cpp in ((bags, 48, 40), (sheets, 36, 30)):
            config = db.execute(
                select(WarehouseSkuConfig).where(
                    WarehouseSkuConfig.warehouse_id == main_wh.id,
                    WarehouseSkuConfig.sku_id == sku.id,
                )
            ).scalar_one_or_none()
            if not config:
                db.add(
                    WarehouseSkuConfig(
                        warehouse_id=main_wh.id,
                        sku_id=sku.id,
                        storage_cartons_per_pallet=storage_cpp,
                        shipping_cartons_per_pallet=shipping_cpp,
                        effective_date=start,
                    )
                )

        admin = db.execute(select(Principal).where(Principal.username == 'admin')).scalar_one_or_none()
        if not admin:
            admin = Principal(
                username='admin',
                password_hash=hash_password('adminpass'),
                full_name='Warehouse Admin',
                role=PrincipalRole.ADMIN,
                warehouse_id=None,
                active=True,
            )
            db.add(admin)

        staff = db.execute(select(Principal).where(Principal.username == 'staff1')).scalar_one_or_none()
        if not staff:
            db.add(
                Principal(
                    username='staff1',
                    password_hash=hash_password('staffpass'),
                    full_name='Floor Staff',
                    role=PrincipalRole.STAFF,
                    warehouse_id=main_wh.id,
                    active=True,
                )
            )
        db.flush()

        has_ledger = db.execute(select(InventoryTransaction.id).limit(1)).first()
        if not has_ledger:
            stamp = start.strftime('%Y%m%d')
            db.add_all(
                [
                    InventoryTransaction(
                        transaction_id=f'FMC-REC-{stamp}-001',
                        transaction_type=TransactionType.RECEIVE,
                        transaction_date=start,
                        warehouse_id=main_wh.id,
                        sku_id=bags.id,
                        batch_lot='B1',
                        reference_id='PO-1001',
                        cartons_in=96,
                        storage_pallets_in=2,
                        units_per_carton=bags.units_per_carton,
                        storage_cartons_per_pallet=48,
                        shipping_cartons_per_pallet=40,
                        pickup_date=start,
                        created_by_principal_id=admin.id,
                    ),
                    InventoryTransaction(
                        transaction_id=f'FMC-REC-{stamp}-002',
                        transaction_type=TransactionType.RECEIVE,
                        transaction_date=start,
                        warehouse_id=main_wh.id,
                        sku_id=sheets.id,
                        batch_lot='B7',
                        reference_id='PO-1001',
                        cartons_in=72,
                        storage_pallets_in=2,
                        units_per_carton=sheets.units_per_carton,
                        storage_cartons_per_pallet=36,
                        shipping_cartons_per_pallet=30,
                        pickup_date=start,
                        created_by_principal_id=admin.id,
                    ),
                    InventoryTransaction(
                        transaction_id=f'FMC-SHI-{(start + timedelta(days=3)).strftime("%Y%m%d")}-001',
                        transaction_type=TransactionType.SHIP,
                        transaction_date=start + timedelta(days=3),
                        warehouse_id=main_wh.id,
                        sku_id=bags.id,
                        batch_lot='B1',
                        reference_id='SO-2001',
                        cartons_out=40,
                        shipping_pallets_out=1,
                        units_per_carton=bags.units_per_carton,
                        shipping_cartons_per_pallet=40,
                        mode_of_transportation='LTL',
                        pickup_date=start + timedelta(days=3),
                        created_by_principal_id=admin.id,
                    ),
                ]
            )
            db.flush()

        rebuild_balances(db)
        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
