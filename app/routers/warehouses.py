from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.auth import Principal, Role, get_current_principal, require_role
from app.db import get_db
from app.dependencies import get_client_ip
from app.routers.errors import translate_service_errors
from app.schemas import WarehouseCreate, WarehouseUpdate
from app.services.audit_service import log_audit
from app.services.warehouse_service import (
    create_warehouse,
    delete_warehouse,
    list_warehouses,
    serialize_warehouse,
    update_warehouse,
)

router = APIRouter(prefix='/api/warehouses', tags=['warehouses'])
writer_access = require_role(Role.ADMIN, Role.STAFF)
admin_access = require_role(Role.ADMIN)


@router.get('')
def warehouses(
    include_inactive: bool = False,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    with translate_service_errors(db, 'Failed to fetch warehouses'):
        return {'warehouses': list_warehouses(db, include_inactive=include_inactive)}


@router.post('', status_code=status.HTTP_201_CREATED)
def add_warehouse(
    request: Request,
    payload: WarehouseCreate,
    principal: Principal = Depends(writer_access),
    db: Session = Depends(get_db),
):
    with translate_service_errors(db, 'Failed to create warehouse'):
        warehouse = create_warehouse(db, payload=payload)
        log_audit(
            db,
            actor_principal_id=principal.id,
            action='WAREHOUSE_CREATED',
            ip=get_client_ip(request),
            entity_type='Warehouse',
            entity_id=warehouse.id,
            metadata={'code': warehouse.code},
        )
        db.commit()
        return serialize_warehouse(warehouse)


@router.patch('/{warehouse_id}')
def edit_warehouse(
    request: Request,
    warehouse_id: int,
    payload: WarehouseUpdate,
    principal: Principal = Depends(writer_access),
    db: Session = Depends(get_db),
):
    with translate_service_errors(db, 'Failed to update warehouse'):
        warehouse = update_warehouse(db, warehouse_id=warehouse_id, payload=payload)
        log_audit(
            db,
            actor_principal_id=principal.id,
            action='WAREHOUSE_UPDATED',
            ip=get_client_ip(request),
            entity_type='Warehouse',
            entity_id=warehouse.id,
            metadata={'changes': sorted(payload.model_dump(exclude_unset=True))},
        )
        db.commit()
        return serialize_warehouse(warehouse)


@router.delete('/{warehouse_id}')
def remove_warehouse(
    request: Request,
    warehouse_id: int,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    with translate_service_errors(db, 'Failed to delete warehouse'):
        result = delete_warehouse(db, warehouse_id=warehouse_id)
        log_audit(
            db,
            actor_principal_id=principal.id,
            action='WAREHOUSE_DEACTIVATED' if 'warehouse' in result else 'WAREHOUSE_DELETED',
            ip=get_client_ip(request),
            entity_type='Warehouse',
            entity_id=warehouse_id,
        )
        db.commit()
        return result
