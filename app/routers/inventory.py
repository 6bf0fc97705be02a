from __future__ import annotations

import logging
from datetime import date

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from app.auth import Principal, Role, get_current_principal, require_role, resolve_warehouse_scope
from app.db import get_db
from app.dependencies import PageParams, get_client_ip, get_page_params, paginated
from app.routers.errors import translate_service_errors
from app.schemas import RebuildRequest
from app.services.audit_service import log_audit
from app.services.balance_rebuild_service import rebuild_balances
from app.services.inventory_service import balances_as_of, ledger_balances
from app.services.ledger_service import list_cached_balances

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/api/inventory', tags=['inventory'])
admin_access = require_role(Role.ADMIN)


@router.get('/ledger-based')
def ledger_based_inventory(
    warehouse_id: int | None = None,
    sku_code: str | None = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    scope = resolve_warehouse_scope(principal, warehouse_id)
    with translate_service_errors(db, 'Failed to calculate inventory from ledger'):
        return ledger_balances(db, warehouse_id=scope, sku_code=sku_code)


@router.get('/balances')
def inventory_balances(
    as_of: date | None = Query(default=None, alias='date'),
    warehouse_id: int | None = None,
    sku_code: str | None = None,
    show_zero_stock: bool = False,
    principal: Principal = Depends(get_current_principal),
    page: PageParams = Depends(get_page_params),
    db: Session = Depends(get_db),
):
    scope = resolve_warehouse_scope(principal, warehouse_id)
    with translate_service_errors(db, 'Failed to fetch inventory balances'):
        rows = balances_as_of(
            db,
            as_of=as_of,
            warehouse_id=scope,
            sku_code=sku_code,
            show_zero_stock=show_zero_stock,
        )
    if as_of is not None:
        return {'as_of': as_of, 'data': rows}
    return paginated(rows, page)


@router.get('/balances/cached')
def cached_inventory_balances(
    warehouse_id: int | None = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    scope = resolve_warehouse_scope(principal, warehouse_id)
    with translate_service_errors(db, 'Failed to fetch cached inventory balances'):
        return {'data': list_cached_balances(db, warehouse_id=scope)}


@router.post('/rebuild')
def rebuild_inventory(
    request: Request,
    payload: RebuildRequest | None = None,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    warehouse_id = payload.warehouse_id if payload else None
    logger.info(
        'Starting inventory rebuild',
        extra={'warehouse_id': warehouse_id, 'scope': 'warehouse' if warehouse_id else 'all', 'principal_id': principal.id},
    )
    with translate_service_errors(db, 'Failed to rebuild inventory balances'):
        updated_count = rebuild_balances(db, warehouse_id=warehouse_id)
        log_audit(
            db,
            actor_principal_id=principal.id,
            action='INVENTORY_BALANCES_REBUILT',
            ip=get_client_ip(request),
            entity_type='Warehouse' if warehouse_id else None,
            entity_id=warehouse_id,
            metadata={'updated_count': updated_count},
        )
        db.commit()

    return {
        'success': True,
        'updated_count': updated_count,
        'message': f'Successfully rebuilt inventory balances. Updated {updated_count} records.',
    }
