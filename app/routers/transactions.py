from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal, resolve_warehouse_scope
from app.db import get_db
from app.dependencies import PageParams, get_client_ip, get_page_params
from app.models import TransactionType
from app.routers.errors import translate_service_errors
from app.schemas import TransactionAttributesPatch, TransactionCreate, TransferCreate
from app.services.audit_service import audit_trail, log_audit
from app.services.transaction_service import (
    create_transactions,
    get_transaction,
    ledger_as_of,
    list_ledger,
    list_recent_transactions,
    transfer_inventory,
    update_transaction_attributes,
)

router = APIRouter(prefix='/api/transactions', tags=['transactions'])

IMMUTABLE_DETAIL = 'Inventory transactions are immutable. Post an adjustment instead.'


@router.get('')
def recent_transactions(
    warehouse_id: int | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    scope = resolve_warehouse_scope(principal, warehouse_id)
    with translate_service_errors(db, 'Failed to fetch transactions'):
        return {'transactions': list_recent_transactions(db, limit=limit, warehouse_id=scope)}


@router.post('', status_code=status.HTTP_201_CREATED)
def create_transaction(
    request: Request,
    payload: TransactionCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    with translate_service_errors(db, 'Failed to create transaction'):
        created = create_transactions(db, principal=principal, payload=payload, ip=get_client_ip(request))
        db.commit()

    return {
        'success': True,
        'message': f'{len(created)} transactions created',
        'transaction_ids': [txn.transaction_id for txn in created],
    }


@router.post('/transfer', status_code=status.HTTP_201_CREATED)
def create_transfer(
    request: Request,
    payload: TransferCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    with translate_service_errors(db, 'Failed to transfer inventory'):
        outbound, inbound = transfer_inventory(db, principal=principal, payload=payload, ip=get_client_ip(request))
        db.commit()

    return {
        'success': True,
        'message': f'Transferred {outbound.cartons_out} cartons',
        'reference_id': outbound.reference_id,
        'transaction_ids': [outbound.transaction_id, inbound.transaction_id],
    }


@router.get('/ledger')
def transaction_ledger(
    as_of: date | None = Query(default=None, alias='date'),
    warehouse_id: int | None = None,
    transaction_type: TransactionType | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    principal: Principal = Depends(get_current_principal),
    page: PageParams = Depends(get_page_params),
    db: Session = Depends(get_db),
):
    scope = resolve_warehouse_scope(principal, warehouse_id)
    with translate_service_errors(db, 'Failed to fetch ledger'):
        if as_of is not None:
            result = ledger_as_of(db, as_of=as_of, warehouse_id=scope, transaction_type=transaction_type)
            result['as_of'] = as_of
            return result
        result = list_ledger(
            db,
            warehouse_id=scope,
            transaction_type=transaction_type,
            start_date=start_date,
            end_date=end_date,
            limit=page.limit,
            offset=page.offset,
        )
    result['pagination'] = {'page': page.page, 'limit': page.limit}
    return result


@router.get('/{transaction_pk}')
def transaction_detail(
    transaction_pk: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    scope = resolve_warehouse_scope(principal, None)
    with translate_service_errors(db, 'Failed to fetch transaction'):
        detail = get_transaction(db, transaction_pk=transaction_pk, warehouse_id=scope)
        detail['audit_trail'] = audit_trail(db, entity_type='InventoryTransaction', entity_id=transaction_pk)
        return detail


@router.patch('/{transaction_pk}/attributes')
def patch_transaction_attributes(
    request: Request,
    transaction_pk: int,
    payload: TransactionAttributesPatch,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    scope = resolve_warehouse_scope(principal, None)
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail='No attributes to update')

    with translate_service_errors(db, 'Failed to update transaction'):
        # Scoped lookup first so staff get a 404 for other warehouses.
        get_transaction(db, transaction_pk=transaction_pk, warehouse_id=scope)
        txn = update_transaction_attributes(db, transaction_pk=transaction_pk, changes=changes)
        log_audit(
            db,
            actor_principal_id=principal.id,
            action='INVENTORY_TRANSACTION_UPDATED',
            ip=get_client_ip(request),
            entity_type='InventoryTransaction',
            entity_id=txn.id,
            metadata={'transaction_id': txn.transaction_id, 'changes': sorted(changes)},
        )
        db.commit()
        return get_transaction(db, transaction_pk=transaction_pk)


@router.put('/{transaction_pk}')
@router.delete('/{transaction_pk}')
def reject_transaction_mutation(transaction_pk: int, principal: Principal = Depends(get_current_principal)):
    raise HTTPException(status_code=status.HTTP_405_METHOD_NOT_ALLOWED, detail=IMMUTABLE_DETAIL)
