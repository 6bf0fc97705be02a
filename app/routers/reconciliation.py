from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from app.auth import Principal, Role, get_current_principal, require_role, resolve_warehouse_scope
from app.db import get_db
from app.dependencies import PageParams, get_client_ip, get_page_params
from app.models import DiscrepancySeverity
from app.routers.errors import translate_service_errors
from app.schemas import ReconciliationRunRequest
from app.services.audit_service import log_audit
from app.services.reconciliation_service import (
    get_report,
    list_discrepancies,
    list_recent_reports,
    run_inventory_reconciliation,
    serialize_report,
)

router = APIRouter(prefix='/api/reconciliation', tags=['reconciliation'])
admin_access = require_role(Role.ADMIN)


@router.get('/inventory')
def reconciliation_reports(
    report_id: int | None = Query(default=None, alias='reportId'),
    warehouse_id: int | None = Query(default=None, alias='warehouseId'),
    principal: Principal = Depends(get_current_principal),
    page: PageParams = Depends(get_page_params),
    db: Session = Depends(get_db),
):
    scope = resolve_warehouse_scope(principal, warehouse_id)
    with translate_service_errors(db, 'Failed to fetch reconciliation reports'):
        if report_id is not None:
            return get_report(db, report_id=report_id, warehouse_id=scope, limit=page.limit, offset=page.offset)
        return {'reports': list_recent_reports(db, warehouse_id=scope)}


@router.post('/inventory')
def run_reconciliation(
    request: Request,
    payload: ReconciliationRunRequest | None = None,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    warehouse_id = payload.warehouse_id if payload else None
    with translate_service_errors(db, 'Failed to run reconciliation'):
        report = run_inventory_reconciliation(db, principal_id=principal.id, warehouse_id=warehouse_id)
        log_audit(
            db,
            actor_principal_id=principal.id,
            action='INVENTORY_RECONCILIATION_RUN',
            ip=get_client_ip(request),
            entity_type='ReconciliationReport',
            entity_id=report.id,
            metadata={
                'total_discrepancies': report.total_discrepancies,
                'critical_discrepancies': report.critical_discrepancies,
            },
        )
        db.commit()
        return {'success': True, 'report': serialize_report(report)}


@router.get('/inventory/discrepancies')
def reconciliation_discrepancies(
    report_id: int | None = Query(default=None, alias='reportId'),
    warehouse_id: int | None = None,
    severity: DiscrepancySeverity | None = None,
    principal: Principal = Depends(get_current_principal),
    page: PageParams = Depends(get_page_params),
    db: Session = Depends(get_db),
):
    scope = resolve_warehouse_scope(principal, warehouse_id)
    with translate_service_errors(db, 'Failed to fetch discrepancies'):
        return list_discrepancies(
            db,
            report_id=report_id,
            warehouse_id=scope,
            severity=severity,
            limit=page.limit,
            offset=page.offset,
        )
