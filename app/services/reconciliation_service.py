from __future__ import annotations

import logging
from collections import Counter, defaultdict
from datetime import datetime, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.models import (
    DiscrepancySeverity,
    InventoryBalance,
    ReconciliationDiscrepancy,
    ReconciliationReport,
    ReconciliationStatus,
    Sku,
    Warehouse,
)
from app.services.balance_aggregator import LedgerEntry, aggregate_balances
from app.services.errors import ConflictError
from app.services.ledger_service import load_ledger_entries

logger = logging.getLogger(__name__)

HISTORY_TAIL = 10


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def severity_for(amount: int) -> DiscrepancySeverity:
    magnitude = abs(amount)
    if magnitude > 100:
        return DiscrepancySeverity.CRITICAL
    if magnitude > 50:
        return DiscrepancySeverity.HIGH
    if magnitude > 10:
        return DiscrepancySeverity.MEDIUM
    return DiscrepancySeverity.LOW


def _history_by_key(entries: list[LedgerEntry]) -> dict[tuple[int, int, str], list[dict]]:
    history: dict[tuple[int, int, str], list[dict]] = defaultdict(list)
    for entry in entries:
        history[entry.key].append(
            {
                'transaction_id': entry.transaction_id,
                'type': entry.transaction_type.value,
                'cartons': entry.net_cartons,
                'date': entry.transaction_date.isoformat(),
            }
        )
    return history


def find_discrepancies(db: Session, *, warehouse_id: int | None = None) -> tuple[int, list[dict]]:
    """
    Compare cached balances against the ledger fold.

    A key is reported when the cache disagrees with the ledger, or when the ledger itself
    is negative. Returns (number of keys checked, discrepancy dicts).
    """
    entries = load_ledger_entries(db, warehouse_id=warehouse_id)
    calculated = {row.key: row for row in aggregate_balances(entries)}
    history = _history_by_key(entries)

    cache_query = select(InventoryBalance)
    if warehouse_id is not None:
        cache_query = cache_query.where(InventoryBalance.warehouse_id == warehouse_id)
    recorded = {
        (balance.warehouse_id, balance.sku_id, balance.batch_lot): balance.current_cartons
        for balance in db.execute(cache_query).scalars().all()
    }

    keys = set(calculated) | set(recorded)
    discrepancies: list[dict] = []
    for key in sorted(keys, key=lambda k: (k[0], k[1], k[2])):
        row = calculated.get(key)
        calculated_balance = row.current_cartons if row else 0
        recorded_balance = recorded.get(key, 0)
        difference = calculated_balance - recorded_balance
        if difference == 0 and calculated_balance >= 0:
            continue

        severity = severity_for(difference if difference != 0 else calculated_balance)
        discrepancies.append(
            {
                'warehouse_id': key[0],
                'sku_id': key[1],
                'batch_lot': key[2],
                'recorded_balance': recorded_balance,
                'calculated_balance': calculated_balance,
                'difference': difference,
                'severity': severity,
                'details': {
                    'last_transaction_date': (
                        row.last_transaction_date.isoformat() if row and row.last_transaction_date else None
                    ),
                    'negative_balance': calculated_balance < 0,
                    'missing_from_cache': key not in recorded,
                    'transaction_history': history.get(key, [])[-HISTORY_TAIL:],
                },
            }
        )
    return len(keys), discrepancies


def _summary_statistics(db: Session, discrepancies: list[dict], total_keys: int) -> dict:
    by_severity = Counter(d['severity'].value for d in discrepancies)
    warehouse_names = dict(db.execute(select(Warehouse.id, Warehouse.name)).all())
    by_warehouse = Counter(warehouse_names.get(d['warehouse_id'], 'Unknown') for d in discrepancies)
    return {
        'total_keys': total_keys,
        'total_warehouses': len({d['warehouse_id'] for d in discrepancies}),
        'total_skus': len({d['sku_id'] for d in discrepancies}),
        'total_discrepancies': len(discrepancies),
        'critical_discrepancies': by_severity.get(DiscrepancySeverity.CRITICAL.value, 0),
        'discrepancies_by_severity': dict(by_severity),
        'discrepancies_by_warehouse': dict(by_warehouse),
        'total_cartons_recorded': sum(d['recorded_balance'] for d in discrepancies),
        'total_cartons_calculated': sum(d['calculated_balance'] for d in discrepancies),
        'absolute_difference': sum(abs(d['difference']) for d in discrepancies),
    }


def run_inventory_reconciliation(
    db: Session,
    *,
    principal_id: int | None,
    warehouse_id: int | None = None,
) -> ReconciliationReport:
    """
    Scan every key and persist a report.

    The IN_PROGRESS report is committed before the scan so other requests see it. On
    failure the scan is rolled back and the report is committed again as FAILED. On
    success the COMPLETED report is flushed and left for the caller to commit.
    """
    in_progress = db.execute(
        select(func.count(ReconciliationReport.id)).where(
            ReconciliationReport.status == ReconciliationStatus.IN_PROGRESS
        )
    ).scalar_one()
    if in_progress:
        raise ConflictError('A reconciliation is already in progress')

    report = ReconciliationReport(
        status=ReconciliationStatus.IN_PROGRESS,
        warehouse_id=warehouse_id,
        created_by_principal_id=principal_id,
        summary={},
    )
    db.add(report)
    db.commit()
    report_id = report.id

    try:
        total_keys, discrepancies = find_discrepancies(db, warehouse_id=warehouse_id)
        summary = _summary_statistics(db, discrepancies, total_keys)
        for item in discrepancies:
            db.add(ReconciliationDiscrepancy(report_id=report_id, **item))
    except Exception as exc:
        db.rollback()
        failed = db.get(ReconciliationReport, report_id)
        failed.status = ReconciliationStatus.FAILED
        failed.error_message = str(exc)
        failed.completed_at = _now()
        db.commit()
        logger.exception('Inventory reconciliation failed', extra={'report_id': report_id})
        raise

    report.status = ReconciliationStatus.COMPLETED
    report.total_keys = total_keys
    report.total_discrepancies = summary['total_discrepancies']
    report.critical_discrepancies = summary['critical_discrepancies']
    report.summary = summary
    report.completed_at = _now()
    db.flush()

    if report.critical_discrepancies:
        logger.warning(
            'Reconciliation found critical discrepancies',
            extra={'report_id': report.id, 'critical_discrepancies': report.critical_discrepancies},
        )
    logger.info(
        'Inventory reconciliation completed',
        extra={'report_id': report.id, 'total_keys': total_keys, 'total_discrepancies': len(discrepancies)},
    )
    return report


def serialize_report(report: ReconciliationReport) -> dict:
    return {
        'id': report.id,
        'status': report.status.value,
        'warehouse_id': report.warehouse_id,
        'total_keys': report.total_keys,
        'total_discrepancies': report.total_discrepancies,
        'critical_discrepancies': report.critical_discrepancies,
        'summary': report.summary,
        'error_message': report.error_message,
        'created_by_principal_id': report.created_by_principal_id,
        'started_at': report.started_at,
        'completed_at': report.completed_at,
    }


def _severity_counts(db: Session, filters: list) -> dict[str, int]:
    rows = db.execute(
        select(ReconciliationDiscrepancy.severity, func.count(ReconciliationDiscrepancy.id))
        .where(*filters)
        .group_by(ReconciliationDiscrepancy.severity)
    ).all()
    return {(key.value if hasattr(key, 'value') else key): count for key, count in rows}


def _serialize_for_scope(db: Session, report: ReconciliationReport, warehouse_id: int | None) -> dict:
    data = serialize_report(report)
    if warehouse_id is None or report.warehouse_id is not None:
        return data

    # All-warehouse report read by a scoped caller: only that warehouse's share is visible.
    by_severity = _severity_counts(
        db,
        [ReconciliationDiscrepancy.report_id == report.id, ReconciliationDiscrepancy.warehouse_id == warehouse_id],
    )
    total = sum(by_severity.values())
    data.update(
        total_keys=None,
        total_discrepancies=total,
        critical_discrepancies=by_severity.get(DiscrepancySeverity.CRITICAL.value, 0),
        summary={'total_discrepancies': total, 'discrepancies_by_severity': by_severity},
    )
    return data


def _report_scope_filter(warehouse_id: int | None) -> list:
    if warehouse_id is None:
        return []
    return [
        or_(ReconciliationReport.warehouse_id == warehouse_id, ReconciliationReport.warehouse_id.is_(None))
    ]


def get_report(
    db: Session,
    *,
    report_id: int,
    warehouse_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    report = db.execute(
        select(ReconciliationReport).where(
            ReconciliationReport.id == report_id, *_report_scope_filter(warehouse_id)
        )
    ).scalar_one_or_none()
    if not report:
        raise LookupError('Report not found')

    detail = _serialize_for_scope(db, report, warehouse_id)
    page = list_discrepancies(db, report_id=report_id, warehouse_id=warehouse_id, limit=limit, offset=offset)
    detail['discrepancies'] = page['discrepancies']
    detail['pagination'] = page['pagination']
    return detail


def list_recent_reports(db: Session, *, limit: int = 10, warehouse_id: int | None = None) -> list[dict]:
    reports = db.execute(
        select(ReconciliationReport)
        .where(*_report_scope_filter(warehouse_id))
        .order_by(ReconciliationReport.started_at.desc(), ReconciliationReport.id.desc())
        .limit(limit)
    ).scalars().all()
    return [_serialize_for_scope(db, report, warehouse_id) for report in reports]


def list_discrepancies(
    db: Session,
    *,
    report_id: int | None = None,
    warehouse_id: int | None = None,
    severity: DiscrepancySeverity | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    filters = []
    if report_id is not None:
        filters.append(ReconciliationDiscrepancy.report_id == report_id)
    if warehouse_id is not None:
        filters.append(ReconciliationDiscrepancy.warehouse_id == warehouse_id)
    if severity is not None:
        filters.append(ReconciliationDiscrepancy.severity == severity)

    total = db.execute(select(func.count(ReconciliationDiscrepancy.id)).where(*filters)).scalar_one()
    rows = db.execute(
        select(ReconciliationDiscrepancy, Warehouse.code, Sku.sku_code)
        .join(Warehouse, Warehouse.id == ReconciliationDiscrepancy.warehouse_id)
        .join(Sku, Sku.id == ReconciliationDiscrepancy.sku_id)
        .where(*filters)
        .order_by(func.abs(ReconciliationDiscrepancy.difference).desc(), ReconciliationDiscrepancy.id.asc())
        .limit(limit)
        .offset(offset)
    ).all()

    return {
        'discrepancies': [
            {
                'id': item.id,
                'report_id': item.report_id,
                'warehouse_id': item.warehouse_id,
                'warehouse_code': warehouse_code,
                'sku_id': item.sku_id,
                'sku_code': sku_code,
                'batch_lot': item.batch_lot,
                'recorded_balance': item.recorded_balance,
                'calculated_balance': item.calculated_balance,
                'difference': item.difference,
                'severity': item.severity.value,
                'details': item.details,
            }
            for item, warehouse_code, sku_code in rows
        ],
        'pagination': {'total': total, 'limit': limit, 'offset': offset, 'has_next': offset + limit < total},
        'summary': {'total': total, 'by_severity': _severity_counts(db, filters)},
    }
