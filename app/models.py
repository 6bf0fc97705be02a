from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntId = BigInteger().with_variant(Integer, 'sqlite')


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


class Base(DeclarativeBase):
    pass


class PrincipalRole(str, Enum):
    ADMIN = 'ADMIN'
    STAFF = 'STAFF'


class TransactionType(str, Enum):
    RECEIVE = 'RECEIVE'
    SHIP = 'SHIP'
    ADJUST_IN = 'ADJUST_IN'
    ADJUST_OUT = 'ADJUST_OUT'
    # Direction is carried per row: the source leg has cartons_out, the destination leg cartons_in.
    TRANSFER = 'TRANSFER'


INBOUND_TYPES = frozenset({TransactionType.RECEIVE, TransactionType.ADJUST_IN})
OUTBOUND_TYPES = frozenset({TransactionType.SHIP, TransactionType.ADJUST_OUT})


class ReconciliationStatus(str, Enum):
    IN_PROGRESS = 'IN_PROGRESS'
    COMPLETED = 'COMPLETED'
    FAILED = 'FAILED'


class DiscrepancySeverity(str, Enum):
    LOW = 'LOW'
    MEDIUM = 'MEDIUM'
    HIGH = 'HIGH'
    CRITICAL = 'CRITICAL'


class Warehouse(Base):
    __tablename__ = 'warehouses'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    code: Mapped[str] = mapped_column(String(10), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    address: Mapped[str | None] = mapped_column(Text)
    contact_email: Mapped[str | None] = mapped_column(Text)
    contact_phone: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Sku(Base):
    __tablename__ = 'skus'
    __table_args__ = (CheckConstraint('units_per_carton >= 1', name='skus_units_per_carton_check'),)

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    sku_code: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default='', server_default='')
    units_per_carton: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default='1')
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WarehouseSkuConfig(Base):
    __tablename__ = 'warehouse_sku_configs'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    warehouse_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('warehouses.id'), nullable=False)
    sku_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('skus.id'), nullable=False)
    storage_cartons_per_pallet: Mapped[int] = mapped_column(Integer, nullable=False)
    shipping_cartons_per_pallet: Mapped[int] = mapped_column(Integer, nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date)


class Principal(Base):
    __tablename__ = 'principals'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    username: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    full_name: Mapped[str | None] = mapped_column(Text)
    role: Mapped[PrincipalRole] = mapped_column(SQLEnum(PrincipalRole, name='principal_role'), nullable=False)
    warehouse_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('warehouses.id'))
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class InventoryTransaction(Base):
    __tablename__ = 'inventory_transactions'
    __table_args__ = (
        CheckConstraint('cartons_in >= 0', name='inventory_transactions_cartons_in_check'),
        CheckConstraint('cartons_out >= 0', name='inventory_transactions_cartons_out_check'),
        Index('inventory_transactions_key_idx', 'warehouse_id', 'sku_id', 'batch_lot'),
        Index('inventory_transactions_order_idx', 'transaction_date', 'created_at'),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    transaction_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    transaction_type: Mapped[TransactionType] = mapped_column(
        SQLEnum(TransactionType, name='transaction_type'), nullable=False
    )
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    warehouse_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('warehouses.id'), nullable=False)
    sku_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('skus.id'), nullable=False)
    batch_lot: Mapped[str] = mapped_column(Text, nullable=False)
    reference_id: Mapped[str | None] = mapped_column(Text)
    cartons_in: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    cartons_out: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    storage_pallets_in: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    shipping_pallets_out: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    units_per_carton: Mapped[int | None] = mapped_column(Integer)
    storage_cartons_per_pallet: Mapped[int | None] = mapped_column(Integer)
    shipping_cartons_per_pallet: Mapped[int | None] = mapped_column(Integer)
    ship_name: Mapped[str | None] = mapped_column(Text)
    tracking_number: Mapped[str | None] = mapped_column(Text)
    mode_of_transportation: Mapped[str | None] = mapped_column(Text)
    supplier: Mapped[str | None] = mapped_column(Text)
    pickup_date: Mapped[date | None] = mapped_column(Date)
    notes: Mapped[str | None] = mapped_column(Text)
    created_by_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    # Python-side default keeps sub-second creation order for same-day tie-breaks.
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class InventoryBalance(Base):
    __tablename__ = 'inventory_balances'
    __table_args__ = (
        UniqueConstraint('warehouse_id', 'sku_id', 'batch_lot', name='inventory_balances_key_uq'),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    warehouse_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('warehouses.id'), nullable=False)
    sku_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('skus.id'), nullable=False)
    batch_lot: Mapped[str] = mapped_column(Text, nullable=False)
    current_cartons: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    current_units: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    current_pallets: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    units_per_carton: Mapped[int | None] = mapped_column(Integer)
    storage_cartons_per_pallet: Mapped[int | None] = mapped_column(Integer)
    shipping_cartons_per_pallet: Mapped[int | None] = mapped_column(Integer)
    first_receive_date: Mapped[date | None] = mapped_column(Date)
    last_transaction_date: Mapped[date | None] = mapped_column(Date)
    rebuilt_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)


class ReconciliationReport(Base):
    __tablename__ = 'reconciliation_reports'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    status: Mapped[ReconciliationStatus] = mapped_column(
        SQLEnum(ReconciliationStatus, name='reconciliation_status'),
        nullable=False,
        default=ReconciliationStatus.IN_PROGRESS,
        server_default='IN_PROGRESS',
    )
    warehouse_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('warehouses.id'))
    total_keys: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    total_discrepancies: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    critical_discrepancies: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    summary: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    error_message: Mapped[str | None] = mapped_column(Text)
    created_by_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class ReconciliationDiscrepancy(Base):
    __tablename__ = 'reconciliation_discrepancies'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    report_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('reconciliation_reports.id', ondelete='CASCADE'), nullable=False
    )
    warehouse_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('warehouses.id'), nullable=False)
    sku_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('skus.id'), nullable=False)
    batch_lot: Mapped[str] = mapped_column(Text, nullable=False)
    recorded_balance: Mapped[int] = mapped_column(Integer, nullable=False)
    calculated_balance: Mapped[int] = mapped_column(Integer, nullable=False)
    difference: Mapped[int] = mapped_column(Integer, nullable=False)
    severity: Mapped[DiscrepancySeverity] = mapped_column(
        SQLEnum(DiscrepancySeverity, name='discrepancy_severity'), nullable=False
    )
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)


class AuthEvent(Base):
    __tablename__ = 'auth_events'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    attempted_username: Mapped[str] = mapped_column(Text, nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    ip: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    actor_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    action: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str | None] = mapped_column(Text)
    entity_id: Mapped[int | None] = mapped_column(BigInteger)
    ip: Mapped[str | None] = mapped_column(String(45))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WebSession(Base):
    __tablename__ = 'web_sessions'
    __table_args__ = (
        UniqueConstraint('session_token', name='web_sessions_session_token_key'),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    session_token: Mapped[str] = mapped_column(String(128), nullable=False)
    principal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id'), nullable=False)
    ip: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
