from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field

from app.models import TransactionType


class LoginRequest(BaseModel):
    username: str
    password: str


class TransactionItemIn(BaseModel):
    sku_code: str
    batch_lot: str
    cartons: int
    pallets: int | None = None
    units_per_carton: int | None = Field(default=None, ge=1)
    storage_cartons_per_pallet: int | None = Field(default=None, ge=1)
    shipping_cartons_per_pallet: int | None = Field(default=None, ge=1)


class TransactionCreate(BaseModel):
    transaction_type: TransactionType
    reference_number: str
    transaction_date: date
    warehouse_id: int | None = None
    items: list[TransactionItemIn] = Field(default_factory=list)
    pickup_date: date | None = None
    ship_name: str | None = None
    tracking_number: str | None = None
    mode_of_transportation: str | None = None
    supplier: str | None = None
    notes: str | None = None


class TransferCreate(BaseModel):
    from_warehouse_id: int | None = None
    to_warehouse_id: int
    sku_code: str
    batch_lot: str
    cartons: int
    transaction_date: date
    reference_number: str | None = None
    notes: str | None = None


class TransactionAttributesPatch(BaseModel):
    ship_name: str | None = None
    tracking_number: str | None = None
    mode_of_transportation: str | None = None
    pickup_date: date | None = None
    supplier: str | None = None


class RebuildRequest(BaseModel):
    warehouse_id: int | None = None


class ReconciliationRunRequest(BaseModel):
    warehouse_id: int | None = None


class WarehouseCreate(BaseModel):
    code: str = Field(min_length=1, max_length=10)
    name: str = Field(min_length=1)
    address: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    active: bool = True


class WarehouseUpdate(BaseModel):
    code: str | None = Field(default=None, min_length=1, max_length=10)
    name: str | None = Field(default=None, min_length=1)
    address: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    active: bool | None = None
