import math
from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import Optional
from app.domain.models import QUANTITY_SCALE, StockKey

DEFAULT_PAGE_SIZE = 50

class AdjustmentCreate(BaseModel):
    """Body of a direct adjustment call"""
    merchant_id: str = Field(min_length=1)
    store_id: Optional[str] = None
    product_id: str = Field(min_length=1)
    variant_id: Optional[str] = None
    quantity_change: float = Field(allow_inf_nan=False)
    reason: str = ""
    reference_id: Optional[str] = None
    reference_type: Optional[str] = None

    @field_validator("store_id", "variant_id", "reference_id", "reference_type")
    @classmethod
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        # "" at the boundary means "not given"; the ledger itself never sees ""
        if value is not None and not value.strip():
            return None
        return value

    @field_validator("quantity_change")
    @classmethod
    def ledger_precision(cls, value: float) -> float:
        # the ledger stores QUANTITY_SCALE decimals; finer changes cannot be recorded exactly
        quantized = round(value, QUANTITY_SCALE)
        if not math.isclose(quantized, value, rel_tol=1e-15, abs_tol=1e-9):
            raise ValueError(f"quantity_change supports at most {QUANTITY_SCALE} decimal places")
        return quantized + 0.0

class AdjustmentRequest(AdjustmentCreate):
    """What the adjustment engine consumes, from either entry point"""
    actor_id: Optional[str] = None
    movement_type: str = "adjustment"
    # Treat a repeated (reference_type, reference_id) on the same key as a no-op
    deduplicate: bool = False

    def stock_key(self) -> StockKey:
        return StockKey(
            merchant_id=self.merchant_id,
            product_id=self.product_id,
            store_id=self.store_id,
            variant_id=self.variant_id,
        )

class InventoryRead(BaseModel):
    id: Optional[str] = None
    merchant_id: str
    store_id: Optional[str] = None
    product_id: str
    variant_id: Optional[str] = None
    quantity: float
    reserved_quantity: float
    available_quantity: float
    reorder_point: float
    reorder_quantity: float
    last_counted_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    class Config:
        from_attributes = True

class InventoryPage(BaseModel):
    items: list[InventoryRead]
    total: int

class MovementRead(BaseModel):
    id: str
    merchant_id: str
    store_id: Optional[str] = None
    product_id: str
    variant_id: Optional[str] = None
    movement_type: str
    quantity_change: float
    quantity_before: float
    quantity_after: float
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    notes: str
    created_by: Optional[str] = None
    created_at: datetime
    class Config:
        from_attributes = True

class MovementPage(BaseModel):
    items: list[MovementRead]
    total: int

class MovementFilters(BaseModel):
    merchant_id: Optional[str] = None
    product_id: Optional[str] = None
    store_id: Optional[str] = None
    variant_id: Optional[str] = None
    movement_type: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    page: int = Field(default=1, ge=1)
    # <= 0 returns everything
    page_size: int = DEFAULT_PAGE_SIZE
