from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy import String, Numeric, DateTime, Index, UniqueConstraint, CheckConstraint
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
import json
import uuid

QUANTITY_SCALE = 4
QUANTITY = Numeric(18, QUANTITY_SCALE, asdecimal=False)

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def new_id() -> str:
    return str(uuid.uuid4())

@dataclass(frozen=True)
class StockKey:
    """Identity of one stock balance.

    ``store_id`` / ``variant_id`` set to None mean the unscoped (global) balance,
    which is a different key from any concrete store or variant, including "".
    """
    merchant_id: str
    product_id: str
    store_id: Optional[str] = None
    variant_id: Optional[str] = None

    def lock_name(self, prefix: str) -> str:
        # JSON keeps None, "" and literal values apart in the lock name
        parts = [self.merchant_id, self.product_id, self.variant_id, self.store_id]
        return f"{prefix}:{json.dumps(parts, separators=(',', ':'))}"

class Base(DeclarativeBase):
    pass

class Inventory(Base):
    __tablename__ = "inventory"
    __table_args__ = (
        UniqueConstraint(
            "merchant_id", "store_id", "product_id", "variant_id",
            name="uq_inventory_stock_key",
            postgresql_nulls_not_distinct=True,
        ),
        CheckConstraint("quantity >= 0", name="ck_inventory_quantity_nonneg"),
    )
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    merchant_id: Mapped[str] = mapped_column(String(64), index=True)
    # No FK to stores/products - catalog lives in another service
    store_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    product_id: Mapped[str] = mapped_column(String(64), index=True)
    variant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    quantity: Mapped[float] = mapped_column(QUANTITY, default=0)
    reserved_quantity: Mapped[float] = mapped_column(QUANTITY, default=0)
    reorder_point: Mapped[float] = mapped_column(QUANTITY, default=0)
    reorder_quantity: Mapped[float] = mapped_column(QUANTITY, default=0)
    last_counted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    @hybrid_property
    def available_quantity(self) -> float:
        return (self.quantity or 0) - (self.reserved_quantity or 0)

    @available_quantity.inplace.expression
    @classmethod
    def _available_quantity_expression(cls):
        return cls.quantity - cls.reserved_quantity

    @property
    def stock_key(self) -> StockKey:
        return StockKey(
            merchant_id=self.merchant_id,
            product_id=self.product_id,
            store_id=self.store_id,
            variant_id=self.variant_id,
        )

class InventoryMovement(Base):
    """Append-only audit row; one per accepted adjustment."""
    __tablename__ = "inventory_movements"
    __table_args__ = (
        Index("ix_inventory_movements_key", "merchant_id", "product_id", "store_id", "variant_id"),
        Index("ix_inventory_movements_reference", "reference_type", "reference_id"),
    )
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    merchant_id: Mapped[str] = mapped_column(String(64))
    store_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    product_id: Mapped[str] = mapped_column(String(64))
    variant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    movement_type: Mapped[str] = mapped_column(String(30))
    quantity_change: Mapped[float] = mapped_column(QUANTITY)
    quantity_before: Mapped[float] = mapped_column(QUANTITY)
    quantity_after: Mapped[float] = mapped_column(QUANTITY)
    reference_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[str] = mapped_column(String(500), default="")
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
