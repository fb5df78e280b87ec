from typing import Optional, Tuple, List
from sqlalchemy import Select, select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.application.errors import BackendError
from app.application.schemas import MovementFilters
from app.domain.models import Inventory, InventoryMovement, StockKey

def _match(column, value: Optional[str]):
    # None is the unscoped key: IS NULL, never "= ''"
    return column.is_(None) if value is None else column == value

def _key_clauses(model, key: StockKey) -> list:
    return [
        model.merchant_id == key.merchant_id,
        model.product_id == key.product_id,
        _match(model.store_id, key.store_id),
        _match(model.variant_id, key.variant_id),
    ]

class InventoryRepository:
    """Ledger store: balances plus the append-only movement log."""

    def __init__(self, db: Session):
        self.db = db

    def get_balance(self, key: StockKey) -> Optional[Inventory]:
        stmt = (
            select(Inventory)
            .where(*_key_clauses(Inventory, key))
            .with_for_update()
            # identity map may hold a copy from an earlier transaction
            .execution_options(populate_existing=True)
        )
        try:
            return self.db.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise BackendError(f"failed to read balance: {exc}") from exc

    def find_movement_by_reference(
        self, key: StockKey, reference_type: Optional[str], reference_id: str
    ) -> Optional[InventoryMovement]:
        stmt = (
            select(InventoryMovement)
            .where(*_key_clauses(InventoryMovement, key))
            .where(_match(InventoryMovement.reference_type, reference_type))
            .where(InventoryMovement.reference_id == reference_id)
            .limit(1)
        )
        try:
            return self.db.execute(stmt).scalars().first()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise BackendError(f"failed to read movements: {exc}") from exc

    def apply_adjustment(self, balance: Inventory, movement: InventoryMovement) -> None:
        """Upsert ``balance`` and append ``movement`` in one transaction.

        ``balance`` is either the row loaded by get_balance (update) or a new
        transient row (insert). Nothing is written unless both succeed.
        """
        try:
            self.db.add(balance)
            self.db.add(movement)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise BackendError(f"failed to apply adjustment: {exc}") from exc

    def list_low_stock(
        self, merchant_id: str, store_id: Optional[str] = None, page: int = 1, page_size: int = 50
    ) -> Tuple[List[Inventory], int]:
        stmt = select(Inventory).where(
            Inventory.merchant_id == merchant_id,
            Inventory.available_quantity <= Inventory.reorder_point,
            Inventory.reorder_point > 0,
        )
        if store_id is not None:
            stmt = stmt.where(Inventory.store_id == store_id)
        stmt = stmt.order_by(Inventory.updated_at.desc(), Inventory.id)
        return self._paged(stmt, page, page_size)

    def list_movements(self, filters: MovementFilters) -> Tuple[List[InventoryMovement], int]:
        stmt = select(InventoryMovement)
        for field in ("merchant_id", "product_id", "store_id", "variant_id",
                      "movement_type", "reference_type", "reference_id"):
            value = getattr(filters, field)
            if value is not None:
                stmt = stmt.where(getattr(InventoryMovement, field) == value)
        if filters.start_date is not None:
            stmt = stmt.where(InventoryMovement.created_at >= filters.start_date)
        if filters.end_date is not None:
            stmt = stmt.where(InventoryMovement.created_at <= filters.end_date)
        stmt = stmt.order_by(InventoryMovement.created_at.desc(), InventoryMovement.id)
        return self._paged(stmt, filters.page, filters.page_size)

    def _paged(self, stmt: Select, page: int, page_size: int) -> Tuple[list, int]:
        count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
        if page_size > 0:
            stmt = stmt.limit(page_size).offset((max(page, 1) - 1) * page_size)
        try:
            total = self.db.execute(count_stmt).scalar_one()
            items = list(self.db.execute(stmt).scalars().all())
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise BackendError(f"failed to query inventory: {exc}") from exc
        return items, total
