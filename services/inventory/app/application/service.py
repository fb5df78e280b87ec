from contextlib import contextmanager
from typing import Callable, Iterator, Optional, Protocol, Tuple, List
from sqlalchemy.orm import Session
from app.domain.models import Inventory, InventoryMovement, StockKey, QUANTITY_SCALE, new_id, utcnow
from app.infrastructure.repository import InventoryRepository
from .errors import InsufficientInventoryError
from .schemas import AdjustmentRequest, MovementFilters
from shared.core import get_logger

logger = get_logger(__name__)

SYSTEM_ACTOR = "system"
ANONYMOUS_ACTORS = {"", "unknown"}

class LockCoordinator(Protocol):
    def lease(self, key: str): ...

class AdjustmentListener(Protocol):
    def submit(self, balance: Inventory, movement: InventoryMovement) -> None: ...

def zero_balance(key: StockKey) -> Inventory:
    """Transient all-zero balance for a key that has never been adjusted"""
    return Inventory(
        id=None,
        merchant_id=key.merchant_id,
        store_id=key.store_id,
        product_id=key.product_id,
        variant_id=key.variant_id,
        quantity=0.0,
        reserved_quantity=0.0,
        reorder_point=0.0,
        reorder_quantity=0.0,
        last_counted_at=None,
        updated_at=None,
    )

class InventoryService:
    """Adjustment engine and read side of the stock ledger.

    Every mutation goes through ``adjust``: lease on the stock key, read,
    validate, one atomic ledger write, release.
    """

    def __init__(
        self,
        db: Session,
        locks: LockCoordinator,
        publisher: Optional[AdjustmentListener] = None,
        lock_prefix: str = "lock:inventory",
    ):
        self.db = db
        self.repo = InventoryRepository(db)
        self.locks = locks
        self.publisher = publisher
        self.lock_prefix = lock_prefix

    def get_product_inventory(self, key: StockKey) -> Inventory:
        return self.repo.get_balance(key) or zero_balance(key)

    def list_low_stock(
        self, merchant_id: str, store_id: Optional[str] = None, page: int = 1, page_size: int = 50
    ) -> Tuple[List[Inventory], int]:
        return self.repo.list_low_stock(merchant_id, store_id, page, page_size)

    def list_movements(self, filters: MovementFilters) -> Tuple[List[InventoryMovement], int]:
        return self.repo.list_movements(filters)

    def adjust(self, request: AdjustmentRequest) -> Inventory:
        key = request.stock_key()
        lock_name = key.lock_name(self.lock_prefix)
        log_fields = {
            'merchant_id': key.merchant_id,
            'store_id': key.store_id,
            'product_id': key.product_id,
            'variant_id': key.variant_id,
            'quantity_change': request.quantity_change,
            'reference_type': request.reference_type,
            'reference_id': request.reference_id,
        }

        with self.locks.lease(lock_name):
            balance = self.repo.get_balance(key)

            if request.deduplicate and request.reference_id:
                prior = self.repo.find_movement_by_reference(key, request.reference_type, request.reference_id)
                if prior is not None:
                    self.db.commit()  # end the read transaction
                    logger.info(
                        "Duplicate adjustment ignored",
                        extra={'extra_fields': {**log_fields, 'movement_id': prior.id}}
                    )
                    return balance or zero_balance(key)

            quantity_before = balance.quantity if balance is not None else 0.0
            quantity_after = round(quantity_before + request.quantity_change, QUANTITY_SCALE)
            if quantity_after < 0:
                self.db.rollback()
                logger.warning(
                    "Adjustment rejected: insufficient inventory",
                    extra={'extra_fields': {**log_fields, 'quantity_before': quantity_before}}
                )
                raise InsufficientInventoryError(quantity_before, request.quantity_change)

            now = utcnow()
            if balance is None:
                balance = zero_balance(key)
                balance.id = new_id()
            balance.quantity = quantity_after
            balance.updated_at = now

            created_by = request.actor_id
            if created_by is not None and created_by.strip() in ANONYMOUS_ACTORS:
                created_by = None

            movement = InventoryMovement(
                id=new_id(),
                merchant_id=key.merchant_id,
                store_id=key.store_id,
                product_id=key.product_id,
                variant_id=key.variant_id,
                movement_type=request.movement_type,
                quantity_change=request.quantity_change,
                quantity_before=quantity_before,
                quantity_after=quantity_after,
                reference_type=request.reference_type,
                reference_id=request.reference_id,
                notes=request.reason,
                created_by=created_by,
                created_at=now,
            )
            self.repo.apply_adjustment(balance, movement)

            # still under the lease so per-key notifications keep commit order
            if self.publisher is not None:
                self.publisher.submit(balance, movement)

        logger.info(
            "Inventory adjusted",
            extra={'extra_fields': {**log_fields, 'quantity_before': quantity_before, 'quantity_after': quantity_after}}
        )
        return balance

@contextmanager
def service_scope(
    session_factory: Callable[[], Session],
    locks: LockCoordinator,
    publisher: Optional[AdjustmentListener] = None,
    lock_prefix: str = "lock:inventory",
) -> Iterator[InventoryService]:
    """Service bound to a fresh session, closed on exit"""
    db = session_factory()
    try:
        yield InventoryService(db, locks, publisher, lock_prefix)
    finally:
        db.close()
