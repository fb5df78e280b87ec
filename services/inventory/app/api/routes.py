from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session
from app.infrastructure.db import get_db
from app.infrastructure.locks import get_lock_coordinator
from app.infrastructure.publisher import get_publisher
from app.core_settings import get_settings
from app.application.errors import BackendError, ContentionError, InsufficientInventoryError, ValidationError
from app.application.service import InventoryService
from app.application.schemas import (
    AdjustmentCreate,
    AdjustmentRequest,
    InventoryPage,
    InventoryRead,
    MovementFilters,
    MovementPage,
    MovementRead,
    DEFAULT_PAGE_SIZE,
)
from app.domain.models import StockKey

router = APIRouter(prefix="/inventory", tags=["inventory"])

def get_inventory_service(
    db: Session = Depends(get_db),
    locks=Depends(get_lock_coordinator),
    publisher=Depends(get_publisher),
) -> InventoryService:
    return InventoryService(db, locks, publisher, lock_prefix=get_settings().LOCK_PREFIX)

def _blank(value: Optional[str]) -> Optional[str]:
    return value if value else None

@router.post("/adjustments", response_model=InventoryRead)
def adjust_inventory(
    payload: AdjustmentCreate,
    x_user_id: Optional[str] = Header(default=None),
    service: InventoryService = Depends(get_inventory_service),
):
    request = AdjustmentRequest(
        **payload.model_dump(exclude={"reference_type"}),
        reference_type=payload.reference_type or "manual",
        actor_id=x_user_id,
    )
    try:
        return service.adjust(request)
    except ContentionError as exc:
        raise HTTPException(status_code=503, detail=str(exc), headers={"Retry-After": "1"})
    except InsufficientInventoryError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except BackendError as exc:
        raise HTTPException(status_code=502, detail=str(exc))

@router.get("/balance", response_model=InventoryRead)
def get_balance(
    merchant_id: str,
    product_id: str,
    store_id: Optional[str] = None,
    variant_id: Optional[str] = None,
    service: InventoryService = Depends(get_inventory_service),
):
    key = StockKey(merchant_id, product_id, _blank(store_id), _blank(variant_id))
    try:
        return service.get_product_inventory(key)
    except BackendError as exc:
        raise HTTPException(status_code=502, detail=str(exc))

@router.get("/low-stock", response_model=InventoryPage)
def list_low_stock(
    merchant_id: str,
    store_id: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=DEFAULT_PAGE_SIZE),
    service: InventoryService = Depends(get_inventory_service),
):
    try:
        items, total = service.list_low_stock(merchant_id, _blank(store_id), page, page_size)
    except BackendError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return InventoryPage(items=[InventoryRead.model_validate(i) for i in items], total=total)

@router.get("/movements", response_model=MovementPage)
def list_movements(
    merchant_id: str,
    product_id: Optional[str] = None,
    store_id: Optional[str] = None,
    variant_id: Optional[str] = None,
    movement_type: Optional[str] = None,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=DEFAULT_PAGE_SIZE),
    service: InventoryService = Depends(get_inventory_service),
):
    filters = MovementFilters(
        merchant_id=merchant_id,
        product_id=_blank(product_id),
        store_id=_blank(store_id),
        variant_id=_blank(variant_id),
        movement_type=_blank(movement_type),
        reference_type=_blank(reference_type),
        reference_id=_blank(reference_id),
        start_date=start_date,
        end_date=end_date,
        page=page,
        page_size=page_size,
    )
    try:
        items, total = service.list_movements(filters)
    except BackendError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return MovementPage(items=[MovementRead.model_validate(m) for m in items], total=total)
