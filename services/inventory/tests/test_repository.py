from datetime import timedelta

from sqlalchemy import update

from app.application.schemas import MovementFilters
from app.domain.models import Inventory, StockKey, utcnow
from app.infrastructure.repository import InventoryRepository

from .factories import MERCHANT, PRODUCT, make_request

def set_reorder_point(db, product_id, reorder_point, store_id=None):
    clauses = [Inventory.product_id == product_id]
    clauses.append(Inventory.store_id.is_(None) if store_id is None else Inventory.store_id == store_id)
    db.execute(update(Inventory).where(*clauses).values(reorder_point=reorder_point))
    db.commit()

def test_get_balance_matches_unscoped_key_only(make_service, db):
    make_service().adjust(make_request(3, store_id="s-1"))
    repo = InventoryRepository(db)
    assert repo.get_balance(StockKey(MERCHANT, PRODUCT)) is None
    assert repo.get_balance(StockKey(MERCHANT, PRODUCT, "s-1")).quantity == 3

def test_low_stock_lists_balances_at_or_below_reorder_point(make_service, db):
    make_service().adjust(make_request(2, product_id="low"))
    make_service().adjust(make_request(5, product_id="edge"))
    make_service().adjust(make_request(50, product_id="plenty"))
    make_service().adjust(make_request(0, product_id="untracked"))
    set_reorder_point(db, "low", 10)
    set_reorder_point(db, "edge", 5)
    set_reorder_point(db, "plenty", 10)

    items, total = InventoryRepository(db).list_low_stock(MERCHANT)
    assert total == 2
    assert {i.product_id for i in items} == {"low", "edge"}

def test_low_stock_store_filter_and_paging(make_service, db):
    for product_id in ("a", "b", "c"):
        make_service().adjust(make_request(1, product_id=product_id, store_id="s-1"))
        set_reorder_point(db, product_id, 5, store_id="s-1")
    make_service().adjust(make_request(1, product_id="d", store_id="s-2"))
    set_reorder_point(db, "d", 5, store_id="s-2")

    repo = InventoryRepository(db)
    page_one, total = repo.list_low_stock(MERCHANT, "s-1", page=1, page_size=2)
    page_two, _ = repo.list_low_stock(MERCHANT, "s-1", page=2, page_size=2)
    assert total == 3
    assert len(page_one) == 2 and len(page_two) == 1
    assert {i.product_id for i in page_one + page_two} == {"a", "b", "c"}

    everything, total = repo.list_low_stock(MERCHANT, page_size=0)
    assert total == len(everything) == 4

def test_movement_filters(make_service, db):
    make_service().adjust(make_request(10))
    make_service().adjust(make_request(-1, reference_type="sale", reference_id="o-1", movement_type="sale"))
    make_service().adjust(make_request(-2, reference_type="sale", reference_id="o-2", movement_type="sale"))
    make_service().adjust(make_request(4, product_id="p-2"))

    repo = InventoryRepository(db)
    items, total = repo.list_movements(MovementFilters(merchant_id=MERCHANT))
    assert total == len(items) == 4

    items, total = repo.list_movements(MovementFilters(merchant_id=MERCHANT, movement_type="sale"))
    assert total == 2
    assert {m.reference_id for m in items} == {"o-1", "o-2"}

    items, _ = repo.list_movements(MovementFilters(reference_type="sale", reference_id="o-2"))
    assert [m.quantity_change for m in items] == [-2]

    items, total = repo.list_movements(MovementFilters(product_id="p-2"))
    assert total == 1 and items[0].quantity_after == 4

def test_movement_date_range_and_paging(make_service, db):
    for _ in range(5):
        make_service().adjust(make_request(1))
    repo = InventoryRepository(db)

    future = utcnow() + timedelta(days=1)
    items, total = repo.list_movements(MovementFilters(start_date=future))
    assert total == 0 and items == []

    past = utcnow() - timedelta(days=1)
    items, total = repo.list_movements(MovementFilters(start_date=past, end_date=future, page=2, page_size=2))
    assert total == 5
    assert len(items) == 2
