import json

import redis

from app.domain.models import StockKey
from app.infrastructure.publisher import StockEventPublisher

from .factories import MERCHANT, PRODUCT, make_request

STREAM = "inventory.events"

class BrokenRedis:
    def __init__(self):
        self.calls = 0

    def xadd(self, *args, **kwargs):
        self.calls += 1
        raise redis.ConnectionError("connection refused")

def test_adjustment_published_to_stream(make_service, redis_client):
    publisher = StockEventPublisher(redis_client, STREAM, backoff_seconds=0)
    try:
        make_service(publisher=publisher).adjust(make_request(6, reference_id="po-1", reference_type="purchase"))
    finally:
        publisher.close()

    [(_, fields)] = redis_client.xrange(STREAM)
    event = json.loads(fields["value"])
    assert event["event_type"] == "InventoryAdjusted"
    payload = event["payload"]
    assert payload["merchant_id"] == MERCHANT
    assert payload["product_id"] == PRODUCT
    assert payload["store_id"] is None
    assert payload["quantity"] == 6
    assert payload["quantity_change"] == 6
    assert payload["reference_id"] == "po-1"
    assert publisher.stats() == {"published": 1, "failed": 0}

def test_events_keep_submission_order(make_service, redis_client):
    publisher = StockEventPublisher(redis_client, STREAM, backoff_seconds=0)
    try:
        for change in (5, -1, -2):
            make_service(publisher=publisher).adjust(make_request(change))
    finally:
        publisher.close()

    quantities = [json.loads(fields["value"])["payload"]["quantity"] for _, fields in redis_client.xrange(STREAM)]
    assert quantities == [5, 4, 2]

def test_publish_failure_does_not_fail_adjustment(make_service):
    client = BrokenRedis()
    publisher = StockEventPublisher(client, STREAM, attempts=2, backoff_seconds=0)
    try:
        balance = make_service(publisher=publisher).adjust(make_request(3))
    finally:
        publisher.close()

    assert balance.quantity == 3
    assert make_service().get_product_inventory(StockKey(MERCHANT, PRODUCT)).quantity == 3
    assert client.calls == 2
    assert publisher.stats() == {"published": 0, "failed": 1}

def test_adjustment_after_close_still_succeeds(make_service, redis_client):
    publisher = StockEventPublisher(redis_client, STREAM, backoff_seconds=0)
    publisher.close()

    balance = make_service(publisher=publisher).adjust(make_request(2))
    assert balance.quantity == 2
    assert make_service().get_product_inventory(StockKey(MERCHANT, PRODUCT)).quantity == 2
    assert publisher.stats() == {"published": 0, "failed": 1}
    assert redis_client.xlen(STREAM) == 0
