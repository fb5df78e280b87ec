"""Outbound ``InventoryAdjusted`` notifications.

Adjustments hand a snapshot to a single-worker queue and return; the worker
appends it to a Redis stream with its own retry policy. A failed publish is
logged and counted, it never undoes or fails the adjustment.
"""

import json
import threading
import time
from concurrent.futures import ThreadPoolExecutor, Future
from functools import lru_cache
from typing import Any, Dict, Optional

import redis

from app.core_settings import get_settings
from app.domain.models import Inventory, InventoryMovement, new_id, utcnow
from app.infrastructure.redis_client import get_redis
from shared.core import get_logger

logger = get_logger(__name__)

EVENT_TYPE = "InventoryAdjusted"

def adjusted_event(balance: Inventory, movement: InventoryMovement) -> Dict[str, Any]:
    return {
        "event_id": new_id(),
        "event_type": EVENT_TYPE,
        "timestamp": utcnow().isoformat(),
        "payload": {
            "inventory_id": balance.id,
            "merchant_id": balance.merchant_id,
            "store_id": balance.store_id,
            "product_id": balance.product_id,
            "variant_id": balance.variant_id,
            "quantity": balance.quantity,
            "available_quantity": balance.available_quantity,
            "movement_id": movement.id,
            "movement_type": movement.movement_type,
            "quantity_change": movement.quantity_change,
            "reference_type": movement.reference_type,
            "reference_id": movement.reference_id,
        },
    }

class StockEventPublisher:
    def __init__(
        self,
        client: redis.Redis,
        stream: str,
        attempts: int = 3,
        backoff_seconds: float = 0.5,
        maxlen: int = 100_000,
    ):
        self.client = client
        self.stream = stream
        self.attempts = max(1, attempts)
        self.backoff_seconds = backoff_seconds
        self.maxlen = maxlen
        self.published = 0
        self.failed = 0
        self._counter_lock = threading.Lock()
        # one worker keeps notifications in submission order
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="stock-events")

    def submit(self, balance: Inventory, movement: InventoryMovement) -> Optional[Future]:
        # snapshot now; ORM objects must not be read from the worker thread
        event = adjusted_event(balance, movement)
        try:
            return self._executor.submit(self.publish, event)
        except RuntimeError as exc:
            # executor already shut down; the adjustment itself has committed
            with self._counter_lock:
                self.failed += 1
            logger.error(
                "Inventory event not queued, publisher closed",
                extra={'extra_fields': {'stream': self.stream, 'movement_id': movement.id, 'error': str(exc)}}
            )
            return None

    def publish(self, event: Dict[str, Any]) -> bool:
        body = json.dumps(event, default=str)
        for attempt in range(1, self.attempts + 1):
            try:
                self.client.xadd(self.stream, {"value": body}, maxlen=self.maxlen, approximate=True)
            except redis.RedisError as exc:
                logger.warning(
                    "Failed to publish inventory event",
                    extra={'extra_fields': {'stream': self.stream, 'attempt': attempt, 'error': str(exc)}}
                )
                if attempt < self.attempts:
                    time.sleep(self.backoff_seconds)
                continue
            with self._counter_lock:
                self.published += 1
            return True

        with self._counter_lock:
            self.failed += 1
        logger.error(
            "Dropped inventory event after retries",
            extra={'extra_fields': {'stream': self.stream, 'event_id': event["event_id"],
                                    'movement_id': event["payload"]["movement_id"]}}
        )
        return False

    def stats(self) -> Dict[str, int]:
        with self._counter_lock:
            return {"published": self.published, "failed": self.failed}

    def close(self) -> None:
        self._executor.shutdown(wait=True)

@lru_cache
def get_publisher() -> StockEventPublisher:
    settings = get_settings()
    return StockEventPublisher(
        get_redis(),
        settings.INVENTORY_EVENTS_STREAM,
        attempts=settings.PUBLISH_ATTEMPTS,
    )
