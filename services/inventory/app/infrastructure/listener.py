"""
Order event listener.

Reads the order stream through a Redis consumer group and turns every
``OrderCreated`` line item into a stock deduction. One listener runs one
cooperative loop: it checks the stop signal before every read, finishes the
message in hand, and only then acknowledges it. Messages that were read but
not acknowledged (crash, shutdown mid-batch) are drained from the consumer's
pending list on the next start; deduplication on the order reference makes
that replay safe.
"""

import threading
from collections import OrderedDict
from contextlib import AbstractContextManager
from typing import Callable, Dict, Optional, Tuple

import redis
from pydantic import ValidationError as RequestError

from app.application.errors import BackendError, ContentionError, DecodeError, ValidationError
from app.application.events import OrderCreatedEvent, decode_order_event
from app.application.schemas import AdjustmentRequest
from app.application.service import SYSTEM_ACTOR, InventoryService
from shared.core import clear_request_context, get_logger, set_request_context

logger = get_logger(__name__)

ServiceFactory = Callable[[], AbstractContextManager[InventoryService]]

SALE_REASON = "Order Sale"
SALE_REFERENCE = "sale"

class OrderEventListener:
    def __init__(
        self,
        client: redis.Redis,
        service_factory: ServiceFactory,
        stream: str,
        group: str,
        consumer: str,
        block_ms: Optional[int] = 1000,
        batch_size: int = 10,
        retry_delay: float = 1.0,
        item_attempts: int = 3,
    ):
        self.client = client
        self.service_factory = service_factory
        self.stream = stream
        self.group = group
        self.consumer = consumer
        self.block_ms = block_ms
        self.batch_size = batch_size
        self.retry_delay = retry_delay
        self.item_attempts = max(1, item_attempts)
        self.stats = {
            "processed": 0,
            "ignored": 0,
            "dropped": 0,
            "items_adjusted": 0,
            "items_failed": 0,
            "read_errors": 0,
        }
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._group_ready = False

    # lifecycle

    def start(self) -> threading.Thread:
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="inventory-listener", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run(self) -> None:
        logger.info("Starting inventory event listener", extra={'extra_fields': {
            'stream': self.stream, 'group': self.group, 'consumer': self.consumer}})
        draining = True
        while not self._stop.is_set():
            try:
                handled = self.poll_once(pending=draining)
            except Exception as exc:
                if self._stop.is_set():
                    break
                self.stats["read_errors"] += 1
                broker_error = isinstance(exc, (redis.RedisError, BackendError))
                logger.error(
                    "Failed to read order stream",
                    exc_info=not broker_error,
                    extra={'extra_fields': {'stream': self.stream, 'error': str(exc)}}
                )
                if not broker_error:
                    # a message that keeps failing waits for the next restart
                    draining = False
                self._stop.wait(self.retry_delay)
                continue
            if draining and handled == 0:
                draining = False
        logger.info("Stopping inventory event listener", extra={'extra_fields': self.stats})

    # reading

    def ensure_group(self) -> None:
        try:
            self.client.xgroup_create(self.stream, self.group, id="0", mkstream=True)
        except redis.ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise
        self._group_ready = True

    def poll_once(self, pending: bool = False) -> int:
        """Read one batch and handle it; returns the number of messages handled.

        ``pending`` re-reads this consumer's unacknowledged messages instead of
        new ones.
        """
        if not self._group_ready:
            self.ensure_group()
        response = self.client.xreadgroup(
            self.group,
            self.consumer,
            {self.stream: "0" if pending else ">"},
            count=self.batch_size,
            block=None if pending else self.block_ms,
        )
        handled = 0
        for _stream, entries in response or []:
            for message_id, fields in entries:
                if self._stop.is_set():
                    # rest of the batch stays pending for the next start
                    return handled
                self.handle_message(message_id, fields)
                handled += 1
        return handled

    def handle_message(self, message_id: str, fields: Optional[Dict]) -> None:
        clear_request_context()
        try:
            event = decode_order_event((fields or {}).get("value"))
        except DecodeError as exc:
            self.stats["dropped"] += 1
            logger.error(
                "Failed to decode event, dropping message",
                extra={'extra_fields': {'message_id': message_id, 'error': str(exc)}}
            )
            self.ack(message_id)
            return

        if event is None:
            self.stats["ignored"] += 1
            self.ack(message_id)
            return

        set_request_context(correlation_id=event.event_id, actor_id=SYSTEM_ACTOR)
        if self.process_order(event):
            self.stats["processed"] += 1
            self.ack(message_id)
        else:
            logger.warning(
                "Order left pending after shutdown",
                extra={'extra_fields': {'message_id': message_id, 'order_id': event.payload.id}}
            )

    def ack(self, message_id: str) -> None:
        self.client.xack(self.stream, self.group, message_id)

    # processing

    def process_order(self, event: OrderCreatedEvent) -> bool:
        """Deduct every line item independently.

        Returns False only when shutdown interrupted a retry, so the message
        must stay pending.
        """
        order = event.payload
        logger.info("Processing OrderCreated event", extra={'extra_fields': {
            'order_id': order.id, 'items': len(order.items)}})

        # same product twice in one order is one deduction; keeps the
        # (order, key) reference unique for redelivery checks
        lines: "OrderedDict[Tuple[str, Optional[str]], float]" = OrderedDict()
        for item in order.items:
            # a sale never adds stock; zero or negative lines are not deducted
            if item.quantity <= 0:
                logger.warning("Skipping order item with non-positive quantity", extra={'extra_fields': {
                    'order_id': order.id, 'product_id': item.product_id, 'quantity': item.quantity}})
                continue
            line = (item.product_id, item.variant_id or None)
            lines[line] = lines.get(line, 0.0) + item.quantity

        for (product_id, variant_id), quantity in lines.items():
            try:
                request = AdjustmentRequest(
                    merchant_id=order.merchant_id,
                    store_id=order.store_id,
                    product_id=product_id,
                    variant_id=variant_id,
                    quantity_change=-quantity,
                    reason=SALE_REASON,
                    reference_id=order.id,
                    reference_type=SALE_REFERENCE,
                    actor_id=SYSTEM_ACTOR,
                    movement_type=SALE_REFERENCE,
                    deduplicate=True,
                )
            except RequestError as exc:
                self.stats["items_failed"] += 1
                logger.error("Invalid order item, skipping", extra={'extra_fields': {
                    'order_id': order.id, 'product_id': product_id, 'errors': exc.error_count()}})
                continue
            if not self.adjust_item(request):
                return False
        return True

    def adjust_item(self, request: AdjustmentRequest) -> bool:
        """Apply one line item; False means "interrupted by shutdown"."""
        fields = {
            'order_id': request.reference_id,
            'product_id': request.product_id,
            'variant_id': request.variant_id,
            'quantity_change': request.quantity_change,
        }
        for attempt in range(1, self.item_attempts + 1):
            try:
                with self.service_factory() as service:
                    service.adjust(request)
                self.stats["items_adjusted"] += 1
                return True
            except ValidationError as exc:
                self.stats["items_failed"] += 1
                logger.error("Failed to adjust inventory for order item",
                             extra={'extra_fields': {**fields, 'error': str(exc)}})
                return True
            except (ContentionError, BackendError) as exc:
                logger.warning("Transient failure adjusting order item",
                               extra={'extra_fields': {**fields, 'attempt': attempt, 'error': str(exc)}})
                if attempt == self.item_attempts:
                    break
                if self._stop.wait(self.retry_delay):
                    return False

        self.stats["items_failed"] += 1
        logger.error("Giving up on order item after retries",
                     extra={'extra_fields': {**fields, 'attempts': self.item_attempts}})
        return True
