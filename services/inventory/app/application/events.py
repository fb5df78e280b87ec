"""Upstream order events consumed by the inventory listener."""

import json
from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, field_validator
from pydantic import ValidationError as PayloadError

from .errors import DecodeError

ORDER_CREATED = "OrderCreated"

class OrderItemPayload(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    quantity: float

class OrderPayload(BaseModel):
    id: str
    merchant_id: str
    store_id: Optional[str] = None
    items: list[OrderItemPayload] = []

    @field_validator("store_id")
    @classmethod
    def blank_store(cls, value: Optional[str]) -> Optional[str]:
        # orders placed without a store deduct the unscoped balance
        return value or None

class OrderCreatedEvent(BaseModel):
    event_id: str
    event_type: str
    timestamp: Optional[datetime] = None
    payload: OrderPayload

def decode_order_event(raw: Union[str, bytes, None]) -> Optional[OrderCreatedEvent]:
    """Parse one stream message.

    Returns None for well-formed events of other types. Raises DecodeError
    for anything that is not a valid JSON event.
    """
    if raw is None:
        raise DecodeError("message has no value field")
    try:
        document: Any = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise DecodeError(f"invalid JSON: {exc}") from exc
    if not isinstance(document, dict) or not isinstance(document.get("event_type"), str):
        raise DecodeError("event_type missing")
    if document["event_type"] != ORDER_CREATED:
        return None
    try:
        return OrderCreatedEvent.model_validate(document)
    except PayloadError as exc:
        raise DecodeError(f"invalid {ORDER_CREATED} payload: {exc.error_count()} error(s)") from exc
