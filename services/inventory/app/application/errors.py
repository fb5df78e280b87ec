"""Error taxonomy for stock adjustments.

Callers tell "retry later" (ContentionError) apart from terminal rejections
(ValidationError) and infrastructure failures (BackendError).
"""

class InventoryError(Exception):
    """Base class for inventory failures"""

class ContentionError(InventoryError):
    """Lease on the stock key could not be obtained; safe to retry with backoff."""

    def __init__(self, lock_name: str, attempts: int):
        super().__init__("system busy, please try again later")
        self.lock_name = lock_name
        self.attempts = attempts

class ValidationError(InventoryError):
    """Request is invalid for the current ledger state; never retried."""

class InsufficientInventoryError(ValidationError):
    def __init__(self, quantity_before: float, quantity_change: float):
        super().__init__("insufficient inventory")
        self.quantity_before = quantity_before
        self.quantity_change = quantity_change

class BackendError(InventoryError):
    """Coordination store or ledger store failed."""

class DecodeError(InventoryError):
    """Upstream message could not be decoded; dropped, never retried."""
