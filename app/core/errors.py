# FILE: app/core/errors.py
from __future__ import annotations

from decimal import Decimal
from typing import Any


class EngineError(Exception):
    """
    Base class for every stock / billing failure the engine reports.

    `detail` is a human readable message (already carries the numbers
    involved); `status_code` is what the HTTP layer answers with.
    """

    status_code: int = 400

    def __init__(self, detail: str, **context: Any) -> None:
        super().__init__(detail)
        self.detail = detail
        self.context = context

    def __str__(self) -> str:
        return self.detail


class NotFound(EngineError):
    status_code = 404


class AlreadyFulfilled(EngineError):
    status_code = 409


class InsufficientStock(EngineError):
    status_code = 409

    def __init__(self, detail: str, *, available: Decimal | int,
                 requested: Decimal | int, **context: Any) -> None:
        super().__init__(detail,
                         available=available,
                         requested=requested,
                         **context)
        self.available = available
        self.requested = requested


class NoAllocatableStock(EngineError):
    status_code = 409

    def __init__(self, detail: str, *, allocated: int, requested: int,
                 **context: Any) -> None:
        super().__init__(detail,
                         allocated=allocated,
                         requested=requested,
                         **context)
        self.allocated = allocated
        self.requested = requested


class InvalidPaymentAmount(EngineError):
    status_code = 400

    def __init__(self, detail: str, *, amount: Decimal, remaining: Decimal,
                 **context: Any) -> None:
        super().__init__(detail, amount=amount, remaining=remaining, **context)
        self.amount = amount
        self.remaining = remaining


class InsufficientAmountReceived(EngineError):
    status_code = 400


class BillingAlreadyExists(EngineError):
    status_code = 409


class BatchAlreadyExists(EngineError):
    status_code = 409


class InvalidStockAdjustment(EngineError):
    status_code = 400


class InvalidQuantity(EngineError):
    status_code = 400


class BatchMismatch(EngineError):
    status_code = 400


class InvalidChoice(EngineError):
    """Unknown enum value (payment method, demand type) from a non-HTTP caller."""
    status_code = 400
