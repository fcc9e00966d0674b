"""
Engine error taxonomy.

Services raise these; app/main.py maps each family to an HTTP status:
- NotFoundError        -> 404
- ValidationError      -> 422
- PermissionDenied     -> 403
- GuardViolation       -> 409 (reason payload in details)
- ConcurrencyConflict  -> 409 (retryable)
- PersistenceFailure   -> 503 (retryable)
"""
from decimal import Decimal
from typing import Any, Dict, Optional


class EngineError(Exception):
    """Base class for all order engine errors."""

    code = "ENGINE_ERROR"
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }
        if self.retryable:
            payload["retryable"] = True
        return payload


class NotFoundError(EngineError):
    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            f"{entity} not found: {entity_id}",
            {"entity": entity, "id": str(entity_id)},
        )


class ValidationError(EngineError):
    code = "VALIDATION_ERROR"


class PermissionDenied(EngineError):
    code = "PERMISSION_DENIED"

    def __init__(self, role: str, action: str, message: Optional[str] = None):
        super().__init__(
            message or f"Role {role} is not allowed to {action}",
            {"role": role, "action": action},
        )
        self.role = role
        self.action = action


# ==================== Guard violations ====================

class GuardViolation(EngineError):
    """A business precondition for an operation does not hold."""
    code = "GUARD_VIOLATION"


class IllegalTransition(GuardViolation):
    code = "ILLEGAL_TRANSITION"

    def __init__(self, action: str, status: str):
        super().__init__(
            f"Cannot {action} a quote in status {status}",
            {"action": action, "status": status},
        )


class CreditHold(GuardViolation):
    code = "CREDIT_HOLD"

    def __init__(self, customer_id: Any):
        super().__init__(
            "Customer is on credit hold",
            {"customer_id": str(customer_id)},
        )


class CreditLimitExceeded(GuardViolation):
    code = "CREDIT_LIMIT_EXCEEDED"

    def __init__(self, debt: Decimal, limit: Decimal, grand_total: Decimal):
        super().__init__(
            f"Credit limit exceeded: debt {debt} + order {grand_total} > limit {limit}",
            {"debt": str(debt), "limit": str(limit), "grand_total": str(grand_total)},
        )
        self.debt = debt
        self.limit = limit
        self.grand_total = grand_total


class InsufficientStock(GuardViolation):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: Any, available: Decimal, requested: Decimal):
        super().__init__(
            f"Insufficient stock for product {product_id}: available {available}, requested {requested}",
            {
                "product_id": str(product_id),
                "available": str(available),
                "requested": str(requested),
            },
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class BalanceOutstanding(GuardViolation):
    code = "BALANCE_OUTSTANDING"

    def __init__(self, balance_due: Decimal):
        super().__init__(
            f"Order has an outstanding balance of {balance_due}",
            {"balance_due": str(balance_due)},
        )
        self.balance_due = balance_due


class DepositRequired(GuardViolation):
    code = "DEPOSIT_REQUIRED"

    def __init__(self, paid: Decimal, required: Decimal):
        super().__init__(
            f"Deposit required: paid {paid}, required {required}",
            {"paid": str(paid), "required": str(required)},
        )
        self.paid = paid
        self.required = required


class AlreadyFullyInvoiced(GuardViolation):
    code = "ALREADY_FULLY_INVOICED"

    def __init__(self, quote_id: Any):
        super().__init__(
            "Order is already fully invoiced",
            {"quote_id": str(quote_id)},
        )


class InvoiceVoid(GuardViolation):
    code = "INVOICE_VOID"

    def __init__(self, invoice_id: Any):
        super().__init__(
            "Invoice is void",
            {"invoice_id": str(invoice_id)},
        )


# ==================== Infrastructure ====================

class ConcurrencyConflict(EngineError):
    code = "CONCURRENCY_CONFLICT"
    retryable = True


class PersistenceFailure(EngineError):
    code = "PERSISTENCE_FAILURE"
    retryable = True
