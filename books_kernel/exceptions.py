"""
Typed Exception Hierarchy for the Bookkeeping Kernel.

Every error the kernel, engines or config layer can raise has its own class
with a static ``code`` attribute (machine-readable, API-safe) and carries its
context as attributes rather than only inside the message.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BooksKernelError (base)
    |
    +-- AmountError
    |   +-- InvalidAmountError
    |
    +-- TaxError
    |   +-- UnknownTaxCodeError
    |   +-- TaxConfigurationError
    |   |   +-- EmptyCompositeTaxError
    |   +-- InvalidOverrideError
    |
    +-- AllocationError
    |   +-- OverApplicationError
    |   +-- InsufficientBalanceError
    |   +-- UnknownAllocationTargetError
    |   +-- DuplicateAllocationTargetError
    |
    +-- ConfigError
        +-- InvalidConfigError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category    | Code                         | When Raised
------------|------------------------------|-------------------------------------------
Amount      | INVALID_AMOUNT               | Negative where forbidden, NaN, infinity,
            |                              | unparseable input
------------|------------------------------|-------------------------------------------
Tax         | UNKNOWN_TAX_CODE             | Line references a code not in the registry
            | TAX_CONFIGURATION_ERROR      | Registry data is internally inconsistent
            | EMPTY_COMPOSITE_TAX          | Composite code has no components
            | INVALID_OVERRIDE             | Manual override is malformed
------------|------------------------------|-------------------------------------------
Allocation  | OVER_APPLICATION             | Applied total exceeds the received amount
            | INSUFFICIENT_BALANCE         | Applied amount exceeds the invoice's
            |                              | balance at commit time
            | UNKNOWN_ALLOCATION_TARGET    | Request names an invoice not offered
            | DUPLICATE_ALLOCATION_TARGET  | The same invoice is offered twice
------------|------------------------------|-------------------------------------------
Config      | INVALID_CONFIG               | Settings failed validation

===============================================================================
HANDLING PATTERNS
===============================================================================

Tax errors are recoverable. The totals aggregator catches
``UnknownTaxCodeError`` and ``EmptyCompositeTaxError`` per line and reports
them as warnings on the snapshot, so a form always gets a best-effort total.

Allocation errors are fatal to the allocation call:

    try:
        allocation = allocator.allocate(...)
        plan = allocator.plan_commit(allocation, latest_balances)
    except InsufficientBalanceError as e:
        # Balance moved under us; re-fetch and retry
        refetch(e.invoice_id)
    except OverApplicationError as e:
        return {"error": e.code, "applied": e.total_applied}
"""

from decimal import Decimal
from typing import Any


class BooksKernelError(Exception):
    """
    Base exception for all bookkeeping kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "BOOKS_KERNEL_ERROR"


# Amount exceptions


class AmountError(BooksKernelError):
    """Base exception for monetary amount errors."""

    code: str = "AMOUNT_ERROR"


class InvalidAmountError(AmountError):
    """A negative, non-finite or unparseable amount was supplied."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, value: Any, reason: str, field: str | None = None):
        self.value = str(value)
        self.reason = reason
        self.field = field
        where = f" for {field}" if field else ""
        super().__init__(f"Invalid amount{where}: {value!r} ({reason})")


# Tax exceptions


class TaxError(BooksKernelError):
    """Base exception for tax computation errors."""

    code: str = "TAX_ERROR"


class UnknownTaxCodeError(TaxError):
    """A tax code id is not present in the supplied registry."""

    code: str = "UNKNOWN_TAX_CODE"

    def __init__(self, tax_code_id: Any):
        self.tax_code_id = tax_code_id
        super().__init__(f"Tax code not found: {tax_code_id}")


class TaxConfigurationError(TaxError):
    """Tax code data is internally inconsistent."""

    code: str = "TAX_CONFIGURATION_ERROR"

    def __init__(self, tax_code_id: Any, problem: str):
        self.tax_code_id = tax_code_id
        self.problem = problem
        super().__init__(f"Tax code {tax_code_id} is misconfigured: {problem}")


class EmptyCompositeTaxError(TaxConfigurationError):
    """A composite tax code has no configured components."""

    code: str = "EMPTY_COMPOSITE_TAX"

    def __init__(self, tax_code_id: Any):
        super().__init__(tax_code_id, "composite tax code has no components")


class InvalidOverrideError(TaxError):
    """Manual tax override is malformed."""

    code: str = "INVALID_OVERRIDE"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid manual tax override: {reason}")


# Allocation exceptions


class AllocationError(BooksKernelError):
    """Base exception for payment allocation errors."""

    code: str = "ALLOCATION_ERROR"


class OverApplicationError(AllocationError):
    """Requested applications exceed the received (or available) amount."""

    code: str = "OVER_APPLICATION"

    def __init__(self, received_amount: Decimal, total_applied: Decimal):
        self.received_amount = received_amount
        self.total_applied = total_applied
        super().__init__(
            f"Applied total {total_applied} exceeds received amount "
            f"{received_amount}"
        )


class InsufficientBalanceError(AllocationError):
    """Applied amount exceeds the invoice's balance at commit time."""

    code: str = "INSUFFICIENT_BALANCE"

    def __init__(self, invoice_id: Any, applied_amount: Decimal, available: Decimal):
        self.invoice_id = invoice_id
        self.applied_amount = applied_amount
        self.available = available
        super().__init__(
            f"Cannot apply {applied_amount} to invoice {invoice_id}: "
            f"only {available} available"
        )


class UnknownAllocationTargetError(AllocationError):
    """An application was requested for an invoice that is not a candidate."""

    code: str = "UNKNOWN_ALLOCATION_TARGET"

    def __init__(self, invoice_id: Any):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} is not an open candidate")


class DuplicateAllocationTargetError(AllocationError):
    """The same invoice appears more than once among the candidates."""

    code: str = "DUPLICATE_ALLOCATION_TARGET"

    def __init__(self, invoice_id: Any):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} is offered more than once")


# Config exceptions


class ConfigError(BooksKernelError):
    """Base exception for configuration errors."""

    code: str = "CONFIG_ERROR"


class InvalidConfigError(ConfigError):
    """Settings failed validation."""

    code: str = "INVALID_CONFIG"

    def __init__(self, setting: str, value: Any, reason: str):
        self.setting = setting
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid setting {setting}={value!r}: {reason}")
