"""
Module: books_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines. This is the canonical import surface for form and
    service code.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import books_kernel (and sibling engine modules).
    MUST NOT import books_config.

Invariants enforced:
    - Purity: engines never read the clock; dates are passed in.
    - Decimal-only arithmetic through books_kernel Money.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Public entry points are wrapped with ``@traced_engine`` and emit
    BOOKS_ENGINE_TRACE records (engine name, version, input fingerprint,
    duration).

Usage:
    from books_engines import TotalsAggregator, PaymentAllocator, TaxCodeRegistry
"""

from books_engines.balance import (
    BalanceReconciler,
    CreditStatus,
    InvoiceBalance,
    InvoiceStatus,
    invoice_balance_after,
)
from books_engines.line_tax import (
    EmptyCompositePolicy,
    LineTaxCalculator,
    LineTaxResult,
    TaxPricingMode,
    compute_line_tax,
    tax_for_rate,
)
from books_engines.payloads import (
    line_items_from_payload,
    line_items_payload,
    payment_payload,
    tax_components_payload,
    totals_payload,
    transaction_payload,
)
from books_engines.payment_allocation import (
    AllocationCommit,
    AllocationLine,
    AutoApplyOrder,
    CreditApplication,
    CreditSource,
    InvoiceBalanceChange,
    InvoiceCandidate,
    PaymentAllocation,
    PaymentAllocator,
    payment_balance_for,
    previous_applications,
)
from books_engines.tax_codes import (
    TaxCode,
    TaxCodeKind,
    TaxCodeRegistry,
    tax_code_from_record,
)
from books_engines.totals import (
    LineItem,
    ManualOverride,
    TaxComponentBucket,
    TaxWarning,
    TotalsAggregator,
    TotalsSnapshot,
    aggregate_totals,
)
from books_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    # Balance
    "BalanceReconciler",
    "CreditStatus",
    "InvoiceBalance",
    "InvoiceStatus",
    "invoice_balance_after",
    # Line tax
    "EmptyCompositePolicy",
    "LineTaxCalculator",
    "LineTaxResult",
    "TaxPricingMode",
    "compute_line_tax",
    "tax_for_rate",
    # Payloads
    "line_items_from_payload",
    "line_items_payload",
    "payment_payload",
    "tax_components_payload",
    "totals_payload",
    "transaction_payload",
    # Payment allocation
    "AllocationCommit",
    "AllocationLine",
    "AutoApplyOrder",
    "CreditApplication",
    "CreditSource",
    "InvoiceBalanceChange",
    "InvoiceCandidate",
    "PaymentAllocation",
    "PaymentAllocator",
    "payment_balance_for",
    "previous_applications",
    # Tax codes
    "TaxCode",
    "TaxCodeKind",
    "TaxCodeRegistry",
    "tax_code_from_record",
    # Totals
    "LineItem",
    "ManualOverride",
    "TaxComponentBucket",
    "TaxWarning",
    "TotalsAggregator",
    "TotalsSnapshot",
    "aggregate_totals",
    # Tracer
    "compute_input_fingerprint",
    "traced_engine",
]
