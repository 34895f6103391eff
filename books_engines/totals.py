"""
Module: books_engines.totals
Responsibility:
    Combine the line items of a transaction into a subtotal, per-tax-code
    buckets and a grand total, applying an operator's manual tax override
    when one is active.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Used by every transaction-entry form (cheques, bills, deposits,
    expenses, sales receipts) on each edit; the form supplies its own lines
    and pricing mode.

Invariants enforced:
    - sub_total is the running sum of line amounts, re-rounded per step.
    - Every line tax and every bucket merge is rounded to 0.01 before it is
      added to anything.
    - Exclusive mode: total_amount == sub_total + tax_amount exactly.
      Inclusive mode: total_amount == sub_total.
    - Without an override, tax_amount == sum of bucket amounts.
    - Clearing an override restores exactly the computed values, because
      buckets always keep their computed amount next to the displayed one.

Failure modes:
    - InvalidAmountError when a LineItem is built with a negative or
      non-finite amount (before aggregation starts).
    - Unknown tax codes and composites without components never raise out
      of ``aggregate``; they become TaxWarning records on the snapshot and
      the affected line is taxed as zero.

Usage:
    from books_engines.totals import LineItem, ManualOverride, TotalsAggregator

    aggregator = TotalsAggregator()
    snapshot = aggregator.aggregate(
        lines=[LineItem(amount=Money.of("100.00"), tax_code_id=1)],
        mode=TaxPricingMode.EXCLUSIVE,
        registry=registry,
    )
    snapshot.total_amount  # Money('113.00') for a 13% code

    edited = aggregator.aggregate(
        lines, TaxPricingMode.EXCLUSIVE, registry,
        override=ManualOverride.total(Money.of("12.99")),
    )
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal

from books_engines.line_tax import (
    EmptyCompositePolicy,
    LineTaxCalculator,
    LineTaxResult,
    TaxPricingMode,
)
from books_engines.tax_codes import TaxCodeId, TaxCodeRegistry
from books_engines.tracer import traced_engine
from books_kernel.domain.values import Money, money_sum
from books_kernel.exceptions import (
    EmptyCompositeTaxError,
    InvalidOverrideError,
    UnknownTaxCodeError,
)
from books_kernel.logging_config import get_logger

logger = get_logger("engines.totals")

AccountId = int | str


@dataclass(frozen=True)
class LineItem:
    """
    One row of a transaction.

    ``amount`` is the pre-tax value in exclusive mode and the all-inclusive
    value in inclusive mode. It must be non-negative.
    """

    amount: Money
    tax_code_id: TaxCodeId | None = None
    account_id: AccountId | None = None
    description: str = ""

    def __post_init__(self) -> None:
        amount = Money.of(self.amount, "amount").require_non_negative("amount")
        object.__setattr__(self, "amount", amount)


@dataclass(frozen=True)
class TaxWarning:
    """Non-fatal condition found while aggregating."""

    UNKNOWN_TAX_CODE = UnknownTaxCodeError.code
    EMPTY_COMPOSITE_TAX = EmptyCompositeTaxError.code
    COMPONENT_SELECTED = "COMPONENT_SELECTED"
    STALE_OVERRIDE = "STALE_OVERRIDE"
    MIXED_TAX_KINDS = "MIXED_TAX_KINDS"

    code: str
    message: str
    line_index: int | None = None
    tax_code_id: TaxCodeId | None = None


@dataclass(frozen=True)
class TaxComponentBucket:
    """
    Tax total for one leaf tax code across all lines.

    ``computed_amount`` is what the lines produce; ``amount`` is what is
    displayed and summed, which differs only while an override is active.
    """

    tax_code_id: TaxCodeId
    name: str
    rate: Decimal
    computed_amount: Money
    amount: Money
    is_component: bool = False
    parent_id: TaxCodeId | None = None
    is_overridden: bool = False


@dataclass(frozen=True)
class ManualOverride:
    """
    Operator-entered tax amount.

    Exactly one form is active: ``total_amount`` (the simple-tax field) or
    ``per_bucket`` (one entry per edited composite component). Amounts are
    rounded to 0.01 on construction.
    """

    total_amount: Money | None = None
    per_bucket: Mapping[TaxCodeId, Money] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.total_amount is None and not self.per_bucket:
            raise InvalidOverrideError("either total_amount or per_bucket is required")
        if self.total_amount is not None and self.per_bucket:
            raise InvalidOverrideError("total_amount and per_bucket are mutually exclusive")

        if self.total_amount is not None:
            total = Money.of(self.total_amount, "tax override")
            object.__setattr__(
                self, "total_amount", total.require_non_negative("tax override").round2()
            )
        else:
            object.__setattr__(self, "per_bucket", {
                key: Money.of(value, "tax override").require_non_negative("tax override").round2()
                for key, value in self.per_bucket.items()
            })

    @classmethod
    def total(cls, amount: Money | Decimal | str | int | float) -> ManualOverride:
        return cls(total_amount=Money.of(amount, "tax override"))

    @classmethod
    def components(
        cls, amounts: Mapping[TaxCodeId, Money | Decimal | str | int | float]
    ) -> ManualOverride:
        return cls(per_bucket=dict(amounts))

    @property
    def is_per_bucket(self) -> bool:
        return self.total_amount is None

    def with_component(
        self, tax_code_id: TaxCodeId, amount: Money | Decimal | str | int | float
    ) -> ManualOverride:
        """
        Override one bucket, keeping the other edited buckets.

        A total override is replaced: once a component is edited the total
        is derived from the buckets again.
        """
        per_bucket = dict(self.per_bucket) if self.is_per_bucket else {}
        per_bucket[tax_code_id] = Money.of(amount, "tax override")
        return ManualOverride(per_bucket=per_bucket)

    def without_component(self, tax_code_id: TaxCodeId) -> ManualOverride | None:
        """Drop one bucket's override; None when nothing is left."""
        if not self.is_per_bucket:
            return self
        remaining = {k: v for k, v in self.per_bucket.items() if k != tax_code_id}
        return ManualOverride(per_bucket=remaining) if remaining else None


@dataclass(frozen=True)
class TotalsSnapshot:
    """
    Totals of a transaction after one recomputation.

    Contract:
        Frozen; a caller may discard it at any time.
    Guarantees:
        - ``computed_tax_amount`` is always the sum of computed bucket
          amounts, override or not.
    """

    sub_total: Money
    tax_amount: Money
    total_amount: Money
    buckets: tuple[TaxComponentBucket, ...]
    computed_tax_amount: Money
    mode: TaxPricingMode
    line_results: tuple[LineTaxResult, ...] = ()
    warnings: tuple[TaxWarning, ...] = ()
    override: ManualOverride | None = None

    @property
    def is_overridden(self) -> bool:
        return self.override is not None

    @property
    def computed_total_amount(self) -> Money:
        """Total as it would be with no override."""
        if self.mode == TaxPricingMode.EXCLUSIVE:
            return (self.sub_total + self.computed_tax_amount).round2()
        return self.sub_total

    @property
    def has_component_buckets(self) -> bool:
        return any(b.is_component for b in self.buckets)

    @property
    def has_simple_buckets(self) -> bool:
        return any(not b.is_component for b in self.buckets)

    @property
    def has_mixed_tax_kinds(self) -> bool:
        return self.has_component_buckets and self.has_simple_buckets

    def bucket(self, tax_code_id: TaxCodeId) -> TaxComponentBucket | None:
        for b in self.buckets:
            if b.tax_code_id == tax_code_id:
                return b
        return None

    def warnings_with_code(self, code: str) -> tuple[TaxWarning, ...]:
        return tuple(w for w in self.warnings if w.code == code)


class TotalsAggregator:
    """
    Aggregate line items into a TotalsSnapshot.

    Contract:
        Pure; no I/O, no caching between calls. O(lines x components).
    Non-goals:
        - Does not decide whether mixed composite/simple input is allowed;
          it computes the union and can flag it.
    """

    def __init__(
        self,
        empty_composite_policy: EmptyCompositePolicy = EmptyCompositePolicy.REJECT,
        allow_mixed_tax_kinds: bool = True,
    ):
        self.line_calculator = LineTaxCalculator(empty_composite_policy)
        self.allow_mixed_tax_kinds = allow_mixed_tax_kinds

    @traced_engine("totals", "1.0", fingerprint_fields=("lines", "mode", "override"))
    def aggregate(
        self,
        lines: Sequence[LineItem],
        mode: TaxPricingMode,
        registry: TaxCodeRegistry,
        override: ManualOverride | None = None,
    ) -> TotalsSnapshot:
        """
        Compute totals for a set of lines.

        Args:
            lines: Line items of the transaction
            mode: Pricing mode applied to every line
            registry: Tax codes in scope for the transaction
            override: Active manual tax override, if any

        Returns:
            TotalsSnapshot with buckets, per-line results and warnings
        """
        mode = TaxPricingMode.parse(mode)
        warnings: list[TaxWarning] = []

        sub_total = money_sum(line.amount.round2() for line in lines)

        line_results: list[LineTaxResult] = []
        merged: dict[TaxCodeId, Money] = {}
        for index, line in enumerate(lines):
            result = self._line_tax(index, line, mode, registry, warnings)
            line_results.append(result)
            for key, amount in result.per_component.items():
                merged[key] = (merged.get(key, Money.zero()) + amount).round2()

        computed_buckets = [
            self._bucket(key, amount, registry) for key, amount in merged.items()
        ]
        computed_tax = money_sum(b.computed_amount for b in computed_buckets)

        buckets, tax_amount = self._apply_override(
            computed_buckets, computed_tax, override, warnings
        )

        if mode == TaxPricingMode.EXCLUSIVE:
            total_amount = (sub_total + tax_amount).round2()
        else:
            total_amount = sub_total

        is_mixed = (
            any(b.is_component for b in buckets)
            and any(not b.is_component for b in buckets)
        )
        if is_mixed and not self.allow_mixed_tax_kinds:
            warnings.append(TaxWarning(
                code=TaxWarning.MIXED_TAX_KINDS,
                message="Transaction mixes composite and simple tax codes",
            ))

        snapshot = TotalsSnapshot(
            sub_total=sub_total,
            tax_amount=tax_amount,
            total_amount=total_amount,
            buckets=tuple(buckets),
            computed_tax_amount=computed_tax,
            mode=mode,
            line_results=tuple(line_results),
            warnings=tuple(warnings),
            override=override,
        )

        logger.info("totals_aggregated", extra={
            "line_count": len(lines),
            "mode": mode.value,
            "sub_total": str(sub_total.amount),
            "computed_tax_amount": str(computed_tax.amount),
            "tax_amount": str(tax_amount.amount),
            "total_amount": str(total_amount.amount),
            "bucket_count": len(buckets),
            "is_overridden": override is not None,
            "warning_codes": [w.code for w in warnings],
        })

        return snapshot

    def reconcile_override(
        self,
        override: ManualOverride | None,
        snapshot: TotalsSnapshot,
    ) -> ManualOverride | None:
        """
        Drop the parts of an override that no longer match the lines.

        Per-bucket entries whose bucket disappeared are removed; a total
        override is dropped once no line is taxed. Returns None when nothing
        is left.
        """
        if override is None:
            return None

        if not override.is_per_bucket:
            if not snapshot.buckets:
                logger.info("tax_override_cleared", extra={"reason": "no_taxed_lines"})
                return None
            return override

        live = {b.tax_code_id for b in snapshot.buckets}
        kept = {k: v for k, v in override.per_bucket.items() if k in live}
        if len(kept) != len(override.per_bucket):
            logger.info("tax_override_reconciled", extra={
                "dropped": [k for k in override.per_bucket if k not in live],
            })
        return ManualOverride(per_bucket=kept) if kept else None

    def _line_tax(
        self,
        index: int,
        line: LineItem,
        mode: TaxPricingMode,
        registry: TaxCodeRegistry,
        warnings: list[TaxWarning],
    ) -> LineTaxResult:
        """Tax one line; reference-data problems become warnings."""
        if line.tax_code_id is None:
            return LineTaxResult.untaxed()

        try:
            tax_code = registry.get_by_id(line.tax_code_id)
        except UnknownTaxCodeError as e:
            logger.warning("tax_code_not_found", extra={
                "line_index": index,
                "tax_code_id": line.tax_code_id,
            })
            warnings.append(TaxWarning(
                code=e.code,
                message=str(e),
                line_index=index,
                tax_code_id=line.tax_code_id,
            ))
            return LineTaxResult.untaxed(line.tax_code_id)

        if not tax_code.is_top_level:
            logger.warning("tax_component_selected_on_line", extra={
                "line_index": index,
                "tax_code_id": tax_code.id,
                "parent_id": tax_code.parent_id,
            })
            warnings.append(TaxWarning(
                code=TaxWarning.COMPONENT_SELECTED,
                message=f"Tax code {tax_code.id} is a component of {tax_code.parent_id}",
                line_index=index,
                tax_code_id=tax_code.id,
            ))

        try:
            return self.line_calculator.compute(line.amount, tax_code, mode, registry)
        except EmptyCompositeTaxError as e:
            warnings.append(TaxWarning(
                code=e.code,
                message=str(e),
                line_index=index,
                tax_code_id=tax_code.id,
            ))
            return LineTaxResult.untaxed(tax_code.id)

    def _bucket(
        self,
        key: TaxCodeId,
        amount: Money,
        registry: TaxCodeRegistry,
    ) -> TaxComponentBucket:
        code = registry.get_by_id(key)
        return TaxComponentBucket(
            tax_code_id=key,
            name=code.name,
            rate=code.rate,
            computed_amount=amount,
            amount=amount,
            is_component=code.is_component,
            parent_id=code.parent_id,
        )

    def _apply_override(
        self,
        buckets: list[TaxComponentBucket],
        computed_tax: Money,
        override: ManualOverride | None,
        warnings: list[TaxWarning],
    ) -> tuple[list[TaxComponentBucket], Money]:
        """Return displayed buckets and the effective tax amount."""
        if override is None:
            return buckets, computed_tax

        if not override.is_per_bucket:
            tax_amount = override.total_amount
            if len(buckets) == 1:
                only = buckets[0]
                buckets = [_displayed(only, tax_amount)]
            logger.info("tax_override_applied", extra={
                "kind": "total",
                "computed_tax_amount": str(computed_tax.amount),
                "tax_amount": str(tax_amount.amount),
            })
            return buckets, tax_amount

        live = {b.tax_code_id for b in buckets}
        for key in override.per_bucket:
            if key not in live:
                warnings.append(TaxWarning(
                    code=TaxWarning.STALE_OVERRIDE,
                    message=f"Override for tax code {key} matches no bucket",
                    tax_code_id=key,
                ))

        displayed = [
            _displayed(b, override.per_bucket[b.tax_code_id])
            if b.tax_code_id in override.per_bucket else b
            for b in buckets
        ]
        tax_amount = money_sum(b.amount for b in displayed)
        logger.info("tax_override_applied", extra={
            "kind": "per_bucket",
            "overridden": list(override.per_bucket.keys()),
            "computed_tax_amount": str(computed_tax.amount),
            "tax_amount": str(tax_amount.amount),
        })
        return displayed, tax_amount


def _displayed(bucket: TaxComponentBucket, amount: Money) -> TaxComponentBucket:
    return TaxComponentBucket(
        tax_code_id=bucket.tax_code_id,
        name=bucket.name,
        rate=bucket.rate,
        computed_amount=bucket.computed_amount,
        amount=amount,
        is_component=bucket.is_component,
        parent_id=bucket.parent_id,
        is_overridden=True,
    )


def aggregate_totals(
    lines: Iterable[LineItem],
    mode: TaxPricingMode | str,
    registry: TaxCodeRegistry,
    override: ManualOverride | None = None,
) -> TotalsSnapshot:
    """Convenience wrapper using default policies."""
    return TotalsAggregator().aggregate(
        lines=list(lines),
        mode=TaxPricingMode.parse(mode),
        registry=registry,
        override=override,
    )
