"""
Line Tax Calculator - Tax for a single line item.

Pure functions with no I/O. Tax codes are resolved by the caller or through
a TaxCodeRegistry passed in as a parameter.

Every individual tax amount is rounded to 0.01 before it is added to any
total, and composite codes are taxed component by component. A composite of
two 2% components on 0.25 therefore taxes 0.01 + 0.01 = 0.02, where a single
4% rate would give 0.01.

Usage:
    from books_engines.line_tax import LineTaxCalculator, TaxPricingMode

    result = LineTaxCalculator().compute(
        line_amount=Money.of("100.00"),
        tax_code=registry.get_by_id(2),
        mode=TaxPricingMode.EXCLUSIVE,
        registry=registry,
    )
    result.total_tax       # Money('12.00')
    result.per_component   # {3: Money('5.00'), 4: Money('7.00')}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from books_engines.tax_codes import TaxCode, TaxCodeId, TaxCodeRegistry
from books_kernel.domain.values import Money, money_sum
from books_kernel.exceptions import EmptyCompositeTaxError
from books_kernel.logging_config import get_logger

logger = get_logger("engines.line_tax")


class TaxPricingMode(str, Enum):
    """How line amounts relate to tax. One value per transaction."""

    EXCLUSIVE = "exclusive"  # Tax added on top of the line amount
    INCLUSIVE = "inclusive"  # Line amount already contains the tax

    @classmethod
    def parse(cls, value: TaxPricingMode | str | bool) -> TaxPricingMode:
        """
        Accept an enum, its string value, or the forms' ``isExclusiveOfTax``
        flag (True means exclusive).
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            return cls.EXCLUSIVE if value else cls.INCLUSIVE
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown tax pricing mode: {value!r}") from None


class EmptyCompositePolicy(str, Enum):
    """What to do with a composite code that has no components."""

    REJECT = "reject"  # Raise EmptyCompositeTaxError
    FALLBACK = "fallback"  # Tax with the composite's own rate


@dataclass(frozen=True)
class LineTaxResult:
    """Tax for one line, split by the leaf tax code that produced it."""

    total_tax: Money
    per_component: dict[TaxCodeId, Money] = field(default_factory=dict)
    tax_code_id: TaxCodeId | None = None

    @classmethod
    def untaxed(cls, tax_code_id: TaxCodeId | None = None) -> LineTaxResult:
        return cls(total_tax=Money.zero(), per_component={}, tax_code_id=tax_code_id)

    @property
    def is_taxed(self) -> bool:
        return bool(self.per_component)


def tax_for_rate(amount: Money, rate: Decimal, mode: TaxPricingMode) -> Money:
    """Rounded tax for one rate under the given pricing mode."""
    if mode == TaxPricingMode.EXCLUSIVE:
        return amount.exclusive_tax(rate)
    return amount.inclusive_tax(rate)


class LineTaxCalculator:
    """
    Calculate tax for one line item.

    Handles:
        - No tax code (zero tax)
        - Simple codes
        - Composite codes, per component
        - Composites without components, per ``empty_composite_policy``
    """

    def __init__(
        self,
        empty_composite_policy: EmptyCompositePolicy = EmptyCompositePolicy.REJECT,
    ):
        self.empty_composite_policy = EmptyCompositePolicy(empty_composite_policy)

    def compute(
        self,
        line_amount: Money,
        tax_code: TaxCode | None,
        mode: TaxPricingMode,
        registry: TaxCodeRegistry,
    ) -> LineTaxResult:
        """
        Compute tax for a line.

        Args:
            line_amount: Line base (exclusive) or all-inclusive (inclusive) amount
            tax_code: Top-level tax code selected on the line, or None
            mode: Pricing mode of the transaction
            registry: Registry used to resolve composite components

        Returns:
            LineTaxResult with the rounded total and per-leaf amounts

        Raises:
            InvalidAmountError: line_amount is negative
            EmptyCompositeTaxError: composite without components under the
                REJECT policy
        """
        line_amount.require_non_negative("amount")

        if tax_code is None:
            return LineTaxResult.untaxed()

        if tax_code.is_composite:
            components = registry.components_of(tax_code.id)
            if components:
                per_component: dict[TaxCodeId, Money] = {}
                for component in components:
                    per_component[component.id] = tax_for_rate(line_amount, component.rate, mode)
                return LineTaxResult(
                    total_tax=money_sum(per_component.values()),
                    per_component=per_component,
                    tax_code_id=tax_code.id,
                )

            if self.empty_composite_policy == EmptyCompositePolicy.REJECT:
                logger.warning("composite_tax_without_components", extra={
                    "tax_code_id": tax_code.id,
                    "policy": self.empty_composite_policy.value,
                })
                raise EmptyCompositeTaxError(tax_code.id)

            logger.warning("composite_tax_fallback_to_own_rate", extra={
                "tax_code_id": tax_code.id,
                "rate": str(tax_code.rate),
            })

        tax = tax_for_rate(line_amount, tax_code.rate, mode)
        return LineTaxResult(
            total_tax=tax,
            per_component={tax_code.id: tax},
            tax_code_id=tax_code.id,
        )


def compute_line_tax(
    line_amount: Money,
    tax_code: TaxCode | None,
    mode: TaxPricingMode,
    registry: TaxCodeRegistry,
    empty_composite_policy: EmptyCompositePolicy = EmptyCompositePolicy.REJECT,
) -> LineTaxResult:
    """Convenience wrapper around ``LineTaxCalculator.compute``."""
    return LineTaxCalculator(empty_composite_policy).compute(
        line_amount=line_amount,
        tax_code=tax_code,
        mode=mode,
        registry=registry,
    )
