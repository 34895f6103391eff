"""
Bookkeeping Configuration Schema.

Defines the settings that shape tax and allocation behaviour, with defaults
matching the forms' observed behaviour. Actual values are loaded from
company configuration at runtime:

    config = BooksConfig.from_dict({"default_pricing_mode": "inclusive"})
    aggregator = config.totals_aggregator()
"""

from dataclasses import dataclass, fields
from typing import Any, Self

from books_engines.line_tax import EmptyCompositePolicy, TaxPricingMode
from books_engines.payment_allocation import AutoApplyOrder, PaymentAllocator
from books_engines.totals import TotalsAggregator
from books_kernel.exceptions import InvalidConfigError
from books_kernel.logging_config import get_logger

logger = get_logger("config.schema")

VALID_PRICING_MODES = {m.value for m in TaxPricingMode}
VALID_EMPTY_COMPOSITE_POLICIES = {p.value for p in EmptyCompositePolicy}
VALID_AUTO_APPLY_ORDERS = {o.value for o in AutoApplyOrder}


@dataclass(frozen=True)
class BooksConfig:
    """
    Configuration schema for the tax and allocation engines.

    empty_composite_policy:
        "reject"   -- a composite with no components is reported as a
                      warning and the line is taxed as zero
        "fallback" -- the composite's own rate is used instead
    allow_mixed_tax_kinds:
        Mixed composite and simple lines are always computed; when False the
        snapshot also carries a MIXED_TAX_KINDS warning.
    """

    default_pricing_mode: str = TaxPricingMode.EXCLUSIVE.value
    empty_composite_policy: str = EmptyCompositePolicy.REJECT.value
    allow_mixed_tax_kinds: bool = True
    auto_apply_order: str = AutoApplyOrder.OLDEST_FIRST.value

    def __post_init__(self):
        if self.default_pricing_mode not in VALID_PRICING_MODES:
            raise InvalidConfigError(
                "default_pricing_mode",
                self.default_pricing_mode,
                f"must be one of {sorted(VALID_PRICING_MODES)}",
            )

        if self.empty_composite_policy not in VALID_EMPTY_COMPOSITE_POLICIES:
            raise InvalidConfigError(
                "empty_composite_policy",
                self.empty_composite_policy,
                f"must be one of {sorted(VALID_EMPTY_COMPOSITE_POLICIES)}",
            )

        if not isinstance(self.allow_mixed_tax_kinds, bool):
            raise InvalidConfigError(
                "allow_mixed_tax_kinds", self.allow_mixed_tax_kinds, "must be a boolean"
            )

        if self.auto_apply_order not in VALID_AUTO_APPLY_ORDERS:
            raise InvalidConfigError(
                "auto_apply_order",
                self.auto_apply_order,
                f"must be one of {sorted(VALID_AUTO_APPLY_ORDERS)}",
            )

        logger.info(
            "books_config_initialized",
            extra={
                "default_pricing_mode": self.default_pricing_mode,
                "empty_composite_policy": self.empty_composite_policy,
                "allow_mixed_tax_kinds": self.allow_mixed_tax_kinds,
                "auto_apply_order": self.auto_apply_order,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with the forms' default behaviour."""
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create config from a dictionary (e.g., a YAML ``settings`` block)."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("books_config_unknown_keys", extra={"keys": unknown})
            raise InvalidConfigError(unknown[0], data[unknown[0]], "unknown setting")
        logger.info("books_config_loading_from_dict", extra={"keys": sorted(data.keys())})
        return cls(**data)

    @property
    def pricing_mode(self) -> TaxPricingMode:
        return TaxPricingMode(self.default_pricing_mode)

    def totals_aggregator(self) -> TotalsAggregator:
        return TotalsAggregator(
            empty_composite_policy=EmptyCompositePolicy(self.empty_composite_policy),
            allow_mixed_tax_kinds=self.allow_mixed_tax_kinds,
        )

    def payment_allocator(self) -> PaymentAllocator:
        return PaymentAllocator(auto_apply_order=AutoApplyOrder(self.auto_apply_order))
