"""
Tests for the totals aggregator.

Covers:
- Simple, inclusive and composite transactions
- Bucket merging with per-line rounding
- Reference-data problems surfaced as warnings
- Manual overrides (total and per bucket), clearing and reconciliation
"""

from decimal import Decimal

import pytest

from books_engines.line_tax import EmptyCompositePolicy, TaxPricingMode
from books_engines.totals import (
    LineItem,
    ManualOverride,
    TaxWarning,
    TotalsAggregator,
    aggregate_totals,
)
from books_kernel.domain.values import Money
from books_kernel.exceptions import InvalidAmountError, InvalidOverrideError


def _line(amount: str, tax_code_id=None) -> LineItem:
    return LineItem(amount=Money.of(amount), tax_code_id=tax_code_id)


class TestBasicTotals:
    """Totals without overrides."""

    def setup_method(self):
        self.aggregator = TotalsAggregator()

    def test_simple_exclusive(self, registry):
        snapshot = self.aggregator.aggregate(
            [_line("100.00", 1)], TaxPricingMode.EXCLUSIVE, registry
        )
        assert snapshot.sub_total == Money.of("100.00")
        assert snapshot.tax_amount == Money.of("13.00")
        assert snapshot.total_amount == Money.of("113.00")
        assert [b.tax_code_id for b in snapshot.buckets] == [1]
        assert not snapshot.is_overridden

    def test_simple_inclusive(self, registry):
        snapshot = self.aggregator.aggregate(
            [_line("113.00", 1)], TaxPricingMode.INCLUSIVE, registry
        )
        assert snapshot.sub_total == Money.of("113.00")
        assert snapshot.tax_amount == Money.of("13.00")
        assert snapshot.total_amount == Money.of("113.00")

    def test_composite_buckets(self, registry):
        snapshot = self.aggregator.aggregate(
            [_line("100.00", 2)], TaxPricingMode.EXCLUSIVE, registry
        )
        gst = snapshot.bucket(3)
        pst = snapshot.bucket(4)
        assert gst.amount == Money.of("5.00")
        assert gst.is_component
        assert gst.parent_id == 2
        assert pst.amount == Money.of("7.00")
        assert snapshot.tax_amount == Money.of("12.00")
        assert snapshot.total_amount == Money.of("112.00")
        assert snapshot.bucket(2) is None

    def test_untaxed_line_counts_in_subtotal(self, registry):
        snapshot = self.aggregator.aggregate(
            [_line("100.00", 1), _line("20.00")], TaxPricingMode.EXCLUSIVE, registry
        )
        assert snapshot.sub_total == Money.of("120.00")
        assert snapshot.tax_amount == Money.of("13.00")
        assert snapshot.total_amount == Money.of("133.00")

    def test_no_lines(self, registry):
        snapshot = self.aggregator.aggregate([], TaxPricingMode.EXCLUSIVE, registry)
        assert snapshot.sub_total.is_zero
        assert snapshot.tax_amount.is_zero
        assert snapshot.total_amount.is_zero
        assert snapshot.buckets == ()

    def test_merge_rounds_each_line(self, registry):
        """Two 10.05 lines at 13% tax 1.31 each; 20.10 at once would be 2.61."""
        snapshot = self.aggregator.aggregate(
            [_line("10.05", 1), _line("10.05", 1)], TaxPricingMode.EXCLUSIVE, registry
        )
        assert snapshot.bucket(1).amount == Money.of("2.62")
        assert snapshot.tax_amount == Money.of("2.62")
        assert snapshot.total_amount == Money.of("22.72")

    def test_buckets_in_first_use_order(self, registry):
        snapshot = self.aggregator.aggregate(
            [_line("50.00", 2), _line("100.00", 1)], TaxPricingMode.EXCLUSIVE, registry
        )
        assert [b.tax_code_id for b in snapshot.buckets] == [3, 4, 1]

    def test_mixed_kinds_compute_union(self, registry):
        snapshot = self.aggregator.aggregate(
            [_line("100.00", 1), _line("50.00", 2), _line("20.00")],
            TaxPricingMode.EXCLUSIVE,
            registry,
        )
        assert snapshot.sub_total == Money.of("170.00")
        assert snapshot.tax_amount == Money.of("19.00")
        assert snapshot.total_amount == Money.of("189.00")
        assert snapshot.has_mixed_tax_kinds
        assert snapshot.warnings == ()

    def test_mixed_kinds_flagged_when_disallowed(self, registry):
        aggregator = TotalsAggregator(allow_mixed_tax_kinds=False)
        snapshot = aggregator.aggregate(
            [_line("100.00", 1), _line("50.00", 2)], TaxPricingMode.EXCLUSIVE, registry
        )
        assert snapshot.tax_amount == Money.of("19.00")
        assert len(snapshot.warnings_with_code(TaxWarning.MIXED_TAX_KINDS)) == 1

    def test_line_results_kept(self, registry):
        snapshot = self.aggregator.aggregate(
            [_line("100.00", 1), _line("5.00")], TaxPricingMode.EXCLUSIVE, registry
        )
        assert snapshot.line_results[0].total_tax == Money.of("13.00")
        assert not snapshot.line_results[1].is_taxed

    def test_mode_accepts_string(self, registry):
        snapshot = self.aggregator.aggregate([_line("113.00", 1)], "inclusive", registry)
        assert snapshot.mode == TaxPricingMode.INCLUSIVE
        assert snapshot.total_amount == Money.of("113.00")

    def test_aggregate_totals_wrapper(self, registry):
        snapshot = aggregate_totals([_line("100.00", 1)], "exclusive", registry)
        assert snapshot.total_amount == Money.of("113.00")


class TestLineItem:
    """Tests for LineItem validation."""

    def test_amount_converted(self):
        line = LineItem(amount="12.5")
        assert line.amount == Money.of("12.50")

    def test_negative_amount_rejected(self):
        with pytest.raises(InvalidAmountError):
            LineItem(amount=Money.of("-5.00"))


class TestTaxWarnings:
    """Reference-data problems never abort aggregation."""

    def setup_method(self):
        self.aggregator = TotalsAggregator()

    def test_unknown_tax_code(self, registry):
        snapshot = self.aggregator.aggregate(
            [_line("100.00", 999), _line("100.00", 1)], TaxPricingMode.EXCLUSIVE, registry
        )
        warnings = snapshot.warnings_with_code(TaxWarning.UNKNOWN_TAX_CODE)
        assert len(warnings) == 1
        assert warnings[0].line_index == 0
        assert warnings[0].tax_code_id == 999
        assert snapshot.sub_total == Money.of("200.00")
        assert snapshot.tax_amount == Money.of("13.00")

    def test_empty_composite_rejected_as_warning(self, registry):
        snapshot = self.aggregator.aggregate(
            [_line("100.00", 5)], TaxPricingMode.EXCLUSIVE, registry
        )
        assert len(snapshot.warnings_with_code(TaxWarning.EMPTY_COMPOSITE_TAX)) == 1
        assert snapshot.tax_amount.is_zero
        assert snapshot.total_amount == Money.of("100.00")

    def test_empty_composite_fallback(self, registry):
        aggregator = TotalsAggregator(empty_composite_policy=EmptyCompositePolicy.FALLBACK)
        snapshot = aggregator.aggregate(
            [_line("100.00", 5)], TaxPricingMode.EXCLUSIVE, registry
        )
        assert snapshot.warnings == ()
        assert snapshot.bucket(5).amount == Money.of("10.00")
        assert not snapshot.bucket(5).is_component
        assert snapshot.total_amount == Money.of("110.00")

    def test_component_selected_on_line(self, registry):
        snapshot = self.aggregator.aggregate(
            [_line("100.00", 3)], TaxPricingMode.EXCLUSIVE, registry
        )
        assert len(snapshot.warnings_with_code(TaxWarning.COMPONENT_SELECTED)) == 1
        assert snapshot.tax_amount == Money.of("5.00")


class TestManualOverride:
    """Tests for ManualOverride construction."""

    def test_requires_one_form(self):
        with pytest.raises(InvalidOverrideError):
            ManualOverride()

    def test_forms_are_exclusive(self):
        with pytest.raises(InvalidOverrideError):
            ManualOverride(total_amount=Money.of("1.00"), per_bucket={3: Money.of("1.00")})

    def test_negative_rejected(self):
        with pytest.raises(InvalidAmountError):
            ManualOverride.total("-1.00")

    def test_rounded_on_construction(self):
        assert ManualOverride.total("12.345").total_amount == Money.of("12.35")
        assert ManualOverride.components({3: "4.005"}).per_bucket[3] == Money.of("4.01")

    def test_with_component_replaces_total(self):
        edited = ManualOverride.total("10.00").with_component(3, "4.00")
        assert edited.is_per_bucket
        assert edited.per_bucket == {3: Money.of("4.00")}

    def test_with_component_keeps_others(self):
        edited = ManualOverride.components({3: "4.00"}).with_component(4, "6.50")
        assert edited.per_bucket == {3: Money.of("4.00"), 4: Money.of("6.50")}

    def test_without_component(self):
        override = ManualOverride.components({3: "4.00", 4: "6.50"})
        assert override.without_component(3).per_bucket == {4: Money.of("6.50")}
        assert override.without_component(3).without_component(4) is None


class TestOverrideTotals:
    """Totals with an active override."""

    def setup_method(self):
        self.aggregator = TotalsAggregator()

    def test_total_override(self, registry):
        snapshot = self.aggregator.aggregate(
            [_line("100.00", 1)],
            TaxPricingMode.EXCLUSIVE,
            registry,
            override=ManualOverride.total("12.99"),
        )
        assert snapshot.tax_amount == Money.of("12.99")
        assert snapshot.total_amount == Money.of("112.99")
        assert snapshot.computed_tax_amount == Money.of("13.00")
        assert snapshot.computed_total_amount == Money.of("113.00")
        assert snapshot.bucket(1).amount == Money.of("12.99")
        assert snapshot.bucket(1).computed_amount == Money.of("13.00")
        assert snapshot.bucket(1).is_overridden
        assert snapshot.is_overridden

    def test_override_equal_to_computed_is_idempotent(self, registry):
        lines = [_line("100.00", 1)]
        plain = self.aggregator.aggregate(lines, TaxPricingMode.EXCLUSIVE, registry)
        overridden = self.aggregator.aggregate(
            lines, TaxPricingMode.EXCLUSIVE, registry,
            override=ManualOverride.total(plain.tax_amount),
        )
        assert overridden.tax_amount == plain.tax_amount
        assert overridden.total_amount == plain.total_amount

    def test_clearing_restores_computed(self, registry):
        lines = [_line("100.00", 1), _line("33.33", 2)]
        before = self.aggregator.aggregate(lines, TaxPricingMode.EXCLUSIVE, registry)
        self.aggregator.aggregate(
            lines, TaxPricingMode.EXCLUSIVE, registry,
            override=ManualOverride.total("1.00"),
        )
        after = self.aggregator.aggregate(lines, TaxPricingMode.EXCLUSIVE, registry)
        assert after == before

    def test_total_override_inclusive_keeps_total(self, registry):
        snapshot = self.aggregator.aggregate(
            [_line("113.00", 1)],
            TaxPricingMode.INCLUSIVE,
            registry,
            override=ManualOverride.total("12.00"),
        )
        assert snapshot.tax_amount == Money.of("12.00")
        assert snapshot.total_amount == Money.of("113.00")

    def test_total_override_leaves_multiple_buckets(self, registry):
        snapshot = self.aggregator.aggregate(
            [_line("100.00", 2)],
            TaxPricingMode.EXCLUSIVE,
            registry,
            override=ManualOverride.total("11.00"),
        )
        assert snapshot.tax_amount == Money.of("11.00")
        assert snapshot.bucket(3).amount == Money.of("5.00")
        assert not snapshot.bucket(3).is_overridden

    def test_per_bucket_partial_override(self, registry):
        snapshot = self.aggregator.aggregate(
            [_line("100.00", 2)],
            TaxPricingMode.EXCLUSIVE,
            registry,
            override=ManualOverride.components({3: "4.00"}),
        )
        assert snapshot.bucket(3).amount == Money.of("4.00")
        assert snapshot.bucket(3).is_overridden
        assert snapshot.bucket(4).amount == Money.of("7.00")
        assert not snapshot.bucket(4).is_overridden
        assert snapshot.tax_amount == Money.of("11.00")
        assert snapshot.total_amount == Money.of("111.00")

    def test_per_bucket_second_edit(self, registry):
        override = ManualOverride.components({3: "4.00"}).with_component(4, "6.50")
        snapshot = self.aggregator.aggregate(
            [_line("100.00", 2)], TaxPricingMode.EXCLUSIVE, registry, override=override
        )
        assert snapshot.tax_amount == Money.of("10.50")
        assert snapshot.total_amount == Money.of("110.50")

    def test_stale_bucket_override_warns(self, registry):
        snapshot = self.aggregator.aggregate(
            [_line("100.00", 1)],
            TaxPricingMode.EXCLUSIVE,
            registry,
            override=ManualOverride.components({3: "1.00"}),
        )
        assert len(snapshot.warnings_with_code(TaxWarning.STALE_OVERRIDE)) == 1
        assert snapshot.tax_amount == Money.of("13.00")


class TestReconcileOverride:
    """Tests for TotalsAggregator.reconcile_override."""

    def setup_method(self):
        self.aggregator = TotalsAggregator()

    def test_none_stays_none(self, registry):
        snapshot = self.aggregator.aggregate([_line("1.00", 1)], TaxPricingMode.EXCLUSIVE, registry)
        assert self.aggregator.reconcile_override(None, snapshot) is None

    def test_total_dropped_without_taxed_lines(self, registry):
        snapshot = self.aggregator.aggregate([_line("1.00")], TaxPricingMode.EXCLUSIVE, registry)
        assert self.aggregator.reconcile_override(ManualOverride.total("1.00"), snapshot) is None

    def test_total_kept_with_taxed_lines(self, registry):
        override = ManualOverride.total("1.00")
        snapshot = self.aggregator.aggregate([_line("10.00", 1)], TaxPricingMode.EXCLUSIVE, registry)
        assert self.aggregator.reconcile_override(override, snapshot) is override

    def test_per_bucket_filtered(self, registry):
        override = ManualOverride.components({3: "4.00", 4: "6.00"})
        snapshot = self.aggregator.aggregate(
            [_line("100.00", 6), _line("100.00", 2)], TaxPricingMode.EXCLUSIVE, registry
        )
        assert self.aggregator.reconcile_override(override, snapshot) == override

        narrowed = self.aggregator.aggregate([_line("100.00", 1)], TaxPricingMode.EXCLUSIVE, registry)
        assert self.aggregator.reconcile_override(override, narrowed) is None

    def test_per_bucket_partially_kept(self, registry):
        override = ManualOverride.components({3: "4.00", 8: Decimal("1.00")})
        snapshot = self.aggregator.aggregate([_line("100.00", 2)], TaxPricingMode.EXCLUSIVE, registry)
        reconciled = self.aggregator.reconcile_override(override, snapshot)
        assert reconciled.per_bucket == {3: Money.of("4.00")}
