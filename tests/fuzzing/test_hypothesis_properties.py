"""
Hypothesis-based property tests for the tax and allocation engines.

Properties checked:
- Totals: exclusive total == subtotal + tax; inclusive total == subtotal;
  tax == sum of buckets when no override is active
- Composite tax == sum of individually rounded component taxes
- Exclusive/inclusive duality holds within one cent
- Overrides: equal-to-computed is a no-op; clearing restores the snapshot
- Allocation: conservation, per-invoice ceilings, balances never increase
"""

from datetime import date, timedelta
from decimal import Decimal

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from hypothesis.strategies import composite

from books_engines.line_tax import LineTaxCalculator, TaxPricingMode, tax_for_rate
from books_engines.payment_allocation import InvoiceCandidate, PaymentAllocator
from books_engines.tax_codes import TaxCode, TaxCodeRegistry
from books_engines.totals import LineItem, ManualOverride, TotalsAggregator
from books_kernel.domain.values import Money, money_sum
from books_kernel.exceptions import OverApplicationError

REGISTRY = TaxCodeRegistry([
    TaxCode(id=1, name="HST", rate=Decimal("13")),
    TaxCode(id=2, name="GST + QST", is_composite=True),
    TaxCode(id=3, name="GST", rate=Decimal("5"), parent_id=2),
    TaxCode(id=4, name="QST", rate=Decimal("9.975"), parent_id=2),
    TaxCode(id=5, name="Exempt", rate=Decimal("0")),
])

PROPERTY_SETTINGS = settings(
    max_examples=100,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)


# Strategies

amounts = st.decimals(
    min_value=Decimal("0"),
    max_value=Decimal("999999.99"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)

rates = st.sampled_from(
    [Decimal("0"), Decimal("2"), Decimal("5"), Decimal("7"), Decimal("9.975"), Decimal("13"), Decimal("15")]
)

modes = st.sampled_from([TaxPricingMode.EXCLUSIVE, TaxPricingMode.INCLUSIVE])


@composite
def line_lists(draw):
    """Lines with a mix of simple, composite, exempt and untaxed codes."""
    rows = draw(st.lists(
        st.tuples(amounts, st.sampled_from([None, 1, 2, 5])),
        max_size=8,
    ))
    return [LineItem(amount=Money.of(a), tax_code_id=code) for a, code in rows]


@composite
def candidate_lists(draw, with_previous=True):
    """Open invoices with distinct ids, optional dates and edit-mode amounts."""
    count = draw(st.integers(min_value=0, max_value=6))
    candidates = []
    for i in range(count):
        balance = draw(amounts)
        previous = draw(st.one_of(st.just(Decimal("0")), amounts)) if with_previous else Decimal("0")
        offset = draw(st.one_of(st.none(), st.integers(min_value=0, max_value=365)))
        invoice_date = None if offset is None else date(2024, 1, 1) + timedelta(days=offset)
        candidates.append(InvoiceCandidate(
            invoice_id=f"inv-{i}",
            current_balance=Money.of(balance),
            invoice_date=invoice_date,
            previously_applied=Money.of(previous),
        ))
    return candidates


class TestTotalsProperties:
    """Invariants of TotalsAggregator.aggregate."""

    @given(lines=line_lists(), mode=modes)
    @PROPERTY_SETTINGS
    def test_total_identity(self, lines, mode):
        snapshot = TotalsAggregator().aggregate(lines, mode, REGISTRY)
        if mode == TaxPricingMode.EXCLUSIVE:
            assert snapshot.total_amount == (snapshot.sub_total + snapshot.tax_amount).round2()
        else:
            assert snapshot.total_amount == snapshot.sub_total
        assert snapshot.tax_amount == money_sum(b.amount for b in snapshot.buckets)
        assert snapshot.sub_total == money_sum(line.amount for line in lines)

    @given(amount=amounts, mode=modes)
    @PROPERTY_SETTINGS
    def test_composite_is_sum_of_rounded_components(self, amount, mode):
        money = Money.of(amount)
        result = LineTaxCalculator().compute(money, REGISTRY.get_by_id(2), mode, REGISTRY)
        expected = (
            tax_for_rate(money, Decimal("5"), mode)
            + tax_for_rate(money, Decimal("9.975"), mode)
        ).round2()
        assert result.total_tax == expected

    @given(amount=amounts, rate=rates)
    @PROPERTY_SETTINGS
    def test_exclusive_inclusive_duality(self, amount, rate):
        base = Money.of(amount)
        tax = base.exclusive_tax(rate)
        gross = (base + tax).round2()
        recovered = gross.inclusive_tax(rate)
        assert abs(recovered - tax) <= Money.of("0.01")

    @given(lines=line_lists(), mode=modes)
    @PROPERTY_SETTINGS
    def test_override_equal_to_computed_is_noop(self, lines, mode):
        aggregator = TotalsAggregator()
        plain = aggregator.aggregate(lines, mode, REGISTRY)
        overridden = aggregator.aggregate(
            lines, mode, REGISTRY, override=ManualOverride.total(plain.tax_amount)
        )
        assert overridden.tax_amount == plain.tax_amount
        assert overridden.total_amount == plain.total_amount

    @given(lines=line_lists(), mode=modes, override_amount=amounts)
    @PROPERTY_SETTINGS
    def test_clearing_override_restores_snapshot(self, lines, mode, override_amount):
        aggregator = TotalsAggregator()
        before = aggregator.aggregate(lines, mode, REGISTRY)
        edited = aggregator.aggregate(
            lines, mode, REGISTRY, override=ManualOverride.total(override_amount)
        )
        assert edited.computed_tax_amount == before.tax_amount
        assert edited.computed_total_amount == before.total_amount
        assert aggregator.aggregate(lines, mode, REGISTRY) == before


class TestAllocationProperties:
    """Invariants of PaymentAllocator."""

    @given(received=amounts, candidates=candidate_lists())
    @PROPERTY_SETTINGS
    def test_auto_apply_conserves_and_respects_ceilings(self, received, candidates):
        allocation = PaymentAllocator().auto_apply(Money.of(received), candidates)
        assert (allocation.total_applied + allocation.unapplied_amount).round2() == Money.of(received)
        assert not allocation.unapplied_amount.is_negative
        for line in allocation.lines:
            assert line.applied_amount <= line.ceiling

    @given(received=amounts, candidates=candidate_lists(), data=st.data())
    @PROPERTY_SETTINGS
    def test_manual_allocation_conserves_or_rejects(self, received, candidates, data):
        requested = {
            c.invoice_id: data.draw(amounts, label=f"request {c.invoice_id}")
            for c in candidates
        }
        clamped = money_sum(
            min(Money.of(requested[c.invoice_id]), c.ceiling) for c in candidates
        )
        try:
            allocation = PaymentAllocator().allocate(Money.of(received), candidates, requested)
        except OverApplicationError:
            assert clamped > Money.of(received)
            return
        assert clamped <= Money.of(received)
        assert (allocation.total_applied + allocation.unapplied_amount).round2() == Money.of(received)

    @given(received=amounts, candidates=candidate_lists(with_previous=False))
    @PROPERTY_SETTINGS
    def test_commit_never_raises_balance_or_goes_negative(self, received, candidates):
        allocator = PaymentAllocator()
        allocation = allocator.auto_apply(Money.of(received), candidates)
        latest = {c.invoice_id: c.current_balance for c in candidates}
        commit = allocator.plan_commit(allocation, latest)
        for change in commit.changes:
            assert change.new_balance <= change.previous_balance
            assert not change.new_balance.is_negative
        assert commit.payment_balance == -allocation.unapplied_amount
