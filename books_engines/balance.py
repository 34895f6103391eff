"""
Balance Reconciler - Remaining balances of invoices, bills and payments.

Pure functions. Used forward, after an allocation commits, and for display
(``amount_paid`` = original - current balance).

Sign conventions:
    invoice / bill   positive balance = amount still owed
                     negative balance = overpaid (flagged, never hidden)
    payment / credit negative balance = unapplied credit available
                     zero             = fully applied

Statuses:
    invoice / bill   open, overdue, overpaid (balance < 0), completed (balance 0)
    payment / credit unapplied_credit, partial, completed (under a cent left)

No function here reads the clock: overdue status needs an explicit as_of.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from enum import Enum

from books_engines.tracer import traced_engine
from books_kernel.domain.values import Money, money_max, money_sum
from books_kernel.logging_config import get_logger

logger = get_logger("engines.balance")


class InvoiceStatus(str, Enum):
    """Status derived from an invoice's balance."""

    OPEN = "open"
    OVERDUE = "overdue"
    OVERPAID = "overpaid"
    COMPLETED = "completed"


class CreditStatus(str, Enum):
    """Status of a payment, deposit or credit note from its remaining credit."""

    UNAPPLIED_CREDIT = "unapplied_credit"
    PARTIAL = "partial"
    COMPLETED = "completed"


@dataclass(frozen=True)
class InvoiceBalance:
    """An invoice's balance with its overpayment made explicit."""

    original_amount: Money
    total_paid: Money
    balance: Money

    @property
    def is_overpaid(self) -> bool:
        return self.balance.is_negative

    @property
    def overpayment(self) -> Money:
        return money_max(Money.zero(), -self.balance)

    @property
    def is_settled(self) -> bool:
        return self.balance.is_zero


class BalanceReconciler:
    """Recompute balances after allocation changes."""

    @traced_engine("balance", "1.0", fingerprint_fields=("original_amount", "prior_payments"))
    def reconcile_invoice(
        self,
        original_amount: Money,
        prior_payments: Iterable[Money],
    ) -> InvoiceBalance:
        """
        Balance of an invoice after the given payments and credits.

        A negative result is kept and reported through ``is_overpaid``.
        """
        original = Money.of(original_amount, "original_amount").round2()
        paid = money_sum(Money.of(p, "payment").round2() for p in prior_payments)
        balance = (original - paid).round2()

        if balance.is_negative:
            logger.warning("invoice_overpaid", extra={
                "original_amount": str(original.amount),
                "total_paid": str(paid.amount),
                "overpayment": str((-balance).amount),
            })

        return InvoiceBalance(original_amount=original, total_paid=paid, balance=balance)

    def invoice_balance_after(
        self,
        original_amount: Money,
        prior_payments: Iterable[Money],
    ) -> Money:
        """``round2(original - sum(prior_payments))``; negative means overpaid."""
        return self.reconcile_invoice(original_amount, list(prior_payments)).balance

    def amount_paid(self, original_amount: Money, current_balance: Money) -> Money:
        """Amount already paid, for display."""
        return (Money.of(original_amount) - Money.of(current_balance)).round2()

    def payment_balance(
        self,
        received_amount: Money,
        applied_amounts: Iterable[Money],
    ) -> Money:
        """
        A payment's own balance: ``-(received - applied)`` while credit
        remains, zero once fully applied.

        A positive result means more was applied than received; it is
        returned as-is and logged.
        """
        received = Money.of(received_amount, "received_amount").round2()
        applied = money_sum(Money.of(a, "applied").round2() for a in applied_amounts)
        unapplied = (received - applied).round2()

        if unapplied.is_negative:
            logger.warning("payment_over_applied", extra={
                "received_amount": str(received.amount),
                "total_applied": str(applied.amount),
            })
        if unapplied.is_zero:
            return Money.zero()
        return -unapplied

    def restore_after_removal(self, current_balance: Money, applied_amount: Money) -> Money:
        """Invoice balance once a payment's application to it is removed."""
        restored = (Money.of(current_balance) + Money.of(applied_amount)).round2()
        logger.info("invoice_balance_restored", extra={
            "current_balance": str(Money.of(current_balance).amount),
            "released": str(Money.of(applied_amount).amount),
            "restored_balance": str(restored.amount),
        })
        return restored

    def invoice_status(
        self,
        balance: Money,
        due_date: date | None = None,
        as_of: date | None = None,
    ) -> InvoiceStatus:
        """
        Status from balance and due date.

        Only a zero balance is completed; a negative one is overpaid. A
        positive balance is overdue only when both ``due_date`` and ``as_of``
        are given and the due date has passed.
        """
        balance = Money.of(balance).round2()
        if balance.is_zero:
            return InvoiceStatus.COMPLETED
        if balance.is_negative:
            return InvoiceStatus.OVERPAID
        if due_date is not None and as_of is not None and as_of > due_date:
            return InvoiceStatus.OVERDUE
        return InvoiceStatus.OPEN

    def credit_status(self, original_amount: Money, balance: Money) -> CreditStatus:
        """
        Status of a payment or credit from its original amount and its
        balance (negative while credit remains).

        Less than a cent remaining is completed; the full original amount
        remaining is unapplied; anything between is partial.
        """
        original = Money.of(original_amount, "original_amount").round2()
        remaining = money_max(Money.zero(), -Money.of(balance, "balance").round2())
        if remaining.is_zero:
            return CreditStatus.COMPLETED
        if remaining >= original:
            return CreditStatus.UNAPPLIED_CREDIT
        return CreditStatus.PARTIAL


def invoice_balance_after(original_amount: Money, prior_payments: Iterable[Money]) -> Money:
    """Convenience wrapper around ``BalanceReconciler.invoice_balance_after``."""
    return BalanceReconciler().invoice_balance_after(original_amount, list(prior_payments))
