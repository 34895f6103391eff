"""
Module: books_engines.payment_allocation
Responsibility:
    Apply a received payment (or an available credit) across a customer's
    or vendor's open invoices/bills, leaving any remainder as unapplied
    credit, and plan the balance changes a commit must make.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Balance mutation belongs to the caller's transaction store, which must
    serialize it per invoice; ``plan_commit`` re-checks each application
    against the freshest balances the store read under that lock.

Invariants enforced:
    - Conservation: total_applied + unapplied_amount == received_amount.
    - Per-invoice ceiling: applied <= current_balance + previously_applied.
      Requests above the ceiling are clamped; that is the only clamp.
    - total_applied > received_amount is rejected, never clamped.
    - All-or-nothing: every check runs before any result is built.

Failure modes:
    - InvalidAmountError on negative or non-finite amounts.
    - UnknownAllocationTargetError when a request names a non-candidate.
    - DuplicateAllocationTargetError when an invoice is offered twice.
    - OverApplicationError when applications exceed the received amount.
    - InsufficientBalanceError from plan_commit when a balance moved.

Usage:
    from books_engines.payment_allocation import InvoiceCandidate, PaymentAllocator

    allocator = PaymentAllocator()
    allocation = allocator.auto_apply(
        received_amount=Money.of("500.00"),
        candidates=[
            InvoiceCandidate("inv-1", Money.of("300.00"), invoice_date=date(2024, 1, 5)),
            InvoiceCandidate("inv-2", Money.of("250.00"), invoice_date=date(2024, 2, 1)),
        ],
    )
    allocation.applied_to("inv-2")  # Money('200.00')
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from books_engines.balance import BalanceReconciler, CreditStatus
from books_engines.tracer import traced_engine
from books_kernel.domain.values import Money, money_max, money_min, money_sum
from books_kernel.exceptions import (
    DuplicateAllocationTargetError,
    InsufficientBalanceError,
    OverApplicationError,
    UnknownAllocationTargetError,
)
from books_kernel.logging_config import get_logger

logger = get_logger("engines.payment_allocation")

InvoiceId = int | str
AmountLike = Money | Decimal | str | int | float


class AutoApplyOrder(str, Enum):
    """Order in which auto-apply visits candidates."""

    OLDEST_FIRST = "oldest_first"  # By invoice date; undated last
    AS_GIVEN = "as_given"  # Caller's order


@dataclass(frozen=True)
class InvoiceCandidate:
    """
    An open invoice or bill that can receive part of a payment.

    ``previously_applied`` is non-zero only when editing an existing
    payment: reducing a previous application frees that much balance again.
    """

    invoice_id: InvoiceId
    current_balance: Money
    invoice_date: date | None = None
    previously_applied: Money = field(default_factory=Money.zero)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "current_balance", Money.of(self.current_balance, "current_balance").round2()
        )
        previous = Money.of(self.previously_applied, "previously_applied")
        object.__setattr__(
            self,
            "previously_applied",
            previous.require_non_negative("previously_applied").round2(),
        )

    @property
    def ceiling(self) -> Money:
        """Most that may be applied to this invoice now."""
        return money_max(Money.zero(), self.current_balance + self.previously_applied)


@dataclass(frozen=True)
class AllocationLine:
    """Outcome for one candidate."""

    invoice_id: InvoiceId
    applied_amount: Money
    selected: bool
    requested_amount: Money
    ceiling: Money
    previously_applied: Money = field(default_factory=Money.zero)

    @property
    def was_clamped(self) -> bool:
        return self.requested_amount > self.applied_amount


@dataclass(frozen=True)
class PaymentAllocation:
    """
    A complete allocation of one received amount.

    Guarantees:
        - total_applied + unapplied_amount == received_amount
        - unapplied_amount >= 0
    """

    received_amount: Money
    lines: tuple[AllocationLine, ...]
    unapplied_amount: Money

    @property
    def selected_lines(self) -> tuple[AllocationLine, ...]:
        return tuple(line for line in self.lines if line.selected)

    @property
    def total_applied(self) -> Money:
        return money_sum(line.applied_amount for line in self.selected_lines)

    @property
    def is_fully_applied(self) -> bool:
        return self.unapplied_amount.is_zero

    def applied_to(self, invoice_id: InvoiceId) -> Money:
        for line in self.lines:
            if line.invoice_id == invoice_id and line.selected:
                return line.applied_amount
        return Money.zero()

    def applications(self) -> dict[InvoiceId, Money]:
        """Selected invoices with a positive applied amount."""
        return {
            line.invoice_id: line.applied_amount
            for line in self.selected_lines
            if line.applied_amount.is_positive
        }


@dataclass(frozen=True)
class CreditSource:
    """
    A payment, deposit or credit note carrying unapplied credit.

    Balance convention: negative means credit is available. Without an
    ``original_amount`` the credit available now counts as the original.
    """

    source_id: InvoiceId
    balance: Money
    original_amount: Money | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "balance", Money.of(self.balance, "balance").round2())
        if self.original_amount is not None:
            original = Money.of(self.original_amount, "original_amount").round2()
            object.__setattr__(self, "original_amount", original)

    @property
    def available_credit(self) -> Money:
        return money_max(Money.zero(), -self.balance)


@dataclass(frozen=True)
class CreditApplication:
    """Result of consuming a credit source against invoices."""

    source_id: InvoiceId
    allocation: PaymentAllocation
    new_source_balance: Money
    source_status: CreditStatus


@dataclass(frozen=True)
class InvoiceBalanceChange:
    """Balance mutation the transaction store must perform for one invoice."""

    invoice_id: InvoiceId
    previous_balance: Money
    applied_amount: Money
    new_balance: Money


@dataclass(frozen=True)
class AllocationCommit:
    """Everything a commit writes, derived from a validated allocation."""

    changes: tuple[InvoiceBalanceChange, ...]
    payment_balance: Money
    unapplied_amount: Money
    payment_status: CreditStatus


def payment_balance_for(unapplied_amount: Money) -> Money:
    """Payment's own balance: ``-unapplied`` (credit available) or zero."""
    if unapplied_amount.is_positive:
        return -unapplied_amount
    return Money.zero()


def previous_applications(rows: Iterable[Mapping[str, Any]]) -> dict[InvoiceId, Money]:
    """
    Re-derive previous applied amounts from stored payment line items.

    Rows use the persisted shape ``{"transactionId": ..., "amount": ...}``;
    repeated ids are summed.
    """
    applied: dict[InvoiceId, Money] = {}
    for row in rows:
        invoice_id = row.get("transactionId", row.get("transaction_id"))
        if invoice_id is None:
            continue
        amount = Money.of(row.get("amount") or 0, "amount").round2()
        applied[invoice_id] = (applied.get(invoice_id, Money.zero()) + amount).round2()
    return applied


class PaymentAllocator:
    """
    Distribute a received amount across open invoices.

    Contract:
        Pure functions, deterministic for identical input.
        No I/O, no database access.
    Non-goals:
        - Does not mutate balances; ``plan_commit`` only describes changes.
        - Does not serialize concurrent allocations; the store must.
    """

    def __init__(self, auto_apply_order: AutoApplyOrder = AutoApplyOrder.OLDEST_FIRST):
        self.auto_apply_order = AutoApplyOrder(auto_apply_order)

    @traced_engine("payment_allocation", "1.0", fingerprint_fields=("received_amount", "requested"))
    def allocate(
        self,
        received_amount: AmountLike,
        candidates: Sequence[InvoiceCandidate],
        requested: Mapping[InvoiceId, AmountLike],
    ) -> PaymentAllocation:
        """
        Apply operator-requested amounts.

        Args:
            received_amount: Amount received (or credit available)
            candidates: Open invoices offered to the operator
            requested: Requested application per invoice id; missing means 0

        Returns:
            PaymentAllocation with one line per candidate, in candidate order

        Raises:
            InvalidAmountError: a negative or non-finite amount
            UnknownAllocationTargetError: a request for a non-candidate
            DuplicateAllocationTargetError: an invoice id offered twice
            OverApplicationError: applications exceed received_amount
        """
        received = Money.of(received_amount, "received_amount")
        received = received.require_non_negative("received_amount").round2()
        by_id = _index_candidates(candidates)

        wanted: dict[InvoiceId, Money] = {}
        for invoice_id, amount in requested.items():
            if invoice_id not in by_id:
                logger.warning("payment_allocation_unknown_target", extra={
                    "invoice_id": invoice_id,
                })
                raise UnknownAllocationTargetError(invoice_id)
            value = Money.of(amount, "requested amount")
            wanted[invoice_id] = value.require_non_negative("requested amount").round2()

        return self._build(received, candidates, wanted)

    @traced_engine("payment_allocation", "1.0", fingerprint_fields=("received_amount",))
    def auto_apply(
        self,
        received_amount: AmountLike,
        candidates: Sequence[InvoiceCandidate],
    ) -> PaymentAllocation:
        """
        Greedily apply ``min(remaining, ceiling)`` to each candidate in
        ``auto_apply_order`` until nothing remains.

        Lines keep the caller's candidate order; only the visiting order
        follows the policy.
        """
        received = Money.of(received_amount, "received_amount")
        received = received.require_non_negative("received_amount").round2()
        _index_candidates(candidates)

        if self.auto_apply_order == AutoApplyOrder.OLDEST_FIRST:
            visiting = sorted(
                candidates,
                key=lambda c: (c.invoice_date is None, c.invoice_date or date.min),
            )
        else:
            visiting = list(candidates)

        remaining = received
        wanted: dict[InvoiceId, Money] = {}
        for candidate in visiting:
            if not remaining.is_positive:
                break
            amount = money_min(remaining, candidate.ceiling)
            if amount.is_positive:
                wanted[candidate.invoice_id] = amount
                remaining = (remaining - amount).round2()

        logger.info("payment_auto_apply_planned", extra={
            "received_amount": str(received.amount),
            "order": self.auto_apply_order.value,
            "invoices_funded": len(wanted),
            "remaining": str(remaining.amount),
        })
        return self._build(received, candidates, wanted)

    def apply_credit(
        self,
        source: CreditSource,
        candidates: Sequence[InvoiceCandidate],
        requested: Mapping[InvoiceId, AmountLike] | None = None,
    ) -> CreditApplication:
        """
        Consume a source's unapplied credit against invoices.

        With ``requested`` None the credit is auto-applied.

        Returns:
            CreditApplication whose new_source_balance is ``-remaining credit``
            and whose source_status is measured against the source's
            original amount
        """
        available = source.available_credit
        if requested is None:
            allocation = self.auto_apply(available, candidates)
        else:
            allocation = self.allocate(available, candidates, requested)

        new_balance = payment_balance_for(allocation.unapplied_amount)
        original = source.original_amount if source.original_amount is not None else available
        status = BalanceReconciler().credit_status(original, new_balance)
        logger.info("credit_applied", extra={
            "source_id": source.source_id,
            "available_credit": str(available.amount),
            "applied": str(allocation.total_applied.amount),
            "new_source_balance": str(new_balance.amount),
            "source_status": status.value,
        })
        return CreditApplication(
            source_id=source.source_id,
            allocation=allocation,
            new_source_balance=new_balance,
            source_status=status,
        )

    def plan_commit(
        self,
        allocation: PaymentAllocation,
        latest_balances: Mapping[InvoiceId, AmountLike],
    ) -> AllocationCommit:
        """
        Re-check an allocation against the freshest balances and describe
        the writes a commit performs.

        Args:
            allocation: A PaymentAllocation produced by this allocator
            latest_balances: Balances read by the store under its lock

        Raises:
            UnknownAllocationTargetError: a selected invoice has no balance
            InsufficientBalanceError: an application no longer fits
        """
        checked: list[tuple[AllocationLine, Money, Money]] = []
        for line in allocation.lines:
            applied = line.applied_amount if line.selected else Money.zero()
            # Deselected lines still matter in edit mode: their previous
            # application is released back to the invoice.
            if applied.is_zero and line.previously_applied.is_zero:
                continue
            if line.invoice_id not in latest_balances:
                raise UnknownAllocationTargetError(line.invoice_id)
            latest = Money.of(latest_balances[line.invoice_id], "latest balance").round2()
            available = latest + line.previously_applied
            if applied > available:
                logger.warning("payment_commit_insufficient_balance", extra={
                    "invoice_id": line.invoice_id,
                    "applied_amount": str(applied.amount),
                    "available": str(available.amount),
                })
                raise InsufficientBalanceError(
                    line.invoice_id, applied.amount, available.amount
                )
            checked.append((line, latest, applied))

        changes = tuple(
            InvoiceBalanceChange(
                invoice_id=line.invoice_id,
                previous_balance=latest,
                applied_amount=applied,
                new_balance=(latest + line.previously_applied - applied).round2(),
            )
            for line, latest, applied in checked
        )
        payment_balance = payment_balance_for(allocation.unapplied_amount)
        payment_status = BalanceReconciler().credit_status(
            allocation.received_amount, payment_balance
        )

        logger.info("payment_commit_planned", extra={
            "invoice_count": len(changes),
            "total_applied": str(allocation.total_applied.amount),
            "unapplied_amount": str(allocation.unapplied_amount.amount),
            "payment_balance": str(payment_balance.amount),
            "payment_status": payment_status.value,
        })
        return AllocationCommit(
            changes=changes,
            payment_balance=payment_balance,
            unapplied_amount=allocation.unapplied_amount,
            payment_status=payment_status,
        )

    def _build(
        self,
        received: Money,
        candidates: Sequence[InvoiceCandidate],
        wanted: Mapping[InvoiceId, Money],
    ) -> PaymentAllocation:
        lines: list[AllocationLine] = []
        for candidate in candidates:
            requested = wanted.get(candidate.invoice_id, Money.zero())
            ceiling = candidate.ceiling
            if requested.is_positive:
                applied = money_min(requested, ceiling)
                selected = True
            else:
                applied = Money.zero()
                selected = False
            lines.append(AllocationLine(
                invoice_id=candidate.invoice_id,
                applied_amount=applied,
                selected=selected,
                requested_amount=requested,
                ceiling=ceiling,
                previously_applied=candidate.previously_applied,
            ))

        total_applied = money_sum(line.applied_amount for line in lines if line.selected)
        if total_applied > received:
            logger.warning("payment_allocation_rejected", extra={
                "received_amount": str(received.amount),
                "total_applied": str(total_applied.amount),
            })
            raise OverApplicationError(received.amount, total_applied.amount)

        unapplied = (received - total_applied).round2()

        # INVARIANT: conservation -- applied + unapplied == received
        assert total_applied.amount + unapplied.amount == received.amount, (
            f"Allocation conservation violated: "
            f"{total_applied.amount} + {unapplied.amount} != {received.amount}"
        )

        logger.info("payment_allocated", extra={
            "received_amount": str(received.amount),
            "total_applied": str(total_applied.amount),
            "unapplied_amount": str(unapplied.amount),
            "selected_count": sum(1 for line in lines if line.selected),
            "clamped": [line.invoice_id for line in lines if line.was_clamped],
        })
        return PaymentAllocation(
            received_amount=received,
            lines=tuple(lines),
            unapplied_amount=unapplied,
        )


def _index_candidates(candidates: Sequence[InvoiceCandidate]) -> dict[InvoiceId, InvoiceCandidate]:
    by_id: dict[InvoiceId, InvoiceCandidate] = {}
    for candidate in candidates:
        if candidate.invoice_id in by_id:
            raise DuplicateAllocationTargetError(candidate.invoice_id)
        by_id[candidate.invoice_id] = candidate
    return by_id
