"""
Payloads - Wire shapes exchanged with the surrounding application.

Forms send line items as loosely-typed JSON (ids may be missing, null, 0
or ""); the persistence API expects numeric totals and explicit nulls.
This module is the only place that translates between the two.

Rules:
    - A missing, null, 0 or "" ``accountId`` / ``salesTaxId`` becomes None
      on the way in and null on the way out; never omitted.
    - A missing, null or blank line amount is read as 0. Any other
      non-numeric amount rejects the whole payload, so a typo never turns
      into a silently understated total.
    - Amounts leave as floats rounded to 0.01.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from books_engines.payment_allocation import PaymentAllocation
from books_engines.totals import LineItem, TotalsSnapshot
from books_kernel.domain.values import Money


def _optional_id(value: Any) -> Any:
    if value is None or value == "" or value == 0:
        return None
    return value


def line_items_from_payload(rows: Iterable[Mapping[str, Any]]) -> list[LineItem]:
    """
    Build LineItems from form rows.

    Raises:
        InvalidAmountError: an amount is negative or not a number; no
            rows are returned.
    """
    items: list[LineItem] = []
    for row in rows:
        amount = row.get("amount")
        if amount is None or (isinstance(amount, str) and not amount.strip()):
            amount = 0
        items.append(LineItem(
            amount=Money.of(amount, "amount"),
            tax_code_id=_optional_id(row.get("salesTaxId", row.get("sales_tax_id"))),
            account_id=_optional_id(row.get("accountId", row.get("account_id"))),
            description=row.get("description") or "",
        ))
    return items


def line_items_payload(lines: Sequence[LineItem]) -> list[dict[str, Any]]:
    return [
        {
            "accountId": _optional_id(line.account_id),
            "description": line.description,
            "amount": line.amount.to_float(),
            "salesTaxId": _optional_id(line.tax_code_id),
        }
        for line in lines
    ]


def totals_payload(snapshot: TotalsSnapshot) -> dict[str, float]:
    return {
        "subTotal": snapshot.sub_total.to_float(),
        "taxAmount": snapshot.tax_amount.to_float(),
        "totalAmount": snapshot.total_amount.to_float(),
    }


def tax_components_payload(snapshot: TotalsSnapshot) -> list[dict[str, Any]]:
    """Buckets as displayed, in first-use order."""
    return [
        {
            "id": bucket.tax_code_id,
            "name": bucket.name,
            "rate": float(bucket.rate),
            "amount": bucket.amount.to_float(),
            "isComponent": bucket.is_component,
            "parentId": bucket.parent_id,
        }
        for bucket in snapshot.buckets
    ]


def transaction_payload(snapshot: TotalsSnapshot, lines: Sequence[LineItem]) -> dict[str, Any]:
    """Totals plus the raw line items, as the transaction endpoints take them."""
    payload: dict[str, Any] = totals_payload(snapshot)
    payload["lineItems"] = line_items_payload(lines)
    return payload


def payment_payload(allocation: PaymentAllocation) -> dict[str, Any]:
    """Selected applications with a positive amount, plus the unapplied credit."""
    return {
        "lineItems": [
            {"transactionId": invoice_id, "amount": amount.to_float()}
            for invoice_id, amount in allocation.applications().items()
        ],
        "unappliedAmount": allocation.unapplied_amount.to_float(),
    }
