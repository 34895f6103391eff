"""
Tax Code Registry - Read-only lookup over sales-tax definitions.

A tax code is exactly one of:
    - simple:    not composite, no parent
    - composite: composite, no parent, one or more components
    - component: not composite, parent set to a composite

Only top-level codes (simple or composite) are selectable on a line.
The registry is built per transaction scope from the caller's tax-code list
and never caches across calls.

Usage:
    from books_engines.tax_codes import TaxCode, TaxCodeRegistry

    registry = TaxCodeRegistry([
        TaxCode(id=1, name="HST", rate=Decimal("13")),
        TaxCode(id=2, name="GST+PST", is_composite=True),
        TaxCode(id=3, name="GST", rate=Decimal("5"), parent_id=2),
        TaxCode(id=4, name="PST", rate=Decimal("7"), parent_id=2),
    ])
    registry.components_of(2)  # (GST, PST)
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

from books_kernel.domain.values import to_decimal
from books_kernel.exceptions import (
    EmptyCompositeTaxError,
    InvalidAmountError,
    TaxConfigurationError,
    UnknownTaxCodeError,
)
from books_kernel.logging_config import get_logger

logger = get_logger("engines.tax_codes")

TaxCodeId = int | str


class TaxCodeKind(str, Enum):
    """Structural role of a tax code."""

    SIMPLE = "simple"
    COMPOSITE = "composite"
    COMPONENT = "component"


@dataclass(frozen=True)
class TaxCode:
    """
    Sales-tax rule as configured in company settings.

    ``rate`` is a percentage (13 for 13%). It is meaningless on a composite,
    whose tax is the sum of its components.
    """

    id: TaxCodeId
    name: str
    rate: Decimal = Decimal("0")
    is_composite: bool = False
    parent_id: TaxCodeId | None = None

    def __post_init__(self) -> None:
        try:
            rate = to_decimal(self.rate, "rate")
        except InvalidAmountError as e:
            raise TaxConfigurationError(self.id, f"rate {self.rate!r} is not a number") from e
        if rate < Decimal("0"):
            raise TaxConfigurationError(self.id, "rate cannot be negative")
        object.__setattr__(self, "rate", rate)

        if self.is_composite and self.parent_id is not None:
            raise TaxConfigurationError(self.id, "a composite code cannot have a parent")

    @property
    def kind(self) -> TaxCodeKind:
        if self.is_composite:
            return TaxCodeKind.COMPOSITE
        if self.parent_id is not None:
            return TaxCodeKind.COMPONENT
        return TaxCodeKind.SIMPLE

    @property
    def is_top_level(self) -> bool:
        return self.parent_id is None

    @property
    def is_component(self) -> bool:
        return self.kind == TaxCodeKind.COMPONENT


def tax_code_from_record(record: Mapping[str, Any]) -> TaxCode:
    """
    Build a TaxCode from a settings record.

    Accepts the wire spelling (``isComposite``, ``parentId``) as well as
    snake_case keys. A missing or null rate is read as zero.

    Raises:
        KeyError: ``id`` or ``name`` is missing.
        TaxConfigurationError: rate is invalid or structure is impossible.
    """
    is_composite = record.get("isComposite", record.get("is_composite", False))
    parent_id = record.get("parentId", record.get("parent_id"))
    rate = record.get("rate")
    return TaxCode(
        id=record["id"],
        name=record["name"],
        rate=Decimal("0") if rate is None else rate,
        is_composite=bool(is_composite),
        parent_id=parent_id,
    )


class TaxCodeRegistry:
    """
    Pure lookup over an immutable list of tax codes.

    No side effects. Duplicate ids keep the first definition and are
    reported by ``validate()``.
    """

    def __init__(self, codes: Iterable[TaxCode] = ()):
        self._codes: tuple[TaxCode, ...] = tuple(codes)
        self._by_id: dict[TaxCodeId, TaxCode] = {}
        self._children: dict[TaxCodeId, list[TaxCode]] = {}
        self._duplicates: list[TaxCodeId] = []

        for code in self._codes:
            if code.id in self._by_id:
                self._duplicates.append(code.id)
                continue
            self._by_id[code.id] = code
            if code.parent_id is not None:
                self._children.setdefault(code.parent_id, []).append(code)

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> TaxCodeRegistry:
        """Build a registry from settings records (see ``tax_code_from_record``)."""
        return cls(tax_code_from_record(r) for r in records)

    def get_by_id(self, tax_code_id: TaxCodeId) -> TaxCode:
        """
        Look up a code by id.

        Raises:
            UnknownTaxCodeError: id is not in the registry.
        """
        code = self._by_id.get(tax_code_id)
        if code is None:
            raise UnknownTaxCodeError(tax_code_id)
        return code

    def find(self, tax_code_id: TaxCodeId | None) -> TaxCode | None:
        if tax_code_id is None:
            return None
        return self._by_id.get(tax_code_id)

    def components_of(self, parent_id: TaxCodeId) -> tuple[TaxCode, ...]:
        """All codes whose parent is ``parent_id``, in registry order."""
        return tuple(self._children.get(parent_id, ()))

    def is_top_level(self, code: TaxCode) -> bool:
        return code.parent_id is None

    def is_component_id(self, tax_code_id: TaxCodeId) -> bool:
        code = self._by_id.get(tax_code_id)
        return code is not None and code.is_component

    def top_level_codes(self) -> tuple[TaxCode, ...]:
        """Codes a line may select."""
        return tuple(c for c in self._by_id.values() if c.is_top_level)

    def validate(self) -> list[TaxConfigurationError]:
        """
        Report integrity problems without raising.

        Returns one error per problem: duplicate ids, composites without
        components, components whose parent is missing, and components whose
        parent is not composite.
        """
        problems: list[TaxConfigurationError] = [
            TaxConfigurationError(dup, "duplicate tax code id") for dup in self._duplicates
        ]

        for code in self._by_id.values():
            if code.is_composite and not self._children.get(code.id):
                problems.append(EmptyCompositeTaxError(code.id))
            if code.parent_id is not None:
                parent = self._by_id.get(code.parent_id)
                if parent is None:
                    problems.append(
                        TaxConfigurationError(code.id, f"parent {code.parent_id} does not exist")
                    )
                elif not parent.is_composite:
                    problems.append(
                        TaxConfigurationError(code.id, f"parent {code.parent_id} is not composite")
                    )

        if problems:
            logger.warning("tax_registry_validation_failed", extra={
                "problem_count": len(problems),
                "problems": [
                    {"tax_code_id": p.tax_code_id, "code": p.code} for p in problems
                ],
            })
        return problems

    def __contains__(self, tax_code_id: object) -> bool:
        return tax_code_id in self._by_id

    def __iter__(self) -> Iterator[TaxCode]:
        return iter(self._by_id.values())

    def __len__(self) -> int:
        return len(self._by_id)
