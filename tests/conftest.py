"""
Shared fixtures for the books test suite.

Tax code layout used across engine tests:

    1   HST            13%     simple
    2   GST + PST      --      composite of 3 and 4
    3   GST             5%     component of 2
    4   PST             7%     component of 2
    5   Broken combo   10%     composite with no components
    6   Small combo    --      composite of 8 and 9
    8   Levy A          2%     component of 6
    9   Levy B          2%     component of 6
    10  Exempt          0%     simple
"""

from decimal import Decimal

import pytest

from books_engines.tax_codes import TaxCode, TaxCodeRegistry
from books_kernel.logging_config import LogContext, reset_logging


# ---------------------------------------------------------------------------
# Logging fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_logging_state():
    """Each test starts with an unconfigured logger tree and empty context."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


# ---------------------------------------------------------------------------
# Tax code fixtures
# ---------------------------------------------------------------------------


def standard_tax_codes() -> list[TaxCode]:
    return [
        TaxCode(id=1, name="HST", rate=Decimal("13")),
        TaxCode(id=2, name="GST + PST", is_composite=True),
        TaxCode(id=3, name="GST", rate=Decimal("5"), parent_id=2),
        TaxCode(id=4, name="PST", rate=Decimal("7"), parent_id=2),
        TaxCode(id=5, name="Broken combo", rate=Decimal("10"), is_composite=True),
        TaxCode(id=6, name="Small combo", is_composite=True),
        TaxCode(id=8, name="Levy A", rate=Decimal("2"), parent_id=6),
        TaxCode(id=9, name="Levy B", rate=Decimal("2"), parent_id=6),
        TaxCode(id=10, name="Exempt", rate=Decimal("0")),
    ]


@pytest.fixture
def registry() -> TaxCodeRegistry:
    """Registry covering simple, composite, component and broken codes."""
    return TaxCodeRegistry(standard_tax_codes())


@pytest.fixture
def hst_registry() -> TaxCodeRegistry:
    """A single 13% code."""
    return TaxCodeRegistry([TaxCode(id=1, name="HST", rate=Decimal("13"))])
