"""
books_config -- bookkeeping settings and tax-code tables.

Responsibility:
    Loads YAML settings into a validated ``BooksConfig`` and a
    ``TaxCodeRegistry``, and builds engines configured from them.

Architecture position:
    Configuration sits above ``books_kernel`` and ``books_engines``. The
    engines MUST NEVER import from ``books_config``; ``BooksConfig`` builds
    configured engine instances instead.

Usage:
    from books_config import get_default_config

    loaded = get_default_config()
    snapshot = loaded.config.totals_aggregator().aggregate(
        lines, loaded.config.pricing_mode, loaded.registry,
    )
"""

from __future__ import annotations

from pathlib import Path

from books_config.loader import (
    LoadedBooksConfig,
    load_books_config,
    load_yaml_file,
    parse_books_config,
    parse_tax_code,
    parse_tax_codes,
)
from books_config.schema import BooksConfig

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"


def get_default_config() -> LoadedBooksConfig:
    """Load the bundled default settings and tax codes."""
    return load_books_config(_DEFAULT_CONFIG_FILE)


__all__ = [
    "BooksConfig",
    "LoadedBooksConfig",
    "get_default_config",
    "load_books_config",
    "load_yaml_file",
    "parse_books_config",
    "parse_tax_code",
    "parse_tax_codes",
]
