"""
Configuration Loader (``books_config.loader``).

Responsibility
--------------
Loads a bookkeeping YAML file and parses it into a typed ``BooksConfig``
plus a ``TaxCodeRegistry``. A file has two optional top-level keys::

    settings:
      default_pricing_mode: exclusive
      empty_composite_policy: reject
    tax_codes:
      - {id: 1, name: HST, rate: 13}
      - {id: 2, name: GST+PST, isComposite: true}
      - {id: 3, name: GST, rate: 5, parentId: 2}

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``id``/``name`` on a tax code  -> ``KeyError`` propagates.
* Invalid settings  -> ``InvalidConfigError``.
* Impossible tax code structure  -> ``TaxConfigurationError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from books_config.schema import BooksConfig
from books_engines.tax_codes import TaxCode, TaxCodeRegistry, tax_code_from_record
from books_kernel.exceptions import InvalidConfigError
from books_kernel.logging_config import get_logger

logger = get_logger("config.loader")


@dataclass(frozen=True)
class LoadedBooksConfig:
    """Settings and tax codes read from one file."""

    config: BooksConfig
    registry: TaxCodeRegistry
    source: Path | None = None


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        InvalidConfigError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise InvalidConfigError(str(path), type(data).__name__, "top level must be a mapping")
    return data


def parse_tax_code(data: dict[str, Any]) -> TaxCode:
    """Parse one ``TaxCode`` from a dict (wire or snake_case keys)."""
    return tax_code_from_record(data)


def parse_tax_codes(items: list[dict[str, Any]]) -> TaxCodeRegistry:
    """Parse a list of tax code dicts into a registry."""
    if not isinstance(items, list):
        raise InvalidConfigError("tax_codes", type(items).__name__, "must be a list")
    return TaxCodeRegistry(parse_tax_code(item) for item in items)


def parse_books_config(data: dict[str, Any], source: Path | None = None) -> LoadedBooksConfig:
    """Parse an already-loaded document."""
    settings = data.get("settings") or {}
    if not isinstance(settings, dict):
        raise InvalidConfigError("settings", type(settings).__name__, "must be a mapping")

    config = BooksConfig.from_dict(settings)
    registry = parse_tax_codes(data.get("tax_codes") or [])

    problems = registry.validate()
    logger.info("books_config_loaded", extra={
        "source": str(source) if source else None,
        "tax_code_count": len(registry),
        "problem_count": len(problems),
    })
    return LoadedBooksConfig(config=config, registry=registry, source=source)


def load_books_config(path: Path | str) -> LoadedBooksConfig:
    """Load settings and tax codes from a YAML file."""
    path = Path(path)
    return parse_books_config(load_yaml_file(path), source=path)
