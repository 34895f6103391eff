"""
books_engines.tracer -- BOOKS_ENGINE_TRACE records for engine entry points.

Responsibility:
    ``@traced_engine`` wraps a public engine method and, once it returns,
    logs which engine ran, at which version, on which inputs (as a short
    fingerprint) and for how long.

Architecture position:
    Engines -- support code for the calculation layer. Emits a log record
    and nothing else; the logger lives under ``books_kernel.engines`` so the
    kernel's ``configure_logging`` picks it up.

Invariants enforced:
    - Equal inputs fingerprint equally: Money and Decimal render as their
      amount, mappings are sorted by key, dataclasses by field order.
    - Arguments are read, never modified.

Failure modes:
    - A fingerprint field the caller did not pass is hashed as "null".
    - An exception inside the engine propagates unchanged and no trace is
      written for that call.

Usage:
    from books_engines.tracer import traced_engine

    @traced_engine("totals", "1.0", fingerprint_fields=("lines", "mode"))
    def aggregate(self, lines, mode, registry, override=None):
        ...
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import inspect
import logging
import time
from collections.abc import Callable, Mapping
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from books_kernel.domain.values import Money

_logger = logging.getLogger("books_kernel.engines.tracer")

FINGERPRINT_LENGTH = 16


def _canonicalize(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, Money):
        value = value.amount
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (str, int, float)):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        parts = (
            f"{f.name}:{_canonicalize(getattr(value, f.name))}"
            for f in dataclasses.fields(value)
        )
        return f"{type(value).__name__}(" + ",".join(parts) + ")"
    if isinstance(value, Mapping):
        pairs = sorted((str(k), _canonicalize(v)) for k, v in value.items())
        return "{" + ",".join(f"{k}:{v}" for k, v in pairs) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: Mapping[str, Any],
) -> str:
    """SHA-256 prefix over ``name=value`` pairs of the selected arguments."""
    canonical = "|".join(
        f"{name}={_canonicalize(arguments.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorator that emits BOOKS_ENGINE_TRACE after a successful call.

    Args:
        engine_name: Engine identifier (e.g., "payment_allocation").
        engine_version: Engine version (e.g., "1.0").
        fingerprint_fields: Parameter names hashed into input_fingerprint,
            whether the caller passes them positionally or by keyword.
    """

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                fingerprint = compute_input_fingerprint(fingerprint_fields, bound.arguments)

            started = time.monotonic()
            result = func(*args, **kwargs)
            elapsed_ms = round((time.monotonic() - started) * 1000, 2)

            _logger.info(
                "BOOKS_ENGINE_TRACE",
                extra={
                    "trace_type": "BOOKS_ENGINE_TRACE",
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fingerprint,
                    "duration_ms": elapsed_ms,
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper

    return decorator
