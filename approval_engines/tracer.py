"""
approval_engines.tracer -- ``@traced_engine`` decorator.

Wraps a pure engine function so each call emits one DEBUG record,
``APPROVAL_ENGINE_TRACE``, carrying the engine name and version, a short
fingerprint of the chosen inputs, the result and the duration.  Nothing
else about the call changes.

The logger lives under ``approval_kernel`` so the kernel's JSON formatter
renders it, but this module imports nothing from the kernel.
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import json
import logging
import time
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any, TypeVar

_logger = logging.getLogger("approval_kernel.engines.tracer")

TRACE_MESSAGE = "APPROVAL_ENGINE_TRACE"

F = TypeVar("F", bound=Callable[..., Any])


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: Mapping[str, Any],
) -> str:
    """16 hex chars of SHA-256 over the named arguments; enums hash as their values."""
    selected = {name: arguments.get(name) for name in fingerprint_fields}
    canonical = json.dumps(selected, sort_keys=True, separators=(",", ":"), default=_plain)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable[[F], F]:
    def decorator(func: F) -> F:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.perf_counter()
            result = func(*args, **kwargs)
            elapsed_ms = (time.perf_counter() - started) * 1000

            if _logger.isEnabledFor(logging.DEBUG):
                bound = signature.bind(*args, **kwargs)
                bound.apply_defaults()
                _logger.debug(
                    TRACE_MESSAGE,
                    extra={
                        "trace_type": TRACE_MESSAGE,
                        "engine_name": engine_name,
                        "engine_version": engine_version,
                        "function": func.__qualname__,
                        "input_fingerprint": compute_input_fingerprint(
                            fingerprint_fields, bound.arguments,
                        ),
                        "result": _plain(result),
                        "duration_ms": round(elapsed_ms, 3),
                    },
                )
            return result

        return wrapper  # type: ignore[return-value]

    return decorator
