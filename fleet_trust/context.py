"""Utilities for tracing a reconciliation pass through log output."""

import contextvars
from contextlib import contextmanager
import logging
from time import perf_counter
from typing import Generator


_LOGGER = logging.getLogger(__name__)

# No public API
__all__: list[str] = []


trace: contextvars.ContextVar[tuple[str, ...]] = contextvars.ContextVar(
    "trace", default=()
)


def trace_label() -> str:
    """Return the current trace stack, e.g. `pass > cluster-a`."""
    return " > ".join(trace.get())


@contextmanager
def trace_context(name: str) -> Generator[None, None, None]:
    """Push `name` on the trace stack and log the time spent inside it.

    Each asyncio task gets a copy of the context, so concurrent workers
    started within a pass each extend the pass label independently.
    """
    stack = trace.get()
    token = trace.set(stack + (name,))
    label = trace_label()
    t1 = perf_counter()
    _LOGGER.debug("[Trace] > %s", label)
    try:
        yield
    finally:
        t2 = perf_counter()
        trace.reset(token)
        _LOGGER.debug("[Trace] < %s (%0.2fs)", label, (t2 - t1))
