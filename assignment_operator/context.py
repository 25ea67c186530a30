"""Utilities for tracing and bounding the steps of a synchronization."""

import asyncio
from collections.abc import AsyncGenerator
import contextvars
from contextlib import asynccontextmanager
import logging
from time import perf_counter

from .exceptions import RepositoryError

_LOGGER = logging.getLogger(__name__)

# No public API
__all__: list[str] = []


trace: contextvars.ContextVar[list[str]] = contextvars.ContextVar("trace")


@asynccontextmanager
async def trace_context(
    name: str, timeout: float | None = None
) -> AsyncGenerator[None, None]:
    """Log entry and exit of a named step, failing it if it exceeds the timeout.

    Nested steps are logged with their parents, e.g. `create > clone`.
    """
    stack = trace.get([])
    token = trace.set(stack + [name])
    label = " > ".join(stack + [name])
    t1 = perf_counter()
    _LOGGER.debug("[Trace] > %s", label)
    try:
        async with asyncio.timeout(timeout):
            yield
    except TimeoutError as err:
        raise RepositoryError(f"Step '{label}' timed out after {timeout}s") from err
    finally:
        t2 = perf_counter()
        trace.reset(token)
        _LOGGER.debug("[Trace] < %s (%0.2fs)", label, (t2 - t1))
