"""Timing helpers for the pricing pipeline."""
import time
import logging
import functools
from typing import Callable

logger = logging.getLogger("quote-engine.perf")


def timed(func: Callable) -> Callable:
    """
    Decorator that measures and logs execution time for synchronous functions.

    A ``quote_id`` keyword argument, when passed, is attached to the log line.

    Usage::

        @timed
        def price_quote(...):
            ...
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            extra = {"duration_ms": duration_ms}
            if kwargs.get("quote_id"):
                extra["quote_id"] = kwargs["quote_id"]
            logger.debug("%s timed", func.__qualname__, extra=extra)
    return wrapper
