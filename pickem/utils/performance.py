"""
Timing for settlement operations
"""

import functools
import time

from flask import current_app

from pickem.utils.logging_config import get_logger

logger = get_logger(__name__)


def _describe_call(func, args):
    # Skip self on bound service methods; a leading int is a game id
    if args and not isinstance(args[0], int):
        args = args[1:]
    if args and isinstance(args[0], int):
        return f"{func.__name__}(game {args[0]})"
    return f"{func.__name__}()"


def timer(func):
    """
    Log how long a settlement operation took.

    Calls slower than SLOW_FUNCTION_THRESHOLD are logged as warnings and
    failures as errors with the elapsed time.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        label = _describe_call(func, args)
        started = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            elapsed = time.perf_counter() - started
            logger.error(f"{label} failed after {elapsed:.3f}s: {e}")
            raise

        elapsed = time.perf_counter() - started
        threshold = current_app.config.get("SLOW_FUNCTION_THRESHOLD", 1.0)
        if elapsed > threshold:
            logger.warning(f"Slow call {label} took {elapsed:.2f}s (threshold: {threshold}s)")
        else:
            logger.debug(f"{label} finished in {elapsed:.3f}s")
        return result

    return wrapper
