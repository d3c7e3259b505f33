"""
Cache helpers for Spread Pick'em

Cached views and queries are keyed by a settlement generation counter. Every
committed settlement bumps the counter, so payloads computed before it are
never read again and simply age out on their own timeout. This works the same
on RedisCache and SimpleCache, neither of which can delete by pattern.
"""

import functools

from flask import current_app, request

from pickem import cache

GENERATION_KEY = "settlement_generation"


def settlement_generation():
    return cache.get(GENERATION_KEY) or 0


def make_cache_key(*args, **kwargs):
    """Key for the current request: path, sorted query string and view args"""
    parts = [request.path, "&".join(f"{k}={v}" for k, v in sorted(request.args.items()))]
    parts.extend(str(arg) for arg in args)
    parts.extend(f"{k}={v}" for k, v in sorted(kwargs.items()))
    return ":".join(parts)


def _cached(build_key, timeout, label):
    def decorator(f):
        @functools.wraps(f)
        def wrapped(*args, **kwargs):
            cache_key = f"g{settlement_generation()}:{build_key(f, args, kwargs)}"

            result = cache.get(cache_key)
            if result is not None:
                current_app.logger.debug(f"{label} cache hit: {cache_key}")
                return result

            result = f(*args, **kwargs)
            cache.set(cache_key, result, timeout=timeout)
            current_app.logger.debug(f"{label} cache set: {cache_key}")
            return result

        return wrapped

    return decorator


def cached_route(timeout=300, key_prefix="view"):
    """
    Cache a view's return value per path and query string.

    The view must return plain data (dict or list), not a Response.
    """

    def build_key(f, args, kwargs):
        return f"{key_prefix}:{make_cache_key(*args, **kwargs)}"

    return _cached(build_key, timeout, "View")


def cached_query(name, timeout=300):
    """
    Cache a query helper's result per call arguments

    Args:
        name: Namespace for the key, e.g. 'Leaderboard'
        timeout: Cache timeout in seconds
    """

    def build_key(f, args, kwargs):
        parts = [str(arg) for arg in args]
        parts.extend(f"{k}={v}" for k, v in sorted(kwargs.items()))
        return f"query:{name}:{f.__name__}:{':'.join(parts)}"

    return _cached(build_key, timeout, "Query")


def invalidate_settlement_caches(game_id=None):
    """Retire every cached payload that may contain settlement results"""
    try:
        generation = settlement_generation() + 1
        # Never expires; a reset counter would resurrect old keys
        cache.set(GENERATION_KEY, generation, timeout=0)
        current_app.logger.debug(
            f"Settlement cache generation {generation}"
            + (f" (game {game_id})" if game_id is not None else "")
        )
    except Exception as e:
        # Stale standings only last until their timeout; settlement is committed
        current_app.logger.error(f"Failed to invalidate settlement caches: {e}")
