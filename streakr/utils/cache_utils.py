"""
Cache utilities for STREAKr

Leaderboards are cached per (scope, league) under a generation counter; a
settlement bumps the generation so every cached board goes stale at once
without having to enumerate keys (SimpleCache cannot).
"""

import functools

from flask import current_app

from streakr import cache

LEADERBOARD_GENERATION_KEY = "leaderboard_generation"


def _leaderboard_generation():
    generation = cache.get(LEADERBOARD_GENERATION_KEY)
    if generation is None:
        generation = 1
        cache.set(LEADERBOARD_GENERATION_KEY, generation, timeout=0)
    return generation


def make_leaderboard_key(scope, league_id=None):
    return f"leaderboard_v{_leaderboard_generation()}_{scope}_{league_id or 'all'}"


def cached_leaderboard(f):
    """
    Cache the full ranked rows of a leaderboard build.

    The wrapped function takes ``(scope, league_id=None)`` and returns a list;
    slicing to top-N and the requesting player's entry happen after the cache.
    """

    @functools.wraps(f)
    def wrapped(scope, league_id=None):
        cache_key = make_leaderboard_key(scope, league_id)

        result = cache.get(cache_key)
        if result is not None:
            current_app.logger.debug(f"Leaderboard cache hit: {cache_key}")
            return result

        result = f(scope, league_id)
        timeout = current_app.config.get("LEADERBOARD_CACHE_TIMEOUT", 60)
        cache.set(cache_key, result, timeout=timeout)
        current_app.logger.debug(f"Leaderboard cache set: {cache_key}")
        return result

    return wrapped


def invalidate_leaderboard_cache():
    """Make every cached leaderboard stale"""
    generation = _leaderboard_generation() + 1
    cache.set(LEADERBOARD_GENERATION_KEY, generation, timeout=0)
    current_app.logger.info(f"Leaderboard cache invalidated (generation {generation})")
    return generation


def get_cache_stats():
    return {
        "type": current_app.config.get("CACHE_TYPE", "Unknown"),
        "timeout": current_app.config.get("CACHE_DEFAULT_TIMEOUT", 300),
        "leaderboard_generation": _leaderboard_generation(),
    }
