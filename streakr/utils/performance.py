"""
Performance monitoring utilities for STREAKr

Timings of recomputes and leaderboard builds are logged when slow and kept
as per-operation totals for ``/admin/status``.
"""

import functools
import threading
import time

from flask import current_app, has_app_context

from streakr.utils.logging_config import get_logger

logger = get_logger(__name__)

_stats_lock = threading.Lock()
_operation_stats = {}


def record_operation(name, duration, success=True):
    with _stats_lock:
        stats = _operation_stats.setdefault(
            name, {"count": 0, "failures": 0, "total_seconds": 0.0, "max_seconds": 0.0}
        )
        stats["count"] += 1
        stats["total_seconds"] += duration
        stats["max_seconds"] = max(stats["max_seconds"], duration)
        if not success:
            stats["failures"] += 1


def get_operation_stats():
    """Per-operation count, failures, average and worst duration since start-up"""
    with _stats_lock:
        return {
            name: {
                "count": stats["count"],
                "failures": stats["failures"],
                "avg_seconds": round(stats["total_seconds"] / stats["count"], 4),
                "max_seconds": round(stats["max_seconds"], 4),
            }
            for name, stats in _operation_stats.items()
        }


def reset_operation_stats():
    with _stats_lock:
        _operation_stats.clear()


def timer(func):
    """
    Decorator to time function execution

    Functions slower than ``SLOW_FUNCTION_THRESHOLD`` are logged as warnings.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.time()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            execution_time = time.time() - start_time
            record_operation(func.__name__, execution_time, success=False)
            logger.error(
                f"Function {func.__name__} failed after {execution_time:.2f}s: {str(e)}"
            )
            raise

        execution_time = time.time() - start_time
        record_operation(func.__name__, execution_time)

        threshold = 1.0
        if has_app_context():
            threshold = current_app.config.get("SLOW_FUNCTION_THRESHOLD", 1.0)
        if execution_time > threshold:
            logger.warning(
                f"Slow function {func.__name__} took {execution_time:.2f}s "
                f"(threshold: {threshold}s)"
            )
        return result

    return wrapper


class PerformanceMonitor:
    """Context manager timing a named block"""

    def __init__(self, operation_name, log_threshold=0.1):
        self.operation_name = operation_name
        self.log_threshold = log_threshold
        self.start_time = None
        self.duration = None

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.time() - self.start_time
        record_operation(self.operation_name, self.duration, success=exc_type is None)

        if exc_type:
            logger.error(
                f"Operation '{self.operation_name}' failed after {self.duration:.3f}s: {exc_val}"
            )
        elif self.duration > self.log_threshold:
            logger.info(
                f"Operation '{self.operation_name}' completed in {self.duration:.3f}s"
            )
        return False
