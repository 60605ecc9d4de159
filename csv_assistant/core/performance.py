"""
Performance monitoring and metrics collection.
"""
import time
import inspect
import logging
import threading
from collections import defaultdict
from contextlib import contextmanager
from functools import wraps
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

MAX_SAMPLES_PER_METRIC = 1000

# Re-entrant: get_all_metrics calls get_stats while holding the lock
_metrics_lock = threading.RLock()
_metrics: Dict[str, list] = defaultdict(list)


class PerformanceMonitor:
    """Monitor and track performance metrics."""

    @staticmethod
    def record_metric(name: str, value: float, metadata: Optional[Dict[str, Any]] = None):
        """
        Record a performance metric.

        Args:
            name: Metric name (e.g., 'execute_plan', 'generate_analysis_plans')
            value: Metric value (usually duration in seconds)
            metadata: Optional metadata (status, error, ...)
        """
        with _metrics_lock:
            samples = _metrics[name]
            samples.append({
                'value': value,
                'timestamp': time.time(),
                'metadata': metadata or {}
            })
            if len(samples) > MAX_SAMPLES_PER_METRIC:
                _metrics[name] = samples[-MAX_SAMPLES_PER_METRIC:]

    @staticmethod
    def get_stats(metric_name: str) -> Optional[Dict[str, float]]:
        """
        Get statistics for a metric.

        Returns:
            Dict with count, min, max, mean and percentiles, or None if no data
        """
        with _metrics_lock:
            if not _metrics.get(metric_name):
                return None

            values = sorted(m['value'] for m in _metrics[metric_name])
            errors = sum(1 for m in _metrics[metric_name] if m['metadata'].get('status') == 'error')
            return {
                'count': len(values),
                'errors': errors,
                'min': values[0],
                'max': values[-1],
                'mean': sum(values) / len(values),
                'p50': values[len(values) // 2],
                'p95': values[min(len(values) - 1, int(len(values) * 0.95))],
            }

    @staticmethod
    def get_all_metrics() -> Dict[str, Dict[str, float]]:
        """Get statistics for all metrics."""
        with _metrics_lock:
            return {name: PerformanceMonitor.get_stats(name) for name in list(_metrics.keys())}

    @staticmethod
    def clear_metrics():
        """Clear all metrics (useful for testing)."""
        with _metrics_lock:
            _metrics.clear()


@contextmanager
def timed(metric_name: str):
    """
    Record the duration of a block under ``metric_name``.

    Exceptions are recorded with status 'error' and re-raised.
    """
    start = time.perf_counter()
    try:
        yield
    except Exception as e:
        duration = time.perf_counter() - start
        PerformanceMonitor.record_metric(metric_name, duration, {'status': 'error', 'error': str(e)})
        logger.warning(
            f"{metric_name} failed after {duration:.3f}s: {e}",
            extra={'metric': metric_name, 'duration': duration}
        )
        raise
    duration = time.perf_counter() - start
    PerformanceMonitor.record_metric(metric_name, duration, {'status': 'success'})
    logger.debug(f"{metric_name} completed in {duration:.3f}s", extra={'metric': metric_name, 'duration': duration})


def track_performance(metric_name: str):
    """
    Decorator form of ``timed`` for plain and async functions.

    Usage:
        @track_performance("execute_plan")
        def execute_plan(...):
            ...
    """
    def decorator(func):
        if inspect.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                with timed(metric_name):
                    return await func(*args, **kwargs)
            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            with timed(metric_name):
                return func(*args, **kwargs)
        return sync_wrapper

    return decorator
