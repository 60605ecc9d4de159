"""
Tests for performance monitoring.
"""
import asyncio
import pytest
import time
from csv_assistant.core.performance import PerformanceMonitor, timed, track_performance


@pytest.mark.unit
def test_performance_monitor_record():
    """Test recording timings."""
    PerformanceMonitor.record_metric("test_metric", 1.5, {"status": "success"})
    PerformanceMonitor.record_metric("test_metric", 2.0)
    PerformanceMonitor.record_metric("test_metric", 0.5, {"status": "error"})

    stats = PerformanceMonitor.get_stats("test_metric")

    assert stats["count"] == 3
    assert stats["errors"] == 1
    assert stats["min"] == 0.5
    assert stats["max"] == 2.0
    assert stats["mean"] == pytest.approx(1.333, rel=0.01)
    assert stats["p50"] == 1.5


@pytest.mark.unit
def test_performance_decorator_sync():
    """Test the decorator on a sync function."""
    @track_performance("test_function")
    def double(x: int) -> int:
        time.sleep(0.01)
        return x * 2

    assert double(5) == 10

    stats = PerformanceMonitor.get_stats("test_function")
    assert stats["count"] == 1
    assert stats["mean"] > 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_performance_decorator_async():
    """Test the decorator on an async function."""
    @track_performance("test_async_function")
    async def double(x: int) -> int:
        await asyncio.sleep(0.01)
        return x * 2

    assert await double(5) == 10
    assert PerformanceMonitor.get_stats("test_async_function")["count"] == 1


@pytest.mark.unit
def test_performance_decorator_records_errors_and_reraises():
    """Test errors are counted and re-raised."""
    @track_performance("failing_function")
    def fail():
        raise ValueError("boom")

    with pytest.raises(ValueError):
        fail()

    assert PerformanceMonitor.get_stats("failing_function")["errors"] == 1


@pytest.mark.unit
def test_get_all_metrics_and_clear():
    """Test reading all metrics and clearing them."""
    PerformanceMonitor.record_metric("metric1", 1.0)
    PerformanceMonitor.record_metric("metric2", 2.0)

    all_metrics = PerformanceMonitor.get_all_metrics()
    assert set(all_metrics) == {"metric1", "metric2"}

    PerformanceMonitor.clear_metrics()
    assert PerformanceMonitor.get_stats("metric1") is None


@pytest.mark.unit
def test_timed_block_records_success_and_errors():
    """Test the timed context manager records both outcomes."""
    with timed("block"):
        pass
    with pytest.raises(KeyError):
        with timed("block"):
            raise KeyError("missing")

    stats = PerformanceMonitor.get_stats("block")
    assert stats["count"] == 2
    assert stats["errors"] == 1
