"""
Metrics endpoint for performance monitoring.
"""
from fastapi import APIRouter
from csv_assistant.core.performance import PerformanceMonitor
from csv_assistant.core.cache import get_summary_cache
from csv_assistant.api.routes import live_sessions

router = APIRouter()


@router.get("/metrics")
async def get_metrics():
    """
    Get performance metrics and cache statistics.

    Returns timing stats for every tracked operation (AI calls, plan
    generation, transforms, requests) plus the summary cache and live-session
    cache stats.
    """
    return {
        'performance': PerformanceMonitor.get_all_metrics(),
        'cache': {
            'summary_cache': get_summary_cache().get_stats(),
            'live_sessions': live_sessions().get_stats(),
        }
    }
