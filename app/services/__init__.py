"""
app/services package marker.
"""

from app.services.cfp_service import (
    FastAPIBackgroundTaskExecutor,
    ThreadPoolTaskExecutor,
    build_cfp_orchestrator,
    get_cfp_orchestrator,
    get_manual_publish_storage,
    get_worker_pool,
)

__all__ = [
    "FastAPIBackgroundTaskExecutor",
    "ThreadPoolTaskExecutor",
    "build_cfp_orchestrator",
    "get_cfp_orchestrator",
    "get_manual_publish_storage",
    "get_worker_pool",
]
