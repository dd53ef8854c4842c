"""Daemon liveness data for GET /health.

Process stats come from psutil; without it they read as zero and the endpoint
still answers.
"""
import time
from typing import Dict, Any, TYPE_CHECKING

try:
    import psutil
    PSUTIL_AVAILABLE = True
except ImportError:
    PSUTIL_AVAILABLE = False

if TYPE_CHECKING:
    from core.config import Settings
    from services.operations import OperationCoordinator
    from services.reconciliation import ReconciliationSweeper

_startup_time: float = 0.0


def set_startup_time() -> None:
    """Record the daemon startup time. Call once during lifespan startup."""
    global _startup_time
    _startup_time = time.time()


def get_uptime() -> float:
    return time.time() - _startup_time if _startup_time else 0.0


def process_stats(logs_dir: str = ".") -> Dict[str, float]:
    """Resident memory, running child commands, and usage of the logs volume."""
    stats = {"memory_mb": 0.0, "child_processes": 0, "disk_percent": 0.0}
    if not PSUTIL_AVAILABLE:
        return stats

    try:
        proc = psutil.Process()
        stats["memory_mb"] = round(proc.memory_info().rss / (1024 * 1024), 1)
        # kind, kubectl, git and image builds all run as children
        stats["child_processes"] = len(proc.children(recursive=True))
    except psutil.Error:
        pass
    try:
        stats["disk_percent"] = round(psutil.disk_usage(logs_dir).percent, 1)
    except OSError:
        pass
    return stats


def get_health_status(
    settings: "Settings",
    coordinator: "OperationCoordinator",
    sweeper: "ReconciliationSweeper",
) -> Dict[str, Any]:
    """Health payload: degraded while the reconciliation sweeper is not running."""
    logs_dir = settings.logs_dir if settings.logs_dir and settings.logs_dir.exists() else "."
    current = coordinator.current
    return {
        "status": "healthy" if sweeper.running else "degraded",
        "uptime_seconds": round(get_uptime(), 1),
        **process_stats(str(logs_dir)),
        "checks": {
            "reconciliation_sweeper": sweeper.running,
            "operation_in_progress": coordinator.busy,
            "operation": current.get_name() if current is not None else None,
        },
        "features": {
            "git_sync": settings.git_sync_enabled,
            "hot_reload": settings.hot_reload_enabled,
            "mpc_repo_configured": settings.mpc_repo_path is not None,
        },
        "psutil_available": PSUTIL_AVAILABLE,
    }
