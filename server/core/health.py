"""Health check and memory monitoring for the /health and /metrics endpoints."""
import asyncio
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Optional, TYPE_CHECKING

import psutil
from sqlalchemy import text

from core.logging import get_logger

if TYPE_CHECKING:
    from core.config import Settings
    from core.database import Database
    from services.message_buffer import MessageBufferService
    from services.user_cache import UserCache

logger = get_logger(__name__)

BYTES_PER_MB = 1024 * 1024

# Module-level startup time tracking
_startup_time: float = 0.0


def set_startup_time() -> None:
    """Record the application startup time. Call once during lifespan startup."""
    global _startup_time
    _startup_time = time.time()


def get_uptime() -> float:
    """Get uptime in seconds since startup."""
    return time.time() - _startup_time if _startup_time else 0.0


def get_memory_mb() -> float:
    """Get current process memory usage in MB."""
    return psutil.Process().memory_info().rss / BYTES_PER_MB


class MemoryMonitor:
    """Keeps a rolling window of process memory samples.

    Warns when RSS crosses the configured ceiling or grows by more than
    ``growth_warn_mb`` across ``growth_window`` samples.
    """

    def __init__(self, settings: "Settings", max_samples: int = 60,
                 growth_window: int = 10, growth_warn_mb: float = 50.0):
        self.interval = settings.memory_sample_interval
        self.warn_rss_mb = settings.memory_warn_rss_mb
        self.growth_window = growth_window
        self.growth_warn_mb = growth_warn_mb
        self._samples: Deque[Dict[str, Any]] = deque(maxlen=max_samples)
        self._process = psutil.Process()
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if self._task:
            return
        self._task = asyncio.create_task(self._sample_loop())
        logger.info("Memory monitor started", interval=self.interval)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Memory monitor stopped")

    async def _sample_loop(self) -> None:
        while True:
            try:
                self.collect()
            except Exception as e:
                logger.warning("Memory sample failed", error=str(e))
            await asyncio.sleep(self.interval)

    def collect(self) -> Dict[str, Any]:
        """Take one sample, store it, and check it for anomalies."""
        info = self._process.memory_info()
        sample = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "rss": info.rss,
            "vms": info.vms,
        }
        self._samples.append(sample)
        self._check_anomalies(sample)
        return sample

    def _check_anomalies(self, sample: Dict[str, Any]) -> None:
        rss_mb = sample["rss"] / BYTES_PER_MB
        if rss_mb > self.warn_rss_mb:
            logger.warning("High RSS", rss_mb=round(rss_mb, 1), threshold_mb=self.warn_rss_mb)

        if len(self._samples) >= self.growth_window:
            baseline = self._samples[-self.growth_window]
            growth_mb = (sample["rss"] - baseline["rss"]) / BYTES_PER_MB
            if growth_mb > self.growth_warn_mb:
                logger.warning("Rapid memory growth", growth_mb=round(growth_mb, 1),
                               samples=self.growth_window)

    def summary(self) -> Optional[Dict[str, Any]]:
        if not self._samples:
            return None
        rss = [s["rss"] for s in self._samples]
        return {
            "rss_mb": {
                "min": round(min(rss) / BYTES_PER_MB),
                "max": round(max(rss) / BYTES_PER_MB),
                "avg": round(sum(rss) / len(rss) / BYTES_PER_MB),
            },
            "samples": len(rss),
        }

    def metrics(self) -> Dict[str, Any]:
        """Payload for GET /metrics/memory."""
        current = self._samples[-1] if self._samples else None
        return {
            "timestamp": current["timestamp"] if current else datetime.now(timezone.utc).isoformat(),
            "memory": {
                "rss_bytes": current["rss"] if current else 0,
                "vms_bytes": current["vms"] if current else 0,
            },
            "summary": self.summary(),
        }


async def check_database(database: "Database") -> bool:
    """Check database connectivity."""
    try:
        async with database.get_session() as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


async def get_health_status(
    database: "Database",
    user_cache: "UserCache",
    message_buffer: "MessageBufferService",
    settings: "Settings"
) -> Dict[str, Any]:
    """Get comprehensive health status for /health endpoint."""
    db_healthy = await check_database(database)

    return {
        "status": "healthy" if db_healthy else "degraded",
        "uptime_seconds": round(get_uptime(), 1),
        "memory_mb": round(get_memory_mb(), 1),
        "checks": {
            "database": db_healthy,
        },
        "user_cache": user_cache.stats(),
        "message_buffer": message_buffer.stats(),
        "features": {
            "cleanup": settings.cleanup_enabled,
        },
    }
