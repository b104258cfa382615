# app/services/health_service.py
from typing import Dict, Any, Optional
from datetime import datetime, timezone
import psutil
import platform
from app.database import check_db_connection
from app.core.redis import check_redis_connection
from app.core.services import Services
import logging

logger = logging.getLogger(__name__)

async def get_detailed_health(services: Optional[Services] = None) -> Dict[str, Any]:
    """Health of the database, the broker and the in-process queue pollers"""
    health_status = {
        "services": {},
        "workers": {},
        "system": {},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    # DB
    try:
        db_healthy = await check_db_connection()
        health_status["services"]["database"] = {
            "healthy": db_healthy,
            "status": "connected" if db_healthy else "disconnected",
        }
    except Exception as e:
        health_status["services"]["database"] = {"healthy": False, "error": str(e)}

    # Redis (Celery broker)
    try:
        redis_healthy = await check_redis_connection()
        health_status["services"]["redis"] = {
            "healthy": redis_healthy,
            "status": "connected" if redis_healthy else "disconnected",
        }
    except Exception as e:
        health_status["services"]["redis"] = {"healthy": False, "error": str(e)}

    # Queue pollers
    if services is not None:
        health_status["workers"] = services.worker_status()
        try:
            health_status["queues"] = {
                "jobs": await services.job_queue.get_stats(),
                "sms_pending": await services.sms_queue.get_pending_count(),
            }
        except Exception as e:
            logger.error(f"Failed to collect queue stats: {e}")

    # System
    try:
        health_status["system"] = {
            "cpu_percent": psutil.cpu_percent(interval=0.1),
            "memory_percent": psutil.virtual_memory().percent,
            "python_version": platform.python_version(),
            "platform": platform.platform(),
        }
    except Exception as e:
        logger.error(f"Failed to get system metrics: {e}")

    # Overall
    all_services_healthy = all(s.get("healthy", False) for s in health_status["services"].values())
    health_status["overall_health"] = "healthy" if all_services_healthy else "degraded"

    return health_status
