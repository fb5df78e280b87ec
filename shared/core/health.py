"""
Health and metrics endpoints shared by the services.

Liveness never touches dependencies; readiness runs the registered checks
(database, coordination store, background workers) and answers 503 when any
of them fails.
"""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.engine import Engine
from typing import Any, Callable, Dict
import os
import time
import redis
from datetime import datetime, timezone
from enum import Enum
import psutil
import logging

logger = logging.getLogger(__name__)

Check = Callable[[], Dict[str, Any]]

class HealthStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"

def _now() -> str:
    return datetime.now(timezone.utc).isoformat()

def database_check(engine: Engine) -> Check:
    def check() -> Dict[str, Any]:
        start_time = time.perf_counter()
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": HealthStatus.FAIL, "componentType": "datastore", "output": str(e), "time": _now()}
        return {
            "status": HealthStatus.PASS,
            "componentType": "datastore",
            "observedValue": f"{(time.perf_counter() - start_time) * 1000:.2f}",
            "observedUnit": "ms",
            "time": _now()
        }
    return check

def redis_check(client: redis.Redis, component: str = "coordination") -> Check:
    def check() -> Dict[str, Any]:
        start_time = time.perf_counter()
        try:
            client.ping()
        except redis.RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return {"status": HealthStatus.FAIL, "componentType": component, "output": str(e), "time": _now()}
        return {
            "status": HealthStatus.PASS,
            "componentType": component,
            "observedValue": f"{(time.perf_counter() - start_time) * 1000:.2f}",
            "observedUnit": "ms",
            "time": _now()
        }
    return check

def worker_check(is_alive: Callable[[], bool]) -> Check:
    def check() -> Dict[str, Any]:
        alive = is_alive()
        return {
            "status": HealthStatus.PASS if alive else HealthStatus.FAIL,
            "componentType": "worker",
            "observedValue": "running" if alive else "stopped",
            "time": _now()
        }
    return check

def memory_check() -> Dict[str, Any]:
    available_mb = psutil.virtual_memory().available / (1024 ** 2)
    if available_mb < 100:
        status_val = HealthStatus.FAIL
    elif available_mb < 500:
        status_val = HealthStatus.WARN
    else:
        status_val = HealthStatus.PASS
    return {
        "status": status_val,
        "componentType": "system",
        "observedValue": f"{available_mb:.2f}",
        "observedUnit": "MB",
        "time": _now()
    }

class ServiceHealth:
    def __init__(self, service_name: str, version: str = "1.0.0"):
        self.service_name = service_name
        self.version = version
        self.start_time = time.time()
        self.checks_performed = 0
        self._checks: Dict[str, Check] = {"system:memory": memory_check}
        self._metrics: Dict[str, Callable[[], Dict[str, Any]]] = {}

    def register_check(self, name: str, check: Check) -> None:
        self._checks[name] = check

    def register_metrics(self, name: str, provider: Callable[[], Dict[str, Any]]) -> None:
        self._metrics[name] = provider

    def run_checks(self) -> Dict[str, Dict[str, Any]]:
        self.checks_performed += 1
        return {name: check() for name, check in self._checks.items()}

    @staticmethod
    def overall_status(checks: Dict[str, Dict[str, Any]]) -> HealthStatus:
        statuses = [check.get("status", HealthStatus.PASS) for check in checks.values()]
        if HealthStatus.FAIL in statuses:
            return HealthStatus.FAIL
        if HealthStatus.WARN in statuses:
            return HealthStatus.WARN
        return HealthStatus.PASS

    def create_health_router(self) -> APIRouter:
        router = APIRouter(tags=["health"])

        @router.get("/health", status_code=status.HTTP_200_OK)
        def health_check() -> Dict[str, Any]:
            return {
                "status": HealthStatus.PASS,
                "service": self.service_name,
                "version": self.version,
                "releaseId": os.getenv("RELEASE_ID", "unknown"),
                "timestamp": _now()
            }

        @router.get("/health/live", status_code=status.HTTP_200_OK)
        def liveness() -> Dict[str, Any]:
            return {"status": "alive"}

        @router.get("/health/ready")
        def readiness() -> JSONResponse:
            checks = self.run_checks()
            overall = self.overall_status(checks)
            # WARN still serves traffic
            code = status.HTTP_503_SERVICE_UNAVAILABLE if overall == HealthStatus.FAIL else status.HTTP_200_OK
            return JSONResponse(status_code=code, content={
                "status": overall,
                "version": self.version,
                "serviceId": self.service_name,
                "checks": checks,
                "timestamp": _now()
            })

        @router.get("/metrics")
        def metrics() -> Dict[str, Any]:
            process = psutil.Process()
            memory = process.memory_info()
            return {
                "service": self.service_name,
                "version": self.version,
                "uptime_seconds": time.time() - self.start_time,
                "checks_performed": self.checks_performed,
                "timestamp": _now(),
                "system": {
                    "memory_rss_bytes": memory.rss,
                    "cpu_percent": process.cpu_percent(),
                    "num_threads": process.num_threads()
                },
                **{name: provider() for name, provider in self._metrics.items()}
            }

        return router
