"""
Health Check Module.

Liveness and readiness checks shared by the services.
"""
import logging
import time
from typing import Dict, Any, Callable, List

from django.conf import settings
from django.core.cache import cache
from django.db import connection
from django.utils import timezone
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

logger = logging.getLogger(__name__)


class HealthStatus:
    """Health check status constants."""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


def _timed_check(name: str, check: Callable[[], None]) -> Dict[str, Any]:
    start = time.monotonic()
    try:
        check()
    except Exception as e:
        logger.error(f"{name} health check failed: {e}")
        return {"name": name, "status": HealthStatus.UNHEALTHY, "error": str(e)}
    return {
        "name": name,
        "status": HealthStatus.HEALTHY,
        "latency_ms": round((time.monotonic() - start) * 1000, 2),
    }


def _check_database() -> None:
    with connection.cursor() as cursor:
        cursor.execute("SELECT 1")
        cursor.fetchone()


def _check_cache() -> None:
    cache_key = f"health_check_{time.time()}"
    cache.set(cache_key, "OK", 10)
    value = cache.get(cache_key)
    cache.delete(cache_key)
    if value != "OK":
        raise RuntimeError("Cache read/write mismatch")


def check_database() -> Dict[str, Any]:
    """Check database connectivity."""
    return _timed_check("database", _check_database)


def check_cache() -> Dict[str, Any]:
    """Check cache connectivity."""
    return _timed_check("cache", _check_cache)


@api_view(['GET'])
@authentication_classes([])
@permission_classes([AllowAny])
def liveness_check(request):
    """Returns 200 while the process is serving requests."""
    return Response({
        "status": "alive",
        "service": getattr(settings, 'SERVICE_NAME', 'unknown'),
        "timestamp": timezone.now().isoformat(),
    })


@api_view(['GET'])
@authentication_classes([])
@permission_classes([AllowAny])
def readiness_check(request):
    """
    Returns 200 when the database and cache answer, 503 otherwise.
    """
    checks: List[Dict[str, Any]] = [check_database(), check_cache()]
    healthy = all(c["status"] == HealthStatus.HEALTHY for c in checks)

    return Response(
        {
            "status": HealthStatus.HEALTHY if healthy else HealthStatus.UNHEALTHY,
            "checks": checks,
            "timestamp": timezone.now().isoformat(),
        },
        status=200 if healthy else 503
    )


def get_health_urlpatterns():
    """
    Usage in urls.py:
        urlpatterns += get_health_urlpatterns()
    """
    from django.urls import path

    return [
        path('health/', liveness_check, name='health'),
        path('health/live/', liveness_check, name='liveness'),
        path('health/ready/', readiness_check, name='readiness'),
    ]
