"""
Infrastructure endpoints that sit outside the business domain.
"""

from django.core.cache import cache
from django.db import connection
from django.http import JsonResponse


def health_check(request):
    """
    Health check for load balancers and container orchestration.

    Reports database and cache connectivity plus the payment processor
    circuit state. Only a database failure makes the service unhealthy
    (503); a cache outage or an open processor circuit is reported as
    degraded.

    Example Response:
        {
            "status": "healthy",
            "database": "connected",
            "cache": "connected",
            "payment_processor": "closed"
        }
    """
    from payments.adapters.stripe_adapter import get_processor_circuit

    health_status = {
        "status": "healthy",
        "database": "unknown",
        "cache": "unknown",
        "payment_processor": "unknown",
    }
    is_healthy = True

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except Exception:
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"
        is_healthy = False

    try:
        cache.set("health_check", "ok", timeout=1)
        health_status["cache"] = (
            "connected" if cache.get("health_check") == "ok" else "disconnected"
        )
    except Exception:
        health_status["cache"] = "disconnected"

    health_status["payment_processor"] = get_processor_circuit().get_status()["state"]

    return JsonResponse(health_status, status=200 if is_healthy else 503)
