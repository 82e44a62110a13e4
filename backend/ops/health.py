"""
Health check endpoints for operations monitoring.

Provides health checks for:
- Database connectivity (all configured databases)
- Global ledger balance (sum of debits equals sum of credits per currency)

Endpoints:
- /_health/live    - Kubernetes liveness probe (is the process running?)
- /_health/ready   - Kubernetes readiness probe (can we serve traffic?)
- /_health/full    - Full health report (for debugging/dashboards)
"""
import logging
import time
from decimal import Decimal
from typing import Any, Dict

from django.conf import settings
from django.db import connections
from django.db.models import Sum
from django.http import JsonResponse
from django.views import View

logger = logging.getLogger(__name__)


class HealthCheck:
    """Health check implementation."""

    @staticmethod
    def check_database(alias: str = "default") -> Dict[str, Any]:
        """Check database connectivity."""
        start = time.time()
        try:
            conn = connections[alias]
            conn.ensure_connection()
            with conn.cursor() as cursor:
                cursor.execute("SELECT 1")
                cursor.fetchone()
            duration_ms = (time.time() - start) * 1000
            return {
                "status": "healthy",
                "alias": alias,
                "duration_ms": round(duration_ms, 2),
            }
        except Exception as e:
            duration_ms = (time.time() - start) * 1000
            return {
                "status": "unhealthy",
                "alias": alias,
                "error": str(e),
                "duration_ms": round(duration_ms, 2),
            }

    @staticmethod
    def check_all_databases() -> Dict[str, Any]:
        """Check all configured databases."""
        results = {}
        all_healthy = True

        for alias in settings.DATABASES.keys():
            result = HealthCheck.check_database(alias)
            results[alias] = result
            if result["status"] != "healthy":
                all_healthy = False

        return {
            "status": "healthy" if all_healthy else "degraded",
            "databases": results,
        }

    @staticmethod
    def check_ledger_balance() -> Dict[str, Any]:
        """
        Check that the journal store as a whole is balanced per currency.

        This is a single aggregate query; the per-account comparison lives
        in projections.reconciliation and runs as a scheduled task.
        """
        from accounting.models import JournalLine

        tolerance = Decimal(str(getattr(settings, "LEDGER_BALANCE_TOLERANCE", "0.01")))
        try:
            totals = (
                JournalLine.objects
                .values("currency__code")
                .annotate(debit=Sum("debit"), credit=Sum("credit"))
                .order_by("currency__code")
            )
            currencies = {}
            balanced = True
            for row in totals:
                debit = row["debit"] or Decimal("0.00")
                credit = row["credit"] or Decimal("0.00")
                currencies[row["currency__code"]] = {
                    "debit": str(debit),
                    "credit": str(credit),
                }
                if abs(debit - credit) >= tolerance:
                    balanced = False
            return {
                "status": "healthy" if balanced else "unhealthy",
                "currencies": currencies,
            }
        except Exception as e:
            return {
                "status": "error",
                "error": str(e),
            }

    @staticmethod
    def get_full_health() -> Dict[str, Any]:
        """Get comprehensive health report."""
        checks = {
            "databases": HealthCheck.check_all_databases(),
            "ledger": HealthCheck.check_ledger_balance(),
        }

        statuses = [c.get("status", "unknown") for c in checks.values()]
        if all(s == "healthy" for s in statuses):
            overall = "healthy"
        elif any(s == "unhealthy" for s in statuses):
            overall = "unhealthy"
        else:
            overall = "degraded"

        return {
            "status": overall,
            "checks": checks,
            "version": getattr(settings, "VERSION", "unknown"),
            "environment": "production" if not settings.DEBUG else "development",
        }


class LivenessView(View):
    """Kubernetes liveness probe. Does not touch external dependencies."""

    def get(self, request):
        return JsonResponse({"status": "alive"})


class ReadinessView(View):
    """Kubernetes readiness probe. Checks database connectivity."""

    def get(self, request):
        db_check = HealthCheck.check_database("default")

        if db_check["status"] == "healthy":
            return JsonResponse({
                "status": "ready",
                "database": db_check,
            })
        return JsonResponse({
            "status": "not_ready",
            "database": db_check,
        }, status=503)


class FullHealthView(View):
    """
    Full health check for debugging and dashboards.

    Should be protected in production (internal network only).
    """

    def get(self, request):
        health = HealthCheck.get_full_health()

        status_code = 200 if health["status"] == "healthy" else 503
        return JsonResponse(health, status=status_code)
