"""
Operations endpoints (health probes and Prometheus scrape target).

Mounted outside any authentication; protect at network level in production.
"""
from django.urls import path

from ops.health import FullHealthView, LivenessView, ReadinessView
from ops.metrics import MetricsView

urlpatterns = [
    path("live", LivenessView.as_view(), name="health-live"),
    path("ready", ReadinessView.as_view(), name="health-ready"),
    path("full", FullHealthView.as_view(), name="health-full"),
]

# Mounted under /_metrics/ by schoolledger.urls
metrics_patterns = [
    path("", MetricsView.as_view(), name="metrics"),
]
