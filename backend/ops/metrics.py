"""
Prometheus metrics endpoint.

Exposes ledger metrics in Prometheus format for scraping.

Metrics exposed:
- schoolledger_postings_total: Successful posting commands by kind
- schoolledger_posting_failures_total: Rejected/failed posting commands by kind and error
- schoolledger_transient_retries_total: Deadlock / lock-wait retries
- schoolledger_balance_drift: Rows in drift per scope from the last integrity check
- schoolledger_journal_entries: Journal entries currently in the store
"""
import logging

from django.http import HttpResponse
from django.views import View
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, generate_latest

logger = logging.getLogger(__name__)


postings_total = Counter(
    "schoolledger_postings_total",
    "Successful posting commands",
    ["kind"],
)

posting_failures_total = Counter(
    "schoolledger_posting_failures_total",
    "Posting commands that were rejected or failed",
    ["kind", "error"],
)

transient_retries_total = Counter(
    "schoolledger_transient_retries_total",
    "Posting attempts retried after a deadlock or lock wait timeout",
)

balance_drift = Gauge(
    "schoolledger_balance_drift",
    "Rows in drift at the last integrity check",
    ["scope"],
)

journal_entries = Gauge(
    "schoolledger_journal_entries",
    "Journal entries in the journal store",
)


def record_posting(kind: str) -> None:
    postings_total.labels(kind=kind).inc()


def record_failure(kind: str, error: str) -> None:
    posting_failures_total.labels(kind=kind, error=error).inc()


def record_retry() -> None:
    transient_retries_total.inc()


def set_drift(scope: str, count: int) -> None:
    balance_drift.labels(scope=scope).set(count)


def collect_metrics():
    """Collect current gauge values from the database."""
    from accounting.models import JournalEntry

    journal_entries.set(JournalEntry.objects.count())


class MetricsView(View):
    """
    Prometheus metrics endpoint.

    Exposes metrics in Prometheus format at /_metrics.
    Should be protected in production (internal network only).
    """

    def get(self, request):
        try:
            collect_metrics()
        except Exception:
            logger.exception("Error collecting metrics")
        return HttpResponse(generate_latest(), content_type=CONTENT_TYPE_LATEST)
