# tests/test_ops.py
"""
Tests for the health probes and the Prometheus endpoint.
"""

import pytest
from decimal import Decimal

from billing.commands import pay_fee
from ops.health import HealthCheck


@pytest.mark.django_db
class TestHealth:

    def test_liveness(self, client):
        response = client.get("/_health/live")

        assert response.status_code == 200
        assert response.json() == {"status": "alive"}

    def test_readiness(self, client):
        response = client.get("/_health/ready")

        assert response.status_code == 200
        assert response.json()["database"]["status"] == "healthy"

    def test_full_health_with_balanced_ledger(self, client, actor, student, ledger):
        pay_fee(
            actor,
            student_id=student.pk,
            category="TUITION",
            amount=Decimal("200.00"),
            method="CASH",
            term="T1",
            academic_year=2025,
        )

        response = client.get("/_health/full")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["ledger"]["currencies"]["USD"] == {"debit": "200.00", "credit": "200.00"}

    def test_ledger_check_on_empty_store(self, ledger):
        assert HealthCheck.check_ledger_balance() == {"status": "healthy", "currencies": {}}


@pytest.mark.django_db
class TestMetrics:

    def test_metrics_endpoint(self, client, actor, student, ledger):
        pay_fee(
            actor,
            student_id=student.pk,
            category="TUITION",
            amount=Decimal("20.00"),
            method="CASH",
            term="T1",
            academic_year=2025,
        )

        response = client.get("/_metrics/")

        assert response.status_code == 200
        body = response.content.decode()
        assert 'schoolledger_postings_total{kind="fee_payment"}' in body
        assert "schoolledger_journal_entries 1.0" in body
