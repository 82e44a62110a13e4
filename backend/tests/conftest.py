# tests/conftest.py
"""
Pytest fixtures for the school ledger tests.

- ledger: default chart of accounts, base currency (USD) plus EUR
- actor: ActorContext stamped on entries and transactions
- students, class groups, hostels/rooms and exact fee structures
"""

import pytest
from decimal import Decimal

from django.conf import settings

from accounting.authz import ActorContext
from accounting.chart import seed_chart_of_accounts
from accounting.models import Account
from billing.models import ClassGroup, FeeStructure, Hostel, Room
from projections.account_balance import account_balance_projection
from students import subledger
from students.models import Student


TERM = "T1"
YEAR = 2025


@pytest.fixture(autouse=True, scope="session")
def _testing_settings(django_db_setup, django_db_blocker):
    """Writes outside command/projection contexts are allowed in tests."""
    settings.TESTING = True


# =============================================================================
# Ledger Fixtures
# =============================================================================

@pytest.fixture
def ledger(db):
    """Seed the default chart with USD as base and EUR as a second currency."""
    return seed_chart_of_accounts(base_currency="USD", extra_currencies=["EUR"])


@pytest.fixture
def actor():
    return ActorContext(actor_id="bursar-1", name="Test Bursar")


@pytest.fixture
def account_balance(ledger):
    """Return a function reading an account's projected base-currency balance."""

    def _balance(code: str) -> Decimal:
        return account_balance_projection.get_balance(Account.objects.get(code=code))

    return _balance


@pytest.fixture
def student_balance():
    return subledger.get_balance


# =============================================================================
# Student Fixtures
# =============================================================================

@pytest.fixture
def student(db):
    return Student.objects.create(
        reg_number="STU-0001",
        first_name="Amina",
        last_name="Otieno",
        gender=Student.Gender.FEMALE,
    )


@pytest.fixture
def second_student(db):
    return Student.objects.create(
        reg_number="STU-0002",
        first_name="Brian",
        last_name="Kamau",
        gender=Student.Gender.MALE,
    )


@pytest.fixture
def third_student(db):
    return Student.objects.create(
        reg_number="STU-0003",
        first_name="Chloe",
        last_name="Wanjiru",
        gender=Student.Gender.FEMALE,
    )


# =============================================================================
# Billing Reference Data
# =============================================================================

@pytest.fixture
def class_group(db):
    return ClassGroup.objects.create(name="Form 1 East", capacity=2)


@pytest.fixture
def tuition_fee(ledger, class_group):
    return FeeStructure.objects.create(
        category=FeeStructure.Category.TUITION,
        class_group=class_group,
        term=TERM,
        academic_year=YEAR,
        amount=Decimal("500.00"),
    )


@pytest.fixture
def hostel(db):
    return Hostel.objects.create(name="Jacaranda House", gender=Hostel.Gender.FEMALE)


@pytest.fixture
def room(hostel):
    return Room.objects.create(hostel=hostel, number="J-01", capacity=1)


@pytest.fixture
def boarding_fee(ledger, hostel):
    return FeeStructure.objects.create(
        category=FeeStructure.Category.BOARDING,
        hostel=hostel,
        term=TERM,
        academic_year=YEAR,
        amount=Decimal("300.00"),
    )
