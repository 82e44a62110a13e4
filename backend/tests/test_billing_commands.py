# tests/test_billing_commands.py
"""
Tests for the billing commands (posting orchestrator).

Tests cover:
- The enroll / pay / cancel scenario across both ledgers
- Capacity, duplicate enrollment and exact fee structure preconditions
- Payments (methods, currencies, receipts), refunds, waivers, uniform sales, charges
- Grace-period reversal and delete paths
- Atomicity: failures leave no rows behind
- Concurrent enrollment for the last seat (PostgreSQL only)
"""

import pytest
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from decimal import Decimal
from threading import Barrier

from django.db import connection

from accounting.exceptions import GracePeriodExpiredError, PreconditionFailedError, ValidationError
from accounting.models import JournalEntry, JournalLine
from billing import commands
from billing.commands import (
    cancel_enrollment,
    charge_fee,
    delete_posting,
    enroll_student,
    pay_fee,
    refund_payment,
    reverse_student_transaction,
    sell_uniform,
    waive_fee,
)
from billing.models import ClassGroup, Enrollment, FeePayment, FeeStructure, PostedDocument
from projections.models import AccountBalance
from projections.reconciliation import check_integrity
from students.models import Student, StudentTransaction


TERM = "T1"
YEAR = 2025

Status = PostedDocument.Status


def _lines(entry):
    return [
        (line.account.code, line.debit, line.credit)
        for line in entry.lines.select_related("account").order_by("line_no")
    ]


def _enroll(actor, student, class_group, **kwargs):
    return enroll_student(
        actor,
        student_id=student.pk,
        kind=Enrollment.Kind.CLASS,
        term=TERM,
        academic_year=YEAR,
        class_group_id=class_group.pk,
        **kwargs,
    )


def _board(actor, student, room):
    return enroll_student(
        actor,
        student_id=student.pk,
        kind=Enrollment.Kind.BOARDING,
        term=TERM,
        academic_year=YEAR,
        room_id=room.pk,
    )


def _pay(actor, student, amount="200.00", **kwargs):
    params = {
        "category": "TUITION",
        "method": "CASH",
        "term": TERM,
        "academic_year": YEAR,
    }
    params.update(kwargs)
    return pay_fee(actor, student_id=student.pk, amount=Decimal(amount), **params)


# =============================================================================
# Scenario
# =============================================================================

@pytest.mark.django_db
class TestEnrollPayCancelScenario:

    def test_full_scenario(
        self, actor, student, class_group, tuition_fee, account_balance, student_balance
    ):
        enrolled = _enroll(actor, student, class_group)
        assert enrolled.success, enrolled.message

        entry = enrolled.data["journal_entry"]
        assert _lines(entry) == [
            ("1100", Decimal("500.00"), Decimal("0.00")),
            ("4000", Decimal("0.00"), Decimal("500.00")),
        ]
        assert entry.lines.get(account__code="1100").student_id == student.pk
        assert account_balance("1100") == Decimal("500.00")
        assert account_balance("4000") == Decimal("500.00")
        assert student_balance(student) == Decimal("-500.00")

        paid = _pay(actor, student, "200.00")
        assert paid.success, paid.message
        assert _lines(paid.data["journal_entry"]) == [
            ("1000", Decimal("200.00"), Decimal("0.00")),
            ("1100", Decimal("0.00"), Decimal("200.00")),
        ]
        assert student_balance(student) == Decimal("-300.00")

        cancelled = cancel_enrollment(actor, enrollment_id=enrolled.data["document"].pk)
        assert cancelled.success, cancelled.message

        reversal_entry = cancelled.data["reversal_entry"]
        assert reversal_entry.reverses_id == entry.pk
        assert cancelled.data["transaction"].type == StudentTransaction.Type.CREDIT
        assert cancelled.data["transaction"].amount == Decimal("500.00")
        assert account_balance("1100") == Decimal("-200.00")
        assert account_balance("4000") == Decimal("0.00")
        assert account_balance("1000") == Decimal("200.00")
        assert student_balance(student) == Decimal("200.00")

        enrollment = Enrollment.objects.get(pk=enrolled.data["document"].pk)
        assert enrollment.status == Status.REVERSED

        assert check_integrity()["is_consistent"] is True

    def test_result_payload(self, actor, student, class_group, tuition_fee):
        payload = _enroll(actor, student, class_group).to_payload()

        assert payload["success"] is True
        assert payload["message"] == "Enrollment completed."
        assert payload["data"]["document"]["type"] == "Enrollment"
        assert payload["data"]["document"]["amount"] == "500.00"
        assert len(payload["data"]["journal_entry"]["lines"]) == 2
        assert payload["data"]["transaction"]["type"] == "DEBIT"

    def test_failure_payload(self, actor, student, class_group):
        payload = _enroll(actor, student, class_group).to_payload()

        assert payload["success"] is False
        assert payload["error"]["code"] == "precondition_failed"
        assert payload["error"]["error_type"] == "PreconditionFailedError"
        assert "data" not in payload


# =============================================================================
# Enrollment preconditions
# =============================================================================

@pytest.mark.django_db
class TestEnrollment:

    def test_capacity_enforced(self, actor, student, second_student, third_student, class_group, tuition_fee):
        assert _enroll(actor, student, class_group).success
        assert _enroll(actor, second_student, class_group).success

        result = _enroll(actor, third_student, class_group)

        assert not result.success
        assert isinstance(result.error, PreconditionFailedError)
        assert result.error.details == {"capacity": 2, "occupied": 2}
        assert not Enrollment.objects.filter(student=third_student).exists()
        assert not StudentTransaction.objects.filter(student=third_student).exists()

    def test_cancelled_enrollment_frees_the_seat(
        self, actor, student, second_student, third_student, class_group, tuition_fee
    ):
        first = _enroll(actor, student, class_group)
        _enroll(actor, second_student, class_group)
        assert cancel_enrollment(actor, enrollment_id=first.data["document"].pk).success

        assert _enroll(actor, third_student, class_group).success

    def test_capacity_counted_per_term(self, actor, student, second_student, class_group, tuition_fee):
        class_group.capacity = 1
        class_group.save()
        FeeStructure.objects.create(
            category=FeeStructure.Category.TUITION,
            class_group=class_group,
            term="T2",
            academic_year=YEAR,
            amount=Decimal("450.00"),
        )
        assert _enroll(actor, student, class_group).success

        result = enroll_student(
            actor,
            student_id=second_student.pk,
            kind=Enrollment.Kind.CLASS,
            term="T2",
            academic_year=YEAR,
            class_group_id=class_group.pk,
        )

        assert result.success
        assert result.data["document"].amount == Decimal("450.00")

    def test_duplicate_enrollment_rejected(self, actor, student, class_group, tuition_fee):
        assert _enroll(actor, student, class_group).success

        result = _enroll(actor, student, class_group)

        assert not result.success
        assert "already has a class enrollment" in result.message
        assert Enrollment.objects.filter(student=student).count() == 1

    def test_fee_structure_must_match_exactly(self, actor, student, class_group, tuition_fee):
        result = enroll_student(
            actor,
            student_id=student.pk,
            kind=Enrollment.Kind.CLASS,
            term="T3",
            academic_year=YEAR,
            class_group_id=class_group.pk,
        )

        assert not result.success
        assert isinstance(result.error, PreconditionFailedError)
        assert JournalEntry.objects.count() == 0

    def test_inactive_student_rejected(self, actor, student, class_group, tuition_fee):
        Student.objects.filter(pk=student.pk).update(is_active=False)

        result = _enroll(actor, student, class_group)

        assert not result.success
        assert "not active" in result.message

    def test_inactive_class_group_rejected(self, actor, student, class_group, tuition_fee):
        ClassGroup.objects.filter(pk=class_group.pk).update(is_active=False)

        assert not _enroll(actor, student, class_group).success

    def test_unknown_student(self, actor, class_group, tuition_fee):
        result = enroll_student(
            actor,
            student_id=424242,
            kind=Enrollment.Kind.CLASS,
            term=TERM,
            academic_year=YEAR,
            class_group_id=class_group.pk,
        )

        assert not result.success
        assert isinstance(result.error, ValidationError)

    def test_class_group_required(self, actor, student):
        result = enroll_student(actor, student_id=student.pk, kind="CLASS", term=TERM, academic_year=YEAR)

        assert not result.success
        assert isinstance(result.error, ValidationError)
        assert "class_group_id" in result.error.details["fields"]

    def test_boarding_enrollment(self, actor, student, room, boarding_fee, account_balance):
        result = _board(actor, student, room)

        assert result.success, result.message
        assert _lines(result.data["journal_entry"]) == [
            ("1110", Decimal("300.00"), Decimal("0.00")),
            ("4100", Decimal("0.00"), Decimal("300.00")),
        ]
        assert account_balance("1110") == Decimal("300.00")

    def test_boarding_capacity(self, actor, student, third_student, room, boarding_fee):
        assert _board(actor, student, room).success

        result = _board(actor, third_student, room)

        assert not result.success
        assert "is full" in result.message

    def test_hostel_gender(self, actor, second_student, room, boarding_fee):
        result = _board(actor, second_student, room)

        assert not result.success
        assert "does not accept" in result.message


# =============================================================================
# Payments and refunds
# =============================================================================

@pytest.mark.django_db
class TestPayments:

    def test_bank_transfer_settles_to_bank(self, actor, student, ledger):
        result = _pay(actor, student, "150.00", method="BANK_TRANSFER", category="BOARDING")

        assert result.success
        assert _lines(result.data["journal_entry"]) == [
            ("1010", Decimal("150.00"), Decimal("0.00")),
            ("1110", Decimal("0.00"), Decimal("150.00")),
        ]

    def test_receipt_numbers_are_sequential(self, actor, student, ledger):
        first = _pay(actor, student, "10.00").data["document"]
        second = _pay(actor, student, "10.00").data["document"]

        assert first.receipt_number.startswith("RCT-")
        assert int(second.receipt_number[4:]) == int(first.receipt_number[4:]) + 1
        assert first.journal_entry.reference == first.receipt_number

    def test_foreign_currency_posts_base_amount(self, actor, student, ledger, student_balance):
        result = _pay(actor, student, "100.00", currency="eur", exchange_rate=Decimal("1.105"))

        assert result.success, result.message
        payment = result.data["document"]
        assert payment.currency.code == "EUR"
        assert payment.amount == Decimal("100.00")
        assert payment.base_amount == Decimal("110.50")
        assert set(result.data["journal_entry"].totals_by_currency()) == {"USD"}
        assert student_balance(student) == Decimal("110.50")

    def test_unknown_currency(self, actor, student, ledger):
        result = _pay(actor, student, "10.00", currency="XYZ")

        assert not result.success
        assert "Unknown currency" in result.message
        assert FeePayment.objects.count() == 0

    @pytest.mark.parametrize("field,value", [
        ("amount", "0"),
        ("method", "BARTER"),
        ("category", "LIBRARY"),
    ])
    def test_invalid_input(self, actor, student, ledger, field, value):
        params = {"category": "TUITION", "method": "CASH", "term": TERM, "academic_year": YEAR, "amount": "10.00"}
        params[field] = value

        result = pay_fee(actor, student_id=student.pk, **params)

        assert not result.success
        assert field in result.error.details["fields"]

    def test_full_refund(self, actor, student, ledger, account_balance, student_balance):
        payment = _pay(actor, student, "200.00").data["document"]

        result = refund_payment(actor, payment_id=payment.pk, reason="Overpaid")

        assert result.success, result.message
        assert _lines(result.data["journal_entry"]) == [
            ("1100", Decimal("200.00"), Decimal("0.00")),
            ("1000", Decimal("0.00"), Decimal("200.00")),
        ]
        payment.refresh_from_db()
        assert payment.status == Status.REFUNDED
        assert payment.refunded_amount == Decimal("200.00")
        assert student_balance(student) == Decimal("0.00")
        assert account_balance("1000") == Decimal("0.00")

    def test_partial_refunds(self, actor, student, ledger):
        payment = _pay(actor, student, "200.00").data["document"]

        assert refund_payment(actor, payment_id=payment.pk, amount=Decimal("50.00")).success
        payment.refresh_from_db()
        assert payment.status == Status.PARTIALLY_REFUNDED

        too_much = refund_payment(actor, payment_id=payment.pk, amount=Decimal("150.01"))
        assert not too_much.success
        assert isinstance(too_much.error, PreconditionFailedError)

        rest = refund_payment(actor, payment_id=payment.pk)
        assert rest.success
        assert rest.data["document"].amount == Decimal("150.00")
        payment.refresh_from_db()
        assert payment.status == Status.REFUNDED

        again = refund_payment(actor, payment_id=payment.pk)
        assert not again.success
        assert "fully refunded" in again.message

    def test_refund_amount_must_be_positive(self, actor, student, ledger):
        payment = _pay(actor, student, "20.00").data["document"]

        result = refund_payment(actor, payment_id=payment.pk, amount=Decimal("0"))

        assert not result.success
        assert isinstance(result.error, ValidationError)

    def test_reversed_refund_releases_payment(self, actor, student, ledger, student_balance):
        payment = _pay(actor, student, "200.00").data["document"]
        refund = refund_payment(actor, payment_id=payment.pk, amount=Decimal("80.00")).data

        result = reverse_student_transaction(actor, transaction_id=refund["transaction"].pk)

        assert result.success, result.message
        payment.refresh_from_db()
        assert payment.refunded_amount == Decimal("0.00")
        assert payment.status == Status.POSTED
        assert student_balance(student) == Decimal("200.00")

    def test_payment_with_refunds_cannot_be_reversed(self, actor, student, ledger):
        paid = _pay(actor, student, "200.00").data
        refund_payment(actor, payment_id=paid["document"].pk, amount=Decimal("10.00"))

        result = reverse_student_transaction(actor, transaction_id=paid["transaction"].pk)

        assert not result.success
        assert "has refunds" in result.message

    def test_reversed_payment_cannot_be_refunded(self, actor, student, ledger):
        paid = _pay(actor, student, "200.00").data
        assert reverse_student_transaction(actor, transaction_id=paid["transaction"].pk).success

        result = refund_payment(actor, payment_id=paid["document"].pk)

        assert not result.success
        assert "was reversed" in result.message


# =============================================================================
# Waivers, uniform sales and charges
# =============================================================================

@pytest.mark.django_db
class TestWaiversAndCharges:

    @pytest.mark.parametrize("category,expense,receivable", [
        ("TUITION", "5600", "1100"),
        ("BOARDING", "5610", "1110"),
        ("ADDITIONAL", "5640", "1100"),
    ])
    def test_waiver_accounts(self, actor, student, ledger, student_balance, category, expense, receivable):
        result = waive_fee(
            actor,
            student_id=student.pk,
            category=category,
            amount=Decimal("100.00"),
            reason="Bursary",
            term=TERM,
            academic_year=YEAR,
        )

        assert result.success, result.message
        assert _lines(result.data["journal_entry"]) == [
            (expense, Decimal("100.00"), Decimal("0.00")),
            (receivable, Decimal("0.00"), Decimal("100.00")),
        ]
        assert result.data["transaction"].type == StudentTransaction.Type.CREDIT
        assert student_balance(student) == Decimal("100.00")

    def test_waiver_requires_reason(self, actor, student, ledger):
        result = waive_fee(
            actor,
            student_id=student.pk,
            category="TUITION",
            amount=Decimal("100.00"),
            reason="",
            term=TERM,
            academic_year=YEAR,
        )

        assert not result.success
        assert "reason" in result.error.details["fields"]

    def test_uniform_sale(self, actor, student, ledger, account_balance, student_balance):
        result = sell_uniform(
            actor,
            student_id=student.pk,
            item_name="Blazer",
            quantity=2,
            unit_price=Decimal("15.50"),
            term=TERM,
            academic_year=YEAR,
        )

        assert result.success, result.message
        assert result.data["document"].total == Decimal("31.00")
        assert _lines(result.data["journal_entry"]) == [
            ("1110", Decimal("31.00"), Decimal("0.00")),
            ("4300", Decimal("0.00"), Decimal("31.00")),
        ]
        assert account_balance("4300") == Decimal("31.00")
        assert student_balance(student) == Decimal("-31.00")

    def test_transport_charge(self, actor, student, ledger):
        result = charge_fee(
            actor,
            student_id=student.pk,
            category="TRANSPORT",
            amount=Decimal("80.00"),
            term=TERM,
            academic_year=YEAR,
            description="Route 4",
        )

        assert result.success, result.message
        assert result.data["journal_entry"].description == "Transport: Route 4"
        assert _lines(result.data["journal_entry"]) == [
            ("1110", Decimal("80.00"), Decimal("0.00")),
            ("4200", Decimal("0.00"), Decimal("80.00")),
        ]

    def test_tuition_cannot_be_charged_ad_hoc(self, actor, student, ledger):
        result = charge_fee(
            actor,
            student_id=student.pk,
            category="TUITION",
            amount=Decimal("80.00"),
            term=TERM,
            academic_year=YEAR,
        )

        assert not result.success
        assert "category" in result.error.details["fields"]

    def test_inactive_student_cannot_be_charged(self, actor, student, ledger):
        Student.objects.filter(pk=student.pk).update(is_active=False)

        charge = charge_fee(
            actor,
            student_id=student.pk,
            category="TRANSPORT",
            amount=Decimal("80.00"),
            term=TERM,
            academic_year=YEAR,
        )
        sale = sell_uniform(
            actor,
            student_id=student.pk,
            item_name="Blazer",
            quantity=1,
            unit_price=Decimal("15.50"),
            term=TERM,
            academic_year=YEAR,
        )

        for result in (charge, sale):
            assert not result.success
            assert isinstance(result.error, PreconditionFailedError)
            assert "not active" in result.message
        assert JournalEntry.objects.count() == 0

    def test_inactive_student_can_settle_arrears(self, actor, student, ledger, student_balance):
        charge_fee(
            actor,
            student_id=student.pk,
            category="TRANSPORT",
            amount=Decimal("80.00"),
            term=TERM,
            academic_year=YEAR,
        )
        Student.objects.filter(pk=student.pk).update(is_active=False)

        payment = _pay(actor, student, "50.00")
        waiver = waive_fee(
            actor,
            student_id=student.pk,
            category="TRANSPORT",
            amount=Decimal("30.00"),
            reason="Withdrawn",
            term=TERM,
            academic_year=YEAR,
        )

        assert payment.success, payment.message
        assert waiver.success, waiver.message
        assert student_balance(student) == Decimal("0.00")


# =============================================================================
# Reversal and delete within the grace period
# =============================================================================

@pytest.mark.django_db
class TestCorrections:

    @pytest.fixture
    def charge(self, actor, student, ledger):
        return charge_fee(
            actor,
            student_id=student.pk,
            category="OTHER",
            amount=Decimal("60.00"),
            term=TERM,
            academic_year=YEAR,
        ).data

    def test_reverse_restores_both_ledgers(self, actor, student, charge, account_balance, student_balance):
        result = reverse_student_transaction(actor, transaction_id=charge["transaction"].pk, reason="Posted twice")

        assert result.success, result.message
        assert account_balance("1100") == Decimal("0.00")
        assert account_balance("4900") == Decimal("0.00")
        assert student_balance(student) == Decimal("0.00")
        assert "Posted twice" in result.data["reversal_entry"].description
        assert result.data["document"].status == Status.REVERSED

    def test_reverse_at_exactly_grace_period(self, actor, charge):
        txn = charge["transaction"]

        result = reverse_student_transaction(
            actor,
            transaction_id=txn.pk,
            now=txn.transaction_date + timedelta(days=30),
        )

        assert result.success, result.message
        assert result.data["reversal_entry"].entry_date == (txn.transaction_date + timedelta(days=30)).date()

    def test_reverse_after_grace_period(self, actor, student, charge, student_balance):
        txn = charge["transaction"]

        result = reverse_student_transaction(
            actor,
            transaction_id=txn.pk,
            now=txn.transaction_date + timedelta(days=30, seconds=1),
        )

        assert not result.success
        assert isinstance(result.error, GracePeriodExpiredError)
        assert result.error.code == "grace_period_expired"
        assert JournalEntry.objects.count() == 1
        assert student_balance(student) == Decimal("-60.00")

    def test_reverse_twice(self, actor, charge):
        assert reverse_student_transaction(actor, transaction_id=charge["transaction"].pk).success

        result = reverse_student_transaction(actor, transaction_id=charge["transaction"].pk)

        assert not result.success
        assert "already reversed" in result.message

    def test_reversal_cannot_be_reversed(self, actor, charge):
        reversal = reverse_student_transaction(actor, transaction_id=charge["transaction"].pk).data

        result = reverse_student_transaction(actor, transaction_id=reversal["transaction"].pk)

        assert not result.success
        assert isinstance(result.error, PreconditionFailedError)

    def test_unknown_transaction(self, actor, ledger):
        result = reverse_student_transaction(actor, transaction_id=999999)

        assert not result.success
        assert isinstance(result.error, ValidationError)

    def test_cancel_after_grace_period(self, actor, student, class_group, tuition_fee):
        enrollment = _enroll(actor, student, class_group).data["document"]

        result = cancel_enrollment(
            actor,
            enrollment_id=enrollment.pk,
            now=enrollment.student_transaction.transaction_date + timedelta(days=31),
        )

        assert not result.success
        assert isinstance(result.error, GracePeriodExpiredError)
        enrollment.refresh_from_db()
        assert enrollment.status == Status.POSTED

    def test_cancel_twice(self, actor, student, class_group, tuition_fee):
        enrollment = _enroll(actor, student, class_group).data["document"]
        assert cancel_enrollment(actor, enrollment_id=enrollment.pk).success

        result = cancel_enrollment(actor, enrollment_id=enrollment.pk)

        assert not result.success
        assert "reversed" in result.message

    def test_delete_removes_everything(self, actor, student, charge, account_balance, student_balance):
        txn = charge["transaction"]

        result = delete_posting(actor, transaction_id=txn.pk)

        assert result.success, result.message
        assert result.data["deleted_entry"] == charge["journal_entry"].entry_number
        assert result.data["deleted_document"] == f"FeeCharge#{charge['document'].pk}"
        assert result.data["student_delta"] == Decimal("60.00")
        assert JournalEntry.objects.count() == 0
        assert JournalLine.objects.count() == 0
        assert StudentTransaction.objects.count() == 0
        assert account_balance("1100") == Decimal("0.00")
        assert account_balance("4900") == Decimal("0.00")
        assert student_balance(student) == Decimal("0.00")
        assert check_integrity()["is_consistent"] is True

    def test_delete_after_grace_period(self, actor, charge):
        txn = charge["transaction"]

        result = delete_posting(actor, transaction_id=txn.pk, now=txn.transaction_date + timedelta(days=45))

        assert not result.success
        assert isinstance(result.error, GracePeriodExpiredError)
        assert StudentTransaction.objects.filter(pk=txn.pk).exists()

    def test_reversed_transaction_cannot_be_deleted(self, actor, charge):
        assert reverse_student_transaction(actor, transaction_id=charge["transaction"].pk).success

        result = delete_posting(actor, transaction_id=charge["transaction"].pk)

        assert not result.success
        assert JournalEntry.objects.count() == 2

    def test_payment_with_refund_history_cannot_be_deleted(self, actor, student, ledger):
        paid = _pay(actor, student, "200.00").data
        refund = refund_payment(actor, payment_id=paid["document"].pk, amount=Decimal("20.00")).data
        assert reverse_student_transaction(actor, transaction_id=refund["transaction"].pk).success

        result = delete_posting(actor, transaction_id=paid["transaction"].pk)

        assert not result.success
        assert "refund history" in result.message

    def test_deleting_refund_releases_payment(self, actor, student, ledger):
        paid = _pay(actor, student, "200.00").data
        refund = refund_payment(actor, payment_id=paid["document"].pk).data

        assert delete_posting(actor, transaction_id=refund["transaction"].pk).success

        payment = FeePayment.objects.get(pk=paid["document"].pk)
        assert payment.status == Status.POSTED
        assert payment.refunded_amount == Decimal("0.00")


# =============================================================================
# Atomicity
# =============================================================================

@pytest.mark.django_db
class TestAtomicity:

    def test_failure_after_posting_rolls_everything_back(
        self, actor, student, class_group, tuition_fee, monkeypatch
    ):
        def fail_document(model, **fields):
            raise PreconditionFailedError("Document store unavailable.")

        monkeypatch.setattr(commands, "_create_document", fail_document)

        result = _enroll(actor, student, class_group)

        assert not result.success
        assert JournalEntry.objects.count() == 0
        assert JournalLine.objects.count() == 0
        assert StudentTransaction.objects.count() == 0
        assert AccountBalance.objects.count() == 0
        assert Enrollment.objects.count() == 0

    def test_failed_command_does_not_consume_receipt_number(self, actor, student, ledger, monkeypatch):
        first = _pay(actor, student, "10.00").data["document"]

        def fail_document(model, **fields):
            raise PreconditionFailedError("Document store unavailable.")

        monkeypatch.setattr(commands, "_create_document", fail_document)
        assert not _pay(actor, student, "10.00").success
        monkeypatch.undo()

        second = _pay(actor, student, "10.00").data["document"]
        assert int(second.receipt_number[4:]) == int(first.receipt_number[4:]) + 1


# =============================================================================
# Concurrency (PostgreSQL row locks)
# =============================================================================

@pytest.mark.django_db(transaction=True)
class TestConcurrentEnrollment:

    def test_last_seat_goes_to_one_request(self, actor, student, second_student, ledger):
        if connection.vendor != "postgresql":
            pytest.skip("Row-lock race test requires PostgreSQL")

        class_group = ClassGroup.objects.create(name="Form 2 West", capacity=1)
        FeeStructure.objects.create(
            category=FeeStructure.Category.TUITION,
            class_group=class_group,
            term=TERM,
            academic_year=YEAR,
            amount=Decimal("500.00"),
        )
        barrier = Barrier(2)

        def enroll(candidate):
            try:
                barrier.wait()
                return _enroll(actor, candidate, class_group)
            finally:
                connection.close()

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(enroll, [student, second_student]))

        succeeded = [r for r in results if r.success]
        failed = [r for r in results if not r.success]
        assert len(succeeded) == 1
        assert len(failed) == 1
        assert isinstance(failed[0].error, PreconditionFailedError)
        assert Enrollment.objects.filter(class_group=class_group, status=Status.POSTED).count() == 1
