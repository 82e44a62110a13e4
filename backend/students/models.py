# students/models.py
"""
Student sub-ledger models.

- Student: Reference data (registration number, gender, active flag)
- StudentTransaction: Student-scoped DEBIT/CREDIT log

Every StudentTransaction references the journal entry that produced it
(NOT NULL, PROTECT): the sub-ledger can never move without the journal.
StudentTransaction is command-owned (see projections/write_barrier.py);
the running balance lives in projections.StudentBalance.
"""

from decimal import Decimal

from django.db import models
from django.utils import timezone

from projections.write_barrier import CommandOwnedModel, WriteBarrierQuerySet


class Student(models.Model):

    class Gender(models.TextChoices):
        MALE = "MALE", "Male"
        FEMALE = "FEMALE", "Female"

    reg_number = models.CharField(max_length=30, unique=True)
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    gender = models.CharField(max_length=10, choices=Gender.choices)
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["reg_number"]

    def __str__(self):
        return f"{self.full_name} ({self.reg_number})"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class StudentTransaction(CommandOwnedModel, models.Model):
    """
    One movement on a student's account.

    DEBIT increases what the student owes (charges); CREDIT reduces it
    (payments, waivers, reversals of charges).
    """

    class Type(models.TextChoices):
        DEBIT = "DEBIT", "Debit"
        CREDIT = "CREDIT", "Credit"

    OPPOSITE = {
        Type.DEBIT: Type.CREDIT,
        Type.CREDIT: Type.DEBIT,
    }

    objects = WriteBarrierQuerySet.as_manager()

    student = models.ForeignKey(
        Student,
        on_delete=models.PROTECT,
        related_name="transactions",
    )
    type = models.CharField(max_length=6, choices=Type.choices)
    amount = models.DecimalField(max_digits=18, decimal_places=2)
    description = models.CharField(max_length=255, blank=True, default="")

    term = models.CharField(max_length=20, blank=True, default="")
    academic_year = models.PositiveIntegerField(null=True, blank=True)
    context = models.CharField(
        max_length=50,
        blank=True,
        default="",
        help_text="Originating business event (enrollment, payment, waiver, ...)",
    )

    journal_entry = models.ForeignKey(
        "accounting.JournalEntry",
        on_delete=models.PROTECT,
        related_name="student_transactions",
    )
    reversal_of = models.OneToOneField(
        "self",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="reversed_by",
    )

    transaction_date = models.DateTimeField(default=timezone.now)
    created_by = models.CharField(max_length=100, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["transaction_date", "id"]
        constraints = [
            models.CheckConstraint(
                check=models.Q(amount__gt=Decimal("0")),
                name="student_transaction_positive_amount",
            ),
        ]
        indexes = [
            models.Index(fields=["student", "transaction_date"]),
            models.Index(fields=["student", "term", "academic_year"]),
        ]

    def __str__(self):
        return f"{self.student_id} {self.type} {self.amount}"

    @property
    def is_reversal(self) -> bool:
        return self.reversal_of_id is not None

    @property
    def is_reversed(self) -> bool:
        return StudentTransaction.objects.filter(reversal_of_id=self.pk).exists()
