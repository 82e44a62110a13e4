# billing/models.py
"""
Billing models.

Reference data (editable):
- ClassGroup, Hostel, Room: capacity resources for enrollments
- FeeStructure: the exact fee per (category, resource, term, year)

Posted documents (command-owned, one per business event):
- Enrollment, FeePayment, PaymentRefund, Waiver, UniformSale, FeeCharge

Each posted document points at the journal entry and the student
transaction it produced. Status moves POSTED -> REVERSED, or
POSTED -> PARTIALLY_REFUNDED -> REFUNDED for payments.
"""

from decimal import Decimal

from django.db import models
from django.utils import timezone

from billing.posting_rules import FeeCategory, PaymentMethod
from projections.write_barrier import CommandOwnedModel, WriteBarrierQuerySet


ZERO = Decimal("0.00")


# =============================================================================
# Reference data
# =============================================================================

class ClassGroup(models.Model):
    name = models.CharField(max_length=100, unique=True)
    capacity = models.PositiveIntegerField()
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class Hostel(models.Model):

    class Gender(models.TextChoices):
        MALE = "MALE", "Male"
        FEMALE = "FEMALE", "Female"
        MIXED = "MIXED", "Mixed"

    name = models.CharField(max_length=100, unique=True)
    gender = models.CharField(max_length=10, choices=Gender.choices)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name

    def accepts(self, gender: str) -> bool:
        return self.gender == Hostel.Gender.MIXED or self.gender == gender


class Room(models.Model):
    hostel = models.ForeignKey(Hostel, on_delete=models.PROTECT, related_name="rooms")
    number = models.CharField(max_length=20)
    capacity = models.PositiveIntegerField()
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["hostel", "number"]
        constraints = [
            models.UniqueConstraint(fields=["hostel", "number"], name="uniq_room_per_hostel"),
        ]

    def __str__(self):
        return f"{self.hostel.name} / {self.number}"


class FeeStructure(models.Model):
    """
    Fee amount for one category, resource, term and academic year.

    Tuition is priced per class group, boarding per hostel. Lookups are
    exact: there is no fallback to another term or year.
    """

    class Category(models.TextChoices):
        TUITION = "TUITION", "Tuition"
        BOARDING = "BOARDING", "Boarding"

    category = models.CharField(max_length=20, choices=Category.choices)
    class_group = models.ForeignKey(
        ClassGroup,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="fee_structures",
    )
    hostel = models.ForeignKey(
        Hostel,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="fee_structures",
    )
    term = models.CharField(max_length=20)
    academic_year = models.PositiveIntegerField()
    amount = models.DecimalField(max_digits=18, decimal_places=2)

    class Meta:
        constraints = [
            models.CheckConstraint(
                check=(
                    models.Q(category="TUITION", class_group__isnull=False, hostel__isnull=True)
                    | models.Q(category="BOARDING", hostel__isnull=False, class_group__isnull=True)
                ),
                name="fee_structure_resource_matches_category",
            ),
            models.UniqueConstraint(
                fields=["category", "class_group", "term", "academic_year"],
                condition=models.Q(class_group__isnull=False),
                name="uniq_fee_structure_class_group",
            ),
            models.UniqueConstraint(
                fields=["category", "hostel", "term", "academic_year"],
                condition=models.Q(hostel__isnull=False),
                name="uniq_fee_structure_hostel",
            ),
        ]

    def __str__(self):
        resource = self.class_group or self.hostel
        return f"{self.category} {resource} {self.term}/{self.academic_year}: {self.amount}"


# =============================================================================
# Posted documents
# =============================================================================

class PostedDocument(CommandOwnedModel, models.Model):
    """Fields shared by every posted billing document."""

    class Status(models.TextChoices):
        POSTED = "POSTED", "Posted"
        REVERSED = "REVERSED", "Reversed"
        PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED", "Partially refunded"
        REFUNDED = "REFUNDED", "Refunded"

    objects = WriteBarrierQuerySet.as_manager()

    student = models.ForeignKey(
        "students.Student",
        on_delete=models.PROTECT,
        related_name="%(class)ss",
    )
    term = models.CharField(max_length=20, blank=True, default="")
    academic_year = models.PositiveIntegerField(null=True, blank=True)

    journal_entry = models.ForeignKey(
        "accounting.JournalEntry",
        on_delete=models.PROTECT,
        related_name="%(class)ss",
    )
    student_transaction = models.OneToOneField(
        "students.StudentTransaction",
        on_delete=models.PROTECT,
        related_name="%(class)s",
    )
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.POSTED)

    created_by = models.CharField(max_length=100, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True
        ordering = ["created_at", "id"]

    def snapshot(self) -> dict:
        """Audit view of the document."""
        return {
            "id": self.pk,
            "student": self.student_id,
            "term": self.term,
            "academic_year": self.academic_year,
            "journal_entry": self.journal_entry_id,
            "student_transaction": self.student_transaction_id,
            "status": self.status,
        }


class Enrollment(PostedDocument):

    class Kind(models.TextChoices):
        CLASS = "CLASS", "Class"
        BOARDING = "BOARDING", "Boarding"

    kind = models.CharField(max_length=10, choices=Kind.choices)
    class_group = models.ForeignKey(
        ClassGroup,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="enrollments",
    )
    room = models.ForeignKey(
        Room,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="enrollments",
    )
    amount = models.DecimalField(max_digits=18, decimal_places=2)

    class Meta(PostedDocument.Meta):
        indexes = [
            models.Index(fields=["student", "kind", "term", "academic_year", "status"]),
        ]

    def __str__(self):
        return f"{self.kind} enrollment of {self.student_id} ({self.term}/{self.academic_year})"

    def snapshot(self) -> dict:
        return {
            **super().snapshot(),
            "kind": self.kind,
            "class_group": self.class_group_id,
            "room": self.room_id,
            "amount": self.amount,
        }


class FeePayment(PostedDocument):
    """
    A fee payment.

    ``amount`` is in ``currency``; the ledger is posted in the base currency
    at ``base_amount = amount * exchange_rate``. Refunds are in base amounts.
    """

    category = models.CharField(max_length=20, choices=FeeCategory.choices)
    amount = models.DecimalField(max_digits=18, decimal_places=2)
    currency = models.ForeignKey("accounting.Currency", on_delete=models.PROTECT, related_name="+")
    exchange_rate = models.DecimalField(max_digits=18, decimal_places=6, default=Decimal("1"))
    base_amount = models.DecimalField(max_digits=18, decimal_places=2)
    method = models.CharField(max_length=20, choices=PaymentMethod.choices)
    receipt_number = models.CharField(max_length=30, unique=True)
    reference = models.CharField(max_length=100, blank=True, default="")
    payment_date = models.DateTimeField(default=timezone.now)
    refunded_amount = models.DecimalField(max_digits=18, decimal_places=2, default=ZERO)

    def __str__(self):
        return f"{self.receipt_number} {self.base_amount}"

    @property
    def refundable_amount(self) -> Decimal:
        return self.base_amount - self.refunded_amount

    def refresh_refund_status(self) -> None:
        if self.refunded_amount <= 0:
            self.status = PostedDocument.Status.POSTED
        elif self.refunded_amount >= self.base_amount:
            self.status = PostedDocument.Status.REFUNDED
        else:
            self.status = PostedDocument.Status.PARTIALLY_REFUNDED

    def snapshot(self) -> dict:
        return {
            **super().snapshot(),
            "receipt_number": self.receipt_number,
            "category": self.category,
            "method": self.method,
            "amount": self.amount,
            "currency": self.currency_id,
            "exchange_rate": self.exchange_rate,
            "base_amount": self.base_amount,
            "refunded_amount": self.refunded_amount,
        }


class PaymentRefund(PostedDocument):
    payment = models.ForeignKey(FeePayment, on_delete=models.PROTECT, related_name="refunds")
    amount = models.DecimalField(max_digits=18, decimal_places=2)
    reason = models.CharField(max_length=255, blank=True, default="")

    def snapshot(self) -> dict:
        return {**super().snapshot(), "payment": self.payment_id, "amount": self.amount, "reason": self.reason}


class Waiver(PostedDocument):
    category = models.CharField(max_length=20, choices=FeeCategory.choices)
    amount = models.DecimalField(max_digits=18, decimal_places=2)
    reason = models.CharField(max_length=255)

    def snapshot(self) -> dict:
        return {**super().snapshot(), "category": self.category, "amount": self.amount, "reason": self.reason}


class UniformSale(PostedDocument):
    item_name = models.CharField(max_length=100)
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=18, decimal_places=2)
    total = models.DecimalField(max_digits=18, decimal_places=2)

    def snapshot(self) -> dict:
        return {
            **super().snapshot(),
            "item_name": self.item_name,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "total": self.total,
        }


class FeeCharge(PostedDocument):
    """Transport, additional and other ad-hoc fees."""

    category = models.CharField(max_length=20, choices=FeeCategory.choices)
    amount = models.DecimalField(max_digits=18, decimal_places=2)
    description = models.CharField(max_length=255, blank=True, default="")

    def snapshot(self) -> dict:
        return {
            **super().snapshot(),
            "category": self.category,
            "amount": self.amount,
            "description": self.description,
        }


DOCUMENT_MODELS = (Enrollment, FeePayment, PaymentRefund, Waiver, UniformSale, FeeCharge)
