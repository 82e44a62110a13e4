# billing/serializers.py
"""
Serializers for billing commands.

Input serializers validate command arguments before any lock is taken;
output serializers render CommandResult.data.
"""

from decimal import Decimal

from rest_framework import serializers

from accounting.serializers import JournalEntrySerializer
from billing.models import (
    Enrollment,
    FeeCharge,
    FeePayment,
    PaymentRefund,
    UniformSale,
    Waiver,
)
from billing.posting_rules import FeeCategory, PaymentMethod
from students.serializers import StudentTransactionSerializer


MIN_AMOUNT = Decimal("0.01")


class _TermSerializer(serializers.Serializer):
    term = serializers.CharField(max_length=20)
    academic_year = serializers.IntegerField(min_value=1900, max_value=9999)


# =============================================================================
# Input
# =============================================================================

class EnrollmentInputSerializer(_TermSerializer):
    kind = serializers.ChoiceField(choices=Enrollment.Kind.choices)
    class_group_id = serializers.IntegerField(required=False, allow_null=True, default=None)
    room_id = serializers.IntegerField(required=False, allow_null=True, default=None)

    def validate(self, attrs):
        if attrs["kind"] == Enrollment.Kind.CLASS and not attrs.get("class_group_id"):
            raise serializers.ValidationError({"class_group_id": "Required for class enrollment."})
        if attrs["kind"] == Enrollment.Kind.BOARDING and not attrs.get("room_id"):
            raise serializers.ValidationError({"room_id": "Required for boarding enrollment."})
        return attrs


class PaymentInputSerializer(_TermSerializer):
    category = serializers.ChoiceField(choices=FeeCategory.choices)
    amount = serializers.DecimalField(max_digits=18, decimal_places=2, min_value=MIN_AMOUNT)
    currency = serializers.CharField(max_length=3, required=False, allow_blank=True, default="")
    method = serializers.ChoiceField(choices=PaymentMethod.choices)
    exchange_rate = serializers.DecimalField(
        max_digits=18,
        decimal_places=6,
        min_value=Decimal("0.000001"),
        required=False,
        default=Decimal("1"),
    )
    reference = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    payment_date = serializers.DateTimeField(required=False, allow_null=True, default=None)

    def validate_currency(self, value):
        return value.upper()


class WaiverInputSerializer(_TermSerializer):
    category = serializers.ChoiceField(choices=FeeCategory.choices)
    amount = serializers.DecimalField(max_digits=18, decimal_places=2, min_value=MIN_AMOUNT)
    reason = serializers.CharField(max_length=255)


class UniformSaleInputSerializer(_TermSerializer):
    item_name = serializers.CharField(max_length=100)
    quantity = serializers.IntegerField(min_value=1)
    unit_price = serializers.DecimalField(max_digits=18, decimal_places=2, min_value=MIN_AMOUNT)


class FeeChargeInputSerializer(_TermSerializer):
    category = serializers.ChoiceField(choices=[
        (value, label) for value, label in FeeCategory.choices
        if value not in (FeeCategory.TUITION, FeeCategory.BOARDING)
    ])
    amount = serializers.DecimalField(max_digits=18, decimal_places=2, min_value=MIN_AMOUNT)
    description = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


class RefundInputSerializer(serializers.Serializer):
    amount = serializers.DecimalField(
        max_digits=18,
        decimal_places=2,
        required=False,
        allow_null=True,
        default=None,
    )
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


# =============================================================================
# Output
# =============================================================================

_DOCUMENT_FIELDS = ["id", "student", "term", "academic_year", "status", "created_by", "created_at"]


class EnrollmentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Enrollment
        fields = _DOCUMENT_FIELDS + ["kind", "class_group", "room", "amount"]
        read_only_fields = fields


class FeePaymentSerializer(serializers.ModelSerializer):
    currency = serializers.CharField(source="currency.code", read_only=True)

    class Meta:
        model = FeePayment
        fields = _DOCUMENT_FIELDS + [
            "receipt_number", "category", "method", "amount", "currency",
            "exchange_rate", "base_amount", "refunded_amount", "reference", "payment_date",
        ]
        read_only_fields = fields


class PaymentRefundSerializer(serializers.ModelSerializer):
    class Meta:
        model = PaymentRefund
        fields = _DOCUMENT_FIELDS + ["payment", "amount", "reason"]
        read_only_fields = fields


class WaiverSerializer(serializers.ModelSerializer):
    class Meta:
        model = Waiver
        fields = _DOCUMENT_FIELDS + ["category", "amount", "reason"]
        read_only_fields = fields


class UniformSaleSerializer(serializers.ModelSerializer):
    class Meta:
        model = UniformSale
        fields = _DOCUMENT_FIELDS + ["item_name", "quantity", "unit_price", "total"]
        read_only_fields = fields


class FeeChargeSerializer(serializers.ModelSerializer):
    class Meta:
        model = FeeCharge
        fields = _DOCUMENT_FIELDS + ["category", "amount", "description"]
        read_only_fields = fields


DOCUMENT_SERIALIZERS = {
    Enrollment: EnrollmentSerializer,
    FeePayment: FeePaymentSerializer,
    PaymentRefund: PaymentRefundSerializer,
    Waiver: WaiverSerializer,
    UniformSale: UniformSaleSerializer,
    FeeCharge: FeeChargeSerializer,
}


class DocumentField(serializers.Field):
    """Render any posted billing document with its own serializer."""

    def __init__(self, **kwargs):
        kwargs["read_only"] = True
        super().__init__(**kwargs)

    def to_representation(self, value):
        serializer_class = DOCUMENT_SERIALIZERS.get(type(value))
        if serializer_class is None:
            return None
        return {"type": type(value).__name__, **serializer_class(value).data}


class PostingResultSerializer(serializers.Serializer):
    """
    Data of every billing command:
        {"document": {...}, "journal_entry": {...}, "transaction": {...}}
    """

    document = DocumentField()
    journal_entry = JournalEntrySerializer(read_only=True)
    transaction = StudentTransactionSerializer(read_only=True)


class ReversalResultSerializer(serializers.Serializer):
    document = DocumentField(allow_null=True)
    original_entry = JournalEntrySerializer(read_only=True)
    reversal_entry = JournalEntrySerializer(read_only=True)
    transaction = StudentTransactionSerializer(read_only=True)


class DeletionResultSerializer(serializers.Serializer):
    deleted_entry = serializers.CharField(read_only=True)
    deleted_document = serializers.CharField(read_only=True, allow_null=True)
    student_delta = serializers.DecimalField(max_digits=18, decimal_places=2, read_only=True)
    balance_deltas = serializers.IntegerField(read_only=True)
