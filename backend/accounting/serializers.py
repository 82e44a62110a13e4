# accounting/serializers.py
"""
Serializers for the ledger.

Note: These serializers are used for:
1. Input validation of command arguments
2. Output formatting of command results and reports

The actual business logic happens in commands.py. DRF validation errors
are converted to accounting.exceptions.ValidationError by
``validate_input()`` so callers only ever see ledger errors.
"""

from decimal import Decimal, InvalidOperation

from rest_framework import serializers

from accounting.exceptions import ValidationError
from accounting.models import Account, JournalEntry, JournalLine
from projections.models import AccountBalance


MONEY_Q = Decimal("0.01")


def _to_decimal(x) -> Decimal:
    """Convert input to Decimal, handling various input types."""
    if x is None or x == "":
        return Decimal("0.00")
    if isinstance(x, Decimal):
        return x
    try:
        return Decimal(str(x))
    except (InvalidOperation, ValueError, TypeError):
        raise serializers.ValidationError("Invalid decimal amount.")


def validate_input(serializer_class, data, **kwargs) -> dict:
    """
    Run a DRF serializer over command input.

    Raises:
        ValidationError: with the DRF error detail under ``details["fields"]``
    """
    serializer = serializer_class(data=data, **kwargs)
    if not serializer.is_valid():
        raise ValidationError("Invalid input.", details={"fields": serializer.errors})
    return serializer.validated_data


# =============================================================================
# Input
# =============================================================================

class JournalLineInputSerializer(serializers.Serializer):
    account_code = serializers.CharField(max_length=20)
    debit = serializers.DecimalField(max_digits=18, decimal_places=2, required=False, default=Decimal("0.00"))
    credit = serializers.DecimalField(max_digits=18, decimal_places=2, required=False, default=Decimal("0.00"))
    currency = serializers.CharField(max_length=3, required=False, allow_blank=True, default="")
    description = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")

    def validate(self, attrs):
        debit = _to_decimal(attrs.get("debit"))
        credit = _to_decimal(attrs.get("credit"))
        if debit < 0 or credit < 0:
            raise serializers.ValidationError("Amounts cannot be negative.")
        if (debit > 0) == (credit > 0):
            raise serializers.ValidationError("Exactly one of debit/credit must be non-zero.")
        attrs["debit"] = debit.quantize(MONEY_Q)
        attrs["credit"] = credit.quantize(MONEY_Q)
        attrs["currency"] = (attrs.get("currency") or "").upper()
        return attrs


class ManualAdjustmentSerializer(serializers.Serializer):
    description = serializers.CharField(max_length=500)
    lines = JournalLineInputSerializer(many=True)
    entry_date = serializers.DateField(required=False, allow_null=True, default=None)
    reference = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")

    def validate_lines(self, lines):
        if len(lines) < 2:
            raise serializers.ValidationError("A journal entry needs at least two lines.")
        return lines


# =============================================================================
# Output
# =============================================================================

class AccountSerializer(serializers.ModelSerializer):
    normal_balance = serializers.CharField(read_only=True)

    class Meta:
        model = Account
        fields = ["id", "code", "name", "account_type", "normal_balance", "is_receivable", "is_active"]
        read_only_fields = fields


class JournalLineSerializer(serializers.ModelSerializer):
    account_code = serializers.CharField(source="account.code", read_only=True)
    currency = serializers.CharField(source="currency.code", read_only=True)

    class Meta:
        model = JournalLine
        fields = ["line_no", "account_code", "currency", "debit", "credit", "description", "student"]
        read_only_fields = fields


class JournalEntrySerializer(serializers.ModelSerializer):
    journal = serializers.CharField(source="journal.name", read_only=True)
    reverses = serializers.SlugRelatedField(slug_field="entry_number", read_only=True)
    lines = JournalLineSerializer(many=True, read_only=True)

    class Meta:
        model = JournalEntry
        fields = [
            "id", "entry_number", "journal", "entry_date", "description",
            "reference", "reverses", "created_by", "created_at", "lines",
        ]
        read_only_fields = fields


class ReversalResultSerializer(serializers.Serializer):
    original = JournalEntrySerializer(read_only=True)
    reversal = JournalEntrySerializer(read_only=True)


class ManualAdjustmentResultSerializer(serializers.Serializer):
    entry = JournalEntrySerializer(read_only=True)
    student_transaction = serializers.PrimaryKeyRelatedField(read_only=True, allow_null=True)


class AccountBalanceSerializer(serializers.ModelSerializer):
    account_code = serializers.CharField(source="account.code", read_only=True)
    account_name = serializers.CharField(source="account.name", read_only=True)
    currency = serializers.CharField(source="currency.code", read_only=True)

    class Meta:
        model = AccountBalance
        fields = ["account_code", "account_name", "currency", "debit_total", "credit_total", "balance", "as_of"]
        read_only_fields = fields
