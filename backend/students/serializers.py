# students/serializers.py
"""Serializers for the student sub-ledger (output only)."""

from rest_framework import serializers

from students.models import Student, StudentTransaction


class StudentSerializer(serializers.ModelSerializer):
    full_name = serializers.CharField(read_only=True)
    balance = serializers.DecimalField(
        source="current_balance.balance",
        max_digits=18,
        decimal_places=2,
        read_only=True,
    )

    class Meta:
        model = Student
        fields = ["id", "reg_number", "full_name", "gender", "is_active", "balance"]
        read_only_fields = fields


class StudentTransactionSerializer(serializers.ModelSerializer):
    journal_entry = serializers.SlugRelatedField(slug_field="entry_number", read_only=True)

    class Meta:
        model = StudentTransaction
        fields = [
            "id", "student", "type", "amount", "description", "term",
            "academic_year", "context", "journal_entry", "reversal_of",
            "transaction_date", "created_by",
        ]
        read_only_fields = fields
