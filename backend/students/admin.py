# students/admin.py
"""
Django admin configuration for students.

Students are reference data. Sub-ledger transactions are read-only; they
are written by the posting commands only.
"""

from django.contrib import admin

from accounting.admin import ReadOnlyModelAdmin

from .models import Student, StudentTransaction


@admin.register(Student)
class StudentAdmin(admin.ModelAdmin):
    list_display = ["reg_number", "first_name", "last_name", "gender", "is_active"]
    list_filter = ["gender", "is_active"]
    search_fields = ["reg_number", "first_name", "last_name"]


@admin.register(StudentTransaction)
class StudentTransactionAdmin(ReadOnlyModelAdmin):
    list_display = ["id", "student", "type", "amount", "description", "journal_entry", "reversal_of", "transaction_date"]
    list_filter = ["type", "context", "term", "academic_year"]
    search_fields = ["student__reg_number", "description"]
    list_select_related = ["student", "journal_entry"]
    date_hierarchy = "transaction_date"
