# billing/admin.py
"""
Django admin configuration for billing.

Reference data (classes, hostels, rooms, fee structures) is editable.
Posted documents are read-only: they are created, reversed and deleted by
billing/commands.py together with their journal entries.
"""

from django.contrib import admin

from accounting.admin import ReadOnlyModelAdmin

from .models import (
    ClassGroup,
    Enrollment,
    FeeCharge,
    FeePayment,
    FeeStructure,
    Hostel,
    PaymentRefund,
    Room,
    UniformSale,
    Waiver,
)


# =============================================================================
# Reference data
# =============================================================================

@admin.register(ClassGroup)
class ClassGroupAdmin(admin.ModelAdmin):
    list_display = ["name", "capacity", "is_active"]
    list_filter = ["is_active"]
    search_fields = ["name"]


class RoomInline(admin.TabularInline):
    model = Room
    extra = 0
    fields = ["number", "capacity", "is_active"]


@admin.register(Hostel)
class HostelAdmin(admin.ModelAdmin):
    list_display = ["name", "gender", "is_active"]
    list_filter = ["gender", "is_active"]
    inlines = [RoomInline]


@admin.register(FeeStructure)
class FeeStructureAdmin(admin.ModelAdmin):
    list_display = ["category", "class_group", "hostel", "term", "academic_year", "amount"]
    list_filter = ["category", "term", "academic_year"]
    list_select_related = ["class_group", "hostel"]


# =============================================================================
# Posted documents (read-only)
# =============================================================================

class PostedDocumentAdmin(ReadOnlyModelAdmin):
    list_filter = ["status", "term", "academic_year"]
    search_fields = ["student__reg_number", "student__last_name"]
    list_select_related = ["student", "journal_entry"]
    ordering = ["-created_at"]


@admin.register(Enrollment)
class EnrollmentAdmin(PostedDocumentAdmin):
    list_display = ["id", "student", "kind", "class_group", "room", "term", "academic_year", "amount", "status"]
    list_filter = ["kind", "status", "term", "academic_year"]


@admin.register(FeePayment)
class FeePaymentAdmin(PostedDocumentAdmin):
    list_display = ["receipt_number", "student", "category", "method", "amount", "currency", "base_amount", "refunded_amount", "status"]
    list_filter = ["category", "method", "status"]
    search_fields = ["receipt_number", "reference", "student__reg_number"]


@admin.register(PaymentRefund)
class PaymentRefundAdmin(PostedDocumentAdmin):
    list_display = ["id", "payment", "student", "amount", "reason", "status"]


@admin.register(Waiver)
class WaiverAdmin(PostedDocumentAdmin):
    list_display = ["id", "student", "category", "amount", "reason", "status"]


@admin.register(UniformSale)
class UniformSaleAdmin(PostedDocumentAdmin):
    list_display = ["id", "student", "item_name", "quantity", "unit_price", "total", "status"]


@admin.register(FeeCharge)
class FeeChargeAdmin(PostedDocumentAdmin):
    list_display = ["id", "student", "category", "amount", "description", "status"]
