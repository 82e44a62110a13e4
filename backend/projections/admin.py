# projections/admin.py
"""Django admin for projection models."""

from django.contrib import admin

from .models import AccountBalance, StudentBalance


class ProjectionAdmin(admin.ModelAdmin):

    def has_add_permission(self, request):
        return False  # Managed by projection

    def has_change_permission(self, request, obj=None):
        return False  # Managed by projection

    def has_delete_permission(self, request, obj=None):
        return False  # Managed by projection


@admin.register(AccountBalance)
class AccountBalanceAdmin(ProjectionAdmin):
    list_display = [
        "account_code", "account_name", "currency", "balance",
        "debit_total", "credit_total", "as_of",
    ]
    list_filter = ["currency", "account__account_type"]
    search_fields = ["account__code", "account__name"]
    list_select_related = ["account", "currency"]
    ordering = ["account__code", "currency__code"]

    def account_code(self, obj):
        return obj.account.code
    account_code.short_description = "Code"
    account_code.admin_order_field = "account__code"

    def account_name(self, obj):
        return obj.account.name
    account_name.short_description = "Name"


@admin.register(StudentBalance)
class StudentBalanceAdmin(ProjectionAdmin):
    list_display = ["student", "balance", "last_updated"]
    search_fields = ["student__reg_number", "student__last_name"]
    list_select_related = ["student"]
    ordering = ["balance"]
