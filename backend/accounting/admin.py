# accounting/admin.py
"""
Django admin configuration for accounting models.

IMPORTANT: The journal is append-only.
======================================
Journal entries, lines and sequences are written by the posting commands
(accounting/commands.py, billing/commands.py) only. The admin is for
viewing; corrections are compensating entries.

Accounts and currencies stay editable; Account.save() refuses a code,
type, parent or receivable-flag change once the account has postings.
"""

from django.contrib import admin

from .models import Account, Currency, DocumentSequence, JournalEntry, JournalLine, PostingJournal


class ReadOnlyModelAdmin(admin.ModelAdmin):
    """
    Base admin class for append-only models.

    To change the ledger, use the command layer.
    """

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class JournalLineInline(admin.TabularInline):
    """Inline display of journal lines within journal entry (read-only)."""
    model = JournalLine
    extra = 0
    readonly_fields = ["line_no", "account", "currency", "description", "debit", "credit", "student"]
    fields = readonly_fields

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


# =============================================================================
# Reference data
# =============================================================================

@admin.register(Currency)
class CurrencyAdmin(admin.ModelAdmin):
    list_display = ["code", "name", "is_base"]
    ordering = ["code"]


@admin.register(PostingJournal)
class PostingJournalAdmin(admin.ModelAdmin):
    list_display = ["name", "is_active"]


@admin.register(Account)
class AccountAdmin(admin.ModelAdmin):
    """Chart of accounts."""

    list_display = ["code", "name", "account_type", "normal_balance", "is_receivable", "is_active", "parent"]
    list_filter = ["account_type", "is_active", "is_receivable"]
    search_fields = ["code", "name", "description"]
    list_select_related = ["parent"]
    ordering = ["code"]

    fieldsets = (
        (None, {
            "fields": ("code", "name", "account_type", "parent"),
        }),
        ("Flags", {
            "fields": ("is_active", "is_receivable"),
        }),
        ("Description", {
            "fields": ("description",),
        }),
    )


# =============================================================================
# Journal (read-only)
# =============================================================================

@admin.register(JournalEntry)
class JournalEntryAdmin(ReadOnlyModelAdmin):

    list_display = ["entry_number", "entry_date", "journal", "description", "reference", "reverses", "created_by"]
    list_filter = ["journal", "entry_date"]
    search_fields = ["entry_number", "description", "reference"]
    date_hierarchy = "entry_date"
    list_select_related = ["journal", "reverses"]
    ordering = ["-entry_date", "-id"]
    inlines = [JournalLineInline]


@admin.register(DocumentSequence)
class DocumentSequenceAdmin(ReadOnlyModelAdmin):
    list_display = ["name", "next_value", "updated_at"]
