"""
Django admin configuration for audit records.

Audit records are read-only in admin (they're immutable).
"""

from django.contrib import admin
from django.utils.html import format_html
import json

from .models import AuditRecord


@admin.register(AuditRecord)
class AuditRecordAdmin(admin.ModelAdmin):

    list_display = ["id", "action", "entity_display", "actor_id", "created_at"]
    list_filter = ["action", "entity_type", "created_at"]
    search_fields = ["action", "entity_type", "entity_id", "actor_id"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    readonly_fields = [
        "id", "action", "entity_type", "entity_id", "actor_id",
        "before_formatted", "after_formatted", "created_at",
    ]
    exclude = ["before", "after"]

    def entity_display(self, obj):
        return f"{obj.entity_type}#{obj.entity_id}"
    entity_display.short_description = "Entity"

    def _pretty(self, value):
        if value is None:
            return "-"
        return format_html("<pre>{}</pre>", json.dumps(value, indent=2, sort_keys=True, ensure_ascii=False))

    def before_formatted(self, obj):
        return self._pretty(obj.before)
    before_formatted.short_description = "Before"

    def after_formatted(self, obj):
        return self._pretty(obj.after)
    after_formatted.short_description = "After"

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
