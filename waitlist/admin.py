from django.contrib import admin

from .models import WaitlistEntry


@admin.register(WaitlistEntry)
class WaitlistEntryAdmin(admin.ModelAdmin):
    list_display = ("id", "customer", "staff", "service", "desired_start", "desired_end", "status", "registered_at")
    list_filter = ("status", "business", "staff")
    search_fields = ("customer__name", "customer__email", "staff__name")
    raw_id_fields = ("appointment",)
    ordering = ("registered_at", "id")
