# staff/admin.py
from django.contrib import admin

from .models import WorkingHours, WorkingHoursException


@admin.register(WorkingHours)
class WorkingHoursAdmin(admin.ModelAdmin):
    list_display = ("staff", "weekday", "start_time", "end_time")
    list_filter = ("weekday", "staff")
    search_fields = ("staff__name",)
    ordering = ("staff", "weekday", "start_time")


@admin.register(WorkingHoursException)
class WorkingHoursExceptionAdmin(admin.ModelAdmin):
    list_display = ("staff", "date", "start_time", "end_time", "reason")
    list_filter = ("staff",)
    search_fields = ("staff__name", "reason")
    date_hierarchy = "date"
