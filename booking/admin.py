from django.contrib import admin

from .models import Appointment, Business, Customer, Service, Staff


@admin.register(Business)
class BusinessAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "timezone")
    search_fields = ("name",)


@admin.register(Service)
class ServiceAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "business", "duration_minutes", "buffer_minutes", "max_advance_days", "price", "active")
    list_filter = ("active", "business")
    search_fields = ("name",)
    list_editable = ("active",)


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "email", "phone", "business")
    list_filter = ("business",)
    search_fields = ("name", "email", "phone")


@admin.register(Staff)
class StaffAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "email", "business", "timezone", "active")
    list_filter = ("active", "business")
    search_fields = ("name", "email")
    filter_horizontal = ("services",)


@admin.register(Appointment)
class AppointmentAdmin(admin.ModelAdmin):
    # Read-only: writes must go through BookingManager so the overlap rule holds.
    list_display = ("id", "customer", "service", "staff", "start_time", "end_time", "status")
    list_filter = ("status", "business", "staff", "service")
    search_fields = ("customer__name", "service__name", "staff__name")
    date_hierarchy = "start_time"

    def get_readonly_fields(self, request, obj=None):
        return [f.name for f in self.model._meta.fields]

    def has_add_permission(self, request):
        return False
