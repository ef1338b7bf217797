# services/booking-service/src/apps/core/admin.py
from django.contrib import admin

from .models import Booking, Provider, ReassignmentRecord, ScheduleDay, ScheduleOverride, Service, Shop


@admin.register(Shop)
class ShopAdmin(admin.ModelAdmin):
    list_display = ['name', 'owner_name', 'is_active', 'rating_average', 'rating_count']
    search_fields = ['name', 'owner_name']


@admin.register(Service)
class ServiceAdmin(admin.ModelAdmin):
    list_display = ['name', 'duration_minutes', 'price', 'service_type', 'is_active']
    list_filter = ['service_type', 'is_active']


class ScheduleDayInline(admin.TabularInline):
    model = ScheduleDay
    extra = 0


class ScheduleOverrideInline(admin.TabularInline):
    model = ScheduleOverride
    extra = 0


@admin.register(Provider)
class ProviderAdmin(admin.ModelAdmin):
    list_display = ['display_name', 'provider_type', 'shop', 'service_capability', 'status', 'is_online']
    list_filter = ['provider_type', 'status', 'service_capability']
    search_fields = ['display_name']
    inlines = [ScheduleDayInline, ScheduleOverrideInline]


class ReassignmentRecordInline(admin.TabularInline):
    model = ReassignmentRecord
    extra = 0
    can_delete = False
    readonly_fields = ['from_provider', 'to_provider', 'actor_id', 'previous_status', 'resulting_status', 'created_at']

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ['uid', 'customer_name', 'provider', 'booking_date', 'booking_time', 'status', 'payment_status']
    list_filter = ['status', 'payment_status', 'service_type']
    search_fields = ['uid', 'customer_name']
    readonly_fields = ['uid', 'status', 'payment_status', 'rating']
    inlines = [ReassignmentRecordInline]
