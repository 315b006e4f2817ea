from django.contrib import admin

from .models import Delivery, ProofOfDelivery, TimelineEntry


class TimelineEntryInline(admin.TabularInline):
    model = TimelineEntry
    extra = 0
    can_delete = False
    readonly_fields = ("sequence", "status", "timestamp", "latitude", "longitude", "note")

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Delivery)
class DeliveryAdmin(admin.ModelAdmin):
    list_display = ("tracking_code", "customer_name", "driver", "status", "priority", "price", "created_at")
    list_filter = ("status", "priority", "payment_status")
    search_fields = ("tracking_code", "customer_name", "customer_phone")
    # Status and its derived times only move through the lifecycle manager.
    readonly_fields = (
        "tracking_code", "status", "driver", "assigned_at", "actual_pickup_time",
        "actual_delivery_time", "price", "created_at", "updated_at",
    )
    inlines = [TimelineEntryInline]

    def has_add_permission(self, request):
        return False


@admin.register(ProofOfDelivery)
class ProofOfDeliveryAdmin(admin.ModelAdmin):
    list_display = ("delivery", "received_by", "timestamp")
    search_fields = ("delivery__tracking_code", "received_by")
