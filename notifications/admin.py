from django.contrib import admin

from .models import DeliveryNotification


@admin.register(DeliveryNotification)
class DeliveryNotificationAdmin(admin.ModelAdmin):
    list_display = ("delivery", "kind", "status", "recipient", "message_sid", "sent_at")
    search_fields = ("delivery__tracking_code", "recipient", "message_sid")
    list_filter = ("kind", "status")
