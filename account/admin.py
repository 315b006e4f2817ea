from django.contrib import admin

from .models import User


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ("email", "name", "phone", "role", "is_active", "is_available", "deliveries_completed")
    list_filter = ("role", "is_active", "is_available", "vehicle_type")
    search_fields = ("email", "name", "phone", "vehicle_number")
    exclude = ("password",)
