from django.contrib import admin
from .models import Service, ServiceType


@admin.register(ServiceType)
class ServiceTypeAdmin(admin.ModelAdmin):
    list_display = ['name', 'estimated_duration', 'base_price', 'is_active']
    list_filter = ['is_active']
    search_fields = ['name', 'description']


@admin.register(Service)
class ServiceAdmin(admin.ModelAdmin):
    list_display = ['id', 'service_type', 'car', 'user', 'technician', 'scheduled_date', 'status', 'payment_status']
    list_filter = ['status', 'payment_status', 'service_type', 'scheduled_date']
    search_fields = ['car__vin', 'car__make', 'car__model', 'user__email']
    ordering = ['-scheduled_date']
    # Scheduling goes through the API so the conflict window is enforced
    readonly_fields = ['scheduled_date', 'status', 'completed_date', 'created_at', 'updated_at']
