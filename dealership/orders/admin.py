from django.contrib import admin
from .models import Order, OrderItem


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ['spare_part', 'quantity', 'unit_price', 'discount', 'total_price']
    can_delete = False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ['order_number', 'user', 'car', 'status', 'payment_status', 'total_amount', 'created_at']
    list_filter = ['status', 'payment_status', 'created_at']
    search_fields = ['order_number', 'user__email', 'car__vin', 'tracking_number']
    ordering = ['-created_at']
    # Lifecycle fields move only through the order endpoints
    readonly_fields = ['order_number', 'user', 'car', 'status', 'total_amount', 'actual_delivery_date',
                       'created_at', 'updated_at']
    inlines = [OrderItemInline]


@admin.register(OrderItem)
class OrderItemAdmin(admin.ModelAdmin):
    list_display = ['order', 'spare_part', 'quantity', 'unit_price', 'discount', 'total_price']
    search_fields = ['order__order_number', 'spare_part__name', 'spare_part__part_number']
    readonly_fields = ['order', 'spare_part', 'quantity', 'unit_price', 'discount', 'total_price']
