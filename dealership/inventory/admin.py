from django.contrib import admin
from .models import Car, SparePart, StockAdjustment


@admin.register(Car)
class CarAdmin(admin.ModelAdmin):
    list_display = ['vin', 'make', 'model', 'year', 'car_type', 'price', 'status', 'is_featured', 'deleted_at']
    list_filter = ['status', 'car_type', 'fuel_type', 'transmission', 'is_featured']
    search_fields = ['vin', 'make', 'model', 'license_plate']
    ordering = ['-created_at']
    readonly_fields = ['created_at', 'updated_at']

    def get_queryset(self, request):
        return Car.all_objects.all()


@admin.register(SparePart)
class SparePartAdmin(admin.ModelAdmin):
    list_display = ['part_number', 'name', 'category', 'manufacturer', 'price', 'stock', 'min_stock_level', 'deleted_at']
    list_filter = ['category', 'manufacturer', 'is_original']
    search_fields = ['part_number', 'name', 'manufacturer']
    ordering = ['name']

    def get_queryset(self, request):
        return SparePart.all_objects.all()

    def get_readonly_fields(self, request, obj=None):
        # Existing stock only moves through orders and adjustments
        if obj is not None:
            return ['stock', 'created_at', 'updated_at']
        return ['created_at', 'updated_at']


@admin.register(StockAdjustment)
class StockAdjustmentAdmin(admin.ModelAdmin):
    list_display = ['spare_part', 'operation', 'quantity', 'previous_stock', 'new_stock', 'created_by', 'created_at']
    list_filter = ['operation', 'created_at']
    search_fields = ['spare_part__name', 'spare_part__part_number', 'reason']
    ordering = ['-created_at']
    readonly_fields = ['spare_part', 'operation', 'quantity', 'previous_stock', 'new_stock',
                       'reason', 'created_by', 'created_at']
