from django.urls import path
from .views import (
    car_list_create, car_featured, car_detail,
    spare_part_list_create, spare_part_detail, spare_part_low_stock, spare_part_adjust_stock,
    stock_adjustment_list,
)

urlpatterns = [
    # Car endpoints
    path('cars/', car_list_create, name='car-list-create'),
    path('cars/featured/', car_featured, name='car-featured'),
    path('cars/<int:pk>/', car_detail, name='car-detail'),

    # SparePart endpoints
    path('spare-parts/', spare_part_list_create, name='spare-part-list-create'),
    path('spare-parts/low-stock/', spare_part_low_stock, name='spare-part-low-stock'),
    path('spare-parts/<int:pk>/', spare_part_detail, name='spare-part-detail'),
    path('spare-parts/<int:pk>/adjust-stock/', spare_part_adjust_stock, name='spare-part-adjust-stock'),

    # StockAdjustment endpoints
    path('stock-adjustments/', stock_adjustment_list, name='stock-adjustment-list'),
]
