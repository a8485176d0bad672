from django.urls import path
from .views import (
    order_list_create, order_detail, order_update_status, order_cancel, order_stats, user_orders,
)

urlpatterns = [
    # Order endpoints
    path('orders/', order_list_create, name='order-list-create'),
    path('orders/stats/', order_stats, name='order-stats'),
    path('orders/<int:pk>/', order_detail, name='order-detail'),
    path('orders/<int:pk>/status/', order_update_status, name='order-update-status'),
    path('orders/<int:pk>/cancel/', order_cancel, name='order-cancel'),

    # Per-user listing
    path('users/<int:user_id>/orders/', user_orders, name='user-orders'),
]
