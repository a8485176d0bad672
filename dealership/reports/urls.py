from django.urls import path
from . import views

urlpatterns = [
    path('dashboard/summary/', views.dashboard_summary, name='dashboard-summary'),
    path('dashboard/inventory-status/', views.inventory_status, name='dashboard-inventory-status'),
    path('dashboard/sales/', views.sales_chart, name='dashboard-sales'),
    path('dashboard/upcoming/', views.upcoming, name='dashboard-upcoming'),
]
