"""
URL configuration for the dealership back office.

Every app mounts its routes under /api/v1/.
"""
from django.contrib import admin
from django.urls import path, include, re_path
from django.conf import settings
from django.views.static import serve

admin.site.site_header = "Dealership Back Office Admin"
admin.site.site_title = "Dealership Admin Portal"
admin.site.index_title = "Inventory, orders and workshop"

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/v1/', include('dealership.core.urls')),
    path('api/v1/', include('dealership.inventory.urls')),
    path('api/v1/', include('dealership.orders.urls')),
    path('api/v1/', include('dealership.workshop.urls')),
    path('api/v1/', include('dealership.reports.urls')),
    re_path(r'^static/(?P<path>.*)$', serve, {'document_root': settings.STATIC_ROOT}),
]
