from django.urls import path
from .views import (
    service_list_create, service_detail, service_cancel, service_type_list_create,
    service_type_detail, user_services,
)

urlpatterns = [
    # Appointment endpoints
    path('services/', service_list_create, name='service-list-create'),
    path('services/<int:pk>/', service_detail, name='service-detail'),
    path('services/<int:pk>/cancel/', service_cancel, name='service-cancel'),

    # Service type endpoints
    path('service-types/', service_type_list_create, name='service-type-list-create'),
    path('service-types/<int:pk>/', service_type_detail, name='service-type-detail'),

    # Per-user listing
    path('users/<int:user_id>/services/', user_services, name='user-services'),
]
