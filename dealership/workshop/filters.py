import django_filters
from .models import Service, ServiceType


class ServiceFilter(django_filters.FilterSet):
    """Filter for workshop appointment listings"""
    user_id = django_filters.NumberFilter(field_name='user_id')
    car_id = django_filters.NumberFilter(field_name='car_id')
    service_type = django_filters.NumberFilter(field_name='service_type_id')
    technician_id = django_filters.NumberFilter(field_name='technician_id')
    status = django_filters.CharFilter(field_name='status', lookup_expr='iexact')
    date_from = django_filters.DateFilter(field_name='scheduled_date', lookup_expr='date__gte')
    date_to = django_filters.DateFilter(field_name='scheduled_date', lookup_expr='date__lte')

    ordering = django_filters.OrderingFilter(
        fields=('id', 'scheduled_date', 'status', 'created_at', 'updated_at'),
    )

    class Meta:
        model = Service
        fields = ['user_id', 'car_id', 'service_type', 'technician_id', 'status', 'date_from', 'date_to']


class ServiceTypeFilter(django_filters.FilterSet):
    search = django_filters.CharFilter(field_name='name', lookup_expr='icontains')
    is_active = django_filters.BooleanFilter(field_name='is_active')

    class Meta:
        model = ServiceType
        fields = ['search', 'is_active']
