import django_filters
from .models import Order


class OrderFilter(django_filters.FilterSet):
    """Filter for order listings"""
    user_id = django_filters.NumberFilter(field_name='user_id')
    status = django_filters.CharFilter(field_name='status', lookup_expr='iexact')
    payment_status = django_filters.CharFilter(field_name='payment_status', lookup_expr='iexact')
    order_number = django_filters.CharFilter(field_name='order_number', lookup_expr='icontains')
    date_from = django_filters.DateFilter(field_name='created_at', lookup_expr='date__gte')
    date_to = django_filters.DateFilter(field_name='created_at', lookup_expr='date__lte')
    min_amount = django_filters.NumberFilter(field_name='total_amount', lookup_expr='gte')
    max_amount = django_filters.NumberFilter(field_name='total_amount', lookup_expr='lte')

    ordering = django_filters.OrderingFilter(
        fields=('id', 'order_number', 'total_amount', 'status', 'payment_status', 'created_at', 'updated_at'),
    )

    class Meta:
        model = Order
        fields = ['user_id', 'status', 'payment_status', 'order_number', 'date_from', 'date_to',
                  'min_amount', 'max_amount']
