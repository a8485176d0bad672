import django_filters
from django.db.models import F, Q
from .models import Car, SparePart, StockAdjustment


class CarFilter(django_filters.FilterSet):
    """Filter for the car listing"""

    # Free text across make, model, description and color
    search = django_filters.CharFilter(method='filter_search', label='Search')

    make = django_filters.CharFilter(field_name='make', lookup_expr='icontains')
    model = django_filters.CharFilter(field_name='model', lookup_expr='icontains')
    color = django_filters.CharFilter(field_name='color', lookup_expr='icontains')
    type = django_filters.CharFilter(field_name='car_type', lookup_expr='iexact')
    status = django_filters.CharFilter(field_name='status', lookup_expr='iexact')
    transmission = django_filters.CharFilter(field_name='transmission', lookup_expr='iexact')
    fuel_type = django_filters.CharFilter(field_name='fuel_type', lookup_expr='iexact')
    is_featured = django_filters.BooleanFilter(field_name='is_featured')

    min_price = django_filters.NumberFilter(field_name='price', lookup_expr='gte')
    max_price = django_filters.NumberFilter(field_name='price', lookup_expr='lte')
    min_year = django_filters.NumberFilter(field_name='year', lookup_expr='gte')
    max_year = django_filters.NumberFilter(field_name='year', lookup_expr='lte')

    ordering = django_filters.OrderingFilter(
        fields=('id', 'make', 'model', 'year', 'price', 'mileage', 'created_at', 'updated_at'),
    )

    class Meta:
        model = Car
        fields = ['search', 'make', 'model', 'color', 'type', 'status', 'transmission',
                  'fuel_type', 'is_featured', 'min_price', 'max_price', 'min_year', 'max_year']

    def filter_search(self, queryset, name, value):
        value = value.strip()
        if not value:
            return queryset
        return queryset.filter(
            Q(make__icontains=value) |
            Q(model__icontains=value) |
            Q(description__icontains=value) |
            Q(color__icontains=value) |
            Q(vin__iexact=value)
        )


class SparePartFilter(django_filters.FilterSet):
    """Filter for the spare part listing"""

    search = django_filters.CharFilter(method='filter_search', label='Search')

    name = django_filters.CharFilter(field_name='name', lookup_expr='icontains')
    part_number = django_filters.CharFilter(field_name='part_number', lookup_expr='icontains')
    category = django_filters.CharFilter(field_name='category', lookup_expr='icontains')
    manufacturer = django_filters.CharFilter(field_name='manufacturer', lookup_expr='icontains')
    is_original = django_filters.BooleanFilter(field_name='is_original')

    min_price = django_filters.NumberFilter(field_name='price', lookup_expr='gte')
    max_price = django_filters.NumberFilter(field_name='price', lookup_expr='lte')

    in_stock = django_filters.BooleanFilter(method='filter_in_stock', label='In Stock')
    low_stock = django_filters.BooleanFilter(method='filter_low_stock', label='Low Stock')

    ordering = django_filters.OrderingFilter(
        fields=('id', 'name', 'part_number', 'price', 'stock', 'category', 'manufacturer',
                'created_at', 'updated_at'),
    )

    class Meta:
        model = SparePart
        fields = ['search', 'name', 'part_number', 'category', 'manufacturer', 'is_original',
                  'min_price', 'max_price', 'in_stock', 'low_stock']

    def filter_search(self, queryset, name, value):
        value = value.strip()
        if not value:
            return queryset
        return queryset.filter(
            Q(name__icontains=value) |
            Q(part_number__icontains=value) |
            Q(description__icontains=value) |
            Q(manufacturer__icontains=value)
        )

    def filter_in_stock(self, queryset, name, value):
        if value is None:
            return queryset
        return queryset.filter(stock__gt=0) if value else queryset.filter(stock=0)

    def filter_low_stock(self, queryset, name, value):
        if value is None:
            return queryset
        condition = Q(stock__lte=F('min_stock_level'))
        return queryset.filter(condition) if value else queryset.exclude(condition)


class StockAdjustmentFilter(django_filters.FilterSet):
    spare_part = django_filters.NumberFilter(field_name='spare_part_id')
    operation = django_filters.CharFilter(field_name='operation', lookup_expr='iexact')
    date_from = django_filters.DateFilter(field_name='created_at', lookup_expr='date__gte')
    date_to = django_filters.DateFilter(field_name='created_at', lookup_expr='date__lte')

    class Meta:
        model = StockAdjustment
        fields = ['spare_part', 'operation', 'date_from', 'date_to']
