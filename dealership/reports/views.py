import logging
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django.db.models import Sum, Count, F, DecimalField, ExpressionWrapper
from django.utils import timezone
from datetime import date, timedelta
from decimal import Decimal

from dealership.core.cache_utils import cached_query, DASHBOARD_CACHE_TTL, DASHBOARD_PREFIX
from dealership.core.exceptions import ValidationError
from dealership.core.models import User
from dealership.core.permissions import resource_permission
from dealership.inventory.models import Car, SparePart
from dealership.orders.models import Order
from dealership.workshop.models import Service

logger = logging.getLogger(__name__)

SALES_PERIODS = ('daily', 'weekly', 'monthly')
PENDING_ORDER_STATUSES = (Order.STATUS_PENDING, Order.STATUS_PROCESSING)


def month_start(day, offset=0):
    """First day of the month ``offset`` months away from ``day``"""
    month_index = day.year * 12 + day.month - 1 + offset
    return date(month_index // 12, month_index % 12 + 1, 1)


def percent_change(current, previous):
    if not previous:
        return 100.0 if current else 0.0
    return round(float((current - previous) / previous * 100), 2)


def paid_revenue(date_from, date_to):
    return Order.objects.filter(
        payment_status=Order.PAYMENT_PAID,
        created_at__date__gte=date_from,
        created_at__date__lte=date_to,
    ).aggregate(total=Sum('total_amount'))['total'] or Decimal('0.00')


def cars_sold(date_from, date_to):
    return Car.objects.filter(
        status=Car.STATUS_SOLD,
        updated_at__date__gte=date_from,
        updated_at__date__lte=date_to,
    ).count()


@cached_query(cache_ttl=DASHBOARD_CACHE_TTL, key_prefix=DASHBOARD_PREFIX)
def get_summary(today):
    this_month = month_start(today)
    last_month = month_start(today, -1)
    last_month_end = this_month - timedelta(days=1)

    revenue_current = paid_revenue(this_month, today)
    revenue_previous = paid_revenue(last_month, last_month_end)
    sold_current = cars_sold(this_month, today)
    sold_previous = cars_sold(last_month, last_month_end)

    customers = User.objects.filter(role__name='CUSTOMER', is_active=True)

    return {
        'revenue': {
            'current': float(revenue_current),
            'previous': float(revenue_previous),
            'change': percent_change(revenue_current, revenue_previous),
        },
        'cars': {
            'total': Car.objects.count(),
            'available': Car.objects.filter(status=Car.STATUS_AVAILABLE).count(),
            'sold_this_month': sold_current,
            'sold_last_month': sold_previous,
            'change': percent_change(sold_current, sold_previous),
        },
        'customers': {
            'total': customers.count(),
            'new_this_month': customers.filter(date_joined__date__gte=this_month).count(),
        },
        'alerts': {
            'pending_orders': Order.objects.filter(status__in=PENDING_ORDER_STATUSES).count(),
            'low_stock_parts': SparePart.objects.filter(stock__lte=F('min_stock_level')).count(),
            'services_today': Service.objects.filter(
                status=Service.STATUS_SCHEDULED, scheduled_date__date=today
            ).count(),
        },
    }


@cached_query(cache_ttl=DASHBOARD_CACHE_TTL, key_prefix=DASHBOARD_PREFIX)
def get_inventory_status():
    low_stock = SparePart.objects.filter(stock__lte=F('min_stock_level')).annotate(
        shortfall=F('min_stock_level') - F('stock')
    ).order_by('-shortfall', 'name')[:10]

    car_value = Car.objects.filter(status=Car.STATUS_AVAILABLE).aggregate(
        total=Sum('price')
    )['total'] or Decimal('0.00')
    parts_value = SparePart.objects.aggregate(
        total=Sum(ExpressionWrapper(F('price') * F('stock'), output_field=DecimalField(max_digits=14, decimal_places=2)))
    )['total'] or Decimal('0.00')

    return {
        'cars_by_type': list(Car.objects.values('car_type').annotate(count=Count('id')).order_by('car_type')),
        'cars_by_status': list(Car.objects.values('status').annotate(count=Count('id')).order_by('status')),
        'cars_by_make': list(Car.objects.values('make').annotate(count=Count('id')).order_by('-count', 'make')[:5]),
        'spare_parts_by_category': list(
            SparePart.objects.values('category').annotate(count=Count('id')).order_by('-count', 'category')
        ),
        'low_stock_parts': [
            {
                'id': part.id,
                'name': part.name,
                'part_number': part.part_number,
                'stock': part.stock,
                'min_stock_level': part.min_stock_level,
                'category': part.category,
            }
            for part in low_stock
        ],
        'inventory_value': {
            'cars': float(car_value),
            'spare_parts': float(parts_value),
            'total': float(car_value + parts_value),
        },
    }


@cached_query(cache_ttl=DASHBOARD_CACHE_TTL, key_prefix=DASHBOARD_PREFIX)
def get_sales_chart(period, year, today):
    buckets = []
    if period == 'monthly':
        for month in range(1, 13):
            start = date(year, month, 1)
            end = month_start(start, 1) - timedelta(days=1)
            buckets.append((start.strftime('%b'), start, end))
    elif period == 'weekly':
        for i in range(11, -1, -1):
            end = today - timedelta(days=i * 7)
            start = end - timedelta(days=6)
            buckets.append((f'Week {12 - i}', start, end))
    else:
        for i in range(13, -1, -1):
            day = today - timedelta(days=i)
            buckets.append((day.isoformat(), day, day))

    return [
        {
            'label': label,
            'from': start.isoformat(),
            'to': end.isoformat(),
            'revenue': float(paid_revenue(start, end)),
            'cars_sold': cars_sold(start, end),
        }
        for label, start, end in buckets
    ]


@cached_query(cache_ttl=DASHBOARD_CACHE_TTL, key_prefix=DASHBOARD_PREFIX)
def get_upcoming(now, limit):
    services = Service.objects.select_related('car', 'service_type', 'user').filter(
        status=Service.STATUS_SCHEDULED, scheduled_date__gte=now
    ).order_by('scheduled_date')[:limit]
    orders = Order.objects.select_related('user', 'car').filter(
        status__in=PENDING_ORDER_STATUSES
    ).order_by('-created_at')[:limit]

    return {
        'services': [
            {
                'id': service.id,
                'scheduled_date': service.scheduled_date.isoformat(),
                'service_type': service.service_type.name,
                'car': f'{service.car.year} {service.car.make} {service.car.model}',
                'customer': service.user.email,
            }
            for service in services
        ],
        'orders': [
            {
                'id': order.id,
                'order_number': order.order_number,
                'status': order.status,
                'total_amount': float(order.total_amount),
                'customer': order.user.email,
                'created_at': order.created_at.isoformat(),
            }
            for order in orders
        ],
    }


@api_view(['GET'])
@permission_classes([IsAuthenticated, resource_permission('dashboard', 'read')])
def dashboard_summary(request):
    """Revenue, car sales, customers and alert counters"""
    return Response(get_summary(timezone.localdate()))


@api_view(['GET'])
@permission_classes([IsAuthenticated, resource_permission('reports', 'read')])
def inventory_status(request):
    """Inventory breakdown and value"""
    return Response(get_inventory_status())


@api_view(['GET'])
@permission_classes([IsAuthenticated, resource_permission('reports', 'read')])
def sales_chart(request):
    """Paid revenue and cars sold per day, week or month"""
    today = timezone.localdate()
    period = request.query_params.get('period', 'monthly')
    if period not in SALES_PERIODS:
        raise ValidationError(f'period must be one of {", ".join(SALES_PERIODS)}', field='period')
    try:
        year = int(request.query_params.get('year', today.year))
    except (TypeError, ValueError):
        raise ValidationError('year must be a number', field='year')
    if not 1900 <= year <= today.year + 1:
        raise ValidationError('year is out of range', field='year')

    logger.info(f"User {request.user.username} requested {period} sales chart")
    return Response({
        'period': period,
        'sales_data': get_sales_chart(period, year, today),
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated, resource_permission('dashboard', 'read')])
def upcoming(request):
    """Next scheduled services and open orders"""
    try:
        limit = min(max(int(request.query_params.get('limit', 5)), 1), 50)
    except (TypeError, ValueError):
        limit = 5
    # Minute resolution keeps the cache key stable between close requests
    now = timezone.now().replace(second=0, microsecond=0)
    return Response(get_upcoming(now, limit))
