import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import PermissionDenied
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django.contrib.auth import get_user_model
from django.shortcuts import get_object_or_404
from dealership.core.cache_utils import cached_query, ORDER_STATS_CACHE_TTL, ORDER_STATS_PREFIX
from dealership.core.permissions import require_permission, resource_permission
from dealership.core.utils import paginate, parse_date_param
from .filters import OrderFilter
from .models import Order
from .serializers import (
    OrderSerializer, OrderCreateSerializer, OrderStatusUpdateSerializer, OrderCancelSerializer,
)
from .services import OrderProcessor

logger = logging.getLogger(__name__)

User = get_user_model()


def can_manage_orders(user):
    """Managers see and act on every order, everyone else only on their own"""
    return user.has_resource_permission('orders', 'update')


def order_queryset():
    return Order.objects.select_related('user', 'car').prefetch_related('items__spare_part')


def check_order_access(request, order):
    if order.user_id != request.user.pk and not can_manage_orders(request.user):
        raise PermissionDenied('You can only access your own orders')


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def order_list_create(request):
    """List orders or create a new order"""
    if request.method == 'GET':
        require_permission(request, 'orders', 'read')
        queryset = order_queryset()
        if not can_manage_orders(request.user):
            queryset = queryset.filter(user=request.user)
        filterset = OrderFilter(request.query_params, queryset=queryset)
        return Response(paginate(request, filterset.qs, OrderSerializer))

    require_permission(request, 'orders', 'create')
    serializer = OrderCreateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = dict(serializer.validated_data)

    user_id = data.pop('user_id', None) or request.user.pk
    if user_id != request.user.pk and not can_manage_orders(request.user):
        raise PermissionDenied('You can only place orders for yourself')

    pricing = {field: data.pop(field) for field in ('discount_amount', 'tax_amount', 'shipping_cost') if field in data}
    order = OrderProcessor(logger=logger).create_order(
        user_id=user_id,
        car_id=data.pop('car_id', None),
        items=[dict(item) for item in data.pop('items', [])],
        pricing=pricing,
        actor=request.user,
        request=request,
        **data
    )
    return Response(OrderSerializer(order).data, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, resource_permission('orders', 'read')])
def order_detail(request, pk):
    """Retrieve an order with its items"""
    order = OrderProcessor(logger=logger).get_order(pk)
    check_order_access(request, order)
    return Response(OrderSerializer(order).data)


@api_view(['PUT'])
@permission_classes([IsAuthenticated, resource_permission('orders', 'update')])
def order_update_status(request, pk):
    """Change status, payment status, tracking number or notes"""
    serializer = OrderStatusUpdateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    order, changes = OrderProcessor(logger=logger).update_order_status(
        pk,
        actor=request.user,
        request=request,
        **serializer.validated_data
    )
    return Response({
        'order': OrderSerializer(order).data,
        'changes': changes,
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def order_cancel(request, pk):
    """Cancel an order and put back the car and stock it holds"""
    order = get_object_or_404(Order, pk=pk)
    check_order_access(request, order)
    serializer = OrderCancelSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    order = OrderProcessor(logger=logger).cancel_order(
        pk,
        reason=serializer.validated_data.get('reason'),
        actor=request.user,
        request=request,
    )
    return Response(OrderSerializer(order).data)


@cached_query(cache_ttl=ORDER_STATS_CACHE_TTL, key_prefix=ORDER_STATS_PREFIX)
def get_order_stats(date_from, date_to):
    return OrderProcessor(logger=logger).order_stats(date_from=date_from, date_to=date_to)


@api_view(['GET'])
@permission_classes([IsAuthenticated, resource_permission('reports', 'read')])
def order_stats(request):
    """Order statistics for an optional date range"""
    date_from = parse_date_param(request.query_params.get('date_from'), 'date_from')
    date_to = parse_date_param(request.query_params.get('date_to'), 'date_to')
    return Response(get_order_stats(date_from, date_to))


@api_view(['GET'])
@permission_classes([IsAuthenticated, resource_permission('orders', 'read')])
def user_orders(request, user_id):
    """Orders placed by one user"""
    user = get_object_or_404(User, pk=user_id)
    if user.pk != request.user.pk and not can_manage_orders(request.user):
        raise PermissionDenied('You can only access your own orders')
    queryset = order_queryset().filter(user=user)
    return Response(paginate(request, queryset, OrderSerializer))
