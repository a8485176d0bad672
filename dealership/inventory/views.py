import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import AllowAny, IsAuthenticated
from django.db import transaction
from django.shortcuts import get_object_or_404
from dealership.core.exceptions import ConflictError, NotFoundError
from dealership.core.permissions import require_permission, resource_permission
from dealership.core.utils import create_audit_log, paginate
from .filters import CarFilter, SparePartFilter, StockAdjustmentFilter
from .models import Car, SparePart, StockAdjustment
from .serializers import CarSerializer, SparePartSerializer, StockAdjustmentSerializer
from .services import StockLedger

logger = logging.getLogger(__name__)


# Car views
@api_view(['GET', 'POST'])
@permission_classes([AllowAny])
def car_list_create(request):
    """List cars (public) or create a car"""
    if request.method == 'GET':
        filterset = CarFilter(request.query_params, queryset=Car.objects.all())
        return Response(paginate(request, filterset.qs, CarSerializer))

    require_permission(request, 'cars', 'create')
    serializer = CarSerializer(data=request.data)
    if serializer.is_valid():
        car = serializer.save()
        create_audit_log(
            request=request,
            action='create',
            model_name='Car',
            object_id=car.id,
            object_name=str(car),
            object_reference=car.vin,
        )
        logger.info(f"Car created: {car.id} - {car.make} {car.model}")
        return Response(CarSerializer(car).data, status=status.HTTP_201_CREATED)
    return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET'])
@permission_classes([AllowAny])
def car_featured(request):
    """Featured cars that are still available"""
    try:
        limit = min(max(int(request.query_params.get('limit', 6)), 1), 50)
    except (TypeError, ValueError):
        limit = 6
    cars = Car.objects.filter(is_featured=True, status=Car.STATUS_AVAILABLE).order_by('-created_at')[:limit]
    return Response(CarSerializer(cars, many=True).data)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([AllowAny])
def car_detail(request, pk):
    """Retrieve (public), update or soft-delete a car"""
    car = get_object_or_404(Car, pk=pk)

    if request.method == 'GET':
        return Response(CarSerializer(car).data)

    if request.method in ('PUT', 'PATCH'):
        require_permission(request, 'cars', 'update')
        serializer = CarSerializer(car, data=request.data, partial=request.method == 'PATCH')
        if serializer.is_valid():
            car = serializer.save()
            create_audit_log(
                request=request,
                action='update',
                model_name='Car',
                object_id=car.id,
                object_name=str(car),
                object_reference=car.vin,
                changes={k: str(v) for k, v in serializer.validated_data.items()},
            )
            return Response(CarSerializer(car).data)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    require_permission(request, 'cars', 'delete')
    with transaction.atomic():
        car = Car.objects.select_for_update().filter(pk=pk).first()
        if car is None:
            raise NotFoundError(f'Car {pk} not found')
        if car.status == Car.STATUS_RESERVED:
            raise ConflictError('Car is reserved by an open order and cannot be deleted', field='status')
        car.soft_delete()
    create_audit_log(
        request=request,
        action='delete',
        model_name='Car',
        object_id=car.id,
        object_name=str(car),
        object_reference=car.vin,
    )
    logger.info(f"Car deleted: {car.id} - {car.make} {car.model}")
    return Response(status=status.HTTP_204_NO_CONTENT)


# SparePart views
@api_view(['GET', 'POST'])
@permission_classes([AllowAny])
def spare_part_list_create(request):
    """List spare parts (public) or create a spare part"""
    if request.method == 'GET':
        filterset = SparePartFilter(request.query_params, queryset=SparePart.objects.all())
        return Response(paginate(request, filterset.qs, SparePartSerializer))

    require_permission(request, 'spare_parts', 'create')
    serializer = SparePartSerializer(data=request.data)
    if serializer.is_valid():
        part = serializer.save()
        create_audit_log(
            request=request,
            action='create',
            model_name='SparePart',
            object_id=part.id,
            object_name=part.name,
            object_reference=part.part_number,
            changes={'stock': part.stock},
        )
        logger.info(f"Spare part created: {part.id} - {part.name}")
        return Response(SparePartSerializer(part).data, status=status.HTTP_201_CREATED)
    return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([AllowAny])
def spare_part_detail(request, pk):
    """Retrieve (public), update or soft-delete a spare part"""
    part = get_object_or_404(SparePart, pk=pk)

    if request.method == 'GET':
        return Response(SparePartSerializer(part).data)

    if request.method in ('PUT', 'PATCH'):
        require_permission(request, 'spare_parts', 'update')
        serializer = SparePartSerializer(part, data=request.data, partial=request.method == 'PATCH')
        if serializer.is_valid():
            validated = dict(serializer.validated_data)
            # Never write stock from a stale read
            validated.pop('stock', None)
            for field, value in validated.items():
                setattr(part, field, value)
            part.save(update_fields=list(validated) + ['updated_at'])
            part.refresh_from_db()
            create_audit_log(
                request=request,
                action='update',
                model_name='SparePart',
                object_id=part.id,
                object_name=part.name,
                object_reference=part.part_number,
                changes={k: str(v) for k, v in validated.items()},
            )
            return Response(SparePartSerializer(part).data)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    require_permission(request, 'spare_parts', 'delete')
    part.soft_delete()
    create_audit_log(
        request=request,
        action='delete',
        model_name='SparePart',
        object_id=part.id,
        object_name=part.name,
        object_reference=part.part_number,
    )
    logger.info(f"Spare part deleted: {part.id} - {part.name}")
    return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['GET'])
@permission_classes([IsAuthenticated, resource_permission('spare_parts', 'update')])
def spare_part_low_stock(request):
    """Parts at or below their minimum stock level"""
    parts = StockLedger(logger=logger).low_stock_parts()
    return Response({
        'results': SparePartSerializer(parts, many=True).data,
        'count': len(parts),
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated, resource_permission('spare_parts', 'update')])
def spare_part_adjust_stock(request, pk):
    """Add to or subtract from a spare part's stock"""
    result = StockLedger(logger=logger).adjust_stock(
        spare_part_id=pk,
        quantity=request.data.get('quantity'),
        operation=request.data.get('operation'),
        reason=request.data.get('reason'),
        actor=request.user,
        request=request,
    )
    return Response({
        'spare_part': SparePartSerializer(result['spare_part']).data,
        'adjustment_details': {
            'id': result['adjustment_id'],
            'previous_stock': result['previous_stock'],
            'adjustment': result['adjustment'],
            'current_stock': result['new_stock'],
            'reason': result['reason'] or 'Not specified',
            'low_stock': result['low_stock'],
        },
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated, resource_permission('spare_parts', 'read')])
def stock_adjustment_list(request):
    """Stock adjustment history"""
    queryset = StockAdjustment.objects.select_related('spare_part', 'created_by')
    filterset = StockAdjustmentFilter(request.query_params, queryset=queryset)
    return Response(paginate(request, filterset.qs, StockAdjustmentSerializer))
