import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import PermissionDenied
from rest_framework.response import Response
from rest_framework.permissions import AllowAny, IsAuthenticated
from django.contrib.auth import get_user_model
from django.shortcuts import get_object_or_404
from dealership.core.exceptions import ConflictError
from dealership.core.permissions import require_permission, resource_permission
from dealership.core.utils import create_audit_log, paginate
from .filters import ServiceFilter, ServiceTypeFilter
from .models import Service, ServiceType
from .serializers import (
    ServiceSerializer, ServiceCreateSerializer, ServiceUpdateSerializer, ServiceCancelSerializer,
    ServiceTypeSerializer,
)
from .services import ServiceScheduler

logger = logging.getLogger(__name__)

User = get_user_model()


def can_manage_services(user):
    """Workshop staff see and act on every appointment, customers only on their own"""
    return user.has_resource_permission('services', 'update')


def service_queryset():
    return Service.objects.select_related('user', 'car', 'service_type', 'technician')


def check_service_access(request, service):
    if service.user_id != request.user.pk and not can_manage_services(request.user):
        raise PermissionDenied('You can only access your own services')


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def service_list_create(request):
    """List appointments or book a new one"""
    if request.method == 'GET':
        require_permission(request, 'services', 'read')
        queryset = service_queryset().order_by('scheduled_date')
        if not can_manage_services(request.user):
            queryset = queryset.filter(user=request.user)
        filterset = ServiceFilter(request.query_params, queryset=queryset)
        return Response(paginate(request, filterset.qs, ServiceSerializer))

    require_permission(request, 'services', 'create')
    serializer = ServiceCreateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = dict(serializer.validated_data)

    user_id = data.pop('user_id', None) or request.user.pk
    if user_id != request.user.pk and not can_manage_services(request.user):
        raise PermissionDenied('You can only book services for yourself')

    service = ServiceScheduler(logger=logger).create_service(
        user_id=user_id,
        actor=request.user,
        request=request,
        **data
    )
    return Response(ServiceSerializer(service).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'PATCH'])
@permission_classes([IsAuthenticated])
def service_detail(request, pk):
    """Retrieve or update an appointment"""
    scheduler = ServiceScheduler(logger=logger)

    if request.method == 'GET':
        require_permission(request, 'services', 'read')
        service = scheduler.get_service(pk)
        check_service_access(request, service)
        return Response(ServiceSerializer(service).data)

    require_permission(request, 'services', 'update')
    serializer = ServiceUpdateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    service = scheduler.update_service(
        pk,
        actor=request.user,
        request=request,
        **serializer.validated_data
    )
    return Response(ServiceSerializer(service).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def service_cancel(request, pk):
    """Cancel an appointment that has not finished yet"""
    service = get_object_or_404(Service, pk=pk)
    check_service_access(request, service)
    serializer = ServiceCancelSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    service = ServiceScheduler(logger=logger).cancel_service(
        pk,
        reason=serializer.validated_data.get('reason'),
        actor=request.user,
        request=request,
    )
    return Response(ServiceSerializer(service).data)


@api_view(['GET'])
@permission_classes([IsAuthenticated, resource_permission('services', 'read')])
def user_services(request, user_id):
    """Appointments booked by one user"""
    user = get_object_or_404(User, pk=user_id)
    if user.pk != request.user.pk and not can_manage_services(request.user):
        raise PermissionDenied('You can only access your own services')
    queryset = service_queryset().filter(user=user).order_by('scheduled_date')
    return Response(paginate(request, queryset, ServiceSerializer))


# ServiceType views
@api_view(['GET', 'POST'])
@permission_classes([AllowAny])
def service_type_list_create(request):
    """List service types (public) or create one"""
    if request.method == 'GET':
        filterset = ServiceTypeFilter(request.query_params, queryset=ServiceType.objects.all())
        return Response(ServiceTypeSerializer(filterset.qs, many=True).data)

    require_permission(request, 'services', 'create')
    serializer = ServiceTypeSerializer(data=request.data)
    if serializer.is_valid():
        service_type = serializer.save()
        create_audit_log(
            request=request,
            action='create',
            model_name='ServiceType',
            object_id=service_type.id,
            object_name=service_type.name,
        )
        logger.info(f"Service type created: {service_type.id} - {service_type.name}")
        return Response(ServiceTypeSerializer(service_type).data, status=status.HTTP_201_CREATED)
    return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([AllowAny])
def service_type_detail(request, pk):
    """Retrieve (public), update or delete a service type"""
    service_type = get_object_or_404(ServiceType, pk=pk)

    if request.method == 'GET':
        return Response(ServiceTypeSerializer(service_type).data)

    if request.method in ('PUT', 'PATCH'):
        require_permission(request, 'services', 'update')
        serializer = ServiceTypeSerializer(service_type, data=request.data, partial=request.method == 'PATCH')
        if serializer.is_valid():
            service_type = serializer.save()
            create_audit_log(
                request=request,
                action='update',
                model_name='ServiceType',
                object_id=service_type.id,
                object_name=service_type.name,
                changes={k: str(v) for k, v in serializer.validated_data.items()},
            )
            return Response(ServiceTypeSerializer(service_type).data)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    require_permission(request, 'services', 'delete')
    if service_type.services.exists():
        raise ConflictError('Service type is used by existing services and cannot be deleted')
    service_type_id = service_type.id
    service_type.delete()
    create_audit_log(
        request=request,
        action='delete',
        model_name='ServiceType',
        object_id=service_type_id,
        object_name=service_type.name,
    )
    logger.info(f"Service type deleted: {service_type_id} - {service_type.name}")
    return Response(status=status.HTTP_204_NO_CONTENT)
