import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated, IsAdminUser, AllowAny
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer, TokenRefreshSerializer
from rest_framework_simplejwt.exceptions import AuthenticationFailed, InvalidToken, TokenError
from django.contrib.auth import get_user_model
from django.core.exceptions import ObjectDoesNotExist
from django.shortcuts import get_object_or_404
from django.db.models import ProtectedError
from .models import Role, AuditLog
from .permissions import resource_permission
from .serializers import (
    UserSerializer, UserCreateSerializer,
    RoleSerializer, AuditLogSerializer
)
from .utils import paginate

logger = logging.getLogger(__name__)

User = get_user_model()


class CustomTokenObtainPairSerializer(TokenObtainPairSerializer):
    def validate(self, attrs):
        data = super().validate(attrs)
        if not self.user.is_active:
            raise AuthenticationFailed('User account is disabled.')
        return data

    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token['username'] = user.username
        token['role'] = user.role_name
        token['permissions'] = user.get_permission_set().to_claims()
        return token


class CustomTokenObtainPairView(TokenObtainPairView):
    serializer_class = CustomTokenObtainPairSerializer


class CustomTokenRefreshSerializer(TokenRefreshSerializer):
    """Custom token refresh serializer that handles deleted users gracefully"""
    def validate(self, attrs):
        try:
            return super().validate(attrs)
        except (InvalidToken, TokenError):
            raise InvalidToken('Token is invalid or expired.')
        except (ObjectDoesNotExist, User.DoesNotExist):
            raise InvalidToken('Token is invalid. User no longer exists.')


class CustomTokenRefreshView(TokenRefreshView):
    serializer_class = CustomTokenRefreshSerializer


@api_view(['POST'])
@permission_classes([AllowAny])
def register(request):
    """Customer self-registration"""
    data = request.data.copy()
    # Self-registered accounts are always customers
    data.pop('role', None)
    serializer = UserCreateSerializer(data=data)
    if serializer.is_valid():
        user = serializer.save(role=Role.objects.filter(name=Role.CUSTOMER).first())
        token = CustomTokenObtainPairSerializer.get_token(user)
        logger.info(f"New user registered: {user.id} - {user.email}")
        return Response({
            'user': UserSerializer(user).data,
            'access': str(token.access_token),
            'refresh': str(token),
        }, status=status.HTTP_201_CREATED)
    return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def user_me(request):
    """Get current user with role and resolved permissions"""
    user = request.user
    user_data = UserSerializer(user).data
    permission_set = user.get_permission_set()
    user_data['permissions'] = permission_set.as_mapping()
    user_data['can_access_dashboard'] = permission_set.allows('dashboard', 'read')
    user_data['can_access_reports'] = permission_set.allows('reports', 'read')
    return Response(user_data)


# User views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def user_list_create(request):
    """List all users or create a new user"""
    if request.method == 'GET':
        if not request.user.has_resource_permission('users', 'read'):
            return Response({'error': 'Permission denied'}, status=status.HTTP_403_FORBIDDEN)
        queryset = User.objects.select_related('role').order_by('id')
        role = request.query_params.get('role')
        if role:
            queryset = queryset.filter(role__name=role.upper())
        return Response(paginate(request, queryset, UserSerializer))

    if not request.user.has_resource_permission('users', 'create'):
        return Response({'error': 'Permission denied'}, status=status.HTTP_403_FORBIDDEN)
    serializer = UserCreateSerializer(data=request.data)
    if serializer.is_valid():
        user = serializer.save()
        return Response(UserSerializer(user).data, status=status.HTTP_201_CREATED)
    return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def user_detail(request, pk):
    """Retrieve, update or deactivate a user"""
    user = get_object_or_404(User, pk=pk)
    is_self = user.pk == request.user.pk

    if request.method == 'GET':
        if not is_self and not request.user.has_resource_permission('users', 'read'):
            return Response({'error': 'Permission denied'}, status=status.HTTP_403_FORBIDDEN)
        return Response(UserSerializer(user).data)

    if request.method in ('PUT', 'PATCH'):
        if not request.user.has_resource_permission('users', 'update'):
            return Response({'error': 'Permission denied'}, status=status.HTTP_403_FORBIDDEN)
        serializer = UserSerializer(user, data=request.data, partial=request.method == 'PATCH')
        if serializer.is_valid():
            serializer.save()
            return Response(serializer.data)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    # DELETE deactivates; orders and services keep referencing the user
    if not request.user.has_resource_permission('users', 'delete'):
        return Response({'error': 'Permission denied'}, status=status.HTTP_403_FORBIDDEN)
    user.is_active = False
    user.save(update_fields=['is_active', 'updated_at'])
    logger.info(f"User deactivated: {user.id} - {user.email}")
    return Response(status=status.HTTP_204_NO_CONTENT)


# Role views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def role_list_create(request):
    """List all roles or create a new role"""
    if request.method == 'GET':
        if not request.user.has_resource_permission('roles', 'read'):
            return Response({'error': 'Permission denied'}, status=status.HTTP_403_FORBIDDEN)
        return Response(RoleSerializer(Role.objects.all(), many=True).data)

    if not request.user.has_resource_permission('roles', 'create'):
        return Response({'error': 'Permission denied'}, status=status.HTTP_403_FORBIDDEN)
    serializer = RoleSerializer(data=request.data)
    if serializer.is_valid():
        serializer.save()
        return Response(serializer.data, status=status.HTTP_201_CREATED)
    return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated, resource_permission('roles', 'read')])
def role_detail(request, pk):
    """Retrieve, update or delete a role"""
    role = get_object_or_404(Role, pk=pk)

    if request.method == 'GET':
        return Response(RoleSerializer(role).data)

    if request.method in ('PUT', 'PATCH'):
        if not request.user.has_resource_permission('roles', 'update'):
            return Response({'error': 'Permission denied'}, status=status.HTTP_403_FORBIDDEN)
        serializer = RoleSerializer(role, data=request.data, partial=request.method == 'PATCH')
        if serializer.is_valid():
            serializer.save()
            return Response(serializer.data)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    if not request.user.has_resource_permission('roles', 'delete'):
        return Response({'error': 'Permission denied'}, status=status.HTTP_403_FORBIDDEN)
    try:
        role.delete()
    except ProtectedError:
        return Response(
            {'error': 'conflict', 'message': f'Role {role.name} is still assigned to users'},
            status=status.HTTP_409_CONFLICT
        )
    return Response(status=status.HTTP_204_NO_CONTENT)


# AuditLog views (read-only)
@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAdminUser])
def audit_log_list(request):
    """List audit logs with filtering"""
    queryset = AuditLog.objects.select_related('user')

    action_filter = request.query_params.get('action', None)
    if action_filter:
        queryset = queryset.filter(action=action_filter)

    model_filter = request.query_params.get('model', None)
    if model_filter:
        queryset = queryset.filter(model_name=model_filter)

    reference = request.query_params.get('reference', None)
    if reference:
        queryset = queryset.filter(object_reference=reference)

    date_from = request.query_params.get('date_from', None)
    date_to = request.query_params.get('date_to', None)
    if date_from:
        queryset = queryset.filter(created_at__date__gte=date_from)
    if date_to:
        queryset = queryset.filter(created_at__date__lte=date_to)

    return Response(paginate(request, queryset.order_by('-created_at'), AuditLogSerializer))
