from django.contrib.auth.models import AbstractUser, UserManager
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import models
from django.utils import timezone

from .permissions import PermissionSet


class SoftDeleteQuerySet(models.QuerySet):
    def soft_delete(self):
        return self.update(deleted_at=timezone.now())

    def alive(self):
        return self.filter(deleted_at__isnull=True)


class SoftDeleteManager(models.Manager.from_queryset(SoftDeleteQuerySet)):
    """Default manager that hides soft-deleted rows"""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)


class SoftDeleteModel(models.Model):
    """Abstract base for tables that keep rows around after deletion"""
    deleted_at = models.DateTimeField(null=True, blank=True, db_index=True)

    objects = SoftDeleteManager()
    all_objects = models.Manager.from_queryset(SoftDeleteQuerySet)()

    class Meta:
        abstract = True

    def soft_delete(self, using=None):
        self.deleted_at = timezone.now()
        self.save(using=using, update_fields=['deleted_at'])

    @property
    def is_deleted(self):
        return self.deleted_at is not None


class Role(models.Model):
    """Named role carrying a (resource -> actions) permission document"""
    ADMIN = 'ADMIN'
    STAFF = 'STAFF'
    CUSTOMER = 'CUSTOMER'
    SALESPERSON = 'SALESPERSON'

    name = models.CharField(max_length=50, unique=True)
    description = models.CharField(max_length=255, blank=True)
    permissions = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name

    def clean(self):
        try:
            PermissionSet.from_document(self.permissions)
        except ValueError as e:
            raise DjangoValidationError({'permissions': str(e)})

    @property
    def permission_set(self):
        return PermissionSet.from_document(self.permissions)

    class Meta:
        db_table = 'roles'
        ordering = ['name']


class User(AbstractUser):
    """Extended user model with dealership contact fields and a role"""
    email = models.EmailField(unique=True)
    phone = models.CharField(max_length=20, blank=True, null=True)
    address = models.TextField(blank=True)
    role = models.ForeignKey(Role, on_delete=models.PROTECT, null=True, blank=True, related_name='users')
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = UserManager()

    class Meta:
        db_table = 'users'

    @property
    def role_name(self):
        return self.role.name if self.role_id else None

    def get_permission_set(self):
        if self.is_superuser:
            return PermissionSet.everything()
        if not self.role_id:
            return PermissionSet()
        return self.role.permission_set

    def has_resource_permission(self, resource, action):
        return self.get_permission_set().allows(resource, action)


class AuditLog(models.Model):
    """Audit log for critical operations"""
    ACTION_CHOICES = [
        ('create', 'Create'),
        ('update', 'Update'),
        ('delete', 'Delete'),
        ('stock_adjust', 'Stock Adjustment'),
        ('order_create', 'Order Created'),
        ('order_status', 'Order Status Changed'),
        ('order_cancel', 'Order Cancelled'),
        ('service_create', 'Service Scheduled'),
        ('service_update', 'Service Updated'),
        ('service_cancel', 'Service Cancelled'),
    ]

    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, related_name='audit_logs')
    action = models.CharField(max_length=50, choices=ACTION_CHOICES)
    model_name = models.CharField(max_length=100)
    object_id = models.CharField(max_length=100)
    object_name = models.CharField(max_length=255, blank=True, null=True, help_text="Human-readable name of the object (e.g., car, part name)")
    object_reference = models.CharField(max_length=255, blank=True, null=True, help_text="Reference identifier (e.g., order number, VIN, part number)")
    changes = models.JSONField(default=dict, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['-created_at'], name='idx_audit_created'),
            models.Index(fields=['action'], name='idx_audit_action'),
            models.Index(fields=['model_name'], name='idx_audit_model'),
            models.Index(fields=['object_reference'], name='idx_audit_reference'),
        ]
