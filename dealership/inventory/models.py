from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinLengthValidator, MinValueValidator
from django.db import models
from django.db.models import Q
from django.utils import timezone
from decimal import Decimal
from dealership.core.models import SoftDeleteModel


def validate_model_year(value):
    """Model years run from 1900 up to next year's models"""
    latest = timezone.now().year + 1
    if value < 1900 or value > latest:
        raise ValidationError(f'Year must be between 1900 and {latest}')


class Car(SoftDeleteModel):
    """Vehicle stocked by the dealership"""
    STATUS_AVAILABLE = 'AVAILABLE'
    STATUS_RESERVED = 'RESERVED'
    STATUS_SOLD = 'SOLD'
    STATUS_MAINTENANCE = 'MAINTENANCE'

    STATUS_CHOICES = [
        (STATUS_AVAILABLE, 'Available'),
        (STATUS_RESERVED, 'Reserved'),
        (STATUS_SOLD, 'Sold'),
        (STATUS_MAINTENANCE, 'Maintenance'),
    ]

    TYPE_CHOICES = [
        ('NEW', 'New'),
        ('USED', 'Used'),
    ]

    TRANSMISSION_CHOICES = [
        ('AUTOMATIC', 'Automatic'),
        ('MANUAL', 'Manual'),
        ('CVT', 'CVT'),
        ('SEMI-AUTOMATIC', 'Semi-automatic'),
        ('DUAL-CLUTCH', 'Dual-clutch'),
    ]

    FUEL_CHOICES = [
        ('GASOLINE', 'Gasoline'),
        ('DIESEL', 'Diesel'),
        ('ELECTRIC', 'Electric'),
        ('HYBRID', 'Hybrid'),
        ('PLUG-IN HYBRID', 'Plug-in hybrid'),
    ]

    CONDITION_CHOICES = [
        ('EXCELLENT', 'Excellent'),
        ('GOOD', 'Good'),
        ('FAIR', 'Fair'),
        ('POOR', 'Poor'),
    ]

    vin = models.CharField(max_length=17, validators=[MinLengthValidator(17)])
    make = models.CharField(max_length=50)
    model = models.CharField(max_length=50)
    year = models.PositiveIntegerField(validators=[validate_model_year])
    car_type = models.CharField(max_length=10, choices=TYPE_CHOICES)
    price = models.DecimalField(max_digits=10, decimal_places=2, validators=[MinValueValidator(Decimal('0.00'))])
    mileage = models.PositiveIntegerField(null=True, blank=True)
    color = models.CharField(max_length=30, blank=True)
    license_plate = models.CharField(max_length=20, blank=True)
    transmission = models.CharField(max_length=20, choices=TRANSMISSION_CHOICES, blank=True)
    fuel_type = models.CharField(max_length=20, choices=FUEL_CHOICES, blank=True)
    engine_size = models.CharField(max_length=20, blank=True)
    description = models.TextField(blank=True)
    features = models.JSONField(default=list, blank=True)
    images = models.JSONField(default=list, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_AVAILABLE)
    is_featured = models.BooleanField(default=False)
    exterior_condition = models.CharField(max_length=10, choices=CONDITION_CHOICES, blank=True)
    interior_condition = models.CharField(max_length=10, choices=CONDITION_CHOICES, blank=True)
    previous_owners = models.PositiveIntegerField(default=0)
    service_history = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.year} {self.make} {self.model} ({self.vin})"

    class Meta:
        db_table = 'cars'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['vin'],
                condition=Q(deleted_at__isnull=True),
                name='uniq_active_car_vin',
            ),
        ]
        indexes = [
            models.Index(fields=['make', 'model'], name='idx_car_make_model'),
            models.Index(fields=['status'], name='idx_car_status'),
            models.Index(fields=['price'], name='idx_car_price'),
            models.Index(fields=['year'], name='idx_car_year'),
        ]


class SparePart(SoftDeleteModel):
    """Spare part with a shared stock counter"""
    name = models.CharField(max_length=100)
    part_number = models.CharField(max_length=50)
    description = models.TextField(blank=True)
    price = models.DecimalField(max_digits=10, decimal_places=2, validators=[MinValueValidator(Decimal('0.00'))])
    stock = models.IntegerField(default=0)
    min_stock_level = models.PositiveIntegerField(default=5)
    category = models.CharField(max_length=50)
    compatibility = models.JSONField(default=list, blank=True)
    manufacturer = models.CharField(max_length=50, blank=True)
    weight = models.FloatField(null=True, blank=True)
    dimensions = models.CharField(max_length=50, blank=True)
    images = models.JSONField(default=list, blank=True)
    is_original = models.BooleanField(default=True)
    location = models.CharField(max_length=50, blank=True)
    warranty_period = models.PositiveIntegerField(null=True, blank=True, help_text="Warranty in months")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.name} ({self.part_number})"

    @property
    def is_low_stock(self):
        return self.stock <= self.min_stock_level

    class Meta:
        db_table = 'spare_parts'
        ordering = ['name']
        constraints = [
            models.UniqueConstraint(
                fields=['part_number'],
                condition=Q(deleted_at__isnull=True),
                name='uniq_active_part_number',
            ),
            models.CheckConstraint(condition=Q(stock__gte=0), name='spare_part_stock_non_negative'),
        ]
        indexes = [
            models.Index(fields=['name'], name='idx_part_name'),
            models.Index(fields=['category'], name='idx_part_category'),
            models.Index(fields=['stock'], name='idx_part_stock'),
        ]


class StockAdjustment(models.Model):
    """Explicit stock adjustments (add/subtract) with before/after levels"""
    OPERATION_ADD = 'add'
    OPERATION_SUBTRACT = 'subtract'

    OPERATION_CHOICES = [
        (OPERATION_ADD, 'Stock In'),
        (OPERATION_SUBTRACT, 'Stock Out'),
    ]

    spare_part = models.ForeignKey(SparePart, on_delete=models.PROTECT, related_name='adjustments')
    operation = models.CharField(max_length=10, choices=OPERATION_CHOICES)
    quantity = models.PositiveIntegerField()
    previous_stock = models.IntegerField()
    new_stock = models.IntegerField()
    reason = models.TextField(blank=True)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='stock_adjustments')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'stock_adjustments'
        ordering = ['-created_at']
