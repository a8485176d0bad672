from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from decimal import Decimal
from dealership.inventory.models import Car


class ServiceType(models.Model):
    """Kind of workshop job with a default price and duration"""
    name = models.CharField(max_length=100, unique=True)
    description = models.TextField(blank=True)
    estimated_duration = models.PositiveIntegerField(help_text="Estimated duration in minutes")
    base_price = models.DecimalField(max_digits=10, decimal_places=2, validators=[MinValueValidator(Decimal('0.00'))])
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name

    class Meta:
        db_table = 'service_types'
        ordering = ['name']


class Service(models.Model):
    """Workshop appointment for a customer's car"""
    STATUS_SCHEDULED = 'SCHEDULED'
    STATUS_IN_PROGRESS = 'IN_PROGRESS'
    STATUS_COMPLETED = 'COMPLETED'
    STATUS_CANCELLED = 'CANCELLED'

    STATUS_CHOICES = [
        (STATUS_SCHEDULED, 'Scheduled'),
        (STATUS_IN_PROGRESS, 'In progress'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    # Statuses that occupy a slot in the workshop calendar
    ACTIVE_STATUSES = (STATUS_SCHEDULED, STATUS_IN_PROGRESS)

    PAYMENT_STATUS_CHOICES = [
        ('UNPAID', 'Unpaid'),
        ('PARTIAL', 'Partial'),
        ('PAID', 'Paid'),
    ]

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='services')
    car = models.ForeignKey(Car, on_delete=models.PROTECT, related_name='services')
    service_type = models.ForeignKey(ServiceType, on_delete=models.PROTECT, related_name='services')
    technician = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='assigned_services')
    scheduled_date = models.DateTimeField()
    completed_date = models.DateTimeField(null=True, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_SCHEDULED)
    estimated_cost = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    actual_cost = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    notes = models.TextField(blank=True)
    technician_notes = models.TextField(blank=True)
    mileage = models.PositiveIntegerField(null=True, blank=True)
    payment_status = models.CharField(max_length=20, choices=PAYMENT_STATUS_CHOICES, default='UNPAID')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.service_type} for {self.car} on {self.scheduled_date:%Y-%m-%d %H:%M}"

    class Meta:
        db_table = 'services'
        ordering = ['-scheduled_date']
        indexes = [
            models.Index(fields=['scheduled_date'], name='idx_service_scheduled'),
            models.Index(fields=['status'], name='idx_service_status'),
        ]


class BookingLock(models.Model):
    """
    One row per booking calendar.

    Appointment writes lock this row before the conflict check, so two
    bookings for the same slot are checked one after the other.
    """
    name = models.CharField(max_length=50, unique=True)

    def __str__(self):
        return self.name

    class Meta:
        db_table = 'service_booking_locks'
