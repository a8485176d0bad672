"""
Workshop appointment scheduling.

Appointments move SCHEDULED -> IN_PROGRESS -> COMPLETED, and may be
cancelled from either non-terminal state. Two active appointments may not
start within SERVICE_CONFLICT_WINDOW_MINUTES of each other. The window is
global: it is not scoped by car, technician or bay.

Bookings and reschedules lock the calendar's BookingLock row before the
conflict check, so concurrent requests are checked one at a time and each
sees the appointments the others committed.
"""
import logging
from datetime import timedelta
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import DEFAULT_DB_ALIAS, transaction
from django.utils import timezone

from dealership.core.exceptions import (
    ConflictError, InvalidTransitionError, NotFoundError, ValidationError,
)
from dealership.core.utils import append_note, create_audit_log
from dealership.inventory.models import Car
from .models import BookingLock, Service, ServiceType

BOOKING_CALENDAR = 'workshop'

SERVICE_TRANSITIONS = {
    Service.STATUS_SCHEDULED: {Service.STATUS_IN_PROGRESS, Service.STATUS_CANCELLED},
    Service.STATUS_IN_PROGRESS: {Service.STATUS_COMPLETED, Service.STATUS_CANCELLED},
    Service.STATUS_COMPLETED: set(),
    Service.STATUS_CANCELLED: set(),
}


def check_transition(current, requested):
    """Raise InvalidTransitionError unless current -> requested is allowed"""
    if requested not in SERVICE_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(current, requested)


def parse_cost(value, field):
    if value is None:
        return None
    try:
        cost = Decimal(str(value)).quantize(Decimal('0.01'))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f'{field} must be a decimal amount', field=field)
    if cost < 0:
        raise ValidationError(f'{field} cannot be negative', field=field)
    return cost


class ServiceScheduler:

    def __init__(self, using=None, logger=None, conflict_window=None, clock=None):
        self.using = using or DEFAULT_DB_ALIAS
        self.logger = logger or logging.getLogger(__name__)
        if conflict_window is None:
            conflict_window = timedelta(minutes=getattr(settings, 'SERVICE_CONFLICT_WINDOW_MINUTES', 120))
        self.conflict_window = conflict_window
        self.clock = clock or timezone.now

    def _services(self):
        return Service.objects.using(self.using)

    def _lock_service(self, service_id):
        service = self._services().select_for_update().filter(pk=service_id).first()
        if service is None:
            raise NotFoundError(f'Service {service_id} not found')
        return service

    def _get_service_type(self, service_type_id):
        service_type = ServiceType.objects.using(self.using).filter(pk=service_type_id).first()
        if service_type is None:
            raise NotFoundError(f'Service type {service_type_id} not found', field='service_type_id')
        return service_type

    def _get_user(self, user_id, field):
        user = get_user_model().objects.using(self.using).filter(pk=user_id).first()
        if user is None:
            raise NotFoundError(f'User {user_id} not found', field=field)
        return user

    def _check_future(self, scheduled_date):
        if timezone.is_naive(scheduled_date):
            scheduled_date = timezone.make_aware(scheduled_date)
        if scheduled_date <= self.clock():
            raise ValidationError('Scheduled date must be in the future', field='scheduled_date')
        return scheduled_date

    def get_service(self, service_id):
        service = self._services().select_related(
            'user', 'car', 'service_type', 'technician'
        ).filter(pk=service_id).first()
        if service is None:
            raise NotFoundError(f'Service {service_id} not found')
        return service

    def find_conflict(self, scheduled_date, exclude_id=None):
        """First active appointment starting within the window (inclusive) of scheduled_date"""
        conflicts = self._services().filter(
            status__in=Service.ACTIVE_STATUSES,
            scheduled_date__range=(scheduled_date - self.conflict_window, scheduled_date + self.conflict_window),
        )
        if exclude_id is not None:
            conflicts = conflicts.exclude(pk=exclude_id)
        return conflicts.order_by('scheduled_date').first()

    def _lock_calendar(self):
        """Hold the calendar row until the surrounding transaction ends"""
        BookingLock.objects.using(self.using).get_or_create(name=BOOKING_CALENDAR)
        return BookingLock.objects.using(self.using).select_for_update().get(name=BOOKING_CALENDAR)

    def _check_conflict(self, scheduled_date, exclude_id=None):
        conflict = self.find_conflict(scheduled_date, exclude_id=exclude_id)
        if conflict is not None:
            raise ConflictError(
                'There is already a service scheduled around this time. Please choose a different time.',
                field='scheduled_date',
            )

    # --- CreateService -----------------------------------------------------

    def create_service(self, user_id, car_id, service_type_id, scheduled_date, notes=None,
                       estimated_cost=None, technician_id=None, mileage=None, actor=None, request=None):
        self._get_user(user_id, 'user_id')
        car = Car.objects.using(self.using).filter(pk=car_id).first()
        if car is None:
            raise NotFoundError(f'Car {car_id} not found', field='car_id')
        service_type = self._get_service_type(service_type_id)
        if technician_id is not None:
            self._get_user(technician_id, 'technician_id')

        scheduled_date = self._check_future(scheduled_date)
        estimated_cost = parse_cost(estimated_cost, 'estimated_cost')

        with transaction.atomic(using=self.using):
            self._lock_calendar()
            self._check_conflict(scheduled_date)

            service = self._services().create(
                user_id=user_id,
                car=car,
                service_type=service_type,
                technician_id=technician_id,
                scheduled_date=scheduled_date,
                status=Service.STATUS_SCHEDULED,
                estimated_cost=estimated_cost if estimated_cost is not None else service_type.base_price,
                notes=append_note('', notes, now=self.clock()) if notes else '',
                mileage=mileage,
            )

            create_audit_log(
                request=request,
                user=actor,
                action='service_create',
                model_name='Service',
                object_id=service.id,
                object_name=service_type.name,
                object_reference=car.vin,
                changes={
                    'scheduled_date': scheduled_date.isoformat(),
                    'estimated_cost': str(service.estimated_cost),
                },
                using=self.using,
            )

        self.logger.info(f"Service appointment created: {service.id} for car {car.make} {car.model} ({car.vin})")
        return self.get_service(service.pk)

    # --- UpdateService -----------------------------------------------------

    def update_service(self, service_id, scheduled_date=None, status=None, notes=None, technician_notes=None,
                       completed_date=None, actual_cost=None, service_type_id=None, technician_id=None,
                       actor=None, request=None):
        now = self.clock()
        changes = {}

        with transaction.atomic(using=self.using):
            service = self._lock_service(service_id)

            if scheduled_date is not None:
                if service.status == Service.STATUS_SCHEDULED:
                    scheduled_date = self._check_future(scheduled_date)
                    self._lock_calendar()
                    self._check_conflict(scheduled_date, exclude_id=service.pk)
                changes['scheduled_date'] = {
                    'from': service.scheduled_date.isoformat(),
                    'to': scheduled_date.isoformat(),
                }
                service.scheduled_date = scheduled_date

            if service_type_id is not None:
                service_type = self._get_service_type(service_type_id)
                service.service_type = service_type
                changes['service_type'] = service_type.name
                if service.estimated_cost is None:
                    service.estimated_cost = service_type.base_price

            if technician_id is not None:
                self._get_user(technician_id, 'technician_id')
                service.technician_id = technician_id
                changes['technician_id'] = technician_id

            if status is not None:
                check_transition(service.status, status)
                changes['status'] = {'from': service.status, 'to': status}
                service.status = status
                if status == Service.STATUS_COMPLETED and completed_date is None:
                    service.completed_date = now

            if completed_date is not None:
                service.completed_date = completed_date

            cost = parse_cost(actual_cost, 'actual_cost')
            if cost is not None:
                service.actual_cost = cost
                changes['actual_cost'] = str(cost)

            if notes:
                service.notes = append_note(service.notes, notes, now=now)
            if technician_notes:
                service.technician_notes = append_note(service.technician_notes, technician_notes, now=now)

            service.save(using=self.using)

            create_audit_log(
                request=request,
                user=actor,
                action='service_update',
                model_name='Service',
                object_id=service.id,
                object_name=service.service_type.name,
                changes=changes,
                using=self.using,
            )

        self.logger.info(f"Service updated: {service.id} - Status: {status or 'unchanged'}")
        return self.get_service(service.pk)

    # --- CancelService -----------------------------------------------------

    def cancel_service(self, service_id, reason=None, actor=None, request=None):
        with transaction.atomic(using=self.using):
            service = self._lock_service(service_id)
            check_transition(service.status, Service.STATUS_CANCELLED)

            previous = service.status
            service.status = Service.STATUS_CANCELLED
            service.notes = append_note(
                service.notes, reason or 'No reason provided', label='CANCELLED', now=self.clock()
            )
            service.save(using=self.using, update_fields=['status', 'notes', 'updated_at'])

            create_audit_log(
                request=request,
                user=actor,
                action='service_cancel',
                model_name='Service',
                object_id=service.id,
                changes={
                    'status': {'from': previous, 'to': Service.STATUS_CANCELLED},
                    'reason': reason or 'No reason provided',
                },
                using=self.using,
            )

        self.logger.info(f"Service cancelled: {service.id} - Reason: {reason or 'No reason provided'}")
        return self.get_service(service.pk)
