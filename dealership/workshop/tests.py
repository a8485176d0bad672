"""
Test suite for the workshop module
Tests: appointment scheduling window, status lifecycle, cancellation, service types and API access
"""
import threading
from datetime import timedelta
from decimal import Decimal
from unittest import skipUnless

from django.db import connection, connections
from django.test import TestCase, TransactionTestCase, override_settings
from django.utils import timezone
from rest_framework import status
from dealership.core.exceptions import (
    ConflictError, InvalidTransitionError, NotFoundError, ValidationError,
)
from dealership.core.models import AuditLog
from dealership.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from dealership.workshop.models import BookingLock, Service, ServiceType
from dealership.workshop.services import (
    BOOKING_CALENDAR, SERVICE_TRANSITIONS, ServiceScheduler, check_transition,
)

STATUSES = [choice for choice, _ in Service.STATUS_CHOICES]


class ServiceTransitionTests(TestCase):
    """The transition table covers every pair of statuses"""

    def test_every_pair(self):
        allowed = {
            (Service.STATUS_SCHEDULED, Service.STATUS_IN_PROGRESS),
            (Service.STATUS_SCHEDULED, Service.STATUS_CANCELLED),
            (Service.STATUS_IN_PROGRESS, Service.STATUS_COMPLETED),
            (Service.STATUS_IN_PROGRESS, Service.STATUS_CANCELLED),
        }
        for current in STATUSES:
            for requested in STATUSES:
                if (current, requested) in allowed:
                    check_transition(current, requested)
                else:
                    with self.assertRaises(InvalidTransitionError, msg=f'{current} -> {requested}'):
                        check_transition(current, requested)

    def test_terminal_statuses(self):
        self.assertEqual(SERVICE_TRANSITIONS[Service.STATUS_COMPLETED], set())
        self.assertEqual(SERVICE_TRANSITIONS[Service.STATUS_CANCELLED], set())


class SchedulingWindowTests(TestCase):
    """Two active appointments may not start within two hours of each other"""

    def setUp(self):
        self.now = timezone.now().replace(microsecond=0)
        self.scheduler = ServiceScheduler(clock=lambda: self.now)
        self.user = TestDataFactory.create_user(role='CUSTOMER')
        self.car = TestDataFactory.create_car()
        self.service_type = TestDataFactory.create_service_type(base_price=Decimal('89.00'))
        self.slot = self.now + timedelta(days=2)
        self.existing = TestDataFactory.create_service(
            user=self.user, car=self.car, service_type=self.service_type, scheduled_date=self.slot
        )

    def book(self, when, **kwargs):
        return self.scheduler.create_service(
            self.user.id, self.car.id, self.service_type.id, when, **kwargs
        )

    def test_same_time_conflicts(self):
        with self.assertRaises(ConflictError):
            self.book(self.slot)

    def test_window_edges_are_inclusive(self):
        for offset in (timedelta(hours=2), -timedelta(hours=2), timedelta(minutes=119)):
            with self.assertRaises(ConflictError, msg=str(offset)):
                self.book(self.slot + offset)

    def test_outside_window_succeeds(self):
        later = self.book(self.slot + timedelta(hours=2, seconds=1))
        earlier = self.book(self.slot - timedelta(hours=2, seconds=1))
        self.assertEqual(later.status, Service.STATUS_SCHEDULED)
        self.assertEqual(earlier.status, Service.STATUS_SCHEDULED)

    def test_window_is_global(self):
        other_user = TestDataFactory.create_user()
        other_car = TestDataFactory.create_car()
        with self.assertRaises(ConflictError):
            self.scheduler.create_service(
                other_user.id, other_car.id, self.service_type.id, self.slot + timedelta(minutes=30)
            )

    def test_in_progress_blocks(self):
        self.existing.status = Service.STATUS_IN_PROGRESS
        self.existing.save()
        with self.assertRaises(ConflictError):
            self.book(self.slot + timedelta(hours=1))

    def test_finished_services_do_not_block(self):
        self.existing.status = Service.STATUS_CANCELLED
        self.existing.save()
        TestDataFactory.create_service(
            user=self.user, car=self.car, service_type=self.service_type,
            scheduled_date=self.slot + timedelta(minutes=10), status=Service.STATUS_COMPLETED,
        )
        service = self.book(self.slot)
        self.assertEqual(service.scheduled_date, self.slot)

    @override_settings(SERVICE_CONFLICT_WINDOW_MINUTES=30)
    def test_window_from_settings(self):
        scheduler = ServiceScheduler(clock=lambda: self.now)
        service = scheduler.create_service(
            self.user.id, self.car.id, self.service_type.id, self.slot + timedelta(minutes=31)
        )
        self.assertEqual(service.status, Service.STATUS_SCHEDULED)

    def test_past_date_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            self.book(self.now - timedelta(minutes=1))
        self.assertEqual(ctx.exception.field, 'scheduled_date')

    def test_now_is_not_future(self):
        with self.assertRaises(ValidationError):
            self.book(self.now)


class CreateServiceTests(TestCase):
    """Test appointment creation"""

    def setUp(self):
        self.now = timezone.now().replace(microsecond=0)
        self.scheduler = ServiceScheduler(clock=lambda: self.now)
        self.user = TestDataFactory.create_user(role='CUSTOMER')
        self.car = TestDataFactory.create_car()
        self.service_type = TestDataFactory.create_service_type(base_price=Decimal('89.00'))
        self.when = self.now + timedelta(days=1)

    def test_defaults(self):
        service = self.scheduler.create_service(
            self.user.id, self.car.id, self.service_type.id, self.when, notes='Brakes squeak', actor=self.user
        )
        self.assertEqual(service.status, Service.STATUS_SCHEDULED)
        self.assertEqual(service.estimated_cost, Decimal('89.00'))
        self.assertEqual(service.payment_status, 'UNPAID')
        self.assertIn('Brakes squeak', service.notes)
        self.assertTrue(AuditLog.objects.filter(action='service_create', object_id=str(service.id)).exists())

    def test_explicit_estimate(self):
        service = self.scheduler.create_service(
            self.user.id, self.car.id, self.service_type.id, self.when, estimated_cost='150.00'
        )
        self.assertEqual(service.estimated_cost, Decimal('150.00'))

    def test_negative_estimate_rejected(self):
        with self.assertRaises(ValidationError):
            self.scheduler.create_service(
                self.user.id, self.car.id, self.service_type.id, self.when, estimated_cost='-1'
            )

    def test_missing_references(self):
        with self.assertRaises(NotFoundError):
            self.scheduler.create_service(999999, self.car.id, self.service_type.id, self.when)
        with self.assertRaises(NotFoundError):
            self.scheduler.create_service(self.user.id, 999999, self.service_type.id, self.when)
        with self.assertRaises(NotFoundError):
            self.scheduler.create_service(self.user.id, self.car.id, 999999, self.when)
        self.assertEqual(Service.objects.count(), 0)

    def test_calendar_lock_row_recreated(self):
        BookingLock.objects.all().delete()
        self.scheduler.create_service(self.user.id, self.car.id, self.service_type.id, self.when)
        self.assertTrue(BookingLock.objects.filter(name=BOOKING_CALENDAR).exists())


class UpdateServiceTests(TestCase):
    """Test rescheduling, status changes and notes"""

    def setUp(self):
        self.now = timezone.now().replace(microsecond=0)
        self.scheduler = ServiceScheduler(clock=lambda: self.now)
        self.user = TestDataFactory.create_user(role='CUSTOMER')
        self.car = TestDataFactory.create_car()
        self.service_type = TestDataFactory.create_service_type()
        self.service = self.scheduler.create_service(
            self.user.id, self.car.id, self.service_type.id, self.now + timedelta(days=1)
        )

    def test_reschedule_ignores_itself(self):
        new_time = self.service.scheduled_date + timedelta(minutes=30)
        service = self.scheduler.update_service(self.service.id, scheduled_date=new_time)
        self.assertEqual(service.scheduled_date, new_time)

    def test_reschedule_into_other_slot_conflicts(self):
        other = self.scheduler.create_service(
            self.user.id, self.car.id, self.service_type.id, self.now + timedelta(days=3)
        )
        with self.assertRaises(ConflictError):
            self.scheduler.update_service(self.service.id, scheduled_date=other.scheduled_date + timedelta(hours=1))

    def test_reschedule_to_past_rejected(self):
        with self.assertRaises(ValidationError):
            self.scheduler.update_service(self.service.id, scheduled_date=self.now - timedelta(days=1))

    def test_full_lifecycle(self):
        service = self.scheduler.update_service(self.service.id, status=Service.STATUS_IN_PROGRESS)
        self.assertEqual(service.status, Service.STATUS_IN_PROGRESS)
        service = self.scheduler.update_service(
            self.service.id, status=Service.STATUS_COMPLETED, actual_cost='210.50'
        )
        self.assertEqual(service.status, Service.STATUS_COMPLETED)
        self.assertEqual(service.completed_date, self.now)
        self.assertEqual(service.actual_cost, Decimal('210.50'))

    def test_skipping_in_progress_rejected(self):
        with self.assertRaises(InvalidTransitionError):
            self.scheduler.update_service(self.service.id, status=Service.STATUS_COMPLETED)

    def test_completed_is_final(self):
        self.scheduler.update_service(self.service.id, status=Service.STATUS_IN_PROGRESS)
        self.scheduler.update_service(self.service.id, status=Service.STATUS_COMPLETED)
        for requested in STATUSES:
            with self.assertRaises(InvalidTransitionError):
                self.scheduler.update_service(self.service.id, status=requested)

    def test_notes_are_appended(self):
        self.scheduler.update_service(self.service.id, notes='First call')
        service = self.scheduler.update_service(self.service.id, notes='Second call', technician_notes='Pads worn')
        self.assertIn('First call', service.notes)
        self.assertIn('Second call', service.notes)
        self.assertLess(service.notes.index('First call'), service.notes.index('Second call'))
        self.assertIn('Pads worn', service.technician_notes)

    def test_change_service_type(self):
        new_type = TestDataFactory.create_service_type(base_price=Decimal('300.00'))
        service = self.scheduler.update_service(self.service.id, service_type_id=new_type.id)
        self.assertEqual(service.service_type, new_type)
        # Existing estimate is kept
        self.assertEqual(service.estimated_cost, self.service_type.base_price)

    def test_missing_service(self):
        with self.assertRaises(NotFoundError):
            self.scheduler.update_service(999999, notes='x')


class CancelServiceTests(TestCase):
    """Test appointment cancellation"""

    def setUp(self):
        self.now = timezone.now().replace(microsecond=0)
        self.scheduler = ServiceScheduler(clock=lambda: self.now)
        self.user = TestDataFactory.create_user()
        self.service = TestDataFactory.create_service(user=self.user, notes='Booked by phone')

    def test_cancel(self):
        service = self.scheduler.cancel_service(self.service.id, reason='Car sold')
        self.assertEqual(service.status, Service.STATUS_CANCELLED)
        self.assertTrue(service.notes.startswith('Booked by phone\n\n'))
        self.assertIn(f'CANCELLED on {self.now.isoformat()}: Car sold', service.notes)
        self.assertTrue(AuditLog.objects.filter(action='service_cancel').exists())

    def test_cancel_in_progress(self):
        self.service.status = Service.STATUS_IN_PROGRESS
        self.service.save()
        service = self.scheduler.cancel_service(self.service.id)
        self.assertIn('No reason provided', service.notes)

    def test_cancel_frees_the_slot(self):
        self.scheduler.cancel_service(self.service.id)
        self.assertIsNone(self.scheduler.find_conflict(self.service.scheduled_date))

    def test_cancel_terminal_rejected(self):
        for terminal in (Service.STATUS_COMPLETED, Service.STATUS_CANCELLED):
            self.service.status = terminal
            self.service.save()
            with self.assertRaises(InvalidTransitionError):
                self.scheduler.cancel_service(self.service.id)


class ServiceAPITests(TestCase):
    """Test appointment endpoints and access rules"""

    def setUp(self):
        self.customer = TestDataFactory.create_user(role='CUSTOMER')
        self.other_customer = TestDataFactory.create_user(role='CUSTOMER')
        self.staff = TestDataFactory.create_user(role='STAFF')
        self.car = TestDataFactory.create_car()
        self.service_type = TestDataFactory.create_service_type()
        self.client = AuthenticatedAPIClient()

    def payload(self, **overrides):
        data = {
            'car_id': self.car.id,
            'service_type_id': self.service_type.id,
            'scheduled_date': (timezone.now() + timedelta(days=5)).isoformat(),
        }
        data.update(overrides)
        return data

    def test_customer_books_service(self):
        self.client.authenticate_user(self.customer)
        response = self.client.post('/api/v1/services/', self.payload(), format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['user'], self.customer.id)
        self.assertEqual(response.data['status'], Service.STATUS_SCHEDULED)

    def test_overlapping_booking_response(self):
        self.client.authenticate_user(self.customer)
        first = self.client.post('/api/v1/services/', self.payload(), format='json')
        self.assertEqual(first.status_code, status.HTTP_201_CREATED)
        response = self.client.post('/api/v1/services/', self.payload(), format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['field'], 'scheduled_date')

    def test_past_booking_response(self):
        self.client.authenticate_user(self.customer)
        past = (timezone.now() - timedelta(days=1)).isoformat()
        response = self.client.post('/api/v1/services/', self.payload(scheduled_date=past), format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_customer_cannot_book_for_someone_else(self):
        self.client.authenticate_user(self.customer)
        response = self.client.post(
            '/api/v1/services/', self.payload(user_id=self.other_customer.id), format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_staff_books_for_customer(self):
        self.client.authenticate_user(self.staff)
        response = self.client.post('/api/v1/services/', self.payload(user_id=self.customer.id), format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['user'], self.customer.id)

    def test_listing_is_scoped(self):
        TestDataFactory.create_service(user=self.customer)
        TestDataFactory.create_service(user=self.other_customer, scheduled_date=timezone.now() + timedelta(days=9))
        self.client.authenticate_user(self.customer)
        response = self.client.get('/api/v1/services/')
        self.assertEqual(response.data['count'], 1)

        self.client.authenticate_user(self.staff)
        response = self.client.get('/api/v1/services/')
        self.assertEqual(response.data['count'], 2)

    def test_filter_by_status(self):
        TestDataFactory.create_service(user=self.customer)
        TestDataFactory.create_service(
            user=self.customer, scheduled_date=timezone.now() + timedelta(days=9), status=Service.STATUS_COMPLETED
        )
        self.client.authenticate_user(self.staff)
        response = self.client.get('/api/v1/services/?status=completed')
        self.assertEqual(response.data['count'], 1)

    def test_customer_cannot_view_other_service(self):
        service = TestDataFactory.create_service(user=self.other_customer)
        self.client.authenticate_user(self.customer)
        response = self.client.get(f'/api/v1/services/{service.id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_staff_updates_status(self):
        service = TestDataFactory.create_service(user=self.customer)
        self.client.authenticate_user(self.staff)
        response = self.client.put(
            f'/api/v1/services/{service.id}/', {'status': Service.STATUS_IN_PROGRESS}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], Service.STATUS_IN_PROGRESS)

    def test_illegal_status_response(self):
        service = TestDataFactory.create_service(user=self.customer)
        self.client.authenticate_user(self.staff)
        response = self.client.put(
            f'/api/v1/services/{service.id}/', {'status': Service.STATUS_COMPLETED}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'invalid_transition')

    def test_customer_cannot_update(self):
        service = TestDataFactory.create_service(user=self.customer)
        self.client.authenticate_user(self.customer)
        response = self.client.put(f'/api/v1/services/{service.id}/', {'notes': 'hi'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_customer_cancels_own_service(self):
        service = TestDataFactory.create_service(user=self.customer)
        self.client.authenticate_user(self.customer)
        response = self.client.post(f'/api/v1/services/{service.id}/cancel/', {'reason': 'Away'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], Service.STATUS_CANCELLED)

    def test_customer_cannot_cancel_other_service(self):
        service = TestDataFactory.create_service(user=self.other_customer)
        self.client.authenticate_user(self.customer)
        response = self.client.post(f'/api/v1/services/{service.id}/cancel/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_user_services(self):
        TestDataFactory.create_service(user=self.customer)
        self.client.authenticate_user(self.customer)
        response = self.client.get(f'/api/v1/users/{self.customer.id}/services/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)


class ServiceTypeAPITests(TestCase):
    """Test service type endpoints"""

    def setUp(self):
        self.admin = TestDataFactory.create_user(role='ADMIN')
        self.client = AuthenticatedAPIClient()

    def test_list_is_public(self):
        TestDataFactory.create_service_type(name='Oil change')
        response = self.client.get('/api/v1/service-types/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data[0]['name'], 'Oil change')

    def test_create(self):
        self.client.authenticate_user(self.admin)
        data = {'name': 'Tyre rotation', 'estimated_duration': 45, 'base_price': '40.00'}
        response = self.client.post('/api/v1/service-types/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_duplicate_name(self):
        TestDataFactory.create_service_type(name='Inspection')
        self.client.authenticate_user(self.admin)
        data = {'name': 'inspection', 'estimated_duration': 30, 'base_price': '20.00'}
        response = self.client.post('/api/v1/service-types/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_anonymous_cannot_create(self):
        data = {'name': 'Detailing', 'estimated_duration': 90, 'base_price': '99.00'}
        response = self.client.post('/api/v1/service-types/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_delete_unused(self):
        service_type = TestDataFactory.create_service_type()
        self.client.authenticate_user(self.admin)
        response = self.client.delete(f'/api/v1/service-types/{service_type.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(ServiceType.objects.filter(pk=service_type.pk).exists())

    def test_delete_in_use(self):
        service = TestDataFactory.create_service(user=self.admin)
        self.client.authenticate_user(self.admin)
        response = self.client.delete(f'/api/v1/service-types/{service.service_type_id}/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)


@skipUnless(connection.vendor == 'postgresql', 'Concurrent writers need a server database')
class ConcurrentBookingTests(TransactionTestCase):
    """Two customers racing for the same slot"""

    def test_only_one_booking_in_window(self):
        BookingLock.objects.get_or_create(name=BOOKING_CALENDAR)
        user = TestDataFactory.create_user()
        cars = [TestDataFactory.create_car(), TestDataFactory.create_car()]
        service_type = TestDataFactory.create_service_type()
        when = timezone.now() + timedelta(days=2)
        barrier = threading.Barrier(2)
        results = []
        lock = threading.Lock()

        def book(car, offset):
            try:
                barrier.wait()
                ServiceScheduler().create_service(
                    user.id, car.id, service_type.id, when + timedelta(minutes=offset)
                )
                outcome = 'ok'
            except ConflictError:
                outcome = 'conflict'
            finally:
                connections.close_all()
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=book, args=(car, offset)) for car, offset in zip(cars, (0, 30))]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sorted(results), ['conflict', 'ok'])
        self.assertEqual(Service.objects.count(), 1)
