"""
Test suite for the inventory module
Tests: stock adjustments, low stock reporting, car and spare part CRUD, car reservation
"""
from decimal import Decimal
from io import StringIO
from django.core.management import call_command
from django.db import IntegrityError, transaction
from django.test import TestCase
from rest_framework import status
from dealership.core.exceptions import (
    ConflictError, InsufficientStockError, InvalidTransitionError, NotFoundError, ValidationError,
)
from dealership.core.models import AuditLog
from dealership.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from dealership.inventory.models import Car, SparePart, StockAdjustment
from dealership.inventory.serializers import CarSerializer
from dealership.inventory.services import StockLedger
from dealership.inventory.signals import low_stock
from dealership.orders.models import Order
from dealership.orders.services import OrderProcessor


class StockLedgerAdjustTests(TestCase):
    """Test manual stock adjustments"""

    def setUp(self):
        self.ledger = StockLedger()
        self.user = TestDataFactory.create_user(role='STAFF')
        self.part = TestDataFactory.create_spare_part(stock=10, min_stock_level=5)

    def test_add_stock(self):
        result = self.ledger.adjust_stock(self.part.id, 5, 'add', reason='Delivery', actor=self.user)
        self.part.refresh_from_db()
        self.assertEqual(self.part.stock, 15)
        self.assertEqual(result['previous_stock'], 10)
        self.assertEqual(result['new_stock'], 15)
        self.assertEqual(result['adjustment'], '+5')
        self.assertFalse(result['low_stock'])

    def test_subtract_stock(self):
        result = self.ledger.adjust_stock(self.part.id, 4, 'subtract', actor=self.user)
        self.part.refresh_from_db()
        self.assertEqual(self.part.stock, 6)
        self.assertEqual(result['adjustment'], '-4')

    def test_subtract_more_than_available(self):
        with self.assertRaises(InsufficientStockError) as ctx:
            self.ledger.adjust_stock(self.part.id, 11, 'subtract')
        self.assertEqual(ctx.exception.available, 10)
        self.assertEqual(ctx.exception.requested, 11)
        self.part.refresh_from_db()
        self.assertEqual(self.part.stock, 10)
        self.assertEqual(StockAdjustment.objects.count(), 0)

    def test_subtract_to_zero(self):
        self.ledger.adjust_stock(self.part.id, 10, 'subtract')
        self.part.refresh_from_db()
        self.assertEqual(self.part.stock, 0)

    def test_invalid_operation(self):
        with self.assertRaises(ValidationError) as ctx:
            self.ledger.adjust_stock(self.part.id, 1, 'multiply')
        self.assertEqual(ctx.exception.field, 'operation')

    def test_invalid_quantity(self):
        for quantity in (0, -3, 1.5, '2', True, None):
            with self.assertRaises(ValidationError):
                self.ledger.adjust_stock(self.part.id, quantity, 'add')
        self.part.refresh_from_db()
        self.assertEqual(self.part.stock, 10)

    def test_missing_part(self):
        with self.assertRaises(NotFoundError):
            self.ledger.adjust_stock(999999, 1, 'add')

    def test_records_adjustment_and_audit_log(self):
        result = self.ledger.adjust_stock(self.part.id, 2, 'subtract', reason='Damaged', actor=self.user)
        adjustment = StockAdjustment.objects.get(pk=result['adjustment_id'])
        self.assertEqual(adjustment.previous_stock, 10)
        self.assertEqual(adjustment.new_stock, 8)
        self.assertEqual(adjustment.reason, 'Damaged')
        self.assertEqual(adjustment.created_by, self.user)
        log = AuditLog.objects.get(action='stock_adjust')
        self.assertEqual(log.object_reference, self.part.part_number)
        self.assertEqual(log.changes['new_stock'], 8)

    def test_low_stock_signal(self):
        """Stock 5 at minimum 5, subtract 1 leaves 4 and signals low stock"""
        part = TestDataFactory.create_spare_part(stock=5, min_stock_level=5)
        received = []

        def receiver(sender, spare_part, stock, **kwargs):
            received.append((spare_part.pk, stock))

        low_stock.connect(receiver)
        try:
            with self.captureOnCommitCallbacks(execute=True):
                with self.assertLogs('dealership.inventory.services', level='WARNING'):
                    result = self.ledger.adjust_stock(part.id, 1, 'subtract')
        finally:
            low_stock.disconnect(receiver)

        self.assertEqual(result['new_stock'], 4)
        self.assertTrue(result['low_stock'])
        self.assertEqual(received, [(part.pk, 4)])

    def test_reaching_minimum_signals(self):
        received = []

        def receiver(sender, stock, **kwargs):
            received.append(stock)

        low_stock.connect(receiver)
        try:
            with self.captureOnCommitCallbacks(execute=True):
                result = self.ledger.adjust_stock(self.part.id, 5, 'subtract')
        finally:
            low_stock.disconnect(receiver)
        self.assertTrue(result['low_stock'])
        self.assertEqual(received, [5])

    def test_no_signal_above_minimum(self):
        received = []

        def receiver(sender, **kwargs):
            received.append(kwargs['stock'])

        low_stock.connect(receiver)
        try:
            with self.captureOnCommitCallbacks(execute=True):
                self.ledger.adjust_stock(self.part.id, 4, 'subtract')
        finally:
            low_stock.disconnect(receiver)
        self.assertEqual(received, [])

    def test_no_signal_when_outer_transaction_rolls_back(self):
        received = []

        def receiver(sender, stock, **kwargs):
            received.append(stock)

        low_stock.connect(receiver)
        try:
            with self.captureOnCommitCallbacks(execute=True) as callbacks:
                with self.assertRaises(RuntimeError):
                    with transaction.atomic():
                        self.ledger.adjust_stock(self.part.id, 6, 'subtract')
                        raise RuntimeError('abort')
        finally:
            low_stock.disconnect(receiver)

        self.assertEqual(callbacks, [])
        self.assertEqual(received, [])
        self.part.refresh_from_db()
        self.assertEqual(self.part.stock, 10)


class StockLedgerReservationTests(TestCase):
    """Test reservation helpers used by order processing"""

    def setUp(self):
        self.ledger = StockLedger()

    def test_reserve_and_release_parts(self):
        part_a = TestDataFactory.create_spare_part(stock=5)
        part_b = TestDataFactory.create_spare_part(stock=3)
        self.ledger.reserve_parts({part_a.id: 2, part_b.id: 3})
        part_a.refresh_from_db()
        part_b.refresh_from_db()
        self.assertEqual((part_a.stock, part_b.stock), (3, 0))

        self.ledger.release_parts({part_a.id: 2, part_b.id: 3})
        part_a.refresh_from_db()
        part_b.refresh_from_db()
        self.assertEqual((part_a.stock, part_b.stock), (5, 3))

    def test_reserve_parts_is_all_or_nothing(self):
        part_a = TestDataFactory.create_spare_part(stock=5)
        part_b = TestDataFactory.create_spare_part(stock=1)
        with self.assertRaises(InsufficientStockError):
            self.ledger.reserve_parts({part_a.id: 2, part_b.id: 3})
        part_a.refresh_from_db()
        part_b.refresh_from_db()
        self.assertEqual((part_a.stock, part_b.stock), (5, 1))

    def test_release_restocks_soft_deleted_part(self):
        part = TestDataFactory.create_spare_part(stock=1)
        part.soft_delete()
        self.ledger.release_parts({part.id: 4})
        self.assertEqual(SparePart.all_objects.get(pk=part.pk).stock, 5)

    def test_reserve_car(self):
        car = TestDataFactory.create_car()
        self.ledger.reserve_car(car.id)
        car.refresh_from_db()
        self.assertEqual(car.status, Car.STATUS_RESERVED)

    def test_reserve_car_twice(self):
        car = TestDataFactory.create_car()
        self.ledger.reserve_car(car.id)
        with self.assertRaises(ConflictError):
            self.ledger.reserve_car(car.id)

    def test_reserve_car_in_maintenance(self):
        car = TestDataFactory.create_car(status=Car.STATUS_MAINTENANCE)
        with self.assertRaises(ConflictError):
            self.ledger.reserve_car(car.id)

    def test_reserve_missing_car(self):
        with self.assertRaises(NotFoundError):
            self.ledger.reserve_car(999999)

    def test_release_and_sell_car(self):
        car = TestDataFactory.create_car(status=Car.STATUS_RESERVED)
        self.assertTrue(self.ledger.release_car(car.id))
        self.assertFalse(self.ledger.release_car(car.id))

        car = TestDataFactory.create_car(status=Car.STATUS_RESERVED)
        self.assertTrue(self.ledger.sell_car(car.id))
        car.refresh_from_db()
        self.assertEqual(car.status, Car.STATUS_SOLD)


class LowStockTests(TestCase):
    """Test low stock reporting"""

    def test_low_stock_parts_ordering(self):
        TestDataFactory.create_spare_part(name='Fine', stock=20, min_stock_level=5)
        at_minimum = TestDataFactory.create_spare_part(name='At minimum', stock=5, min_stock_level=5)
        empty = TestDataFactory.create_spare_part(name='Empty', stock=0, min_stock_level=3)
        parts = list(StockLedger().low_stock_parts())
        self.assertEqual([p.pk for p in parts], [empty.pk, at_minimum.pk])

    def test_stock_cannot_go_negative_in_database(self):
        part = TestDataFactory.create_spare_part(stock=1)
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                SparePart.objects.filter(pk=part.pk).update(stock=-1)

    def test_check_low_stock_command(self):
        TestDataFactory.create_spare_part(name='Brake pad', stock=0, min_stock_level=2)
        out = StringIO()
        call_command('check_low_stock', stdout=out)
        self.assertIn('Brake pad', out.getvalue())
        self.assertIn('OUT OF STOCK', out.getvalue())

    def test_check_low_stock_command_all_fine(self):
        TestDataFactory.create_spare_part(stock=50, min_stock_level=2)
        out = StringIO()
        call_command('check_low_stock', stdout=out)
        self.assertIn('All spare parts are above their minimum stock level', out.getvalue())


class CarAPITests(TestCase):
    """Test car endpoints"""

    def setUp(self):
        self.admin = TestDataFactory.create_user(role='ADMIN')
        self.customer = TestDataFactory.create_user(role='CUSTOMER')
        self.client = AuthenticatedAPIClient()

    def car_payload(self, **overrides):
        data = {
            'vin': TestDataFactory.random_vin(),
            'make': 'Honda',
            'model': 'Civic',
            'year': 2023,
            'car_type': 'NEW',
            'price': '27500.00',
        }
        data.update(overrides)
        return data

    def test_list_is_public(self):
        TestDataFactory.create_car()
        response = self.client.get('/api/v1/cars/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)

    def test_filter_by_make(self):
        TestDataFactory.create_car(make='Toyota')
        TestDataFactory.create_car(make='Ford')
        response = self.client.get('/api/v1/cars/?make=ford')
        self.assertEqual(response.data['count'], 1)

    def test_create_car(self):
        self.client.authenticate_user(self.admin)
        response = self.client.post('/api/v1/cars/', self.car_payload(vin='1hgcm82633a004352'), format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['vin'], '1HGCM82633A004352')
        self.assertEqual(response.data['status'], Car.STATUS_AVAILABLE)

    def test_customer_cannot_create_car(self):
        self.client.authenticate_user(self.customer)
        response = self.client.post('/api/v1/cars/', self.car_payload(), format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_anonymous_cannot_create_car(self):
        response = self.client.post('/api/v1/cars/', self.car_payload(), format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_duplicate_vin(self):
        car = TestDataFactory.create_car()
        self.client.authenticate_user(self.admin)
        response = self.client.post('/api/v1/cars/', self.car_payload(vin=car.vin), format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['field'], 'vin')

    def test_short_vin(self):
        self.client.authenticate_user(self.admin)
        response = self.client.post('/api/v1/cars/', self.car_payload(vin='SHORT'), format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_vin_reusable_after_soft_delete(self):
        car = TestDataFactory.create_car()
        car.soft_delete()
        self.client.authenticate_user(self.admin)
        response = self.client.post('/api/v1/cars/', self.car_payload(vin=car.vin), format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_cannot_set_reserved_status_directly(self):
        car = TestDataFactory.create_car()
        self.client.authenticate_user(self.admin)
        response = self.client.patch(f'/api/v1/cars/{car.id}/', {'status': Car.STATUS_SOLD}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_maintenance_status(self):
        car = TestDataFactory.create_car()
        self.client.authenticate_user(self.admin)
        response = self.client.patch(f'/api/v1/cars/{car.id}/', {'status': Car.STATUS_MAINTENANCE}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], Car.STATUS_MAINTENANCE)

    def test_soft_delete(self):
        car = TestDataFactory.create_car()
        self.client.authenticate_user(self.admin)
        response = self.client.delete(f'/api/v1/cars/{car.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Car.objects.filter(pk=car.pk).exists())
        self.assertTrue(Car.all_objects.filter(pk=car.pk).exists())

    def test_cannot_delete_reserved_car(self):
        car = TestDataFactory.create_car(status=Car.STATUS_RESERVED)
        self.client.authenticate_user(self.admin)
        response = self.client.delete(f'/api/v1/cars/{car.id}/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_featured(self):
        TestDataFactory.create_car(is_featured=True)
        TestDataFactory.create_car(is_featured=True, status=Car.STATUS_SOLD)
        TestDataFactory.create_car()
        response = self.client.get('/api/v1/cars/featured/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)


class CarUpdateReservationTests(TestCase):
    """Car edits never undo a reservation made by an order"""

    def setUp(self):
        self.customer = TestDataFactory.create_user(role='CUSTOMER')
        self.admin = TestDataFactory.create_user(role='ADMIN')
        self.car = TestDataFactory.create_car(price=Decimal('20000.00'))

    def test_stale_update_keeps_reservation(self):
        stale = Car.objects.get(pk=self.car.pk)
        order = OrderProcessor().create_order(self.customer.id, car_id=self.car.pk)

        serializer = CarSerializer(stale, data={'price': '12345.00'}, partial=True)
        self.assertTrue(serializer.is_valid(), serializer.errors)
        serializer.save()

        self.car.refresh_from_db()
        self.assertEqual(self.car.status, Car.STATUS_RESERVED)
        self.assertEqual(self.car.price, Decimal('12345.00'))
        order.refresh_from_db()
        self.assertEqual(order.status, Order.STATUS_PENDING)

    def test_stale_status_change_rechecked_on_current_row(self):
        stale = Car.objects.get(pk=self.car.pk)
        OrderProcessor().create_order(self.customer.id, car_id=self.car.pk)

        serializer = CarSerializer(stale, data={'status': Car.STATUS_MAINTENANCE}, partial=True)
        self.assertTrue(serializer.is_valid(), serializer.errors)
        with self.assertRaises(InvalidTransitionError):
            serializer.save()

        self.car.refresh_from_db()
        self.assertEqual(self.car.status, Car.STATUS_RESERVED)

    def test_patch_reserved_car_price(self):
        OrderProcessor().create_order(self.customer.id, car_id=self.car.pk)
        client = AuthenticatedAPIClient()
        client.authenticate_user(self.admin)
        response = client.patch(f'/api/v1/cars/{self.car.id}/', {'price': '19000.00'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], Car.STATUS_RESERVED)
        self.assertEqual(response.data['price'], '19000.00')

    def test_delete_after_order_reserves(self):
        OrderProcessor().create_order(self.customer.id, car_id=self.car.pk)
        client = AuthenticatedAPIClient()
        client.authenticate_user(self.admin)
        response = client.delete(f'/api/v1/cars/{self.car.id}/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertTrue(Car.objects.filter(pk=self.car.pk).exists())


class SparePartAPITests(TestCase):
    """Test spare part and stock adjustment endpoints"""

    def setUp(self):
        self.staff = TestDataFactory.create_user(role='STAFF')
        self.admin = TestDataFactory.create_user(role='ADMIN')
        self.customer = TestDataFactory.create_user(role='CUSTOMER')
        self.client = AuthenticatedAPIClient()
        self.part = TestDataFactory.create_spare_part(stock=10, min_stock_level=5)

    def test_create_spare_part(self):
        self.client.authenticate_user(self.admin)
        data = {'name': 'Oil filter', 'part_number': 'OF-100', 'price': '12.50', 'stock': 40, 'category': 'Engine'}
        response = self.client.post('/api/v1/spare-parts/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['stock'], 40)

    def test_duplicate_part_number(self):
        self.client.authenticate_user(self.admin)
        data = {'name': 'Copy', 'part_number': self.part.part_number, 'price': '1.00', 'category': 'Brakes'}
        response = self.client.post('/api/v1/spare-parts/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_negative_initial_stock(self):
        self.client.authenticate_user(self.admin)
        data = {'name': 'Bad', 'part_number': 'BAD-1', 'price': '1.00', 'stock': -1, 'category': 'Brakes'}
        response = self.client.post('/api/v1/spare-parts/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_update_cannot_change_stock(self):
        self.client.authenticate_user(self.staff)
        response = self.client.patch(f'/api/v1/spare-parts/{self.part.id}/', {'stock': 99}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.part.refresh_from_db()
        self.assertEqual(self.part.stock, 10)

    def test_update_price(self):
        self.client.authenticate_user(self.staff)
        response = self.client.patch(f'/api/v1/spare-parts/{self.part.id}/', {'price': '59.99'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['price'], '59.99')
        self.assertEqual(response.data['stock'], 10)

    def test_adjust_stock_endpoint(self):
        self.client.authenticate_user(self.staff)
        response = self.client.post(
            f'/api/v1/spare-parts/{self.part.id}/adjust-stock/',
            {'quantity': 5, 'operation': 'subtract'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        details = response.data['adjustment_details']
        self.assertEqual(details['previous_stock'], 10)
        self.assertEqual(details['current_stock'], 5)
        self.assertEqual(details['adjustment'], '-5')
        self.assertEqual(details['reason'], 'Not specified')
        self.assertTrue(details['low_stock'])

    def test_adjust_stock_insufficient(self):
        self.client.authenticate_user(self.staff)
        response = self.client.post(
            f'/api/v1/spare-parts/{self.part.id}/adjust-stock/',
            {'quantity': 50, 'operation': 'subtract'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'insufficient_stock')

    def test_adjust_stock_bad_operation(self):
        self.client.authenticate_user(self.staff)
        response = self.client.post(
            f'/api/v1/spare-parts/{self.part.id}/adjust-stock/',
            {'quantity': 1, 'operation': 'set'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['field'], 'operation')

    def test_customer_cannot_adjust_stock(self):
        self.client.authenticate_user(self.customer)
        response = self.client.post(
            f'/api/v1/spare-parts/{self.part.id}/adjust-stock/',
            {'quantity': 1, 'operation': 'add'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_low_stock_endpoint(self):
        TestDataFactory.create_spare_part(stock=1, min_stock_level=5)
        self.client.authenticate_user(self.staff)
        response = self.client.get('/api/v1/spare-parts/low-stock/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)

    def test_stock_adjustment_history(self):
        StockLedger().adjust_stock(self.part.id, 3, 'add', actor=self.staff)
        self.client.authenticate_user(self.staff)
        response = self.client.get(f'/api/v1/stock-adjustments/?spare_part={self.part.id}')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['new_stock'], 13)
