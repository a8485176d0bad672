"""
Test suite for the orders module
Tests: order creation, stock and car bookkeeping, status lifecycle, cancellation, statistics and API access
"""
import re
import threading
from decimal import Decimal
from unittest import skipUnless

from django.core.cache import cache
from django.db import IntegrityError, connection, connections
from django.test import TestCase, TransactionTestCase
from rest_framework import status
from dealership.core.exceptions import (
    ConflictError, InsufficientStockError, InvalidStateError, InvalidTransitionError,
    NotFoundError, ValidationError,
)
from dealership.core.models import AuditLog
from dealership.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from dealership.inventory.models import Car, SparePart
from dealership.orders.models import Order, OrderItem
from dealership.orders.services import (
    OrderProcessor, ORDER_TRANSITIONS, can_transition, generate_order_number, order_totals,
)


class OrderModelTests(TestCase):
    """Test order item totals and helpers"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.part = TestDataFactory.create_spare_part(price=Decimal('19.99'))

    def test_item_total_price(self):
        order = TestDataFactory.create_order(user=self.user)
        item = TestDataFactory.create_order_item(
            order=order, spare_part=self.part, quantity=3, unit_price=Decimal('19.99'), discount=Decimal('5.00')
        )
        self.assertEqual(item.total_price, Decimal('54.97'))

    def test_item_total_recomputed_on_save(self):
        order = TestDataFactory.create_order(user=self.user)
        item = TestDataFactory.create_order_item(order=order, spare_part=self.part, quantity=1)
        item.quantity = 4
        item.save()
        item.refresh_from_db()
        self.assertEqual(item.total_price, Decimal('79.96'))

    def test_order_number_format(self):
        self.assertRegex(generate_order_number(), r'^ORD-\d{8}-\d{3}$')

    def test_order_totals(self):
        subtotal, total = order_totals(
            Decimal('20000.00'), [Decimal('59.97'), Decimal('10.00')],
            Decimal('500.00'), Decimal('1600.00'), Decimal('0.00'),
        )
        self.assertEqual(subtotal, Decimal('20069.97'))
        self.assertEqual(total, Decimal('21169.97'))

    def test_is_terminal(self):
        order = TestDataFactory.create_order(user=self.user, status=Order.STATUS_DELIVERED)
        self.assertTrue(order.is_terminal)
        order = TestDataFactory.create_order(user=self.user, status=Order.STATUS_SHIPPED)
        self.assertFalse(order.is_terminal)


class CreateOrderTests(TestCase):
    """Test order creation and its effect on stock and cars"""

    def setUp(self):
        self.processor = OrderProcessor()
        self.user = TestDataFactory.create_user(role='CUSTOMER')
        self.car = TestDataFactory.create_car(price=Decimal('20000.00'))
        self.part_a = TestDataFactory.create_spare_part(price=Decimal('19.99'), stock=10)
        self.part_b = TestDataFactory.create_spare_part(price=Decimal('5.00'), stock=1)

    def test_car_order_reserves_car(self):
        order = self.processor.create_order(self.user.id, car_id=self.car.id)
        self.car.refresh_from_db()
        self.assertEqual(order.status, Order.STATUS_PENDING)
        self.assertEqual(order.payment_status, Order.PAYMENT_UNPAID)
        self.assertEqual(order.total_amount, Decimal('20000.00'))
        self.assertEqual(self.car.status, Car.STATUS_RESERVED)
        self.assertTrue(re.match(r'^ORD-\d{8}-\d{3}$', order.order_number))

    def test_taken_order_number_is_redrawn(self):
        existing = TestDataFactory.create_order(user=self.user)
        numbers = iter([existing.order_number, 'ORD-00000001-001'])
        processor = OrderProcessor(number_generator=lambda: next(numbers))

        with self.assertLogs('dealership.orders.services', level='WARNING'):
            order = processor.create_order(self.user.id, car_id=self.car.id)

        self.assertEqual(order.order_number, 'ORD-00000001-001')
        self.assertEqual(Order.objects.count(), 2)

    def test_order_number_collisions_exhausted(self):
        existing = TestDataFactory.create_order(user=self.user)
        processor = OrderProcessor(number_generator=lambda: existing.order_number)

        with self.assertRaises(IntegrityError):
            with self.assertLogs('dealership.orders.services', level='WARNING'):
                processor.create_order(
                    self.user.id, car_id=self.car.id,
                    items=[{'spare_part_id': self.part_a.id, 'quantity': 2}],
                )

        self.car.refresh_from_db()
        self.part_a.refresh_from_db()
        self.assertEqual(self.car.status, Car.STATUS_AVAILABLE)
        self.assertEqual(self.part_a.stock, 10)
        self.assertEqual(Order.objects.count(), 1)

    def test_items_decrement_stock(self):
        order = self.processor.create_order(
            self.user.id,
            items=[{'spare_part_id': self.part_a.id, 'quantity': 3}],
        )
        self.part_a.refresh_from_db()
        self.assertEqual(self.part_a.stock, 7)
        item = order.items.get()
        self.assertEqual(item.unit_price, Decimal('19.99'))
        self.assertEqual(item.total_price, Decimal('59.97'))
        self.assertEqual(order.total_amount, Decimal('59.97'))

    def test_duplicate_lines_are_aggregated(self):
        self.processor.create_order(
            self.user.id,
            items=[
                {'spare_part_id': self.part_a.id, 'quantity': 4},
                {'spare_part_id': self.part_a.id, 'quantity': 6},
            ],
        )
        self.part_a.refresh_from_db()
        self.assertEqual(self.part_a.stock, 0)

    def test_duplicate_lines_over_stock(self):
        with self.assertRaises(InsufficientStockError):
            self.processor.create_order(
                self.user.id,
                items=[
                    {'spare_part_id': self.part_a.id, 'quantity': 6},
                    {'spare_part_id': self.part_a.id, 'quantity': 6},
                ],
            )
        self.part_a.refresh_from_db()
        self.assertEqual(self.part_a.stock, 10)

    def test_pricing_and_line_discount(self):
        order = self.processor.create_order(
            self.user.id,
            car_id=self.car.id,
            items=[{'spare_part_id': self.part_a.id, 'quantity': 2, 'unit_price': '25.00', 'discount': '5.00'}],
            pricing={'discount_amount': '100.00', 'tax_amount': '1600.00', 'shipping_cost': '50.00'},
            payment_method='CARD',
            notes='Deliver after 5pm',
        )
        self.assertEqual(order.items.get().total_price, Decimal('45.00'))
        self.assertEqual(order.total_amount, Decimal('21595.00'))
        self.assertEqual(order.payment_method, 'CARD')
        self.assertIn('Deliver after 5pm', order.notes)

    def test_empty_order_rejected(self):
        with self.assertRaises(ValidationError):
            self.processor.create_order(self.user.id)

    def test_invalid_quantity_rejected(self):
        with self.assertRaises(ValidationError):
            self.processor.create_order(self.user.id, items=[{'spare_part_id': self.part_a.id, 'quantity': 0}])

    def test_discount_larger_than_total_rejected(self):
        with self.assertRaises(ValidationError):
            self.processor.create_order(
                self.user.id,
                items=[{'spare_part_id': self.part_b.id, 'quantity': 1}],
                pricing={'discount_amount': '10.00'},
            )
        self.part_b.refresh_from_db()
        self.assertEqual(self.part_b.stock, 1)

    def test_missing_user(self):
        with self.assertRaises(NotFoundError):
            self.processor.create_order(999999, car_id=self.car.id)

    def test_missing_car(self):
        with self.assertRaises(NotFoundError):
            self.processor.create_order(self.user.id, car_id=999999)

    def test_missing_part(self):
        with self.assertRaises(NotFoundError):
            self.processor.create_order(self.user.id, items=[{'spare_part_id': 999999, 'quantity': 1}])

    def test_unavailable_car(self):
        car = TestDataFactory.create_car(status=Car.STATUS_SOLD)
        with self.assertRaises(ConflictError):
            self.processor.create_order(self.user.id, car_id=car.id)

    def test_car_cannot_be_ordered_twice(self):
        self.processor.create_order(self.user.id, car_id=self.car.id)
        with self.assertRaises(ConflictError):
            self.processor.create_order(self.user.id, car_id=self.car.id)
        self.assertEqual(Order.objects.count(), 1)

    def test_insufficient_stock(self):
        with self.assertRaises(InsufficientStockError) as ctx:
            self.processor.create_order(self.user.id, items=[{'spare_part_id': self.part_b.id, 'quantity': 2}])
        self.assertEqual(ctx.exception.available, 1)
        self.assertEqual(ctx.exception.requested, 2)

    def test_stale_read_cannot_oversell(self):
        """Stock read before another order consumed it does not allow a second sale"""
        stale = SparePart.objects.get(pk=self.part_b.pk)
        self.assertEqual(stale.stock, 1)
        self.processor.create_order(self.user.id, items=[{'spare_part_id': self.part_b.id, 'quantity': 1}])
        with self.assertRaises(InsufficientStockError):
            self.processor.create_order(self.user.id, items=[{'spare_part_id': stale.id, 'quantity': stale.stock}])
        self.part_b.refresh_from_db()
        self.assertEqual(self.part_b.stock, 0)

    def test_failure_on_later_item_rolls_back_everything(self):
        with self.assertRaises(InsufficientStockError):
            self.processor.create_order(
                self.user.id,
                car_id=self.car.id,
                items=[
                    {'spare_part_id': self.part_a.id, 'quantity': 2},
                    {'spare_part_id': self.part_b.id, 'quantity': 5},
                ],
            )
        self.car.refresh_from_db()
        self.part_a.refresh_from_db()
        self.part_b.refresh_from_db()
        self.assertEqual(self.car.status, Car.STATUS_AVAILABLE)
        self.assertEqual(self.part_a.stock, 10)
        self.assertEqual(self.part_b.stock, 1)
        self.assertEqual(Order.objects.count(), 0)
        self.assertEqual(OrderItem.objects.count(), 0)

    def test_audit_log_written(self):
        order = self.processor.create_order(self.user.id, car_id=self.car.id, actor=self.user)
        log = AuditLog.objects.get(action='order_create')
        self.assertEqual(log.object_reference, order.order_number)
        self.assertEqual(log.user, self.user)


class OrderStatusTests(TestCase):
    """Test the order status lifecycle"""

    def setUp(self):
        self.processor = OrderProcessor()
        self.user = TestDataFactory.create_user(role='CUSTOMER')
        self.car = TestDataFactory.create_car()
        self.part = TestDataFactory.create_spare_part(stock=10)

    def test_transition_table(self):
        statuses = [choice for choice, _ in Order.STATUS_CHOICES]
        for current in statuses:
            for requested in statuses:
                expected = requested in ORDER_TRANSITIONS[current]
                self.assertEqual(can_transition(current, requested), expected, f'{current} -> {requested}')
        self.assertFalse(ORDER_TRANSITIONS[Order.STATUS_DELIVERED])
        self.assertFalse(ORDER_TRANSITIONS[Order.STATUS_CANCELLED])

    def test_delivered_car_order_example(self):
        """Car order: PENDING reserves, DELIVERED sells, cancelling afterwards fails"""
        order = self.processor.create_order(self.user.id, car_id=self.car.id)
        self.car.refresh_from_db()
        self.assertEqual(order.status, Order.STATUS_PENDING)
        self.assertEqual(self.car.status, Car.STATUS_RESERVED)

        order, changes = self.processor.update_order_status(order.id, status=Order.STATUS_DELIVERED)
        self.car.refresh_from_db()
        self.assertEqual(self.car.status, Car.STATUS_SOLD)
        self.assertIsNotNone(order.actual_delivery_date)
        self.assertEqual(changes['status'], {'from': Order.STATUS_PENDING, 'to': Order.STATUS_DELIVERED})

        with self.assertRaises(InvalidStateError):
            self.processor.cancel_order(order.id)
        self.car.refresh_from_db()
        self.assertEqual(self.car.status, Car.STATUS_SOLD)

    def test_backwards_transition_rejected(self):
        order = self.processor.create_order(self.user.id, items=[{'spare_part_id': self.part.id, 'quantity': 1}])
        self.processor.update_order_status(order.id, status=Order.STATUS_SHIPPED)
        with self.assertRaises(InvalidTransitionError):
            self.processor.update_order_status(order.id, status=Order.STATUS_PROCESSING)

    def test_same_status_is_noop(self):
        order = self.processor.create_order(self.user.id, items=[{'spare_part_id': self.part.id, 'quantity': 1}])
        order, changes = self.processor.update_order_status(order.id, status=Order.STATUS_PENDING)
        self.assertEqual(changes, {})
        self.assertEqual(order.status, Order.STATUS_PENDING)
        self.assertFalse(AuditLog.objects.filter(action='order_status').exists())

    def test_invalid_status_value(self):
        order = self.processor.create_order(self.user.id, items=[{'spare_part_id': self.part.id, 'quantity': 1}])
        with self.assertRaises(ValidationError):
            self.processor.update_order_status(order.id, status='LOST')

    def test_payment_status_and_tracking(self):
        order = self.processor.create_order(self.user.id, items=[{'spare_part_id': self.part.id, 'quantity': 1}])
        order, changes = self.processor.update_order_status(
            order.id, payment_status=Order.PAYMENT_PAID, tracking_number='TRK-1', notes='Paid by card'
        )
        self.assertEqual(order.payment_status, Order.PAYMENT_PAID)
        self.assertEqual(order.tracking_number, 'TRK-1')
        self.assertIn('Paid by card', order.notes)
        self.assertEqual(changes, {'payment_status': {'from': Order.PAYMENT_UNPAID, 'to': Order.PAYMENT_PAID}})

    def test_cancel_through_status_update_restores_stock(self):
        order = self.processor.create_order(
            self.user.id, car_id=self.car.id, items=[{'spare_part_id': self.part.id, 'quantity': 4}]
        )
        order, _ = self.processor.update_order_status(order.id, status=Order.STATUS_CANCELLED, notes='Changed mind')
        self.part.refresh_from_db()
        self.car.refresh_from_db()
        self.assertEqual(order.status, Order.STATUS_CANCELLED)
        self.assertEqual(self.part.stock, 10)
        self.assertEqual(self.car.status, Car.STATUS_AVAILABLE)
        self.assertIn('CANCELLED on ', order.notes)
        self.assertIn('Changed mind', order.notes)

    def test_missing_order(self):
        with self.assertRaises(NotFoundError):
            self.processor.update_order_status(999999, status=Order.STATUS_PROCESSING)


class CancelOrderTests(TestCase):
    """Test cancellation restores the state consumed at creation"""

    def setUp(self):
        self.processor = OrderProcessor()
        self.user = TestDataFactory.create_user(role='CUSTOMER')
        self.car = TestDataFactory.create_car()
        self.part_a = TestDataFactory.create_spare_part(stock=10)
        self.part_b = TestDataFactory.create_spare_part(stock=4)

    def test_cancel_restores_stock_and_car(self):
        order = self.processor.create_order(
            self.user.id,
            car_id=self.car.id,
            items=[
                {'spare_part_id': self.part_a.id, 'quantity': 3},
                {'spare_part_id': self.part_b.id, 'quantity': 4},
                {'spare_part_id': self.part_a.id, 'quantity': 2},
            ],
        )
        self.part_a.refresh_from_db()
        self.assertEqual(self.part_a.stock, 5)

        order = self.processor.cancel_order(order.id, reason='Customer request')
        self.car.refresh_from_db()
        self.part_a.refresh_from_db()
        self.part_b.refresh_from_db()
        self.assertEqual(order.status, Order.STATUS_CANCELLED)
        self.assertEqual(self.car.status, Car.STATUS_AVAILABLE)
        self.assertEqual(self.part_a.stock, 10)
        self.assertEqual(self.part_b.stock, 4)
        self.assertIn('CANCELLED on ', order.notes)
        self.assertIn('Customer request', order.notes)

    def test_cancel_with_interleaved_orders(self):
        first = self.processor.create_order(self.user.id, items=[{'spare_part_id': self.part_a.id, 'quantity': 2}])
        second = self.processor.create_order(self.user.id, items=[{'spare_part_id': self.part_a.id, 'quantity': 3}])
        self.processor.cancel_order(first.id)
        self.part_a.refresh_from_db()
        self.assertEqual(self.part_a.stock, 7)
        self.processor.cancel_order(second.id)
        self.part_a.refresh_from_db()
        self.assertEqual(self.part_a.stock, 10)

    def test_cancel_without_reason(self):
        order = self.processor.create_order(self.user.id, items=[{'spare_part_id': self.part_a.id, 'quantity': 1}])
        order = self.processor.cancel_order(order.id)
        self.assertIn('No reason provided', order.notes)

    def test_cancel_twice_fails(self):
        order = self.processor.create_order(self.user.id, items=[{'spare_part_id': self.part_a.id, 'quantity': 1}])
        self.processor.cancel_order(order.id)
        with self.assertRaises(InvalidStateError):
            self.processor.cancel_order(order.id)
        self.part_a.refresh_from_db()
        self.assertEqual(self.part_a.stock, 10)

    def test_cancel_shipped_order(self):
        order = self.processor.create_order(self.user.id, items=[{'spare_part_id': self.part_a.id, 'quantity': 2}])
        self.processor.update_order_status(order.id, status=Order.STATUS_SHIPPED)
        self.processor.cancel_order(order.id)
        self.part_a.refresh_from_db()
        self.assertEqual(self.part_a.stock, 10)

    def test_cancel_restocks_soft_deleted_part(self):
        order = self.processor.create_order(self.user.id, items=[{'spare_part_id': self.part_b.id, 'quantity': 4}])
        SparePart.objects.get(pk=self.part_b.pk).soft_delete()
        self.processor.cancel_order(order.id)
        self.assertEqual(SparePart.all_objects.get(pk=self.part_b.pk).stock, 4)


class OrderStatsTests(TestCase):
    """Test order statistics"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.part = TestDataFactory.create_spare_part()

    def test_empty_stats(self):
        stats = OrderProcessor().order_stats()
        self.assertEqual(stats['total_orders'], 0)
        self.assertEqual(stats['total_revenue'], Decimal('0.00'))
        self.assertEqual(stats['avg_order_value'], Decimal('0.00'))
        self.assertEqual(set(stats['orders_by_status']), {c for c, _ in Order.STATUS_CHOICES})

    def test_stats(self):
        car = TestDataFactory.create_car(status=Car.STATUS_SOLD)
        TestDataFactory.create_order(
            user=self.user, car=car, status=Order.STATUS_DELIVERED,
            total_amount=Decimal('300.00'), payment_status=Order.PAYMENT_PAID,
        )
        shipped = TestDataFactory.create_order(
            user=self.user, status=Order.STATUS_SHIPPED, total_amount=Decimal('100.00'),
            payment_status=Order.PAYMENT_PAID,
        )
        TestDataFactory.create_order_item(order=shipped, spare_part=self.part, quantity=3)
        pending = TestDataFactory.create_order(user=self.user, total_amount=Decimal('50.00'))
        TestDataFactory.create_order_item(order=pending, spare_part=self.part, quantity=7)

        stats = OrderProcessor().order_stats()
        self.assertEqual(stats['total_orders'], 3)
        self.assertEqual(stats['orders_by_status'][Order.STATUS_DELIVERED], 1)
        self.assertEqual(stats['orders_by_status'][Order.STATUS_PROCESSING], 0)
        self.assertEqual(stats['orders_by_payment_status'][Order.PAYMENT_PAID], 2)
        self.assertEqual(stats['total_revenue'], Decimal('400.00'))
        self.assertEqual(stats['cars_sold'], 1)
        self.assertEqual(stats['spare_parts_sold'], 3)
        self.assertEqual(stats['avg_order_value'], Decimal('133.33'))


class OrderAPITests(TestCase):
    """Test order endpoints and access rules"""

    def setUp(self):
        cache.clear()
        self.customer = TestDataFactory.create_user(role='CUSTOMER')
        self.other_customer = TestDataFactory.create_user(role='CUSTOMER')
        self.staff = TestDataFactory.create_user(role='STAFF')
        self.client = AuthenticatedAPIClient()
        self.car = TestDataFactory.create_car()
        self.part = TestDataFactory.create_spare_part(stock=10)

    def create_order_for(self, user, **kwargs):
        kwargs.setdefault('items', [{'spare_part_id': self.part.id, 'quantity': 1}])
        return OrderProcessor().create_order(user.id, **kwargs)

    def test_customer_creates_order(self):
        self.client.authenticate_user(self.customer)
        data = {
            'car_id': self.car.id,
            'items': [{'spare_part_id': self.part.id, 'quantity': 2}],
            'tax_amount': '10.00',
            'shipping_address': '1 Main St',
        }
        response = self.client.post('/api/v1/orders/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['user'], self.customer.id)
        self.assertEqual(response.data['status'], Order.STATUS_PENDING)
        self.assertEqual(len(response.data['items']), 1)
        self.assertEqual(response.data['shipping_address'], '1 Main St')
        self.part.refresh_from_db()
        self.assertEqual(self.part.stock, 8)

    def test_customer_cannot_order_for_someone_else(self):
        self.client.authenticate_user(self.customer)
        data = {'user_id': self.other_customer.id, 'car_id': self.car.id}
        response = self.client.post('/api/v1/orders/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.car.refresh_from_db()
        self.assertEqual(self.car.status, Car.STATUS_AVAILABLE)

    def test_insufficient_stock_response(self):
        self.client.authenticate_user(self.customer)
        data = {'items': [{'spare_part_id': self.part.id, 'quantity': 11}]}
        response = self.client.post('/api/v1/orders/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'insufficient_stock')
        self.assertEqual(response.data['available'], 10)

    def test_unavailable_car_response(self):
        car = TestDataFactory.create_car(status=Car.STATUS_RESERVED)
        self.client.authenticate_user(self.customer)
        response = self.client.post('/api/v1/orders/', {'car_id': car.id}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['field'], 'car_id')

    def test_customer_lists_only_own_orders(self):
        self.create_order_for(self.customer)
        self.create_order_for(self.other_customer)
        self.client.authenticate_user(self.customer)
        response = self.client.get('/api/v1/orders/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)

        self.client.authenticate_user(self.staff)
        response = self.client.get('/api/v1/orders/')
        self.assertEqual(response.data['count'], 2)

    def test_customer_cannot_see_other_order(self):
        order = self.create_order_for(self.other_customer)
        self.client.authenticate_user(self.customer)
        response = self.client.get(f'/api/v1/orders/{order.id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_staff_updates_status(self):
        order = self.create_order_for(self.customer, car_id=self.car.id)
        self.client.authenticate_user(self.staff)
        response = self.client.put(
            f'/api/v1/orders/{order.id}/status/', {'status': Order.STATUS_DELIVERED}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['order']['status'], Order.STATUS_DELIVERED)
        self.assertEqual(response.data['changes']['status']['to'], Order.STATUS_DELIVERED)
        self.car.refresh_from_db()
        self.assertEqual(self.car.status, Car.STATUS_SOLD)

    def test_illegal_transition_response(self):
        order = self.create_order_for(self.customer)
        OrderProcessor().update_order_status(order.id, status=Order.STATUS_DELIVERED)
        self.client.authenticate_user(self.staff)
        response = self.client.put(
            f'/api/v1/orders/{order.id}/status/', {'status': Order.STATUS_PENDING}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'invalid_transition')

    def test_empty_status_update_rejected(self):
        order = self.create_order_for(self.customer)
        self.client.authenticate_user(self.staff)
        response = self.client.put(f'/api/v1/orders/{order.id}/status/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_customer_cannot_update_status(self):
        order = self.create_order_for(self.customer)
        self.client.authenticate_user(self.customer)
        response = self.client.put(
            f'/api/v1/orders/{order.id}/status/', {'status': Order.STATUS_SHIPPED}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_customer_cancels_own_order(self):
        order = self.create_order_for(self.customer, items=[{'spare_part_id': self.part.id, 'quantity': 4}])
        self.client.authenticate_user(self.customer)
        response = self.client.post(f'/api/v1/orders/{order.id}/cancel/', {'reason': 'Too slow'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], Order.STATUS_CANCELLED)
        self.part.refresh_from_db()
        self.assertEqual(self.part.stock, 10)

    def test_customer_cannot_cancel_other_order(self):
        order = self.create_order_for(self.other_customer)
        self.client.authenticate_user(self.customer)
        response = self.client.post(f'/api/v1/orders/{order.id}/cancel/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_cancel_delivered_order_response(self):
        order = self.create_order_for(self.customer)
        OrderProcessor().update_order_status(order.id, status=Order.STATUS_DELIVERED)
        self.client.authenticate_user(self.customer)
        response = self.client.post(f'/api/v1/orders/{order.id}/cancel/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'invalid_state')

    def test_stats_requires_reports_permission(self):
        self.client.authenticate_user(self.customer)
        response = self.client.get('/api/v1/orders/stats/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.authenticate_user(self.staff)
        response = self.client.get('/api/v1/orders/stats/?date_from=2020-01-01')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('orders_by_status', response.data)

    def test_stats_bad_date(self):
        self.client.authenticate_user(self.staff)
        response = self.client.get('/api/v1/orders/stats/?date_from=yesterday')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['field'], 'date_from')

    def test_user_orders(self):
        self.create_order_for(self.customer)
        self.client.authenticate_user(self.customer)
        response = self.client.get(f'/api/v1/users/{self.customer.id}/orders/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)

        response = self.client.get(f'/api/v1/users/{self.other_customer.id}/orders/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


@skipUnless(connection.vendor == 'postgresql', 'Concurrent writers need a server database')
class ConcurrentOrderTests(TransactionTestCase):
    """Two buyers racing for the last unit"""

    def test_only_one_order_gets_last_unit(self):
        user = TestDataFactory.create_user()
        part = TestDataFactory.create_spare_part(stock=1)
        barrier = threading.Barrier(2)
        results = []
        lock = threading.Lock()

        def buy():
            try:
                barrier.wait()
                OrderProcessor().create_order(user.id, items=[{'spare_part_id': part.id, 'quantity': 1}])
                outcome = 'ok'
            except InsufficientStockError:
                outcome = 'insufficient'
            finally:
                connections.close_all()
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=buy) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sorted(results), ['insufficient', 'ok'])
        part.refresh_from_db()
        self.assertEqual(part.stock, 0)
        self.assertEqual(Order.objects.count(), 1)
