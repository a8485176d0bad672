"""
Test suite for the reports module
Tests: dashboard summary, inventory status, sales chart, upcoming work and cache invalidation
"""
from datetime import date, timedelta
from decimal import Decimal
from django.core.cache import cache
from django.test import TestCase
from django.utils import timezone
from rest_framework import status
from dealership.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from dealership.inventory.models import Car
from dealership.inventory.services import StockLedger
from dealership.orders.models import Order
from dealership.reports.views import get_inventory_status, month_start, percent_change


class HelperTests(TestCase):

    def test_month_start(self):
        self.assertEqual(month_start(date(2024, 3, 15)), date(2024, 3, 1))
        self.assertEqual(month_start(date(2024, 1, 15), -1), date(2023, 12, 1))
        self.assertEqual(month_start(date(2024, 12, 31), 1), date(2025, 1, 1))

    def test_percent_change(self):
        self.assertEqual(percent_change(Decimal('150'), Decimal('100')), 50.0)
        self.assertEqual(percent_change(5, 0), 100.0)
        self.assertEqual(percent_change(0, 0), 0.0)


class DashboardAPITests(TestCase):
    """Test dashboard endpoints"""

    def setUp(self):
        cache.clear()
        self.staff = TestDataFactory.create_user(role='STAFF')
        self.customer = TestDataFactory.create_user(role='CUSTOMER')
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.staff)

    def test_summary(self):
        TestDataFactory.create_order(
            user=self.customer, total_amount=Decimal('250.00'), payment_status=Order.PAYMENT_PAID
        )
        TestDataFactory.create_spare_part(stock=1, min_stock_level=5)
        TestDataFactory.create_service(user=self.customer)
        response = self.client.get('/api/v1/dashboard/summary/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['revenue']['current'], 250.0)
        self.assertEqual(response.data['customers']['total'], 1)
        self.assertEqual(response.data['alerts']['pending_orders'], 1)
        self.assertEqual(response.data['alerts']['low_stock_parts'], 1)

    def test_summary_requires_authentication(self):
        self.client.logout()
        response = self.client.get('/api/v1/dashboard/summary/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_inventory_status(self):
        TestDataFactory.create_car(price=Decimal('10000.00'))
        TestDataFactory.create_car(price=Decimal('5000.00'), status=Car.STATUS_SOLD)
        TestDataFactory.create_spare_part(price=Decimal('2.50'), stock=4)
        response = self.client.get('/api/v1/dashboard/inventory-status/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['inventory_value']['cars'], 10000.0)
        self.assertEqual(response.data['inventory_value']['spare_parts'], 10.0)
        self.assertEqual(response.data['inventory_value']['total'], 10010.0)
        self.assertEqual(len(response.data['low_stock_parts']), 1)

    def test_inventory_status_requires_reports_permission(self):
        self.client.authenticate_user(self.customer)
        response = self.client.get('/api/v1/dashboard/inventory-status/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_sales_periods(self):
        for period, buckets in (('monthly', 12), ('weekly', 12), ('daily', 14)):
            response = self.client.get(f'/api/v1/dashboard/sales/?period={period}')
            self.assertEqual(response.status_code, status.HTTP_200_OK)
            self.assertEqual(len(response.data['sales_data']), buckets)

    def test_sales_counts_paid_revenue_today(self):
        TestDataFactory.create_order(
            user=self.customer, total_amount=Decimal('99.00'), payment_status=Order.PAYMENT_PAID
        )
        TestDataFactory.create_order(user=self.customer, total_amount=Decimal('500.00'))
        response = self.client.get('/api/v1/dashboard/sales/?period=daily')
        self.assertEqual(response.data['sales_data'][-1]['revenue'], 99.0)

    def test_sales_bad_period(self):
        response = self.client.get('/api/v1/dashboard/sales/?period=hourly')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['field'], 'period')

    def test_upcoming(self):
        TestDataFactory.create_service(user=self.customer, scheduled_date=timezone.now() + timedelta(days=1))
        TestDataFactory.create_order(user=self.customer)
        self.client.authenticate_user(self.customer)
        response = self.client.get('/api/v1/dashboard/upcoming/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['services']), 1)
        self.assertEqual(len(response.data['orders']), 1)


class CacheInvalidationTests(TestCase):
    """Cached dashboard data is dropped when the underlying data changes"""

    def setUp(self):
        cache.clear()

    def test_stock_adjustment_invalidates_inventory_status(self):
        part = TestDataFactory.create_spare_part(price=Decimal('1.00'), stock=10)
        self.assertEqual(get_inventory_status()['inventory_value']['spare_parts'], 10.0)

        with self.captureOnCommitCallbacks(execute=True):
            StockLedger().adjust_stock(part.id, 5, 'add')

        self.assertEqual(get_inventory_status()['inventory_value']['spare_parts'], 15.0)

    def test_cached_until_change(self):
        TestDataFactory.create_car(price=Decimal('1000.00'))
        first = get_inventory_status()
        # Bulk update sends no signals, so the cached figure stays
        Car.objects.update(price=Decimal('2000.00'))
        self.assertEqual(get_inventory_status(), first)

        with self.captureOnCommitCallbacks(execute=True):
            TestDataFactory.create_car(price=Decimal('500.00'))
        self.assertEqual(get_inventory_status()['inventory_value']['cars'], 2500.0)
