"""
Test utilities and factories for creating test data
"""
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken
from dealership.core.models import Role
from dealership.core.permissions import DEFAULT_ROLES
from dealership.inventory.models import Car, SparePart
from dealership.orders.models import Order, OrderItem
from dealership.workshop.models import ServiceType, Service
from decimal import Decimal
from datetime import timedelta
from django.utils import timezone
import random
import string

User = get_user_model()


class TestDataFactory:
    """Factory class for creating test data"""

    @staticmethod
    def random_string(length=10):
        """Generate a random string"""
        return ''.join(random.choices(string.ascii_letters + string.digits, k=length))

    @staticmethod
    def random_vin():
        """17 characters, uppercase letters and digits"""
        return ''.join(random.choices(string.ascii_uppercase + string.digits, k=17))

    @staticmethod
    def create_role(name):
        """Create (or fetch) one of the default roles"""
        config = next((r for r in DEFAULT_ROLES if r['name'] == name), None)
        defaults = {
            'description': config['description'] if config else '',
            'permissions': config['permissions'] if config else {},
        }
        role, _ = Role.objects.get_or_create(name=name, defaults=defaults)
        return role

    @staticmethod
    def create_user(username=None, email=None, password='testpass123', role=None,
                    is_staff=False, is_superuser=False, is_active=True):
        """Create a test user, optionally with a role name such as 'ADMIN'"""
        if not username:
            username = f'testuser_{TestDataFactory.random_string(6)}'
        if not email:
            email = f'{username}@test.com'
        if isinstance(role, str):
            role = TestDataFactory.create_role(role)
        user = User.objects.create_user(
            username=username,
            email=email,
            password=password,
            role=role,
            is_staff=is_staff,
            is_superuser=is_superuser,
            is_active=is_active,
        )
        return user

    @staticmethod
    def create_car(vin=None, price=None, status=Car.STATUS_AVAILABLE, **extra):
        """Create a test car"""
        if not vin:
            vin = TestDataFactory.random_vin()
        if price is None:
            price = Decimal('25000.00')
        fields = {
            'make': 'Toyota',
            'model': 'Corolla',
            'year': 2022,
            'car_type': 'USED',
            'mileage': 15000,
            'color': 'Silver',
        }
        fields.update(extra)
        return Car.objects.create(vin=vin, price=price, status=status, **fields)

    @staticmethod
    def create_spare_part(name=None, part_number=None, price=None, stock=10, min_stock_level=5, **extra):
        """Create a test spare part"""
        if not name:
            name = f'Part_{TestDataFactory.random_string(6)}'
        if not part_number:
            part_number = f'PN-{TestDataFactory.random_string(8).upper()}'
        if price is None:
            price = Decimal('49.99')
        fields = {'category': 'Brakes', 'manufacturer': 'Bosch'}
        fields.update(extra)
        return SparePart.objects.create(
            name=name,
            part_number=part_number,
            price=price,
            stock=stock,
            min_stock_level=min_stock_level,
            **fields
        )

    @staticmethod
    def create_service_type(name=None, base_price=None, estimated_duration=60):
        """Create a test service type"""
        if not name:
            name = f'Service_{TestDataFactory.random_string(6)}'
        if base_price is None:
            base_price = Decimal('120.00')
        return ServiceType.objects.create(
            name=name,
            description=f'Test service type {name}',
            estimated_duration=estimated_duration,
            base_price=base_price,
        )

    @staticmethod
    def create_order(user, car=None, status=Order.STATUS_PENDING, total_amount=None, **extra):
        """
        Create an order row directly, bypassing stock and car bookkeeping.

        Use OrderProcessor.create_order when the side effects matter.
        """
        order_number = f"ORD-{random.randint(10000000, 99999999)}-{random.randint(100, 999)}"
        while Order.objects.filter(order_number=order_number).exists():
            order_number = f"ORD-{random.randint(10000000, 99999999)}-{random.randint(100, 999)}"
        if total_amount is None:
            total_amount = car.price if car else Decimal('0.00')
        return Order.objects.create(
            order_number=order_number,
            user=user,
            car=car,
            status=status,
            total_amount=total_amount,
            **extra
        )

    @staticmethod
    def create_order_item(order, spare_part, quantity=1, unit_price=None, discount=None):
        """Create a test order item"""
        return OrderItem.objects.create(
            order=order,
            spare_part=spare_part,
            quantity=quantity,
            unit_price=unit_price if unit_price is not None else spare_part.price,
            discount=discount or Decimal('0.00'),
        )

    @staticmethod
    def create_service(user, car=None, service_type=None, scheduled_date=None,
                       status=Service.STATUS_SCHEDULED, **extra):
        """Create a service row directly, bypassing the conflict window check"""
        if not car:
            car = TestDataFactory.create_car()
        if not service_type:
            service_type = TestDataFactory.create_service_type()
        if not scheduled_date:
            scheduled_date = timezone.now() + timedelta(days=3)
        return Service.objects.create(
            user=user,
            car=car,
            service_type=service_type,
            scheduled_date=scheduled_date,
            status=status,
            estimated_cost=service_type.base_price,
            **extra
        )


class AuthenticatedAPIClient(APIClient):
    """APIClient with authentication helper"""

    def authenticate_user(self, user):
        """Authenticate the client with a user"""
        refresh = RefreshToken.for_user(user)
        self.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
        return self

    def logout(self):
        """Remove authentication"""
        self.credentials()
