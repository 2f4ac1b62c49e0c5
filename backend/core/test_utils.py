"""
Test utilities and factories for creating test data
"""
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken
from backend.catalog.models import Category, Item
from backend.orders.domain import STATUS_PENDING
from backend.orders.models import Order, OrderItem
from decimal import Decimal
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
    def create_user(username=None, email=None, password='testpass123', role=User.ROLE_USER):
        """Create a test account with the given role"""
        if not username:
            username = f'testuser_{TestDataFactory.random_string(6)}'
        if not email:
            email = f'{username}@test.com'
        return User.objects.create_user(
            username=username,
            email=email,
            password=password,
            role=role,
        )

    @staticmethod
    def create_admin(username=None, email=None, password='testpass123'):
        """Create a test administrator"""
        if not username:
            username = f'testadmin_{TestDataFactory.random_string(6)}'
        return TestDataFactory.create_user(username=username, email=email, password=password, role=User.ROLE_ADMIN)

    @staticmethod
    def create_category(name=None, description=None):
        """Create a test category"""
        if not name:
            name = f'Category_{TestDataFactory.random_string(6)}'
        return Category.objects.create(
            name=name,
            description=description or f'Description for {name}'
        )

    @staticmethod
    def create_item(name=None, price=Decimal('10.00'), stock_quantity=10, size=Item.SIZE_MEDIUM,
                    category=None, created_by=None):
        """Create a test catalog item"""
        if not name:
            name = f'Item_{TestDataFactory.random_string(6)}'
        if not category:
            category = TestDataFactory.create_category()
        return Item.objects.create(
            name=name,
            price=price,
            size=size,
            category=category,
            stock_quantity=stock_quantity,
            created_by=created_by,
        )

    @staticmethod
    def create_order(owner, item=None, quantity=1, status=STATUS_PENDING, approved_by=None):
        """Create a test order with a single line, bypassing stock reservation"""
        if not item:
            item = TestDataFactory.create_item()
        order = Order.objects.create(
            owner=owner,
            total_amount=item.price * quantity,
            status=status,
            approved_by=approved_by,
        )
        OrderItem.objects.create(
            order=order,
            item_id=item.id,
            name=item.name,
            price=item.price,
            quantity=quantity,
        )
        return order


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
        return self
