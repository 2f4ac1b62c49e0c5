"""
Test suite for the catalog: categories, items, filtering and permissions
"""
from decimal import Decimal
import io
import json
import os
import tempfile

from django.core.management import call_command
from django.test import TestCase
from rest_framework import status
from rest_framework.test import APIClient
from backend.core.models import AuditLog
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.catalog.models import Category, Item
from backend.orders.models import OrderItem


class CategoryAPITests(TestCase):
    """Test category endpoints"""

    def setUp(self):
        self.admin = TestDataFactory.create_admin()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)

    def test_list_categories_is_public(self):
        TestDataFactory.create_category(name='Shirts')
        response = APIClient().get('/api/v1/categories/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([c['name'] for c in response.data], ['Shirts'])

    def test_create_category(self):
        response = self.client.post('/api/v1/categories/', {'name': 'Shoes', 'description': 'Footwear'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(Category.objects.filter(name='Shoes').exists())

    def test_create_duplicate_category_conflict(self):
        TestDataFactory.create_category(name='Hats')
        response = self.client.post('/api/v1/categories/', {'name': 'Hats'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(Category.objects.filter(name='Hats').count(), 1)

    def test_create_category_requires_admin(self):
        client = AuthenticatedAPIClient().authenticate_user(TestDataFactory.create_user())
        response = client.post('/api/v1/categories/', {'name': 'Bags'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        response = APIClient().post('/api/v1/categories/', {'name': 'Bags'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertFalse(Category.objects.filter(name='Bags').exists())


class ItemAPITests(TestCase):
    """Test item create, retrieve, update and delete"""

    def setUp(self):
        self.admin = TestDataFactory.create_admin()
        self.category = TestDataFactory.create_category(name='Shirts')
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)

    def test_create_item_sets_creator(self):
        data = {
            'name': 'Plain Tee',
            'price': '19.99',
            'size': 'medium',
            'category': self.category.id,
            'stock_quantity': 5,
        }
        response = self.client.post('/api/v1/items/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        item = Item.objects.get(pk=response.data['id'])
        self.assertEqual(item.created_by, self.admin)
        self.assertEqual(item.price, Decimal('19.99'))
        self.assertEqual(response.data['category_name'], 'Shirts')
        self.assertTrue(AuditLog.objects.filter(action='create', model_name='Item', object_id=str(item.id)).exists())

    def test_create_item_invalid_size(self):
        data = {'name': 'Tee', 'price': '5.00', 'size': 'huge', 'category': self.category.id}
        response = self.client.post('/api/v1/items/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('size', response.data)

    def test_create_item_requires_positive_price(self):
        data = {'name': 'Tee', 'price': '0', 'size': 'small', 'category': self.category.id}
        response = self.client.post('/api/v1/items/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('price', response.data)

    def test_create_item_unknown_category(self):
        data = {'name': 'Tee', 'price': '5.00', 'size': 'small', 'category': 999999}
        response = self.client.post('/api/v1/items/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_create_item_requires_admin(self):
        client = AuthenticatedAPIClient().authenticate_user(TestDataFactory.create_user())
        data = {'name': 'Tee', 'price': '5.00', 'size': 'small', 'category': self.category.id}
        response = client.post('/api/v1/items/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(Item.objects.exists())

    def test_get_item_is_public(self):
        item = TestDataFactory.create_item(category=self.category, created_by=self.admin)
        response = APIClient().get(f'/api/v1/items/{item.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['id'], item.id)
        self.assertEqual(response.data['created_by_username'], self.admin.username)

    def test_get_item_not_found(self):
        response = APIClient().get('/api/v1/items/999999/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['code'], 'not_found')

    def test_partial_update(self):
        item = TestDataFactory.create_item(category=self.category, price=Decimal('10.00'), stock_quantity=3)
        response = self.client.put(f'/api/v1/items/{item.id}/', {'price': '12.50', 'stock_quantity': 7}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        item.refresh_from_db()
        self.assertEqual(item.price, Decimal('12.50'))
        self.assertEqual(item.stock_quantity, 7)

    def test_update_rejects_invalid_values(self):
        item = TestDataFactory.create_item(category=self.category, price=Decimal('10.00'))
        response = self.client.patch(f'/api/v1/items/{item.id}/', {'price': '-1'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        response = self.client.patch(f'/api/v1/items/{item.id}/', {'size': 'xl'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        response = self.client.patch(f'/api/v1/items/{item.id}/', {'stock_quantity': -4}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        item.refresh_from_db()
        self.assertEqual(item.price, Decimal('10.00'))

    def test_update_without_fields(self):
        item = TestDataFactory.create_item(category=self.category)
        response = self.client.patch(f'/api/v1/items/{item.id}/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_delete_item_referenced_by_order(self):
        """Deleting an item keeps the snapshots in historical orders"""
        item = TestDataFactory.create_item(category=self.category, price=Decimal('8.00'))
        order = TestDataFactory.create_order(owner=TestDataFactory.create_user(), item=item, quantity=2)

        response = self.client.delete(f'/api/v1/items/{item.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(Item.objects.filter(pk=item.pk).exists())

        line = OrderItem.objects.get(order=order)
        self.assertEqual(line.item_id, item.pk)
        self.assertEqual(line.price, Decimal('8.00'))
        self.assertEqual(line.name, item.name)


class ItemFilterTests(TestCase):
    """Test django-filter based item filtering"""

    def setUp(self):
        self.client = APIClient()
        self.shirts = TestDataFactory.create_category(name='Shirts')
        self.shoes = TestDataFactory.create_category(name='Shoes')
        self.tee = TestDataFactory.create_item(name='Blue Tee', category=self.shirts, size=Item.SIZE_SMALL, stock_quantity=4)
        self.polo = TestDataFactory.create_item(name='Red Polo', category=self.shirts, size=Item.SIZE_LARGE, stock_quantity=0)
        self.boot = TestDataFactory.create_item(name='Hiking Boot', category=self.shoes, size=Item.SIZE_LARGE, stock_quantity=2)

    def _ids(self, params):
        response = self.client.get('/api/v1/items/', params)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        return {item['id'] for item in response.data}

    def test_filter_by_category(self):
        self.assertEqual(self._ids({'category': self.shirts.id}), {self.tee.id, self.polo.id})

    def test_filter_by_size(self):
        self.assertEqual(self._ids({'size': 'large'}), {self.polo.id, self.boot.id})

    def test_filter_in_stock(self):
        self.assertEqual(self._ids({'in_stock': 'true'}), {self.tee.id, self.boot.id})
        self.assertEqual(self._ids({'in_stock': 'false'}), {self.polo.id})

    def test_search(self):
        self.assertEqual(self._ids({'search': 'tee'}), {self.tee.id})
        self.assertEqual(self._ids({'search': 'shoes'}), {self.boot.id})

    def test_invalid_size_filter(self):
        response = self.client.get('/api/v1/items/', {'size': 'giant'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class ImportItemsCommandTests(TestCase):
    """Test the import_items management command"""

    def _write(self, entries):
        handle, path = tempfile.mkstemp(suffix='.json')
        with os.fdopen(handle, 'w', encoding='utf-8') as f:
            json.dump(entries, f)
        self.addCleanup(os.remove, path)
        return path

    def test_import_creates_items_and_categories(self):
        path = self._write([
            {'name': 'Cap', 'price': 9.5, 'size': 'small', 'category': 'Hats', 'stockQuantity': 3},
            {'name': 'Cap', 'price': 9.5, 'size': 'small', 'category': 'Hats', 'stockQuantity': 3},
            {'name': 'Broken', 'price': 0, 'size': 'small'},
        ])
        call_command('import_items', path, stdout=io.StringIO())

        self.assertEqual(Item.objects.count(), 1)
        item = Item.objects.get(name='Cap')
        self.assertEqual(item.category.name, 'Hats')
        self.assertEqual(item.price, Decimal('9.50'))
        self.assertEqual(item.stock_quantity, 3)
