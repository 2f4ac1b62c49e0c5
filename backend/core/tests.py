"""
Test suite for accounts: registration, login, account management and audit logs
"""
from django.test import RequestFactory, TestCase
from rest_framework import status
from rest_framework.test import APIClient
from backend.core.models import User, AuditLog
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.core.utils import create_audit_log, get_client_ip
from backend.catalog.models import Item
from backend.orders.domain import STATUS_APPROVED
from backend.orders.models import Order


class RegistrationTests(TestCase):
    """Test account registration"""

    def setUp(self):
        self.client = APIClient()

    def test_register_user(self):
        """Registering a user returns tokens and the user role"""
        data = {'username': 'alice', 'email': 'alice@example.com', 'password': 'Str0ng-Passw0rd!'}
        response = self.client.post('/api/v1/auth/register/user/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['role'], 'user')
        self.assertIn('access', response.data)
        self.assertIn('refresh', response.data)
        user = User.objects.get(email='alice@example.com')
        self.assertEqual(user.role, User.ROLE_USER)
        self.assertTrue(user.check_password('Str0ng-Passw0rd!'))

    def test_register_admin(self):
        """Registering an admin stores the admin role"""
        data = {'username': 'root', 'email': 'root@example.com', 'password': 'Str0ng-Passw0rd!'}
        response = self.client.post('/api/v1/auth/register/admin/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['user']['role'], 'admin')
        self.assertTrue(User.objects.get(username='root').is_administrator)

    def test_register_ignores_role_in_body(self):
        """The role comes from the URL, never from the payload"""
        data = {'username': 'eve', 'email': 'eve@example.com', 'password': 'Str0ng-Passw0rd!', 'role': 'admin'}
        response = self.client.post('/api/v1/auth/register/user/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(User.objects.get(username='eve').role, User.ROLE_USER)

    def test_register_invalid_type(self):
        data = {'username': 'bob', 'email': 'bob@example.com', 'password': 'Str0ng-Passw0rd!'}
        response = self.client.post('/api/v1/auth/register/superuser/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(User.objects.filter(username='bob').exists())

    def test_register_duplicate_email_conflict(self):
        """Duplicate username or email is a conflict"""
        TestDataFactory.create_user(username='carol', email='carol@example.com')
        data = {'username': 'carol2', 'email': 'carol@example.com', 'password': 'Str0ng-Passw0rd!'}
        response = self.client.post('/api/v1/auth/register/user/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'conflict')

    def test_register_duplicate_username_conflict(self):
        TestDataFactory.create_user(username='dave', email='dave@example.com')
        data = {'username': 'dave', 'email': 'other@example.com', 'password': 'Str0ng-Passw0rd!'}
        response = self.client.post('/api/v1/auth/register/admin/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_register_missing_fields(self):
        response = self.client.post('/api/v1/auth/register/user/', {'username': 'frank'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('email', response.data)
        self.assertIn('password', response.data)


class LoginTests(TestCase):
    """Test JWT login and the current account endpoint"""

    def setUp(self):
        self.client = APIClient()
        self.user = TestDataFactory.create_user(username='grace', email='grace@example.com', password='testpass123')

    def test_login_returns_tokens_and_role(self):
        response = self.client.post(
            '/api/v1/auth/login/',
            {'email': 'grace@example.com', 'password': 'testpass123'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)
        self.assertEqual(response.data['role'], 'user')
        self.assertEqual(response.data['userId'], self.user.pk)

    def test_login_wrong_password(self):
        response = self.client.post(
            '/api/v1/auth/login/',
            {'email': 'grace@example.com', 'password': 'wrong'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_access_token_authenticates_me(self):
        login = self.client.post(
            '/api/v1/auth/login/',
            {'email': 'grace@example.com', 'password': 'testpass123'},
            format='json'
        )
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {login.data['access']}")
        response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['username'], 'grace')
        self.assertEqual(response.data['role'], 'user')

    def test_me_requires_authentication(self):
        response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class AccountManagementTests(TestCase):
    """Test user and admin account management"""

    def setUp(self):
        self.admin = TestDataFactory.create_admin()
        self.other_admin = TestDataFactory.create_admin()
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)

    def test_list_users_and_admins(self):
        response = self.client.get('/api/v1/users/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([u['id'] for u in response.data], [self.user.id])

        response = self.client.get('/api/v1/admins/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual({a['id'] for a in response.data}, {self.admin.id, self.other_admin.id})

    def test_regular_user_cannot_manage_accounts(self):
        client = AuthenticatedAPIClient().authenticate_user(self.user)
        self.assertEqual(client.get('/api/v1/users/').status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(client.delete(f'/api/v1/admins/{self.admin.id}/').status_code, status.HTTP_403_FORBIDDEN)
        self.assertTrue(User.objects.filter(pk=self.admin.pk).exists())

    def test_delete_user_deletes_orders(self):
        """Deleting a user removes their orders and line items"""
        order = TestDataFactory.create_order(owner=self.user, quantity=2)
        response = self.client.delete(f'/api/v1/users/{self.user.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(User.objects.filter(pk=self.user.pk).exists())
        self.assertFalse(Order.objects.filter(pk=order.pk).exists())

    def test_delete_user_not_found(self):
        response = self.client.delete('/api/v1/users/999999/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_delete_user_endpoint_does_not_delete_admins(self):
        response = self.client.delete(f'/api/v1/users/{self.other_admin.id}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertTrue(User.objects.filter(pk=self.other_admin.pk).exists())

    def test_delete_admin_clears_approvals_and_items(self):
        """Orders decided by the admin and items created by it lose that reference"""
        item = TestDataFactory.create_item(created_by=self.other_admin)
        order = TestDataFactory.create_order(
            owner=self.user, item=item, status=STATUS_APPROVED, approved_by=self.other_admin
        )
        Order.objects.filter(pk=order.pk).update(approved_at=order.order_date)

        response = self.client.delete(f'/api/v1/admins/{self.other_admin.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(User.objects.filter(pk=self.other_admin.pk).exists())

        order.refresh_from_db()
        self.assertIsNone(order.approved_by_id)
        self.assertIsNone(order.approved_at)
        # Order itself and its status survive
        self.assertEqual(order.status, STATUS_APPROVED)

        item = Item.objects.get(pk=item.pk)
        self.assertIsNone(item.created_by_id)

    def test_delete_admin_writes_audit_log(self):
        self.client.delete(f'/api/v1/admins/{self.other_admin.id}/')
        log = AuditLog.objects.get(action='delete', model_name='User')
        self.assertEqual(log.object_id, str(self.other_admin.id))
        self.assertEqual(log.user, self.admin)

    def test_cannot_delete_last_admin(self):
        User.objects.filter(pk=self.other_admin.pk).delete()
        response = self.client.delete(f'/api/v1/admins/{self.admin.id}/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertTrue(User.objects.filter(pk=self.admin.pk).exists())

    def test_admin_can_delete_own_account_when_not_last(self):
        response = self.client.delete(f'/api/v1/admins/{self.admin.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(User.objects.filter(pk=self.admin.pk).exists())
        log = AuditLog.objects.get(action='delete', model_name='User')
        self.assertIsNone(log.user)


class AuditLogTests(TestCase):
    """Test the audit log listing"""

    def setUp(self):
        self.admin = TestDataFactory.create_admin()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)

    def test_list_and_filter_audit_logs(self):
        AuditLog.objects.create(user=self.admin, action='create', model_name='Item', object_id='1')
        AuditLog.objects.create(user=self.admin, action='order_status', model_name='Order', object_id='2')

        response = self.client.get('/api/v1/audit-logs/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 2)

        response = self.client.get('/api/v1/audit-logs/', {'model_name': 'Order'})
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]['action'], 'order_status')

    def test_audit_logs_admin_only(self):
        client = AuthenticatedAPIClient().authenticate_user(TestDataFactory.create_user())
        response = client.get('/api/v1/audit-logs/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class AuditLogUtilityTests(TestCase):
    """Test create_audit_log and client IP extraction"""

    def setUp(self):
        self.factory = RequestFactory()
        self.admin = TestDataFactory.create_admin()

    def test_ip_from_forwarded_header(self):
        request = self.factory.post('/api/v1/items/', HTTP_X_FORWARDED_FOR='203.0.113.5, 10.0.0.1')
        request.user = self.admin
        log = create_audit_log(request=request, action='create', model_name='Item', object_id=7, object_name='Tee')
        self.assertEqual(log.ip_address, '203.0.113.5')
        self.assertEqual(log.user, self.admin)
        self.assertEqual(log.object_id, '7')
        self.assertEqual(log.changes, {})

    def test_ip_falls_back_to_remote_addr(self):
        request = self.factory.get('/', REMOTE_ADDR='198.51.100.2')
        self.assertEqual(get_client_ip(request), '198.51.100.2')
        self.assertIsNone(get_client_ip(None))

    def test_explicit_user_without_request(self):
        log = create_audit_log(action='delete', model_name='Category', object_id='3', user=self.admin)
        self.assertEqual(log.user, self.admin)
        self.assertIsNone(log.ip_address)

    def test_missing_fields_skip_the_entry(self):
        with self.assertLogs('backend.core.utils', level='WARNING'):
            self.assertIsNone(create_audit_log(action='create', model_name='Item', user=self.admin))
        self.assertFalse(AuditLog.objects.exists())
