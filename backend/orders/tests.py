"""
Test suite for the order workflow
Tests: placement engine over both store pairs, stock reservation, compensation,
approval, retrieval and the order API
"""
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

from django.db import DatabaseError, connection
from django.test import TestCase, SimpleTestCase, TransactionTestCase
from rest_framework import status
from backend.core.models import AuditLog
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.catalog.models import Item
from backend.orders.domain import (
    STATUS_APPROVED, STATUS_DISAPPROVED, STATUS_PENDING, ROLE_ADMIN, ROLE_USER,
    Principal, RequestedLine,
)
from backend.orders.exceptions import (
    AuthorizationError, InsufficientStock, ItemNotFound, OrderNotFound,
    PersistenceError, ValidationError,
)
from backend.orders.models import Order, OrderItem
from backend.orders.services import (
    OrderApprovalService, OrderPlacementService, OrderRetrievalService,
    get_order_services, parse_requested_lines,
)
from backend.orders.stores import (
    DjangoCatalogStore, DjangoOrderStore, InMemoryCatalogStore, InMemoryOrderStore,
    get_stores, normalize_id,
)

USER = Principal(identity=1, role=ROLE_USER)
OTHER_USER = Principal(identity=2, role=ROLE_USER)
ADMIN = Principal(identity=99, role=ROLE_ADMIN)


class FailingOrderStore(InMemoryOrderStore):
    """Order store whose writes always fail"""

    def create_order(self, owner_id, line_items, total_amount):
        raise DatabaseError('disk full')


class RequestParsingTests(SimpleTestCase):
    """Test validation of the raw items payload"""

    def test_valid_lines(self):
        lines = parse_requested_lines([{'itemId': 3, 'quantity': 2}, RequestedLine(item_id=4, quantity=1)])
        self.assertEqual(lines, [RequestedLine(item_id=3, quantity=2), RequestedLine(item_id=4, quantity=1)])

    def test_empty_or_missing_items(self):
        for payload in (None, [], {}, 'items', {'itemId': 1, 'quantity': 1}):
            with self.subTest(payload=payload):
                with self.assertRaises(ValidationError):
                    parse_requested_lines(payload)

    def test_invalid_quantity(self):
        for quantity in (0, -1, 1.5, '2', True, None):
            with self.subTest(quantity=quantity):
                with self.assertRaises(ValidationError):
                    parse_requested_lines([{'itemId': 1, 'quantity': quantity}])

    def test_missing_item_id(self):
        with self.assertRaises(ValidationError):
            parse_requested_lines([{'quantity': 1}])

    def test_malformed_item_id(self):
        for item_id in ([1], {}, {'id': 1}, 'abc', '', 0, -3, 1.5, True, None):
            with self.subTest(item_id=item_id):
                with self.assertRaises(ValidationError):
                    parse_requested_lines([{'itemId': item_id, 'quantity': 1}])

    def test_digit_string_item_id(self):
        lines = parse_requested_lines([{'itemId': ' 12 ', 'quantity': 1}])
        self.assertEqual(lines, [RequestedLine(item_id=12, quantity=1)])


    def test_normalize_id(self):
        self.assertEqual(normalize_id('7'), 7)
        self.assertEqual(normalize_id(7), 7)
        self.assertIsNone(normalize_id('abc'))
        self.assertIsNone(normalize_id(0))
        self.assertIsNone(normalize_id(True))
        self.assertIsNone(normalize_id(None))


class InMemoryPlacementTests(SimpleTestCase):
    """Test the placement engine over the in-memory store pair"""

    def setUp(self):
        self.catalog = InMemoryCatalogStore()
        self.orders = InMemoryOrderStore()
        self.engine = OrderPlacementService(self.catalog, self.orders)
        self.shirt = self.catalog.add_item('Shirt', '10.00', 5)
        self.hat = self.catalog.add_item('Hat', '4.25', 10)

    def stock(self, item):
        return self.catalog.get_item(item.id).stock_quantity

    def test_place_order_snapshots_and_total(self):
        order = self.engine.place_order(USER, [
            {'itemId': self.shirt.id, 'quantity': 3},
            {'itemId': self.hat.id, 'quantity': 2},
        ])
        self.assertEqual(order.status, STATUS_PENDING)
        self.assertEqual(order.owner_id, USER.identity)
        self.assertIsNone(order.approved_by_id)
        self.assertEqual(order.total_amount, Decimal('38.50'))
        self.assertEqual(order.total_amount, order.items_total)
        self.assertEqual([line.item_id for line in order.items], [self.shirt.id, self.hat.id])
        self.assertEqual(self.stock(self.shirt), 2)
        self.assertEqual(self.stock(self.hat), 8)

    def test_item_id_given_as_string(self):
        order = self.engine.place_order(USER, [{'itemId': str(self.shirt.id), 'quantity': 1}])
        self.assertEqual(order.items[0].item_id, self.shirt.id)

    def test_insufficient_stock_leaves_no_trace(self):
        with self.assertRaises(InsufficientStock) as ctx:
            self.engine.place_order(USER, [
                {'itemId': self.hat.id, 'quantity': 4},
                {'itemId': self.shirt.id, 'quantity': 6},
            ])
        self.assertEqual(ctx.exception.item_id, self.shirt.id)
        self.assertEqual(ctx.exception.available, 5)
        self.assertIn('Shirt', str(ctx.exception.detail))
        # The hat reservation made before the failure is released
        self.assertEqual(self.stock(self.hat), 10)
        self.assertEqual(self.stock(self.shirt), 5)
        self.assertEqual(self.orders.list_orders(), [])

    def test_missing_item_rolls_back_earlier_lines(self):
        with self.assertRaises(ItemNotFound) as ctx:
            self.engine.place_order(USER, [
                {'itemId': self.shirt.id, 'quantity': 2},
                {'itemId': 12345, 'quantity': 1},
            ])
        self.assertEqual(ctx.exception.item_id, 12345)
        self.assertEqual(self.stock(self.shirt), 5)
        self.assertEqual(self.orders.list_orders(), [])

    def test_duplicate_lines_reserve_cumulatively(self):
        with self.assertRaises(InsufficientStock):
            self.engine.place_order(USER, [
                {'itemId': self.shirt.id, 'quantity': 3},
                {'itemId': self.shirt.id, 'quantity': 3},
            ])
        self.assertEqual(self.stock(self.shirt), 5)

        order = self.engine.place_order(USER, [
            {'itemId': self.shirt.id, 'quantity': 2},
            {'itemId': self.shirt.id, 'quantity': 3},
        ])
        self.assertEqual(len(order.items), 2)
        self.assertEqual(self.stock(self.shirt), 0)

    def test_admin_cannot_place_orders(self):
        with self.assertRaises(AuthorizationError):
            self.engine.place_order(ADMIN, [{'itemId': self.shirt.id, 'quantity': 1}])
        self.assertEqual(self.stock(self.shirt), 5)
        self.assertEqual(self.orders.list_orders(), [])

    def test_role_is_checked_before_payload(self):
        with self.assertRaises(AuthorizationError):
            self.engine.place_order(ADMIN, [])

    def test_store_failure_releases_reservations(self):
        engine = OrderPlacementService(self.catalog, FailingOrderStore())
        with self.assertRaises(PersistenceError):
            engine.place_order(USER, [
                {'itemId': self.shirt.id, 'quantity': 2},
                {'itemId': self.hat.id, 'quantity': 1},
            ])
        self.assertEqual(self.stock(self.shirt), 5)
        self.assertEqual(self.stock(self.hat), 10)

    def test_price_change_does_not_alter_snapshot(self):
        order = self.engine.place_order(USER, [{'itemId': self.shirt.id, 'quantity': 1}])
        self.catalog.update_item(self.shirt.id, price='99.00', name='Renamed Shirt')
        self.catalog.delete_item(self.hat.id)

        stored = self.orders.get_order(order.id)
        self.assertEqual(stored.items[0].price, Decimal('10.00'))
        self.assertEqual(stored.items[0].name, 'Shirt')
        self.assertEqual(stored.total_amount, Decimal('10.00'))

    def test_concurrent_placements_never_oversell(self):
        """Twenty concurrent single-unit orders against five units of stock"""
        def place():
            try:
                return self.engine.place_order(USER, [{'itemId': self.shirt.id, 'quantity': 1}])
            except InsufficientStock:
                return None

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: place(), range(20)))

        placed = [order for order in results if order is not None]
        self.assertEqual(len(placed), 5)
        self.assertEqual(self.stock(self.shirt), 0)
        self.assertEqual(len(self.orders.list_orders()), 5)


class InMemoryApprovalAndRetrievalTests(SimpleTestCase):
    """Test approval and retrieval engines over the in-memory store pair"""

    def setUp(self):
        self.catalog = InMemoryCatalogStore()
        self.orders = InMemoryOrderStore()
        item = self.catalog.add_item('Mug', '6.00', 10)
        placement = OrderPlacementService(self.catalog, self.orders)
        self.order = placement.place_order(USER, [{'itemId': item.id, 'quantity': 1}])
        self.other_order = placement.place_order(OTHER_USER, [{'itemId': item.id, 'quantity': 2}])
        self.approval = OrderApprovalService(self.orders)
        self.retrieval = OrderRetrievalService(self.orders)

    def test_approve_sets_approver_and_time(self):
        updated = self.approval.set_status(ADMIN, self.order.id, STATUS_APPROVED)
        self.assertEqual(updated.status, STATUS_APPROVED)
        self.assertEqual(updated.approved_by_id, ADMIN.identity)
        self.assertIsNotNone(updated.approved_at)
        # Snapshot and total are untouched
        self.assertEqual(updated.items, self.order.items)
        self.assertEqual(updated.total_amount, self.order.total_amount)

    def test_disapprove(self):
        updated = self.approval.set_status(ADMIN, str(self.order.id), STATUS_DISAPPROVED)
        self.assertEqual(updated.status, STATUS_DISAPPROVED)

    def test_decided_order_can_be_changed_again(self):
        self.approval.set_status(ADMIN, self.order.id, STATUS_APPROVED)
        with self.assertLogs('backend.orders.services', level='WARNING'):
            updated = self.approval.set_status(ADMIN, self.order.id, STATUS_DISAPPROVED)
        self.assertEqual(updated.status, STATUS_DISAPPROVED)

    def test_invalid_status(self):
        for value in ('pending', 'shipped', '', None):
            with self.subTest(value=value):
                with self.assertRaises(ValidationError):
                    self.approval.set_status(ADMIN, self.order.id, value)
        self.assertEqual(self.orders.get_order(self.order.id).status, STATUS_PENDING)

    def test_unknown_order(self):
        with self.assertRaises(OrderNotFound):
            self.approval.set_status(ADMIN, 424242, STATUS_APPROVED)

    def test_user_cannot_set_status(self):
        with self.assertRaises(AuthorizationError):
            self.approval.set_status(USER, self.order.id, STATUS_APPROVED)

    def test_users_see_only_their_orders(self):
        self.assertEqual([o.id for o in self.retrieval.list_orders(USER)], [self.order.id])
        self.assertEqual(len(self.retrieval.list_orders(ADMIN)), 2)
        with self.assertRaises(OrderNotFound):
            self.retrieval.get_order(USER, self.other_order.id)
        self.assertEqual(self.retrieval.get_order(ADMIN, self.other_order.id).id, self.other_order.id)

    def test_list_by_status(self):
        self.approval.set_status(ADMIN, self.order.id, STATUS_APPROVED)
        approved = self.retrieval.list_orders(ADMIN, status=STATUS_APPROVED)
        self.assertEqual([o.id for o in approved], [self.order.id])
        with self.assertRaises(ValidationError):
            self.retrieval.list_orders(ADMIN, status='shipped')

    def test_list_is_idempotent(self):
        self.assertEqual(self.retrieval.list_orders(ADMIN), self.retrieval.list_orders(ADMIN))

    def test_admin_cleanup(self):
        self.approval.set_status(ADMIN, self.order.id, STATUS_APPROVED)
        self.assertEqual(self.orders.clear_approver(ADMIN.identity), 1)
        order = self.orders.get_order(self.order.id)
        self.assertIsNone(order.approved_by_id)
        self.assertIsNone(order.approved_at)
        self.assertEqual(order.status, STATUS_APPROVED)

        self.assertEqual(self.orders.delete_orders_for_owner(USER.identity), 1)
        self.assertIsNone(self.orders.get_order(self.order.id))


class StoreSelectionTests(SimpleTestCase):

    def test_api_serves_from_relational_stores(self):
        stores = get_stores()
        self.assertIsInstance(stores.catalog, DjangoCatalogStore)
        self.assertIsInstance(stores.orders, DjangoOrderStore)

        services = get_order_services()
        self.assertIsInstance(services.placement.catalog, DjangoCatalogStore)
        self.assertIsInstance(services.approval.orders, DjangoOrderStore)


class RelationalStoreTests(TestCase):
    """Test the ORM backed store pair"""

    def setUp(self):
        self.catalog = DjangoCatalogStore()
        self.orders = DjangoOrderStore()
        self.user = TestDataFactory.create_user()
        self.item = TestDataFactory.create_item(price=Decimal('10.00'), stock_quantity=5)

    def test_reserve_stock_is_conditional(self):
        self.catalog.reserve_stock(self.item.id, 3)
        self.item.refresh_from_db()
        self.assertEqual(self.item.stock_quantity, 2)

        with self.assertRaises(InsufficientStock) as ctx:
            self.catalog.reserve_stock(self.item.id, 3)
        self.assertEqual(ctx.exception.available, 2)
        self.item.refresh_from_db()
        self.assertEqual(self.item.stock_quantity, 2)

    def test_reserve_missing_item(self):
        with self.assertRaises(ItemNotFound):
            self.catalog.reserve_stock(999999, 1)
        with self.assertRaises(ItemNotFound):
            self.catalog.reserve_stock('not-an-id', 1)

    def test_missing_line_rolls_back_transaction(self):
        engine = OrderPlacementService(self.catalog, self.orders)
        principal = Principal.from_user(self.user)
        with self.assertRaises(ItemNotFound):
            engine.place_order(principal, [
                {'itemId': self.item.id, 'quantity': 2},
                {'itemId': 999999, 'quantity': 1},
            ])
        self.item.refresh_from_db()
        self.assertEqual(self.item.stock_quantity, 5)
        self.assertFalse(Order.objects.exists())
        self.assertFalse(OrderItem.objects.exists())

    def test_order_round_trip(self):
        engine = OrderPlacementService(self.catalog, self.orders)
        placed = engine.place_order(Principal.from_user(self.user), [{'itemId': self.item.id, 'quantity': 2}])
        stored = self.orders.get_order(placed.id)
        self.assertEqual(stored, placed)
        self.assertEqual(Order.objects.get(pk=placed.id).get_items_total(), Decimal('20.00'))


class OrderAPITests(TestCase):
    """Test the order endpoints end to end over the relational stores"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.admin = TestDataFactory.create_admin()
        self.item = TestDataFactory.create_item(price=Decimal('10.00'), stock_quantity=5)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.admin_client = AuthenticatedAPIClient()
        self.admin_client.authenticate_user(self.admin)

    def place(self, client, quantity):
        return client.post('/api/v1/orders/', {'items': [{'itemId': self.item.id, 'quantity': quantity}]}, format='json')

    def test_place_then_oversell_then_approve(self):
        response = self.place(self.client, 3)
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['totalAmount'], '30.00')
        self.assertEqual(response.data['status'], 'pending')
        self.assertEqual(response.data['ownerId'], self.user.id)
        self.assertIsNone(response.data['approvedBy'])
        self.assertEqual(response.data['items'][0]['itemId'], self.item.id)
        self.assertEqual(response.data['items'][0]['price'], '10.00')
        self.item.refresh_from_db()
        self.assertEqual(self.item.stock_quantity, 2)
        order_id = response.data['orderId']

        response = self.place(self.client, 3)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'insufficient_stock')
        self.assertEqual(response.data['available'], 2)
        self.item.refresh_from_db()
        self.assertEqual(self.item.stock_quantity, 2)
        self.assertEqual(Order.objects.count(), 1)

        response = self.admin_client.put(f'/api/v1/orders/{order_id}/status/', {'status': 'approved'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'approved')
        self.assertEqual(response.data['approvedBy'], self.admin.id)
        self.assertIsNotNone(response.data['approvedAt'])
        self.assertEqual(response.data['totalAmount'], '30.00')
        self.assertTrue(AuditLog.objects.filter(action='order_status', object_id=str(order_id)).exists())

    def test_place_order_writes_audit_log(self):
        response = self.place(self.client, 1)
        log = AuditLog.objects.get(action='order_place')
        self.assertEqual(log.object_id, str(response.data['orderId']))
        self.assertEqual(log.user, self.user)

    def test_admin_cannot_place_order(self):
        response = self.place(self.admin_client, 1)
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['code'], 'authorization_error')
        self.item.refresh_from_db()
        self.assertEqual(self.item.stock_quantity, 5)
        self.assertFalse(Order.objects.exists())

    def test_unauthenticated(self):
        response = AuthenticatedAPIClient().post('/api/v1/orders/', {'items': []}, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_empty_items(self):
        response = self.client.post('/api/v1/orders/', {'items': []}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'validation_error')

    def test_missing_item(self):
        response = self.client.post('/api/v1/orders/', {'items': [{'itemId': 999999, 'quantity': 1}]}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['code'], 'item_not_found')
        self.assertEqual(response.data['itemId'], 999999)

    def test_malformed_item_id(self):
        for item_id in ([self.item.id], {}, 'abc'):
            with self.subTest(item_id=item_id):
                response = self.client.post('/api/v1/orders/', {'items': [{'itemId': item_id, 'quantity': 1}]}, format='json')
                self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
                self.assertEqual(response.data['code'], 'validation_error')
        self.item.refresh_from_db()
        self.assertEqual(self.item.stock_quantity, 5)

    def test_user_cannot_change_status(self):

        order = TestDataFactory.create_order(owner=self.user, item=self.item)
        response = self.client.put(f'/api/v1/orders/{order.id}/status/', {'status': 'approved'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        order.refresh_from_db()
        self.assertEqual(order.status, STATUS_PENDING)

    def test_invalid_status_value(self):
        order = TestDataFactory.create_order(owner=self.user, item=self.item)
        response = self.admin_client.patch(f'/api/v1/orders/{order.id}/status/', {'status': 'shipped'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'validation_error')

    def test_status_of_unknown_order(self):
        response = self.admin_client.put('/api/v1/orders/999999/status/', {'status': 'approved'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['code'], 'order_not_found')

    def test_list_orders_scoped_by_role(self):
        other = TestDataFactory.create_user()
        mine = TestDataFactory.create_order(owner=self.user, item=self.item)
        TestDataFactory.create_order(owner=other, item=self.item)

        response = self.client.get('/api/v1/orders/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([o['orderId'] for o in response.data], [mine.id])

        response = self.admin_client.get('/api/v1/orders/')
        self.assertEqual(len(response.data), 2)
        # Listing twice returns the same result
        self.assertEqual(self.admin_client.get('/api/v1/orders/').data, response.data)

    def test_list_orders_by_status(self):
        TestDataFactory.create_order(owner=self.user, item=self.item, status=STATUS_APPROVED, approved_by=self.admin)
        TestDataFactory.create_order(owner=self.user, item=self.item)
        response = self.client.get('/api/v1/orders/', {'status': 'approved'})
        self.assertEqual(len(response.data), 1)
        response = self.client.get('/api/v1/orders/', {'status': 'bogus'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_order_detail_hides_other_users_orders(self):
        other_order = TestDataFactory.create_order(owner=TestDataFactory.create_user(), item=self.item)
        response = self.client.get(f'/api/v1/orders/{other_order.id}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        response = self.admin_client.get(f'/api/v1/orders/{other_order.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['orderId'], other_order.id)

    def test_price_change_after_order(self):
        response = self.place(self.client, 2)
        Item.objects.filter(pk=self.item.pk).update(price=Decimal('55.00'))
        detail = self.client.get(f"/api/v1/orders/{response.data['orderId']}/")
        self.assertEqual(detail.data['items'][0]['price'], '10.00')
        self.assertEqual(detail.data['totalAmount'], '20.00')


class RelationalConcurrencyTests(TransactionTestCase):
    """Test concurrent placements against the ORM backed stores"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.item = TestDataFactory.create_item(price=Decimal('10.00'), stock_quantity=5)

    def test_concurrent_placements_never_oversell(self):
        """Twenty concurrent single-unit orders against five units of stock"""
        principal = Principal.from_user(self.user)

        def place(_):
            engine = OrderPlacementService(DjangoCatalogStore(), DjangoOrderStore())
            try:
                engine.place_order(principal, [{'itemId': self.item.id, 'quantity': 1}])
                return 'ok'
            except InsufficientStock:
                return 'insufficient'
            finally:
                connection.close()

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(place, range(20)))

        self.assertEqual(results.count('ok'), 5)
        self.assertEqual(results.count('insufficient'), 15)
        self.item.refresh_from_db()
        self.assertEqual(self.item.stock_quantity, 0)
        self.assertEqual(Order.objects.count(), 5)
        self.assertEqual(OrderItem.objects.count(), 5)
