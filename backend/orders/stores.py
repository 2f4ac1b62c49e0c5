"""
Catalog and order stores used by the order engines.

Two adapter pairs implement the same contracts:

- ``DjangoCatalogStore`` / ``DjangoOrderStore``: relational, backed by the ORM.
  A placement runs inside ``transaction.atomic()`` and stock is reserved with
  a single conditional ``UPDATE ... WHERE stock_quantity >= qty``.
- ``InMemoryCatalogStore`` / ``InMemoryOrderStore``: process-local documents
  guarded by a lock. There are no multi-record transactions, so a failed
  placement is undone by releasing the reservations it already made.
  Engines built over this pair run without a database.

The API always serves from the relational pair, see ``get_stores``.
"""
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from collections import namedtuple
from contextlib import nullcontext
from dataclasses import replace
from decimal import Decimal
from typing import List, Optional, Sequence

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from backend.catalog.models import Item

from .domain import STATUS_PENDING, ItemRecord, LineItem, OrderRecord, Reservation
from .exceptions import InsufficientStock, ItemNotFound
from .models import Order, OrderItem

logger = logging.getLogger(__name__)


def normalize_id(value) -> Optional[int]:
    """Coerce a client supplied identifier to a positive int, or None"""
    if isinstance(value, bool):
        return None
    try:
        pk = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return pk if pk > 0 else None


class CatalogStore(ABC):
    @abstractmethod
    def get_item(self, item_id) -> Optional[ItemRecord]: ...

    @abstractmethod
    def reserve_stock(self, item_id, quantity: int) -> None:
        """Decrement stock by ``quantity`` only if enough is on hand, in one step.

        Raises ``ItemNotFound`` or ``InsufficientStock``.
        """

    @abstractmethod
    def release_stock(self, item_id, quantity: int) -> None: ...

    @abstractmethod
    def clear_creator(self, admin_id: int) -> int:
        """Unset the creator reference on items created by ``admin_id``"""

    def atomic(self):
        return nullcontext()

    def rollback_reservations(self, reservations: Sequence[Reservation]) -> None:
        for reservation in reversed(reservations):
            try:
                self.release_stock(reservation.item_id, reservation.quantity)
                logger.info(f"Released reservation: item={reservation.item_id} qty={reservation.quantity}")
            except Exception as e:
                logger.error(f"Failed to release reservation for item {reservation.item_id} (qty={reservation.quantity}): {e}")


class OrderStore(ABC):
    @abstractmethod
    def create_order(self, owner_id: int, line_items: Sequence[LineItem], total_amount: Decimal) -> OrderRecord: ...

    @abstractmethod
    def get_order(self, order_id) -> Optional[OrderRecord]: ...

    @abstractmethod
    def list_orders(self, owner_id: Optional[int] = None, status: Optional[str] = None) -> List[OrderRecord]: ...

    @abstractmethod
    def set_order_status(self, order_id, status: str, approver_id: int, timestamp) -> Optional[OrderRecord]: ...

    @abstractmethod
    def clear_approver(self, admin_id: int) -> int:
        """Unset approver and approval time on orders decided by ``admin_id``"""

    @abstractmethod
    def delete_orders_for_owner(self, owner_id: int) -> int: ...


# Relational adapters

class DjangoCatalogStore(CatalogStore):

    def get_item(self, item_id):
        pk = normalize_id(item_id)
        if pk is None:
            return None
        row = Item.objects.filter(pk=pk).values('id', 'name', 'price', 'stock_quantity', 'created_by_id').first()
        if row is None:
            return None
        return ItemRecord(
            id=row['id'],
            name=row['name'],
            price=row['price'],
            stock_quantity=row['stock_quantity'],
            created_by_id=row['created_by_id'],
        )

    def reserve_stock(self, item_id, quantity):
        pk = normalize_id(item_id)
        if pk is None:
            raise ItemNotFound(item_id)
        # Check and decrement in one statement; a concurrent placement can't slip in between
        updated = Item.objects.filter(pk=pk, stock_quantity__gte=quantity).update(
            stock_quantity=F('stock_quantity') - quantity,
            updated_at=timezone.now(),
        )
        if updated == 1:
            return
        row = Item.objects.filter(pk=pk).values('name', 'stock_quantity').first()
        if row is None:
            raise ItemNotFound(item_id)
        raise InsufficientStock(pk, row['name'], row['stock_quantity'], quantity)

    def release_stock(self, item_id, quantity):
        Item.objects.filter(pk=normalize_id(item_id)).update(
            stock_quantity=F('stock_quantity') + quantity,
            updated_at=timezone.now(),
        )

    def clear_creator(self, admin_id):
        return Item.objects.filter(created_by_id=admin_id).update(created_by=None, updated_at=timezone.now())

    def atomic(self):
        return transaction.atomic()

    def rollback_reservations(self, reservations):
        # The enclosing transaction.atomic() block undoes the conditional UPDATEs
        if reservations:
            logger.info(f"Rolling back {len(reservations)} reservation(s) with the transaction")


class DjangoOrderStore(OrderStore):

    @staticmethod
    def _to_record(order, line_items=None):
        if line_items is None:
            line_items = [
                LineItem(item_id=line.item_id, name=line.name, price=line.price, quantity=line.quantity)
                for line in order.items.all()
            ]
        return OrderRecord(
            id=order.id,
            owner_id=order.owner_id,
            order_date=order.order_date,
            total_amount=order.total_amount,
            status=order.status,
            approved_by_id=order.approved_by_id,
            approved_at=order.approved_at,
            items=tuple(line_items),
        )

    def create_order(self, owner_id, line_items, total_amount):
        with transaction.atomic():
            order = Order.objects.create(owner_id=owner_id, total_amount=total_amount, status=STATUS_PENDING)
            OrderItem.objects.bulk_create([
                OrderItem(
                    order=order,
                    item_id=line.item_id,
                    name=line.name,
                    price=line.price,
                    quantity=line.quantity,
                )
                for line in line_items
            ])
        return self._to_record(order, line_items)

    def get_order(self, order_id):
        pk = normalize_id(order_id)
        if pk is None:
            return None
        order = Order.objects.prefetch_related('items').filter(pk=pk).first()
        return self._to_record(order) if order else None

    def list_orders(self, owner_id=None, status=None):
        queryset = Order.objects.prefetch_related('items')
        if owner_id is not None:
            queryset = queryset.filter(owner_id=owner_id)
        if status:
            queryset = queryset.filter(status=status)
        queryset = queryset.order_by('-order_date', '-id')
        return [self._to_record(order) for order in queryset]

    def set_order_status(self, order_id, status, approver_id, timestamp):
        pk = normalize_id(order_id)
        if pk is None:
            return None
        updated = Order.objects.filter(pk=pk).update(
            status=status,
            approved_by_id=approver_id,
            approved_at=timestamp,
            updated_at=timezone.now(),
        )
        if not updated:
            return None
        return self.get_order(pk)

    def clear_approver(self, admin_id):
        return Order.objects.filter(approved_by_id=admin_id).update(
            approved_by=None,
            approved_at=None,
            updated_at=timezone.now(),
        )

    def delete_orders_for_owner(self, owner_id):
        _, per_model = Order.objects.filter(owner_id=owner_id).delete()
        return per_model.get(Order._meta.label, 0)


# In-memory adapters

class InMemoryCatalogStore(CatalogStore):

    def __init__(self):
        self._items = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    # Seed helpers
    def add_item(self, name, price, stock_quantity, created_by_id=None) -> ItemRecord:
        with self._lock:
            record = ItemRecord(
                id=next(self._ids),
                name=name,
                price=Decimal(str(price)),
                stock_quantity=int(stock_quantity),
                created_by_id=created_by_id,
            )
            self._items[record.id] = record
        return record

    def update_item(self, item_id, **changes) -> Optional[ItemRecord]:
        pk = normalize_id(item_id)
        with self._lock:
            record = self._items.get(pk)
            if record is None:
                return None
            if 'price' in changes:
                changes['price'] = Decimal(str(changes['price']))
            record = replace(record, **changes)
            self._items[pk] = record
        return record

    def delete_item(self, item_id) -> bool:
        with self._lock:
            return self._items.pop(normalize_id(item_id), None) is not None

    def get_item(self, item_id):
        with self._lock:
            return self._items.get(normalize_id(item_id))

    def reserve_stock(self, item_id, quantity):
        pk = normalize_id(item_id)
        with self._lock:
            record = self._items.get(pk)
            if record is None:
                raise ItemNotFound(item_id)
            if record.stock_quantity < quantity:
                raise InsufficientStock(pk, record.name, record.stock_quantity, quantity)
            self._items[pk] = replace(record, stock_quantity=record.stock_quantity - quantity)

    def release_stock(self, item_id, quantity):
        pk = normalize_id(item_id)
        with self._lock:
            record = self._items.get(pk)
            if record is None:
                # Item was deleted meanwhile; nothing to give the stock back to
                logger.warning(f"Cannot release {quantity} unit(s) of missing item {item_id}")
                return
            self._items[pk] = replace(record, stock_quantity=record.stock_quantity + quantity)

    def clear_creator(self, admin_id):
        with self._lock:
            affected = [pk for pk, record in self._items.items() if record.created_by_id == admin_id]
            for pk in affected:
                self._items[pk] = replace(self._items[pk], created_by_id=None)
        return len(affected)


class InMemoryOrderStore(OrderStore):

    def __init__(self):
        self._orders = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def create_order(self, owner_id, line_items, total_amount):
        with self._lock:
            record = OrderRecord(
                id=next(self._ids),
                owner_id=owner_id,
                order_date=timezone.now(),
                total_amount=total_amount,
                status=STATUS_PENDING,
                items=tuple(line_items),
            )
            self._orders[record.id] = record
        return record

    def get_order(self, order_id):
        with self._lock:
            return self._orders.get(normalize_id(order_id))

    def list_orders(self, owner_id=None, status=None):
        with self._lock:
            orders = list(self._orders.values())
        if owner_id is not None:
            orders = [o for o in orders if o.owner_id == owner_id]
        if status:
            orders = [o for o in orders if o.status == status]
        return sorted(orders, key=lambda o: (o.order_date, o.id), reverse=True)

    def set_order_status(self, order_id, status, approver_id, timestamp):
        pk = normalize_id(order_id)
        with self._lock:
            record = self._orders.get(pk)
            if record is None:
                return None
            record = replace(record, status=status, approved_by_id=approver_id, approved_at=timestamp)
            self._orders[pk] = record
        return record

    def clear_approver(self, admin_id):
        with self._lock:
            affected = [pk for pk, record in self._orders.items() if record.approved_by_id == admin_id]
            for pk in affected:
                self._orders[pk] = replace(self._orders[pk], approved_by_id=None, approved_at=None)
        return len(affected)

    def delete_orders_for_owner(self, owner_id):
        with self._lock:
            affected = [pk for pk, record in self._orders.items() if record.owner_id == owner_id]
            for pk in affected:
                del self._orders[pk]
        return len(affected)


Stores = namedtuple('Stores', ['catalog', 'orders'])


def get_stores() -> Stores:
    """Return the catalog/order store pair the API serves from.

    The catalog endpoints write items through the ORM, so the API always
    uses the relational pair. The in-memory pair is handed to the engines
    directly.
    """
    return Stores(catalog=DjangoCatalogStore(), orders=DjangoOrderStore())
