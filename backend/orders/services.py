"""
Order placement, approval and retrieval engines.

The engines only talk to the ``CatalogStore`` / ``OrderStore`` contracts in
``stores.py`` and never to the ORM directly, so they behave the same over
either adapter pair.
"""
import logging
from collections import namedtuple
from collections.abc import Mapping
from decimal import Decimal
from typing import List, Sequence

from django.db import DatabaseError
from django.utils import timezone

from .domain import (
    DECISION_STATUSES, ORDER_STATUSES, STATUS_PENDING,
    LineItem, OrderRecord, Principal, RequestedLine, Reservation,
)
from .exceptions import (
    AuthorizationError, InsufficientStock, ItemNotFound, OrderNotFound,
    PersistenceError, ValidationError,
)
from .stores import CatalogStore, OrderStore, get_stores

logger = logging.getLogger(__name__)


def _parse_item_id(value):
    """Return ``value`` as a positive integer id, or None when it is not one"""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.strip().isdecimal():
        return int(value.strip()) or None
    return None


def parse_requested_lines(requested_lines) -> List[RequestedLine]:
    """Validate the raw ``items`` payload of a placement request.

    Accepts ``RequestedLine`` instances or mappings with ``itemId`` and
    ``quantity`` keys. Item ids must be positive integers or digit strings
    and quantities integers of at least 1.
    """
    if not requested_lines or isinstance(requested_lines, (str, bytes, Mapping)):
        raise ValidationError('Order must contain at least one item.')
    try:
        entries = list(requested_lines)
    except TypeError:
        raise ValidationError('Order must contain at least one item.')

    lines = []
    for entry in entries:
        if isinstance(entry, RequestedLine):
            item_id, quantity = entry.item_id, entry.quantity
        elif isinstance(entry, Mapping):
            item_id, quantity = entry.get('itemId'), entry.get('quantity')
        else:
            raise ValidationError('Each order item must have a valid itemId and quantity (> 0).')

        item_id = _parse_item_id(item_id)
        if item_id is None or isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError('Each order item must have a valid itemId and quantity (> 0).')
        lines.append(RequestedLine(item_id=item_id, quantity=quantity))
    return lines


class OrderPlacementService:
    """Turns a list of requested lines into exactly one pending order, or nothing"""

    def __init__(self, catalog: CatalogStore, orders: OrderStore):
        self.catalog = catalog
        self.orders = orders

    def place_order(self, principal: Principal, requested_lines) -> OrderRecord:
        if not principal.is_user:
            raise AuthorizationError('Access denied: Only regular users can place orders')
        lines = parse_requested_lines(requested_lines)

        logger.info(f"Placing order: user={principal.identity} lines={len(lines)}")
        try:
            with self.catalog.atomic():
                reservations: List[Reservation] = []
                try:
                    line_items, total_amount = self._reserve_lines(lines, reservations)
                    order = self.orders.create_order(principal.identity, line_items, total_amount)
                except Exception as e:
                    logger.warning(f"Order placement failed for user={principal.identity}: {e}")
                    self.catalog.rollback_reservations(reservations)
                    raise
        except DatabaseError as e:
            logger.exception(f"Store failure while placing order for user={principal.identity}")
            raise PersistenceError() from e

        logger.info(f"Order {order.id} placed: user={principal.identity} total={order.total_amount}")
        return order

    def _reserve_lines(self, lines: Sequence[RequestedLine], reservations: List[Reservation]):
        """Reserve stock line by line, in request order, stopping at the first failure.

        Successful reservations are appended to ``reservations`` as they happen
        so the caller can undo them.
        """
        total_amount = Decimal('0.00')
        line_items = []
        for line in lines:
            item = self.catalog.get_item(line.item_id)
            if item is None:
                raise ItemNotFound(line.item_id)
            if item.stock_quantity < line.quantity:
                raise InsufficientStock(item.id, item.name, item.stock_quantity, line.quantity)

            self.catalog.reserve_stock(item.id, line.quantity)
            reservations.append(Reservation(item_id=item.id, quantity=line.quantity))

            total_amount += item.price * line.quantity
            line_items.append(LineItem(item_id=item.id, name=item.name, price=item.price, quantity=line.quantity))
        return line_items, total_amount


class OrderApprovalService:

    def __init__(self, orders: OrderStore):
        self.orders = orders

    def set_status(self, principal: Principal, order_id, new_status) -> OrderRecord:
        if not principal.is_admin:
            raise AuthorizationError('Access denied: Admins only')
        if new_status not in DECISION_STATUSES:
            raise ValidationError('Status must be "approved" or "disapproved".')

        try:
            existing = self.orders.get_order(order_id)
            if existing is None:
                raise OrderNotFound(order_id)
            if existing.status != STATUS_PENDING:
                # Decided orders can be overridden; keep a trace of it
                logger.warning(
                    f"Order {existing.id} re-transitioned from {existing.status} to {new_status} "
                    f"by admin={principal.identity} (previous approver={existing.approved_by_id})"
                )
            updated = self.orders.set_order_status(existing.id, new_status, principal.identity, timezone.now())
        except DatabaseError as e:
            logger.exception(f"Store failure while updating status of order {order_id}")
            raise PersistenceError() from e

        if updated is None:
            raise OrderNotFound(order_id)
        logger.info(f"Order {updated.id} status set to {new_status} by admin={principal.identity}")
        return updated


class OrderRetrievalService:

    def __init__(self, orders: OrderStore):
        self.orders = orders

    def list_orders(self, principal: Principal, status=None) -> List[OrderRecord]:
        """Users see their own orders, administrators see every order"""
        if status and status not in ORDER_STATUSES:
            raise ValidationError(f'Unknown order status: {status}')
        owner_id = None if principal.is_admin else principal.identity
        return self.orders.list_orders(owner_id=owner_id, status=status or None)

    def get_order(self, principal: Principal, order_id) -> OrderRecord:
        order = self.orders.get_order(order_id)
        # Other users' orders are reported as missing
        if order is None or (not principal.is_admin and order.owner_id != principal.identity):
            raise OrderNotFound(order_id)
        return order


OrderServices = namedtuple('OrderServices', ['placement', 'approval', 'retrieval'])


def get_order_services() -> OrderServices:
    stores = get_stores()
    return OrderServices(
        placement=OrderPlacementService(stores.catalog, stores.orders),
        approval=OrderApprovalService(stores.orders),
        retrieval=OrderRetrievalService(stores.orders),
    )
