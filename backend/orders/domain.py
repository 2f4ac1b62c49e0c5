"""
Value objects shared by the order engines and the store adapters.

Nothing in here touches the database. Store adapters translate their own
representation (ORM rows, in-memory documents) into these records so the
engines stay storage-agnostic.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

STATUS_PENDING = 'pending'
STATUS_APPROVED = 'approved'
STATUS_DISAPPROVED = 'disapproved'

ORDER_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_DISAPPROVED)
# Statuses an administrator may move an order to
DECISION_STATUSES = (STATUS_APPROVED, STATUS_DISAPPROVED)

ROLE_USER = 'user'
ROLE_ADMIN = 'admin'


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as seen by the engines"""
    identity: int
    role: str

    @classmethod
    def from_user(cls, user):
        return cls(identity=user.pk, role=user.role)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_user(self) -> bool:
        return self.role == ROLE_USER


@dataclass(frozen=True)
class RequestedLine:
    item_id: object
    quantity: int


@dataclass(frozen=True)
class ItemRecord:
    id: int
    name: str
    price: Decimal
    stock_quantity: int
    created_by_id: Optional[int] = None


@dataclass(frozen=True)
class LineItem:
    """Snapshot of an item taken when the order was placed"""
    item_id: int
    name: str
    price: Decimal
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


@dataclass(frozen=True)
class Reservation:
    item_id: int
    quantity: int


@dataclass(frozen=True)
class OrderRecord:
    id: int
    owner_id: Optional[int]
    order_date: datetime
    total_amount: Decimal
    status: str = STATUS_PENDING
    approved_by_id: Optional[int] = None
    approved_at: Optional[datetime] = None
    items: Tuple[LineItem, ...] = field(default_factory=tuple)

    @property
    def items_total(self) -> Decimal:
        return sum((line.line_total for line in self.items), Decimal('0.00'))
