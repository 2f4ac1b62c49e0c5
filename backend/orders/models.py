from decimal import Decimal

from django.db import models
from django.utils import timezone

from backend.catalog.models import Item
from backend.core.models import User

from .domain import STATUS_APPROVED, STATUS_DISAPPROVED, STATUS_PENDING


class Order(models.Model):
    """Customer order; total and line items are fixed when it is placed"""
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_APPROVED, 'Approved'),
        (STATUS_DISAPPROVED, 'Disapproved'),
    ]

    owner = models.ForeignKey(User, on_delete=models.CASCADE, related_name='orders')
    order_date = models.DateTimeField(default=timezone.now, db_index=True)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)
    approved_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='approved_orders')
    approved_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Order-{self.id}"

    def get_items_total(self):
        """Recalculate total from the line item snapshots"""
        return sum((line.get_line_total() for line in self.items.all()), Decimal('0.00'))

    class Meta:
        db_table = 'orders'
        ordering = ['-order_date', '-id']
        indexes = [
            models.Index(fields=['owner', '-order_date'], name='idx_order_owner_date'),
            models.Index(fields=['status'], name='idx_order_status'),
        ]


class OrderItem(models.Model):
    """Order line item; name and price are copies taken at order time"""
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='items')
    # No FK constraint: a deleted item leaves its id behind in historical orders
    item = models.ForeignKey(
        Item,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        related_name='+',
    )
    name = models.CharField(max_length=200)
    price = models.DecimalField(max_digits=10, decimal_places=2)
    quantity = models.PositiveIntegerField()

    def get_line_total(self):
        return self.price * self.quantity

    class Meta:
        db_table = 'order_items'
        ordering = ['id']
        indexes = [
            models.Index(fields=['order', 'item'], name='idx_orderitem_order_item'),
        ]
