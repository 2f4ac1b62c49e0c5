from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models

from backend.core.models import User


class Category(models.Model):
    """Item categories"""
    name = models.CharField(max_length=200, unique=True)
    description = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name

    class Meta:
        db_table = 'categories'
        verbose_name_plural = 'categories'
        ordering = ['name']


class Item(models.Model):
    """Sellable item with its stock on hand"""
    SIZE_SMALL = 'small'
    SIZE_MEDIUM = 'medium'
    SIZE_LARGE = 'large'
    SIZE_CHOICES = [
        (SIZE_SMALL, 'Small'),
        (SIZE_MEDIUM, 'Medium'),
        (SIZE_LARGE, 'Large'),
    ]

    name = models.CharField(max_length=200, db_index=True)
    price = models.DecimalField(max_digits=10, decimal_places=2, validators=[MinValueValidator(Decimal('0.00'))])
    size = models.CharField(max_length=10, choices=SIZE_CHOICES)
    category = models.ForeignKey(Category, on_delete=models.PROTECT, related_name='items')
    # Only decremented through the order workflow's conditional update
    stock_quantity = models.PositiveIntegerField(default=0)
    description = models.TextField(blank=True)
    image_url = models.URLField(blank=True)
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='created_items')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.name} ({self.get_size_display()})"

    @property
    def in_stock(self):
        return self.stock_quantity > 0

    class Meta:
        db_table = 'items'
        ordering = ['name', 'id']
        indexes = [
            models.Index(fields=['category', 'size'], name='idx_item_category_size'),
        ]
