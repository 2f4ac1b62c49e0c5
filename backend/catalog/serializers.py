from decimal import Decimal

from rest_framework import serializers
from .models import Category, Item


class CategorySerializer(serializers.ModelSerializer):
    item_count = serializers.IntegerField(read_only=True, required=False)

    class Meta:
        model = Category
        fields = ['id', 'name', 'description', 'item_count', 'created_at', 'updated_at']
        # Duplicate names are reported as a conflict by the view
        extra_kwargs = {
            'name': {'validators': []},
        }


class ItemSerializer(serializers.ModelSerializer):
    category_name = serializers.CharField(source='category.name', read_only=True)
    in_stock = serializers.BooleanField(read_only=True)
    created_by_username = serializers.SerializerMethodField()

    class Meta:
        model = Item
        fields = [
            'id', 'name', 'price', 'size', 'category', 'category_name',
            'stock_quantity', 'in_stock', 'description', 'image_url',
            'created_by', 'created_by_username', 'created_at', 'updated_at',
        ]
        read_only_fields = ['created_by', 'created_at', 'updated_at']

    def get_created_by_username(self, obj):
        return obj.created_by.username if obj.created_by else None

    def validate_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError('Name must not be blank.')
        return value

    def validate_price(self, value):
        if value is None or value <= Decimal('0'):
            raise serializers.ValidationError('Price must be a positive number.')
        return value
