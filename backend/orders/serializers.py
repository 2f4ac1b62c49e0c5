from rest_framework import serializers


class LineItemSerializer(serializers.Serializer):
    """Read-only view of a ``LineItem`` snapshot"""
    itemId = serializers.IntegerField(source='item_id')
    name = serializers.CharField()
    price = serializers.DecimalField(max_digits=10, decimal_places=2)
    quantity = serializers.IntegerField()


class OrderSerializer(serializers.Serializer):
    """Read-only view of an ``OrderRecord``"""
    orderId = serializers.IntegerField(source='id')
    ownerId = serializers.IntegerField(source='owner_id', allow_null=True)
    orderDate = serializers.DateTimeField(source='order_date')
    totalAmount = serializers.DecimalField(source='total_amount', max_digits=12, decimal_places=2)
    status = serializers.CharField()
    approvedBy = serializers.IntegerField(source='approved_by_id', allow_null=True)
    approvedAt = serializers.DateTimeField(source='approved_at', allow_null=True)
    items = LineItemSerializer(many=True)
