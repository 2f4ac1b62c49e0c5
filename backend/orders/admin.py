from django.contrib import admin
from .models import Order, OrderItem


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    fields = ['item', 'name', 'price', 'quantity']
    # Snapshots are immutable once the order exists
    readonly_fields = ['item', 'name', 'price', 'quantity']
    can_delete = False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ['id', 'owner', 'order_date', 'get_total', 'status', 'approved_by', 'approved_at']
    list_filter = ['status', 'order_date']
    search_fields = ['owner__username', 'owner__email']
    ordering = ['-order_date']
    inlines = [OrderItemInline]
    readonly_fields = ['owner', 'order_date', 'total_amount', 'approved_by', 'approved_at', 'created_at', 'updated_at']

    def get_total(self, obj):
        return f"{obj.total_amount:.2f}"
    get_total.short_description = 'Total'
