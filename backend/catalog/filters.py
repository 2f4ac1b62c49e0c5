import django_filters
from django.db.models import Q
from .models import Item


class ItemFilter(django_filters.FilterSet):
    """Filter for Item model using django-filter"""

    # Basic search - searches across name, description and category
    search = django_filters.CharFilter(method='filter_search', label='Search')

    # Direct field filters
    category = django_filters.NumberFilter(field_name='category_id', lookup_expr='exact')
    size = django_filters.ChoiceFilter(choices=Item.SIZE_CHOICES)
    min_price = django_filters.NumberFilter(field_name='price', lookup_expr='gte')
    max_price = django_filters.NumberFilter(field_name='price', lookup_expr='lte')

    # Stock status filter
    in_stock = django_filters.CharFilter(method='filter_in_stock', label='In Stock')

    class Meta:
        model = Item
        fields = ['search', 'category', 'size', 'min_price', 'max_price', 'in_stock']

    def filter_search(self, queryset, name, value):
        """Match items where every word appears in the name, description or category name"""
        if not value or not value.strip():
            return queryset

        for word in value.split():
            queryset = queryset.filter(
                Q(name__icontains=word) |
                Q(description__icontains=word) |
                Q(category__name__icontains=word)
            )
        return queryset

    def filter_in_stock(self, queryset, name, value):
        if value is None or value == '':
            return queryset
        if value.lower() in ('true', '1', 'yes'):
            return queryset.filter(stock_quantity__gt=0)
        if value.lower() in ('false', '0', 'no'):
            return queryset.filter(stock_quantity=0)
        return queryset
