import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from django.db.models import Count
from django.shortcuts import get_object_or_404
from django_filters.utils import translate_validation

from backend.core.permissions import IsAdministratorOrReadOnly
from backend.core.utils import create_audit_log
from .filters import ItemFilter
from .models import Category, Item
from .serializers import CategorySerializer, ItemSerializer

logger = logging.getLogger(__name__)


def _category_missing(data):
    """Return a 404 response when the payload names a category that doesn't exist"""
    category_id = data.get('category') if hasattr(data, 'get') else None
    if category_id in (None, ''):
        return None
    try:
        exists = Category.objects.filter(pk=int(category_id)).exists()
    except (TypeError, ValueError):
        # Left to the serializer to report as a validation error
        return None
    if exists:
        return None
    return Response({'detail': 'Category not found.', 'code': 'not_found'}, status=status.HTTP_404_NOT_FOUND)


# Category views
@api_view(['GET', 'POST'])
@permission_classes([IsAdministratorOrReadOnly])
def category_list_create(request):
    """List all categories or create a new category"""
    if request.method == 'GET':
        categories = Category.objects.annotate(item_count=Count('items')).all()
        serializer = CategorySerializer(categories, many=True)
        return Response(serializer.data)

    serializer = CategorySerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    name = serializer.validated_data['name'].strip()
    if Category.objects.filter(name__iexact=name).exists():
        return Response(
            {'detail': 'Category name already exists', 'code': 'conflict'},
            status=status.HTTP_409_CONFLICT
        )

    category = serializer.save(name=name)
    create_audit_log(
        request=request,
        action='create',
        model_name='Category',
        object_id=category.id,
        object_name=category.name,
    )
    return Response(CategorySerializer(category).data, status=status.HTTP_201_CREATED)


# Item views
@api_view(['GET', 'POST'])
@permission_classes([IsAdministratorOrReadOnly])
def item_list_create(request):
    """List items or create a new item"""
    if request.method == 'GET':
        queryset = Item.objects.select_related('category', 'created_by').all()

        # Use django-filter for filtering
        filterset = ItemFilter(request.query_params, queryset=queryset)
        if not filterset.is_valid():
            raise translate_validation(filterset.errors)
        serializer = ItemSerializer(filterset.qs, many=True)
        return Response(serializer.data)

    missing = _category_missing(request.data)
    if missing is not None:
        return missing

    serializer = ItemSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    item = serializer.save(created_by=request.user)
    logger.info(f"Item {item.id} created by admin {request.user.pk}: stock={item.stock_quantity}")
    create_audit_log(
        request=request,
        action='create',
        model_name='Item',
        object_id=item.id,
        object_name=item.name,
        changes={'price': str(item.price), 'size': item.size, 'stock_quantity': item.stock_quantity},
    )
    return Response(ItemSerializer(item).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAdministratorOrReadOnly])
def item_detail(request, pk):
    """Retrieve, update or delete an item"""
    item = get_object_or_404(Item.objects.select_related('category', 'created_by'), pk=pk)

    if request.method == 'GET':
        return Response(ItemSerializer(item).data)

    if request.method == 'DELETE':
        item_name = item.name
        item.delete()
        # Historical orders keep their line snapshots of this item
        create_audit_log(
            request=request,
            action='delete',
            model_name='Item',
            object_id=pk,
            object_name=item_name,
        )
        return Response({'detail': 'Item deleted successfully'}, status=status.HTTP_200_OK)

    missing = _category_missing(request.data)
    if missing is not None:
        return missing

    # Both PUT and PATCH accept a subset of fields
    serializer = ItemSerializer(item, data=request.data, partial=True)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    if not serializer.validated_data:
        return Response(
            {'detail': 'No fields provided for update.', 'code': 'validation_error'},
            status=status.HTTP_400_BAD_REQUEST
        )

    changes = {
        field: str(value) if not isinstance(value, (int, str)) else value
        for field, value in serializer.validated_data.items()
    }
    item = serializer.save()
    create_audit_log(
        request=request,
        action='update',
        model_name='Item',
        object_id=item.id,
        object_name=item.name,
        changes=changes,
    )
    return Response(ItemSerializer(item).data)
