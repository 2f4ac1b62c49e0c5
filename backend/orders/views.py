from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from backend.core.utils import create_audit_log
from .domain import Principal
from .serializers import OrderSerializer
from .services import get_order_services


def _payload_value(request, key):
    data = request.data
    if hasattr(data, 'get'):
        return data.get(key)
    return None


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def order_list_create(request):
    """List orders visible to the caller or place a new order"""
    services = get_order_services()
    principal = Principal.from_user(request.user)

    if request.method == 'GET':
        orders = services.retrieval.list_orders(principal, status=request.query_params.get('status'))
        return Response(OrderSerializer(orders, many=True).data)

    # POST - role and payload are validated by the placement engine
    order = services.placement.place_order(principal, _payload_value(request, 'items'))

    create_audit_log(
        request=request,
        action='order_place',
        model_name='Order',
        object_id=order.id,
        object_name=f'Order-{order.id}',
        changes={
            'total_amount': str(order.total_amount),
            'items': [
                {
                    'item_id': line.item_id,
                    'name': line.name,
                    'price': str(line.price),
                    'quantity': line.quantity,
                }
                for line in order.items
            ],
        },
    )
    return Response(OrderSerializer(order).data, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def order_detail(request, pk):
    """Retrieve a single order"""
    services = get_order_services()
    order = services.retrieval.get_order(Principal.from_user(request.user), pk)
    return Response(OrderSerializer(order).data)


@api_view(['PUT', 'PATCH'])
@permission_classes([IsAuthenticated])
def order_status_update(request, pk):
    """Approve or disapprove an order (admins only)"""
    services = get_order_services()
    new_status = _payload_value(request, 'status')
    order = services.approval.set_status(Principal.from_user(request.user), pk, new_status)

    create_audit_log(
        request=request,
        action='order_status',
        model_name='Order',
        object_id=order.id,
        object_name=f'Order-{order.id}',
        changes={
            'status': order.status,
            'approved_by': order.approved_by_id,
            'approved_at': order.approved_at.isoformat() if order.approved_at else None,
        },
    )
    return Response(OrderSerializer(order).data)
