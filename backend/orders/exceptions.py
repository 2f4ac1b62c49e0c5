"""
Error taxonomy of the order workflow.

Every error is a DRF ``APIException`` so views can let them propagate and
DRF renders the status code, while ``default_code`` is the stable category
exposed as ``code`` in the response body.
"""
from rest_framework import status
from rest_framework.exceptions import APIException


class OrderWorkflowError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Order request failed.'
    default_code = 'order_error'
    extra = None


class ValidationError(OrderWorkflowError):
    """Malformed or missing request fields"""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid order request.'
    default_code = 'validation_error'


class AuthorizationError(OrderWorkflowError):
    """Caller holds the wrong role for the operation"""
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'Access denied.'
    default_code = 'authorization_error'


class NotFoundError(OrderWorkflowError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Not found.'
    default_code = 'not_found'


class ItemNotFound(NotFoundError):
    default_code = 'item_not_found'

    def __init__(self, item_id):
        self.item_id = item_id
        self.extra = {'itemId': item_id}
        super().__init__(f'Item with ID {item_id} not found.')


class OrderNotFound(NotFoundError):
    default_code = 'order_not_found'

    def __init__(self, order_id):
        self.order_id = order_id
        self.extra = {'orderId': order_id}
        super().__init__(f'Order with ID {order_id} not found.')


class InsufficientStock(OrderWorkflowError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = 'insufficient_stock'

    def __init__(self, item_id, item_name, available, requested):
        self.item_id = item_id
        self.item_name = item_name
        self.available = available
        self.requested = requested
        self.extra = {'itemId': item_id, 'available': available, 'requested': requested}
        super().__init__(f'Insufficient stock for item: {item_name}. Available: {available}')


class PersistenceError(OrderWorkflowError):
    """Underlying store failure; never retried by the engines"""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'The order could not be saved. Please try again later.'
    default_code = 'persistence_error'
