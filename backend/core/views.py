import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated, AllowAny
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer, TokenRefreshSerializer
from rest_framework_simplejwt.exceptions import AuthenticationFailed, InvalidToken, TokenError
from django.contrib.auth import get_user_model
from django.core.exceptions import ObjectDoesNotExist
from django.db import transaction
from django.db.models import Q
from django.shortcuts import get_object_or_404

from backend.orders.stores import get_stores
from .models import AuditLog
from .permissions import IsAdministrator
from .serializers import UserSerializer, UserCreateSerializer, AuditLogSerializer
from .utils import create_audit_log

User = get_user_model()
logger = logging.getLogger(__name__)


class CustomTokenObtainPairSerializer(TokenObtainPairSerializer):
    def validate(self, attrs):
        data = super().validate(attrs)
        # Ensure user is active
        if not self.user.is_active:
            raise AuthenticationFailed('User account is disabled.')
        data['role'] = self.user.role
        data['userId'] = self.user.pk
        return data

    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token['username'] = user.username
        token['role'] = user.role
        return token


class CustomTokenObtainPairView(TokenObtainPairView):
    serializer_class = CustomTokenObtainPairSerializer


class CustomTokenRefreshSerializer(TokenRefreshSerializer):
    """Custom token refresh serializer that handles deleted users gracefully"""
    def validate(self, attrs):
        try:
            return super().validate(attrs)
        except (InvalidToken, TokenError):
            raise InvalidToken('Token is invalid or expired.')
        except (ObjectDoesNotExist, User.DoesNotExist):
            # User referenced in token doesn't exist anymore
            raise InvalidToken('Token is invalid. User no longer exists.')


class CustomTokenRefreshView(TokenRefreshView):
    """Custom token refresh view that handles deleted users gracefully"""
    serializer_class = CustomTokenRefreshSerializer


@api_view(['POST'])
@permission_classes([AllowAny])
def register(request, account_type):
    """Register a regular user or an administrator account"""
    if account_type not in (User.ROLE_USER, User.ROLE_ADMIN):
        return Response(
            {'detail': 'Invalid registration type. Must be "user" or "admin".', 'code': 'validation_error'},
            status=status.HTTP_400_BAD_REQUEST
        )

    serializer = UserCreateSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    username = serializer.validated_data['username']
    email = serializer.validated_data['email']
    if User.objects.filter(Q(username=username) | Q(email=email)).exists():
        label = 'Admin' if account_type == User.ROLE_ADMIN else 'User'
        return Response(
            {'detail': f'{label} with this username or email already exists', 'code': 'conflict'},
            status=status.HTTP_409_CONFLICT
        )

    user = serializer.save(role=account_type)
    logger.info(f"Registered {account_type} account {user.username} (id={user.pk})")

    token = CustomTokenObtainPairSerializer.get_token(user)
    return Response({
        'user': UserSerializer(user).data,
        'role': user.role,
        'access': str(token.access_token),
        'refresh': str(token),
    }, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def user_me(request):
    """Get the current account"""
    return Response(UserSerializer(request.user).data)


# Account management (admins only)
@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAdministrator])
def user_list(request):
    """List regular user accounts"""
    users = User.objects.filter(role=User.ROLE_USER).order_by('id')
    return Response(UserSerializer(users, many=True).data)


@api_view(['DELETE'])
@permission_classes([IsAuthenticated, IsAdministrator])
def user_detail(request, pk):
    """Delete a regular user together with their orders"""
    user = get_object_or_404(User, pk=pk, role=User.ROLE_USER)
    stores = get_stores()

    with transaction.atomic():
        deleted_orders = stores.orders.delete_orders_for_owner(user.pk)
        user.delete()
    logger.info(f"Deleted {deleted_orders} orders for user {pk}.")

    create_audit_log(
        request=request,
        action='delete',
        model_name='User',
        object_id=pk,
        object_name=user.username,
        changes={'deleted_orders': deleted_orders},
    )
    return Response({'detail': 'User and associated orders deleted successfully'}, status=status.HTTP_200_OK)


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAdministrator])
def admin_list(request):
    """List administrator accounts"""
    admins = User.objects.filter(role=User.ROLE_ADMIN).order_by('id')
    return Response(UserSerializer(admins, many=True).data)


@api_view(['DELETE'])
@permission_classes([IsAuthenticated, IsAdministrator])
def admin_detail(request, pk):
    """Delete an administrator, detaching the orders and items that reference it"""
    admin_user = get_object_or_404(User, pk=pk, role=User.ROLE_ADMIN)
    if admin_user.pk == request.user.pk:
        # Self-deletion; the audit entry is then written without a user
        admin_user = request.user
    stores = get_stores()

    with transaction.atomic():
        admin_count = User.objects.filter(role=User.ROLE_ADMIN).count()
        if admin_count <= 1:
            return Response(
                {'detail': 'Cannot delete the last remaining admin account.', 'code': 'validation_error'},
                status=status.HTTP_400_BAD_REQUEST
            )
        updated_orders = stores.orders.clear_approver(admin_user.pk)
        updated_items = stores.catalog.clear_creator(admin_user.pk)
        admin_user.delete()

    logger.info(f"Unset approver for {updated_orders} orders and creator for {updated_items} items of admin {pk}.")
    create_audit_log(
        request=request,
        action='delete',
        model_name='User',
        object_id=pk,
        object_name=admin_user.username,
        changes={'updated_orders': updated_orders, 'updated_items': updated_items},
    )
    return Response(
        {'detail': 'Admin account and associated references updated/deleted successfully'},
        status=status.HTTP_200_OK
    )


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAdministrator])
def audit_log_list(request):
    """List audit log entries, newest first"""
    queryset = AuditLog.objects.select_related('user').all()
    action = request.query_params.get('action')
    model_name = request.query_params.get('model_name')
    if action:
        queryset = queryset.filter(action=action)
    if model_name:
        queryset = queryset.filter(model_name=model_name)
    return Response(AuditLogSerializer(queryset[:200], many=True).data)
