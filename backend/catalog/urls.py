from django.urls import path
from .views import category_list_create, item_list_create, item_detail

urlpatterns = [
    path('categories/', category_list_create, name='category-list'),
    path('items/', item_list_create, name='item-list'),
    path('items/<int:pk>/', item_detail, name='item-detail'),
]
