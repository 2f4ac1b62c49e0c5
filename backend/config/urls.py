"""
URL configuration for backend project.

All API routes are mounted under /api/v1/.
"""
from django.contrib import admin
from django.urls import path, include

admin.site.site_header = "Inventory Orders Admin Panel"
admin.site.site_title = "Inventory Orders Admin Portal"
admin.site.index_title = "Welcome to the Inventory Orders Admin Portal"

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/v1/', include('backend.core.urls')),
    path('api/v1/', include('backend.catalog.urls')),
    path('api/v1/', include('backend.orders.urls')),
]
