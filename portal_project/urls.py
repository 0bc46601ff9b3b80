"""
URL configuration for portal_project project.
"""
from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    path('admin/', admin.site.urls),  # Django's default admin
    path('api/', include('registrations.api_urls')),
]
