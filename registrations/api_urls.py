"""
API URL patterns for registrations app.
"""
from django.urls import path
from . import views

urlpatterns = [
    path('registration/create/', views.create_registration, name='create_registration'),
    path('registration/complete/', views.complete_registration, name='complete_registration'),
    path('payment/verify/', views.verify_payment, name='verify_payment'),
    path('mpesa/stk-push/', views.stk_push, name='mpesa_stk_push'),
    path('mpesa/callback/', views.mpesa_callback, name='mpesa_callback'),
    path('mpesa/query/', views.query_payment, name='mpesa_query'),
    path('mission/register/', views.register_mission, name='register_mission'),
    path('auth/login/', views.login, name='login'),
    path('auth/setup-password/', views.setup_password, name='setup_password'),
    path('user/profile/', views.user_profile, name='user_profile'),
    path('admin/dashboard/', views.admin_dashboard, name='admin_dashboard'),
    path('admin/payments/', views.admin_payments, name='admin_payments'),
    path('admin/users/<path:registration_id>/', views.admin_delete_user, name='admin_delete_user'),
    path('database/contents/', views.database_contents, name='database_contents'),
]
