"""
Django admin configuration for registrations app.
"""
from django.contrib import admin
import csv
from django.http import HttpResponse
from .models import Registration, Payment, MissionRegistration


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    fields = ['payment_id', 'status', 'amount', 'confirmation_code', 'verified_at', 'created_at']
    readonly_fields = fields
    can_delete = False
    show_change_link = True


@admin.register(Registration)
class RegistrationAdmin(admin.ModelAdmin):
    """
    Admin interface for managing registrations.
    Includes filtering, search, and CSV export functionality.
    """
    list_display = [
        'registration_id', 'first_name', 'last_name', 'email', 'phone',
        'unit', 'ministry', 'role', 'payment_verified', 'created_at'
    ]
    list_filter = ['payment_verified', 'unit', 'ministry', 'role', 'gender', 'created_at']
    search_fields = ['registration_id', 'first_name', 'last_name', 'email', 'phone']
    readonly_fields = ['id', 'registration_id', 'password_hash', 'created_at', 'updated_at']
    inlines = [PaymentInline]
    fieldsets = (
        ('Member Information', {
            'fields': ('registration_id', 'first_name', 'last_name', 'email', 'phone',
                       'date_of_birth', 'gender', 'occupation')
        }),
        ('Address', {
            'fields': ('address', 'city')
        }),
        ('Emergency Contact', {
            'fields': ('emergency_contact', 'emergency_phone'),
            'classes': ('collapse',)
        }),
        ('Ministry', {
            'fields': ('unit', 'ministry', 'role', 'testimony', 'profile_image')
        }),
        ('Status', {
            'fields': ('payment_verified', 'password_hash', 'id', 'created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    actions = ['export_as_csv']

    def export_as_csv(self, request, queryset):
        """
        Export selected registrations as CSV.
        """
        field_names = [
            'registration_id', 'first_name', 'last_name', 'email', 'phone',
            'date_of_birth', 'gender', 'address', 'city', 'occupation',
            'emergency_contact', 'emergency_phone', 'unit', 'ministry', 'role',
            'payment_verified', 'created_at'
        ]

        response = HttpResponse(content_type='text/csv')
        response['Content-Disposition'] = 'attachment; filename=registrations.csv'
        writer = csv.writer(response)

        writer.writerow(field_names)
        for obj in queryset:
            writer.writerow([getattr(obj, field) for field in field_names])

        return response

    export_as_csv.short_description = "Export selected registrations as CSV"


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    """
    Admin interface for viewing payments (STK pushes and direct code submissions).
    """
    list_display = ['created_at', 'payment_id', 'registration', 'status', 'amount', 'currency',
                    'confirmation_code', 'external_ref']
    list_filter = ['status', 'currency', 'created_at']
    search_fields = ['payment_id', 'external_ref', 'merchant_ref', 'confirmation_code',
                     'registration__registration_id', 'registration__email']
    readonly_fields = ['id', 'attached_data', 'created_at', 'updated_at']
    date_hierarchy = 'created_at'

    fieldsets = (
        ('Payment Details', {
            'fields': ('payment_id', 'registration', 'amount', 'currency', 'phone_number', 'status')
        }),
        ('M-Pesa', {
            'fields': ('external_ref', 'merchant_ref', 'confirmation_code', 'transaction_date',
                       'result_desc', 'verified_at')
        }),
        ('Raw Data', {
            'fields': ('attached_data', 'id', 'created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )


@admin.register(MissionRegistration)
class MissionRegistrationAdmin(admin.ModelAdmin):
    """
    Mission sign-ups are immutable once created.
    """
    list_display = ['official_name', 'registration', 'ministry', 'arrival_date', 'arrival_time',
                    'arrival_period', 'created_at']
    list_filter = ['arrival_period', 'ministry', 'created_at']
    search_fields = ['official_name', 'email', 'registration__registration_id', 'contacts']

    def get_readonly_fields(self, request, obj=None):
        if obj is not None:
            return [f.name for f in self.model._meta.fields]
        return []
