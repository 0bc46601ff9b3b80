"""
Database models for member registrations, M-Pesa payments and mission sign-ups.
"""
import uuid
from django.db import models
from django.db.models.functions import Lower

from .records import ARRIVAL_PERIOD_CHOICES, PaymentStatus


class Registration(models.Model):
    """
    Stores a member registration. Created before payment; flagged once payment is verified.
    """
    # Primary identifier
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Registration ID: ORG/{unit_code}/{year}/{sequence} e.g. ORG/CAM/2025/003
    registration_id = models.CharField(
        max_length=50, unique=True,
        help_text="Generated ID e.g. ORG/CAM/2025/003 (unit + year + 3-digit sequence)"
    )

    # Personal information
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    email = models.EmailField()
    phone = models.CharField(max_length=20)
    date_of_birth = models.DateField(null=True, blank=True)
    gender = models.CharField(max_length=20)
    address = models.CharField(max_length=255)
    city = models.CharField(max_length=100)
    occupation = models.CharField(max_length=100, blank=True, default='')
    emergency_contact = models.CharField(max_length=200)
    emergency_phone = models.CharField(max_length=20)

    # Organizational classification
    unit = models.CharField(max_length=100, help_text="Unit slug or name, e.g. cambridge-unit")
    ministry = models.CharField(max_length=100)
    role = models.CharField(max_length=100)

    # Optional fields
    testimony = models.TextField(blank=True, default='')
    profile_image = models.CharField(max_length=500, blank=True, null=True, help_text="Image reference")

    # Credentials (unset until the member configures a password)
    password_hash = models.CharField(max_length=128, blank=True, null=True)

    payment_verified = models.BooleanField(default=False)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        verbose_name = 'Registration'
        verbose_name_plural = 'Registrations'
        constraints = [
            models.UniqueConstraint(Lower('email'), name='registration_email_ci_unique'),
        ]

    def __str__(self):
        return f"{self.registration_id} - {self.first_name} {self.last_name}"


class Payment(models.Model):
    """
    A payment attempt: either a direct M-Pesa code submission (verified immediately)
    or an STK push awaiting the provider callback (pending).
    """
    id = models.BigAutoField(primary_key=True)
    payment_id = models.CharField(max_length=40, unique=True)
    registration = models.ForeignKey(
        Registration, to_field='registration_id', on_delete=models.CASCADE,
        null=True, blank=True, related_name='payments'
    )

    # Provider references (checkout/invoice id is the callback join key)
    external_ref = models.CharField(max_length=100, blank=True, null=True, db_index=True)
    merchant_ref = models.CharField(max_length=100, blank=True, null=True)

    amount = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=3, default='KES')
    phone_number = models.CharField(max_length=20, blank=True, default='')
    status = models.CharField(max_length=10, choices=PaymentStatus.CHOICES, default=PaymentStatus.PENDING, db_index=True)

    # M-Pesa confirmation code; unique once accepted
    confirmation_code = models.CharField(max_length=30, unique=True, blank=True, null=True)
    transaction_date = models.CharField(max_length=50, blank=True, null=True)
    result_desc = models.CharField(max_length=255, blank=True, null=True)
    attached_data = models.JSONField(default=dict, blank=True, help_text="Registration draft sent with the STK push")
    verified_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        verbose_name = 'Payment'
        verbose_name_plural = 'Payments'

    def __str__(self):
        return f"{self.payment_id} - {self.get_status_display()} - {self.currency} {self.amount}"


class MissionRegistration(models.Model):
    """
    A member's sign-up for the mission event. At most one per registration.
    """
    id = models.BigAutoField(primary_key=True)
    mission_id = models.CharField(max_length=40, unique=True)
    registration = models.OneToOneField(
        Registration, to_field='registration_id', on_delete=models.CASCADE,
        related_name='mission_registration'
    )

    # Denormalized contact/ministry details
    official_name = models.CharField(max_length=200)
    email = models.EmailField(blank=True, default='')
    area_of_residence = models.CharField(max_length=200)
    contacts = models.CharField(max_length=100)
    ministry = models.CharField(max_length=100)
    health_history = models.TextField()

    # Arrival
    arrival_date = models.CharField(max_length=20)
    arrival_time = models.CharField(max_length=20)
    arrival_period = models.CharField(max_length=2, choices=ARRIVAL_PERIOD_CHOICES)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        verbose_name = 'Mission Registration'
        verbose_name_plural = 'Mission Registrations'

    def __str__(self):
        return f"{self.official_name} ({self.registration_id})"
