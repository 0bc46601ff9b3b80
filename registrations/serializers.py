"""
Output serializers. Records are rendered with the camelCase keys the
registration front end uses.
"""
from rest_framework import serializers


class RegistrationSerializer(serializers.Serializer):
    id = serializers.CharField(source='registration_id')
    registrationId = serializers.CharField(source='registration_id')
    firstName = serializers.CharField(source='first_name')
    lastName = serializers.CharField(source='last_name')
    email = serializers.EmailField()
    phone = serializers.CharField()
    dateOfBirth = serializers.DateField(source='date_of_birth', allow_null=True)
    gender = serializers.CharField()
    address = serializers.CharField()
    city = serializers.CharField()
    occupation = serializers.CharField(allow_blank=True)
    emergencyContact = serializers.CharField(source='emergency_contact')
    emergencyPhone = serializers.CharField(source='emergency_phone')
    testimony = serializers.CharField(allow_blank=True)
    ministry = serializers.CharField()
    rocimUnit = serializers.CharField(source='unit')
    role = serializers.CharField()
    profileImage = serializers.CharField(source='profile_image', allow_null=True)
    paymentVerified = serializers.BooleanField(source='payment_verified')
    hasPassword = serializers.BooleanField(source='has_password')
    createdAt = serializers.DateTimeField(source='created_at')
    updatedAt = serializers.DateTimeField(source='updated_at')


class PaymentSerializer(serializers.Serializer):
    id = serializers.CharField(source='payment_id')
    registrationId = serializers.CharField(source='registration_id', allow_null=True)
    checkoutRequestId = serializers.CharField(source='external_ref', allow_null=True)
    merchantRequestId = serializers.CharField(source='merchant_ref', allow_null=True)
    amount = serializers.DecimalField(max_digits=10, decimal_places=2, coerce_to_string=False)
    currency = serializers.CharField()
    phoneNumber = serializers.CharField(source='phone_number')
    status = serializers.CharField()
    mpesaCode = serializers.CharField(source='confirmation_code', allow_null=True)
    transactionDate = serializers.CharField(source='transaction_date', allow_null=True)
    resultDesc = serializers.CharField(source='result_desc', allow_null=True)
    verifiedAt = serializers.DateTimeField(source='verified_at', allow_null=True)
    createdAt = serializers.DateTimeField(source='created_at')


class MissionRegistrationSerializer(serializers.Serializer):
    id = serializers.CharField(source='mission_id')
    registrationId = serializers.CharField(source='registration_id')
    officialName = serializers.CharField(source='official_name')
    email = serializers.CharField(allow_blank=True)
    areaOfResidence = serializers.CharField(source='area_of_residence')
    contacts = serializers.CharField()
    ministry = serializers.CharField()
    healthHistory = serializers.CharField(source='health_history')
    arrivalDate = serializers.CharField(source='arrival_date')
    arrivalTime = serializers.CharField(source='arrival_time')
    arrivalPeriod = serializers.CharField(source='arrival_period')
    createdAt = serializers.DateTimeField(source='created_at')


def registration_with_payment(registration, payment):
    """A registration with its payment (or None) under the payment key."""
    data = RegistrationSerializer(registration).data
    data['payment'] = PaymentSerializer(payment).data if payment is not None else None
    return data
