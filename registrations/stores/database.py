"""
Django ORM store. Uniqueness is enforced by the database constraints on
registration_id, Lower(email), confirmation_code and the one-to-one mission link.
"""
import logging

from django.db import IntegrityError, transaction

from ..exceptions import AlreadyRegistered, CodeAlreadyUsed, DuplicateEmail
from ..models import MissionRegistration, Payment, Registration
from ..records import MissionRegistrationRecord, PaymentRecord, RegistrationRecord
from .base import IdentifierTaken, RegistrationStore

logger = logging.getLogger(__name__)

REGISTRATION_FIELDS = [
    'registration_id', 'first_name', 'last_name', 'email', 'phone', 'date_of_birth',
    'gender', 'address', 'city', 'occupation', 'emergency_contact', 'emergency_phone',
    'ministry', 'unit', 'role', 'testimony', 'profile_image', 'password_hash',
    'payment_verified',
]

PAYMENT_FIELDS = [
    'payment_id', 'registration_id', 'external_ref', 'merchant_ref', 'amount', 'currency',
    'phone_number', 'status', 'confirmation_code', 'transaction_date', 'result_desc',
    'attached_data', 'verified_at',
]

MISSION_FIELDS = [
    'mission_id', 'registration_id', 'official_name', 'email', 'area_of_residence',
    'contacts', 'ministry', 'health_history', 'arrival_date', 'arrival_time',
    'arrival_period',
]


def _to_record(instance, record_class, fields):
    values = {name: getattr(instance, name) for name in fields}
    values['created_at'] = instance.created_at
    values['updated_at'] = instance.updated_at
    return record_class(**values)


def _registration_record(instance):
    return _to_record(instance, RegistrationRecord, REGISTRATION_FIELDS)


def _payment_record(instance):
    record = _to_record(instance, PaymentRecord, PAYMENT_FIELDS)
    record.attached_data = dict(record.attached_data or {})
    return record


def _mission_record(instance):
    return _to_record(instance, MissionRegistrationRecord, MISSION_FIELDS)


def _locked(queryset, for_update):
    # select_for_update is only legal inside a transaction
    if for_update and transaction.get_connection().in_atomic_block:
        return queryset.select_for_update()
    return queryset


class DatabaseStore(RegistrationStore):
    name = 'database'

    def atomic(self):
        return transaction.atomic()

    # Registrations

    def registration_ids_with_prefix(self, prefix):
        qs = _locked(Registration.objects.filter(registration_id__startswith=prefix), True)
        return list(qs.values_list('registration_id', flat=True))

    def _email_taken(self, email, exclude_id=None):
        qs = Registration.objects.filter(email__iexact=(email or '').strip())
        if exclude_id:
            qs = qs.exclude(registration_id=exclude_id)
        return qs.exists()

    def insert_registration(self, record):
        if self._email_taken(record.email):
            raise DuplicateEmail(record.email)
        values = {name: getattr(record, name) for name in REGISTRATION_FIELDS}
        try:
            with transaction.atomic():
                instance = Registration.objects.create(**values)
        except IntegrityError:
            # Lost a race: either the email or the identifier was taken meanwhile
            if self._email_taken(record.email):
                raise DuplicateEmail(record.email)
            raise IdentifierTaken(record.registration_id)
        return _registration_record(instance)

    def get_registration(self, registration_id, for_update=False):
        qs = _locked(Registration.objects.filter(registration_id=registration_id), for_update)
        instance = qs.first()
        return _registration_record(instance) if instance else None

    def get_registration_by_email(self, email):
        instance = Registration.objects.filter(email__iexact=(email or '').strip()).first()
        return _registration_record(instance) if instance else None

    def update_registration(self, record):
        if self._email_taken(record.email, exclude_id=record.registration_id):
            raise DuplicateEmail(record.email)
        instance = Registration.objects.get(registration_id=record.registration_id)
        for name in REGISTRATION_FIELDS:
            setattr(instance, name, getattr(record, name))
        try:
            with transaction.atomic():
                instance.save()
        except IntegrityError:
            raise DuplicateEmail(record.email)
        return _registration_record(instance)

    def delete_registration(self, registration_id):
        deleted, _ = Registration.objects.filter(registration_id=registration_id).delete()
        return deleted > 0

    def list_registrations(self):
        qs = Registration.objects.order_by('-created_at', '-registration_id')
        return [_registration_record(r) for r in qs]

    # Payments

    def insert_payment(self, record):
        values = {name: getattr(record, name) for name in PAYMENT_FIELDS}
        try:
            with transaction.atomic():
                instance = Payment.objects.create(**values)
        except IntegrityError:
            if record.confirmation_code:
                raise CodeAlreadyUsed(record.confirmation_code)
            raise
        return _payment_record(instance)

    def update_payment(self, record):
        instance = Payment.objects.get(payment_id=record.payment_id)
        for name in PAYMENT_FIELDS:
            setattr(instance, name, getattr(record, name))
        try:
            with transaction.atomic():
                instance.save()
        except IntegrityError:
            if record.confirmation_code:
                raise CodeAlreadyUsed(record.confirmation_code)
            raise
        return _payment_record(instance)

    def get_payment(self, payment_id, for_update=False):
        instance = _locked(Payment.objects.filter(payment_id=payment_id), for_update).first()
        return _payment_record(instance) if instance else None

    def get_payment_by_external_ref(self, external_ref, for_update=False):
        if not external_ref:
            return None
        qs = Payment.objects.filter(external_ref=external_ref).order_by('-created_at', '-id')
        instance = _locked(qs, for_update).first()
        return _payment_record(instance) if instance else None

    def get_payment_by_code(self, confirmation_code):
        code = (confirmation_code or '').upper()
        if not code:
            return None
        instance = Payment.objects.filter(confirmation_code=code).first()
        return _payment_record(instance) if instance else None

    def list_payments(self, registration_id=None, status=None):
        qs = Payment.objects.all()
        if registration_id is not None:
            qs = qs.filter(registration_id=registration_id)
        if status is not None:
            qs = qs.filter(status=status)
        return [_payment_record(p) for p in qs.order_by('-created_at', '-id')]

    # Mission registrations

    def insert_mission_registration(self, record):
        if MissionRegistration.objects.filter(registration_id=record.registration_id).exists():
            raise AlreadyRegistered(record.registration_id)
        values = {name: getattr(record, name) for name in MISSION_FIELDS}
        try:
            with transaction.atomic():
                instance = MissionRegistration.objects.create(**values)
        except IntegrityError:
            raise AlreadyRegistered(record.registration_id)
        return _mission_record(instance)

    def get_mission_registration(self, mission_id):
        instance = MissionRegistration.objects.filter(mission_id=mission_id).first()
        return _mission_record(instance) if instance else None

    def get_mission_registration_for(self, registration_id):
        instance = MissionRegistration.objects.filter(registration_id=registration_id).first()
        return _mission_record(instance) if instance else None

    def list_mission_registrations(self):
        qs = MissionRegistration.objects.order_by('-created_at', '-id')
        return [_mission_record(m) for m in qs]

    def clear(self):
        with transaction.atomic():
            MissionRegistration.objects.all().delete()
            Payment.objects.all().delete()
            Registration.objects.all().delete()
        logger.info("Cleared all registrations, payments and mission registrations")
