"""
Registration and mission sign-up workflows, plus the Portal bundle that wires
the store, allocator, ledger and payment gateway together from settings.
"""
import logging
from collections import Counter
from datetime import date

from django.conf import settings
from django.contrib.auth.hashers import check_password, make_password
from django.db import DatabaseError, OperationalError
from django.utils.dateparse import parse_date

from .allocator import IdentifierAllocator
from .exceptions import (
    AllocationFailed,
    AuthenticationFailed,
    InvalidFormat,
    MissingField,
    RegistrationNotFound,
    ValidationError,
)
from .gateway import IntaSendClient, ReconciliationGateway
from .ledger import PaymentLedger
from .records import MissionRegistrationRecord, RegistrationRecord
from .stores import IdentifierTaken, build_store
from .utils import UNKNOWN_UNIT_CODE, resolve_unit_code

logger = logging.getLogger(__name__)


# Request field -> record attribute, in the order they are validated
REGISTRATION_REQUIRED_FIELDS = [
    ('firstName', 'first_name'),
    ('lastName', 'last_name'),
    ('email', 'email'),
    ('phone', 'phone'),
    ('dateOfBirth', 'date_of_birth'),
    ('gender', 'gender'),
    ('address', 'address'),
    ('city', 'city'),
    ('emergencyContact', 'emergency_contact'),
    ('emergencyPhone', 'emergency_phone'),
    ('ministry', 'ministry'),
    ('rocimUnit', 'unit'),
    ('role', 'role'),
]

REGISTRATION_OPTIONAL_FIELDS = [
    ('occupation', 'occupation'),
    ('testimony', 'testimony'),
    ('profileImage', 'profile_image'),
]

# Fields a member may change on their profile
PROFILE_EDITABLE_FIELDS = {
    'firstName': 'first_name',
    'lastName': 'last_name',
    'email': 'email',
    'phone': 'phone',
    'address': 'address',
    'city': 'city',
    'occupation': 'occupation',
    'emergencyContact': 'emergency_contact',
    'emergencyPhone': 'emergency_phone',
    'testimony': 'testimony',
    'ministry': 'ministry',
    'rocimUnit': 'unit',
    'profileImage': 'profile_image',
    'gender': 'gender',
    'dateOfBirth': 'date_of_birth',
}

MISSION_REQUIRED_FIELDS = [
    ('registrationId', 'registration_id'),
    ('officialName', 'official_name'),
    ('areaOfResidence', 'area_of_residence'),
    ('contacts', 'contacts'),
    ('ministry', 'ministry'),
    ('healthHistory', 'health_history'),
    ('arrivalDate', 'arrival_date'),
    ('arrivalTime', 'arrival_time'),
    ('arrivalPeriod', 'arrival_period'),
]

MIN_PASSWORD_LENGTH = 6


def _is_blank(value):
    return value is None or (isinstance(value, str) and not value.strip())


def _clean(value):
    return value.strip() if isinstance(value, str) else value


def _field_value(data, key):
    # Registration forms send the unit as rocimUnit; accept plain unit too
    if key == 'rocimUnit' and _is_blank(data.get(key)):
        return data.get('unit')
    return data.get(key)


def parse_birth_date(value):
    if isinstance(value, date):
        return value
    try:
        parsed = parse_date(str(value).strip()[:10])
    except ValueError:
        parsed = None
    if parsed is None:
        raise InvalidFormat('dateOfBirth must be a valid date (YYYY-MM-DD)', field='dateOfBirth')
    return parsed


class RegistrationService:
    """
    Creates, reads, updates and deletes member registrations.
    """

    def __init__(self, store, allocator, max_retries=5):
        self.store = store
        self.allocator = allocator
        self.max_retries = max_retries

    @staticmethod
    def has_required_fields(data):
        """True when a registration draft holds every required field."""
        if not isinstance(data, dict):
            return False
        return all(not _is_blank(_field_value(data, key)) for key, _ in REGISTRATION_REQUIRED_FIELDS)

    def build_record(self, data):
        for key, _ in REGISTRATION_REQUIRED_FIELDS:
            if _is_blank(_field_value(data, key)):
                raise MissingField(key)

        record = RegistrationRecord()
        for key, attr in REGISTRATION_REQUIRED_FIELDS + REGISTRATION_OPTIONAL_FIELDS:
            value = _field_value(data, key)
            if value is not None:
                setattr(record, attr, _clean(value))
        record.date_of_birth = parse_birth_date(data.get('dateOfBirth'))
        record.occupation = record.occupation or ''
        record.testimony = record.testimony or ''
        record.profile_image = record.profile_image or None
        return record

    def create(self, data, payment_verified=False):
        """
        Validate a registration draft and store it under a freshly allocated ID.
        Allocation and insert run in one atomic section; a lost race for the
        same ID or a busy database is retried up to max_retries times.
        """
        record = self.build_record(data)
        record.payment_verified = payment_verified
        unit_code = resolve_unit_code(record.unit) or UNKNOWN_UNIT_CODE

        for attempt in range(1, self.max_retries + 1):
            try:
                with self.store.atomic():
                    record.registration_id = self.allocator.allocate(record.unit)
                    created = self.store.insert_registration(record)
            except IdentifierTaken as e:
                logger.warning(f"Registration ID {e.registration_id} already taken (attempt {attempt}/{self.max_retries})")
                continue
            except OperationalError as e:
                logger.warning(f"Database busy allocating under {unit_code}: {e} (attempt {attempt}/{self.max_retries})")
                continue
            except DatabaseError as e:
                logger.error(f"Storing registration under {unit_code} failed: {e}")
                raise AllocationFailed(unit_code) from e
            logger.info(f"Registration {created.registration_id} created for {created.email}")
            return created

        logger.error(f"Gave up allocating a registration ID for unit {unit_code} after {self.max_retries} attempts")
        raise AllocationFailed(unit_code)

    def get(self, registration_id):
        registration = self.store.get_registration(registration_id)
        if registration is None:
            raise RegistrationNotFound(registration_id)
        return registration

    def get_by_email(self, email):
        return self.store.get_registration_by_email(email)

    def update(self, registration_id, updates):
        """
        Apply a partial profile update. Only editable fields are considered;
        anything else in the payload is ignored.
        """
        if not isinstance(updates, dict):
            raise ValidationError('Updates payload is required', field='updates')
        changes = {key: value for key, value in updates.items() if key in PROFILE_EDITABLE_FIELDS}
        if not changes:
            raise ValidationError('No valid fields to update', field='updates')

        required = {key for key, _ in REGISTRATION_REQUIRED_FIELDS}
        with self.store.atomic():
            registration = self.store.get_registration(registration_id, for_update=True)
            if registration is None:
                raise RegistrationNotFound(registration_id)
            for key, value in changes.items():
                if key in required and _is_blank(value):
                    raise MissingField(key)
                attr = PROFILE_EDITABLE_FIELDS[key]
                if attr == 'date_of_birth':
                    value = parse_birth_date(value)
                elif attr in ('testimony', 'occupation'):
                    value = _clean(value) or ''
                elif attr == 'profile_image':
                    value = _clean(value) or None
                else:
                    value = _clean(value)
                setattr(registration, attr, value)
            updated = self.store.update_registration(registration)
        logger.info(f"Registration {registration_id} updated ({', '.join(sorted(changes))})")
        return updated

    def delete(self, registration_id):
        """Delete a registration together with its payments and mission sign-up."""
        if not self.store.delete_registration(registration_id):
            raise RegistrationNotFound(registration_id)
        logger.info(f"Registration {registration_id} deleted")

    def list(self):
        return self.store.list_registrations()

    # Credentials

    def set_password(self, registration_id, password):
        if not registration_id:
            raise MissingField('registrationId')
        if _is_blank(password):
            raise MissingField('password')
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f'Password must be at least {MIN_PASSWORD_LENGTH} characters', field='password'
            )
        with self.store.atomic():
            registration = self.store.get_registration(registration_id, for_update=True)
            if registration is None:
                raise RegistrationNotFound(registration_id)
            registration.password_hash = make_password(password)
            self.store.update_registration(registration)
        logger.info(f"Password set for {registration_id}")

    def authenticate(self, registration_id, password):
        if not registration_id:
            raise MissingField('registrationId')
        if _is_blank(password):
            raise MissingField('password')
        registration = self.store.get_registration(registration_id)
        if registration is None:
            raise AuthenticationFailed('Invalid Registration ID or password')
        if not registration.has_password:
            raise AuthenticationFailed('Password not set. Please set your password first.')
        if not check_password(password, registration.password_hash):
            logger.info(f"Failed login for {registration_id}")
            raise AuthenticationFailed('Invalid Registration ID or password')
        return registration


class MissionService:
    """Mission event sign-ups; one per registration, immutable once created."""

    def __init__(self, store):
        self.store = store

    def create(self, data):
        for key, _ in MISSION_REQUIRED_FIELDS:
            if _is_blank(data.get(key)):
                raise MissingField(key)

        period = str(data['arrivalPeriod']).strip().upper()
        if period not in ('AM', 'PM'):
            raise InvalidFormat('arrivalPeriod must be AM or PM', field='arrivalPeriod')

        registration_id = str(data['registrationId']).strip()
        with self.store.atomic():
            registration = self.store.get_registration(registration_id, for_update=True)
            if registration is None:
                raise RegistrationNotFound(registration_id)

            record = MissionRegistrationRecord()
            for key, attr in MISSION_REQUIRED_FIELDS:
                setattr(record, attr, _clean(str(data[key])))
            record.registration_id = registration_id
            record.arrival_period = period
            record.email = _clean(data.get('email')) or registration.email
            created = self.store.insert_mission_registration(record)
        logger.info(f"Mission registration {created.mission_id} created for {registration_id}")
        return created

    def get(self, mission_id):
        return self.store.get_mission_registration(mission_id)

    def get_for(self, registration_id):
        return self.store.get_mission_registration_for(registration_id)

    def list(self):
        return self.store.list_mission_registrations()


def sequence_counters(registrations):
    """Highest allocated sequence per unit and year, keyed like CAM-2025."""
    counters = {}
    for registration in registrations:
        parts = registration.registration_id.split('/')
        if len(parts) != 4 or not parts[3].isdigit():
            continue
        key = f"{parts[1]}-{parts[2]}"
        counters[key] = max(counters.get(key, 0), int(parts[3]))
    return counters


def build_dashboard_stats(store, ledger):
    """
    Aggregate figures for the admin dashboard. The recent* entries are
    records; the API layer serializes them.
    """
    registrations = store.list_registrations()
    missions = store.list_mission_registrations()
    verified = sum(1 for r in registrations if r.payment_verified)
    return {
        'totalRegistrations': len(registrations),
        'totalMissionRegistrations': len(missions),
        'verifiedPayments': verified,
        'pendingPayments': len(registrations) - verified,
        'totalRevenue': ledger.stats()['totalRevenue'],
        'unitDistribution': dict(Counter(r.unit for r in registrations)),
        'roleDistribution': dict(Counter(r.role for r in registrations)),
        'recentRegistrations': registrations[:5],
        'recentMissionRegistrations': missions[:5],
    }


class Portal:
    """
    Everything the API needs, built around one store. The app config builds
    one from settings at startup; tests build their own.
    """

    def __init__(self, store, allocator, registrations, ledger, missions, gateway):
        self.store = store
        self.allocator = allocator
        self.registrations = registrations
        self.ledger = ledger
        self.missions = missions
        self.gateway = gateway

    @classmethod
    def from_settings(cls, store=None, client=None):
        store = store or build_store(settings.REGISTRATION_STORE_BACKEND)
        allocator = IdentifierAllocator(
            store,
            prefix=settings.REGISTRATION_ID_PREFIX,
            strict=settings.STRICT_UNIT_CODES,
        )
        registrations = RegistrationService(store, allocator, max_retries=settings.ALLOCATION_MAX_RETRIES)
        ledger = PaymentLedger(
            store, registrations,
            fee=settings.REGISTRATION_FEE,
            currency=settings.PAYMENT_CURRENCY,
        )
        gateway = ReconciliationGateway(ledger, client or IntaSendClient())
        return cls(store, allocator, registrations, ledger, MissionService(store), gateway)

    def dashboard_stats(self):
        return build_dashboard_stats(self.store, self.ledger)
