"""
Process-local store for development and tests.

All state lives in dicts guarded by one re-entrant lock; ``atomic()`` holds
that lock, so allocation and code claims are serialized across threads.
"""
import copy
import threading

from django.utils import timezone

from ..exceptions import AlreadyRegistered, CodeAlreadyUsed, DuplicateEmail
from .base import IdentifierTaken, RegistrationStore


def _newest_first(records):
    # records arrive in insertion order; equal timestamps keep the later insert first
    return sorted(reversed(records), key=lambda r: r.created_at, reverse=True)


class MemoryStore(RegistrationStore):
    name = 'memory'

    def __init__(self):
        self._lock = threading.RLock()
        self._registrations = {}
        self._payments = {}
        self._codes = {}  # confirmation code -> payment_id
        self._missions = {}

    def atomic(self):
        return self._lock

    # Registrations

    def _email_owner(self, email):
        wanted = (email or '').strip().lower()
        for record in self._registrations.values():
            if record.email.strip().lower() == wanted:
                return record
        return None

    def registration_ids_with_prefix(self, prefix):
        with self._lock:
            return [rid for rid in self._registrations if rid.startswith(prefix)]

    def insert_registration(self, record):
        with self._lock:
            if self._email_owner(record.email) is not None:
                raise DuplicateEmail(record.email)
            if record.registration_id in self._registrations:
                raise IdentifierTaken(record.registration_id)
            stored = copy.deepcopy(record)
            stored.created_at = stored.updated_at = timezone.now()
            self._registrations[stored.registration_id] = stored
            return copy.deepcopy(stored)

    def get_registration(self, registration_id, for_update=False):
        with self._lock:
            record = self._registrations.get(registration_id)
            return copy.deepcopy(record) if record else None

    def get_registration_by_email(self, email):
        with self._lock:
            record = self._email_owner(email)
            return copy.deepcopy(record) if record else None

    def update_registration(self, record):
        with self._lock:
            existing = self._registrations[record.registration_id]
            owner = self._email_owner(record.email)
            if owner is not None and owner.registration_id != record.registration_id:
                raise DuplicateEmail(record.email)
            stored = copy.deepcopy(record)
            stored.created_at = existing.created_at
            stored.updated_at = timezone.now()
            self._registrations[stored.registration_id] = stored
            return copy.deepcopy(stored)

    def delete_registration(self, registration_id):
        with self._lock:
            if registration_id not in self._registrations:
                return False
            for payment_id, payment in list(self._payments.items()):
                if payment.registration_id == registration_id:
                    del self._payments[payment_id]
                    if payment.confirmation_code:
                        self._codes.pop(payment.confirmation_code, None)
            for mission_id, mission in list(self._missions.items()):
                if mission.registration_id == registration_id:
                    del self._missions[mission_id]
            del self._registrations[registration_id]
            return True

    def list_registrations(self):
        with self._lock:
            records = [copy.deepcopy(r) for r in self._registrations.values()]
        return _newest_first(records)

    # Payments

    def _claim_code(self, record):
        code = record.confirmation_code
        if not code:
            return
        owner = self._codes.get(code)
        if owner is not None and owner != record.payment_id:
            raise CodeAlreadyUsed(code)

    def _store_payment(self, stored):
        previous = self._payments.get(stored.payment_id)
        if previous is not None and previous.confirmation_code != stored.confirmation_code:
            self._codes.pop(previous.confirmation_code, None)
        self._payments[stored.payment_id] = stored
        if stored.confirmation_code:
            self._codes[stored.confirmation_code] = stored.payment_id

    def insert_payment(self, record):
        with self._lock:
            self._claim_code(record)
            stored = copy.deepcopy(record)
            stored.created_at = stored.updated_at = timezone.now()
            self._store_payment(stored)
            return copy.deepcopy(stored)

    def update_payment(self, record):
        with self._lock:
            existing = self._payments[record.payment_id]
            self._claim_code(record)
            stored = copy.deepcopy(record)
            stored.created_at = existing.created_at
            stored.updated_at = timezone.now()
            self._store_payment(stored)
            return copy.deepcopy(stored)

    def get_payment(self, payment_id, for_update=False):
        with self._lock:
            record = self._payments.get(payment_id)
            return copy.deepcopy(record) if record else None

    def get_payment_by_external_ref(self, external_ref, for_update=False):
        if not external_ref:
            return None
        with self._lock:
            matches = [p for p in self._payments.values() if p.external_ref == external_ref]
            if not matches:
                return None
            return copy.deepcopy(_newest_first(matches)[0])

    def get_payment_by_code(self, confirmation_code):
        with self._lock:
            payment_id = self._codes.get((confirmation_code or '').upper())
            return copy.deepcopy(self._payments[payment_id]) if payment_id else None

    def list_payments(self, registration_id=None, status=None):
        with self._lock:
            records = [
                copy.deepcopy(p) for p in self._payments.values()
                if (registration_id is None or p.registration_id == registration_id)
                and (status is None or p.status == status)
            ]
        return _newest_first(records)

    # Mission registrations

    def insert_mission_registration(self, record):
        with self._lock:
            for mission in self._missions.values():
                if mission.registration_id == record.registration_id:
                    raise AlreadyRegistered(record.registration_id)
            stored = copy.deepcopy(record)
            stored.created_at = stored.updated_at = timezone.now()
            self._missions[stored.mission_id] = stored
            return copy.deepcopy(stored)

    def get_mission_registration(self, mission_id):
        with self._lock:
            record = self._missions.get(mission_id)
            return copy.deepcopy(record) if record else None

    def get_mission_registration_for(self, registration_id):
        with self._lock:
            for mission in self._missions.values():
                if mission.registration_id == registration_id:
                    return copy.deepcopy(mission)
        return None

    def list_mission_registrations(self):
        with self._lock:
            records = [copy.deepcopy(m) for m in self._missions.values()]
        return _newest_first(records)

    def clear(self):
        with self._lock:
            self._registrations.clear()
            self._payments.clear()
            self._codes.clear()
            self._missions.clear()
