"""
Shared builders for the registrations tests.
"""
import threading
from datetime import datetime, timezone as dt_timezone

from django.db import connection

from registrations.allocator import IdentifierAllocator
from registrations.ledger import PaymentLedger
from registrations.services import MissionService, RegistrationService
from registrations.stores.database import DatabaseStore
from registrations.stores.memory import MemoryStore

FIXED_NOW = datetime(2025, 6, 1, 9, 0, tzinfo=dt_timezone.utc)


def fixed_clock():
    return FIXED_NOW


def member_data(**overrides):
    data = {
        'firstName': 'John',
        'lastName': 'Doe',
        'email': 'john.doe@example.com',
        'phone': '0712345678',
        'dateOfBirth': '1990-01-15',
        'gender': 'male',
        'address': '123 Main Street',
        'city': 'Nairobi',
        'occupation': 'Teacher',
        'emergencyContact': 'Jane Doe',
        'emergencyPhone': '0723456789',
        'testimony': '',
        'ministry': 'worship',
        'rocimUnit': 'cambridge-unit',
        'role': 'member',
    }
    data.update(overrides)
    return data


def mission_data(registration_id, **overrides):
    data = {
        'registrationId': registration_id,
        'officialName': 'John Doe',
        'areaOfResidence': 'Nairobi',
        'contacts': '0712345678',
        'ministry': 'worship',
        'healthHistory': 'Good',
        'arrivalDate': '2025-08-01',
        'arrivalTime': '10:00',
        'arrivalPeriod': 'AM',
    }
    data.update(overrides)
    return data


class PortalTestMixin:
    """
    Builds a store with the allocator, registration service, ledger and
    mission service around it. Subclasses set store_class.
    """
    store_class = MemoryStore

    def setUp(self):
        super().setUp()
        self.store = self.store_class()
        self.allocator = IdentifierAllocator(self.store, prefix='ORG', clock=fixed_clock)
        self.registrations = RegistrationService(self.store, self.allocator, max_retries=5)
        self.ledger = PaymentLedger(self.store, self.registrations, fee=200)
        self.missions = MissionService(self.store)

    def register(self, **overrides):
        return self.registrations.create(member_data(**overrides))


def run_concurrently(count, target):
    """
    Call target(i) from count threads released together.
    Returns (results, errors); each thread closes its own database connection.
    """
    barrier = threading.Barrier(count)
    results = []
    errors = []

    def worker(i):
        barrier.wait()
        try:
            results.append(target(i))
        except Exception as e:
            errors.append(e)
        finally:
            connection.close()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return results, errors


__all__ = [
    'DatabaseStore', 'MemoryStore', 'FIXED_NOW', 'fixed_clock',
    'member_data', 'mission_data', 'PortalTestMixin', 'run_concurrently',
]
