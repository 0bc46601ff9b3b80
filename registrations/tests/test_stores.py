from decimal import Decimal

from django.test import TestCase

from registrations.exceptions import AlreadyRegistered, CodeAlreadyUsed, DuplicateEmail
from registrations.records import (
    MissionRegistrationRecord,
    PaymentRecord,
    PaymentStatus,
    RegistrationRecord,
)
from registrations.stores import IdentifierTaken, MemoryStore, build_store
from registrations.stores.database import DatabaseStore


def registration(registration_id, email, **fields):
    values = dict(
        registration_id=registration_id, first_name='Mary', last_name='Smith', email=email,
        phone='0734567890', gender='female', address='456 Oak Avenue', city='Mombasa',
        emergency_contact='Peter Smith', emergency_phone='0745678901',
        ministry='intercessory', unit='diaspora-unit', role='member',
    )
    values.update(fields)
    return RegistrationRecord(**values)


class StoreContractMixin:
    """Behaviour both storage backends must share."""
    store_class = None

    def setUp(self):
        super().setUp()
        self.store = self.store_class()

    def test_insert_and_read_back(self):
        created = self.store.insert_registration(registration('ORG/DSP/2025/001', 'mary@example.com'))
        self.assertIsNotNone(created.created_at)
        fetched = self.store.get_registration('ORG/DSP/2025/001')
        self.assertEqual(fetched.email, 'mary@example.com')
        self.assertFalse(fetched.payment_verified)
        self.assertIsNone(self.store.get_registration('ORG/DSP/2025/999'))

    def test_email_is_unique_case_insensitively(self):
        self.store.insert_registration(registration('ORG/DSP/2025/001', 'mary@example.com'))
        with self.assertRaises(DuplicateEmail):
            self.store.insert_registration(registration('ORG/DSP/2025/002', 'MARY@Example.com'))
        self.assertEqual(
            self.store.get_registration_by_email('Mary@EXAMPLE.com').registration_id,
            'ORG/DSP/2025/001',
        )

    def test_taken_identifier(self):
        self.store.insert_registration(registration('ORG/DSP/2025/001', 'mary@example.com'))
        with self.assertRaises(IdentifierTaken):
            self.store.insert_registration(registration('ORG/DSP/2025/001', 'other@example.com'))

    def test_update_rejects_email_of_another_registration(self):
        self.store.insert_registration(registration('ORG/DSP/2025/001', 'mary@example.com'))
        other = self.store.insert_registration(registration('ORG/DSP/2025/002', 'other@example.com'))
        other.email = 'Mary@example.com'
        with self.assertRaises(DuplicateEmail):
            self.store.update_registration(other)
        other.email = 'other.new@example.com'
        self.assertEqual(self.store.update_registration(other).email, 'other.new@example.com')

    def test_returned_records_are_copies(self):
        created = self.store.insert_registration(registration('ORG/DSP/2025/001', 'mary@example.com'))
        created.city = 'Nairobi'
        self.assertEqual(self.store.get_registration('ORG/DSP/2025/001').city, 'Mombasa')

    def test_registration_ids_with_prefix(self):
        self.store.insert_registration(registration('ORG/DSP/2025/001', 'a@example.com'))
        self.store.insert_registration(registration('ORG/DSP/2025/002', 'b@example.com'))
        self.store.insert_registration(registration('ORG/CAM/2025/001', 'c@example.com'))
        self.assertEqual(
            sorted(self.store.registration_ids_with_prefix('ORG/DSP/2025/')),
            ['ORG/DSP/2025/001', 'ORG/DSP/2025/002'],
        )

    def test_list_is_newest_first(self):
        self.store.insert_registration(registration('ORG/DSP/2025/001', 'a@example.com'))
        self.store.insert_registration(registration('ORG/DSP/2025/002', 'b@example.com'))
        ids = [r.registration_id for r in self.store.list_registrations()]
        self.assertEqual(ids, ['ORG/DSP/2025/002', 'ORG/DSP/2025/001'])

    def test_confirmation_code_is_globally_unique(self):
        self.store.insert_registration(registration('ORG/DSP/2025/001', 'a@example.com'))
        self.store.insert_registration(registration('ORG/DSP/2025/002', 'b@example.com'))
        self.store.insert_payment(PaymentRecord(
            registration_id='ORG/DSP/2025/001', amount=Decimal('200'),
            status=PaymentStatus.VERIFIED, confirmation_code='QH12345678',
        ))
        with self.assertRaises(CodeAlreadyUsed):
            self.store.insert_payment(PaymentRecord(
                registration_id='ORG/DSP/2025/002', amount=Decimal('200'),
                status=PaymentStatus.VERIFIED, confirmation_code='QH12345678',
            ))
        self.assertEqual(self.store.get_payment_by_code('qh12345678').registration_id, 'ORG/DSP/2025/001')

    def test_update_payment_cannot_claim_a_used_code(self):
        self.store.insert_payment(PaymentRecord(amount=Decimal('200'), status=PaymentStatus.VERIFIED,
                                                confirmation_code='QH12345678'))
        pending = self.store.insert_payment(PaymentRecord(amount=Decimal('200'), external_ref='INV-1'))
        pending.confirmation_code = 'QH12345678'
        pending.status = PaymentStatus.COMPLETED
        with self.assertRaises(CodeAlreadyUsed):
            self.store.update_payment(pending)
        self.assertEqual(self.store.get_payment(pending.payment_id).status, PaymentStatus.PENDING)

    def test_latest_payment_wins_for_a_shared_external_ref(self):
        self.store.insert_payment(PaymentRecord(amount=Decimal('200'), external_ref='INV-1'))
        latest = self.store.insert_payment(PaymentRecord(amount=Decimal('200'), external_ref='INV-1'))
        self.assertEqual(self.store.get_payment_by_external_ref('INV-1').payment_id, latest.payment_id)
        self.assertIsNone(self.store.get_payment_by_external_ref('INV-2'))

    def test_list_payments_filters(self):
        self.store.insert_registration(registration('ORG/DSP/2025/001', 'a@example.com'))
        self.store.insert_payment(PaymentRecord(registration_id='ORG/DSP/2025/001', amount=Decimal('200'),
                                                status=PaymentStatus.FAILED))
        self.store.insert_payment(PaymentRecord(amount=Decimal('200')))
        self.assertEqual(len(self.store.list_payments()), 2)
        self.assertEqual(len(self.store.list_payments(registration_id='ORG/DSP/2025/001')), 1)
        self.assertEqual(len(self.store.list_payments(status=PaymentStatus.PENDING)), 1)

    def test_one_mission_registration_per_registration(self):
        self.store.insert_registration(registration('ORG/DSP/2025/001', 'a@example.com'))
        mission = MissionRegistrationRecord(
            registration_id='ORG/DSP/2025/001', official_name='Mary Smith', area_of_residence='Mombasa',
            contacts='0734567890', ministry='intercessory', health_history='Good',
            arrival_date='2025-08-01', arrival_time='11:00', arrival_period='AM',
        )
        created = self.store.insert_mission_registration(mission)
        self.assertEqual(self.store.get_mission_registration(created.mission_id).official_name, 'Mary Smith')
        self.assertEqual(self.store.get_mission_registration_for('ORG/DSP/2025/001').mission_id, created.mission_id)
        with self.assertRaises(AlreadyRegistered):
            self.store.insert_mission_registration(MissionRegistrationRecord(
                registration_id='ORG/DSP/2025/001', official_name='Mary Smith', area_of_residence='Mombasa',
                contacts='0734567890', ministry='intercessory', health_history='Good',
                arrival_date='2025-08-02', arrival_time='11:00', arrival_period='PM',
            ))

    def test_delete_cascades(self):
        self.store.insert_registration(registration('ORG/DSP/2025/001', 'a@example.com'))
        self.store.insert_payment(PaymentRecord(registration_id='ORG/DSP/2025/001', amount=Decimal('200'),
                                                status=PaymentStatus.VERIFIED, confirmation_code='QH12345678'))
        self.store.insert_mission_registration(MissionRegistrationRecord(
            registration_id='ORG/DSP/2025/001', official_name='Mary Smith', area_of_residence='Mombasa',
            contacts='0734567890', ministry='intercessory', health_history='Good',
            arrival_date='2025-08-01', arrival_time='11:00', arrival_period='AM',
        ))

        self.assertTrue(self.store.delete_registration('ORG/DSP/2025/001'))

        self.assertIsNone(self.store.get_registration('ORG/DSP/2025/001'))
        self.assertEqual(self.store.list_payments(), [])
        self.assertEqual(self.store.list_mission_registrations(), [])
        self.assertIsNone(self.store.get_payment_by_code('QH12345678'))
        self.assertFalse(self.store.delete_registration('ORG/DSP/2025/001'))

    def test_clear(self):
        self.store.insert_registration(registration('ORG/DSP/2025/001', 'a@example.com'))
        self.store.insert_payment(PaymentRecord(amount=Decimal('200'), confirmation_code='QH12345678'))
        self.store.clear()
        self.assertEqual(self.store.list_registrations(), [])
        self.assertEqual(self.store.list_payments(), [])


class MemoryStoreTests(StoreContractMixin, TestCase):
    store_class = MemoryStore


class DatabaseStoreTests(StoreContractMixin, TestCase):
    store_class = DatabaseStore


class BuildStoreTests(TestCase):

    def test_backends_by_name(self):
        self.assertIsInstance(build_store('memory'), MemoryStore)
        self.assertIsInstance(build_store('database'), DatabaseStore)

    def test_unknown_backend(self):
        from django.core.exceptions import ImproperlyConfigured
        with self.assertRaises(ImproperlyConfigured):
            build_store('redis')
