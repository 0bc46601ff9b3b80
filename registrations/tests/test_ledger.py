from datetime import timedelta
from decimal import Decimal
from unittest.mock import Mock

from django.test import TestCase, TransactionTestCase

from registrations.exceptions import (
    CodeAlreadyUsed,
    ConflictError,
    DuplicatePayment,
    InvalidFormat,
    PaymentNotCompleted,
    PaymentNotFound,
    PaymentNotPending,
    RegistrationNotFound,
    UpstreamError,
)
from registrations.records import PaymentStatus, ProviderResult

from .helpers import DatabaseStore, MemoryStore, PortalTestMixin, member_data, run_concurrently


def success(ref, receipt_number='QJK1A2B3C4'):
    return ProviderResult(
        external_ref=ref, result_code=0, result_desc='Payment completed successfully',
        receipt={'receipt_number': receipt_number, 'transaction_date': '2025-06-01T09:05:00Z'},
    )


class LedgerMixin(PortalTestMixin):

    # Direct code verification

    def test_verify_by_code(self):
        registration = self.register()
        payment = self.ledger.verify_by_code(registration.registration_id, 'qh12345678')

        self.assertEqual(payment.status, PaymentStatus.VERIFIED)
        self.assertEqual(payment.confirmation_code, 'QH12345678')
        self.assertEqual(payment.amount, Decimal('200'))
        self.assertEqual(payment.phone_number, registration.phone)
        self.assertIsNotNone(payment.verified_at)
        self.assertTrue(self.store.get_registration(registration.registration_id).payment_verified)

    def test_code_cannot_be_used_by_another_registration(self):
        first = self.register(email='a@example.com')
        second = self.register(email='b@example.com')
        self.ledger.verify_by_code(first.registration_id, 'QH12345678')

        with self.assertRaises(ConflictError):
            self.ledger.verify_by_code(second.registration_id, 'QH12345678')
        self.assertFalse(self.store.get_registration(second.registration_id).payment_verified)

    def test_code_checks_run_in_order(self):
        registration = self.register()
        with self.assertRaises(InvalidFormat):
            self.ledger.verify_by_code('ORG/CAM/2025/999', 'bad')
        with self.assertRaises(RegistrationNotFound):
            self.ledger.verify_by_code('ORG/CAM/2025/999', 'QH12345678')
        self.ledger.verify_by_code(registration.registration_id, 'QH12345678')
        with self.assertRaises(CodeAlreadyUsed):
            self.ledger.verify_by_code(registration.registration_id, 'QH12345678')
        with self.assertRaises(DuplicatePayment):
            self.ledger.verify_by_code(registration.registration_id, 'QH87654321')

    # Pending payments and callbacks

    def test_callback_completes_pending_payment(self):
        registration = self.register()
        pending = self.ledger.create_pending(
            'INV-1', '254712345678', 200, {'registrationId': registration.registration_id}, merchant_ref='REF-1'
        )
        self.assertEqual(pending.status, PaymentStatus.PENDING)
        self.assertEqual(pending.registration_id, registration.registration_id)

        self.assertTrue(self.ledger.apply_callback('INV-1', 0, {'receipt_number': 'qjk1a2b3c4'}))

        payment = self.store.get_payment(pending.payment_id)
        self.assertEqual(payment.status, PaymentStatus.COMPLETED)
        self.assertEqual(payment.confirmation_code, 'QJK1A2B3C4')
        self.assertTrue(self.store.get_registration(registration.registration_id).payment_verified)

    def test_repeated_callback_is_a_no_op(self):
        registration = self.register()
        pending = self.ledger.create_pending('INV-1', '254712345678', 200,
                                             {'registrationId': registration.registration_id})
        self.ledger.apply_callback('INV-1', 0, {'receipt_number': 'QJK1A2B3C4'})
        first = self.store.get_payment(pending.payment_id)

        self.assertTrue(self.ledger.apply_callback('INV-1', 0, {'receipt_number': 'QJK1A2B3C4'}))
        self.assertTrue(self.ledger.apply_callback('INV-1', 1, {}, 'Cancelled by user'))

        again = self.store.get_payment(pending.payment_id)
        self.assertEqual(again.status, PaymentStatus.COMPLETED)
        self.assertEqual(again.verified_at, first.verified_at)
        self.assertEqual(len(self.store.list_payments()), 1)

    def test_unknown_checkout_reference(self):
        self.assertFalse(self.ledger.apply_callback('INV-404', 0, {'receipt_number': 'QJK1A2B3C4'}))

    def test_failed_callback_then_direct_code(self):
        registration = self.register()
        pending = self.ledger.create_pending('INV-1', '254712345678', 200,
                                             {'registrationId': registration.registration_id})
        self.ledger.apply_callback('INV-1', 1032, {}, 'Request cancelled by user')

        self.assertEqual(self.store.get_payment(pending.payment_id).status, PaymentStatus.FAILED)
        self.assertFalse(self.store.get_registration(registration.registration_id).payment_verified)

        self.ledger.verify_by_code(registration.registration_id, 'QH12345678')
        self.assertTrue(self.store.get_registration(registration.registration_id).payment_verified)

    def test_callback_with_used_receipt_leaves_payment_pending(self):
        first = self.register(email='a@example.com')
        second = self.register(email='b@example.com')
        self.ledger.verify_by_code(first.registration_id, 'QJK1A2B3C4')
        pending = self.ledger.create_pending('INV-1', '254712345678', 200,
                                             {'registrationId': second.registration_id})

        with self.assertRaises(CodeAlreadyUsed):
            self.ledger.apply_callback('INV-1', 0, {'receipt_number': 'QJK1A2B3C4'})

        self.assertEqual(self.store.get_payment(pending.payment_id).status, PaymentStatus.PENDING)
        self.assertFalse(self.store.get_registration(second.registration_id).payment_verified)

    def test_callback_creates_registration_from_draft(self):
        draft = member_data(email='new.member@example.com', rocimUnit='moi-unit')
        pending = self.ledger.create_pending('INV-1', '254712345678', 200, draft)
        self.assertIsNone(pending.registration_id)

        self.ledger.apply_callback('INV-1', 0, {'receipt_number': 'QJK1A2B3C4'})

        payment = self.store.get_payment(pending.payment_id)
        self.assertEqual(payment.registration_id, 'ORG/MI/2025/001')
        registration = self.store.get_registration('ORG/MI/2025/001')
        self.assertEqual(registration.email, 'new.member@example.com')
        self.assertTrue(registration.payment_verified)

    def test_callback_with_incomplete_draft_only_completes_payment(self):
        pending = self.ledger.create_pending('INV-1', '254712345678', 200, {'email': 'x@example.com'})
        self.ledger.apply_callback('INV-1', 0, {'receipt_number': 'QJK1A2B3C4'})
        payment = self.store.get_payment(pending.payment_id)
        self.assertEqual(payment.status, PaymentStatus.COMPLETED)
        self.assertIsNone(payment.registration_id)
        self.assertEqual(self.store.list_registrations(), [])

    def test_pending_payment_blocks_another(self):
        registration = self.register()
        draft = {'registrationId': registration.registration_id}
        self.ledger.create_pending('INV-1', '254712345678', 200, draft)
        with self.assertRaises(DuplicatePayment):
            self.ledger.create_pending('INV-2', '254712345678', 200, draft)
        with self.assertRaises(DuplicatePayment):
            self.ledger.verify_by_code(registration.registration_id, 'QH12345678')

    def test_pending_payment_for_unknown_registration(self):
        with self.assertRaises(RegistrationNotFound):
            self.ledger.create_pending('INV-1', '254712345678', 200, {'registrationId': 'ORG/CAM/2025/404'})

    # Status queries

    def test_query_uses_local_completed_record(self):
        registration = self.register()
        self.ledger.create_pending('INV-1', '254712345678', 200, {'registrationId': registration.registration_id})
        self.ledger.apply_callback('INV-1', 0, {'receipt_number': 'QJK1A2B3C4'})
        fetch_remote = Mock()

        result = self.ledger.query_status('INV-1', fetch_remote)

        fetch_remote.assert_not_called()
        self.assertEqual(result.result_code, '0')
        self.assertEqual(result.payment.status, PaymentStatus.COMPLETED)

    def test_query_reconciles_provider_result(self):
        registration = self.register()
        self.ledger.create_pending('INV-1', '254712345678', 200, {'registrationId': registration.registration_id})
        fetch_remote = Mock(return_value=success('INV-1'))

        result = self.ledger.query_status('INV-1', fetch_remote)

        fetch_remote.assert_called_once_with('INV-1')
        self.assertEqual(result.result_code, '0')
        self.assertEqual(result.payment.status, PaymentStatus.COMPLETED)
        self.assertTrue(self.store.get_registration(registration.registration_id).payment_verified)

    def test_query_while_pending(self):
        registration = self.register()
        self.ledger.create_pending('INV-1', '254712345678', 200, {'registrationId': registration.registration_id})
        fetch_remote = Mock(return_value=ProviderResult('INV-1', None, 'Payment processing'))

        result = self.ledger.query_status('INV-1', fetch_remote)

        self.assertEqual(result.result_code, '1')
        self.assertEqual(result.payment.status, PaymentStatus.PENDING)

    # Admin reconciliation

    def test_manual_verification(self):
        registration = self.register()
        pending = self.ledger.create_pending('INV-1', '254712345678', 200,
                                             {'registrationId': registration.registration_id})

        payment = self.ledger.manually_verify(pending.payment_id, 'qjk1a2b3c4')

        self.assertEqual(payment.status, PaymentStatus.COMPLETED)
        self.assertEqual(payment.confirmation_code, 'QJK1A2B3C4')
        self.assertTrue(self.store.get_registration(registration.registration_id).payment_verified)
        with self.assertRaises(PaymentNotPending):
            self.ledger.manually_verify(pending.payment_id, 'QJK9Z8Y7X6')

    def test_manual_verification_of_unknown_payment(self):
        with self.assertRaises(PaymentNotFound):
            self.ledger.manually_verify('PAY_MISSING', 'QJK1A2B3C4')

    # Expiry sweep

    def test_sweep_cancels_stale_pending_payments(self):
        registration = self.register()
        pending = self.ledger.create_pending('INV-1', '254712345678', 200,
                                             {'registrationId': registration.registration_id})

        summary = self.ledger.sweep_pending(timedelta(0))

        self.assertEqual(summary['cancelled'], 1)
        payment = self.store.get_payment(pending.payment_id)
        self.assertEqual(payment.status, PaymentStatus.CANCELLED)
        # The registration may pay again
        self.ledger.verify_by_code(registration.registration_id, 'QH12345678')

    def test_sweep_ignores_recent_payments(self):
        pending = self.ledger.create_pending('INV-1', '254712345678', 200, {})
        summary = self.ledger.sweep_pending(timedelta(hours=1))
        self.assertEqual(summary['checked'], 0)
        self.assertEqual(self.store.get_payment(pending.payment_id).status, PaymentStatus.PENDING)

    def test_sweep_dry_run_changes_nothing(self):
        pending = self.ledger.create_pending('INV-1', '254712345678', 200, {})
        summary = self.ledger.sweep_pending(timedelta(0), dry_run=True)
        self.assertEqual(summary['cancelled_ids'], [pending.payment_id])
        self.assertEqual(self.store.get_payment(pending.payment_id).status, PaymentStatus.PENDING)

    def test_sweep_reconciles_before_expiring(self):
        registration = self.register()
        pending = self.ledger.create_pending('INV-1', '254712345678', 200,
                                             {'registrationId': registration.registration_id})

        summary = self.ledger.sweep_pending(timedelta(0), fetch_remote=Mock(return_value=success('INV-1')))

        self.assertEqual(summary['reconciled'], 1)
        self.assertEqual(self.store.get_payment(pending.payment_id).status, PaymentStatus.COMPLETED)

    def test_sweep_skips_when_provider_is_down(self):
        pending = self.ledger.create_pending('INV-1', '254712345678', 200, {})
        fetch_remote = Mock(side_effect=UpstreamError('Payment provider unavailable'))

        summary = self.ledger.sweep_pending(timedelta(0), fetch_remote=fetch_remote)

        self.assertEqual(summary['skipped'], 1)
        self.assertEqual(self.store.get_payment(pending.payment_id).status, PaymentStatus.PENDING)

    # Reporting

    def test_stats(self):
        first = self.register(email='a@example.com')
        second = self.register(email='b@example.com')
        self.ledger.verify_by_code(first.registration_id, 'QH12345678')
        self.ledger.create_pending('INV-1', '254712345678', 200, {'registrationId': second.registration_id})
        self.ledger.apply_callback('INV-1', 1, {}, 'Insufficient balance')

        stats = self.ledger.stats()

        self.assertEqual(stats['totalPayments'], 2)
        self.assertEqual(stats['verifiedPayments'], 1)
        self.assertEqual(stats['failedPayments'], 1)
        self.assertEqual(stats['totalRevenue'], Decimal('200'))

    def test_payment_for_prefers_successful_payment(self):
        registration = self.register()
        self.ledger.create_pending('INV-1', '254712345678', 200, {'registrationId': registration.registration_id})
        self.ledger.apply_callback('INV-1', 1, {}, 'Insufficient balance')
        verified = self.ledger.verify_by_code(registration.registration_id, 'QH12345678')
        self.assertEqual(self.ledger.payment_for(registration.registration_id).payment_id, verified.payment_id)
        self.assertIsNone(self.ledger.payment_for('ORG/CAM/2025/404'))

    def test_completed_registration(self):
        registration = self.register()
        pending = self.ledger.create_pending('INV-1', '254712345678', 200,
                                             {'registrationId': registration.registration_id})
        with self.assertRaises(PaymentNotCompleted):
            self.ledger.completed_registration(registration.registration_id, pending.payment_id)

        self.ledger.apply_callback('INV-1', 0, {'receipt_number': 'QJK1A2B3C4'})
        completed = self.ledger.completed_registration(registration.registration_id, pending.payment_id)
        self.assertEqual(completed.registration_id, registration.registration_id)
        self.assertTrue(completed.payment_verified)

    def test_completed_registration_rejects_other_registrations_payment(self):
        first = self.register(email='a@example.com')
        second = self.register(email='b@example.com')
        payment = self.ledger.verify_by_code(first.registration_id, 'QH12345678')
        with self.assertRaises(PaymentNotCompleted):
            self.ledger.completed_registration(second.registration_id, payment.payment_id)
        with self.assertRaises(PaymentNotCompleted):
            self.ledger.completed_registration(first.registration_id, 'PAY_missing')


class MemoryLedgerTests(LedgerMixin, TestCase):
    store_class = MemoryStore


class DatabaseLedgerTests(LedgerMixin, TestCase):
    store_class = DatabaseStore


class DatabaseConcurrentVerificationTests(PortalTestMixin, TransactionTestCase):
    store_class = DatabaseStore

    def test_concurrent_codes_for_one_registration(self):
        registration = self.register()
        count = 8
        results, errors = run_concurrently(
            count, lambda i: self.ledger.verify_by_code(registration.registration_id, f'QH{i:08d}')
        )

        self.assertEqual(len(results), 1)
        self.assertEqual(len(errors), count - 1)
        self.assertTrue(all(isinstance(e, DuplicatePayment) for e in errors))
        self.assertEqual(len(self.store.list_payments(registration_id=registration.registration_id)), 1)
        self.assertTrue(self.store.get_registration(registration.registration_id).payment_verified)
