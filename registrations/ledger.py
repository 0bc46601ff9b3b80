"""
Payment ledger: pending STK payments, direct M-Pesa code verification and
reconciliation of provider results.

Payment state machine:
    pending -> completed | failed | cancelled (expiry sweep only)
    verified is the terminal state of the direct-code path.
No transition leaves a terminal state; every status change re-reads the
payment under lock inside store.atomic(), which makes callbacks idempotent.
"""
import logging
from decimal import Decimal

from django.utils import timezone

from .exceptions import (
    CodeAlreadyUsed,
    DuplicatePayment,
    MissingField,
    PaymentNotCompleted,
    PaymentNotFound,
    PaymentNotPending,
    PortalError,
    RegistrationNotFound,
    UpstreamError,
)
from .records import PaymentRecord, PaymentStatus, StatusQueryResult
from .utils import normalize_confirmation_code

logger = logging.getLogger(__name__)

SUCCESS_DESC = 'The service request is processed successfully.'
EXPIRED_DESC = 'Expired without confirmation'


class PaymentLedger:

    def __init__(self, store, registrations, fee=200, currency='KES'):
        self.store = store
        self.registrations = registrations
        self.fee = Decimal(str(fee))
        self.currency = currency

    # Guards

    def blocking_payment(self, registration_id):
        """The pending, completed or verified payment of a registration, if any."""
        for payment in self.store.list_payments(registration_id=registration_id):
            if payment.is_blocking:
                return payment
        return None

    def ensure_payable(self, registration_id):
        """
        Raise unless the registration exists and holds no pending or successful payment.
        Returns the registration.
        """
        registration = self.store.get_registration(registration_id, for_update=True)
        if registration is None:
            raise RegistrationNotFound(registration_id)
        if self.blocking_payment(registration_id) is not None:
            raise DuplicatePayment(registration_id)
        return registration

    # Creation

    def create_pending(self, external_ref, phone_number, amount=None, attached_data=None, merchant_ref=None):
        """
        Record a pending payment for an STK push. The registration draft sent
        with the push is kept in attached_data; when it carries a
        registrationId the payment is linked to that registration.
        external_ref may be None when the payment is reserved before the push.
        """
        attached = dict(attached_data or {})
        registration_id = attached.get('registrationId') or None
        with self.store.atomic():
            if registration_id:
                self.ensure_payable(registration_id)
            payment = self.store.insert_payment(PaymentRecord(
                registration_id=registration_id,
                external_ref=external_ref,
                merchant_ref=merchant_ref,
                amount=Decimal(str(amount)) if amount is not None else self.fee,
                currency=self.currency,
                phone_number=phone_number or '',
                status=PaymentStatus.PENDING,
                attached_data=attached,
            ))
        logger.info(f"Pending payment {payment.payment_id} created for checkout {external_ref or '(reserved)'}")
        return payment

    def attach_checkout(self, payment_id, external_ref, merchant_ref=None):
        """Record the provider's checkout reference on a payment reserved before the push."""
        with self.store.atomic():
            payment = self.store.get_payment(payment_id, for_update=True)
            if payment is None:
                raise PaymentNotFound(payment_id)
            payment.external_ref = external_ref
            payment.merchant_ref = merchant_ref or payment.merchant_ref
            payment = self.store.update_payment(payment)
        logger.info(f"Payment {payment_id} attached to checkout {external_ref}")
        return payment

    def release(self, payment_id, reason):
        """Fail a reserved payment whose push never reached the member, so it stops blocking."""
        with self.store.atomic():
            payment = self.store.get_payment(payment_id, for_update=True)
            if payment is None or payment.status != PaymentStatus.PENDING:
                return payment
            payment.status = PaymentStatus.FAILED
            payment.result_desc = reason
            payment = self.store.update_payment(payment)
        logger.info(f"Payment {payment_id} released: {reason}")
        return payment

    def verify_by_code(self, registration_id, code):
        """
        Accept an M-Pesa confirmation code submitted by the member: creates a
        verified payment for the registration fee and flags the registration.
        """
        if not registration_id:
            raise MissingField('registrationId')
        code = normalize_confirmation_code(code)
        with self.store.atomic():
            registration = self.store.get_registration(registration_id, for_update=True)
            if registration is None:
                raise RegistrationNotFound(registration_id)
            if self.store.get_payment_by_code(code) is not None:
                raise CodeAlreadyUsed(code)
            if self.blocking_payment(registration_id) is not None:
                raise DuplicatePayment(registration_id)

            now = timezone.now()
            payment = self.store.insert_payment(PaymentRecord(
                registration_id=registration_id,
                amount=self.fee,
                currency=self.currency,
                phone_number=registration.phone,
                status=PaymentStatus.VERIFIED,
                confirmation_code=code,
                result_desc='Verified by M-Pesa confirmation code',
                verified_at=now,
            ))
            registration.payment_verified = True
            self.store.update_registration(registration)
        logger.info(f"Payment {payment.payment_id} verified with code {code} for {registration_id}")
        return payment

    # Reconciliation

    def apply_callback(self, external_ref, result_code, receipt=None, result_desc=''):
        """
        Apply a provider result to the pending payment with this checkout reference.

        Returns False when no payment matches. A payment that already left
        pending is not touched again. A receipt code already held by another
        payment raises CodeAlreadyUsed and the payment stays pending.
        """
        receipt = receipt or {}
        with self.store.atomic():
            payment = self.store.get_payment_by_external_ref(external_ref, for_update=True)
            if payment is None:
                logger.warning(f"No payment found for checkout {external_ref}")
                return False
            if payment.status != PaymentStatus.PENDING:
                logger.info(f"Payment {payment.payment_id} already {payment.status}, ignoring result {result_code}")
                return True

            if str(result_code) == '0':
                code = receipt.get('receipt_number')
                payment.status = PaymentStatus.COMPLETED
                payment.confirmation_code = str(code).strip().upper() if code else None
                payment.transaction_date = receipt.get('transaction_date') or payment.transaction_date
                payment.phone_number = receipt.get('phone_number') or payment.phone_number
                payment.result_desc = result_desc or SUCCESS_DESC
                payment.verified_at = timezone.now()
                payment = self.store.update_payment(payment)
                logger.info(f"Payment {payment.payment_id} completed (receipt {payment.confirmation_code})")
                self._complete_registration(payment)
            else:
                payment.status = PaymentStatus.FAILED
                payment.result_desc = result_desc or 'Payment failed'
                self.store.update_payment(payment)
                logger.info(f"Payment {payment.payment_id} failed: {payment.result_desc}")
        return True

    def _complete_registration(self, payment):
        """Flag the paid registration, creating it from the payment draft when it does not exist yet."""
        if payment.registration_id:
            registration = self.store.get_registration(payment.registration_id, for_update=True)
            if registration is None:
                logger.warning(f"Payment {payment.payment_id} linked to missing registration {payment.registration_id}")
                return None
            if not registration.payment_verified:
                registration.payment_verified = True
                registration = self.store.update_registration(registration)
            return registration

        draft = payment.attached_data or {}
        if not self.registrations.has_required_fields(draft):
            logger.info(f"Payment {payment.payment_id} has no registration draft to complete")
            return None
        try:
            registration = self.registrations.create(draft, payment_verified=True)
        except PortalError as e:
            logger.error(f"Could not create registration from payment {payment.payment_id}: {e.message}")
            return None
        payment.registration_id = registration.registration_id
        payment.attached_data = dict(draft, registrationId=registration.registration_id)
        self.store.update_payment(payment)
        logger.info(f"Registration {registration.registration_id} created from payment {payment.payment_id}")
        return registration

    def query_status(self, external_ref, fetch_remote):
        """
        Status of an STK push. A locally completed payment is reported without
        contacting the provider; otherwise fetch_remote(external_ref) must
        return a ProviderResult, and a final result is applied to the ledger.
        """
        payment = self.store.get_payment_by_external_ref(external_ref)
        if payment is not None and payment.is_successful:
            return StatusQueryResult(
                external_ref=external_ref,
                result_code='0',
                result_desc=payment.result_desc or SUCCESS_DESC,
                payment=payment,
            )

        result = fetch_remote(external_ref)
        if result.is_final and payment is not None:
            self.apply_callback(external_ref, result.result_code, result.receipt, result.result_desc)
            payment = self.store.get_payment_by_external_ref(external_ref)

        return StatusQueryResult(
            external_ref=external_ref,
            result_code='0' if result.is_success else '1',
            result_desc=result.result_desc or ('Payment pending' if not result.is_final else ''),
            payment=payment,
            provider_data=result.raw,
        )

    def manually_verify(self, payment_id, receipt_code):
        """Admin reconciliation of a pending payment with the receipt code the member received."""
        code = normalize_confirmation_code(receipt_code)
        with self.store.atomic():
            payment = self.store.get_payment(payment_id, for_update=True)
            if payment is None:
                raise PaymentNotFound(payment_id)
            if payment.status != PaymentStatus.PENDING:
                raise PaymentNotPending(payment_id, payment.status)
            if self.store.get_payment_by_code(code) is not None:
                raise CodeAlreadyUsed(code)
            payment.status = PaymentStatus.COMPLETED
            payment.confirmation_code = code
            payment.result_desc = 'Manually verified by admin'
            payment.verified_at = timezone.now()
            payment = self.store.update_payment(payment)
            self._complete_registration(payment)
        logger.info(f"Payment {payment_id} manually verified with receipt {code}")
        return self.store.get_payment(payment_id)

    def sweep_pending(self, older_than, fetch_remote=None, dry_run=False):
        """
        Expire pending payments created more than older_than (a timedelta) ago.

        With fetch_remote, each payment is first checked against the provider
        and a final result is applied instead of expiring it. Payments the
        provider could not be asked about are left pending.
        """
        cutoff = timezone.now() - older_than
        summary = {'checked': 0, 'reconciled': 0, 'cancelled': 0, 'skipped': 0, 'cancelled_ids': []}

        for payment in self.store.list_payments(status=PaymentStatus.PENDING):
            if payment.created_at is None or payment.created_at > cutoff:
                continue
            summary['checked'] += 1

            if fetch_remote is not None and payment.external_ref:
                try:
                    result = fetch_remote(payment.external_ref)
                except UpstreamError as e:
                    logger.warning(f"Skipping {payment.payment_id}: provider status unavailable ({e.message})")
                    summary['skipped'] += 1
                    continue
                if result.is_final:
                    if not dry_run:
                        try:
                            self.apply_callback(payment.external_ref, result.result_code, result.receipt, result.result_desc)
                        except CodeAlreadyUsed as e:
                            logger.error(f"Payment {payment.payment_id} not reconciled: {e.message}")
                            summary['skipped'] += 1
                            continue
                    summary['reconciled'] += 1
                    continue

            if dry_run:
                summary['cancelled'] += 1
                summary['cancelled_ids'].append(payment.payment_id)
                continue

            with self.store.atomic():
                current = self.store.get_payment(payment.payment_id, for_update=True)
                if current is None or current.status != PaymentStatus.PENDING:
                    continue
                current.status = PaymentStatus.CANCELLED
                current.result_desc = EXPIRED_DESC
                self.store.update_payment(current)
            summary['cancelled'] += 1
            summary['cancelled_ids'].append(payment.payment_id)
            logger.info(f"Payment {payment.payment_id} expired without confirmation")

        return summary

    # Reporting

    def completed_registration(self, registration_id, payment_id):
        """
        The registration a successful payment belongs to. Raises
        PaymentNotCompleted unless payment_id is a completed or verified
        payment of registration_id.
        """
        payment = self.store.get_payment(payment_id)
        if payment is None or not payment.is_successful or payment.registration_id != registration_id:
            raise PaymentNotCompleted(payment_id)
        return self.registrations.get(registration_id)

    def payment_for(self, registration_id):
        """The successful payment of a registration, else its most recent payment, else None."""
        payments = self.store.list_payments(registration_id=registration_id)
        for payment in payments:
            if payment.is_successful:
                return payment
        return payments[0] if payments else None

    def stats(self):
        payments = self.store.list_payments()
        by_status = {status: 0 for status, _ in PaymentStatus.CHOICES}
        revenue = Decimal('0')
        for payment in payments:
            by_status[payment.status] = by_status.get(payment.status, 0) + 1
            if payment.is_successful:
                revenue += payment.amount
        return {
            'totalPayments': len(payments),
            'pendingPayments': by_status[PaymentStatus.PENDING],
            'completedPayments': by_status[PaymentStatus.COMPLETED],
            'verifiedPayments': by_status[PaymentStatus.VERIFIED],
            'failedPayments': by_status[PaymentStatus.FAILED],
            'cancelledPayments': by_status[PaymentStatus.CANCELLED],
            'totalRevenue': revenue,
        }
