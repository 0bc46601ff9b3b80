"""
IntaSend M-Pesa integration: the HTTP client, normalization of provider
payloads to M-Pesa style result codes, and the gateway that feeds them into
the payment ledger.
"""
import logging
from decimal import Decimal, InvalidOperation

import requests
from django.conf import settings
from django.utils import timezone

from .exceptions import InvalidFormat, MissingField, PortalError, UpstreamError
from .records import ProviderResult
from .utils import normalize_phone_number

logger = logging.getLogger(__name__)

STATE_COMPLETE = 'COMPLETE'
STATE_FAILED = 'FAILED'


class IntaSendClient:
    """
    Thin wrapper over the IntaSend REST API. Credentials default to the
    INTASEND_* settings, read at call time.
    """

    def __init__(self, api_key=None, base_url=None, timeout=None):
        self._api_key = api_key
        self._base_url = base_url
        self._timeout = timeout

    @property
    def api_key(self):
        return self._api_key if self._api_key is not None else settings.INTASEND_API_KEY

    @property
    def base_url(self):
        return (self._base_url or settings.INTASEND_BASE_URL).rstrip('/')

    @property
    def timeout(self):
        return self._timeout or settings.INTASEND_TIMEOUT

    def _headers(self):
        return {
            'Authorization': f'Bearer {self.api_key.strip()}',
            'Content-Type': 'application/json',
        }

    def _parse(self, response):
        try:
            data = response.json()
        except ValueError:
            logger.error(f"IntaSend returned a non-JSON body (HTTP {response.status_code})")
            raise UpstreamError('Invalid response from payment provider')
        if not response.ok:
            message = None
            if isinstance(data, dict):
                message = data.get('detail') or data.get('message')
            logger.error(f"IntaSend error (HTTP {response.status_code}): {data}")
            raise UpstreamError(message or f'Payment provider returned HTTP {response.status_code}')
        return data

    def initiate_stk_push(self, phone_number, amount, email, narrative, api_ref):
        """Send an M-Pesa STK push. Returns the invoice object (invoice_id, api_ref, state...)."""
        url = f"{self.base_url}/payment/mpesa-stk-push/"
        payload = {
            'phone_number': phone_number,
            'email': email,
            'amount': str(amount),
            'narrative': narrative,
            'api_ref': api_ref,
        }
        try:
            response = requests.post(url, headers=self._headers(), json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"STK push request failed: {str(e)}")
            raise UpstreamError('Payment provider unavailable') from e
        data = self._parse(response)
        invoice = data.get('invoice') if isinstance(data, dict) else None
        if not isinstance(invoice, dict) or not invoice.get('invoice_id'):
            logger.error(f"STK push response without invoice: {data}")
            raise UpstreamError('STK push failed')
        return invoice

    def fetch_payment_status(self, invoice_id):
        """Current state of an invoice as reported by IntaSend."""
        url = f"{self.base_url}/payment/status/{invoice_id}/"
        try:
            response = requests.get(url, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Status request for {invoice_id} failed: {str(e)}")
            raise UpstreamError('Payment provider unavailable') from e
        return self._parse(response)


def normalize_provider_payload(payload, external_ref=None):
    """
    Map an IntaSend callback or status payload to a ProviderResult.

    COMPLETE -> result 0 with receipt details, FAILED -> result 1 with the
    failure reason, anything else -> no result yet (still pending).
    """
    if not isinstance(payload, dict):
        return ProviderResult(external_ref=external_ref, result_code=None,
                              result_desc='Unrecognized payload', raw=payload)

    data = dict(payload)
    # The status endpoint nests the invoice fields
    if isinstance(payload.get('invoice'), dict):
        data.update(payload['invoice'])

    ref = data.get('invoice_id') or external_ref
    state = str(data.get('state') or '').upper()

    if state == STATE_COMPLETE:
        return ProviderResult(
            external_ref=ref,
            result_code=0,
            result_desc='Payment completed successfully',
            receipt={
                'receipt_number': data.get('mpesa_reference') or data.get('invoice_id'),
                'transaction_date': data.get('updated_at') or data.get('created_at') or timezone.now().isoformat(),
                'amount': data.get('net_amount') or data.get('value'),
                'phone_number': data.get('account'),
            },
            raw=payload,
        )
    if state == STATE_FAILED:
        return ProviderResult(
            external_ref=ref,
            result_code=1,
            result_desc=data.get('failed_reason') or 'Payment failed',
            raw=payload,
        )
    return ProviderResult(
        external_ref=ref,
        result_code=None,
        result_desc=f"Payment {state.lower() if state else 'pending'}",
        raw=payload,
    )


class ReconciliationGateway:
    """Drives STK pushes, provider callbacks and status polling through the ledger."""

    def __init__(self, ledger, client, narrative=None):
        self.ledger = ledger
        self.client = client
        self._narrative = narrative

    @property
    def narrative(self):
        return self._narrative or settings.PAYMENT_NARRATIVE

    def initiate(self, phone_number, amount, registration_data, account_reference=None, transaction_desc=None):
        if not registration_data or not isinstance(registration_data, dict):
            raise MissingField('registrationData')
        if amount is None or amount == '':
            raise MissingField('amount')
        try:
            amount = Decimal(str(amount))
        except InvalidOperation:
            raise InvalidFormat('amount must be a number', field='amount')
        if amount <= 0:
            raise InvalidFormat('amount must be positive', field='amount')
        phone = normalize_phone_number(phone_number)

        # The pending payment is reserved before the push so a concurrent push
        # for the same registration is refused before the member is prompted
        api_ref = account_reference or f"REG-{int(timezone.now().timestamp() * 1000)}"
        payment = self.ledger.create_pending(
            None, phone, amount,
            attached_data=registration_data,
            merchant_ref=api_ref,
        )
        try:
            invoice = self.client.initiate_stk_push(
                phone_number=phone,
                amount=amount,
                email=registration_data.get('email') or '',
                narrative=transaction_desc or self.narrative,
                api_ref=api_ref,
            )
        except UpstreamError as e:
            self.ledger.release(payment.payment_id, f"STK push not sent: {e.message}")
            raise
        invoice_id = invoice['invoice_id']
        merchant_ref = invoice.get('api_ref') or api_ref
        logger.info(f"STK push sent to {phone}: invoice {invoice_id}")

        payment = self.ledger.attach_checkout(payment.payment_id, invoice_id, merchant_ref)
        return {
            'checkoutRequestId': invoice_id,
            'merchantRequestId': merchant_ref,
            'paymentId': payment.payment_id,
            'invoiceId': invoice_id,
        }

    def handle_callback(self, payload):
        """
        Apply a provider callback. Never raises: the provider must always get
        an acknowledgement, so every failure is logged instead.
        """
        logger.info(f"IntaSend callback received: {payload}")
        result = normalize_provider_payload(payload)
        if not result.external_ref:
            logger.warning("Callback without invoice_id ignored")
            return False
        if not result.is_final:
            logger.info(f"Callback for {result.external_ref}: {result.result_desc}, nothing to apply")
            return False
        try:
            return self.ledger.apply_callback(
                result.external_ref, result.result_code, result.receipt, result.result_desc
            )
        except PortalError as e:
            logger.error(f"Callback for {result.external_ref} rejected: {e.message}")
        except Exception:
            logger.exception(f"Error processing callback for {result.external_ref}")
        return False

    def fetch_status(self, external_ref):
        return normalize_provider_payload(self.client.fetch_payment_status(external_ref), external_ref)

    def poll(self, external_ref):
        if not external_ref:
            raise MissingField('checkoutRequestId')
        return self.ledger.query_status(external_ref, self.fetch_status)
