"""
JSON API for member registration, M-Pesa payments, mission sign-up and the admin dashboard.

Portal errors raised here are rendered by registrations.exceptions.portal_exception_handler.
"""
import logging

from django.apps import apps
from rest_framework import status
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.exceptions import ParseError
from rest_framework.permissions import AllowAny, IsAdminUser
from rest_framework.response import Response

from .exceptions import MissingField, ValidationError
from .records import PaymentStatus
from .serializers import (
    MissionRegistrationSerializer,
    PaymentSerializer,
    RegistrationSerializer,
    registration_with_payment,
)
from .services import sequence_counters

logger = logging.getLogger(__name__)


def get_portal():
    return apps.get_app_config('registrations').portal


def _ok(data=None, http_status=status.HTTP_200_OK, **extra):
    payload = {'success': True}
    if data is not None:
        payload['data'] = data
    payload.update(extra)
    return Response(payload, status=http_status)


def _body(request):
    data = request.data
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _required(data, key):
    value = data.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise MissingField(key)
    return value.strip() if isinstance(value, str) else value


# Registration

@api_view(['POST'])
def create_registration(request):
    """
    Create a registration (unpaid). Returns the allocated registration ID.
    """
    registration = get_portal().registrations.create(_body(request))
    return _ok(RegistrationSerializer(registration).data)


@api_view(['POST'])
def verify_payment(request):
    """
    Verify payment with an M-Pesa confirmation code the member paid manually.
    """
    data = _body(request)
    registration_id = _required(data, 'registrationId')
    portal = get_portal()
    payment = portal.ledger.verify_by_code(registration_id, data.get('mpesaCode'))
    registration = portal.registrations.get(registration_id)
    return _ok(
        registration_with_payment(registration, payment),
        message='Payment verified successfully',
    )


@api_view(['POST'])
def complete_registration(request):
    """
    Confirm a registration once its payment succeeded and return the member summary.
    """
    data = _body(request)
    registration_id = _required(data, 'registrationId')
    payment_id = _required(data, 'paymentId')
    registration = get_portal().ledger.completed_registration(registration_id, payment_id)
    logger.info(f"Registration {registration.registration_id} completed for {registration.email}")
    return _ok(
        message='Registration completed successfully',
        registrationId=registration.registration_id,
        memberName=f"{registration.first_name} {registration.last_name}",
        email=registration.email,
    )


# M-Pesa (IntaSend)

@api_view(['POST'])
def stk_push(request):
    """
    Send an STK push to the member's phone and record a pending payment.
    """
    data = _body(request)
    result = get_portal().gateway.initiate(
        phone_number=data.get('phoneNumber'),
        amount=data.get('amount'),
        registration_data=data.get('registrationData'),
        account_reference=data.get('accountReference'),
        transaction_desc=data.get('transactionDesc'),
    )
    return _ok(message='STK push sent successfully', **result)


@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def mpesa_callback(request):
    """
    IntaSend callback. Always acknowledged; failures are logged by the gateway.
    """
    try:
        payload = request.data
    except ParseError:
        logger.warning("Unparseable IntaSend callback body")
        payload = None
    get_portal().gateway.handle_callback(payload)
    return Response({'status': 'received'}, status=status.HTTP_200_OK)


@api_view(['POST'])
def query_payment(request):
    """
    Status of an STK push, reconciling the local payment when the provider reports a final state.
    """
    data = _body(request)
    external_ref = data.get('checkoutRequestId') or data.get('invoiceId')
    if not external_ref:
        raise MissingField('checkoutRequestId')
    result = get_portal().gateway.poll(external_ref)
    payment = result.payment

    response_data = {
        'ResultCode': result.result_code,
        'ResultDesc': result.result_desc,
        'CheckoutRequestID': result.external_ref,
    }
    if payment is not None:
        response_data['MerchantRequestID'] = payment.merchant_ref
    if result.provider_data is not None:
        response_data['InstasendData'] = result.provider_data

    payment_record = None
    if payment is not None:
        payment_record = {
            'status': payment.status,
            'mpesaReceiptNumber': payment.confirmation_code,
            'amount': payment.amount,
        }
    return _ok(response_data, paymentRecord=payment_record)


# Mission

@api_view(['POST'])
def register_mission(request):
    mission = get_portal().missions.create(_body(request))
    return _ok(
        MissionRegistrationSerializer(mission).data,
        message='Mission registration successful',
    )


# Member account

@api_view(['POST'])
def login(request):
    data = _body(request)
    registration = get_portal().registrations.authenticate(
        data.get('registrationId'), data.get('password')
    )
    return _ok({
        'registrationId': registration.registration_id,
        'firstName': registration.first_name,
        'lastName': registration.last_name,
        'email': registration.email,
    })


@api_view(['POST'])
def setup_password(request):
    data = _body(request)
    get_portal().registrations.set_password(data.get('registrationId'), data.get('password'))
    return _ok(message='Password set successfully')


@api_view(['GET', 'PUT'])
def user_profile(request):
    """
    GET ?registrationId=... returns the profile with its payment;
    PUT {registrationId, updates} applies a partial update of editable fields.
    """
    portal = get_portal()
    if request.method == 'GET':
        registration_id = request.query_params.get('registrationId')
        if not registration_id:
            raise MissingField('registrationId')
    else:
        data = _body(request)
        registration_id = _required(data, 'registrationId')
        if not data.get('updates'):
            raise ValidationError('Updates payload is required', field='updates')
        portal.registrations.update(registration_id, data['updates'])

    registration = portal.registrations.get(registration_id)
    mission = portal.missions.get_for(registration_id)
    profile = registration_with_payment(registration, portal.ledger.payment_for(registration_id))
    profile['missionRegistration'] = MissionRegistrationSerializer(mission).data if mission else None
    return _ok(profile)


# Admin

def _registrations_with_payments(portal):
    return [
        registration_with_payment(r, portal.ledger.payment_for(r.registration_id))
        for r in portal.registrations.list()
    ]


def _serialized_stats(portal):
    stats = portal.dashboard_stats()
    stats['recentRegistrations'] = RegistrationSerializer(stats['recentRegistrations'], many=True).data
    stats['recentMissionRegistrations'] = MissionRegistrationSerializer(
        stats['recentMissionRegistrations'], many=True
    ).data
    return stats


@api_view(['GET'])
@permission_classes([IsAdminUser])
def admin_dashboard(request):
    portal = get_portal()
    return _ok({
        'stats': _serialized_stats(portal),
        'registrations': _registrations_with_payments(portal),
        'missionRegistrations': MissionRegistrationSerializer(portal.missions.list(), many=True).data,
    })


@api_view(['GET', 'POST'])
@permission_classes([IsAdminUser])
def admin_payments(request):
    """
    GET ?action=stats|pending|completed lists payment data;
    POST {paymentId, mpesaReceiptNumber, action: "verify"} manually verifies a pending payment.
    """
    portal = get_portal()
    if request.method == 'GET':
        action = request.query_params.get('action')
        if action == 'stats':
            return _ok(portal.ledger.stats())
        if action == 'pending':
            payments = portal.store.list_payments(status=PaymentStatus.PENDING)
            return _ok(PaymentSerializer(payments, many=True).data)
        if action == 'completed':
            registrations = [
                registration_with_payment(r, portal.ledger.payment_for(r.registration_id))
                for r in portal.registrations.list() if r.payment_verified
            ]
            return _ok(registrations)
        raise ValidationError('Invalid action', field='action')

    data = _body(request)
    if data.get('action') != 'verify':
        raise ValidationError('Invalid action', field='action')
    payment_id = _required(data, 'paymentId')
    receipt = _required(data, 'mpesaReceiptNumber')
    payment = portal.ledger.manually_verify(payment_id, receipt)
    return _ok(PaymentSerializer(payment).data, message='Payment verified and registration completed')


@api_view(['DELETE'])
@permission_classes([IsAdminUser])
def admin_delete_user(request, registration_id):
    get_portal().registrations.delete(registration_id)
    return _ok(message=f'Registration {registration_id} deleted')


@api_view(['GET'])
@permission_classes([IsAdminUser])
def database_contents(request):
    """Full dump of registrations, payments and mission sign-ups with sequence counters."""
    portal = get_portal()
    registrations = portal.registrations.list()
    missions = portal.missions.list()
    return _ok({
        'registrations': _registrations_with_payments(portal),
        'payments': PaymentSerializer(portal.store.list_payments(), many=True).data,
        'missionRegistrations': MissionRegistrationSerializer(missions, many=True).data,
        'stats': _serialized_stats(portal),
        'totalRecords': len(registrations),
        'totalMissionRecords': len(missions),
        'unitCounters': sequence_counters(registrations),
        'storeBackend': portal.store.name,
    })
