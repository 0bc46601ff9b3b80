"""
Error taxonomy for the registration portal.

Every rejected write raises one of these with a specific reason; the REST
framework exception handler at the bottom of this module turns them into
``{"success": false, "error": ...}`` responses.
"""
import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class PortalError(Exception):
    """
    Base exception for portal errors.

    Attributes:
        status_code: HTTP status code
        code: Application-specific error code
        message: Human-readable error message
        field: Offending request field, when there is one
    """
    status_code = status.HTTP_400_BAD_REQUEST
    code = 'error'

    def __init__(self, message, field=None):
        self.message = message
        self.field = field
        super().__init__(message)

    def as_dict(self):
        payload = {'success': False, 'error': self.message, 'code': self.code}
        if self.field:
            payload['field'] = self.field
        return payload


# Validation (always recoverable client-side)

class ValidationError(PortalError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = 'validation_error'


class MissingField(ValidationError):
    code = 'missing_field'

    def __init__(self, field):
        super().__init__(f'{field} is required', field=field)


class InvalidFormat(ValidationError):
    code = 'invalid_format'


# Not found

class NotFoundError(PortalError):
    status_code = status.HTTP_404_NOT_FOUND
    code = 'not_found'


class RegistrationNotFound(NotFoundError):
    code = 'registration_not_found'

    def __init__(self, registration_id):
        self.registration_id = registration_id
        super().__init__('Registration not found', field='registrationId')


class PaymentNotFound(NotFoundError):
    code = 'payment_not_found'

    def __init__(self, payment_id):
        self.payment_id = payment_id
        super().__init__('Payment not found', field='paymentId')


# Conflicts (terminal for the request, client must change input)

class ConflictError(PortalError):
    status_code = status.HTTP_409_CONFLICT
    code = 'conflict'


class DuplicateEmail(ConflictError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = 'duplicate_email'

    def __init__(self, email):
        self.email = email
        super().__init__('Email address is already registered', field='email')


class CodeAlreadyUsed(ConflictError):
    code = 'code_already_used'

    def __init__(self, code):
        self.confirmation_code = code
        super().__init__('This M-Pesa transaction code has already been used', field='mpesaCode')


class DuplicatePayment(ConflictError):
    code = 'duplicate_payment'

    def __init__(self, registration_id):
        self.registration_id = registration_id
        super().__init__('Payment already exists for this registration')


class PaymentNotCompleted(ConflictError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = 'payment_not_completed'

    def __init__(self, payment_id):
        self.payment_id = payment_id
        super().__init__('Payment not found or not completed', field='paymentId')


class PaymentNotPending(ConflictError):
    code = 'payment_not_pending'

    def __init__(self, payment_id, current_status):
        self.payment_id = payment_id
        self.current_status = current_status
        super().__init__(f'Payment is already {current_status}')


class AlreadyRegistered(ConflictError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = 'already_registered'

    def __init__(self, registration_id):
        self.registration_id = registration_id
        super().__init__('You have already registered for this mission')


# Authentication

class AuthenticationFailed(PortalError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = 'authentication_failed'


# Upstream payment provider (retryable by the client)

class UpstreamError(PortalError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = 'upstream_error'


# Storage failures (generic message to the caller)

class InternalError(PortalError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = 'internal_error'


class AllocationFailed(InternalError):
    code = 'allocation_failed'

    def __init__(self, unit_code):
        self.unit_code = unit_code
        super().__init__('Failed to allocate a registration ID')


def portal_exception_handler(exc, context):
    """
    REST framework exception handler.

    Portal errors are rendered with their own status; framework errors keep
    their status but share the same envelope; anything else is logged and
    reported as a generic 500.
    """
    view = context.get('view')
    view_name = view.__class__.__name__ if view is not None else 'unknown view'

    if isinstance(exc, PortalError):
        if exc.status_code >= 500:
            logger.error(f"{view_name}: {exc.code}: {exc.message}")
        return Response(exc.as_dict(), status=exc.status_code)

    response = exception_handler(exc, context)
    if response is not None:
        data = response.data
        if isinstance(data, dict) and 'detail' in data:
            response.data = {'success': False, 'error': str(data['detail'])}
        else:
            response.data = {'success': False, 'error': 'Invalid request', 'errors': data}
        return response

    logger.exception(f"Unhandled error in {view_name}")
    return Response(
        {'success': False, 'error': 'Internal server error', 'code': InternalError.code},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
