"""
Billing error taxonomy and the project-wide DRF exception handler.

Services raise these directly; the handler turns every error into the
``{'ok': False, 'error': {'code', 'message'}}`` envelope.
"""
import logging

from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


class BillingError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Billing error'
    default_code = 'billing_error'


class ValidationError(BillingError):
    """Bad input shape or values."""
    default_detail = 'Invalid input'
    default_code = 'validation_error'


class NotFoundError(BillingError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Not found'
    default_code = 'not_found'


class InvalidStateError(BillingError):
    """A caller explicitly asked for a transition the record cannot take."""
    default_detail = 'Invalid state for this operation'
    default_code = 'invalid_state'


class GatewayError(BillingError):
    """The upstream payment processor failed or could not be reached."""
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'Payment gateway error'
    default_code = 'gateway_error'

    def __init__(self, detail=None, code=None, *, upstream_status=None, payload=None):
        super().__init__(detail, code)
        self.upstream_status = upstream_status
        self.payload = payload


class SignatureError(BillingError):
    """Tampered or forged checkout callback or webhook."""
    default_detail = 'Signature verification failed'
    default_code = 'signature_error'


def api_exception_handler(exc, context):
    resp = drf_exception_handler(exc, context)
    if resp is None:
        logger.exception('Unhandled API error in %s', context.get('view'), exc_info=exc)
        return Response({'ok': False, 'error': {'code': 'server_error', 'message': str(exc)}}, status=500)
    # normalize response
    if isinstance(exc, BillingError):
        code = exc.default_code
        detail = str(exc.detail)
    else:
        code = 'api_error'
        if isinstance(resp.data, dict):
            detail = resp.data.get('detail') or resp.data
        else:
            detail = str(resp.data)
    return Response({'ok': False, 'error': {'code': code, 'message': detail}}, status=resp.status_code)
