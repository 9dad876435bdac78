import logging

from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


class InvalidTransition(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'status transition not allowed'
    default_code = 'invalid_transition'


class InsufficientStock(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'insufficient stock'
    default_code = 'insufficient_stock'


class SlotUnavailable(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'the doctor already has an appointment in this slot'
    default_code = 'slot_unavailable'


class SubscriptionInactive(APIException):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_detail = 'subscription inactive'
    default_code = 'subscription_inactive'


class PaymentProviderError(APIException):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'payment provider error'
    default_code = 'payment_provider_error'


class AIGatewayError(APIException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'AI gateway error'
    default_code = 'ai_gateway_error'


class AIRateLimited(APIException):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_detail = 'Rate limit exceeded, please try again later.'
    default_code = 'ai_rate_limited'


class AICreditsExhausted(APIException):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_detail = 'Payment required, please add credits to your workspace.'
    default_code = 'ai_payment_required'


def api_exception_handler(exc, context):
    resp = drf_exception_handler(exc, context)
    if resp is None:
        logger.exception('unhandled error in %s', context.get('view'), exc_info=exc)
        return Response({'ok': False, 'error': {'code': 'server_error', 'message': str(exc)}}, status=500)
    # normalize response
    code = getattr(exc, 'default_code', None) or 'api_error'
    if isinstance(resp.data, dict):
        detail = resp.data.get('detail') or resp.data
    else:
        detail = resp.data
    out = Response({'ok': False, 'error': {'code': code, 'message': detail}}, status=resp.status_code)
    for header in ('WWW-Authenticate', 'Retry-After', 'Allow'):
        if header in resp:
            out[header] = resp[header]
    return out
