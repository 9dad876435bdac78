import logging

import stripe
from django.views.decorators.csrf import csrf_exempt
from rest_framework.decorators import api_view, authentication_classes, permission_classes, throttle_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from clinic.services import stripe_billing

logger = logging.getLogger(__name__)


@csrf_exempt
@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
@throttle_classes([])
def stripe_webhook(request):
    """Signed Stripe events; each event id is applied at most once."""
    signature = request.META.get('HTTP_STRIPE_SIGNATURE')
    if not signature:
        return Response({'ok': False, 'error': {'code': 'missing_signature', 'message': 'No signature'}}, status=400)
    payload = request.body
    try:
        event = stripe_billing.construct_event(payload, signature)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning('webhook signature verification failed: %s', e)
        return Response({'ok': False, 'error': {'code': 'invalid_signature', 'message': 'Invalid signature'}},
                        status=400)

    logger.info('stripe webhook received: %s (%s)', event['type'], event['id'])
    applied = stripe_billing.handle_event(event)
    return Response({'received': True, 'duplicate': not applied})
