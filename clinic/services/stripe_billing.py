"""
Stripe integration: self-serve checkout, billing portal and webhook sync.

Tenants are created from completed checkouts and their subscription
state is kept in step with Stripe by the webhook handlers below.  Every
webhook event is applied at most once; applied event ids are recorded
in :class:`~clinic.models.WebhookEvent` inside the same transaction.
"""
from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone as dt_timezone
from typing import Optional

import stripe
from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction

from clinic.exceptions import PaymentProviderError
from clinic.models import Tenant, WebhookEvent
from clinic.services.subscription import grace_period_end

logger = logging.getLogger(__name__)

User = get_user_model()


def _stripe():
    stripe.api_key = settings.STRIPE_SECRET_KEY
    return stripe


def _get(obj, key, default=None):
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, AttributeError):
        return default
    return default if value is None else value


def _ts(value) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=dt_timezone.utc)


def is_comped_subscription(subscription) -> bool:
    """A 100% off coupon makes the subscription complimentary."""
    discount = _get(subscription, 'discount')
    if discount is None:
        discounts = _get(subscription, 'discounts') or []
        discount = discounts[0] if discounts and not isinstance(discounts[0], str) else None
    coupon = _get(discount, 'coupon')
    return _get(coupon, 'percent_off') == 100


def map_subscription_status(stripe_status: str, is_comped: bool = False) -> str:
    if stripe_status in ('active', 'trialing'):
        return Tenant.STATUS_COMPED if is_comped else Tenant.STATUS_ACTIVE
    if stripe_status == 'past_due':
        return Tenant.STATUS_PAST_DUE
    if stripe_status in ('canceled', 'unpaid'):
        return Tenant.STATUS_CANCELED
    return Tenant.STATUS_INACTIVE


def _period(subscription):
    start = _get(subscription, 'current_period_start')
    end = _get(subscription, 'current_period_end')
    if start is None:
        # Newer API versions carry the period on the subscription items.
        items = _get(_get(subscription, 'items'), 'data') or []
        if items:
            start = _get(items[0], 'current_period_start')
            end = _get(items[0], 'current_period_end')
    return _ts(start), _ts(end)


# ---------------------------------------------------------------------
# Checkout & portal
# ---------------------------------------------------------------------
def create_checkout_session(*, email: str, clinic_name: str, subdomain: str) -> dict:
    metadata = {'clinic_name': clinic_name, 'subdomain': subdomain, 'source': 'self_serve'}
    try:
        session = _stripe().checkout.Session.create(
            mode='subscription',
            payment_method_types=['card'],
            line_items=[{'price': settings.STRIPE_PRICE_ID_BASIC, 'quantity': 1}],
            customer_email=email,
            allow_promotion_codes=True,
            subscription_data={'metadata': metadata},
            metadata=metadata,
            success_url=f"{settings.APP_URL}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{settings.APP_URL}/pricing?canceled=true",
        )
    except stripe.StripeError as e:
        logger.error('Stripe error creating checkout session for %s: %s', subdomain, e)
        raise PaymentProviderError('Failed to create checkout session') from e
    logger.info('created checkout session %s for subdomain %s', session['id'], subdomain)
    return {'sessionId': session['id'], 'url': session['url']}


def create_portal_session(tenant: Tenant) -> str:
    try:
        session = _stripe().billing_portal.Session.create(
            customer=tenant.stripe_customer_id,
            return_url=f"{settings.APP_URL}/billing",
        )
    except stripe.StripeError as e:
        logger.error('Stripe error creating portal session for tenant %s: %s', tenant.id, e)
        raise PaymentProviderError('Failed to create portal session') from e
    return session['url']


def setup_status(session_id: str) -> dict:
    """Has the webhook finished provisioning the clinic for this checkout?"""
    try:
        session = _stripe().checkout.Session.retrieve(session_id)
    except stripe.StripeError as e:
        logger.error('Stripe error retrieving checkout session %s: %s', session_id, e)
        raise PaymentProviderError('Failed to check setup status') from e
    email = _get(session, 'customer_email') or _get(_get(session, 'customer_details'), 'email')
    if not email:
        return {'ready': False, 'error': 'Invalid session'}
    user = User.objects.select_related('tenant').filter(email__iexact=email, tenant__isnull=False).first()
    if user and user.tenant.subscription_status in (Tenant.STATUS_ACTIVE, Tenant.STATUS_COMPED):
        return {'ready': True, 'userId': user.id, 'tenantId': user.tenant_id}
    return {'ready': False}


# ---------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------
def construct_event(payload: bytes, sig_header: str):
    """Verify the signature and parse the event.

    Raises ``ValueError`` for bad payloads and
    ``stripe.SignatureVerificationError`` for bad signatures.
    """
    return stripe.Webhook.construct_event(payload, sig_header, settings.STRIPE_WEBHOOK_SECRET)


def handle_event(event) -> bool:
    """Apply ``event`` once.  Returns False when it was already applied."""
    event_id = _get(event, 'id')
    event_type = _get(event, 'type')
    with transaction.atomic():
        if WebhookEvent.objects.select_for_update().filter(id=event_id).exists():
            logger.info('event already processed: %s', event_id)
            return False
        handler = EVENT_HANDLERS.get(event_type)
        if handler is None:
            logger.info('unhandled event type: %s', event_type)
        else:
            handler(_get(_get(event, 'data'), 'object'))
        WebhookEvent.objects.create(id=event_id, type=event_type)
    return True


def _split_clinic_name(clinic_name: str) -> tuple[str, str]:
    parts = clinic_name.split(' ')
    return parts[0] or 'Doctor', ' '.join(parts[1:]) or 'Admin'


def _ensure_admin_user(email: str, tenant: Tenant, clinic_name: str) -> Optional[User]:
    """Bind the checkout email's account to ``tenant`` as its administrator.

    Accounts that already belong to another clinic and platform operators
    are left as they are.
    """
    user = User.objects.filter(email__iexact=email).first()
    first_name, last_name = _split_clinic_name(clinic_name)
    if user is None:
        user = User.objects.create_user(
            username=email, email=email, password=secrets.token_urlsafe(12),
            first_name=first_name, last_name=last_name,
        )
        logger.info('created admin user %s for tenant %s', user.id, tenant.id)
    elif user.role == 'super_admin':
        logger.warning('checkout email %s belongs to a platform operator; not rebinding', email)
        return None
    elif user.tenant_id is not None and user.tenant_id != tenant.id:
        logger.warning('checkout email %s belongs to tenant %s; not rebinding to %s',
                       email, user.tenant_id, tenant.id)
        return None
    user.role = 'admin'
    user.tenant = tenant
    user.save(update_fields=['role', 'tenant'])
    return user


def handle_checkout_completed(session) -> Optional[Tenant]:
    """Create (or refresh) the tenant paid for by a completed checkout.

    A subdomain already held by a different Stripe customer is never
    taken over; the event is logged and otherwise ignored.
    """
    metadata = _get(session, 'metadata') or {}
    clinic_name = _get(metadata, 'clinic_name')
    subdomain = _get(metadata, 'subdomain')
    if not clinic_name or not subdomain:
        raise ValueError('Missing metadata in checkout session')

    customer = _get(session, 'customer')
    tenant = Tenant.objects.select_for_update().filter(subdomain=subdomain).first()
    if tenant is not None and (not customer or tenant.stripe_customer_id != customer):
        logger.error('checkout %s for subdomain %s by customer %s refused; tenant %s belongs to %s',
                     _get(session, 'id'), subdomain, customer, tenant.id, tenant.stripe_customer_id)
        return None

    subscription_id = _get(session, 'subscription')
    subscription = _stripe().Subscription.retrieve(subscription_id) if subscription_id else None
    comped = is_comped_subscription(subscription)
    period_start, period_end = _period(subscription)

    fields = {
        'clinic_name': clinic_name,
        'plan_code': settings.STRIPE_PLAN_CODE,
        'subscription_status': Tenant.STATUS_COMPED if comped else Tenant.STATUS_ACTIVE,
        'stripe_customer_id': customer,
        'stripe_subscription_id': subscription_id,
        'is_comped': comped,
        'comp_reason': (_get(metadata, 'comp_reason') or 'coupon_applied') if comped else None,
        'current_period_start': period_start,
        'current_period_end': period_end,
        'grace_period_ends_at': None,
    }
    created = tenant is None
    if created:
        tenant = Tenant.objects.create(subdomain=subdomain, **fields)
    else:
        for name, value in fields.items():
            setattr(tenant, name, value)
        tenant.save()

    email = _get(_get(session, 'customer_details'), 'email') or _get(session, 'customer_email')
    if email:
        _ensure_admin_user(email, tenant, clinic_name)
    logger.info('tenant %s %s from checkout %s', tenant.id, 'created' if created else 'updated', _get(session, 'id'))
    return tenant


def handle_subscription_change(subscription) -> int:
    comped = is_comped_subscription(subscription)
    status = map_subscription_status(_get(subscription, 'status'), comped)
    period_start, period_end = _period(subscription)
    updated = Tenant.objects.filter(stripe_customer_id=_get(subscription, 'customer')).update(
        subscription_status=status,
        stripe_subscription_id=_get(subscription, 'id'),
        is_comped=comped,
        current_period_start=period_start,
        current_period_end=period_end,
        grace_period_ends_at=grace_period_end() if status == Tenant.STATUS_PAST_DUE else None,
    )
    logger.info('subscription %s -> %s (%d tenants)', _get(subscription, 'id'), status, updated)
    return updated


def handle_subscription_deleted(subscription) -> int:
    updated = Tenant.objects.filter(stripe_customer_id=_get(subscription, 'customer')).update(
        subscription_status=Tenant.STATUS_CANCELED,
        grace_period_ends_at=None,
    )
    logger.info('subscription %s canceled (%d tenants)', _get(subscription, 'id'), updated)
    return updated


def handle_payment_succeeded(invoice) -> int:
    updated = Tenant.objects.filter(stripe_customer_id=_get(invoice, 'customer')).update(
        subscription_status=Tenant.STATUS_ACTIVE,
        grace_period_ends_at=None,
    )
    logger.info('payment succeeded for customer %s', _get(invoice, 'customer'))
    return updated


def handle_payment_failed(invoice) -> int:
    updated = Tenant.objects.filter(stripe_customer_id=_get(invoice, 'customer')).update(
        subscription_status=Tenant.STATUS_PAST_DUE,
        grace_period_ends_at=grace_period_end(),
    )
    logger.warning('payment failed for customer %s, grace period started', _get(invoice, 'customer'))
    return updated


EVENT_HANDLERS = {
    'checkout.session.completed': handle_checkout_completed,
    'customer.subscription.created': handle_subscription_change,
    'customer.subscription.updated': handle_subscription_change,
    'customer.subscription.deleted': handle_subscription_deleted,
    'invoice.payment_succeeded': handle_payment_succeeded,
    'invoice.payment_failed': handle_payment_failed,
}
