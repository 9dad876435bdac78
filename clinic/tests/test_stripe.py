import json

import pytest
import stripe
from django.utils import timezone
from rest_framework.test import APIClient

from clinic.models import Tenant, User, WebhookEvent
from clinic.services import stripe_billing
from clinic.services.subscription import evaluate_access

pytestmark = pytest.mark.django_db

SUBSCRIPTION = {
    'id': 'sub_1',
    'customer': 'cus_new',
    'status': 'active',
    'current_period_start': 1790000000,
    'current_period_end': 1792592000,
    'discount': None,
}


def _checkout_event(event_id='evt_1', metadata=None):
    return {
        'id': event_id,
        'type': 'checkout.session.completed',
        'data': {'object': {
            'id': 'cs_1',
            'customer': 'cus_new',
            'subscription': 'sub_1',
            'customer_details': {'email': 'owner@klinikbaru.my'},
            'metadata': {'clinic_name': 'Klinik Baru Sdn', 'subdomain': 'klinik-baru'} if metadata is None else metadata,
        }},
    }


@pytest.fixture
def fake_stripe(monkeypatch):
    """Accept any signature and hand back the event posted as the body."""
    def construct_event(payload, sig_header, secret):
        return json.loads(payload)

    monkeypatch.setattr(stripe.Webhook, 'construct_event', construct_event)
    monkeypatch.setattr(stripe.Subscription, 'retrieve', lambda *a, **kw: dict(SUBSCRIPTION))


def _post(event, signature='t=1,v1=abc'):
    extra = {'HTTP_STRIPE_SIGNATURE': signature} if signature else {}
    return APIClient().post('/api/stripe/webhook', data=json.dumps(event), content_type='application/json', **extra)


def test_checkout_completed_provisions_clinic(fake_stripe):
    r = _post(_checkout_event())
    assert r.status_code == 200
    assert r.data == {'received': True, 'duplicate': False}
    tenant = Tenant.objects.get(subdomain='klinik-baru')
    assert tenant.subscription_status == 'active'
    assert tenant.stripe_customer_id == 'cus_new'
    assert tenant.current_period_end.year == 2026
    owner = User.objects.get(email='owner@klinikbaru.my')
    assert owner.role == 'admin'
    assert owner.tenant == tenant
    assert owner.first_name == 'Klinik'


def test_events_are_applied_once(fake_stripe):
    _post(_checkout_event())
    Tenant.objects.filter(subdomain='klinik-baru').update(clinic_name='Renamed')
    r = _post(_checkout_event())
    assert r.data['duplicate'] is True
    assert Tenant.objects.get(subdomain='klinik-baru').clinic_name == 'Renamed'
    assert WebhookEvent.objects.filter(id='evt_1').count() == 1


def test_missing_metadata_fails_and_is_not_recorded(fake_stripe):
    r = _post(_checkout_event(metadata={'clinic_name': 'No Subdomain'}))
    assert r.status_code == 500
    assert not WebhookEvent.objects.filter(id='evt_1').exists()


def test_missing_signature(fake_stripe):
    r = _post(_checkout_event(), signature=None)
    assert r.status_code == 400
    assert r.data['error']['code'] == 'missing_signature'


def test_bad_signature(monkeypatch):
    def construct_event(payload, sig_header, secret):
        raise stripe.SignatureVerificationError('No signatures found', sig_header)

    monkeypatch.setattr(stripe.Webhook, 'construct_event', construct_event)
    r = _post(_checkout_event())
    assert r.status_code == 400
    assert r.data['error']['code'] == 'invalid_signature'
    assert not Tenant.objects.filter(subdomain='klinik-baru').exists()


def test_payment_failed_starts_grace_period(fake_stripe, tenant, admin_user):
    _post({'id': 'evt_f', 'type': 'invoice.payment_failed', 'data': {'object': {'customer': tenant.stripe_customer_id}}})
    tenant.refresh_from_db()
    assert tenant.subscription_status == 'past_due'
    assert tenant.grace_period_ends_at > timezone.now()
    admin_user.refresh_from_db()
    decision = evaluate_access(admin_user)
    assert decision.has_access and decision.is_in_grace_period

    _post({'id': 'evt_s', 'type': 'invoice.payment_succeeded', 'data': {'object': {'customer': tenant.stripe_customer_id}}})
    tenant.refresh_from_db()
    assert tenant.subscription_status == 'active'
    assert tenant.grace_period_ends_at is None


def test_subscription_with_full_coupon_is_comped(fake_stripe, tenant):
    subscription = dict(SUBSCRIPTION, customer=tenant.stripe_customer_id, discount={'coupon': {'percent_off': 100}})
    _post({'id': 'evt_u', 'type': 'customer.subscription.updated', 'data': {'object': subscription}})
    tenant.refresh_from_db()
    assert tenant.subscription_status == 'comped'
    assert tenant.is_comped


def test_subscription_deleted_cancels(fake_stripe, tenant, admin_client):
    _post({'id': 'evt_d', 'type': 'customer.subscription.deleted',
           'data': {'object': {'id': 'sub_1', 'customer': tenant.stripe_customer_id}}})
    tenant.refresh_from_db()
    assert tenant.subscription_status == 'canceled'
    assert admin_client.get('/api/patients').status_code == 402


def test_unknown_event_is_recorded(fake_stripe):
    r = _post({'id': 'evt_x', 'type': 'customer.created', 'data': {'object': {}}})
    assert r.status_code == 200
    assert WebhookEvent.objects.filter(id='evt_x').exists()


@pytest.mark.parametrize('stripe_status,comped,expected', [
    ('active', False, 'active'),
    ('trialing', False, 'active'),
    ('active', True, 'comped'),
    ('past_due', False, 'past_due'),
    ('unpaid', False, 'canceled'),
    ('canceled', False, 'canceled'),
    ('incomplete', False, 'inactive'),
])
def test_status_mapping(stripe_status, comped, expected):
    assert stripe_billing.map_subscription_status(stripe_status, comped) == expected


def test_comped_detection_reads_discounts_list():
    assert stripe_billing.is_comped_subscription({'discounts': [{'coupon': {'percent_off': 100}}]})
    assert not stripe_billing.is_comped_subscription({'discount': {'coupon': {'percent_off': 50}}})
    assert not stripe_billing.is_comped_subscription(None)


def test_period_falls_back_to_items():
    start, end = stripe_billing._period({'items': {'data': [{'current_period_start': 1790000000,
                                                               'current_period_end': 1792592000}]}})
    assert start < end
    assert (end - start).days == 30


def test_create_checkout_session(monkeypatch):
    captured = {}

    def create(**kwargs):
        captured.update(kwargs)
        return {'id': 'cs_test', 'url': 'https://checkout.stripe.com/c/cs_test'}

    monkeypatch.setattr(stripe.checkout.Session, 'create', create)
    r = APIClient().post('/api/stripe/create-checkout-session', {
        'email': 'owner@klinik.my', 'clinicName': 'Klinik Sihat', 'subdomain': 'Klinik-Sihat',
    }, format='json')
    assert r.status_code == 200
    assert r.data == {'sessionId': 'cs_test', 'url': 'https://checkout.stripe.com/c/cs_test'}
    assert captured['metadata']['subdomain'] == 'klinik-sihat'
    assert captured['mode'] == 'subscription'
    assert captured['customer_email'] == 'owner@klinik.my'


def test_checkout_refuses_taken_or_reserved_subdomain(tenant):
    client = APIClient()
    for subdomain in ('clinic-a', 'admin'):
        r = client.post('/api/stripe/create-checkout-session', {
            'email': 'owner@klinik.my', 'clinicName': 'Klinik', 'subdomain': subdomain,
        }, format='json')
        assert r.status_code == 400


def test_checkout_provider_error(monkeypatch):
    def create(**kwargs):
        raise stripe.StripeError('boom')

    monkeypatch.setattr(stripe.checkout.Session, 'create', create)
    r = APIClient().post('/api/stripe/create-checkout-session', {
        'email': 'owner@klinik.my', 'clinicName': 'Klinik Sihat', 'subdomain': 'klinik-sihat',
    }, format='json')
    assert r.status_code == 502
    assert r.data['error']['code'] == 'payment_provider_error'


def test_portal_session(monkeypatch, admin_client, staff_client, tenant):
    monkeypatch.setattr(stripe.billing_portal.Session, 'create',
                        lambda **kw: {'url': f"https://billing.stripe.com/p/{kw['customer']}"})
    assert staff_client.post('/api/stripe/create-portal-session', {}, format='json').status_code == 403
    r = admin_client.post('/api/stripe/create-portal-session', {}, format='json')
    assert r.status_code == 200
    assert r.data['url'].endswith('cus_A')


def test_portal_session_without_customer(admin_client, tenant):
    tenant.stripe_customer_id = None
    tenant.save()
    assert admin_client.post('/api/stripe/create-portal-session', {}, format='json').status_code == 404


def test_portal_session_for_other_clinic_is_forbidden(admin_client, other_tenant):
    r = admin_client.post('/api/stripe/create-portal-session', {'tenantId': other_tenant.id}, format='json')
    assert r.status_code == 403


def test_setup_status(monkeypatch, tenant):
    monkeypatch.setattr(stripe.checkout.Session, 'retrieve', lambda sid: {'id': sid, 'customer_email': 'boss@a.my'})
    client = APIClient()
    assert client.post('/api/stripe/setup-status', {'session_id': 'cs_1'}, format='json').data == {'ready': False}
    owner = User.objects.create_user(username='boss', email='boss@a.my', password='x', role='admin', tenant=tenant)
    r = client.post('/api/stripe/setup-status', {'session_id': 'cs_1'}, format='json')
    assert r.data == {'ready': True, 'userId': owner.id, 'tenantId': tenant.id}


def test_checkout_cannot_take_over_another_customers_clinic(fake_stripe, tenant, admin_user):
    event = _checkout_event(metadata={'clinic_name': 'Hijacked', 'subdomain': tenant.subdomain})
    r = _post(event)
    assert r.status_code == 200
    tenant.refresh_from_db()
    assert tenant.clinic_name == 'Klinik A'
    assert tenant.stripe_customer_id == 'cus_A'
    assert not User.objects.filter(email='owner@klinikbaru.my').exists()
    admin_user.refresh_from_db()
    assert admin_user.tenant == tenant
    assert WebhookEvent.objects.filter(id='evt_1').exists()


def test_checkout_by_the_same_customer_refreshes_clinic(fake_stripe, tenant):
    tenant.stripe_customer_id = 'cus_new'
    tenant.subscription_status = 'canceled'
    tenant.save()
    _post(_checkout_event(metadata={'clinic_name': 'Klinik A Baru', 'subdomain': tenant.subdomain}))
    tenant.refresh_from_db()
    assert tenant.clinic_name == 'Klinik A Baru'
    assert tenant.subscription_status == 'active'
    assert Tenant.objects.filter(subdomain=tenant.subdomain).count() == 1


def test_checkout_leaves_super_admin_untouched(fake_stripe, super_admin):
    super_admin.email = 'owner@klinikbaru.my'
    super_admin.save()
    _post(_checkout_event())
    assert Tenant.objects.filter(subdomain='klinik-baru').exists()
    super_admin.refresh_from_db()
    assert super_admin.role == 'super_admin'
    assert super_admin.tenant is None


def test_checkout_does_not_move_user_of_another_clinic(fake_stripe, other_admin, other_tenant):
    other_admin.email = 'owner@klinikbaru.my'
    other_admin.save()
    _post(_checkout_event())
    new_tenant = Tenant.objects.get(subdomain='klinik-baru')
    other_admin.refresh_from_db()
    assert other_admin.tenant == other_tenant
    assert other_admin.role == 'admin'
    assert not new_tenant.users.exists()


def test_checkout_binds_unassigned_account(fake_stripe, db):
    user = User.objects.create_user(username='lapsed', email='OWNER@klinikbaru.my', password='P@ssw0rd1')
    _post(_checkout_event())
    user.refresh_from_db()
    assert user.role == 'admin'
    assert user.tenant.subdomain == 'klinik-baru'
