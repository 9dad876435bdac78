import itertools
from decimal import Decimal

import pytest
from django.core.cache import cache
from rest_framework.test import APIClient

from clinic.models import BillingRecord, Medication, Panel, Patient, Tenant, User

_invoice_seq = itertools.count(1)
_patient_seq = itertools.count(1)


@pytest.fixture(autouse=True)
def _clear_cache():
    # throttle counters live in the cache
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def tenant(db):
    return Tenant.objects.create(subdomain='clinic-a', clinic_name='Klinik A', subscription_status='active',
                                 stripe_customer_id='cus_A')


@pytest.fixture
def other_tenant(db):
    return Tenant.objects.create(subdomain='clinic-b', clinic_name='Klinik B', subscription_status='active',
                                 stripe_customer_id='cus_B')


@pytest.fixture
def admin_user(tenant):
    return User.objects.create_user(username='admin1', password='P@ssw0rd1', role='admin', tenant=tenant,
                                    first_name='Aisyah', last_name='Rahman')


@pytest.fixture
def doctor_user(tenant):
    return User.objects.create_user(username='doctor1', password='P@ssw0rd1', role='doctor', tenant=tenant,
                                    first_name='Lim', last_name='Wei')


@pytest.fixture
def staff_user(tenant):
    return User.objects.create_user(username='staff1', password='P@ssw0rd1', role='staff', tenant=tenant)


@pytest.fixture
def other_admin(other_tenant):
    return User.objects.create_user(username='admin2', password='P@ssw0rd1', role='admin', tenant=other_tenant)


@pytest.fixture
def super_admin(db):
    return User.objects.create_user(username='super', password='P@ssw0rd1', role='super_admin')


def client_for(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def admin_client(admin_user):
    return client_for(admin_user)


@pytest.fixture
def doctor_client(doctor_user):
    return client_for(doctor_user)


@pytest.fixture
def staff_client(staff_user):
    return client_for(staff_user)


@pytest.fixture
def other_client(other_admin):
    return client_for(other_admin)


def make_patient(tenant, **fields):
    n = next(_patient_seq)
    defaults = {'first_name': f'Patient{n}', 'last_name': 'Tan', 'patient_id': f'{1700000000 + n:010d}{n % 1000:03d}'}
    defaults.update(fields)
    return Patient.objects.create(tenant=tenant, **defaults)


def make_panel(tenant, code='AIA', **fields):
    return Panel.objects.create(tenant=tenant, panel_name=f'{code} Insurance', panel_code=code, **fields)


def make_billing(tenant, patient, amount='100.00', panel=None, **fields):
    return BillingRecord.objects.create(
        tenant=tenant,
        patient=patient,
        invoice_number=f'INV-{next(_invoice_seq):05d}',
        amount=Decimal(amount),
        panel=panel,
        **fields,
    )


def make_medication(tenant, name='Paracetamol 500mg', **fields):
    return Medication.objects.create(tenant=tenant, name=name, unit='tab', **fields)


@pytest.fixture
def patient(tenant):
    return make_patient(tenant)


@pytest.fixture
def panel(tenant):
    return make_panel(tenant)
