from decimal import Decimal

import pytest

from clinic.models import BillingRecord
from clinic.services.billing import payment_summary, record_payment
from clinic.tests.conftest import make_billing, make_patient

pytestmark = pytest.mark.django_db


def test_list_filters_by_payer_and_status(staff_client, tenant, panel, patient, other_tenant):
    panel_bill = make_billing(tenant, patient, panel=panel)
    self_pay = make_billing(tenant, patient)
    make_billing(tenant, patient, status='paid')
    make_billing(other_tenant, make_patient(other_tenant))

    r = staff_client.get('/api/billing/records')
    assert len(r.data) == 3
    r = staff_client.get('/api/billing/records', {'payer': 'panel'})
    assert [b['id'] for b in r.data] == [panel_bill.id]
    r = staff_client.get('/api/billing/records', {'payer': 'patient', 'status': 'outstanding'})
    assert [b['id'] for b in r.data] == [self_pay.id]
    r = staff_client.get('/api/billing/records', {'status': 'paid'})
    assert len(r.data) == 1
    assert staff_client.get('/api/billing/records', {'payer': 'insurer'}).status_code == 400


def test_status_update_is_admin_only(staff_client, admin_client, tenant, patient):
    record = make_billing(tenant, patient)
    url = f'/api/billing/records/{record.id}/status'
    assert staff_client.post(url, {'status': 'paid'}, format='json').status_code == 403
    r = admin_client.post(url, {'status': 'paid', 'paid_amount': '80.00'}, format='json')
    assert r.status_code == 200
    record.refresh_from_db()
    assert record.status == 'paid'
    assert record.amount == Decimal('80.00')
    assert record.paid_date is not None


def test_batch_update_is_all_or_nothing(admin_client, tenant, other_tenant, patient):
    mine = [make_billing(tenant, patient) for _ in range(2)]
    foreign = make_billing(other_tenant, make_patient(other_tenant))
    r = admin_client.post('/api/billing/records/batch-status', {
        'billing_ids': [mine[0].id, mine[1].id, foreign.id], 'status': 'unpaid',
    }, format='json')
    assert r.status_code == 404
    assert set(BillingRecord.objects.filter(pk__in=[m.id for m in mine]).values_list('status', flat=True)) == {'pending'}

    r = admin_client.post('/api/billing/records/batch-status', {
        'billing_ids': [m.id for m in mine], 'status': 'unpaid', 'reason': 'Sent reminder',
    }, format='json')
    assert r.status_code == 200
    assert r.data == {'success': True, 'updated': 2}
    mine[0].refresh_from_db()
    assert mine[0].status == 'unpaid'
    assert mine[0].claim_notes == 'Sent reminder'


def test_partial_then_full_payment(staff_client, tenant, patient):
    record = make_billing(tenant, patient, amount='150.00')
    url = f'/api/billing/records/{record.id}/payments'
    r = staff_client.post(url, {'amount': '50.00', 'payment_method': 'cash'}, format='json')
    assert r.status_code == 201
    record.refresh_from_db()
    assert record.status == 'partial'

    summary = staff_client.get(f'/api/billing/records/{record.id}/summary').data
    assert summary['total_paid'] == Decimal('50.00')
    assert summary['amount_due'] == Decimal('100.00')
    assert summary['payment_status'] == 'partial'

    staff_client.post(url, {'amount': '100.00', 'payment_method': 'card', 'reference_number': 'TXN1'}, format='json')
    record.refresh_from_db()
    assert record.status == 'paid'
    assert record.paid_date is not None
    assert len(staff_client.get(url).data) == 2


def test_payment_amount_must_be_positive(staff_client, tenant, patient):
    record = make_billing(tenant, patient)
    r = staff_client.post(f'/api/billing/records/{record.id}/payments',
                          {'amount': '0', 'payment_method': 'cash'}, format='json')
    assert r.status_code == 400


def test_summary_without_payments(tenant, patient):
    record = make_billing(tenant, patient, amount='40.00')
    assert payment_summary(record) == {
        'total_amount': Decimal('40.00'),
        'total_paid': Decimal('0'),
        'amount_due': Decimal('40.00'),
        'payment_status': 'pending',
    }


def test_overpayment_marks_paid(tenant, patient):
    record = make_billing(tenant, patient, amount='40.00')
    record_payment(record, amount=Decimal('45.00'), payment_method='cash')
    record.refresh_from_db()
    assert record.status == 'paid'
    assert payment_summary(record)['amount_due'] == Decimal('-5.00')


def test_detail_includes_payments(staff_client, other_client, tenant, patient):
    record = make_billing(tenant, patient)
    record_payment(record, amount=Decimal('10'), payment_method='cash')
    r = staff_client.get(f'/api/billing/records/{record.id}')
    assert r.status_code == 200
    assert len(r.data['payments']) == 1
    assert r.data['summary']['payment_status'] == 'partial'
    assert other_client.get(f'/api/billing/records/{record.id}').status_code == 404
