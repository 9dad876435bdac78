from datetime import date, timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from clinic.models import ClaimApprovalRequest, ClaimApprovalWorkflow, ClaimNotification, ClaimReconciliation
from clinic.services import claims_automation, reconciliation
from clinic.services.claims import create_claim
from clinic.tests.conftest import make_billing, make_panel

pytestmark = pytest.mark.django_db


def _claim(tenant, panel, patient, status='paid', amount='200.00'):
    bill = make_billing(tenant, patient, amount=amount, panel=panel)
    return create_claim(tenant=tenant, panel=panel, billing_ids=[bill.id], period_start=date(2026, 9, 1),
                        period_end=date(2026, 9, 30), status=status)


def _workflow(tenant, **fields):
    defaults = {'workflow_name': 'Variance review', 'variance_threshold_amount': Decimal('20.00'),
                'required_approver_role': 'doctor', 'auto_escalate_days': 2, 'escalation_role': 'admin'}
    defaults.update(fields)
    return ClaimApprovalWorkflow.objects.create(tenant=tenant, **defaults)


def test_compute_variance():
    assert reconciliation.compute_variance(Decimal('200.00'), Decimal('180.00')) == (
        Decimal('-20.00'), Decimal('-10.00'), 'underpayment')
    assert reconciliation.compute_variance(Decimal('200.00'), Decimal('200.00'))[2] == 'none'
    assert reconciliation.compute_variance(Decimal('0'), Decimal('5.00')) == (
        Decimal('5.00'), Decimal('0.00'), 'overpayment')


def test_exact_payment_is_matched(staff_client, tenant, panel, patient):
    claim = _claim(tenant, panel, patient)
    _workflow(tenant)
    r = staff_client.post(f'/api/claims/{claim.id}/reconciliations', {'received_amount': '200.00',
                                                                       'payment_reference': 'EFT-1'}, format='json')
    assert r.status_code == 201, r.data
    assert r.data['reconciliation_status'] == 'matched'
    assert r.data['variance_type'] == 'none'
    assert not ClaimApprovalRequest.objects.exists()


def test_variance_over_threshold_opens_approval(staff_client, tenant, panel, patient):
    claim = _claim(tenant, panel, patient)
    workflow = _workflow(tenant)
    r = staff_client.post(f'/api/claims/{claim.id}/reconciliations', {'received_amount': '150.00'}, format='json')
    assert r.data['reconciliation_status'] == 'pending'
    assert Decimal(r.data['variance_amount']) == Decimal('-50.00')
    req = ClaimApprovalRequest.objects.get(reconciliation_id=r.data['id'])
    assert req.workflow == workflow
    assert req.required_role == 'doctor'
    assert req.status == 'pending'
    assert req.expires_at > timezone.now() + timedelta(days=1)


def test_small_variance_needs_no_approval(tenant, panel, patient):
    claim = _claim(tenant, panel, patient)
    _workflow(tenant, variance_threshold_percentage=Decimal('5.00'))
    rec = reconciliation.reconcile_claim(claim, '195.00')
    assert rec.reconciliation_status == 'pending'
    assert not rec.approval_requests.exists()


def test_panel_specific_workflow_wins(tenant, panel, patient):
    claim = _claim(tenant, panel, patient)
    _workflow(tenant, workflow_name='Any panel')
    specific = _workflow(tenant, workflow_name='AIA only', panel=panel, required_approver_role='admin')
    _workflow(tenant, workflow_name='Other panel', panel=make_panel(tenant, code='PRU'))
    rec = reconciliation.reconcile_claim(claim, '100.00')
    assert rec.approval_requests.get().workflow == specific


def test_unpaid_claim_cannot_be_reconciled(staff_client, tenant, panel, patient):
    claim = _claim(tenant, panel, patient, status='submitted')
    r = staff_client.post(f'/api/claims/{claim.id}/reconciliations', {'received_amount': '10.00'}, format='json')
    assert r.status_code == 400
    assert r.data['error']['code'] == 'invalid_transition'


def test_resolution_waits_for_approval(staff_client, doctor_client, tenant, panel, patient):
    claim = _claim(tenant, panel, patient)
    _workflow(tenant)
    rec = reconciliation.reconcile_claim(claim, '150.00')
    req = rec.approval_requests.get()

    r = staff_client.post(f'/api/claims/reconciliations/{rec.id}/status', {'status': 'resolved'}, format='json')
    assert r.status_code == 400
    r = staff_client.post(f'/api/claims/approvals/{req.id}/decision', {'decision': 'approved'}, format='json')
    assert r.status_code == 403

    r = doctor_client.post(f'/api/claims/approvals/{req.id}/decision',
                           {'decision': 'approved', 'notes': 'Panel co-pay'}, format='json')
    assert r.status_code == 200, r.data
    assert r.data['status'] == 'approved'
    rec.refresh_from_db()
    assert rec.reconciliation_status == 'resolved'
    r = doctor_client.post(f'/api/claims/approvals/{req.id}/decision', {'decision': 'rejected'}, format='json')
    assert r.status_code == 400


def test_rejected_approval_disputes_variance(admin_client, tenant, panel, patient):
    claim = _claim(tenant, panel, patient)
    _workflow(tenant)
    rec = reconciliation.reconcile_claim(claim, '150.00')
    req = rec.approval_requests.get()
    admin_client.post(f'/api/claims/approvals/{req.id}/decision', {'decision': 'rejected'}, format='json')
    rec.refresh_from_db()
    assert rec.reconciliation_status == 'disputed'


def test_variance_without_workflow_is_resolved_directly(staff_client, tenant, panel, patient):
    claim = _claim(tenant, panel, patient)
    rec = reconciliation.reconcile_claim(claim, '190.00')
    r = staff_client.post(f'/api/claims/reconciliations/{rec.id}/status',
                          {'status': 'resolved', 'notes': 'Bank charges'}, format='json')
    assert r.status_code == 200
    assert r.data['reconciliation_status'] == 'resolved'
    assert r.data['notes'] == 'Bank charges'


def test_reconciliation_listing_and_stats(admin_client, other_client, tenant, panel, patient):
    reconciliation.reconcile_claim(_claim(tenant, panel, patient), '150.00')
    reconciliation.reconcile_claim(_claim(tenant, panel, patient), '220.00')
    reconciliation.reconcile_claim(_claim(tenant, panel, patient), '200.00')

    assert len(admin_client.get('/api/claims/reconciliations').data) == 3
    r = admin_client.get('/api/claims/reconciliations', {'variance_type': 'underpayment'})
    assert [Decimal(x['received_amount']) for x in r.data] == [Decimal('150.00')]
    assert other_client.get('/api/claims/reconciliations').data == []

    stats = admin_client.get('/api/claims/reconciliations/stats').data
    assert stats['totalVariances'] == 2
    assert stats['pendingCount'] == 2
    assert Decimal(stats['totalVarianceAmount']) == Decimal('-30.00')
    assert Decimal(stats['avgVariancePercentage']) == Decimal('-7.50')


def test_only_admins_configure_workflows(admin_client, staff_client, panel):
    body = {'workflow_name': 'Big gaps', 'variance_threshold_amount': '100.00', 'panel_id': panel.id,
            'escalation_role': 'admin'}
    assert staff_client.post('/api/claims/approval-workflows', body, format='json').status_code == 403
    r = admin_client.post('/api/claims/approval-workflows', body, format='json')
    assert r.status_code == 201, r.data
    assert r.data['panel_id'] == panel.id
    assert [w['workflow_name'] for w in staff_client.get('/api/claims/approval-workflows').data] == ['Big gaps']


def test_workflow_panel_must_belong_to_clinic(other_client, panel):
    r = other_client.post('/api/claims/approval-workflows', {'workflow_name': 'x', 'panel_id': panel.id},
                          format='json')
    assert r.status_code == 404


def test_overdue_approval_escalates(tenant, panel, patient):
    claim = _claim(tenant, panel, patient)
    _workflow(tenant)
    rec = reconciliation.reconcile_claim(claim, '150.00')
    req = rec.approval_requests.get()
    later = req.expires_at + timedelta(minutes=1)

    assert claims_automation.process_approval_timeouts(later) == 1
    req.refresh_from_db()
    assert req.status == 'escalated'
    assert req.escalated_at == later
    assert req.required_role == 'admin'
    note = ClaimNotification.objects.get(claim=claim, notification_type='approval_required')
    assert note.subject == 'Approval Request Escalated'
    assert note.message.endswith('Required role: admin')
    # escalated requests are not escalated again
    assert claims_automation.process_approval_timeouts(later + timedelta(days=5)) == 0


def test_overdue_approval_without_escalation_expires(tenant, panel, patient):
    claim = _claim(tenant, panel, patient)
    _workflow(tenant, escalation_role='')
    rec = reconciliation.reconcile_claim(claim, '150.00')
    req = rec.approval_requests.get()

    assert claims_automation.process_approval_timeouts(req.expires_at - timedelta(minutes=1)) == 0
    assert claims_automation.process_approval_timeouts(req.expires_at + timedelta(minutes=1)) == 1
    req.refresh_from_db()
    assert req.status == 'expired'
    assert not ClaimNotification.objects.filter(notification_type='approval_required').exists()


def test_approval_listing(admin_client, other_client, tenant, panel, patient):
    _workflow(tenant)
    reconciliation.reconcile_claim(_claim(tenant, panel, patient), '150.00')
    assert len(admin_client.get('/api/claims/approvals', {'status': 'pending'}).data) == 1
    assert admin_client.get('/api/claims/approvals', {'status': 'expired'}).data == []
    assert other_client.get('/api/claims/approvals').data == []
    assert ClaimReconciliation.objects.count() == 1
