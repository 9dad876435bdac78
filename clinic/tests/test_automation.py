from datetime import date, datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from io import StringIO

import pytest
from django.core.management import call_command
from django.utils import timezone

from clinic.models import BillingRecord, ClaimNotification, ClaimSchedule, ClaimStatusRule, PanelClaim, Tenant, User
from clinic.services import claims_automation
from clinic.services.claims import create_claim
from clinic.tests.conftest import make_billing

pytestmark = pytest.mark.django_db


def _claim(tenant, panel, patient, status='submitted'):
    bill = make_billing(tenant, patient, amount='60.00', panel=panel)
    return create_claim(tenant=tenant, panel=panel, billing_ids=[bill.id], period_start=date(2026, 9, 1),
                        period_end=date(2026, 9, 30), status=status)


def _age(claim, hours):
    PanelClaim.objects.filter(pk=claim.pk).update(updated_at=timezone.now() - timedelta(hours=hours))


def test_add_months_clamps_day():
    jan31 = datetime(2026, 1, 31, 9, 0, tzinfo=dt_timezone.utc)
    assert claims_automation.add_months(jan31, 1).date() == date(2026, 2, 28)
    assert claims_automation.add_months(jan31, 3, day=15).date() == date(2026, 4, 15)
    assert claims_automation.add_months(datetime(2026, 11, 5, tzinfo=dt_timezone.utc), 3).date() == date(2027, 2, 5)


def test_next_generation_at():
    now = datetime(2026, 10, 19, 8, 0, tzinfo=dt_timezone.utc)
    assert claims_automation.next_generation_at('weekly', None, now) == now + timedelta(days=7)
    assert claims_automation.next_generation_at('monthly', 1, now).date() == date(2026, 11, 1)
    assert claims_automation.next_generation_at('quarterly', None, now).date() == date(2027, 1, 19)


def test_status_rule_moves_old_claims(tenant, panel, patient):
    rule = ClaimStatusRule.objects.create(tenant=tenant, rule_name='Auto approve', from_status='submitted',
                                          to_status='approved', delay_hours=48, notification_enabled=True)
    old = _claim(tenant, panel, patient)
    fresh = _claim(tenant, panel, patient)
    _age(old, 72)

    assert claims_automation.process_status_rules() == 1
    old.refresh_from_db()
    fresh.refresh_from_db()
    assert old.status == 'approved'
    assert old.metadata['automated_transition']['rule_id'] == rule.id
    assert fresh.status == 'submitted'
    assert set(BillingRecord.objects.filter(claim_items__claim=old).values_list('claim_status', flat=True)) == {'approved'}
    note = ClaimNotification.objects.get(claim=old)
    assert note.status == 'pending'
    assert 'Auto approve' in note.message


def test_illegal_rule_is_skipped(tenant, panel, patient):
    ClaimStatusRule.objects.create(tenant=tenant, rule_name='Bad', from_status='draft', to_status='paid')
    claim = _claim(tenant, panel, patient, status='draft')
    _age(claim, 1)
    assert claims_automation.process_status_rules() == 0
    claim.refresh_from_db()
    assert claim.status == 'draft'


def test_rules_stay_within_their_clinic(tenant, other_tenant, panel, patient):
    ClaimStatusRule.objects.create(tenant=other_tenant, rule_name='Theirs', from_status='submitted',
                                   to_status='approved')
    claim = _claim(tenant, panel, patient)
    _age(claim, 1)
    assert claims_automation.process_status_rules() == 0


def test_schedule_generates_claim_from_unclaimed_billing(tenant, panel, patient):
    make_billing(tenant, patient, amount='30.00', panel=panel)
    make_billing(tenant, patient, amount='45.50', panel=panel)
    already = make_billing(tenant, patient, amount='99.00', panel=panel, claim_status='submitted')
    now = timezone.now()
    schedule = ClaimSchedule.objects.create(tenant=tenant, schedule_name='Monthly AIA', panel=panel,
                                            frequency='monthly', day_of_period=1, auto_submit=True,
                                            next_generation_at=now - timedelta(minutes=1))

    assert claims_automation.process_schedules(now) == 1
    claim = PanelClaim.objects.get(panel=panel)
    assert claim.status == 'submitted'
    assert claim.submitted_at is not None
    assert claim.total_amount == Decimal('75.50')
    assert claim.metadata['generated_from_schedule']['schedule_id'] == schedule.id
    assert claim.notes == 'Automatically generated from schedule: Monthly AIA'
    assert not already.claim_items.exists()

    schedule.refresh_from_db()
    assert schedule.last_generated_at == now
    assert schedule.next_generation_at > now
    assert schedule.next_generation_at.day == 1


def test_schedule_without_billing_only_advances(tenant, panel):
    now = timezone.now()
    schedule = ClaimSchedule.objects.create(tenant=tenant, schedule_name='Weekly', panel=panel, frequency='weekly',
                                            next_generation_at=now - timedelta(minutes=1))
    assert claims_automation.process_schedules(now) == 0
    schedule.refresh_from_db()
    assert schedule.next_generation_at == now + timedelta(days=7)
    assert not PanelClaim.objects.exists()


def test_notifications_are_sent_after_delay(tenant, panel, patient):
    claim = _claim(tenant, panel, patient)
    old = ClaimNotification.objects.create(claim=claim, notification_type='status_change', subject='s', message='m')
    new = ClaimNotification.objects.create(claim=claim, notification_type='status_change', subject='s', message='m')
    ClaimNotification.objects.filter(pk=old.pk).update(created_at=timezone.now() - timedelta(minutes=10))

    assert claims_automation.process_notifications() == 1
    old.refresh_from_db()
    new.refresh_from_db()
    assert old.status == 'sent' and old.sent_at is not None
    assert new.status == 'pending'


def test_failed_notification_is_counted(monkeypatch, tenant, panel, patient):
    claim = _claim(tenant, panel, patient)
    note = ClaimNotification.objects.create(claim=claim, notification_type='status_change', subject='s', message='m')
    ClaimNotification.objects.filter(pk=note.pk).update(created_at=timezone.now() - timedelta(minutes=10))

    def boom(notification):
        raise RuntimeError('smtp down')

    monkeypatch.setattr(claims_automation, 'deliver_notification', boom)
    assert claims_automation.process_notifications() == 0
    note.refresh_from_db()
    assert note.status == 'failed'
    assert note.retry_count == 1
    assert note.failed_reason == 'smtp down'


def test_run_claims_automation_command(tenant, panel, patient):
    out = StringIO()
    call_command('run_claims_automation', '--task', 'notification', stdout=out)
    assert 'notification: 0' in out.getvalue()
    out = StringIO()
    call_command('run_claims_automation', stdout=out)
    for name in ('status_progression', 'scheduled_generation', 'notification'):
        assert name in out.getvalue()


def test_cleanup_sessions_command(settings):
    settings.SESSION_RETENTION_DAYS = 7
    out = StringIO()
    call_command('cleanup_sessions', stdout=out)
    assert 'Deleted 0 sessions' in out.getvalue()


def test_ensure_test_users_is_idempotent():
    call_command('ensure_test_users', stdout=StringIO())
    call_command('ensure_test_users', stdout=StringIO())
    demo = Tenant.objects.get(subdomain='demo')
    assert demo.is_comped
    assert User.objects.filter(tenant=demo).count() == 3
    assert User.objects.get(username='super').tenant is None


def test_status_rules_apply_claim_side_effects(tenant, panel, patient):
    ClaimStatusRule.objects.create(tenant=tenant, rule_name='Settle approved', from_status='approved',
                                   to_status='paid', delay_hours=24)
    ClaimStatusRule.objects.create(tenant=tenant, rule_name='Stale submissions', from_status='submitted',
                                   to_status='rejected', delay_hours=24)
    approved = _claim(tenant, panel, patient, status='approved')
    submitted = _claim(tenant, panel, patient)
    _age(approved, 30)
    _age(submitted, 30)

    assert claims_automation.process_status_rules() == 2
    approved.refresh_from_db()
    submitted.refresh_from_db()
    assert approved.status == 'paid'
    assert approved.paid_at is not None
    assert approved.paid_amount == approved.total_amount == Decimal('60.00')
    assert submitted.status == 'rejected'
    assert submitted.rejection_reason == 'Automated rule: Stale submissions'
    assert BillingRecord.objects.get(claim_items__claim=approved).claim_status == 'paid'
