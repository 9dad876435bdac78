"""
Background claim automation, run by ``manage.py run_claims_automation``.

Four tasks:

* status progression: active time-based rules move claims that have
  sat in ``from_status`` for ``delay_hours``;
* scheduled generation: due schedules batch their panel's unclaimed
  billing records into a new claim;
* notification dispatch: pending notifications older than five minutes
  are delivered in small batches;
* approval timeouts: overdue approval requests are escalated to the
  workflow's escalation role, or expire when it has none.
"""
from __future__ import annotations

import calendar
import logging
from datetime import datetime, timedelta
from typing import Optional

from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from clinic.exceptions import InvalidTransition
from clinic.models import (
    BillingRecord,
    ClaimApprovalRequest,
    ClaimNotification,
    ClaimSchedule,
    ClaimStatusRule,
    PanelClaim,
)
from clinic.services import claim_status as cs
from clinic.services.claims import create_claim, update_claim_status

logger = logging.getLogger(__name__)

NOTIFICATION_DELAY = timedelta(minutes=5)
NOTIFICATION_BATCH = 10


def add_months(value: datetime, months: int, day: Optional[int] = None) -> datetime:
    """Shift ``value`` by whole months, clamping the day to the month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return value.replace(year=year, month=month, day=min(day or value.day, last_day))


def next_generation_at(frequency: str, day_of_period: Optional[int] = None, now: Optional[datetime] = None) -> datetime:
    now = now or timezone.now()
    if frequency == 'weekly':
        return now + timedelta(days=7)
    if frequency == 'monthly':
        return add_months(now, 1, day_of_period)
    if frequency == 'quarterly':
        return add_months(now, 3, day_of_period)
    return now


def process_status_rules(now: Optional[datetime] = None) -> int:
    now = now or timezone.now()
    moved = 0
    rules = ClaimStatusRule.objects.filter(is_active=True, trigger_type='time_based', auto_execute=True)
    for rule in rules:
        if not cs.is_valid_transition(rule.from_status, rule.to_status):
            logger.warning('skipping rule %s: %s -> %s is not a legal transition',
                           rule.id, rule.from_status, rule.to_status)
            continue
        cutoff = now - timedelta(hours=rule.delay_hours or 0)
        claims = PanelClaim.objects.filter(tenant_id=rule.tenant_id, status=rule.from_status, updated_at__lt=cutoff)
        for claim in claims:
            try:
                with transaction.atomic():
                    # same checks and timestamps as a manual move
                    claim = update_claim_status(
                        claim, rule.to_status, rejection_reason=f'Automated rule: {rule.rule_name}',
                    )
                    claim.metadata = {
                        **(claim.metadata or {}),
                        'automated_transition': {
                            'rule_id': rule.id,
                            'rule_name': rule.rule_name,
                            'executed_at': now.isoformat(),
                        },
                    }
                    claim.save(update_fields=['metadata', 'updated_at'])
                    if rule.notification_enabled:
                        ClaimNotification.objects.create(
                            claim=claim,
                            notification_type='status_change',
                            recipient_type='staff',
                            subject=f'Claim {claim.claim_number} status updated',
                            message=(
                                f'Claim status automatically changed from {rule.from_status} to {claim.status} '
                                f'based on rule: {rule.rule_name}'
                            ),
                        )
            except (InvalidTransition, ValidationError) as e:
                logger.warning('rule %s could not move claim %s: %s', rule.id, claim.claim_number, e)
                continue
            moved += 1
            logger.info('claim %s moved %s -> %s by rule %s', claim.claim_number,
                        rule.from_status, claim.status, rule.rule_name)
    return moved


def process_schedules(now: Optional[datetime] = None) -> int:
    now = now or timezone.now()
    generated = 0
    schedules = ClaimSchedule.objects.select_related('tenant', 'panel').filter(
        is_active=True, next_generation_at__lt=now
    )
    for schedule in schedules:
        start = now - timedelta(days=schedule.billing_period_days)
        try:
            billing_ids = list(
                BillingRecord.objects.filter(
                    tenant_id=schedule.tenant_id,
                    panel_id=schedule.panel_id,
                    created_at__gte=start,
                    created_at__lte=now,
                    claim_status='pending',
                ).values_list('id', flat=True)
            )
            if billing_ids:
                claim = create_claim(
                    tenant=schedule.tenant,
                    panel=schedule.panel,
                    billing_ids=billing_ids,
                    period_start=timezone.localdate(start),
                    period_end=timezone.localdate(now),
                    status=cs.SUBMITTED if schedule.auto_submit else cs.DRAFT,
                    notes=f'Automatically generated from schedule: {schedule.schedule_name}',
                    metadata={
                        'generated_from_schedule': {
                            'schedule_id': schedule.id,
                            'schedule_name': schedule.schedule_name,
                            'generated_at': now.isoformat(),
                        }
                    },
                )
                generated += 1
                logger.info('schedule %s generated claim %s', schedule.id, claim.claim_number)
            schedule.last_generated_at = now
            schedule.next_generation_at = next_generation_at(schedule.frequency, schedule.day_of_period, now)
            schedule.save(update_fields=['last_generated_at', 'next_generation_at'])
        except Exception:
            # one broken schedule must not stop the others
            logger.exception('error processing claim schedule %s', schedule.id)
    return generated


def deliver_notification(notification: ClaimNotification) -> None:
    """Hand a notification to the delivery channel (currently the log)."""
    logger.info('sending claim notification %s: %s', notification.id, notification.subject)


def process_notifications(now: Optional[datetime] = None) -> int:
    now = now or timezone.now()
    pending = ClaimNotification.objects.filter(
        status='pending', created_at__lt=now - NOTIFICATION_DELAY
    ).order_by('created_at')[:NOTIFICATION_BATCH]
    sent = 0
    for notification in pending:
        try:
            deliver_notification(notification)
        except Exception as e:
            logger.exception('failed to send claim notification %s', notification.id)
            notification.status = 'failed'
            notification.failed_reason = str(e)
            notification.retry_count += 1
            notification.save(update_fields=['status', 'failed_reason', 'retry_count'])
            continue
        notification.status = 'sent'
        notification.sent_at = now
        notification.save(update_fields=['status', 'sent_at'])
        sent += 1
    return sent


def process_approval_timeouts(now: Optional[datetime] = None) -> int:
    now = now or timezone.now()
    handled = 0
    overdue = ClaimApprovalRequest.objects.select_related('workflow').filter(status='pending', expires_at__lt=now)
    for req in overdue:
        role = req.workflow.escalation_role if req.workflow_id else ''
        with transaction.atomic():
            if role:
                req.status = 'escalated'
                req.escalated_at = now
                req.required_role = role
                req.save(update_fields=['status', 'escalated_at', 'required_role'])
                ClaimNotification.objects.create(
                    claim_id=req.claim_id,
                    notification_type='approval_required',
                    recipient_type='staff',
                    subject='Approval Request Escalated',
                    message=(
                        'Approval request for claim has been escalated due to timeout. '
                        f'Required role: {role}'
                    ),
                )
            else:
                req.status = 'expired'
                req.save(update_fields=['status'])
        handled += 1
        logger.info('approval request %s %s after timeout', req.id, req.status)
    return handled


TASKS = {
    'status_progression': process_status_rules,
    'scheduled_generation': process_schedules,
    'notification': process_notifications,
    'approval_timeout': process_approval_timeouts,
}
