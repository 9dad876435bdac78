"""
Panel claims: batching billing records into a claim and moving the claim
through its review and payment lifecycle.
"""
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from django.db import IntegrityError, transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from clinic.exceptions import InvalidTransition
from clinic.models import BillingRecord, Panel, PanelClaim, PanelClaimItem, Tenant, User
from clinic.services import claim_status as cs
from clinic.services.audit import log_action

logger = logging.getLogger(__name__)


def scoped_claims(user):
    qs = PanelClaim.objects.select_related('panel', 'submitted_by')
    if getattr(user, 'role', '') != 'super_admin':
        qs = qs.filter(tenant_id=user.tenant_id)
    return qs


def list_claims(user, *, panel_id=None, status: Optional[str] = None):
    qs = scoped_claims(user).order_by('-created_at')
    if panel_id:
        qs = qs.filter(panel_id=panel_id)
    if status:
        qs = qs.filter(status=status)
    return qs


def get_claim_or_404(user, pk) -> PanelClaim:
    claim = scoped_claims(user).prefetch_related('items__billing').filter(pk=pk).first()
    if not claim:
        raise NotFound('claim not found')
    return claim


def next_claim_number(tenant_id, today: Optional[date] = None) -> str:
    """``CLM-YYYYMM-NNNN``, sequential per clinic per month."""
    today = today or timezone.localdate()
    prefix = f"CLM-{today:%Y%m}-"
    numbers = PanelClaim.objects.filter(tenant_id=tenant_id, claim_number__startswith=prefix).values_list(
        'claim_number', flat=True
    )
    highest = max((int(n[len(prefix):]) for n in numbers if n[len(prefix):].isdigit()), default=0)
    return f"{prefix}{highest + 1:04d}"


def create_claim(*, tenant: Tenant, panel: Panel, billing_ids: Iterable, period_start: date, period_end: date,
                 user: Optional[User] = None, status: str = cs.DRAFT, metadata: Optional[dict] = None,
                 notes: str = '') -> PanelClaim:
    """Claim the given billing records from ``panel``.

    Totals are summed from the billing records; each record becomes one
    claim item at its full amount.
    """
    billing_ids = list(billing_ids)
    if panel.tenant_id != tenant.id:
        raise NotFound('panel not found')
    if period_end < period_start:
        raise ValidationError({'billing_period_end': 'billing period ends before it starts'})
    records = list(BillingRecord.objects.filter(tenant=tenant, panel=panel, pk__in=billing_ids))
    if not records or len(records) != len(set(billing_ids)):
        raise ValidationError({'billing_ids': 'billing records must belong to the selected panel'})
    total = sum((r.amount for r in records), Decimal('0'))

    for attempt in range(3):
        try:
            with transaction.atomic():
                claim = PanelClaim.objects.create(
                    tenant=tenant,
                    claim_number=next_claim_number(tenant.id),
                    panel=panel,
                    billing_period_start=period_start,
                    billing_period_end=period_end,
                    total_amount=total,
                    total_items=len(records),
                    status=status,
                    metadata=metadata or {},
                    notes=notes,
                )
                if status == cs.SUBMITTED:
                    claim.submitted_at = timezone.now()
                    claim.submitted_by = user
                    claim.save(update_fields=['submitted_at', 'submitted_by'])
                PanelClaimItem.objects.bulk_create([
                    PanelClaimItem(claim=claim, billing=r, item_amount=r.amount, claim_amount=r.amount)
                    for r in records
                ])
                BillingRecord.objects.filter(pk__in=[r.pk for r in records]).update(
                    claim_status=status, claim_number=claim.claim_number, updated_at=timezone.now(),
                )
            break
        except IntegrityError:
            logger.warning('claim number conflict for tenant %s on attempt %d', tenant.id, attempt + 1)
    else:
        raise ValidationError('could not allocate a claim number')

    logger.info('created claim %s with %d items totalling %s', claim.claim_number, len(records), total)
    log_action(user=user, action='claim_create', object_type='panel_claim', object_id=claim.id,
               detail={'claimNumber': claim.claim_number, 'totalAmount': str(total)}, tenant=tenant)
    return claim


def update_claim_status(claim: PanelClaim, new_status: str, *, user: Optional[User] = None, paid_amount=None,
                        rejection_reason: Optional[str] = None, panel_reference_number: Optional[str] = None,
                        notes: Optional[str] = None) -> PanelClaim:
    with transaction.atomic():
        claim = PanelClaim.objects.select_for_update().get(pk=claim.pk)
        old_status = claim.status
        if not cs.is_valid_transition(old_status, new_status):
            raise InvalidTransition(f'cannot move claim from {old_status} to {new_status}')

        if new_status == cs.REJECTED:
            reason = (rejection_reason or '').strip()
            if len(reason) < cs.MIN_REJECTION_REASON_LENGTH:
                raise ValidationError({'rejection_reason': 'Rejection reason must be at least 5 characters'})
            claim.rejection_reason = reason

        if new_status in (cs.PAID, cs.SHORT_PAID):
            amount = claim.total_amount if paid_amount is None else Decimal(str(paid_amount))
            if amount < 0:
                raise ValidationError({'paid_amount': 'Paid amount cannot be negative'})
            if amount > cs.max_paid_amount(claim.total_amount):
                raise ValidationError({'paid_amount': 'Paid amount cannot exceed the claim total'})
            if new_status == cs.PAID and cs.should_auto_coerce_to_short_paid(amount, claim.total_amount):
                new_status = cs.SHORT_PAID
            claim.paid_amount = amount
            claim.paid_at = timezone.now()

        now = timezone.now()
        if new_status == cs.SUBMITTED:
            claim.submitted_at = now
            claim.submitted_by = user
        elif new_status == cs.APPROVED:
            claim.approved_at = now
            claim.approved_by = user

        if panel_reference_number is not None:
            claim.panel_reference_number = panel_reference_number
        if notes is not None:
            claim.notes = notes
        claim.status = new_status
        claim.save()
        BillingRecord.objects.filter(claim_items__claim=claim).update(claim_status=new_status, updated_at=now)

    logger.info('claim %s: %s -> %s', claim.claim_number, old_status, new_status)
    log_action(user=user, action='claim_status', object_type='panel_claim', object_id=claim.id,
               detail={'from': old_status, 'to': new_status}, tenant=claim.tenant)
    return claim


def delete_claim(claim: PanelClaim, *, user: Optional[User] = None) -> None:
    if claim.status not in cs.DELETABLE_STATUSES:
        raise InvalidTransition(f'claims in status {claim.status} cannot be deleted')
    with transaction.atomic():
        BillingRecord.objects.filter(claim_items__claim=claim).update(
            claim_status='pending', claim_number='', updated_at=timezone.now(),
        )
        claim_id, number, tenant = claim.id, claim.claim_number, claim.tenant
        claim.delete()
    logger.info('deleted claim %s', number)
    log_action(user=user, action='claim_delete', object_type='panel_claim', object_id=claim_id,
               detail={'claimNumber': number}, tenant=tenant)
