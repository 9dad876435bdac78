"""
Claim payment reconciliation.

A payment received from a panel is recorded against its claim and the
variance from the claimed total is worked out.  Variances that reach an
active approval workflow's threshold open an approval request; the
request must be decided before the reconciliation is settled, and is
escalated or expired by the ``approval_timeout`` automation task when
nobody acts on it in time.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from django.db import transaction
from django.db.models import Avg, Count, Q, Sum
from django.utils import timezone
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from clinic.exceptions import InvalidTransition
from clinic.models import ClaimApprovalRequest, ClaimApprovalWorkflow, ClaimReconciliation, PanelClaim, User
from clinic.permissions import ADMIN_ROLES
from clinic.services import claim_status as cs
from clinic.services.audit import log_action

logger = logging.getLogger(__name__)

RECONCILABLE_STATUSES = (cs.APPROVED, cs.SHORT_PAID, cs.PAID)
CENT = Decimal('0.01')


def compute_variance(claim_amount: Decimal, received_amount: Decimal) -> tuple[Decimal, Decimal, str]:
    """Return ``(variance_amount, variance_percentage, variance_type)``.

    The variance is signed: negative when the panel paid less than claimed.
    """
    variance = (Decimal(received_amount) - Decimal(claim_amount)).quantize(CENT)
    if claim_amount:
        pct = (variance / Decimal(claim_amount) * 100).quantize(CENT, rounding=ROUND_HALF_UP)
    else:
        pct = Decimal('0.00')
    if variance < 0:
        kind = 'underpayment'
    elif variance > 0:
        kind = 'overpayment'
    else:
        kind = 'none'
    return variance, pct, kind


def _reaches_threshold(workflow: ClaimApprovalWorkflow, variance: Decimal, pct: Decimal) -> bool:
    checks = []
    if workflow.variance_threshold_amount:
        checks.append(abs(variance) >= workflow.variance_threshold_amount)
    if workflow.variance_threshold_percentage:
        checks.append(abs(pct) >= workflow.variance_threshold_percentage)
    return any(checks) if checks else True


def matching_workflow(claim: PanelClaim, variance: Decimal, pct: Decimal) -> Optional[ClaimApprovalWorkflow]:
    """The active workflow a variance falls under, panel-specific ones first."""
    if not variance:
        return None
    workflows = ClaimApprovalWorkflow.objects.filter(
        Q(panel__isnull=True) | Q(panel_id=claim.panel_id), tenant_id=claim.tenant_id, is_active=True,
    ).order_by('id')
    for workflow in sorted(workflows, key=lambda w: w.panel_id is None):
        if _reaches_threshold(workflow, variance, pct):
            return workflow
    return None


def scoped_reconciliations(user):
    qs = ClaimReconciliation.objects.select_related('claim', 'claim__panel')
    if getattr(user, 'role', '') != 'super_admin':
        qs = qs.filter(claim__tenant_id=user.tenant_id)
    return qs


def get_reconciliation_or_404(user, pk) -> ClaimReconciliation:
    rec = scoped_reconciliations(user).filter(pk=pk).first()
    if rec is None:
        raise NotFound('reconciliation not found')
    return rec


def list_reconciliations(user, *, claim_id=None, panel_id=None, status: Optional[str] = None,
                         variance_type: Optional[str] = None, date_from=None, date_to=None):
    qs = scoped_reconciliations(user).order_by('-reconciliation_date', '-id')
    if claim_id:
        qs = qs.filter(claim_id=claim_id)
    if panel_id:
        qs = qs.filter(claim__panel_id=panel_id)
    if status:
        qs = qs.filter(reconciliation_status=status)
    if variance_type:
        qs = qs.filter(variance_type=variance_type)
    if date_from:
        qs = qs.filter(reconciliation_date__gte=date_from)
    if date_to:
        qs = qs.filter(reconciliation_date__lte=date_to)
    return qs


def reconcile_claim(claim: PanelClaim, received_amount, *, user: Optional[User] = None, payment_reference: str = '',
                    payment_date=None, payment_method: str = '', notes: str = '') -> ClaimReconciliation:
    """Record a payment for ``claim`` and open an approval request if needed."""
    if claim.status not in RECONCILABLE_STATUSES:
        raise InvalidTransition(f'claims in status {claim.status} cannot be reconciled')
    received = Decimal(str(received_amount))
    if received < 0:
        raise ValidationError({'received_amount': 'Received amount cannot be negative'})

    variance, pct, kind = compute_variance(claim.total_amount, received)
    now = timezone.now()
    with transaction.atomic():
        rec = ClaimReconciliation.objects.create(
            claim=claim,
            reconciliation_date=timezone.localdate(now),
            claim_amount=claim.total_amount,
            received_amount=received,
            variance_amount=variance,
            variance_percentage=pct,
            variance_type=kind,
            reconciliation_status='matched' if kind == 'none' else 'pending',
            payment_reference=payment_reference or '',
            payment_date=payment_date,
            payment_method=payment_method or '',
            notes=notes or '',
            reconciled_by=user,
            reconciled_at=now if kind == 'none' else None,
        )
        workflow = matching_workflow(claim, variance, pct)
        if workflow is not None:
            ClaimApprovalRequest.objects.create(
                claim=claim,
                reconciliation=rec,
                workflow=workflow,
                required_role=workflow.required_approver_role,
                requested_by=user,
                expires_at=now + timedelta(days=workflow.auto_escalate_days),
            )
    logger.info('claim %s reconciled: %s %s (%s%%)', claim.claim_number, kind, variance, pct)
    log_action(user=user, action='claim_reconcile', object_type='panel_claim', object_id=claim.id,
               detail={'received': str(received), 'variance': str(variance)}, tenant=claim.tenant)
    return rec


def resolve_reconciliation(rec: ClaimReconciliation, status: str, *, user: Optional[User] = None,
                           notes: Optional[str] = None) -> ClaimReconciliation:
    """Settle a pending variance as ``resolved`` or ``disputed``."""
    if rec.reconciliation_status != 'pending':
        raise InvalidTransition(f'reconciliation is already {rec.reconciliation_status}')
    if rec.approval_requests.filter(status__in=ClaimApprovalRequest.OPEN_STATUSES).exists():
        raise InvalidTransition('reconciliation is awaiting approval')
    rec.reconciliation_status = status
    rec.reconciled_by = user
    rec.reconciled_at = timezone.now()
    if notes is not None:
        rec.notes = notes
    rec.save()
    log_action(user=user, action='reconciliation_status', object_type='claim_reconciliation', object_id=rec.id,
               detail={'to': status}, tenant=rec.claim.tenant)
    return rec


def reconciliation_stats(user, *, panel_id=None) -> dict:
    qs = scoped_reconciliations(user).exclude(variance_type='none')
    if panel_id:
        qs = qs.filter(claim__panel_id=panel_id)
    totals = qs.aggregate(
        total=Count('id'),
        pending=Count('id', filter=Q(reconciliation_status='pending')),
        resolved=Count('id', filter=Q(reconciliation_status='resolved')),
        amount=Sum('variance_amount'),
        avg_pct=Avg('variance_percentage'),
    )
    by_type = qs.values('variance_type').annotate(count=Count('id')).order_by('-count', 'variance_type')
    return {
        'totalVariances': totals['total'],
        'pendingCount': totals['pending'],
        'resolvedCount': totals['resolved'],
        'totalVarianceAmount': str(totals['amount'] or Decimal('0.00')),
        'avgVariancePercentage': str(Decimal(totals['avg_pct'] or 0).quantize(CENT)),
        'topVarianceTypes': [{'type': row['variance_type'], 'count': row['count']} for row in by_type],
    }


def scoped_approval_requests(user):
    qs = ClaimApprovalRequest.objects.select_related('claim', 'reconciliation', 'workflow')
    if getattr(user, 'role', '') != 'super_admin':
        qs = qs.filter(claim__tenant_id=user.tenant_id)
    return qs


def get_approval_request_or_404(user, pk) -> ClaimApprovalRequest:
    req = scoped_approval_requests(user).filter(pk=pk).first()
    if req is None:
        raise NotFound('approval request not found')
    return req


def can_decide(user, request: ClaimApprovalRequest) -> bool:
    return getattr(user, 'role', None) in ADMIN_ROLES or getattr(user, 'role', None) == request.required_role


def decide_approval(req: ClaimApprovalRequest, decision: str, *, user: User,
                    notes: str = '') -> ClaimApprovalRequest:
    """Approve or reject an open request.

    Approving resolves the reconciliation it belongs to; rejecting marks
    the variance disputed.
    """
    if not can_decide(user, req):
        raise PermissionDenied(f'approval requires the {req.required_role} role')
    with transaction.atomic():
        req = ClaimApprovalRequest.objects.select_for_update().get(pk=req.pk)
        if req.status not in ClaimApprovalRequest.OPEN_STATUSES:
            raise InvalidTransition(f'approval request is already {req.status}')
        now = timezone.now()
        req.status = decision
        req.decided_by = user
        req.decided_at = now
        req.decision_notes = notes or ''
        req.save()
        rec = req.reconciliation
        if rec is not None and rec.reconciliation_status == 'pending':
            rec.reconciliation_status = 'resolved' if decision == 'approved' else 'disputed'
            rec.reconciled_by = user
            rec.reconciled_at = now
            rec.save(update_fields=['reconciliation_status', 'reconciled_by', 'reconciled_at', 'updated_at'])
    logger.info('approval request %s %s by %s', req.id, decision, user.pk)
    log_action(user=user, action='claim_approval', object_type='panel_claim', object_id=req.claim_id,
               detail={'request': req.id, 'decision': decision}, tenant=req.claim.tenant)
    return req
