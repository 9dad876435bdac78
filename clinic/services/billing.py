import logging
from decimal import Decimal
from typing import Iterable, Optional

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from clinic.models import BillingRecord, PaymentRecord

logger = logging.getLogger(__name__)

PAYER_FILTERS = ('panel', 'patient', 'all')
STATUS_FILTERS = ('outstanding', 'paid', 'all')


def scoped_billing(user):
    qs = BillingRecord.objects.select_related('patient', 'panel')
    if getattr(user, 'role', '') != 'super_admin':
        qs = qs.filter(tenant_id=user.tenant_id)
    return qs


def list_billing(user, *, payer: str = 'all', status: str = 'all', panel_id=None):
    qs = scoped_billing(user).order_by('-created_at')
    if payer == 'panel':
        qs = qs.filter(panel__isnull=False)
    elif payer == 'patient':
        qs = qs.filter(panel__isnull=True)
    if status == 'outstanding':
        qs = qs.filter(status__in=BillingRecord.OUTSTANDING_STATUSES)
    elif status == 'paid':
        qs = qs.filter(status='paid')
    if panel_id:
        qs = qs.filter(panel_id=panel_id)
    return qs


def get_billing_or_404(user, pk) -> BillingRecord:
    record = scoped_billing(user).filter(pk=pk).first()
    if not record:
        raise NotFound('billing record not found')
    return record


def _apply_status(record: BillingRecord, status: str, *, reason: Optional[str] = None,
                  paid_amount=None, claim_status: Optional[str] = None) -> BillingRecord:
    if status not in dict(BillingRecord.STATUS_CHOICES):
        raise ValidationError({'status': f'unknown billing status {status}'})
    record.status = status
    if claim_status:
        record.claim_status = claim_status
    if reason:
        record.claim_notes = reason
    if paid_amount is not None:
        # the settled amount replaces the invoiced one
        record.amount = Decimal(paid_amount)
        if status == 'paid':
            record.paid_date = timezone.now()
    record.save()
    return record


def update_billing_status(record: BillingRecord, status: str, **updates) -> BillingRecord:
    with transaction.atomic():
        locked = BillingRecord.objects.select_for_update().get(pk=record.pk)
        _apply_status(locked, status, **updates)
    logger.info('billing %s status -> %s', locked.invoice_number, status)
    return locked


def batch_update_billing_status(user, billing_ids: Iterable, status: str, **updates) -> int:
    """Update every listed record or none of them."""
    billing_ids = list(billing_ids)
    with transaction.atomic():
        records = list(scoped_billing(user).select_for_update(of=('self',)).filter(pk__in=billing_ids))
        if len(records) != len(set(billing_ids)):
            raise NotFound('one or more billing records not found')
        for record in records:
            _apply_status(record, status, **updates)
    logger.info('batch updated %d billing records -> %s', len(records), status)
    return len(records)


def payment_summary(record: BillingRecord) -> dict:
    total_paid = record.payments.filter(status='confirmed').aggregate(s=Sum('amount'))['s'] or Decimal('0')
    total = record.amount or Decimal('0')
    if total_paid <= 0:
        payment_status = 'pending'
    elif total_paid < total:
        payment_status = 'partial'
    else:
        payment_status = 'paid'
    return {
        'total_amount': total,
        'total_paid': total_paid,
        'amount_due': total - total_paid,
        'payment_status': payment_status,
    }


def record_payment(record: BillingRecord, *, amount, payment_method: str, processed_by=None,
                   reference_number: str = '', notes: str = '', payment_date=None) -> PaymentRecord:
    amount = Decimal(amount)
    if amount <= 0:
        raise ValidationError({'amount': 'payment amount must be positive'})
    with transaction.atomic():
        locked = BillingRecord.objects.select_for_update().get(pk=record.pk)
        payment = PaymentRecord.objects.create(
            billing=locked,
            patient_id=locked.patient_id,
            amount=amount,
            payment_method=payment_method,
            reference_number=reference_number,
            notes=notes,
            payment_date=payment_date or timezone.now(),
            processed_by=processed_by,
        )
        summary = payment_summary(locked)
        locked.status = 'paid' if summary['payment_status'] == 'paid' else 'partial'
        locked.payment_method = payment_method
        if locked.status == 'paid':
            locked.paid_date = payment.payment_date
        locked.save(update_fields=['status', 'payment_method', 'paid_date', 'updated_at'])
    logger.info('payment %s of %s recorded for %s', payment.id, amount, locked.invoice_number)
    return payment
