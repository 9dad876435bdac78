"""Panel claim status transitions and validation constants."""
from __future__ import annotations

from decimal import Decimal

DRAFT = 'draft'
SUBMITTED = 'submitted'
APPROVED = 'approved'
SHORT_PAID = 'short_paid'
REJECTED = 'rejected'
PAID = 'paid'

CLAIM_STATUSES = (DRAFT, SUBMITTED, APPROVED, SHORT_PAID, REJECTED, PAID)

ALLOWED_TRANSITIONS: dict[str, tuple[str, ...]] = {
    DRAFT: (SUBMITTED, REJECTED),
    SUBMITTED: (APPROVED, REJECTED),
    APPROVED: (PAID, SHORT_PAID, REJECTED),
    SHORT_PAID: (PAID, REJECTED),
    PAID: (),  # final
    REJECTED: (DRAFT, SUBMITTED),  # resubmission
}

# Billing status options for outstanding panel invoices
OUTSTANDING_STATUS_OPTIONS = (SUBMITTED, APPROVED, SHORT_PAID, REJECTED, PAID)

DELETABLE_STATUSES = (DRAFT, REJECTED)

MIN_REJECTION_REASON_LENGTH = 5
PAID_AMOUNT_MAX_MULTIPLIER = Decimal('1.0')

STATUS_LABELS = {
    DRAFT: 'Draft',
    SUBMITTED: 'Submitted',
    APPROVED: 'Approved',
    SHORT_PAID: 'Short Paid',
    REJECTED: 'Rejected',
    PAID: 'Paid',
}


def is_valid_transition(current: str, new: str) -> bool:
    """Return True if a claim may move from ``current`` to ``new``."""
    return new in ALLOWED_TRANSITIONS.get(current, ())


def should_auto_coerce_to_short_paid(paid_amount, total_amount) -> bool:
    return paid_amount > 0 and paid_amount < total_amount


def max_paid_amount(total_amount) -> Decimal:
    return Decimal(total_amount) * PAID_AMOUNT_MAX_MULTIPLIER
