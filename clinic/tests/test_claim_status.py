from decimal import Decimal

import pytest

from clinic.services import claim_status as cs

LEGAL = {
    ('draft', 'submitted'), ('draft', 'rejected'),
    ('submitted', 'approved'), ('submitted', 'rejected'),
    ('approved', 'paid'), ('approved', 'short_paid'), ('approved', 'rejected'),
    ('short_paid', 'paid'), ('short_paid', 'rejected'),
    ('rejected', 'draft'), ('rejected', 'submitted'),
}


@pytest.mark.parametrize('current', cs.CLAIM_STATUSES)
@pytest.mark.parametrize('new', cs.CLAIM_STATUSES)
def test_transition_table(current, new):
    assert cs.is_valid_transition(current, new) is ((current, new) in LEGAL)


def test_paid_is_final():
    assert cs.ALLOWED_TRANSITIONS[cs.PAID] == ()
    assert not any(cs.is_valid_transition(cs.PAID, s) for s in cs.CLAIM_STATUSES)


def test_unknown_status_has_no_transitions():
    assert not cs.is_valid_transition('archived', cs.DRAFT)
    assert not cs.is_valid_transition(cs.DRAFT, 'archived')


def test_short_paid_coercion():
    assert cs.should_auto_coerce_to_short_paid(Decimal('50'), Decimal('100'))
    assert not cs.should_auto_coerce_to_short_paid(Decimal('100'), Decimal('100'))
    assert not cs.should_auto_coerce_to_short_paid(Decimal('0'), Decimal('100'))


def test_max_paid_amount_is_total():
    assert cs.max_paid_amount(Decimal('250.50')) == Decimal('250.50')


def test_labels_cover_every_status():
    assert set(cs.STATUS_LABELS) == set(cs.CLAIM_STATUSES)
    assert cs.STATUS_LABELS[cs.SHORT_PAID] == 'Short Paid'
