"""
Daily patient queue.

Queue numbers are ``A001``, ``A002``... per clinic per day.  Every status
change is recorded as a :class:`QueueEntryTransition` and broadcast to
the clinic's ``queue.<tenant_id>`` channel group so waiting-room
displays can refresh.
"""
from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import IntegrityError, transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound

from clinic.exceptions import InvalidTransition
from clinic.models import QueueEntry, QueueEntryTransition, QueueSession, User

logger = logging.getLogger(__name__)

QUEUE_PREFIX = 'A'
DEFAULT_CONSULTATION_MINUTES = 30

QUEUE_TRANSITIONS = {
    QueueEntry.STATUS_WAITING: [QueueEntry.STATUS_URGENT, QueueEntry.STATUS_IN_CONSULTATION, QueueEntry.STATUS_CANCELLED],
    QueueEntry.STATUS_URGENT: [QueueEntry.STATUS_WAITING, QueueEntry.STATUS_IN_CONSULTATION, QueueEntry.STATUS_CANCELLED],
    QueueEntry.STATUS_IN_CONSULTATION: [
        QueueEntry.STATUS_WAITING, QueueEntry.STATUS_DISPENSARY, QueueEntry.STATUS_COMPLETED, QueueEntry.STATUS_CANCELLED,
    ],
    QueueEntry.STATUS_DISPENSARY: [QueueEntry.STATUS_COMPLETED],
    QueueEntry.STATUS_COMPLETED: [],
    QueueEntry.STATUS_CANCELLED: [],
}

FINISHED_STATUSES = (QueueEntry.STATUS_COMPLETED, QueueEntry.STATUS_DISPENSARY)


def _can_transition(current: str, new: str) -> bool:
    """Return True if the queue entry may transition from ``current`` to ``new``."""
    return new in QUEUE_TRANSITIONS.get(current, [])


def _sequence(queue_number: str) -> int:
    digits = queue_number[len(QUEUE_PREFIX):]
    return int(digits) if digits.isdigit() else 0


def next_queue_number(tenant_id, queue_date: date) -> str:
    numbers = QueueEntry.objects.filter(tenant_id=tenant_id, queue_date=queue_date).values_list('queue_number', flat=True)
    highest = max((_sequence(n) for n in numbers), default=0)
    return f"{QUEUE_PREFIX}{highest + 1:03d}"


def todays_queue(tenant_id):
    return (
        QueueEntry.objects.select_related('patient', 'assigned_doctor')
        .filter(tenant_id=tenant_id, queue_date=timezone.localdate())
        .order_by('checked_in_at', 'id')
    )


def get_entry_or_404(user: User, pk) -> QueueEntry:
    qs = QueueEntry.objects.select_related('patient', 'assigned_doctor')
    if getattr(user, 'role', '') != 'super_admin':
        qs = qs.filter(tenant_id=user.tenant_id)
    entry = qs.filter(pk=pk).first()
    if not entry:
        raise NotFound('queue entry not found')
    return entry


def broadcast_queue_update(entry: QueueEntry, event: str = 'queue.updated') -> None:
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    payload = {
        'type': 'queue.update',
        'event': event,
        'entryId': entry.id,
        'queueNumber': entry.queue_number,
        'status': entry.status,
        'updatedAt': entry.updated_at.isoformat() if entry.updated_at else None,
    }
    async_to_sync(channel_layer.group_send)(f"queue.{entry.tenant_id}", payload)


def add_to_queue(user: User, patient, *, doctor: Optional[User] = None, duration: Optional[int] = None) -> QueueEntry:
    """Check ``patient`` in and open their consultation session."""
    today = timezone.localdate()
    for attempt in range(3):
        try:
            with transaction.atomic():
                number = next_queue_number(patient.tenant_id, today)
                entry = QueueEntry.objects.create(
                    tenant_id=patient.tenant_id,
                    patient=patient,
                    queue_number=number,
                    queue_date=today,
                    assigned_doctor=doctor,
                    estimated_consultation_duration=duration or DEFAULT_CONSULTATION_MINUTES,
                )
                QueueEntryTransition.objects.create(
                    entry=entry, from_status=None, to_status=entry.status, operator=user, reason='checked in',
                )
                QueueSession.objects.create(
                    entry=entry,
                    patient=patient,
                    session_data={
                        'queue_number': number,
                        'assigned_doctor_id': doctor.id if doctor else None,
                        'registration_timestamp': timezone.now().isoformat(),
                    },
                )
            break
        except IntegrityError:
            # another check-in took the same number
            logger.warning('queue number conflict for tenant %s on attempt %d', patient.tenant_id, attempt + 1)
    else:
        raise InvalidTransition('could not allocate a queue number')
    logger.info('patient %s queued as %s', patient.id, entry.queue_number)
    broadcast_queue_update(entry, 'queue.added')
    return entry


def update_status(entry: QueueEntry, new_status: str, *, operator: Optional[User] = None,
                  doctor: Optional[User] = None, reason: str = '') -> QueueEntry:
    """Move ``entry`` to ``new_status`` under a row lock."""
    with transaction.atomic():
        locked = QueueEntry.objects.select_for_update().get(pk=entry.pk)
        old_status = locked.status
        if not _can_transition(old_status, new_status):
            raise InvalidTransition(f'cannot move queue entry from {old_status} to {new_status}')
        now = timezone.now()
        locked.status = new_status
        if new_status == QueueEntry.STATUS_IN_CONSULTATION:
            locked.consultation_started_at = now
            if doctor:
                locked.assigned_doctor = doctor
        elif new_status in FINISHED_STATUSES:
            locked.consultation_completed_at = now
        locked.save()
        QueueEntryTransition.objects.create(
            entry=locked, from_status=old_status, to_status=new_status, operator=operator, reason=reason,
        )
        if new_status in (QueueEntry.STATUS_COMPLETED, QueueEntry.STATUS_CANCELLED):
            archive_session(locked)
    logger.info('queue entry %s: %s -> %s', locked.id, old_status, new_status)
    broadcast_queue_update(locked)
    return locked


def call_next(tenant_id, *, operator: Optional[User] = None, doctor: Optional[User] = None) -> Optional[QueueEntry]:
    """Start the consultation of the next patient; urgent entries go first."""
    queue = todays_queue(tenant_id)
    entry = (
        queue.filter(status=QueueEntry.STATUS_URGENT).first()
        or queue.filter(status=QueueEntry.STATUS_WAITING).first()
    )
    if entry is None:
        return None
    return update_status(entry, QueueEntry.STATUS_IN_CONSULTATION, operator=operator, doctor=doctor, reason='called next')


def current_number(entries) -> Optional[str]:
    entries = list(entries)
    for entry in entries:
        if entry.status == QueueEntry.STATUS_IN_CONSULTATION:
            return entry.queue_number
    for entry in entries:
        if entry.status == QueueEntry.STATUS_WAITING:
            return entry.queue_number
    finished = [e for e in entries if e.status in FINISHED_STATUSES]
    return finished[-1].queue_number if finished else None


def estimated_wait_minutes(entries, queue_number: str, now=None) -> int:
    """Minutes until ``queue_number`` is seen; 0 unless it is waiting."""
    entries = list(entries)
    now = now or timezone.now()
    entry = next((e for e in entries if e.queue_number == queue_number), None)
    if entry is None or entry.status != QueueEntry.STATUS_WAITING:
        return 0
    position = _sequence(queue_number)
    waiting_ahead = sum(
        1 for e in entries if e.status == QueueEntry.STATUS_WAITING and _sequence(e.queue_number) < position
    )
    wait = waiting_ahead * (entry.estimated_consultation_duration or DEFAULT_CONSULTATION_MINUTES)
    in_consultation = next((e for e in entries if e.status == QueueEntry.STATUS_IN_CONSULTATION), None)
    if in_consultation is not None:
        started = in_consultation.consultation_started_at or in_consultation.checked_in_at
        elapsed = (now - started).total_seconds() / 60
        duration = in_consultation.estimated_consultation_duration or DEFAULT_CONSULTATION_MINUTES
        wait += max(0, duration - elapsed)
    return round(wait)


def today_stats(entries) -> dict:
    entries = list(entries)
    return {
        'total': len(entries),
        'waiting': sum(1 for e in entries if e.status == QueueEntry.STATUS_WAITING),
        'urgent': sum(1 for e in entries if e.status == QueueEntry.STATUS_URGENT),
        'inConsultation': sum(1 for e in entries if e.status == QueueEntry.STATUS_IN_CONSULTATION),
        'completed': sum(1 for e in entries if e.status in FINISHED_STATUSES),
        'dispensary': sum(1 for e in entries if e.status == QueueEntry.STATUS_DISPENSARY),
    }


def check_session_completeness(data: dict) -> dict:
    """Which consultation details are still missing from a session."""
    missing = []
    if not (data.get('consultation_notes') or '').strip():
        missing.append('consultation_notes')
    if not (data.get('diagnosis') or '').strip():
        missing.append('diagnosis')
    if not data.get('doctor_id'):
        missing.append('doctor_id')
    for index, item in enumerate(data.get('prescribed_items') or []):
        if item.get('type') == 'medication' and (not item.get('dosage') or not item.get('frequency')):
            missing.append(f'prescribed_items[{index}].dosage_or_frequency')
    return {'isComplete': not missing, 'missing': missing}


def save_session_data(entry: QueueEntry, data: dict) -> QueueSession:
    session, _ = QueueSession.objects.get_or_create(entry=entry, defaults={'patient': entry.patient})
    merged = dict(session.session_data or {})
    merged.update(data)
    merged['last_updated'] = timezone.now().isoformat()
    session.session_data = merged
    session.save(update_fields=['session_data', 'updated_at'])
    return session


def archive_session(entry: QueueEntry) -> Optional[QueueSession]:
    session = QueueSession.objects.filter(entry=entry).first()
    if session is None or session.status == 'archived':
        return session
    session.status = 'archived'
    session.archived_at = timezone.now()
    session.save(update_fields=['status', 'archived_at', 'updated_at'])
    return session


def cleanup_sessions(retention_days: int, now=None) -> dict:
    """Purge archived sessions and unbilled completed entries past retention."""
    now = now or timezone.now()
    cutoff = now - timedelta(days=retention_days)
    deleted_sessions, _ = QueueSession.objects.filter(status='archived', archived_at__lt=cutoff).delete()
    stale = QueueEntry.objects.filter(
        status=QueueEntry.STATUS_COMPLETED,
        queue_date__lt=timezone.localdate(cutoff),
        billing_records__isnull=True,
    )
    stale_ids = list(stale.values_list('id', flat=True))
    QueueEntry.objects.filter(id__in=stale_ids).delete()
    logger.info('cleanup removed %d sessions and %d queue entries older than %s',
                deleted_sessions, len(stale_ids), cutoff.isoformat())
    return {'deletedSessions': deleted_sessions, 'deletedQueueEntries': len(stale_ids), 'cutoffDate': cutoff.isoformat()}
