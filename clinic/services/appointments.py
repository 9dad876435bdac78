"""
Appointment booking.

A doctor holds at most one active appointment at any moment: booking,
rescheduling and recurring series all refuse (or, for a series, skip)
slots that overlap an active appointment of the same doctor.  Freed
slots are offered to the waitlist, and patients booked for the next
two days get a reminder from ``manage.py send_appointment_reminders``.
"""
from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta
from typing import Optional

from django.db import transaction
from django.db.models import Case, IntegerField, Q, Value, When
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from clinic.exceptions import InvalidTransition, SlotUnavailable
from clinic.models import Appointment, AppointmentWaitlist, Patient, Tenant, User
from clinic.services.audit import log_action
from clinic.services.claims_automation import add_months

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MINUTES = 15
MAX_OCCURRENCES = 52
BOOKABLE_ROLES = ('doctor', 'admin')

APPOINTMENT_TRANSITIONS = {
    Appointment.STATUS_SCHEDULED: [
        Appointment.STATUS_CONFIRMED, Appointment.STATUS_IN_CONSULTATION,
        Appointment.STATUS_CANCELLED, Appointment.STATUS_NO_SHOW,
    ],
    Appointment.STATUS_CONFIRMED: [
        Appointment.STATUS_IN_CONSULTATION, Appointment.STATUS_CANCELLED, Appointment.STATUS_NO_SHOW,
    ],
    Appointment.STATUS_IN_CONSULTATION: [Appointment.STATUS_COMPLETED],
    Appointment.STATUS_COMPLETED: [],
    Appointment.STATUS_CANCELLED: [],
    Appointment.STATUS_NO_SHOW: [],
}

MOVABLE_STATUSES = (Appointment.STATUS_SCHEDULED, Appointment.STATUS_CONFIRMED)

PRIORITY_ORDER = Case(
    When(priority='high', then=Value(0)),
    When(priority='normal', then=Value(1)),
    default=Value(2),
    output_field=IntegerField(),
)


def _can_transition(current: str, new: str) -> bool:
    return new in APPOINTMENT_TRANSITIONS.get(current, [])


def scoped_appointments(user):
    qs = Appointment.objects.select_related('patient', 'doctor')
    if getattr(user, 'role', '') != 'super_admin':
        qs = qs.filter(tenant_id=user.tenant_id)
    return qs


def get_appointment_or_404(user, pk) -> Appointment:
    appt = scoped_appointments(user).filter(pk=pk).first()
    if appt is None:
        raise NotFound('appointment not found')
    return appt


def get_clinic_doctor(tenant_id, doctor_id) -> User:
    doctor = User.objects.filter(pk=doctor_id, tenant_id=tenant_id, role__in=BOOKABLE_ROLES).first()
    if doctor is None:
        raise NotFound('doctor not found')
    return doctor


def list_appointments(user, *, date_from: Optional[date] = None, date_to: Optional[date] = None,
                      doctor_id=None, patient_id=None, status: Optional[str] = None):
    """Calendar listing; doctors only see their own bookings."""
    qs = scoped_appointments(user).order_by('start_at', 'id')
    if getattr(user, 'role', '') == 'doctor':
        qs = qs.filter(doctor_id=user.id)
    elif doctor_id:
        qs = qs.filter(doctor_id=doctor_id)
    if date_from:
        qs = qs.filter(start_at__gte=_local_midnight(date_from))
    if date_to:
        qs = qs.filter(start_at__lt=_local_midnight(date_to + timedelta(days=1)))
    if patient_id:
        qs = qs.filter(patient_id=patient_id)
    if status:
        qs = qs.filter(status=status)
    return qs


def _local_midnight(day: date) -> datetime:
    return timezone.make_aware(datetime.combine(day, datetime.min.time()))


def has_overlap(doctor_id, start_at: datetime, end_at: datetime, exclude_id=None) -> bool:
    qs = Appointment.objects.filter(
        doctor_id=doctor_id,
        status__in=Appointment.ACTIVE_STATUSES,
        start_at__lt=end_at,
        end_at__gt=start_at,
    )
    if exclude_id is not None:
        qs = qs.exclude(pk=exclude_id)
    return qs.exists()


def _lock_doctor(doctor: User) -> None:
    # serializes bookings for one doctor
    User.objects.select_for_update().filter(pk=doctor.pk).first()


def create_appointment(tenant: Tenant, patient: Patient, doctor: User, start_at: datetime,
                       duration_minutes: int = DEFAULT_DURATION_MINUTES, *, user: Optional[User] = None,
                       reason: str = '', notes: str = '', recurrence_id=None) -> Appointment:
    end_at = start_at + timedelta(minutes=duration_minutes)
    with transaction.atomic():
        _lock_doctor(doctor)
        if has_overlap(doctor.id, start_at, end_at):
            raise SlotUnavailable()
        appt = Appointment.objects.create(
            tenant=tenant,
            patient=patient,
            doctor=doctor,
            start_at=start_at,
            end_at=end_at,
            duration_minutes=duration_minutes,
            reason=reason or '',
            notes=notes or '',
            recurrence_id=recurrence_id,
            created_by=user,
        )
    logger.info('appointment %s booked with doctor %s at %s', appt.id, doctor.id, start_at.isoformat())
    log_action(user=user, action='appointment_create', object_type='appointment', object_id=appt.id,
               tenant=tenant)
    return appt


def reschedule_appointment(appt: Appointment, *, start_at: Optional[datetime] = None,
                           duration_minutes: Optional[int] = None, doctor: Optional[User] = None,
                           user: Optional[User] = None) -> Appointment:
    if appt.status not in MOVABLE_STATUSES:
        raise InvalidTransition(f'appointments in status {appt.status} cannot be rescheduled')
    doctor = doctor or appt.doctor
    start_at = start_at or appt.start_at
    duration_minutes = duration_minutes or appt.duration_minutes
    end_at = start_at + timedelta(minutes=duration_minutes)
    moved = start_at != appt.start_at
    with transaction.atomic():
        _lock_doctor(doctor)
        if has_overlap(doctor.id, start_at, end_at, exclude_id=appt.id):
            raise SlotUnavailable()
        old_start = appt.start_at
        appt.doctor = doctor
        appt.start_at = start_at
        appt.end_at = end_at
        appt.duration_minutes = duration_minutes
        if moved:
            # the patient needs a reminder for the new time
            appt.reminder_sent_at = None
            appt.reminder_method = ''
        appt.save()
    logger.info('appointment %s moved from %s to %s', appt.id, old_start.isoformat(), start_at.isoformat())
    log_action(user=user, action='appointment_reschedule', object_type='appointment', object_id=appt.id,
               detail={'from': old_start.isoformat(), 'to': start_at.isoformat(), 'doctor': doctor.id},
               tenant=appt.tenant)
    return appt


def cancel_appointment(appt: Appointment, *, reason: str = '', user: Optional[User] = None):
    """Cancel ``appt`` and return the waitlist entries that fit the freed slot."""
    if not _can_transition(appt.status, Appointment.STATUS_CANCELLED):
        raise InvalidTransition(f'appointments in status {appt.status} cannot be cancelled')
    appt.status = Appointment.STATUS_CANCELLED
    appt.cancellation_reason = reason or ''
    appt.save(update_fields=['status', 'cancellation_reason', 'updated_at'])
    logger.info('appointment %s cancelled', appt.id)
    log_action(user=user, action='appointment_cancel', object_type='appointment', object_id=appt.id,
               detail={'reason': appt.cancellation_reason}, tenant=appt.tenant)
    return appt, list(waitlist_matches(appt.tenant_id, appt.doctor_id, appt.start_at, appt.duration_minutes))


def update_appointment_status(appt: Appointment, new_status: str, *, user: Optional[User] = None) -> Appointment:
    if new_status == Appointment.STATUS_CANCELLED:
        return cancel_appointment(appt, user=user)[0]
    if not _can_transition(appt.status, new_status):
        raise InvalidTransition(f'cannot move appointment from {appt.status} to {new_status}')
    old_status = appt.status
    appt.status = new_status
    appt.save(update_fields=['status', 'updated_at'])
    log_action(user=user, action='appointment_status', object_type='appointment', object_id=appt.id,
               detail={'from': old_status, 'to': new_status}, tenant=appt.tenant)
    return appt


def _occurrence_start(start: datetime, frequency: str, step: int) -> datetime:
    if frequency == 'daily':
        return start + timedelta(days=step)
    if frequency == 'weekly':
        return start + timedelta(weeks=step)
    return add_months(timezone.localtime(start), step)


def create_recurring(appt: Appointment, frequency: str, *, interval: int = 1, end_date: Optional[date] = None,
                     max_occurrences: Optional[int] = None, user: Optional[User] = None):
    """Repeat ``appt`` and return ``(created, skipped_starts)``.

    ``max_occurrences`` counts ``appt`` itself.  Occurrences that clash
    with the doctor's other bookings are skipped rather than failing the
    whole series.
    """
    if end_date is None and max_occurrences is None:
        raise ValidationError({'end_date': 'either end_date or max_occurrences is required'})
    if appt.status not in MOVABLE_STATUSES:
        raise InvalidTransition(f'appointments in status {appt.status} cannot be repeated')
    limit = min(max_occurrences or MAX_OCCURRENCES, MAX_OCCURRENCES)

    if appt.recurrence_id is None:
        appt.recurrence_id = uuid.uuid4()
        appt.save(update_fields=['recurrence_id', 'updated_at'])

    created, skipped = [], []
    for n in range(1, limit):
        start = _occurrence_start(appt.start_at, frequency, n * interval)
        if end_date and timezone.localdate(start) > end_date:
            break
        try:
            created.append(create_appointment(
                appt.tenant, appt.patient, appt.doctor, start, appt.duration_minutes,
                user=user, reason=appt.reason, notes=appt.notes, recurrence_id=appt.recurrence_id,
            ))
        except SlotUnavailable:
            logger.info('recurrence %s: slot at %s taken, skipping', appt.recurrence_id, start.isoformat())
            skipped.append(start)
    return created, skipped


# Waitlist

def scoped_waitlist(user):
    qs = AppointmentWaitlist.objects.select_related('patient', 'doctor')
    if getattr(user, 'role', '') != 'super_admin':
        qs = qs.filter(tenant_id=user.tenant_id)
    return qs


def get_waitlist_entry_or_404(user, pk) -> AppointmentWaitlist:
    entry = scoped_waitlist(user).filter(pk=pk).first()
    if entry is None:
        raise NotFound('waitlist entry not found')
    return entry


def list_waitlist(user, *, status: str = 'active', doctor_id=None):
    qs = scoped_waitlist(user).filter(status=status)
    if doctor_id:
        qs = qs.filter(Q(doctor_id=doctor_id) | Q(doctor__isnull=True))
    return qs.order_by(PRIORITY_ORDER, 'created_at')


def add_to_waitlist(tenant: Tenant, patient: Patient, *, user: Optional[User] = None, **fields) -> AppointmentWaitlist:
    entry = AppointmentWaitlist.objects.create(tenant=tenant, patient=patient, created_by=user, **fields)
    logger.info('patient %s added to waitlist (%s)', patient.id, entry.priority)
    return entry


def waitlist_matches(tenant_id, doctor_id, start_at: datetime, duration_minutes: int):
    """Active waitlist entries whose preferences fit the given slot."""
    local = timezone.localtime(start_at)
    day, at = local.date(), local.time()
    return (
        AppointmentWaitlist.objects.select_related('patient')
        .filter(tenant_id=tenant_id, status='active', duration_minutes__lte=duration_minutes)
        .filter(Q(doctor__isnull=True) | Q(doctor_id=doctor_id))
        .filter(Q(preferred_date_start__isnull=True) | Q(preferred_date_start__lte=day))
        .filter(Q(preferred_date_end__isnull=True) | Q(preferred_date_end__gte=day))
        .filter(Q(preferred_time_start__isnull=True) | Q(preferred_time_start__lte=at))
        .filter(Q(preferred_time_end__isnull=True) | Q(preferred_time_end__gte=at))
        .order_by(PRIORITY_ORDER, 'created_at')
    )


def update_waitlist_status(entry: AppointmentWaitlist, status: str, *,
                           appointment: Optional[Appointment] = None) -> AppointmentWaitlist:
    if entry.status != 'active':
        raise InvalidTransition(f'waitlist entry is already {entry.status}')
    entry.status = status
    if appointment is not None:
        entry.appointment = appointment
    entry.save(update_fields=['status', 'appointment'])
    return entry


# Reminders

def reminder_channel(patient: Patient) -> Optional[str]:
    if patient.email:
        return 'email'
    if patient.phone:
        return 'sms'
    return None


def reminder_message(appt: Appointment) -> str:
    local = timezone.localtime(appt.start_at)
    doctor = appt.doctor.get_full_name() or appt.doctor.username
    return (
        f'Dear {appt.patient.full_name}, this is a reminder of your appointment with Dr. {doctor} '
        f'at {appt.tenant.clinic_name} on {local:%d %B %Y} at {local:%H:%M}.'
    )


def deliver_reminder(appt: Appointment, channel: str) -> None:
    """Hand a reminder to the delivery channel (currently the log)."""
    recipient = appt.patient.email if channel == 'email' else appt.patient.phone
    logger.info('sending %s reminder for appointment %s to %s: %s', channel, appt.id, recipient,
                reminder_message(appt))


def send_reminder(appt: Appointment, channel: Optional[str] = None, now: Optional[datetime] = None) -> Appointment:
    channel = channel or reminder_channel(appt.patient)
    if channel is None:
        raise ValidationError({'patient': 'patient has no email or phone number'})
    if channel == 'email' and not appt.patient.email:
        raise ValidationError({'type': 'patient has no email address'})
    if channel == 'sms' and not appt.patient.phone:
        raise ValidationError({'type': 'patient has no phone number'})
    deliver_reminder(appt, channel)
    appt.reminder_sent_at = now or timezone.now()
    appt.reminder_method = channel
    appt.save(update_fields=['reminder_sent_at', 'reminder_method', 'updated_at'])
    return appt


def due_for_reminder(now: Optional[datetime] = None):
    """Unreminded bookings dated tomorrow or the day after."""
    today = timezone.localdate(now or timezone.now())
    return (
        Appointment.objects.select_related('patient', 'doctor', 'tenant')
        .filter(
            status__in=MOVABLE_STATUSES,
            reminder_sent_at__isnull=True,
            start_at__gte=_local_midnight(today + timedelta(days=1)),
            start_at__lt=_local_midnight(today + timedelta(days=3)),
        )
        .order_by('start_at')
    )


def send_due_reminders(now: Optional[datetime] = None) -> dict:
    now = now or timezone.now()
    counts = {'processed': 0, 'sent': 0, 'skipped': 0, 'failed': 0}
    for appt in due_for_reminder(now):
        counts['processed'] += 1
        if reminder_channel(appt.patient) is None:
            logger.info('appointment %s: patient has no contact details, skipping', appt.id)
            counts['skipped'] += 1
            continue
        try:
            send_reminder(appt, now=now)
        except Exception:
            # one failed delivery must not stop the others
            logger.exception('failed to send reminder for appointment %s', appt.id)
            counts['failed'] += 1
            continue
        counts['sent'] += 1
    return counts
