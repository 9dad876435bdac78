"""
Appointment calendar endpoints.

Every clinic user may book, move and cancel appointments; doctors see
only their own bookings in the calendar listing.  Bookings that clash
with the doctor's calendar are refused with ``slot_unavailable``.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.permissions import CLINIC_ACCESS
from clinic.serializers.appointments import (
    AppointmentCreateSerializer,
    AppointmentListQuerySerializer,
    AppointmentSerializer,
    AppointmentStatusSerializer,
    AppointmentUpdateSerializer,
    CancelSerializer,
    RecurrenceSerializer,
    ReminderSerializer,
    RescheduleSerializer,
    WaitlistListQuerySerializer,
    WaitlistSerializer,
    WaitlistStatusSerializer,
)
from clinic.services import appointments as booking
from clinic.services.patients import get_patient_or_404
from clinic.services.tenants import require_tenant


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def appointments(request):
    if request.method == 'GET':
        q = AppointmentListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        qs = booking.list_appointments(request.user, **q.validated_data)
        return Response(AppointmentSerializer(qs, many=True).data)

    s = AppointmentCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    tenant = require_tenant(request.user)
    patient = get_patient_or_404(request.user, vd['patient_id'])
    doctor = booking.get_clinic_doctor(tenant.id, vd['doctor_id'])
    appt = booking.create_appointment(
        tenant, patient, doctor, vd['start_at'], vd['duration_minutes'],
        user=request.user, reason=vd.get('reason', ''), notes=vd.get('notes', ''),
    )
    return Response(AppointmentSerializer(appt).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def appointment_detail(request, pk: int):
    appt = booking.get_appointment_or_404(request.user, pk)
    if request.method == 'PATCH':
        s = AppointmentUpdateSerializer(data=request.data, partial=True)
        s.is_valid(raise_exception=True)
        for field, value in s.validated_data.items():
            setattr(appt, field, value)
        appt.save()
    return Response(AppointmentSerializer(appt).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def appointment_reschedule(request, pk: int):
    s = RescheduleSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    appt = booking.get_appointment_or_404(request.user, pk)
    doctor = booking.get_clinic_doctor(appt.tenant_id, vd['doctor_id']) if vd.get('doctor_id') else None
    appt = booking.reschedule_appointment(
        appt, start_at=vd.get('start_at'), duration_minutes=vd.get('duration_minutes'), doctor=doctor,
        user=request.user,
    )
    return Response(AppointmentSerializer(appt).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def appointment_cancel(request, pk: int):
    s = CancelSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    appt = booking.get_appointment_or_404(request.user, pk)
    appt, matches = booking.cancel_appointment(appt, reason=s.validated_data.get('reason', ''), user=request.user)
    return Response({
        'appointment': AppointmentSerializer(appt).data,
        'waitlistMatches': WaitlistSerializer(matches, many=True).data,
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def appointment_update_status(request, pk: int):
    s = AppointmentStatusSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    appt = booking.get_appointment_or_404(request.user, pk)
    appt = booking.update_appointment_status(appt, s.validated_data['status'], user=request.user)
    return Response(AppointmentSerializer(appt).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def appointment_recurrence(request, pk: int):
    """Repeat a booking; clashing occurrences are reported, not booked."""
    s = RecurrenceSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    appt = booking.get_appointment_or_404(request.user, pk)
    created, skipped = booking.create_recurring(appt, user=request.user, **s.validated_data)
    return Response({
        'recurrence_id': str(appt.recurrence_id),
        'created': AppointmentSerializer(created, many=True).data,
        'skipped': [start.isoformat() for start in skipped],
    }, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def appointment_remind(request, pk: int):
    """Send the patient a reminder now, by email or SMS."""
    s = ReminderSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    appt = booking.get_appointment_or_404(request.user, pk)
    appt = booking.send_reminder(appt, s.validated_data.get('type'))
    return Response({'sent': True, 'method': appt.reminder_method, 'sent_at': appt.reminder_sent_at})


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def waitlist(request):
    if request.method == 'GET':
        q = WaitlistListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        qs = booking.list_waitlist(request.user, **q.validated_data)
        return Response(WaitlistSerializer(qs, many=True).data)

    s = WaitlistSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    fields = dict(s.validated_data)
    tenant = require_tenant(request.user)
    patient = get_patient_or_404(request.user, fields.pop('patient_id'))
    doctor_id = fields.pop('doctor_id', None)
    if doctor_id:
        fields['doctor'] = booking.get_clinic_doctor(tenant.id, doctor_id)
    entry = booking.add_to_waitlist(tenant, patient, user=request.user, **fields)
    return Response(WaitlistSerializer(entry).data, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def waitlist_update_status(request, pk: int):
    s = WaitlistStatusSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    entry = booking.get_waitlist_entry_or_404(request.user, pk)
    appointment = None
    if s.validated_data.get('appointment_id'):
        appointment = booking.get_appointment_or_404(request.user, s.validated_data['appointment_id'])
    entry = booking.update_waitlist_status(entry, s.validated_data['status'], appointment=appointment)
    return Response(WaitlistSerializer(entry).data)
