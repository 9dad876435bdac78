"""
Daily queue endpoints.

Front-desk staff check patients in and every clinic user can follow the
queue.  Status changes are validated against the queue transition
table, recorded with the operator and broadcast to the clinic's
websocket group.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.models import QueueSession, User
from clinic.permissions import CLINIC_ACCESS, CLINICAL_ROLES
from clinic.serializers.queue import (
    QueueAddSerializer,
    QueueEntrySerializer,
    QueueSessionDataSerializer,
    QueueStatusSerializer,
    QueueTransitionSerializer,
)
from clinic.services import queue as queue_service
from clinic.services.patients import get_patient_or_404
from clinic.services.tenants import require_tenant


def _doctor_or_none(user: User, doctor_id):
    if not doctor_id:
        return None
    doctor = User.objects.filter(pk=doctor_id, tenant_id=user.tenant_id, role__in=CLINICAL_ROLES).first()
    if doctor is None:
        raise ValidationError({'doctor_id': 'doctor not found in this clinic'})
    return doctor


@api_view(['GET'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def queue_today(request):
    """Today's queue with the number currently being served."""
    tenant = require_tenant(request.user)
    entries = list(queue_service.todays_queue(tenant.id))
    return Response({
        'currentNumber': queue_service.current_number(entries),
        'stats': queue_service.today_stats(entries),
        'entries': QueueEntrySerializer(entries, many=True).data,
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def queue_add(request):
    s = QueueAddSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    require_tenant(request.user)
    patient = get_patient_or_404(request.user, s.validated_data['patient_id'])
    doctor = _doctor_or_none(request.user, s.validated_data.get('doctor_id'))
    entry = queue_service.add_to_queue(
        request.user, patient, doctor=doctor, duration=s.validated_data.get('duration'),
    )
    return Response(QueueEntrySerializer(entry).data, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def queue_entry_detail(request, pk: int):
    entry = queue_service.get_entry_or_404(request.user, pk)
    data = QueueEntrySerializer(entry).data
    data['transitionHistory'] = QueueTransitionSerializer(
        entry.transitions.select_related('operator').order_by('timestamp', 'id'), many=True
    ).data
    return Response(data)


@api_view(['POST'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def queue_update_status(request, pk: int):
    s = QueueStatusSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    entry = queue_service.get_entry_or_404(request.user, pk)
    doctor = _doctor_or_none(request.user, s.validated_data.get('doctor_id'))
    if doctor is None and s.validated_data['status'] == 'in_consultation' and request.user.role == 'doctor':
        doctor = request.user
    entry = queue_service.update_status(
        entry, s.validated_data['status'], operator=request.user, doctor=doctor,
        reason=s.validated_data.get('reason') or '',
    )
    return Response({'success': True, 'newStatus': entry.status, 'entry': QueueEntrySerializer(entry).data})


@api_view(['POST'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def queue_call_next(request):
    tenant = require_tenant(request.user)
    doctor = request.user if request.user.role == 'doctor' else None
    entry = queue_service.call_next(tenant.id, operator=request.user, doctor=doctor)
    if entry is None:
        return Response({'entry': None, 'detail': 'no patients waiting'})
    return Response({'entry': QueueEntrySerializer(entry).data})


@api_view(['GET'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def queue_stats(request):
    tenant = require_tenant(request.user)
    entries = list(queue_service.todays_queue(tenant.id))
    return Response({'currentNumber': queue_service.current_number(entries), **queue_service.today_stats(entries)})


@api_view(['GET'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def queue_wait_time(request):
    queue_number = (request.query_params.get('queueNumber') or request.query_params.get('queue_number') or '').strip()
    if not queue_number:
        raise ValidationError({'queueNumber': 'queue number is required'})
    tenant = require_tenant(request.user)
    entries = queue_service.todays_queue(tenant.id)
    return Response({
        'queueNumber': queue_number,
        'estimatedWaitMinutes': queue_service.estimated_wait_minutes(entries, queue_number),
    })


@api_view(['GET', 'PUT'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def queue_session(request, pk: int):
    """Consultation data captured for a queue entry, with a completeness report."""
    entry = queue_service.get_entry_or_404(request.user, pk)
    if request.method == 'PUT':
        s = QueueSessionDataSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        session = queue_service.save_session_data(entry, s.validated_data)
    else:
        session = QueueSession.objects.filter(entry=entry).first()
    data = session.session_data if session else {}
    return Response({
        'entryId': entry.id,
        'status': session.status if session else None,
        'sessionData': data,
        'completeness': queue_service.check_session_completeness(data),
    })
