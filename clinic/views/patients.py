"""
Patient record endpoints.

Every clinic user may list, register and edit patients of their own
clinic; removing a patient is reserved for clinic administrators.
"""
from __future__ import annotations

from django.db.models import Q
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.permissions import ADMIN_ROLES, CLINIC_ACCESS
from clinic.serializers.patient import PatientListQuerySerializer, PatientSerializer
from clinic.services.audit import log_action
from clinic.services.patients import create_patient, find_by_patient_id, get_patient_or_404, scoped_patients


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def patients(request):
    if request.method == 'POST':
        s = PatientSerializer(data=request.data, context={'request': request})
        s.is_valid(raise_exception=True)
        patient = create_patient(request.user, **s.validated_data)
        log_action(user=request.user, action='patient_create', object_type='patient', object_id=patient.id)
        return Response(PatientSerializer(patient).data, status=status.HTTP_201_CREATED)

    q = PatientListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    qs = scoped_patients(request.user).order_by('-created_at')
    term = (q.validated_data.get('q') or '').strip()
    if term:
        qs = qs.filter(
            Q(first_name__icontains=term) | Q(last_name__icontains=term)
            | Q(patient_id__startswith=term) | Q(phone__icontains=term)
        )
    page = q.validated_data.get('page') or 1
    page_size = q.validated_data.get('pageSize') or 50
    start = (page - 1) * page_size
    total = qs.count()
    return Response({
        'total': total,
        'page': page,
        'pageSize': page_size,
        'results': PatientSerializer(qs[start:start + page_size], many=True).data,
    })


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def patient_detail(request, pk: int):
    patient = get_patient_or_404(request.user, pk)
    if request.method == 'GET':
        return Response(PatientSerializer(patient).data)
    if request.method == 'DELETE':
        if request.user.role not in ADMIN_ROLES:
            raise PermissionDenied('only clinic administrators may remove patients')
        log_action(user=request.user, action='patient_delete', object_type='patient', object_id=patient.id,
                   detail={'patientId': patient.patient_id})
        patient.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)
    s = PatientSerializer(patient, data=request.data, partial=request.method == 'PATCH', context={'request': request})
    s.is_valid(raise_exception=True)
    s.save()
    return Response(s.data)


@api_view(['GET'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def patient_lookup(request, patient_id: str):
    """Find a patient by the public 10-13 digit patient number."""
    return Response(PatientSerializer(find_by_patient_id(request.user, patient_id)).data)
