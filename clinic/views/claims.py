"""
Panel claim endpoints.

Claims batch panel-billed invoices for submission to the payer and then
follow the claim lifecycle (draft, submitted, approved, short paid,
paid, rejected).  Illegal moves are refused with ``invalid_transition``.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound, PermissionDenied
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.models import Panel
from clinic.permissions import ADMIN_ROLES, CLINIC_ACCESS
from clinic.serializers.claims import (
    ClaimCreateSerializer,
    ClaimDetailSerializer,
    ClaimListQuerySerializer,
    ClaimSerializer,
    ClaimStatusSerializer,
)
from clinic.services import claim_status as cs
from clinic.services import claims as claims_service
from clinic.services.tenants import require_tenant


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def claims(request):
    if request.method == 'GET':
        q = ClaimListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        qs = claims_service.list_claims(
            request.user, panel_id=q.validated_data.get('panel_id'), status=q.validated_data.get('status'),
        )
        return Response(ClaimSerializer(qs, many=True).data)

    s = ClaimCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    tenant = require_tenant(request.user)
    panel = Panel.objects.filter(pk=s.validated_data['panel_id'], tenant=tenant).first()
    if panel is None:
        raise NotFound('panel not found')
    claim = claims_service.create_claim(
        tenant=tenant,
        panel=panel,
        billing_ids=s.validated_data['billing_ids'],
        period_start=s.validated_data['billing_period_start'],
        period_end=s.validated_data['billing_period_end'],
        user=request.user,
    )
    return Response(ClaimSerializer(claim).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'DELETE'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def claim_detail(request, pk: int):
    claim = claims_service.get_claim_or_404(request.user, pk)
    if request.method == 'DELETE':
        if request.user.role not in ADMIN_ROLES:
            raise PermissionDenied('only clinic administrators may delete claims')
        claims_service.delete_claim(claim, user=request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)
    return Response(ClaimDetailSerializer(claim).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def claim_update_status(request, pk: int):
    s = ClaimStatusSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    claim = claims_service.get_claim_or_404(request.user, pk)
    claim = claims_service.update_claim_status(
        claim,
        vd['status'],
        user=request.user,
        paid_amount=vd.get('paid_amount'),
        rejection_reason=vd.get('rejection_reason'),
        panel_reference_number=vd.get('panel_reference_number'),
        notes=vd.get('notes'),
    )
    return Response(ClaimSerializer(claim).data)


@api_view(['GET'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def claim_transitions(request):
    """The claim status table for clients that render allowed actions."""
    return Response({
        'statuses': [{'value': s, 'label': cs.STATUS_LABELS[s]} for s in cs.CLAIM_STATUSES],
        'transitions': {k: list(v) for k, v in cs.ALLOWED_TRANSITIONS.items()},
        'deletable': list(cs.DELETABLE_STATUSES),
    })
