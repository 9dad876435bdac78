"""
Claim payment reconciliation and variance approval endpoints.

Any clinic user may record a panel payment against a claim; approval
workflows are configured by clinic administrators and requests are
decided by the role the workflow names.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound, PermissionDenied
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.models import ClaimApprovalWorkflow, Panel
from clinic.permissions import ADMIN_ROLES, CLINIC_ACCESS
from clinic.serializers.claims import (
    ApprovalDecisionSerializer,
    ApprovalListQuerySerializer,
    ApprovalRequestSerializer,
    ApprovalWorkflowSerializer,
    ReconciliationCreateSerializer,
    ReconciliationListQuerySerializer,
    ReconciliationSerializer,
    ReconciliationStatusSerializer,
)
from clinic.services import claims as claims_service
from clinic.services import reconciliation as recon
from clinic.services.tenants import require_tenant


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def claim_reconciliations(request, pk: int):
    claim = claims_service.get_claim_or_404(request.user, pk)
    if request.method == 'GET':
        return Response(ReconciliationSerializer(recon.list_reconciliations(request.user, claim_id=claim.id),
                                                 many=True).data)
    s = ReconciliationCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    rec = recon.reconcile_claim(claim, user=request.user, **s.validated_data)
    return Response(ReconciliationSerializer(rec).data, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def reconciliations(request):
    q = ReconciliationListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    qs = recon.list_reconciliations(request.user, **q.validated_data)
    return Response(ReconciliationSerializer(qs, many=True).data)


@api_view(['GET'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def reconciliation_stats(request):
    q = ReconciliationListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    return Response(recon.reconciliation_stats(request.user, panel_id=q.validated_data.get('panel_id')))


@api_view(['POST'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def reconciliation_update_status(request, pk: int):
    s = ReconciliationStatusSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    rec = recon.get_reconciliation_or_404(request.user, pk)
    rec = recon.resolve_reconciliation(rec, s.validated_data['status'], user=request.user,
                                       notes=s.validated_data.get('notes'))
    return Response(ReconciliationSerializer(rec).data)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def approval_workflows(request):
    tenant = require_tenant(request.user)
    if request.method == 'GET':
        qs = ClaimApprovalWorkflow.objects.filter(tenant=tenant).order_by('workflow_name')
        return Response(ApprovalWorkflowSerializer(qs, many=True).data)

    if request.user.role not in ADMIN_ROLES:
        raise PermissionDenied('only clinic administrators may configure approval workflows')
    s = ApprovalWorkflowSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    panel_id = s.validated_data.get('panel_id')
    if panel_id and not Panel.objects.filter(pk=panel_id, tenant=tenant).exists():
        raise NotFound('panel not found')
    workflow = s.save(tenant=tenant)
    return Response(ApprovalWorkflowSerializer(workflow).data, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def approval_requests(request):
    q = ApprovalListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    qs = recon.scoped_approval_requests(request.user).order_by('-created_at')
    if q.validated_data.get('status'):
        qs = qs.filter(status=q.validated_data['status'])
    return Response(ApprovalRequestSerializer(qs, many=True).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def approval_decide(request, pk: int):
    s = ApprovalDecisionSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    req = recon.get_approval_request_or_404(request.user, pk)
    req = recon.decide_approval(req, s.validated_data['decision'], user=request.user,
                                notes=s.validated_data.get('notes', ''))
    return Response(ApprovalRequestSerializer(req).data)
