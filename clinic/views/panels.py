from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound, PermissionDenied
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.models import Panel
from clinic.permissions import ADMIN_ROLES, CLINIC_ACCESS
from clinic.serializers.panel import PanelSerializer
from clinic.services.tenants import require_tenant


def _panels(user):
    qs = Panel.objects.all()
    if user.role != 'super_admin':
        qs = qs.filter(tenant_id=user.tenant_id)
    return qs


def _require_admin(user):
    if user.role not in ADMIN_ROLES:
        raise PermissionDenied('only clinic administrators may manage panels')


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def panels(request):
    if request.method == 'GET':
        qs = _panels(request.user).order_by('panel_name')
        if request.query_params.get('status'):
            qs = qs.filter(default_status=request.query_params['status'])
        return Response(PanelSerializer(qs, many=True).data)
    _require_admin(request.user)
    tenant = require_tenant(request.user)
    s = PanelSerializer(data=request.data, context={'tenant_id': tenant.id})
    s.is_valid(raise_exception=True)
    panel = s.save(tenant=tenant, created_by=request.user)
    return Response(PanelSerializer(panel).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def panel_detail(request, pk: int):
    panel = _panels(request.user).filter(pk=pk).first()
    if not panel:
        raise NotFound('panel not found')
    if request.method == 'GET':
        return Response(PanelSerializer(panel).data)
    _require_admin(request.user)
    if request.method == 'DELETE':
        if panel.claims.exists():
            # claims keep their panel
            panel.default_status = 'inactive'
            panel.save(update_fields=['default_status', 'updated_at'])
            return Response(PanelSerializer(panel).data)
        panel.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)
    s = PanelSerializer(panel, data=request.data, partial=request.method == 'PATCH',
                        context={'tenant_id': panel.tenant_id})
    s.is_valid(raise_exception=True)
    s.save()
    return Response(s.data)
