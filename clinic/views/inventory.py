"""
Medication inventory endpoints.

Stock levels and the moving-average cost change only through stock
movements.  Correcting the unit cost of a past receipt replays every
receipt of that medication.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.models import StockMovement
from clinic.permissions import CLINIC_ACCESS, IsClinicAdmin
from clinic.serializers.inventory import (
    HistoricalCostSerializer,
    MedicationSerializer,
    StockLevelSerializer,
    StockMovementCreateSerializer,
    StockMovementSerializer,
)
from clinic.services import inventory as inventory_service
from clinic.services.audit import log_action
from clinic.services.costing import recalculate_average_costs, update_historical_cost
from clinic.services.tenants import require_tenant


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def medications(request):
    if request.method == 'POST':
        s = MedicationSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        medication = s.save(tenant=require_tenant(request.user))
        return Response(MedicationSerializer(medication).data, status=status.HTTP_201_CREATED)
    qs = inventory_service.scoped_medications(request.user).order_by('name')
    if request.query_params.get('q'):
        qs = qs.filter(name__icontains=request.query_params['q'])
    return Response(MedicationSerializer(qs, many=True).data)


@api_view(['GET', 'PUT', 'PATCH'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def medication_detail(request, pk: int):
    medication = inventory_service.get_medication_or_404(request.user, pk)
    if request.method == 'GET':
        return Response(MedicationSerializer(medication).data)
    s = MedicationSerializer(medication, data=request.data, partial=request.method == 'PATCH')
    s.is_valid(raise_exception=True)
    s.save()
    return Response(s.data)


@api_view(['GET'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def stock_summary(request):
    return Response(inventory_service.stock_summary(inventory_service.scoped_medications(request.user)))


@api_view(['GET'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def stock_movements(request):
    """The most recent movements across the clinic's medications."""
    qs = StockMovement.objects.select_related('medication', 'created_by')
    if request.user.role != 'super_admin':
        qs = qs.filter(medication__tenant_id=request.user.tenant_id)
    if request.query_params.get('type'):
        qs = qs.filter(movement_type=request.query_params['type'])
    return Response(StockMovementSerializer(qs.order_by('-created_at', '-id')[:100], many=True).data)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def medication_movements(request, pk: int):
    medication = inventory_service.get_medication_or_404(request.user, pk)
    if request.method == 'GET':
        return Response(StockMovementSerializer(inventory_service.cost_history(medication), many=True).data)
    s = StockMovementCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    movement = inventory_service.create_stock_movement(medication, user=request.user, **s.validated_data)
    return Response(StockMovementSerializer(movement).data, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsClinicAdmin, *CLINIC_ACCESS])
def medication_set_stock(request, pk: int):
    s = StockLevelSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    medication = inventory_service.get_medication_or_404(request.user, pk)
    movement = inventory_service.set_stock_level(
        medication, s.validated_data['stock_level'], reason=s.validated_data.get('reason', ''), user=request.user,
    )
    if movement is None:
        return Response({'changed': False})
    return Response({'changed': True, 'movement': StockMovementSerializer(movement).data})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsClinicAdmin, *CLINIC_ACCESS])
def medication_recalculate(request, pk: int):
    medication = inventory_service.get_medication_or_404(request.user, pk)
    average = recalculate_average_costs(medication)
    return Response({'medicationId': medication.id, 'averageCost': str(average)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsClinicAdmin, *CLINIC_ACCESS])
def movement_update_cost(request, pk: int):
    """Correct a past receipt's unit cost and recompute the average."""
    s = HistoricalCostSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    movement = inventory_service.get_movement_or_404(request.user, pk)
    old_cost = movement.unit_cost
    average = update_historical_cost(movement, s.validated_data['unit_cost'])
    movement.refresh_from_db()
    log_action(user=request.user, action='stock_cost_update', object_type='stock_movement', object_id=movement.id,
               detail={'from': str(old_cost), 'to': str(movement.unit_cost)})
    return Response({
        'movement': StockMovementSerializer(movement).data,
        'averageCost': str(average),
    })
