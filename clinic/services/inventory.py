import logging
from decimal import Decimal
from typing import Optional

from django.db import transaction
from django.db.models import DecimalField, ExpressionWrapper, F, Sum
from rest_framework.exceptions import NotFound, ValidationError

from clinic.exceptions import InsufficientStock
from clinic.models import Medication, StockMovement
from clinic.services.costing import COST_QUANT, next_average

logger = logging.getLogger(__name__)

LOW_STOCK_THRESHOLD = 10


def scoped_medications(user):
    qs = Medication.objects.all()
    if getattr(user, 'role', '') != 'super_admin':
        qs = qs.filter(tenant_id=user.tenant_id)
    return qs


def get_medication_or_404(user, pk) -> Medication:
    medication = scoped_medications(user).filter(pk=pk).first()
    if not medication:
        raise NotFound('medication not found')
    return medication


def get_movement_or_404(user, pk) -> StockMovement:
    qs = StockMovement.objects.select_related('medication')
    if getattr(user, 'role', '') != 'super_admin':
        qs = qs.filter(medication__tenant_id=user.tenant_id)
    movement = qs.filter(pk=pk).first()
    if not movement:
        raise NotFound('stock movement not found')
    return movement


def apply_movement(current_stock: int, movement_type: str, quantity: int) -> int:
    """Stock level after the movement.

    Receipts add, outgoing movements subtract and adjustments carry
    their own sign.  Raises ``InsufficientStock`` when stock would go
    negative.
    """
    if movement_type == StockMovement.TYPE_RECEIPT:
        if quantity <= 0:
            raise ValidationError({'quantity': 'received quantity must be positive'})
        return current_stock + quantity
    if movement_type in StockMovement.OUTGOING_TYPES:
        if quantity <= 0:
            raise ValidationError({'quantity': 'quantity must be positive'})
        if quantity > current_stock:
            raise InsufficientStock(f'cannot remove {quantity}, only {current_stock} in stock')
        return current_stock - quantity
    if movement_type == 'adjustment':
        if quantity == 0:
            raise ValidationError({'quantity': 'adjustment quantity cannot be zero'})
        if current_stock + quantity < 0:
            raise InsufficientStock(f'cannot adjust by {quantity}, only {current_stock} in stock')
        return current_stock + quantity
    raise ValidationError({'movement_type': f'invalid movement type {movement_type}'})


def create_stock_movement(medication: Medication, *, movement_type: str, quantity: int, user=None,
                          unit_cost=None, **details) -> StockMovement:
    with transaction.atomic():
        med = Medication.objects.select_for_update().get(pk=medication.pk)
        previous = med.stock_level or 0
        new_stock = apply_movement(previous, movement_type, quantity)
        cost = Decimal(str(unit_cost)) if unit_cost else (med.cost_price or Decimal('0'))
        movement = StockMovement(
            medication=med,
            movement_type=movement_type,
            quantity=quantity,
            previous_stock=previous,
            new_stock=new_stock,
            unit_cost=cost.quantize(COST_QUANT),
            total_cost=(cost * abs(quantity)).quantize(COST_QUANT),
            created_by=user,
            **details,
        )
        update_fields = ['stock_level', 'updated_at']
        if movement_type == StockMovement.TYPE_RECEIPT:
            average = next_average(Decimal(previous), med.average_cost or Decimal('0'), Decimal(quantity), cost)
            movement.cost_per_unit_before = (med.average_cost or Decimal('0')).quantize(COST_QUANT)
            movement.cost_per_unit_after = Decimal(average).quantize(COST_QUANT)
            med.average_cost = movement.cost_per_unit_after
            update_fields.append('average_cost')
        movement.save()
        med.stock_level = new_stock
        med.save(update_fields=update_fields)
    logger.info('%s of %d for medication %s: stock %d -> %d', movement_type, quantity, med.id, previous, new_stock)
    return movement


def set_stock_level(medication: Medication, new_level: int, *, reason: str = '', user=None) -> Optional[StockMovement]:
    """Record an adjustment bringing stock to ``new_level``; None if unchanged."""
    difference = new_level - (medication.stock_level or 0)
    if difference == 0:
        return None
    return create_stock_movement(
        medication, movement_type='adjustment', quantity=difference, user=user,
        reason=reason or 'Manual stock adjustment',
        notes=f'Stock level adjusted from {medication.stock_level} to {new_level}',
    )


def stock_summary(medications) -> dict:
    qs = medications
    value = ExpressionWrapper(F('stock_level') * F('cost_price'), output_field=DecimalField(max_digits=18, decimal_places=4))
    total_value = qs.aggregate(v=Sum(value))['v'] or Decimal('0')
    return {
        'totalItems': qs.count(),
        'lowStockCount': qs.filter(stock_level__gt=0, stock_level__lte=LOW_STOCK_THRESHOLD).count(),
        'outOfStockCount': qs.filter(stock_level=0).count(),
        'totalValue': Decimal(total_value).quantize(Decimal('0.01')),
    }


def cost_history(medication: Medication, limit: int = 100):
    return (
        StockMovement.objects.select_related('created_by')
        .filter(medication=medication)
        .order_by('-created_at', '-id')[:limit]
    )
