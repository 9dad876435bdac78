"""
Weighted moving-average inventory costing.

``fold_receipts`` is the pure calculation; ``recalculate_average_costs``
replays it over the stored receipt movements of one medication and
writes the results back.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Tuple

from django.db import transaction

from clinic.models import Medication, StockMovement

logger = logging.getLogger(__name__)

COST_QUANT = Decimal('0.0001')


@dataclass
class CostStep:
    quantity: object
    unit_cost: object
    average_before: object
    average_after: object
    stock_after: object


@dataclass
class CostFold:
    average_cost: object = 0
    stock: object = 0
    steps: List[CostStep] = field(default_factory=list)


def next_average(stock, average, quantity, unit_cost):
    """Average unit cost after receiving ``quantity`` at ``unit_cost``.

    With nothing in stock the receipt's own cost becomes the average.
    """
    if stock == 0:
        return unit_cost
    total_quantity = stock + quantity
    if total_quantity == 0:
        return average
    return (stock * average + quantity * unit_cost) / total_quantity


def fold_receipts(receipts: Iterable[Tuple[object, object]]) -> CostFold:
    """Fold chronologically ordered ``(quantity, unit_cost)`` receipts."""
    result = CostFold()
    for quantity, unit_cost in receipts:
        quantity = quantity or 0
        unit_cost = unit_cost or 0
        before = result.average_cost
        result.average_cost = next_average(result.stock, result.average_cost, quantity, unit_cost)
        result.stock += quantity
        result.steps.append(CostStep(quantity, unit_cost, before, result.average_cost, result.stock))
    return result


def _q(value) -> Decimal:
    return Decimal(value).quantize(COST_QUANT)


@transaction.atomic
def recalculate_average_costs(medication: Medication) -> Decimal:
    """Replay every receipt of ``medication`` and persist the averages."""
    receipts = list(
        StockMovement.objects.select_for_update()
        .filter(medication=medication, movement_type=StockMovement.TYPE_RECEIPT)
        .order_by('created_at', 'id')
    )
    fold = fold_receipts((Decimal(m.quantity), Decimal(m.unit_cost)) for m in receipts)
    for movement, step in zip(receipts, fold.steps):
        movement.cost_per_unit_before = _q(step.average_before)
        movement.cost_per_unit_after = _q(step.average_after)
        movement.total_cost = _q(step.quantity * step.unit_cost)
        movement.save(update_fields=['cost_per_unit_before', 'cost_per_unit_after', 'total_cost'])

    medication.average_cost = _q(fold.average_cost)
    medication.save(update_fields=['average_cost', 'updated_at'])
    logger.info(
        'recalculated average cost for medication %s over %d receipts: %s',
        medication.id, len(receipts), medication.average_cost,
    )
    return medication.average_cost


def update_historical_cost(movement: StockMovement, new_unit_cost) -> Decimal:
    """Correct the unit cost of a past movement and recompute the averages."""
    with transaction.atomic():
        movement.unit_cost = _q(new_unit_cost)
        movement.total_cost = _q(Decimal(movement.quantity) * movement.unit_cost)
        movement.save(update_fields=['unit_cost', 'total_cost'])
        return recalculate_average_costs(movement.medication)
