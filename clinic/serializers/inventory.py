from decimal import Decimal

import bleach
from rest_framework import serializers

from clinic.models import Medication, StockMovement


class MedicationSerializer(serializers.ModelSerializer):
    low_stock = serializers.SerializerMethodField()

    class Meta:
        model = Medication
        fields = [
            'id', 'name', 'unit', 'stock_level', 'reorder_level', 'cost_price', 'average_cost',
            'selling_price', 'low_stock', 'created_at', 'updated_at',
        ]
        # stock and average cost only move through stock movements
        read_only_fields = ['stock_level', 'average_cost', 'created_at', 'updated_at']

    def validate_name(self, v):
        v = bleach.clean((v or '').strip(), strip=True)
        if not v:
            raise serializers.ValidationError('name is required')
        return v

    def get_low_stock(self, obj):
        return 0 < obj.stock_level <= obj.reorder_level


class StockMovementCreateSerializer(serializers.Serializer):
    movement_type = serializers.ChoiceField(choices=[c[0] for c in StockMovement.TYPE_CHOICES])
    quantity = serializers.IntegerField()
    unit_cost = serializers.DecimalField(max_digits=12, decimal_places=4, min_value=Decimal('0'), required=False)
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)
    reference_number = serializers.CharField(required=False, allow_blank=True, max_length=100)
    supplier_name = serializers.CharField(required=False, allow_blank=True, max_length=255)
    batch_number = serializers.CharField(required=False, allow_blank=True, max_length=100)
    expiry_date = serializers.DateField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True)


class StockLevelSerializer(serializers.Serializer):
    stock_level = serializers.IntegerField(min_value=0)
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)


class HistoricalCostSerializer(serializers.Serializer):
    unit_cost = serializers.DecimalField(max_digits=12, decimal_places=4, min_value=Decimal('0'))


class StockMovementSerializer(serializers.ModelSerializer):
    medication_name = serializers.CharField(source='medication.name', read_only=True)
    created_by_name = serializers.SerializerMethodField()

    class Meta:
        model = StockMovement
        fields = [
            'id', 'medication_id', 'medication_name', 'movement_type', 'quantity', 'previous_stock', 'new_stock',
            'unit_cost', 'total_cost', 'cost_per_unit_before', 'cost_per_unit_after', 'reason',
            'reference_number', 'supplier_name', 'batch_number', 'expiry_date', 'notes', 'created_by_name',
            'created_at',
        ]

    def get_created_by_name(self, obj):
        if obj.created_by is None:
            return None
        return obj.created_by.get_full_name() or obj.created_by.username
