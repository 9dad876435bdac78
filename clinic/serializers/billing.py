from decimal import Decimal

from rest_framework import serializers

from clinic.models import BillingRecord, PaymentRecord
from clinic.services.billing import PAYER_FILTERS, STATUS_FILTERS

BILLING_STATUSES = [c[0] for c in BillingRecord.STATUS_CHOICES]


class BillingListQuerySerializer(serializers.Serializer):
    payer = serializers.ChoiceField(choices=PAYER_FILTERS, required=False, default='all')
    status = serializers.ChoiceField(choices=STATUS_FILTERS, required=False, default='all')
    panel_id = serializers.IntegerField(required=False)


class BillingStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=BILLING_STATUSES)
    reason = serializers.CharField(required=False, allow_blank=True)
    paid_amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    claim_status = serializers.CharField(required=False, allow_blank=True, max_length=20)

    def updates(self) -> dict:
        vd = self.validated_data
        return {
            'reason': vd.get('reason') or None,
            'paid_amount': vd.get('paid_amount'),
            'claim_status': vd.get('claim_status') or None,
        }


class BatchBillingStatusSerializer(BillingStatusSerializer):
    billing_ids = serializers.ListField(child=serializers.IntegerField(), min_length=1, max_length=500)


class PaymentCreateSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))
    payment_method = serializers.CharField(max_length=50)
    reference_number = serializers.CharField(required=False, allow_blank=True, max_length=100)
    notes = serializers.CharField(required=False, allow_blank=True)
    payment_date = serializers.DateTimeField(required=False)


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = PaymentRecord
        fields = ['id', 'amount', 'payment_method', 'reference_number', 'payment_date', 'notes', 'status', 'created_at']


class BillingRecordSerializer(serializers.ModelSerializer):
    patient = serializers.SerializerMethodField()
    panel = serializers.SerializerMethodField()

    class Meta:
        model = BillingRecord
        fields = [
            'id', 'invoice_number', 'patient', 'panel', 'description', 'amount', 'due_date', 'paid_date',
            'status', 'payment_method', 'claim_status', 'claim_number', 'claim_notes', 'created_at', 'updated_at',
        ]

    def get_patient(self, obj):
        p = obj.patient
        return {'id': p.id, 'first_name': p.first_name, 'last_name': p.last_name, 'email': p.email, 'phone': p.phone}

    def get_panel(self, obj):
        if obj.panel is None:
            return None
        return {'id': obj.panel.id, 'panel_name': obj.panel.panel_name, 'panel_code': obj.panel.panel_code}
