from rest_framework import serializers

from clinic.models import (
    ClaimApprovalRequest,
    ClaimApprovalWorkflow,
    ClaimReconciliation,
    PanelClaim,
    PanelClaimItem,
)
from clinic.services import claim_status as cs


class ClaimListQuerySerializer(serializers.Serializer):
    panel_id = serializers.IntegerField(required=False)
    status = serializers.ChoiceField(choices=cs.CLAIM_STATUSES, required=False)


class ClaimCreateSerializer(serializers.Serializer):
    panel_id = serializers.IntegerField()
    billing_period_start = serializers.DateField()
    billing_period_end = serializers.DateField()
    billing_ids = serializers.ListField(child=serializers.IntegerField(), min_length=1, max_length=1000)

    def validate(self, attrs):
        if attrs['billing_period_end'] < attrs['billing_period_start']:
            raise serializers.ValidationError({'billing_period_end': 'billing period ends before it starts'})
        return attrs


class ClaimStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=cs.CLAIM_STATUSES)
    paid_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)
    rejection_reason = serializers.CharField(required=False, allow_blank=True)
    panel_reference_number = serializers.CharField(required=False, allow_blank=True, max_length=100)
    notes = serializers.CharField(required=False, allow_blank=True)


class ClaimItemSerializer(serializers.ModelSerializer):
    billing = serializers.SerializerMethodField()

    class Meta:
        model = PanelClaimItem
        fields = ['id', 'billing', 'item_amount', 'claim_amount', 'status', 'rejection_reason', 'created_at']

    def get_billing(self, obj):
        b = obj.billing
        return {'id': b.id, 'invoice_number': b.invoice_number, 'description': b.description,
                'patient_id': b.patient_id, 'amount': str(b.amount)}


class ClaimSerializer(serializers.ModelSerializer):
    panel = serializers.SerializerMethodField()
    status_label = serializers.SerializerMethodField()
    allowed_transitions = serializers.SerializerMethodField()

    class Meta:
        model = PanelClaim
        fields = [
            'id', 'claim_number', 'panel', 'billing_period_start', 'billing_period_end', 'total_amount',
            'total_items', 'status', 'status_label', 'allowed_transitions', 'submitted_at', 'approved_at',
            'paid_at', 'paid_amount', 'rejection_reason', 'panel_reference_number', 'notes', 'metadata',
            'created_at', 'updated_at',
        ]

    def get_panel(self, obj):
        return {'id': obj.panel_id, 'panel_name': obj.panel.panel_name, 'panel_code': obj.panel.panel_code}

    def get_status_label(self, obj):
        return cs.STATUS_LABELS.get(obj.status, obj.status)

    def get_allowed_transitions(self, obj):
        return list(cs.ALLOWED_TRANSITIONS.get(obj.status, ()))


class ClaimDetailSerializer(ClaimSerializer):
    items = ClaimItemSerializer(many=True, read_only=True)

    class Meta(ClaimSerializer.Meta):
        fields = ClaimSerializer.Meta.fields + ['items']


class ReconciliationCreateSerializer(serializers.Serializer):
    received_amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    payment_reference = serializers.CharField(required=False, allow_blank=True, max_length=100)
    payment_date = serializers.DateField(required=False, allow_null=True)
    payment_method = serializers.CharField(required=False, allow_blank=True, max_length=50)
    notes = serializers.CharField(required=False, allow_blank=True)


class ReconciliationListQuerySerializer(serializers.Serializer):
    panel_id = serializers.IntegerField(required=False)
    status = serializers.ChoiceField(choices=[c[0] for c in ClaimReconciliation.STATUS_CHOICES], required=False)
    variance_type = serializers.ChoiceField(choices=[c[0] for c in ClaimReconciliation.VARIANCE_CHOICES],
                                            required=False)
    date_from = serializers.DateField(required=False)
    date_to = serializers.DateField(required=False)


class ReconciliationStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=['resolved', 'disputed'])
    notes = serializers.CharField(required=False, allow_blank=True)


class ReconciliationSerializer(serializers.ModelSerializer):
    claim_number = serializers.CharField(source='claim.claim_number', read_only=True)

    class Meta:
        model = ClaimReconciliation
        fields = [
            'id', 'claim', 'claim_number', 'reconciliation_date', 'claim_amount', 'received_amount',
            'variance_amount', 'variance_percentage', 'variance_type', 'reconciliation_status',
            'payment_reference', 'payment_date', 'payment_method', 'notes', 'reconciled_by', 'reconciled_at',
            'created_at',
        ]


class ApprovalWorkflowSerializer(serializers.ModelSerializer):
    panel_id = serializers.IntegerField(required=False, allow_null=True)

    class Meta:
        model = ClaimApprovalWorkflow
        fields = [
            'id', 'workflow_name', 'panel_id', 'variance_threshold_amount', 'variance_threshold_percentage',
            'required_approver_role', 'auto_escalate_days', 'escalation_role', 'is_active', 'created_at',
        ]
        read_only_fields = ['id', 'created_at']


class ApprovalListQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[c[0] for c in ClaimApprovalRequest.STATUS_CHOICES], required=False)


class ApprovalDecisionSerializer(serializers.Serializer):
    decision = serializers.ChoiceField(choices=['approved', 'rejected'])
    notes = serializers.CharField(required=False, allow_blank=True)


class ApprovalRequestSerializer(serializers.ModelSerializer):
    claim_number = serializers.CharField(source='claim.claim_number', read_only=True)
    workflow_name = serializers.CharField(source='workflow.workflow_name', read_only=True, default=None)

    class Meta:
        model = ClaimApprovalRequest
        fields = [
            'id', 'claim', 'claim_number', 'reconciliation', 'workflow', 'workflow_name', 'required_role',
            'status', 'requested_by', 'expires_at', 'escalated_at', 'decided_by', 'decided_at', 'decision_notes',
            'created_at',
        ]
