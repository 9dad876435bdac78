import bleach
from rest_framework import serializers

from clinic.models import Panel, Patient


def _clean(v):
    return bleach.clean((v or '').strip(), strip=True)


class PatientSerializer(serializers.ModelSerializer):
    full_name = serializers.CharField(read_only=True)
    panel_id = serializers.PrimaryKeyRelatedField(
        source='panel', queryset=Panel.objects.all(), required=False, allow_null=True
    )

    class Meta:
        model = Patient
        fields = [
            'id', 'patient_id', 'first_name', 'last_name', 'full_name', 'date_of_birth', 'gender',
            'phone', 'email', 'allergies', 'medical_history', 'visit_reason', 'panel_id',
            'created_at', 'updated_at',
        ]
        read_only_fields = ['patient_id', 'created_at', 'updated_at']

    def validate_first_name(self, v):
        v = _clean(v)
        if not v:
            raise serializers.ValidationError('first name is required')
        return v

    def validate_last_name(self, v):
        return _clean(v)

    def validate_phone(self, v):
        return _clean(v)

    def validate_allergies(self, v):
        return _clean(v)

    def validate_medical_history(self, v):
        return _clean(v)

    def validate_panel_id(self, panel):
        user = self.context['request'].user
        if panel is not None and getattr(user, 'role', '') != 'super_admin' and panel.tenant_id != user.tenant_id:
            raise serializers.ValidationError('panel not found')
        return panel


class PatientListQuerySerializer(serializers.Serializer):
    q = serializers.CharField(required=False, allow_blank=True)
    page = serializers.IntegerField(required=False, min_value=1)
    pageSize = serializers.IntegerField(required=False, min_value=1, max_value=200)
