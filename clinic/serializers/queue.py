from rest_framework import serializers

from clinic.models import QueueEntry, QueueEntryTransition


class QueueAddSerializer(serializers.Serializer):
    patient_id = serializers.IntegerField()
    doctor_id = serializers.IntegerField(required=False, allow_null=True)
    duration = serializers.IntegerField(required=False, min_value=5, max_value=240)


class QueueStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[c[0] for c in QueueEntry.STATUS_CHOICES])
    doctor_id = serializers.IntegerField(required=False, allow_null=True)
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)


class PrescribedItemSerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=['medication', 'service'])
    name = serializers.CharField(min_length=1, error_messages={'blank': 'Item name is required'})
    quantity = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=1, coerce_to_string=False)
    dosage = serializers.CharField(required=False, allow_blank=True)
    frequency = serializers.CharField(required=False, allow_blank=True)
    duration = serializers.CharField(required=False, allow_blank=True)
    price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, coerce_to_string=False)
    instructions = serializers.CharField(required=False, allow_blank=True)
    rate = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, coerce_to_string=False)


class QueueSessionDataSerializer(serializers.Serializer):
    """Shape of the consultation data saved against a queue session."""
    consultation_notes = serializers.CharField(required=False, allow_blank=True)
    diagnosis = serializers.CharField(required=False, allow_blank=True)
    prescribed_items = PrescribedItemSerializer(many=True, required=False)
    completed_at = serializers.CharField(required=False)
    doctor_id = serializers.IntegerField(required=False)
    last_updated = serializers.CharField(required=False)
    queue_number = serializers.CharField(required=False)
    assigned_doctor_id = serializers.IntegerField(required=False, allow_null=True)
    registration_timestamp = serializers.CharField(required=False)

    def to_internal_value(self, data):
        value = super().to_internal_value(data)
        if 'prescribed_items' in value:
            # JSONField storage
            value['prescribed_items'] = [
                {k: (float(v) if k in ('quantity', 'price', 'rate') else v) for k, v in item.items()}
                for item in value['prescribed_items']
            ]
        return value


class QueueTransitionSerializer(serializers.ModelSerializer):
    operator = serializers.SerializerMethodField()

    class Meta:
        model = QueueEntryTransition
        fields = ['from_status', 'to_status', 'operator', 'timestamp', 'reason']

    def get_operator(self, obj):
        return obj.operator.username if obj.operator else ''


class QueueEntrySerializer(serializers.ModelSerializer):
    patient = serializers.SerializerMethodField()
    doctor = serializers.SerializerMethodField()

    class Meta:
        model = QueueEntry
        fields = [
            'id', 'queue_number', 'queue_date', 'status', 'patient', 'doctor',
            'estimated_consultation_duration', 'checked_in_at', 'consultation_started_at',
            'consultation_completed_at', 'payment_method', 'updated_at',
        ]

    def get_patient(self, obj):
        p = obj.patient
        return {'id': p.id, 'patient_id': p.patient_id, 'first_name': p.first_name, 'last_name': p.last_name,
                'allergies': p.allergies or None}

    def get_doctor(self, obj):
        d = obj.assigned_doctor
        if d is None:
            return None
        return {'id': d.id, 'first_name': d.first_name, 'last_name': d.last_name}
