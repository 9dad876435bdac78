import bleach
from rest_framework import serializers

from clinic.models import Appointment, AppointmentWaitlist


def _clean(v):
    return bleach.clean((v or '').strip(), strip=True)


class AppointmentSerializer(serializers.ModelSerializer):
    patient = serializers.SerializerMethodField()
    doctor = serializers.SerializerMethodField()

    class Meta:
        model = Appointment
        fields = [
            'id', 'patient', 'doctor', 'start_at', 'end_at', 'duration_minutes', 'status', 'reason', 'notes',
            'cancellation_reason', 'recurrence_id', 'reminder_sent_at', 'reminder_method', 'created_at',
            'updated_at',
        ]

    def get_patient(self, obj):
        p = obj.patient
        return {'id': p.id, 'patient_id': p.patient_id, 'full_name': p.full_name, 'phone': p.phone}

    def get_doctor(self, obj):
        d = obj.doctor
        return {'id': d.id, 'name': d.get_full_name() or d.username}


class AppointmentCreateSerializer(serializers.Serializer):
    patient_id = serializers.IntegerField()
    doctor_id = serializers.IntegerField()
    start_at = serializers.DateTimeField()
    duration_minutes = serializers.IntegerField(min_value=5, max_value=480, default=15)
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)
    notes = serializers.CharField(required=False, allow_blank=True)

    def validate_reason(self, v):
        return _clean(v)

    def validate_notes(self, v):
        return _clean(v)


class AppointmentUpdateSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)
    notes = serializers.CharField(required=False, allow_blank=True)

    def validate_reason(self, v):
        return _clean(v)

    def validate_notes(self, v):
        return _clean(v)


class AppointmentListQuerySerializer(serializers.Serializer):
    date_from = serializers.DateField(required=False)
    date_to = serializers.DateField(required=False)
    doctor_id = serializers.IntegerField(required=False)
    patient_id = serializers.IntegerField(required=False)
    status = serializers.ChoiceField(choices=[c[0] for c in Appointment.STATUS_CHOICES], required=False)

    def validate(self, attrs):
        if attrs.get('date_from') and attrs.get('date_to') and attrs['date_to'] < attrs['date_from']:
            raise serializers.ValidationError({'date_to': 'date range ends before it starts'})
        return attrs


class RescheduleSerializer(serializers.Serializer):
    start_at = serializers.DateTimeField(required=False)
    duration_minutes = serializers.IntegerField(required=False, min_value=5, max_value=480)
    doctor_id = serializers.IntegerField(required=False)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError('nothing to change')
        return attrs


class CancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)


class AppointmentStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[
        Appointment.STATUS_CONFIRMED,
        Appointment.STATUS_IN_CONSULTATION,
        Appointment.STATUS_COMPLETED,
        Appointment.STATUS_NO_SHOW,
    ])


class RecurrenceSerializer(serializers.Serializer):
    frequency = serializers.ChoiceField(choices=['daily', 'weekly', 'monthly'])
    interval = serializers.IntegerField(min_value=1, max_value=12, default=1)
    end_date = serializers.DateField(required=False)
    max_occurrences = serializers.IntegerField(required=False, min_value=2, max_value=52)

    def validate(self, attrs):
        if not attrs.get('end_date') and not attrs.get('max_occurrences'):
            raise serializers.ValidationError({'end_date': 'either end_date or max_occurrences is required'})
        return attrs


class ReminderSerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=['email', 'sms'], required=False)


class WaitlistSerializer(serializers.ModelSerializer):
    patient_id = serializers.IntegerField()
    doctor_id = serializers.IntegerField(required=False, allow_null=True)
    patient_name = serializers.CharField(source='patient.full_name', read_only=True)

    class Meta:
        model = AppointmentWaitlist
        fields = [
            'id', 'patient_id', 'patient_name', 'doctor_id', 'preferred_date_start', 'preferred_date_end',
            'preferred_time_start', 'preferred_time_end', 'duration_minutes', 'priority', 'contact_preference',
            'notes', 'status', 'appointment', 'created_at',
        ]
        read_only_fields = ['id', 'status', 'appointment', 'created_at']

    def validate_notes(self, v):
        return _clean(v)

    def validate(self, attrs):
        start, end = attrs.get('preferred_date_start'), attrs.get('preferred_date_end')
        if start and end and end < start:
            raise serializers.ValidationError({'preferred_date_end': 'preferred dates end before they start'})
        start, end = attrs.get('preferred_time_start'), attrs.get('preferred_time_end')
        if start and end and end < start:
            raise serializers.ValidationError({'preferred_time_end': 'preferred times end before they start'})
        return attrs


class WaitlistListQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[c[0] for c in AppointmentWaitlist.STATUS_CHOICES], default='active')
    doctor_id = serializers.IntegerField(required=False)


class WaitlistStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=['fulfilled', 'cancelled'])
    appointment_id = serializers.IntegerField(required=False)
