from rest_framework import serializers


class EnhanceNotesSerializer(serializers.Serializer):
    notes = serializers.CharField(
        max_length=20000, trim_whitespace=True,
        error_messages={'blank': 'Notes cannot be empty', 'required': 'Notes cannot be empty'},
    )
