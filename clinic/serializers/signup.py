from rest_framework import serializers

from clinic.services.tenants import check_subdomain


class SubdomainCheckSerializer(serializers.Serializer):
    subdomain = serializers.CharField(max_length=63, trim_whitespace=True)


class CheckoutSessionSerializer(serializers.Serializer):
    email = serializers.EmailField()
    clinicName = serializers.CharField(max_length=255)
    subdomain = serializers.CharField(max_length=63)

    def validate_subdomain(self, v):
        v = v.strip().lower()
        result = check_subdomain(v)
        if not result['available']:
            raise serializers.ValidationError(result.get('error') or 'Subdomain is already taken')
        return v

    def validate_clinicName(self, v):
        v = v.strip()
        if len(v) < 2:
            raise serializers.ValidationError('clinic name must be at least 2 characters')
        return v


class PortalSessionSerializer(serializers.Serializer):
    tenantId = serializers.IntegerField(required=False)


class SetupStatusSerializer(serializers.Serializer):
    session_id = serializers.CharField(max_length=255)
