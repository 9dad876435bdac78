from rest_framework import serializers

from clinic.models import Panel


class PanelSerializer(serializers.ModelSerializer):
    class Meta:
        model = Panel
        fields = [
            'id', 'panel_name', 'panel_code', 'person_in_charge_name', 'person_in_charge_phone',
            'default_status', 'verification_method', 'verification_url', 'manual_remarks',
            'created_at', 'updated_at',
        ]
        read_only_fields = ['created_at', 'updated_at']

    def validate_panel_code(self, v):
        return v.strip().upper()

    def validate(self, attrs):
        method = attrs.get('verification_method', getattr(self.instance, 'verification_method', 'manual'))
        url = attrs.get('verification_url', getattr(self.instance, 'verification_url', ''))
        if method == 'url' and not url:
            raise serializers.ValidationError({'verification_url': 'required when verifying by URL'})
        tenant_id = self.context.get('tenant_id')
        code = attrs.get('panel_code')
        if code and tenant_id:
            clash = Panel.objects.filter(tenant_id=tenant_id, panel_code=code)
            if self.instance is not None:
                clash = clash.exclude(pk=self.instance.pk)
            if clash.exists():
                raise serializers.ValidationError({'panel_code': 'panel code already in use'})
        return attrs
