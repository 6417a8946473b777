import bleach
from rest_framework import serializers

from billing.exceptions import ValidationError as BillingValidationError
from billing.models import ReferralSource
from billing.services.commission import validate_commission_tiers

MONEY = dict(max_digits=12, decimal_places=2)


def _clean(v):
    return bleach.clean((v or '').strip(), tags=[], strip=True)


class ReferralSourceSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=32)
    name = serializers.CharField(max_length=255)
    sourceType = serializers.CharField(required=False, max_length=32, default='doctor')
    contact = serializers.CharField(required=False, allow_blank=True, max_length=32, default='')
    email = serializers.EmailField(required=False, allow_blank=True, default='')
    commissionType = serializers.ChoiceField(choices=[c for c, _ in ReferralSource.COMMISSION_TYPE_CHOICES])
    commissionValue = serializers.DecimalField(required=False, default=0, min_value=0, **MONEY)
    commissionTiers = serializers.ListField(child=serializers.DictField(), required=False, allow_null=True)
    isActive = serializers.BooleanField(required=False, default=True)

    def validate_code(self, v):
        v = _clean(v).upper()
        if not v:
            raise serializers.ValidationError('code is required')
        return v

    def validate_name(self, v):
        return _clean(v)

    def validate_contact(self, v):
        return _clean(v)

    def validate(self, attrs):
        ctype = attrs.get('commissionType')
        if ctype == ReferralSource.COMMISSION_TIERED:
            try:
                attrs['commissionTiers'] = validate_commission_tiers(attrs.get('commissionTiers'))
            except BillingValidationError as exc:
                raise serializers.ValidationError({'commissionTiers': str(exc.detail)})
        else:
            attrs['commissionTiers'] = None
            if ctype == ReferralSource.COMMISSION_PERCENTAGE and attrs.get('commissionValue', 0) > 100:
                raise serializers.ValidationError({'commissionValue': 'percentage cannot exceed 100'})
        return attrs


def referral_source_to_dict(s: ReferralSource) -> dict:
    return {
        'id': s.id,
        'code': s.code,
        'name': s.name,
        'sourceType': s.source_type,
        'contact': s.contact,
        'email': s.email,
        'commissionType': s.commission_type,
        'commissionValue': s.commission_value,
        'commissionTiers': s.commission_tiers,
        'isActive': s.is_active,
    }
