from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from billing.exceptions import NotFoundError, ValidationError
from billing.models import ReferralSource
from billing.permissions import IsAdminRole, IsCashierOrAbove
from billing.serializers.referral_sources import ReferralSourceSerializer, referral_source_to_dict
from billing.services.audit import log_action


def _apply(source: ReferralSource, vd: dict) -> ReferralSource:
    source.code = vd['code']
    source.name = vd['name']
    source.source_type = vd['sourceType']
    source.contact = vd['contact']
    source.email = vd['email']
    source.commission_type = vd['commissionType']
    source.commission_value = vd['commissionValue']
    source.commission_tiers = vd.get('commissionTiers')
    source.is_active = vd['isActive']
    return source


def _ensure_code_free(code: str, exclude_id=None) -> None:
    qs = ReferralSource.objects.filter(code=code)
    if exclude_id is not None:
        qs = qs.exclude(pk=exclude_id)
    if qs.exists():
        raise ValidationError(f'referral source code {code} already exists')


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsCashierOrAbove])
def referral_sources(request):
    if request.method == 'GET':
        qs = ReferralSource.objects.order_by('code')
        if request.query_params.get('active') in ('1', 'true'):
            qs = qs.filter(is_active=True)
        return Response([referral_source_to_dict(s) for s in qs])

    if not IsAdminRole().has_permission(request, None):
        raise PermissionDenied('only administrators can configure referral sources')
    s = ReferralSourceSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    _ensure_code_free(s.validated_data['code'])
    source = _apply(ReferralSource(), s.validated_data)
    source.save()
    log_action(user=request.user, action='referral_source_create', object_type='referral_source',
               object_id=source.id, detail={'code': source.code, 'commissionType': source.commission_type})
    return Response(referral_source_to_dict(source), status=status.HTTP_201_CREATED)


@api_view(['PUT'])
@permission_classes([IsAuthenticated, IsAdminRole])
def referral_source_detail(request, source_id):
    source = ReferralSource.objects.filter(pk=source_id).first()
    if not source:
        raise NotFoundError('referral source not found')
    s = ReferralSourceSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    _ensure_code_free(s.validated_data['code'], exclude_id=source.pk)
    _apply(source, s.validated_data).save()
    log_action(user=request.user, action='referral_source_update', object_type='referral_source',
               object_id=source.id, detail={'code': source.code, 'commissionType': source.commission_type})
    return Response(referral_source_to_dict(source))
