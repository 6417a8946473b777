from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from billing.models import Commission, CommissionPayout
from billing.permissions import CanRefund
from billing.serializers.commissions import (
    CommissionApproveSerializer,
    CommissionListQuerySerializer,
    PayoutCreateSerializer,
    commission_to_dict,
)
from billing.services import commission as commission_service
from billing.services.audit import log_action


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanRefund])
def commissions(request):
    q = CommissionListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    vd = q.validated_data
    qs = Commission.objects.all()
    if vd.get('status'):
        qs = qs.filter(status=vd['status'])
    if vd.get('referralSourceId'):
        qs = qs.filter(referral_source_id=vd['referralSourceId'])
    return Response([commission_to_dict(c) for c in qs[:500]])


@api_view(['POST'])
@permission_classes([IsAuthenticated, CanRefund])
def approve_commission(request, commission_id):
    s = CommissionApproveSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    c = commission_service.approve_commission(commission_id, request.user, s.validated_data['remarks'])
    log_action(user=request.user, action='commission_approve', object_type='commission', object_id=c.id,
               detail={'amount': str(c.commission_amount)})
    return Response(commission_to_dict(c))


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanRefund])
def commission_summary(request):
    source_id = request.query_params.get('referralSourceId')
    return Response(commission_service.commission_summary(int(source_id) if source_id and source_id.isdigit() else None))


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, CanRefund])
def commission_payouts(request):
    if request.method == 'GET':
        qs = CommissionPayout.objects.select_related('referral_source')[:200]
        return Response([
            {
                'id': p.id,
                'payoutNumber': p.payout_number,
                'referralSourceId': p.referral_source_id,
                'referralSourceName': p.referral_source.name,
                'fromDate': p.from_date.isoformat(),
                'toDate': p.to_date.isoformat(),
                'totalAmount': p.total_amount,
                'paymentMode': p.payment_mode,
                'paymentReference': p.payment_reference,
                'status': p.status,
            }
            for p in qs
        ])

    s = PayoutCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    payout = commission_service.create_payout(
        referral_source_id=vd['referralSourceId'],
        from_date=vd['fromDate'],
        to_date=vd['toDate'],
        payment_mode=vd['paymentMode'],
        payment_reference=vd['paymentReference'],
        remarks=vd['remarks'],
        user=request.user,
    )
    log_action(user=request.user, action='commission_payout', object_type='commission_payout', object_id=payout.id,
               detail={'payoutNumber': payout.payout_number, 'total': str(payout.total_amount)})
    return Response({
        'id': payout.id,
        'payoutNumber': payout.payout_number,
        'totalAmount': payout.total_amount,
        'commissionCount': payout.commissions.count(),
    }, status=status.HTTP_201_CREATED)
