"""
Online payment endpoints.

Checkout runs in the browser against Razorpay; these views open the
order, accept the client's verification callback and the gateway's
webhook, and issue refunds.  All state changes go through
:mod:`billing.services.reconciliation`.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, authentication_classes, permission_classes, throttle_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from billing.models import Payment
from billing.permissions import CanRefund, IsCashierOrAbove
from billing.serializers.payments import CreateOrderSerializer, RefundSerializer, VerifyPaymentSerializer
from billing.services import reconciliation
from billing.throttles import PaymentRateThrottle


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsCashierOrAbove])
def payment_config(request):
    return Response(reconciliation.payment_config())


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsCashierOrAbove])
@throttle_classes([PaymentRateThrottle])
def create_order(request):
    s = CreateOrderSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    order = reconciliation.create_order(vd['invoiceId'], vd['amount'], user=request.user)
    return Response(order)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsCashierOrAbove])
@throttle_classes([PaymentRateThrottle])
def verify_payment(request):
    s = VerifyPaymentSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    payment = reconciliation.verify_checkout(
        vd['paymentId'],
        vd['razorpay_order_id'],
        vd['razorpay_payment_id'],
        vd['razorpay_signature'],
        user=request.user,
    )
    captured = payment.gateway_status in (Payment.STATUS_CAPTURED, Payment.STATUS_REFUNDED)
    return Response({
        'success': captured,
        'message': 'Payment verified successfully' if captured else 'Payment was not captured',
        'payment': {
            'id': str(payment.id),
            'amount': payment.amount,
            'transactionRef': payment.transaction_ref or vd['razorpay_payment_id'],
            'status': payment.gateway_status,
        },
    })


@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
@throttle_classes([])
def payment_webhook(request):
    """Gateway callback.  Trust comes from the body signature only.

    ``request.body`` is read as raw bytes; parsing ``request.data`` first
    would re-serialize the payload and break the signature.
    """
    signature = request.headers.get('X-Razorpay-Signature') or request.headers.get('X-Signature') or ''
    return Response(reconciliation.handle_webhook(request.body, signature))


@api_view(['POST'])
@permission_classes([IsAuthenticated, CanRefund])
def refund_payment(request, payment_id):
    s = RefundSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    refund = reconciliation.initiate_refund(payment_id, vd.get('amount'), vd.get('reason') or '', user=request.user)
    return Response({'success': True, 'refund': refund})
