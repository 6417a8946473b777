import bleach
from rest_framework import serializers

MONEY = dict(max_digits=12, decimal_places=2)


class CreateOrderSerializer(serializers.Serializer):
    invoiceId = serializers.UUIDField()
    amount = serializers.DecimalField(**MONEY)


class VerifyPaymentSerializer(serializers.Serializer):
    razorpay_order_id = serializers.CharField(max_length=64)
    razorpay_payment_id = serializers.CharField(max_length=64)
    razorpay_signature = serializers.CharField(max_length=128)
    paymentId = serializers.UUIDField()


class RefundSerializer(serializers.Serializer):
    amount = serializers.DecimalField(required=False, allow_null=True, **MONEY)
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)

    def validate_reason(self, v):
        return bleach.clean((v or '').strip(), tags=[], strip=True)
