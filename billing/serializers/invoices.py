"""
Request validation for invoice endpoints and the JSON shape of invoices
and payments returned by the API.
"""
import bleach
from rest_framework import serializers

from billing.models import Invoice, Payment

MONEY = dict(max_digits=12, decimal_places=2)
OFFLINE_MODE_CHOICES = [m for m, _ in Payment.MODE_CHOICES if m != Payment.MODE_RAZORPAY]


class InvoiceItemSerializer(serializers.Serializer):
    description = serializers.CharField(max_length=255)
    code = serializers.CharField(required=False, allow_blank=True, max_length=32)
    quantity = serializers.IntegerField(required=False, min_value=1, default=1)
    amount = serializers.DecimalField(**MONEY)

    def validate_description(self, v):
        return bleach.clean(v.strip(), tags=[], strip=True)


class InvoiceCreateSerializer(serializers.Serializer):
    patientId = serializers.IntegerField()
    encounterRef = serializers.CharField(required=False, allow_blank=True, max_length=64, default='')
    invoiceType = serializers.ChoiceField(choices=['OP', 'IP'], default='OP')
    items = InvoiceItemSerializer(many=True, allow_empty=False)
    discount = serializers.DecimalField(required=False, default=0, **MONEY)
    tax = serializers.DecimalField(required=False, default=0, **MONEY)
    status = serializers.ChoiceField(choices=[Invoice.STATUS_DRAFT, Invoice.STATUS_FINAL], default=Invoice.STATUS_DRAFT)


class InvoiceListQuerySerializer(serializers.Serializer):
    patientId = serializers.IntegerField(required=False)
    status = serializers.ChoiceField(required=False, choices=[c for c, _ in Invoice.STATUS_CHOICES])
    page = serializers.IntegerField(required=False, min_value=1)
    pageSize = serializers.IntegerField(required=False, min_value=1, max_value=200)


class OfflinePaymentSerializer(serializers.Serializer):
    amount = serializers.DecimalField(**MONEY)
    mode = serializers.ChoiceField(choices=OFFLINE_MODE_CHOICES)
    transactionRef = serializers.CharField(required=False, allow_blank=True, max_length=100, default='')

    def validate_transactionRef(self, v):
        return bleach.clean((v or '').strip(), tags=[], strip=True)


def payment_to_dict(p: Payment) -> dict:
    return {
        'id': str(p.id),
        'invoiceId': str(p.invoice_id),
        'amount': p.amount,
        'mode': p.mode,
        'status': p.gateway_status,
        'transactionRef': p.transaction_ref or p.gateway_payment_id,
        'gatewayOrderId': p.gateway_order_id or None,
        'gatewayPaymentId': p.gateway_payment_id or None,
        'refundId': p.refund_id or None,
        'refundAmount': p.refund_amount,
        'paidAt': p.paid_at.isoformat() if p.paid_at else None,
        'refundedAt': p.refunded_at.isoformat() if p.refunded_at else None,
        'createdAt': p.created_at.isoformat() if p.created_at else None,
    }


def invoice_to_dict(inv: Invoice, *, with_payments: bool = False) -> dict:
    data = {
        'id': str(inv.id),
        'number': inv.number,
        'patientId': inv.patient_id,
        'encounterRef': inv.encounter_ref,
        'invoiceType': inv.invoice_type,
        'items': inv.items,
        'subtotal': inv.subtotal,
        'discount': inv.discount,
        'tax': inv.tax,
        'total': inv.total,
        'paid': inv.paid,
        'balance': inv.balance,
        'status': inv.status,
        'createdAt': inv.created_at.isoformat() if inv.created_at else None,
    }
    if with_payments:
        data['payments'] = [payment_to_dict(p) for p in inv.payments.all()]
    return data
