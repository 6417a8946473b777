import bleach
from rest_framework import serializers

from billing.models import Commission


def _clean(v):
    return bleach.clean((v or '').strip(), tags=[], strip=True)


class CommissionListQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(required=False, choices=[c for c, _ in Commission.STATUS_CHOICES])
    referralSourceId = serializers.IntegerField(required=False)


class CommissionApproveSerializer(serializers.Serializer):
    remarks = serializers.CharField(required=False, allow_blank=True, max_length=500, default='')

    def validate_remarks(self, v):
        return _clean(v)


class PayoutCreateSerializer(serializers.Serializer):
    referralSourceId = serializers.IntegerField()
    fromDate = serializers.DateTimeField()
    toDate = serializers.DateTimeField()
    paymentMode = serializers.CharField(max_length=32)
    paymentReference = serializers.CharField(required=False, allow_blank=True, max_length=100, default='')
    remarks = serializers.CharField(required=False, allow_blank=True, max_length=500, default='')

    def validate_paymentReference(self, v):
        return _clean(v)

    def validate_remarks(self, v):
        return _clean(v)


def commission_to_dict(c: Commission) -> dict:
    return {
        'id': str(c.id),
        'invoiceId': str(c.invoice_id),
        'patientId': c.patient_id,
        'referralSourceId': c.referral_source_id,
        'invoiceAmount': c.invoice_amount,
        'commissionType': c.commission_type,
        'commissionRate': c.commission_rate,
        'commissionAmount': c.commission_amount,
        'status': c.status,
        'approvedBy': c.approved_by_id,
        'approvedAt': c.approved_at.isoformat() if c.approved_at else None,
        'paidAt': c.paid_at.isoformat() if c.paid_at else None,
        'payoutId': c.payout_id,
        'remarks': c.remarks,
        'createdAt': c.created_at.isoformat() if c.created_at else None,
    }
