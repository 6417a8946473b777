from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from billing.exceptions import NotFoundError
from billing.models import Invoice, Patient
from billing.permissions import IsCashierOrAbove
from billing.serializers.invoices import (
    InvoiceCreateSerializer,
    InvoiceListQuerySerializer,
    OfflinePaymentSerializer,
    invoice_to_dict,
    payment_to_dict,
)
from billing.services import ledger
from billing.services.audit import log_action
from billing.services.reconciliation import record_offline_payment
from billing.throttles import PaymentRateThrottle


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsCashierOrAbove])
def invoices(request):
    if request.method == 'POST':
        return _create_invoice(request)

    q = InvoiceListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    vd = q.validated_data
    qs = Invoice.objects.all()
    if vd.get('patientId'):
        qs = qs.filter(patient_id=vd['patientId'])
    if vd.get('status'):
        qs = qs.filter(status=vd['status'])
    page = vd.get('page') or 1
    page_size = vd.get('pageSize') or 50
    start = (page - 1) * page_size
    total = qs.count()
    rows = [invoice_to_dict(inv) for inv in qs[start:start + page_size]]
    return Response({'items': rows, 'total': total, 'page': page, 'pageSize': page_size})


def _create_invoice(request):
    s = InvoiceCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    patient = Patient.objects.filter(pk=vd['patientId']).first()
    if not patient:
        raise NotFoundError('patient not found')
    invoice = ledger.create_invoice(
        [dict(item) for item in vd['items']],
        patient=patient,
        discount=vd['discount'],
        tax=vd['tax'],
        status=vd['status'],
        invoice_type=vd['invoiceType'],
        encounter_ref=vd['encounterRef'],
        tenant_ref=patient.tenant_ref,
    )
    log_action(user=request.user, action='invoice_create', object_type='invoice', object_id=invoice.id,
               detail={'total': str(invoice.total), 'patientId': patient.id})
    return Response(invoice_to_dict(invoice, with_payments=True), status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsCashierOrAbove])
def invoice_detail(request, invoice_id):
    invoice = Invoice.objects.prefetch_related('payments').filter(pk=invoice_id).first()
    if not invoice:
        raise NotFoundError('Invoice not found')
    return Response(invoice_to_dict(invoice, with_payments=True))


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsCashierOrAbove])
@throttle_classes([PaymentRateThrottle])
def invoice_payment(request, invoice_id):
    """Record a cash-desk payment; it is captured immediately."""
    s = OfflinePaymentSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    payment = record_offline_payment(invoice_id, vd['amount'], vd['mode'], vd['transactionRef'], user=request.user)
    return Response(payment_to_dict(payment), status=status.HTTP_201_CREATED)
