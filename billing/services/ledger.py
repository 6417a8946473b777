"""
Invoice ledger: the only code that writes ``Invoice.paid``, ``balance``
and ``status``.

Every mutation runs in one ``transaction.atomic()`` block holding a row
lock on the invoice.  When a payment row is also locked, the invoice is
always locked first.
"""
import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Tuple

from django.db import transaction
from django.db.models import Q, Sum
from django.utils import timezone

from billing.exceptions import InvalidStateError, NotFoundError, ValidationError
from billing.models import Invoice, Payment, ZERO

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
SETTLED_STATUSES = (Payment.STATUS_CAPTURED, Payment.STATUS_REFUNDED)


def to_money(value, field: str = 'amount') -> Decimal:
    try:
        d = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f'{field} must be a number')
    if not d.is_finite():
        raise ValidationError(f'{field} must be a number')
    return d.quantize(CENT, rounding=ROUND_HALF_UP)


def create_invoice(items, *, patient, discount=0, tax=0, status: str = Invoice.STATUS_DRAFT,
                   invoice_type: str = 'OP', encounter_ref: str = '', tenant_ref: str = '') -> Invoice:
    if not isinstance(items, list) or not items:
        raise ValidationError('invoice needs at least one item')
    if status not in (Invoice.STATUS_DRAFT, Invoice.STATUS_FINAL):
        raise ValidationError('new invoices are draft or final')

    clean_items = []
    subtotal = ZERO
    for idx, item in enumerate(items):
        if not isinstance(item, dict) or 'amount' not in item:
            raise ValidationError(f'item {idx} has no amount')
        amount = to_money(item['amount'], f'item {idx} amount')
        if amount < 0:
            raise ValidationError(f'item {idx} amount must not be negative')
        subtotal += amount
        clean_items.append({**item, 'amount': str(amount)})

    discount = to_money(discount, 'discount')
    tax = to_money(tax, 'tax')
    if discount < 0 or tax < 0:
        raise ValidationError('discount and tax must not be negative')
    total = subtotal - discount + tax
    if total < 0:
        raise ValidationError('discount exceeds invoice subtotal')

    invoice = Invoice.objects.create(
        tenant_ref=tenant_ref,
        patient=patient,
        encounter_ref=encounter_ref,
        invoice_type=invoice_type,
        items=clean_items,
        subtotal=subtotal,
        discount=discount,
        tax=tax,
        total=total,
        paid=ZERO,
        balance=total,
        status=status,
    )
    logger.info('Invoice %s created for patient %s total=%s', invoice.number, patient.pk, total)
    return invoice


def expected_totals(invoice: Invoice) -> Tuple[Decimal, Decimal]:
    """Return ``(paid, balance)`` derived from the invoice's payment set."""
    agg = Payment.objects.filter(invoice_id=invoice.pk).aggregate(
        settled=Sum('amount', filter=Q(gateway_status__in=SETTLED_STATUSES)),
        refunded=Sum('refund_amount', filter=Q(gateway_status=Payment.STATUS_REFUNDED)),
    )
    paid = (agg['settled'] or ZERO) - (agg['refunded'] or ZERO)
    return paid, invoice.total - paid


def _next_status(invoice: Invoice, paid: Decimal, balance: Decimal) -> str:
    if balance <= 0:
        return Invoice.STATUS_PAID
    if paid > 0:
        return Invoice.STATUS_PARTIAL
    if invoice.status in (Invoice.STATUS_PAID, Invoice.STATUS_PARTIAL):
        # fully refunded: money moved once, so never back to draft
        return Invoice.STATUS_PARTIAL
    return invoice.status


def _apply_totals(invoice: Invoice) -> Invoice:
    paid, balance = expected_totals(invoice)
    invoice.paid = paid
    invoice.balance = balance
    invoice.status = _next_status(invoice, paid, balance)
    invoice.save(update_fields=['paid', 'balance', 'status', 'updated_at'])
    return invoice


def _lock_invoice(invoice_id) -> Invoice:
    invoice = Invoice.objects.select_for_update().filter(pk=invoice_id).first()
    if not invoice:
        raise NotFoundError('invoice not found')
    return invoice


def recompute_balance(invoice_id) -> Invoice:
    with transaction.atomic():
        return _apply_totals(_lock_invoice(invoice_id))


def apply_payment(invoice_id, amount, mode: str, *, payment: Optional[Payment] = None,
                  transaction_ref: str = '', received_by=None) -> Payment:
    """Post a captured payment to the invoice and refresh its totals.

    Without ``payment`` a new captured row is written (offline path).  The
    reconciliation service passes the payment it has just moved to
    ``captured`` so the posting happens once per payment lifetime.
    """
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError('amount must be greater than zero')

    with transaction.atomic():
        invoice = _lock_invoice(invoice_id)
        if payment is None:
            payment = Payment.objects.create(
                invoice=invoice,
                amount=amount,
                mode=mode,
                gateway_status=Payment.STATUS_CAPTURED,
                transaction_ref=transaction_ref or '',
                paid_at=timezone.now(),
                received_by=received_by,
            )
        elif payment.invoice_id != invoice.pk or payment.gateway_status != Payment.STATUS_CAPTURED:
            raise InvalidStateError('payment is not captured against this invoice')
        _apply_totals(invoice)

    logger.info('Payment %s of %s (%s) applied to invoice %s: paid=%s balance=%s status=%s',
                payment.pk, amount, mode, invoice.number, invoice.paid, invoice.balance, invoice.status)
    return payment


def apply_refund(payment_id, amount, *, refund_id: str = '', response=None) -> Payment:
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError('refund amount must be greater than zero')

    invoice_id = Payment.objects.filter(pk=payment_id).values_list('invoice_id', flat=True).first()
    if invoice_id is None:
        raise NotFoundError('payment not found')

    with transaction.atomic():
        invoice = _lock_invoice(invoice_id)
        payment = Payment.objects.select_for_update().get(pk=payment_id)
        if payment.gateway_status != Payment.STATUS_CAPTURED:
            raise InvalidStateError(f'payment is {payment.gateway_status}, only captured payments can be refunded')
        if amount > payment.net_amount:
            raise InvalidStateError(f'refund {amount} exceeds refundable amount {payment.net_amount}')

        gateway_response = dict(payment.gateway_response or {})
        if response is not None:
            gateway_response['refund'] = response
        payment.gateway_status = Payment.STATUS_REFUNDED
        payment.refund_amount = amount
        payment.refund_id = refund_id or ''
        payment.refunded_at = timezone.now()
        payment.gateway_response = gateway_response
        payment.save(update_fields=['gateway_status', 'refund_amount', 'refund_id', 'refunded_at', 'gateway_response'])
        _apply_totals(invoice)

    logger.info('Refund %s of %s on payment %s: invoice %s paid=%s balance=%s status=%s',
                refund_id, amount, payment.pk, invoice.number, invoice.paid, invoice.balance, invoice.status)
    return payment
