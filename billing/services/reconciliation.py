"""
Payment reconciliation.

Two entry points confirm an online payment: the client's checkout
callback (:func:`verify_checkout`) and the gateway's webhook
(:func:`handle_webhook`).  They arrive in any order, possibly more than
once, and both end in the same transitions::

    initiated -> captured -> refunded
    initiated -> failed

Anything else is a no-op that returns the payment as it stands.  The
status guard is a conditional UPDATE evaluated under the invoice row
lock, so the ledger posting for a payment happens at most once.
"""
import json
import logging
from typing import Optional

import bleach
from django.db import transaction
from django.utils import timezone

from billing.exceptions import (
    GatewayError, InvalidStateError, NotFoundError, SignatureError, ValidationError,
)
from billing.models import Invoice, Payment
from billing.services import ledger
from billing.services.audit import log_action, log_security_event
from billing.services.broadcast import broadcast_invoice_update
from billing.services.commission import trigger_commission
from billing.services.gateway import RazorpayGateway, get_gateway, to_major_units, to_minor_units

logger = logging.getLogger(__name__)

OFFLINE_MODES = {m for m, _ in Payment.MODE_CHOICES} - {Payment.MODE_RAZORPAY}


def _actor(user):
    return user if getattr(user, 'is_authenticated', False) else None


def _require_enabled(gateway: RazorpayGateway) -> None:
    if not gateway.enabled:
        raise ValidationError('Online payment is not configured')


def payment_config(gateway: Optional[RazorpayGateway] = None) -> dict:
    gateway = gateway or get_gateway()
    return {
        'enabled': gateway.enabled,
        'publicKey': gateway.public_key if gateway.enabled else None,
        'currency': gateway.currency,
    }


def create_order(invoice_id, amount, *, user=None, gateway: Optional[RazorpayGateway] = None) -> dict:
    gateway = gateway or get_gateway()
    _require_enabled(gateway)

    invoice = Invoice.objects.select_related('patient').filter(pk=invoice_id).first()
    if not invoice:
        raise NotFoundError('Invoice not found')
    amount = ledger.to_money(amount)
    if amount <= 0 or amount > invoice.balance:
        raise ValidationError(f'Invalid amount. Balance due: {invoice.balance}')

    patient = invoice.patient
    try:
        order = gateway.create_order(
            to_minor_units(amount),
            receipt=f"INV-{str(invoice.pk)[:8]}",
            notes={'invoiceId': str(invoice.pk), 'patientId': str(patient.pk), 'patientName': patient.name},
        )
    except GatewayError as exc:
        logger.warning('Order creation failed for invoice %s: %s', invoice.pk, exc.detail)
        raise GatewayError('Order creation failed; no charge was made') from exc

    payment = Payment.objects.create(
        invoice=invoice,
        amount=amount,
        mode=Payment.MODE_RAZORPAY,
        gateway_order_id=order['id'],
        gateway_status=Payment.STATUS_INITIATED,
        gateway_response={'order': order},
        received_by=_actor(user),
    )
    return {
        'orderId': order['id'],
        'amount': order.get('amount', to_minor_units(amount)),
        'currency': order.get('currency', gateway.currency),
        'paymentId': str(payment.pk),
        'key': gateway.public_key,
        'prefill': {
            'name': patient.name,
            'email': patient.email or '',
            'contact': patient.contact or '',
        },
    }


def capture_payment(payment: Payment, *, gateway_payment_id: str = '', signature: str = '',
                    response=None) -> Payment:
    """Move ``payment`` from initiated to captured and post it to the invoice.

    Safe to call any number of times: once the payment has left
    ``initiated`` the call returns the stored row untouched.
    """
    with transaction.atomic():
        invoice = Invoice.objects.select_for_update().get(pk=payment.invoice_id)
        changes = {
            'gateway_status': Payment.STATUS_CAPTURED,
            'gateway_response': response,
            'paid_at': timezone.now(),
        }
        if gateway_payment_id:
            changes['gateway_payment_id'] = gateway_payment_id
            changes['transaction_ref'] = gateway_payment_id
        if signature:
            changes['gateway_signature'] = signature
        updated = Payment.objects.filter(pk=payment.pk, gateway_status=Payment.STATUS_INITIATED).update(**changes)
        current = Payment.objects.get(pk=payment.pk)
        if not updated:
            if current.gateway_status == Payment.STATUS_FAILED:
                logger.warning('Capture reported for failed payment %s (gateway payment %s)',
                               current.pk, gateway_payment_id)
                log_action(user=None, action='capture_after_failure', object_type='payment',
                           object_id=current.pk, detail={'gatewayPaymentId': gateway_payment_id})
            else:
                logger.info('Payment %s already %s, capture skipped', current.pk, current.gateway_status)
            return current

        ledger.apply_payment(invoice.pk, current.amount, current.mode, payment=current)
        invoice.refresh_from_db()
        trigger_commission(invoice)
        broadcast_invoice_update(invoice)
    logger.info('Payment %s captured for invoice %s', current.pk, invoice.number)
    return current


def fail_payment(payment: Payment, error_payload, *, gateway_payment_id: str = '') -> Payment:
    changes = {'gateway_status': Payment.STATUS_FAILED, 'gateway_response': error_payload}
    if gateway_payment_id:
        changes['gateway_payment_id'] = gateway_payment_id
    updated = Payment.objects.filter(pk=payment.pk, gateway_status=Payment.STATUS_INITIATED).update(**changes)
    current = Payment.objects.get(pk=payment.pk)
    if updated:
        logger.info('Payment %s marked failed', current.pk)
    else:
        logger.info('Payment %s already %s, failure skipped', current.pk, current.gateway_status)
    return current


def refund_payment(payment: Payment, amount, *, refund_id: str = '', response=None) -> Payment:
    with transaction.atomic():
        invoice = Invoice.objects.select_for_update().get(pk=payment.invoice_id)
        current = Payment.objects.select_for_update().get(pk=payment.pk)
        if current.gateway_status != Payment.STATUS_CAPTURED:
            logger.info('Payment %s is %s, refund %s skipped', current.pk, current.gateway_status, refund_id)
            return current
        current = ledger.apply_refund(current.pk, amount, refund_id=refund_id, response=response)
        invoice.refresh_from_db()
        broadcast_invoice_update(invoice)
    return current


def verify_checkout(payment_id, order_id: str, gateway_payment_id: str, signature: str, *,
                    user=None, gateway: Optional[RazorpayGateway] = None) -> Payment:
    gateway = gateway or get_gateway()
    _require_enabled(gateway)
    if not (order_id and gateway_payment_id and signature and payment_id):
        raise ValidationError('razorpay_order_id, razorpay_payment_id, razorpay_signature and paymentId are required')

    payment = Payment.objects.filter(pk=payment_id).first()
    if not payment:
        raise NotFoundError('Payment not found')
    if payment.gateway_order_id != order_id:
        raise ValidationError('Order does not belong to this payment')

    if not gateway.verify_signature(order_id, gateway_payment_id, signature):
        fail_payment(payment, {'error': 'Invalid signature', 'razorpay_payment_id': gateway_payment_id})
        log_security_event('payment_signature_invalid', object_type='payment', object_id=payment.pk,
                           detail={'orderId': order_id, 'userId': getattr(_actor(user), 'pk', None)})
        raise SignatureError('Payment verification failed')

    details = gateway.fetch_payment_details(gateway_payment_id)
    if details.get('status') == 'failed':
        return fail_payment(payment, details, gateway_payment_id=gateway_payment_id)
    return capture_payment(payment, gateway_payment_id=gateway_payment_id, signature=signature, response=details)


def _orphan(event_type: str, ref_kind: str, ref) -> None:
    logger.warning('Webhook %s references unknown %s %s, discarded', event_type, ref_kind, ref)
    log_action(user=None, action='webhook_orphan_event', object_type=ref_kind, object_id=ref,
               detail={'event': event_type})


def _dispatch(event: dict) -> None:
    event_type = event.get('event')
    payload = event.get('payload') or {}

    if event_type in ('payment.captured', 'payment.failed'):
        entity = payload['payment']['entity']
        order_id = entity.get('order_id')
        payment = Payment.objects.filter(gateway_order_id=order_id).first() if order_id else None
        if not payment:
            return _orphan(event_type, 'order', order_id)
        if event_type == 'payment.captured':
            capture_payment(payment, gateway_payment_id=entity.get('id', ''), response=entity)
        else:
            fail_payment(payment, entity, gateway_payment_id=entity.get('id', ''))
    elif event_type in ('refund.created', 'refund.processed'):
        entity = payload['refund']['entity']
        gateway_payment_id = entity.get('payment_id')
        payment = Payment.objects.filter(gateway_payment_id=gateway_payment_id).first() if gateway_payment_id else None
        if not payment:
            return _orphan(event_type, 'gateway_payment', gateway_payment_id)
        refund_payment(payment, to_major_units(entity.get('amount', 0)),
                       refund_id=entity.get('id', ''), response=entity)
    else:
        logger.info('Ignoring webhook event %s', event_type)


def handle_webhook(raw_body: bytes, signature: str, *, gateway: Optional[RazorpayGateway] = None) -> dict:
    """Verify and apply one gateway event.

    The signature is checked over the raw bytes before anything is parsed.
    Once it passes, processing errors are logged and the event is still
    acknowledged so the gateway does not redeliver it forever.
    """
    gateway = gateway or get_gateway()
    if not gateway.verify_webhook_signature(raw_body, signature):
        log_security_event('webhook_signature_invalid', object_type='webhook',
                           detail={'bytes': len(raw_body or b''), 'signed': bool(signature)})
        raise SignatureError('Invalid signature')

    try:
        event = json.loads(raw_body)
        logger.info('Razorpay webhook received: %s', event.get('event'))
        _dispatch(event)
    except Exception:
        logger.exception('Webhook processing error')
    return {'received': True}


def initiate_refund(payment_id, amount=None, reason: str = '', *, user=None,
                    gateway: Optional[RazorpayGateway] = None) -> dict:
    gateway = gateway or get_gateway()
    _require_enabled(gateway)

    payment = Payment.objects.filter(pk=payment_id).first()
    if not payment:
        raise NotFoundError('Payment not found')
    if not payment.gateway_payment_id:
        raise InvalidStateError('This payment cannot be refunded online')
    if payment.gateway_status == Payment.STATUS_REFUNDED:
        raise InvalidStateError('Payment already refunded')
    if payment.gateway_status != Payment.STATUS_CAPTURED:
        raise InvalidStateError(f'Payment is {payment.gateway_status}, only captured payments can be refunded')

    refund_amount = payment.net_amount if amount in (None, '') else ledger.to_money(amount)
    if refund_amount <= 0:
        raise ValidationError('refund amount must be greater than zero')
    if refund_amount > payment.net_amount:
        raise InvalidStateError(f'Refund {refund_amount} exceeds refundable amount {payment.net_amount}')

    reason = bleach.clean(reason or '', tags=[], strip=True).strip()[:255] or 'Refund requested'

    # one refund request per payment may be at the gateway at a time
    reserved = Payment.objects.filter(
        pk=payment.pk, gateway_status=Payment.STATUS_CAPTURED, refund_requested_at__isnull=True,
    ).update(refund_requested_at=timezone.now())
    if not reserved:
        raise InvalidStateError('A refund is already in progress for this payment')

    try:
        refund = gateway.create_refund(payment.gateway_payment_id, to_minor_units(refund_amount),
                                       notes={'reason': reason})
    except GatewayError:
        Payment.objects.filter(pk=payment.pk).update(refund_requested_at=None)
        raise
    refund_id = refund.get('id', '')
    refunded = to_major_units(refund.get('amount', to_minor_units(refund_amount)))

    payment = refund_payment(payment, refunded, refund_id=refund_id, response=refund)
    if payment.gateway_status != Payment.STATUS_REFUNDED or payment.refund_id != refund_id:
        logger.error('Gateway refund %s of %s on payment %s not recorded: payment is %s with refund %r',
                     refund_id, refunded, payment.pk, payment.gateway_status, payment.refund_id)
        log_action(user=_actor(user), action='refund_unrecorded', object_type='payment', object_id=payment.pk,
                   detail={'refundId': refund_id, 'amount': str(refunded), 'recordedRefundId': payment.refund_id})
        raise InvalidStateError('Refund was issued by the gateway but not recorded; flagged for review')

    log_action(user=_actor(user), action='payment_refund', object_type='payment', object_id=payment.pk,
               detail={'refundId': refund_id, 'amount': str(refunded), 'reason': reason})
    return {'id': refund_id, 'amount': refunded, 'status': refund.get('status', 'processed')}


def record_offline_payment(invoice_id, amount, mode: str, transaction_ref: str = '', user=None) -> Payment:
    """Cash-desk path: the payment is captured on creation, no gateway involved."""
    if mode not in OFFLINE_MODES:
        raise ValidationError(f'Unsupported payment mode: {mode}')
    amount = ledger.to_money(amount)
    if amount <= 0:
        raise ValidationError('amount must be greater than zero')

    with transaction.atomic():
        invoice = Invoice.objects.select_for_update().filter(pk=invoice_id).first()
        if not invoice:
            raise NotFoundError('Invoice not found')
        if amount > invoice.balance:
            raise ValidationError(f'Invalid amount. Balance due: {invoice.balance}')
        payment = ledger.apply_payment(invoice.pk, amount, mode, transaction_ref=transaction_ref,
                                       received_by=_actor(user))
        invoice.refresh_from_db()
        trigger_commission(invoice)
        broadcast_invoice_update(invoice)

    log_action(user=_actor(user), action='payment_offline', object_type='invoice', object_id=invoice.pk,
               detail={'paymentId': str(payment.pk), 'amount': str(amount), 'mode': mode})
    return payment
