import threading
from decimal import Decimal

import pytest
from django.db import connection

from billing.exceptions import GatewayError, InvalidStateError, NotFoundError, SignatureError, ValidationError
from billing.models import AuditEvent, Commission, Invoice, Payment
from billing.services import reconciliation

from conftest import StubGateway

pytestmark = pytest.mark.django_db


def snapshot(invoice):
    invoice.refresh_from_db()
    return invoice.paid, invoice.balance, invoice.status


def open_order(gateway, invoice, amount):
    order = reconciliation.create_order(invoice.id, amount, gateway=gateway)
    return Payment.objects.get(pk=order['paymentId']), order


def checkout(gateway, payment, gateway_payment_id='pay_1'):
    sig = gateway.sign_checkout(payment.gateway_order_id, gateway_payment_id)
    return reconciliation.verify_checkout(payment.id, payment.gateway_order_id, gateway_payment_id, sig, gateway=gateway)


# -- create_order ------------------------------------------------------------

def test_create_order_opens_initiated_payment(gateway, make_invoice):
    inv = make_invoice('5000')
    payment, order = open_order(gateway, inv, '1500.50')

    assert order['orderId'] == payment.gateway_order_id
    assert order['amount'] == 150050
    assert order['currency'] == 'INR'
    assert order['key'] == gateway.public_key
    assert order['prefill']['name'] == inv.patient.name
    assert payment.gateway_status == Payment.STATUS_INITIATED
    assert payment.mode == Payment.MODE_RAZORPAY
    assert payment.amount == Decimal('1500.50')
    assert payment.gateway_response['order']['receipt'] == f'INV-{str(inv.id)[:8]}'
    assert snapshot(inv) == (Decimal('0.00'), Decimal('5000.00'), Invoice.STATUS_FINAL)


@pytest.mark.parametrize('amount', ['0', '-10', '5000.01'])
def test_create_order_rejects_bad_amounts(gateway, make_invoice, amount):
    inv = make_invoice('5000')
    with pytest.raises(ValidationError):
        reconciliation.create_order(inv.id, amount, gateway=gateway)
    assert Payment.objects.count() == 0


def test_create_order_unknown_invoice(gateway):
    with pytest.raises(NotFoundError):
        reconciliation.create_order('7f0c1e8c-0000-4000-8000-000000000000', '10', gateway=gateway)


def test_create_order_disabled_gateway(make_invoice):
    inv = make_invoice()
    with pytest.raises(ValidationError):
        reconciliation.create_order(inv.id, '10', gateway=StubGateway(enabled=False))


def test_create_order_gateway_failure_writes_nothing(gateway, make_invoice):
    inv = make_invoice()
    gateway.fail_with = GatewayError('Payment gateway timed out')
    with pytest.raises(GatewayError) as exc:
        reconciliation.create_order(inv.id, '100', gateway=gateway)
    assert 'no charge' in str(exc.value.detail)
    assert Payment.objects.count() == 0


# -- verify ------------------------------------------------------------------

def test_verify_captures_and_posts_once(gateway, make_invoice):
    inv = make_invoice('5000')
    payment, _ = open_order(gateway, inv, '3000')

    captured = checkout(gateway, payment)
    assert captured.gateway_status == Payment.STATUS_CAPTURED
    assert captured.gateway_payment_id == 'pay_1'
    assert captured.transaction_ref == 'pay_1'
    assert captured.paid_at is not None
    first = snapshot(inv)
    assert first == (Decimal('3000.00'), Decimal('2000.00'), Invoice.STATUS_PARTIAL)

    again = checkout(gateway, payment)
    assert again.gateway_status == Payment.STATUS_CAPTURED
    assert snapshot(inv) == first


def test_capture_transition_is_idempotent(gateway, make_invoice):
    inv = make_invoice('5000')
    payment, _ = open_order(gateway, inv, '5000')
    reconciliation.capture_payment(payment, gateway_payment_id='pay_1', response={'id': 'pay_1'})
    once = snapshot(inv)
    reconciliation.capture_payment(payment, gateway_payment_id='pay_1', response={'id': 'pay_1'})
    assert snapshot(inv) == once == (Decimal('5000.00'), Decimal('0.00'), Invoice.STATUS_PAID)


def test_verify_bad_signature_fails_payment_without_touching_invoice(gateway, make_invoice):
    inv = make_invoice('5000')
    payment, _ = open_order(gateway, inv, '3000')
    before = snapshot(inv)

    with pytest.raises(SignatureError):
        reconciliation.verify_checkout(payment.id, payment.gateway_order_id, 'pay_1', 'deadbeef', gateway=gateway)

    payment.refresh_from_db()
    assert payment.gateway_status == Payment.STATUS_FAILED
    assert snapshot(inv) == before
    assert AuditEvent.objects.filter(action='payment_signature_invalid', object_id=str(payment.id)).exists()


def test_verify_rejects_order_of_another_payment(gateway, make_invoice):
    inv = make_invoice('5000')
    p1, _ = open_order(gateway, inv, '100')
    p2, _ = open_order(gateway, inv, '200')
    sig = gateway.sign_checkout(p2.gateway_order_id, 'pay_1')
    with pytest.raises(ValidationError):
        reconciliation.verify_checkout(p1.id, p2.gateway_order_id, 'pay_1', sig, gateway=gateway)
    p1.refresh_from_db()
    assert p1.gateway_status == Payment.STATUS_INITIATED


def test_verify_unknown_payment(gateway):
    with pytest.raises(NotFoundError):
        reconciliation.verify_checkout('7f0c1e8c-0000-4000-8000-000000000000', 'order_1', 'pay_1', 'sig', gateway=gateway)


def test_verify_gateway_reports_failure(gateway, make_invoice):
    inv = make_invoice('5000')
    payment, _ = open_order(gateway, inv, '3000')
    gateway.payment_status = 'failed'
    result = checkout(gateway, payment)
    assert result.gateway_status == Payment.STATUS_FAILED
    assert snapshot(inv)[0] == Decimal('0.00')


# -- webhook -----------------------------------------------------------------

def test_webhook_capture_then_verify_is_noop(gateway, make_invoice, webhook_body):
    inv = make_invoice('5000')
    payment, _ = open_order(gateway, inv, '2000')
    body = webhook_body('payment.captured', 'payment', id='pay_7', order_id=payment.gateway_order_id, amount=200000)

    assert reconciliation.handle_webhook(body, gateway.sign_webhook(body), gateway=gateway) == {'received': True}
    after_webhook = snapshot(inv)
    assert after_webhook == (Decimal('2000.00'), Decimal('3000.00'), Invoice.STATUS_PARTIAL)

    # redelivery, then the client callback arriving late
    reconciliation.handle_webhook(body, gateway.sign_webhook(body), gateway=gateway)
    checkout(gateway, payment, 'pay_7')
    assert snapshot(inv) == after_webhook


def test_webhook_bad_signature_rejected_without_mutation(gateway, make_invoice, webhook_body):
    inv = make_invoice('5000')
    payment, _ = open_order(gateway, inv, '2000')
    body = webhook_body('payment.captured', 'payment', id='pay_7', order_id=payment.gateway_order_id)
    sig = gateway.sign_webhook(body)
    tampered = body.replace(b'pay_7', b'pay_8')

    with pytest.raises(SignatureError):
        reconciliation.handle_webhook(tampered, sig, gateway=gateway)
    with pytest.raises(SignatureError):
        reconciliation.handle_webhook(body, '', gateway=gateway)

    payment.refresh_from_db()
    assert payment.gateway_status == Payment.STATUS_INITIATED
    assert snapshot(inv)[0] == Decimal('0.00')
    assert AuditEvent.objects.filter(action='webhook_signature_invalid').count() == 2


def test_webhook_for_unknown_order_is_discarded(gateway, webhook_body):
    body = webhook_body('payment.captured', 'payment', id='pay_x', order_id='order_never_created')
    assert reconciliation.handle_webhook(body, gateway.sign_webhook(body), gateway=gateway) == {'received': True}
    assert Payment.objects.count() == 0
    assert AuditEvent.objects.filter(action='webhook_orphan_event', object_id='order_never_created').exists()


def test_webhook_processing_errors_are_acknowledged(gateway):
    body = b'not json at all'
    assert reconciliation.handle_webhook(body, gateway.sign_webhook(body), gateway=gateway) == {'received': True}

    body = b'{"event":"payment.captured","payload":{}}'
    assert reconciliation.handle_webhook(body, gateway.sign_webhook(body), gateway=gateway) == {'received': True}


def test_webhook_failed_then_captured_keeps_failed(gateway, make_invoice, webhook_body):
    inv = make_invoice('5000')
    payment, _ = open_order(gateway, inv, '2000')
    failed = webhook_body('payment.failed', 'payment', id='pay_7', order_id=payment.gateway_order_id,
                          error_description='card declined')
    reconciliation.handle_webhook(failed, gateway.sign_webhook(failed), gateway=gateway)
    payment.refresh_from_db()
    assert payment.gateway_status == Payment.STATUS_FAILED
    assert payment.gateway_response['error_description'] == 'card declined'

    captured = webhook_body('payment.captured', 'payment', id='pay_7', order_id=payment.gateway_order_id)
    reconciliation.handle_webhook(captured, gateway.sign_webhook(captured), gateway=gateway)
    payment.refresh_from_db()
    assert payment.gateway_status == Payment.STATUS_FAILED
    assert snapshot(inv)[0] == Decimal('0.00')
    assert AuditEvent.objects.filter(action='capture_after_failure').exists()


def test_webhook_refund_event(gateway, make_invoice, webhook_body):
    inv = make_invoice('5000')
    payment, _ = open_order(gateway, inv, '5000')
    checkout(gateway, payment, 'pay_7')

    body = webhook_body('refund.created', 'refund', id='rfnd_1', payment_id='pay_7', amount=100000)
    reconciliation.handle_webhook(body, gateway.sign_webhook(body), gateway=gateway)
    payment.refresh_from_db()
    assert payment.gateway_status == Payment.STATUS_REFUNDED
    assert payment.refund_amount == Decimal('1000.00')
    assert payment.refund_id == 'rfnd_1'
    state = snapshot(inv)
    assert state == (Decimal('4000.00'), Decimal('1000.00'), Invoice.STATUS_PARTIAL)

    processed = webhook_body('refund.processed', 'refund', id='rfnd_1', payment_id='pay_7', amount=100000)
    reconciliation.handle_webhook(processed, gateway.sign_webhook(processed), gateway=gateway)
    assert snapshot(inv) == state


# -- refunds -----------------------------------------------------------------

def _captured(gateway, make_invoice, total='5000', amount='5000'):
    inv = make_invoice(total)
    payment, _ = open_order(gateway, inv, amount)
    return inv, checkout(gateway, payment, 'pay_1')


def test_initiate_full_refund(gateway, make_invoice, accountant):
    inv, payment = _captured(gateway, make_invoice)
    result = reconciliation.initiate_refund(payment.id, reason='<b>duplicate</b> charge', user=accountant, gateway=gateway)

    assert result == {'id': 'rfnd_1', 'amount': Decimal('5000.00'), 'status': 'processed'}
    assert gateway.refund_calls == [('pay_1', 500000, {'reason': 'duplicate charge'})]
    payment.refresh_from_db()
    assert payment.gateway_status == Payment.STATUS_REFUNDED
    assert snapshot(inv) == (Decimal('0.00'), Decimal('5000.00'), Invoice.STATUS_PARTIAL)
    assert AuditEvent.objects.filter(action='payment_refund', user=accountant).exists()


def test_initiate_partial_refund(gateway, make_invoice):
    inv, payment = _captured(gateway, make_invoice)
    result = reconciliation.initiate_refund(payment.id, '1250.25', gateway=gateway)
    assert result['amount'] == Decimal('1250.25')
    assert snapshot(inv)[:2] == (Decimal('3749.75'), Decimal('1250.25'))


def test_refund_above_net_amount_fails_before_gateway(gateway, make_invoice):
    inv, payment = _captured(gateway, make_invoice, amount='3000')
    before = snapshot(inv)
    with pytest.raises(InvalidStateError):
        reconciliation.initiate_refund(payment.id, '3000.01', gateway=gateway)
    assert gateway.refund_calls == []
    assert snapshot(inv) == before


def test_refund_rejections(gateway, make_invoice):
    inv = make_invoice('5000')
    offline = reconciliation.record_offline_payment(inv.id, '100', 'cash')
    with pytest.raises(InvalidStateError):
        reconciliation.initiate_refund(offline.id, gateway=gateway)

    _, payment = _captured(gateway, make_invoice)
    reconciliation.initiate_refund(payment.id, gateway=gateway)
    with pytest.raises(InvalidStateError):
        reconciliation.initiate_refund(payment.id, gateway=gateway)

    with pytest.raises(NotFoundError):
        reconciliation.initiate_refund('7f0c1e8c-0000-4000-8000-000000000000', gateway=gateway)


def test_refund_gateway_error_leaves_ledger(gateway, make_invoice):
    inv, payment = _captured(gateway, make_invoice)
    before = snapshot(inv)
    gateway.fail_with = GatewayError('Payment gateway unreachable')
    with pytest.raises(GatewayError):
        reconciliation.initiate_refund(payment.id, gateway=gateway)
    payment.refresh_from_db()
    assert payment.gateway_status == Payment.STATUS_CAPTURED
    assert payment.refund_requested_at is None
    assert snapshot(inv) == before

    gateway.fail_with = None
    assert reconciliation.initiate_refund(payment.id, gateway=gateway)['id'] == 'rfnd_1'


class ReenteringGateway(StubGateway):
    """Runs ``on_refund`` from inside the first create_refund call, before answering."""

    def __init__(self, on_refund, **kwargs):
        super().__init__(**kwargs)
        self.on_refund = on_refund
        self.reentry_errors = []

    def create_refund(self, payment_id, amount_minor=None, notes=None):
        if self.on_refund is not None:
            hook, self.on_refund = self.on_refund, None
            try:
                hook(self)
            except InvalidStateError as exc:
                self.reentry_errors.append(exc)
        return super().create_refund(payment_id, amount_minor, notes)


def test_second_refund_request_while_first_is_at_gateway(gateway, make_invoice):
    inv, payment = _captured(gateway, make_invoice)
    reentrant = ReenteringGateway(lambda gw: reconciliation.initiate_refund(payment.id, '1000', gateway=gw))

    result = reconciliation.initiate_refund(payment.id, '2000', gateway=reentrant)

    assert len(reentrant.reentry_errors) == 1
    assert reentrant.refund_calls == [('pay_1', 200000, {'reason': 'Refund requested'})]
    assert result == {'id': 'rfnd_1', 'amount': Decimal('2000.00'), 'status': 'processed'}
    payment.refresh_from_db()
    assert (payment.refund_id, payment.refund_amount) == ('rfnd_1', Decimal('2000.00'))
    assert snapshot(inv)[:2] == (Decimal('3000.00'), Decimal('2000.00'))


def test_gateway_refund_not_recorded_is_flagged(gateway, make_invoice, accountant):
    inv, payment = _captured(gateway, make_invoice)
    # a dashboard refund lands through the webhook while ours is in flight
    reentrant = ReenteringGateway(
        lambda gw: reconciliation.refund_payment(payment, Decimal('500'), refund_id='rfnd_dash'))

    with pytest.raises(InvalidStateError):
        reconciliation.initiate_refund(payment.id, '2000', user=accountant, gateway=reentrant)

    payment.refresh_from_db()
    assert payment.refund_id == 'rfnd_dash'
    assert snapshot(inv)[0] == Decimal('4500.00')
    event = AuditEvent.objects.get(action='refund_unrecorded')
    assert event.detail['refundId'] == 'rfnd_1'
    assert not AuditEvent.objects.filter(action='payment_refund').exists()


# -- settlement and commissions ----------------------------------------------

def test_two_gateway_payments_settle_with_fixed_commission(gateway, make_source, make_patient, make_invoice):
    patient = make_patient(make_source('fixed', '250'))
    inv = make_invoice('5000', patient=patient)

    a, _ = open_order(gateway, inv, '3000')
    checkout(gateway, a, 'pay_a')
    assert snapshot(inv) == (Decimal('3000.00'), Decimal('2000.00'), Invoice.STATUS_PARTIAL)
    assert Commission.objects.count() == 0

    b, _ = open_order(gateway, inv, '2000')
    checkout(gateway, b, 'pay_b')
    assert snapshot(inv) == (Decimal('5000.00'), Decimal('0.00'), Invoice.STATUS_PAID)

    commission = Commission.objects.get()
    assert commission.invoice_id == inv.id
    assert commission.commission_amount == Decimal('250.00')
    assert commission.status == Commission.STATUS_PENDING


def test_percentage_commission_created_once_across_partial_payments(gateway, make_source, make_patient,
                                                                   make_invoice, webhook_body):
    patient = make_patient(make_source('percentage', '10'))
    inv = make_invoice('5000', patient=patient)

    a, _ = open_order(gateway, inv, '2000')
    b, _ = open_order(gateway, inv, '3000')
    checkout(gateway, a, 'pay_a')
    assert Commission.objects.count() == 0
    checkout(gateway, b, 'pay_b')

    body = webhook_body('payment.captured', 'payment', id='pay_b', order_id=b.gateway_order_id)
    reconciliation.handle_webhook(body, gateway.sign_webhook(body), gateway=gateway)

    assert Commission.objects.filter(invoice=inv).count() == 1
    assert Commission.objects.get().commission_amount == Decimal('500.00')


def test_captures_from_stale_rows_do_not_lose_updates(gateway, make_invoice):
    inv = make_invoice('5000')
    a, _ = open_order(gateway, inv, '1200')
    b, _ = open_order(gateway, inv, '1800')
    stale_a = Payment.objects.get(pk=a.pk)
    stale_b = Payment.objects.get(pk=b.pk)

    reconciliation.capture_payment(stale_a, gateway_payment_id='pay_a')
    reconciliation.capture_payment(stale_b, gateway_payment_id='pay_b')
    reconciliation.capture_payment(stale_a, gateway_payment_id='pay_a')

    assert snapshot(inv) == (Decimal('3000.00'), Decimal('2000.00'), Invoice.STATUS_PARTIAL)


@pytest.mark.django_db(transaction=True)
def test_concurrent_captures_on_one_invoice_both_land(gateway, make_invoice):
    inv = make_invoice('5000')
    a, _ = open_order(gateway, inv, '1200')
    b, _ = open_order(gateway, inv, '1800')
    barrier = threading.Barrier(2)
    errors = []

    def capture(payment, gateway_payment_id):
        try:
            barrier.wait(timeout=5)
            reconciliation.capture_payment(payment, gateway_payment_id=gateway_payment_id)
        except Exception as exc:
            errors.append(exc)
        finally:
            connection.close()

    threads = [threading.Thread(target=capture, args=(a, 'pay_a')),
               threading.Thread(target=capture, args=(b, 'pay_b'))]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []
    assert snapshot(inv) == (Decimal('3000.00'), Decimal('2000.00'), Invoice.STATUS_PARTIAL)
    assert set(Payment.objects.values_list('gateway_status', flat=True)) == {Payment.STATUS_CAPTURED}


# -- offline -----------------------------------------------------------------

def test_record_offline_payment(make_source, make_patient, make_invoice, cashier):
    patient = make_patient(make_source('fixed', '250'))
    inv = make_invoice('5000', patient=patient)
    p = reconciliation.record_offline_payment(inv.id, '5000', 'cash', 'RCPT-1', user=cashier)
    assert p.gateway_status == Payment.STATUS_CAPTURED
    assert p.received_by == cashier
    assert p.transaction_ref == 'RCPT-1'
    assert snapshot(inv) == (Decimal('5000.00'), Decimal('0.00'), Invoice.STATUS_PAID)
    assert Commission.objects.filter(invoice=inv).count() == 1


@pytest.mark.parametrize('amount, mode', [('6000', 'cash'), ('0', 'cash'), ('100', 'razorpay'), ('100', 'barter')])
def test_record_offline_payment_rejections(make_invoice, amount, mode):
    inv = make_invoice('5000')
    with pytest.raises(ValidationError):
        reconciliation.record_offline_payment(inv.id, amount, mode)
    assert Payment.objects.count() == 0


def test_payment_config(gateway):
    assert reconciliation.payment_config(gateway) == {'enabled': True, 'publicKey': 'rzp_test_key', 'currency': 'INR'}
