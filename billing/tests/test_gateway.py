from decimal import Decimal

import pytest
import requests

from billing.exceptions import GatewayError
from billing.services.gateway import RazorpayGateway, get_gateway, to_major_units, to_minor_units

from conftest import KEY_ID, KEY_SECRET, WEBHOOK_SECRET, FakeResponse, FakeSession, StubGateway


def make_gateway(**kwargs):
    session = FakeSession()
    gw = RazorpayGateway(KEY_ID, KEY_SECRET, WEBHOOK_SECRET, session=session, timeout=5, **kwargs)
    return gw, session


def test_unit_conversion():
    assert to_minor_units(Decimal('1500.50')) == 150050
    assert to_minor_units('10.005') == 1001
    assert to_minor_units(3000) == 300000
    assert to_major_units(150050) == Decimal('1500.50')
    assert to_major_units('99') == Decimal('0.99')


def test_checkout_signature():
    gw, _ = make_gateway()
    sig = StubGateway.sign_checkout('order_1', 'pay_1')
    assert gw.verify_signature('order_1', 'pay_1', sig)
    assert not gw.verify_signature('order_1', 'pay_2', sig)
    assert not gw.verify_signature('order_1', 'pay_1', '')
    assert not gw.verify_signature('order_1', 'pay_1', StubGateway.sign_checkout('order_1', 'pay_1', secret='other'))


def test_webhook_signature_over_raw_bytes():
    gw, _ = make_gateway()
    body = b'{"event":"payment.captured","payload":{}}'
    sig = StubGateway.sign_webhook(body)
    assert gw.verify_webhook_signature(body, sig)
    assert not gw.verify_webhook_signature(body.replace(b'captured', b'failed'), sig)
    # same JSON, different bytes
    assert not gw.verify_webhook_signature(b'{"event": "payment.captured", "payload": {}}', sig)
    assert not gw.verify_webhook_signature(body, '')


def test_webhook_signature_fails_closed_without_secret():
    gw = RazorpayGateway(KEY_ID, KEY_SECRET, '', session=FakeSession())
    body = b'{}'
    assert not gw.verify_webhook_signature(body, StubGateway.sign_webhook(body, secret=''))


def test_create_order_request_shape():
    gw, session = make_gateway()
    session.queue(FakeResponse(200, {'id': 'order_9', 'amount': 150050, 'currency': 'INR'}))
    order = gw.create_order(150050, receipt='INV-abcd1234', notes={'invoiceId': 'x'})
    assert order['id'] == 'order_9'

    method, url, kwargs = session.calls[0]
    assert method == 'POST'
    assert url == 'https://api.razorpay.com/v1/orders'
    assert kwargs['json'] == {'amount': 150050, 'currency': 'INR', 'receipt': 'INV-abcd1234', 'notes': {'invoiceId': 'x'}}
    assert kwargs['auth'] == (KEY_ID, KEY_SECRET)
    assert kwargs['timeout'] == 5


def test_non_2xx_raises_gateway_error_with_upstream_detail():
    gw, session = make_gateway()
    session.queue(FakeResponse(400, {'error': {'code': 'BAD_REQUEST_ERROR', 'description': 'amount too small'}}))
    with pytest.raises(GatewayError) as exc:
        gw.create_order(10)
    assert 'amount too small' in str(exc.value.detail)
    assert exc.value.upstream_status == 400
    assert exc.value.status_code == 502


def test_non_json_error_body():
    gw, session = make_gateway()
    session.queue(FakeResponse(503, None, text='<html>down</html>'))
    with pytest.raises(GatewayError) as exc:
        gw.fetch_payment_details('pay_1')
    assert exc.value.payload == {'raw': '<html>down</html>'}


@pytest.mark.parametrize('error', [requests.Timeout('slow'), requests.ConnectionError('refused')])
def test_transport_failures_raise_gateway_error(error):
    gw, session = make_gateway()
    session.queue(error)
    with pytest.raises(GatewayError):
        gw.create_refund('pay_1', 100)


def test_refund_request_body():
    gw, session = make_gateway()
    session.queue(FakeResponse(200, {'id': 'rfnd_1', 'amount': 5000, 'status': 'processed'}))
    gw.create_refund('pay_1', 5000, notes={'reason': 'duplicate'})
    method, url, kwargs = session.calls[0]
    assert url.endswith('/payments/pay_1/refund')
    assert kwargs['json'] == {'amount': 5000, 'notes': {'reason': 'duplicate'}}


def test_disabled_gateway_refuses_calls():
    gw, session = make_gateway(enabled=False)
    assert not gw.enabled
    with pytest.raises(GatewayError):
        gw.create_order(100)
    assert session.calls == []

    keyless = RazorpayGateway('', '', '', session=FakeSession())
    assert not keyless.enabled


def test_get_gateway_reads_settings(settings):
    settings.RAZORPAY_ENABLED = True
    settings.RAZORPAY_KEY_ID = 'rzp_live_x'
    settings.RAZORPAY_KEY_SECRET = 'sec'
    settings.RAZORPAY_WEBHOOK_SECRET = 'whsec'
    settings.PAYMENT_CURRENCY = 'INR'
    settings.PAYMENT_GATEWAY_TIMEOUT = 3.5
    gw = get_gateway()
    assert gw.enabled
    assert gw.public_key == 'rzp_live_x'
    assert gw.timeout == 3.5
    assert gw.webhook_secret == 'whsec'
