import hashlib
import hmac
import json
from decimal import Decimal

import pytest
from django.core.cache import cache

from billing.models import Patient, ReferralSource, User
from billing.services import ledger
from billing.services.gateway import RazorpayGateway

KEY_ID = 'rzp_test_key'
KEY_SECRET = 'test_key_secret'
WEBHOOK_SECRET = 'test_webhook_secret'


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=''):
        self.status_code = status_code
        self._body = body
        self.text = text or json.dumps(body)

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def json(self):
        if self._body is None:
            raise ValueError('no json')
        return self._body


class FakeSession:
    """Stands in for ``requests.Session``; queue responses or exceptions."""

    def __init__(self):
        self.calls = []
        self.responses = []

    def queue(self, item):
        self.responses.append(item)

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class StubGateway(RazorpayGateway):
    """Real signature checks, canned upstream answers."""

    def __init__(self, **kwargs):
        kwargs.setdefault('session', FakeSession())
        super().__init__(KEY_ID, KEY_SECRET, WEBHOOK_SECRET, **kwargs)
        self.order_seq = 0
        self.payment_status = 'captured'
        self.fail_with = None
        self.refund_calls = []

    def create_order(self, amount_minor, currency=None, receipt='', notes=None):
        if self.fail_with:
            raise self.fail_with
        self.order_seq += 1
        return {'id': f'order_{self.order_seq}', 'amount': amount_minor,
                'currency': currency or self.currency, 'receipt': receipt, 'status': 'created'}

    def fetch_payment_details(self, payment_id):
        if self.fail_with:
            raise self.fail_with
        return {'id': payment_id, 'status': self.payment_status}

    def create_refund(self, payment_id, amount_minor=None, notes=None):
        if self.fail_with:
            raise self.fail_with
        self.refund_calls.append((payment_id, amount_minor, notes))
        return {'id': f'rfnd_{len(self.refund_calls)}', 'payment_id': payment_id,
                'amount': amount_minor, 'status': 'processed'}

    @staticmethod
    def sign_checkout(order_id, payment_id, secret=KEY_SECRET):
        return hmac.new(secret.encode(), f'{order_id}|{payment_id}'.encode(), hashlib.sha256).hexdigest()

    @staticmethod
    def sign_webhook(body, secret=WEBHOOK_SECRET):
        return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


@pytest.fixture(autouse=True)
def _clear_throttle_cache():
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def gateway():
    return StubGateway()


@pytest.fixture
def webhook_body():
    def build(event, entity_kind, **entity):
        payload = {'entity': 'event', 'event': event, 'payload': {entity_kind: {'entity': entity}}}
        return json.dumps(payload, separators=(',', ':')).encode()
    return build


@pytest.fixture
def make_user(db):
    def make(username, role):
        return User.objects.create_user(username=username, password='P@ssw0rd1', role=role)
    return make


@pytest.fixture
def cashier(make_user):
    return make_user('cashier1', 'cashier')


@pytest.fixture
def accountant(make_user):
    return make_user('accountant1', 'accountant')


@pytest.fixture
def admin_user(make_user):
    return make_user('admin1', 'admin')


@pytest.fixture
def make_source(db):
    seq = iter(range(1, 1000))

    def make(commission_type='percentage', value='10', tiers=None):
        return ReferralSource.objects.create(
            code=f'REF{next(seq):03d}',
            name='Dr. Mehta',
            commission_type=commission_type,
            commission_value=Decimal(value),
            commission_tiers=tiers,
        )
    return make


@pytest.fixture
def make_patient(db):
    seq = iter(range(1, 1000))

    def make(referral_source=None):
        n = next(seq)
        return Patient.objects.create(mrn=f'MRN{n:05d}', name=f'Patient {n}', email=f'p{n}@example.com',
                                      contact='9800000000', referral_source=referral_source)
    return make


@pytest.fixture
def make_invoice(make_patient):
    def make(total='5000.00', patient=None, status='final'):
        return ledger.create_invoice(
            [{'description': 'Consultation', 'amount': total}],
            patient=patient or make_patient(),
            status=status,
        )
    return make
