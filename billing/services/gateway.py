"""
Razorpay protocol adapter.

Pure translation between the ledger and the gateway's HTTP API: no
database access and no business rules.  Amounts cross this boundary in
minor units (paise); :func:`to_minor_units` and :func:`to_major_units`
are the only conversions in the codebase.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

import requests
from django.conf import settings

from billing.exceptions import GatewayError

logger = logging.getLogger(__name__)


def to_minor_units(amount) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def to_major_units(minor) -> Decimal:
    return (Decimal(int(minor)) / 100).quantize(Decimal('0.01'))


def _hmac_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode('utf-8'), message, hashlib.sha256).hexdigest()


class RazorpayGateway:
    def __init__(self, key_id: str, key_secret: str, webhook_secret: str = '', *,
                 enabled: bool = True, currency: str = 'INR', timeout: float = 10,
                 base_url: str = 'https://api.razorpay.com/v1', session: Optional[requests.Session] = None):
        self.key_id = key_id
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.currency = currency
        self.timeout = timeout
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        return bool(self._enabled and self.key_id and self.key_secret)

    @property
    def public_key(self) -> str:
        return self.key_id

    def _request(self, method: str, endpoint: str, payload: Optional[dict] = None) -> dict:
        if not self.enabled:
            raise GatewayError('Payment gateway is not configured')
        url = f"{self.base_url}{endpoint}"
        try:
            r = self.session.request(method, url, json=payload, auth=(self.key_id, self.key_secret), timeout=self.timeout)
        except requests.Timeout as e:
            logger.error('Razorpay %s %s timed out after %ss', method, endpoint, self.timeout)
            raise GatewayError('Payment gateway timed out') from e
        except requests.RequestException as e:
            logger.error('Razorpay %s %s failed: %s', method, endpoint, e)
            raise GatewayError('Payment gateway unreachable') from e

        try:
            data = r.json()
        except ValueError:
            data = {'raw': r.text[:500]}

        if not r.ok:
            message = 'Payment gateway error'
            if isinstance(data, dict) and isinstance(data.get('error'), dict):
                message = data['error'].get('description') or message
            logger.error('Razorpay API error', extra={'endpoint': endpoint, 'status': r.status_code, 'error': data})
            raise GatewayError(message, upstream_status=r.status_code, payload=data)
        return data

    def create_order(self, amount_minor: int, currency: Optional[str] = None, receipt: str = '', notes: Optional[dict] = None) -> dict:
        logger.info('Creating Razorpay order receipt=%s amount=%s', receipt, amount_minor)
        order = self._request('POST', '/orders', {
            'amount': int(amount_minor),
            'currency': currency or self.currency,
            'receipt': receipt,
            'notes': notes or {},
        })
        logger.info('Razorpay order created order=%s receipt=%s', order.get('id'), receipt)
        return order

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not self.key_secret or not signature:
            return False
        expected = _hmac_hex(self.key_secret, f"{order_id}|{payment_id}".encode('utf-8'))
        is_valid = hmac.compare_digest(expected, signature)
        logger.info('Payment signature verification order=%s payment=%s valid=%s', order_id, payment_id, is_valid)
        return is_valid

    def verify_webhook_signature(self, raw_body: bytes, signature: str) -> bool:
        """Check the signature over the raw request bytes, before any JSON parsing."""
        if not self.webhook_secret:
            logger.warning('Webhook secret not configured')
            return False
        if not signature:
            return False
        if isinstance(raw_body, str):
            raw_body = raw_body.encode('utf-8')
        expected = _hmac_hex(self.webhook_secret, raw_body)
        return hmac.compare_digest(expected, signature)

    def fetch_payment_details(self, payment_id: str) -> dict:
        return self._request('GET', f'/payments/{payment_id}')

    def create_refund(self, payment_id: str, amount_minor: Optional[int] = None, notes: Optional[dict] = None) -> dict:
        logger.info('Creating refund payment=%s amount=%s', payment_id, amount_minor)
        body: dict[str, Any] = {}
        if amount_minor:
            body['amount'] = int(amount_minor)
        if notes:
            body['notes'] = notes
        return self._request('POST', f'/payments/{payment_id}/refund', body)


def get_gateway() -> RazorpayGateway:
    return RazorpayGateway(
        settings.RAZORPAY_KEY_ID,
        settings.RAZORPAY_KEY_SECRET,
        settings.RAZORPAY_WEBHOOK_SECRET,
        enabled=settings.RAZORPAY_ENABLED,
        currency=settings.PAYMENT_CURRENCY,
        timeout=settings.PAYMENT_GATEWAY_TIMEOUT,
        base_url=settings.RAZORPAY_API_BASE,
    )
