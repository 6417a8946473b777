import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction

from billing.models import Invoice

logger = logging.getLogger(__name__)

INVOICE_GROUP = "billing"


def _send(payload: dict) -> None:
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    try:
        async_to_sync(channel_layer.group_send)(INVOICE_GROUP, payload)
    except Exception:
        # runs after commit; ledger state is already durable here
        logger.exception('invoice broadcast failed for %s', payload.get('invoiceId'))


def broadcast_invoice_update(invoice: Invoice) -> None:
    """Push the invoice's new totals to cashier screens once the transaction commits."""
    payload = {
        "type": "invoice.updated",
        "invoiceId": str(invoice.pk),
        "number": invoice.number,
        "status": invoice.status,
        "total": str(invoice.total),
        "paid": str(invoice.paid),
        "balance": str(invoice.balance),
    }
    transaction.on_commit(lambda: _send(payload))
