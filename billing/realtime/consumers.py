import json

from channels.generic.websocket import AsyncWebsocketConsumer

from billing.services.broadcast import INVOICE_GROUP


class InvoiceUpdatesConsumer(AsyncWebsocketConsumer):
    """Live invoice totals for cashier screens."""

    async def connect(self):
        user = self.scope.get("user")
        if not (user and user.is_authenticated):
            await self.close()
            return
        await self.channel_layer.group_add(INVOICE_GROUP, self.channel_name)
        await self.accept()
        await self.send(json.dumps({"type": "welcome", "message": "connected"}))

    async def disconnect(self, close_code):
        await self.channel_layer.group_discard(INVOICE_GROUP, self.channel_name)

    async def invoice_updated(self, event):
        # event: {"type": "invoice.updated", "invoiceId": ..., "status": ..., "paid": ..., "balance": ...}
        await self.send(json.dumps(event))
