import json

from channels.generic.websocket import AsyncWebsocketConsumer


class QueueUpdatesConsumer(AsyncWebsocketConsumer):
    """Pushes queue changes to every signed-in user of one clinic."""

    group_name = None

    async def connect(self):
        user = self.scope.get("user")
        if not user or not user.is_authenticated or not getattr(user, "tenant_id", None):
            await self.close()
            return
        self.group_name = f"queue.{user.tenant_id}"
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()
        await self.send(json.dumps({"type": "welcome", "message": "connected"}))

    async def disconnect(self, close_code):
        if self.group_name:
            await self.channel_layer.group_discard(self.group_name, self.channel_name)

    async def queue_update(self, event):
        # event: {"type": "queue.update", "event": "...", "entryId": int, "queueNumber": "A001", ...}
        await self.send(json.dumps(event))
