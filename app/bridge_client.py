"""
HTTP client for the WhatsApp bridge sidecar.

The sidecar hosts the actual WhatsApp Web session. Commands go out over
HTTP; lifecycle and message events come back as webhooks on
``POST /api/whatsapp/bridge/events`` and are turned into gateway events by
``parse_bridge_event``.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

import app.config as cfg
from app.state import InboundMessage

logger = logging.getLogger(__name__)

BRIDGE_EVENTS = {"qr", "authenticated", "ready", "disconnected", "auth_failure", "message"}


class BridgeClient:
    def __init__(
        self,
        settings: Optional[cfg.Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 15.0,
    ) -> None:
        self.settings = settings or cfg.settings
        self.session_id = self.settings.WA_SESSION_ID
        self.transport = transport
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.settings.WA_BRIDGE_SECRET:
            headers["X-Bridge-Secret"] = self.settings.WA_BRIDGE_SECRET
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.settings.WA_BRIDGE_URL.rstrip("/"),
            headers=self._headers(),
            timeout=self.timeout,
            transport=self.transport,
        )

    def _path(self, suffix: str) -> str:
        return f"/sessions/{quote(self.session_id, safe='')}{suffix}"

    async def _post(self, suffix: str, payload: Dict[str, Any]) -> None:
        async with self._client() as client:
            resp = await client.post(self._path(suffix), json=payload)
            resp.raise_for_status()

    async def initialize(self) -> None:
        logger.info("Starting bridge session %s", self.session_id)
        await self._post("/start", {"webhook": self.settings.WA_CALLBACK_URL})

    async def destroy(self) -> None:
        await self._post("/stop", {})

    async def send_message(self, chat_id: str, text: str) -> None:
        await self._post("/messages", {"chatId": chat_id, "text": text})

    async def reply(self, message: InboundMessage, text: str) -> None:
        await self._post(
            "/messages",
            {"chatId": message.chat_id, "text": text, "quotedMessageId": message.message_id},
        )

    async def send_typing(self, chat_id: str) -> None:
        await self._post(f"/chats/{quote(chat_id, safe='')}/typing", {})

    async def get_chats(self) -> List[Dict[str, Any]]:
        async with self._client() as client:
            resp = await client.get(self._path("/chats"))
            resp.raise_for_status()
            rows = resp.json() or []
        return [
            {
                "id": row.get("id"),
                "name": row.get("name"),
                "isGroup": bool(row.get("isGroup")),
                "unreadCount": row.get("unreadCount", 0),
            }
            for row in rows
            if isinstance(row, dict)
        ]


def parse_bridge_event(payload: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
    """``{"event": ..., "data": {...}}`` from the sidecar -> (event, gateway payload)."""
    event = str(payload.get("event") or "")
    data = payload.get("data") or {}
    if not isinstance(data, dict):
        data = {}
    if event == "message":
        message = InboundMessage(
            chat_id=str(data.get("chatId") or data.get("from") or ""),
            sender=str(data.get("from") or ""),
            body=str(data.get("body") or ""),
            from_me=bool(data.get("fromMe")),
            message_id=data.get("id"),
            sender_number=data.get("contactNumber"),
        )
        return event, {"message": message}
    return event, data
