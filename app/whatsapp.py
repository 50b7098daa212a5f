"""
WhatsApp channel gateway.

Owns the external messaging client (built per connection attempt from an
injected factory), tracks its lifecycle through an explicit transition
table, publishes status changes to live-status subscribers and gates
inbound messages through the allowed-sender registry before handing them
to the document orchestrator.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from datetime import datetime, timezone
from enum import Enum
from io import BytesIO
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Set, Tuple

import qrcode

from app.intent_helpers import _normalize_msisdn, _strip_command_prefix, _to_chat_id
from app.live_status import LiveStatusBroadcaster
from app.llm import MSG_EMPTY
from app.state import InboundMessage, SenderStatus

logger = logging.getLogger(__name__)

MSG_UNKNOWN_NUMBER = "Nomor WhatsApp tidak dikenali."
MSG_NOT_REGISTERED = "Nomor Anda belum terdaftar. Kirimkan nomor Anda ke admin untuk didaftarkan."
MSG_NOT_APPROVED = "Nomor Anda belum disetujui oleh admin."
MSG_EMPTY_QUERY = 'Tulis pesan Anda setelah "/ai" atau langsung kirim pertanyaan.'


class GatewayError(Exception):
    pass


class ClientNotConnected(GatewayError):
    pass


class ClientState(str, Enum):
    UNINITIALIZED = "UNINITIALIZED"
    INITIALIZING = "INITIALIZING"
    AWAITING_SCAN = "AWAITING_SCAN"
    AUTHENTICATED = "AUTHENTICATED"
    READY = "READY"
    DISCONNECTED = "DISCONNECTED"
    AUTH_FAILED = "AUTH_FAILED"


_ALL = tuple(ClientState)
_LIVE = (
    ClientState.INITIALIZING,
    ClientState.AWAITING_SCAN,
    ClientState.AUTHENTICATED,
    ClientState.READY,
)

# (state, event) -> next state; anything not listed is ignored
TRANSITIONS: Dict[Tuple[ClientState, str], ClientState] = {}
for _s in (ClientState.UNINITIALIZED, ClientState.DISCONNECTED, ClientState.AUTH_FAILED):
    TRANSITIONS[(_s, "initialize")] = ClientState.INITIALIZING
for _s in (ClientState.INITIALIZING, ClientState.AWAITING_SCAN):
    TRANSITIONS[(_s, "qr")] = ClientState.AWAITING_SCAN
    TRANSITIONS[(_s, "authenticated")] = ClientState.AUTHENTICATED
TRANSITIONS[(ClientState.AUTHENTICATED, "ready")] = ClientState.READY
for _s in _LIVE:
    TRANSITIONS[(_s, "disconnected")] = ClientState.DISCONNECTED
for _s in _ALL:
    TRANSITIONS[(_s, "auth_failure")] = ClientState.AUTH_FAILED
    TRANSITIONS[(_s, "init_failed")] = ClientState.UNINITIALIZED
    TRANSITIONS[(_s, "destroy")] = ClientState.UNINITIALIZED


def transition(state: ClientState, event: str) -> Optional[ClientState]:
    """Next state for ``event``, or None when the event is not valid in ``state``."""
    return TRANSITIONS.get((state, event))


def render_qr_data_url(code: str) -> str:
    img = qrcode.make(code)
    buf = BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


EventCallback = Callable[[str, Dict[str, Any]], Awaitable[None]]


class ExternalClient(Protocol):
    """What the gateway needs from a messaging client."""

    async def initialize(self) -> None: ...

    async def destroy(self) -> None: ...

    async def send_message(self, chat_id: str, text: str) -> None: ...

    async def reply(self, message: InboundMessage, text: str) -> None: ...

    async def send_typing(self, chat_id: str) -> None: ...

    async def get_chats(self) -> List[Dict[str, Any]]: ...


ClientFactory = Callable[[EventCallback], ExternalClient]


async def _destroy_quietly(client: Optional[ExternalClient]) -> None:
    """Best-effort teardown; the client may already be gone on the other side."""
    if client is None:
        return
    try:
        await client.destroy()
    except Exception:
        logger.warning("Could not destroy messaging client", exc_info=True)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class WhatsAppGateway:
    def __init__(
        self,
        store: Any,
        orchestrator: Any,
        client_factory: ClientFactory,
        broadcaster: Optional[LiveStatusBroadcaster] = None,
        init_timeout: float = 60.0,
        qr_renderer: Callable[[str], str] = render_qr_data_url,
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.client_factory = client_factory
        self.broadcaster = broadcaster or LiveStatusBroadcaster()
        self.init_timeout = init_timeout
        self.qr_renderer = qr_renderer

        self.state = ClientState.UNINITIALIZED
        self._client: Optional[ExternalClient] = None
        self._initializing = False
        self._is_connected = False
        self._qr_code: Optional[str] = None
        self._last_activity: Optional[str] = None
        self._last_error: Optional[str] = None
        self._tasks: Set[asyncio.Task] = set()
        self._connect_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------ state

    def _apply(self, event: str) -> bool:
        nxt = transition(self.state, event)
        if nxt is None:
            logger.warning("Ignoring client event %r in state %s", event, self.state.value)
            return False
        if nxt is not self.state:
            logger.info("Client state %s -> %s", self.state.value, nxt.value, extra={"state": nxt.value})
        self.state = nxt
        return True

    def _publish(self, event: str, data: Dict[str, Any]) -> None:
        self.broadcaster.publish(event, data)

    def get_status(self) -> Dict[str, Any]:
        return {
            "isConnected": self._is_connected,
            "state": self.state.value,
            "qrCode": self._qr_code,
            "lastActivity": self._last_activity,
            "lastError": self._last_error,
        }

    @property
    def ready(self) -> bool:
        return self.state is ClientState.READY and self._client is not None

    # ------------------------------------------------------------------ lifecycle

    async def connect(self) -> None:
        """Start one initialisation attempt; concurrent calls collapse into the first."""
        if self._client is not None or self._initializing:
            return
        self._initializing = True
        client: Optional[ExternalClient] = None
        try:
            client = self.client_factory(self.handle_client_event)
            self._client = client
            self._last_error = None
            self._apply("initialize")
            self._publish("status", self.get_status())
            await asyncio.wait_for(client.initialize(), timeout=self.init_timeout)
            logger.info("Messaging client initialised")
        except Exception as exc:
            message = "initialisation timed out" if isinstance(exc, asyncio.TimeoutError) else str(exc)
            logger.error("Messaging client initialisation failed: %s", message)
            await _destroy_quietly(client)
            self._client = None
            self._is_connected = False
            self._qr_code = None
            self._last_error = message
            self._apply("init_failed")
            self._publish("error", {"message": message})
            raise GatewayError(message) from exc
        finally:
            self._initializing = False

    async def _connect_in_background(self) -> None:
        try:
            await self.connect()
        except GatewayError as exc:
            logger.warning("Background connect failed: %s", exc)

    def ensure_connecting(self) -> None:
        """Start a background connect unless a client exists or one is already on its way."""
        if self._client is not None or self._initializing:
            return
        if self._connect_task is not None and not self._connect_task.done():
            return
        self._connect_task = self._spawn(self._connect_in_background())

    async def disconnect(self) -> None:
        client, self._client = self._client, None
        await _destroy_quietly(client)
        self._is_connected = False
        self._qr_code = None
        self._last_activity = None
        self._last_error = None
        self._apply("destroy")
        self._publish("status", self.get_status())
        logger.info("Messaging client disconnected")

    async def handle_client_event(self, event: str, payload: Dict[str, Any]) -> None:
        """Entry point for everything the external client reports."""
        if event == "message":
            message = payload.get("message")
            if isinstance(message, InboundMessage):
                self._spawn(self._handle_inbound_logged(message))
            return

        if event == "qr":
            if not self._apply("qr"):
                return
            self._qr_code = self.qr_renderer(str(payload.get("qr", "")))
            self._publish("qr", {"qrCode": self._qr_code})
        elif event == "authenticated":
            if not self._apply("authenticated"):
                return
            self._qr_code = None
            self._publish("status", self.get_status())
        elif event == "ready":
            if not self._apply("ready"):
                return
            self._qr_code = None
            self._is_connected = True
            self._last_activity = _now()
            self._publish("ready", {"isConnected": True})
        elif event == "disconnected":
            if not self._apply("disconnected"):
                return
            reason = str(payload.get("reason") or "")
            self._is_connected = False
            self._qr_code = None
            client, self._client = self._client, None
            await _destroy_quietly(client)
            self._publish("disconnected", {"reason": reason, "isConnected": False})
        elif event == "auth_failure":
            self._apply("auth_failure")
            message = str(payload.get("message") or "authentication failed")
            self._is_connected = False
            self._qr_code = None
            client, self._client = self._client, None
            await _destroy_quietly(client)
            self._last_error = message
            self._publish("auth_failure", {"message": message})
        else:
            logger.debug("Unhandled client event %r", event)

    # ------------------------------------------------------------------ outbound

    async def send_message(self, number: str, text: str) -> None:
        if not self.ready:
            raise ClientNotConnected("WhatsApp client not connected")
        chat_id = number if "@" in number else _to_chat_id(number)
        try:
            await self._client.send_message(chat_id, text)  # type: ignore[union-attr]
        except Exception as exc:
            raise GatewayError(str(exc)) from exc
        self._last_activity = _now()

    async def get_chats(self) -> List[Dict[str, Any]]:
        if not self.ready:
            return []
        try:
            return await self._client.get_chats()  # type: ignore[union-attr]
        except Exception:
            logger.exception("Could not list chats")
            return []

    # ------------------------------------------------------------------ inbound

    def _spawn(self, coro: Awaitable[None]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)  # type: ignore[arg-type]
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _handle_inbound_logged(self, message: InboundMessage) -> None:
        try:
            await self.handle_inbound_message(message)
        except Exception:
            logger.exception("Error handling inbound message", extra={"sender": message.sender})

    async def _reply(self, message: InboundMessage, text: str) -> str:
        client = self._client
        if client is None:
            logger.warning("No client to reply to %s", message.chat_id)
            return text
        await client.reply(message, text)
        return text

    async def handle_inbound_message(self, message: InboundMessage) -> Optional[str]:
        """Gate, route and answer one inbound message; returns the reply text sent."""
        if message.from_me:
            return None
        self._last_activity = _now()

        number = _normalize_msisdn(message.sender_number or message.sender)
        if not number:
            return await self._reply(message, MSG_UNKNOWN_NUMBER)

        sender = await asyncio.to_thread(self.store.get_sender, number)
        if sender is None:
            logger.info("Rejected message from unregistered number", extra={"sender": number})
            return await self._reply(message, MSG_NOT_REGISTERED)
        if sender["status"] != SenderStatus.APPROVED.value:
            logger.info("Rejected message from unapproved number", extra={"sender": number})
            return await self._reply(message, MSG_NOT_APPROVED)

        query = _strip_command_prefix(message.body or "").strip()
        if not query:
            return await self._reply(message, MSG_EMPTY_QUERY)

        client = self._client
        if client is not None:
            try:
                await client.send_typing(message.chat_id)
            except Exception:
                logger.warning("Typing indicator failed for %s", message.chat_id)

        owner = await asyncio.to_thread(self.store.resolve_owner_user_id, number)
        reply = await self.orchestrator.route_message(query, owner)
        return await self._reply(message, reply.content or MSG_EMPTY)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._client is not None:
            await self.disconnect()
