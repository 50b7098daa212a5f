from __future__ import annotations

import logging
from typing import AsyncIterator, Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import StreamingResponse

from app.bridge_client import BRIDGE_EVENTS, parse_bridge_event
from app.live_status import format_sse
from app.state import SenderStatus
from app.store import Store
from app.whatsapp import WhatsAppGateway

from api.deps import get_gateway, get_store
from api.models import BridgeEvent, RegisterNumberRequest, SendMessageRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/whatsapp", tags=["whatsapp"])

# how often the stream checks whether the client went away
_POLL_SECONDS = 1.0


@router.get("/status")
def status(gateway: WhatsAppGateway = Depends(get_gateway)):
    return gateway.get_status()


@router.post("/connect")
async def connect(gateway: WhatsAppGateway = Depends(get_gateway)):
    await gateway.connect()
    return gateway.get_status()


@router.post("/disconnect")
async def disconnect(gateway: WhatsAppGateway = Depends(get_gateway)):
    await gateway.disconnect()
    return gateway.get_status()


@router.post("/send-message")
async def send_message(payload: SendMessageRequest, gateway: WhatsAppGateway = Depends(get_gateway)):
    if not payload.number.strip() or not payload.message.strip():
        raise HTTPException(status_code=400, detail="number and message are required")
    await gateway.send_message(payload.number, payload.message)
    return {"ok": True}


@router.get("/chats")
async def chats(gateway: WhatsAppGateway = Depends(get_gateway)):
    return {"chats": await gateway.get_chats()}


async def live_status_stream(
    gateway: WhatsAppGateway,
    is_disconnected: Callable[[], Awaitable[bool]],
    poll_seconds: float = _POLL_SECONDS,
) -> AsyncIterator[str]:
    """SSE frames for one subscriber: the current status, then every published event.

    The first subscriber also starts the client connection. The subscription is
    released however the stream ends.
    """
    sub = gateway.broadcaster.subscribe()
    try:
        gateway.ensure_connecting()
        yield format_sse("status", gateway.get_status())
        while not await is_disconnected():
            item = await sub.next_event(timeout=poll_seconds)
            if item is not None:
                yield format_sse(*item)
    finally:
        gateway.broadcaster.unsubscribe(sub)


@router.get("/events")
async def events(
    request: Request,
    authorization: Optional[str] = None,
    gateway: WhatsAppGateway = Depends(get_gateway),
):
    """Live status stream (server-sent events)."""
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing authorization")

    return StreamingResponse(
        live_status_stream(gateway, request.is_disconnected),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )


# ------------ Number registry ------------


@router.get("/numbers")
def list_numbers(store: Store = Depends(get_store)):
    return {"numbers": store.list_senders()}


@router.post("/numbers/register", status_code=201)
def register_number(payload: RegisterNumberRequest, store: Store = Depends(get_store)):
    try:
        return store.register_sender(payload.phone, payload.display_name, payload.user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post("/numbers/{phone}/approve")
def approve_number(phone: str, store: Store = Depends(get_store)):
    return store.set_sender_status(phone, SenderStatus.APPROVED)


@router.post("/numbers/{phone}/reject")
def reject_number(phone: str, store: Store = Depends(get_store)):
    return store.set_sender_status(phone, SenderStatus.REJECTED)


# ------------ Bridge webhook ------------


@router.post("/bridge/events")
async def bridge_events(
    payload: BridgeEvent,
    request: Request,
    gateway: WhatsAppGateway = Depends(get_gateway),
    x_bridge_secret: Optional[str] = Header(None),
):
    secret = request.app.state.settings.WA_BRIDGE_SECRET
    if secret and x_bridge_secret != secret:
        raise HTTPException(status_code=401, detail="Invalid bridge secret")
    if payload.event not in BRIDGE_EVENTS:
        logger.debug("Ignoring bridge event %r", payload.event)
        return {"ok": True, "ignored": True}
    event, data = parse_bridge_event(payload.model_dump())
    request.state.channel = "whatsapp"
    await gateway.handle_client_event(event, data)
    return {"ok": True}
