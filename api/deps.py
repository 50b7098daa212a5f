from __future__ import annotations

from typing import Optional

from fastapi import Header, Request

from app.orchestrator import DocumentOrchestrator
from app.store import Store
from app.whatsapp import WhatsAppGateway


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_orchestrator(request: Request) -> DocumentOrchestrator:
    return request.app.state.orchestrator


def get_gateway(request: Request) -> WhatsAppGateway:
    return request.app.state.gateway


def current_user_id(request: Request, x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity from ``X-User-Id``; requests without one act as the default admin."""
    if x_user_id:
        return x_user_id
    return request.app.state.store.ensure_default_admin()["id"]
