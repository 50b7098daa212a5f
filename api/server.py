from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

import app.config as cfg
from app.bridge_client import BridgeClient
from app.live_status import LiveStatusBroadcaster
from app.llm import CompletionClient
from app.logging import json_logger_middleware
from app.orchestrator import DocumentOrchestrator
from app.renderer import DocumentRenderer, RenderError
from app.state import MessageRole
from app.store import DuplicateSender, InvalidStatusTransition, NotFound, Store
from app.whatsapp import ClientNotConnected, GatewayError, WhatsAppGateway

from api.deps import current_user_id, get_orchestrator, get_store
from api.documents import router as documents_router
from api.models import ChatRequest, ChatResponse, ErrorEnvelope, SessionCreate
from api.whatsapp import router as whatsapp_router

logger = logging.getLogger(__name__)


def _envelope(request: Request, status: int, code: str, message: str, details: Optional[dict] = None):
    env = ErrorEnvelope(code=code, message=message, details={"path": str(request.url), **(details or {})})
    return JSONResponse(status_code=status, content=env.model_dump())


@asynccontextmanager
async def lifespan(app: FastAPI):
    state = app.state
    settings: cfg.Settings = state.settings
    if state.store is None:
        state.store = Store(settings.DATABASE_PATH)
    if cfg.SEED_DEFAULT_ADMIN:
        state.store.ensure_default_admin()
    if state.completion is None:
        state.completion = CompletionClient(settings=settings)
        if not state.completion.configured:
            logger.warning("LLM_API_URL / LLM_API_KEY not set; AI replies will report the service as unavailable")
    if state.renderer is None:
        state.renderer = DocumentRenderer(settings=settings)
    state.orchestrator = DocumentOrchestrator(state.store, state.completion, state.renderer, settings)
    if state.gateway is None:
        state.gateway = WhatsAppGateway(
            state.store,
            state.orchestrator,
            client_factory=lambda _on_event: BridgeClient(settings),
            broadcaster=LiveStatusBroadcaster(settings.SSE_PING_INTERVAL),
            init_timeout=settings.WA_INIT_TIMEOUT,
        )
    if settings.WA_CONNECT_ON_STARTUP:
        state.gateway.ensure_connecting()
    yield
    await state.gateway.shutdown()


def create_app(
    store: Optional[Store] = None,
    completion: Any = None,
    renderer: Optional[DocumentRenderer] = None,
    gateway: Optional[WhatsAppGateway] = None,
    settings: Optional[cfg.Settings] = None,
) -> FastAPI:
    settings = settings or cfg.settings
    app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.completion = completion
    app.state.renderer = renderer
    app.state.gateway = gateway

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    if cfg.ENABLE_ACCESS_LOG:
        app.middleware("http")(json_logger_middleware())

    uploads_dir = renderer.uploads_dir if renderer is not None else settings.UPLOADS_DIR
    os.makedirs(uploads_dir, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=uploads_dir), name="uploads")

    app.include_router(documents_router)
    app.include_router(whatsapp_router)

    # ------------ Routes ------------

    @app.get("/health")
    def health(request: Request) -> dict:
        gw = request.app.state.gateway
        return {
            "ok": True,
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "whatsapp": gw.state.value if gw is not None else None,
        }

    @app.get("/api/ai/sessions")
    def list_sessions(store: Store = Depends(get_store), user_id: str = Depends(current_user_id)):
        return {"sessions": store.list_sessions(user_id)}

    @app.post("/api/ai/sessions", status_code=201)
    def create_session(
        payload: SessionCreate,
        store: Store = Depends(get_store),
        user_id: str = Depends(current_user_id),
    ):
        return store.create_session(user_id, payload.title)

    @app.get("/api/ai/sessions/{session_id}/messages")
    def list_messages(
        session_id: str,
        store: Store = Depends(get_store),
        user_id: str = Depends(current_user_id),
    ):
        if store.get_session(session_id, user_id) is None:
            raise HTTPException(status_code=404, detail="Chat session not found")
        return {"messages": store.list_messages(session_id)}

    @app.post("/api/ai/chat", response_model=ChatResponse)
    async def chat(
        payload: ChatRequest,
        request: Request,
        store: Store = Depends(get_store),
        orchestrator: DocumentOrchestrator = Depends(get_orchestrator),
        user_id: str = Depends(current_user_id),
    ):
        text = (payload.message or "").strip()
        if not text:
            raise HTTPException(status_code=400, detail="Missing 'message'")

        if payload.session_id:
            session = await asyncio.to_thread(store.get_session, payload.session_id, user_id)
            if session is None:
                raise HTTPException(status_code=404, detail="Chat session not found")
        else:
            session = await asyncio.to_thread(store.create_session, user_id, text[:50])
        session_id = session["id"]

        await asyncio.to_thread(store.add_message, session_id, MessageRole.USER, text)
        reply = await orchestrator.route_message(text, user_id)
        await asyncio.to_thread(
            store.add_message, session_id, MessageRole.ASSISTANT, reply.content, reply.metadata
        )
        await asyncio.to_thread(store.touch_session, session_id)

        request.state.channel = "web"
        request.state.selected_intent = reply.intent
        request.state.reply_type = reply.reply_type
        return ChatResponse(session_id=session_id, content=reply.content, metadata=reply.metadata)

    # ------------ Exception Handlers ------------

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _envelope(request, exc.status_code, str(exc.status_code), str(exc.detail or "HTTP error"))

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound):
        return _envelope(request, 404, "not_found", str(exc))

    @app.exception_handler(DuplicateSender)
    async def duplicate_handler(request: Request, exc: DuplicateSender):
        return _envelope(request, 409, "duplicate", str(exc))

    @app.exception_handler(InvalidStatusTransition)
    async def status_handler(request: Request, exc: InvalidStatusTransition):
        return _envelope(request, 400, "invalid_status_transition", str(exc))

    @app.exception_handler(ClientNotConnected)
    async def not_connected_handler(request: Request, exc: ClientNotConnected):
        return _envelope(request, 409, "client_not_connected", str(exc))

    @app.exception_handler(GatewayError)
    async def gateway_handler(request: Request, exc: GatewayError):
        return _envelope(request, 502, "gateway_error", str(exc))

    @app.exception_handler(RenderError)
    async def render_handler(request: Request, exc: RenderError):
        return _envelope(request, 500, "render_failed", "Gagal membuat dokumen")

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled error on %s", request.url.path, exc_info=exc)
        return _envelope(request, 500, "internal_error", "Unexpected server error")

    return app


app = create_app()
