"""
Document orchestrator.

Routes a message to a general reply or the SPH pipeline
(extract -> validate -> render -> persist) and owns the document lifecycle
operations used by the documents API. A document row is written only after
rendering succeeded, so a failed render never leaves a half-created document.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import date
from typing import Any, Dict, Optional, Tuple

import app.config as cfg
from app.extraction import extract_quotation
from app.intent import classify_intent
from app.llm import send_to_llm
from app.prompts import INTENT_CREATE_QUOTATION, INTENT_GENERAL
from app.renderer import DocumentRenderer, RenderError
from app.sph_template import render_sph_html
from app.state import (
    DOCUMENT_TYPE_LABELS,
    AIReply,
    DocumentStatus,
    DocumentType,
    QuotationRequest,
    ReplyType,
    ValidationResult,
)
from app.store import NotFound, Store
from app.validation import missing_fields, sanitize, validate

logger = logging.getLogger(__name__)

MSG_PROCESSING_FAILED = "Maaf, terjadi kesalahan dalam memproses pesan Anda. Silakan coba lagi."
MSG_RENDER_FAILED = "Maaf, terjadi kesalahan saat membuat dokumen SPH. Silakan coba lagi."


def document_title(request: QuotationRequest, doc_type: DocumentType = DocumentType.QUOTATION) -> str:
    return f"{DOCUMENT_TYPE_LABELS[doc_type]} - {request.customer_name} - {request.request_date}"


def _guidance_text(request: QuotationRequest) -> str:
    text = (
        f"Tentu, saya bisa siapkan penawaran untuk **{request.customer_name or 'pelanggan Anda'}**. "
        "Namun, saya masih memerlukan beberapa detail tambahan:\n\n"
    )
    return text + "\n".join(f"- {name}" for name in missing_fields(request))


def _validation_text(result: ValidationResult) -> str:
    text = "⚠️ **Data SPH tidak lengkap atau tidak valid:**\n\n" + "\n".join(result.errors)
    if result.warnings:
        text += "\n\n**Peringatan:**\n" + "\n".join(result.warnings)
    return text + "\n\nSilakan perbaiki data dan coba lagi."


class DocumentOrchestrator:
    def __init__(
        self,
        store: Store,
        completion: Any,
        renderer: DocumentRenderer,
        settings: Optional[cfg.Settings] = None,
    ) -> None:
        self.store = store
        self.completion = completion
        self.renderer = renderer
        self.settings = settings or cfg.settings

    # ------------------------------------------------------------------ routing

    async def route_message(self, text: str, owner_user_id: str) -> AIReply:
        """Classify and answer one message. Never raises."""
        intent = INTENT_GENERAL
        try:
            intent = await classify_intent(text, self.completion)
            if intent == INTENT_CREATE_QUOTATION:
                reply = await self.process_quotation_request(text, owner_user_id)
            else:
                content = await send_to_llm(self.completion, text)
                reply = AIReply.of(content, ReplyType.GENERAL)
        except Exception:
            logger.exception("Message processing failed", extra={"intent": intent})
            reply = AIReply.of(MSG_PROCESSING_FAILED, ReplyType.ERROR)
        reply.intent = intent
        return reply

    async def process_quotation_request(
        self, text: str, owner_user_id: str, today: Optional[date] = None
    ) -> AIReply:
        extracted = await extract_quotation(text, self.completion, today=today)
        request = extracted.request
        if request is None:
            return extracted.error_reply or AIReply.of(MSG_PROCESSING_FAILED, ReplyType.ERROR)

        if not (request.is_complete and request.customer_name and request.services):
            logger.info("SPH request incomplete, asking for: %s", missing_fields(request))
            return AIReply.of(_guidance_text(request), ReplyType.GUIDANCE_NEEDED)

        result = validate(request, today=today)
        if not result.is_valid:
            logger.info("SPH request invalid: %d error(s)", len(result.errors))
            return AIReply.of(
                _validation_text(result),
                ReplyType.VALIDATION_ERROR,
                errors=result.errors,
                warnings=result.warnings,
            )

        try:
            document = await self.generate_document(request, owner_user_id)
        except RenderError:
            return AIReply.of(MSG_RENDER_FAILED, ReplyType.ERROR)
        return self._generated_reply(request, document)

    def _generated_reply(self, request: QuotationRequest, document: Dict[str, Any]) -> AIReply:
        doc_id = document["id"]
        paths = self.renderer.paths_for(doc_id)
        public = self.settings.PUBLIC_BASE_URL.rstrip("/")
        content = (
            "✅ **SPH berhasil dibuat!**\n\n"
            "**Detail SPH:**\n"
            f"- Pelanggan: {request.customer_name}\n"
            f"- Tanggal: {request.request_date}\n"
            f"- Jumlah layanan: {len(request.services)}\n"
            f"- ID Dokumen: {doc_id}\n\n"
            "📄 **Link Dokumen:**\n"
            f"🔍 **Lihat & Edit**: {self.settings.FRONTEND_URL.rstrip('/')}/documents/{doc_id}\n"
            f"📥 **Download PDF**: {public}{paths.pdf_path}\n"
            f"🌐 **Preview HTML**: {public}{paths.html_path}\n\n"
            "Klik link di atas untuk melihat, mengedit, atau mengunduh dokumen SPH."
        )
        return AIReply.of(
            content,
            ReplyType.DOCUMENT_GENERATED,
            documentId=doc_id,
            documentPath=paths.html_path,
            pdfPath=paths.pdf_path,
        )

    # ------------------------------------------------------------------ lifecycle

    async def generate_document(self, request: QuotationRequest, owner_user_id: str) -> Dict[str, Any]:
        """Render then persist exactly one document. Raises RenderError before any row is written."""
        document_id = str(uuid.uuid4())
        title = document_title(request)
        html = render_sph_html(request, self.settings)
        files = await asyncio.to_thread(self.renderer.render, document_id, html, title)
        try:
            document = await asyncio.to_thread(
                self.store.create_document,
                document_id,
                owner_user_id,
                DocumentType.QUOTATION,
                title,
                html,
                request.to_dict(),
                DocumentStatus.GENERATED,
                files.pdf_path,
            )
        except Exception:
            # no row, so the files must not outlive it
            await asyncio.to_thread(self.renderer.remove, document_id)
            raise
        logger.info("Document generated", extra={"document_id": document_id})
        return document

    async def generate_from_data(
        self, data: Dict[str, Any], owner_user_id: str, today: Optional[date] = None
    ) -> Tuple[ValidationResult, Optional[Dict[str, Any]]]:
        """Structured-data entry point: sanitize, validate, then generate when valid."""
        request = sanitize(QuotationRequest.from_dict(data), today=today)
        result = validate(request, today=today)
        if not result.is_valid:
            return result, None
        return result, await self.generate_document(request, owner_user_id)

    async def _require(self, document_id: str, user_id: str) -> Dict[str, Any]:
        document = await asyncio.to_thread(self.store.get_document, document_id, user_id)
        if document is None:
            raise NotFound(f"document {document_id} not found")
        return document

    async def update_content(self, document_id: str, user_id: str, content: str) -> Dict[str, Any]:
        """Replace the stored HTML and re-render the same file pair.

        The files are swapped in only once both rendered, so a failed edit
        leaves the row and the files on the previous content.
        """
        document = await self._require(document_id, user_id)
        files = await asyncio.to_thread(self.renderer.rerender, document_id, content, document["title"])
        await asyncio.to_thread(self.store.update_document_content, document_id, user_id, content)
        await asyncio.to_thread(self.store.update_document_file, document_id, user_id, files.pdf_path)
        return await self._require(document_id, user_id)

    async def regenerate_pdf(self, document_id: str, user_id: str) -> Dict[str, Any]:
        document = await self._require(document_id, user_id)
        pdf_path = await asyncio.to_thread(
            self.renderer.write_pdf, document_id, document.get("content") or "", document["title"]
        )
        await asyncio.to_thread(self.store.update_document_file, document_id, user_id, pdf_path)
        return await self._require(document_id, user_id)

    # sync: served from threadpool routes
    def update_status(self, document_id: str, user_id: str, status: DocumentStatus) -> Dict[str, Any]:
        return self.store.update_document_status(document_id, user_id, status)

    def delete_document(self, document_id: str, user_id: str) -> None:
        if not self.store.delete_document(document_id, user_id):
            raise NotFound(f"document {document_id} not found")
        self.renderer.remove(document_id)
