from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from app.orchestrator import DocumentOrchestrator
from app.store import Store

from api.deps import current_user_id, get_orchestrator, get_store
from api.models import ContentUpdate, ErrorEnvelope, GenerateSphRequest, StatusUpdate

router = APIRouter(prefix="/api/documents", tags=["documents"])


@router.get("")
def list_documents(store: Store = Depends(get_store), user_id: str = Depends(current_user_id)):
    return {"documents": store.list_documents(user_id)}


@router.get("/{document_id}")
def get_document(document_id: str, store: Store = Depends(get_store), user_id: str = Depends(current_user_id)):
    document = store.get_document(document_id, user_id)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return document


@router.post("/generate-sph", status_code=201)
async def generate_sph(
    payload: GenerateSphRequest,
    request: Request,
    orchestrator: DocumentOrchestrator = Depends(get_orchestrator),
    user_id: str = Depends(current_user_id),
):
    """Generate an SPH straight from structured data (no chat, no extraction)."""
    result, document = await orchestrator.generate_from_data(payload.model_dump(), user_id)
    if document is None:
        env = ErrorEnvelope(
            code="validation_error",
            message="Data SPH tidak valid",
            details={"errors": result.errors, "warnings": result.warnings},
        )
        return JSONResponse(status_code=400, content=env.model_dump())
    paths = orchestrator.renderer.paths_for(document["id"])
    request.state.reply_type = "document_generated"
    return {
        "document": document,
        "validation": result.to_dict(),
        "documentPath": paths.html_path,
        "pdfPath": paths.pdf_path,
    }


@router.patch("/{document_id}/content")
async def update_content(
    document_id: str,
    payload: ContentUpdate,
    orchestrator: DocumentOrchestrator = Depends(get_orchestrator),
    user_id: str = Depends(current_user_id),
):
    return await orchestrator.update_content(document_id, user_id, payload.content)


@router.post("/{document_id}/regenerate-pdf")
async def regenerate_pdf(
    document_id: str,
    orchestrator: DocumentOrchestrator = Depends(get_orchestrator),
    user_id: str = Depends(current_user_id),
):
    return await orchestrator.regenerate_pdf(document_id, user_id)


@router.patch("/{document_id}/status")
def update_status(
    document_id: str,
    payload: StatusUpdate,
    orchestrator: DocumentOrchestrator = Depends(get_orchestrator),
    user_id: str = Depends(current_user_id),
):
    return orchestrator.update_status(document_id, user_id, payload.status)


@router.delete("/{document_id}")
def delete_document(
    document_id: str,
    orchestrator: DocumentOrchestrator = Depends(get_orchestrator),
    user_id: str = Depends(current_user_id),
):
    orchestrator.delete_document(document_id, user_id)
    return {"ok": True}
