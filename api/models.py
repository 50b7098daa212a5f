from __future__ import annotations
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from app.state import DocumentStatus


class ChatRequest(BaseModel):
    message: str = Field(..., description="User message")
    session_id: Optional[str] = Field(None, description="Existing chat session id")


class ChatResponse(BaseModel):
    session_id: str
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SessionCreate(BaseModel):
    title: Optional[str] = None


class ServiceItemIn(BaseModel):
    serviceName: Optional[str] = None
    connectionCount: Optional[float] = None
    installationFee: Optional[float] = None
    normalMonthlyFee: Optional[float] = None
    discountedMonthlyFee: Optional[float] = None
    discountPercentage: Optional[float] = None


class GenerateSphRequest(BaseModel):
    customerName: Optional[str] = None
    requestDate: Optional[str] = None
    services: List[ServiceItemIn] = Field(default_factory=list)
    notes: Optional[str] = None
    attachments: Optional[List[str]] = None


class ContentUpdate(BaseModel):
    content: str


class StatusUpdate(BaseModel):
    status: DocumentStatus


class SendMessageRequest(BaseModel):
    number: str
    message: str


class RegisterNumberRequest(BaseModel):
    phone: str
    display_name: Optional[str] = None
    user_id: Optional[str] = None


class BridgeEvent(BaseModel):
    event: str
    data: Dict[str, Any] = Field(default_factory=dict)


class ErrorEnvelope(BaseModel):
    code: str
    message: str
    details: Optional[dict] = None
