"""Data model shared by the quotation pipeline and the channel gateway."""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ReplyType(str, Enum):
    """Value of ``metadata["type"]`` on assistant messages."""

    GENERAL = "general"
    GUIDANCE_NEEDED = "guidance_needed"
    VALIDATION_ERROR = "validation_error"
    DOCUMENT_GENERATED = "document_generated"
    ERROR = "error"


class DocumentType(str, Enum):
    QUOTATION = "quotation"
    CONTRACT = "contract"
    INVOICE = "invoice"


class DocumentStatus(str, Enum):
    DRAFT = "draft"
    GENERATED = "generated"
    SIGNED = "signed"
    SENT = "sent"


# Documents only ever move forward through this order
DOCUMENT_STATUS_ORDER: List[DocumentStatus] = [
    DocumentStatus.DRAFT,
    DocumentStatus.GENERATED,
    DocumentStatus.SIGNED,
    DocumentStatus.SENT,
]

# Short label used in document titles
DOCUMENT_TYPE_LABELS: Dict[DocumentType, str] = {
    DocumentType.QUOTATION: "SPH",
    DocumentType.CONTRACT: "Kontrak",
    DocumentType.INVOICE: "Invoice",
}


class SenderStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class ServiceItem:
    """One priced service line. Currency fields are integral IDR."""

    service_name: Optional[str] = None
    connection_count: Optional[int] = None
    installation_fee: Optional[int] = None  # PSB
    normal_monthly_fee: Optional[int] = None
    discounted_monthly_fee: Optional[int] = None
    discount_percentage: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceItem":
        return cls(
            service_name=data.get("serviceName"),
            connection_count=data.get("connectionCount"),
            installation_fee=data.get("installationFee"),
            normal_monthly_fee=data.get("normalMonthlyFee"),
            discounted_monthly_fee=data.get("discountedMonthlyFee"),
            discount_percentage=data.get("discountPercentage"),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "serviceName": self.service_name,
            "connectionCount": self.connection_count,
            "installationFee": self.installation_fee,
            "normalMonthlyFee": self.normal_monthly_fee,
            "discountedMonthlyFee": self.discounted_monthly_fee,
        }
        if self.discount_percentage is not None:
            out["discountPercentage"] = self.discount_percentage
        return out


@dataclass
class QuotationRequest:
    """A (possibly partial) SPH request as extracted from a chat message."""

    customer_name: Optional[str] = None
    request_date: Optional[str] = None  # YYYY-MM-DD
    services: List[ServiceItem] = field(default_factory=list)
    notes: Optional[str] = None
    attachments: Optional[List[str]] = None
    is_complete: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuotationRequest":
        services = data.get("services") or []
        attachments = data.get("attachments")
        return cls(
            customer_name=data.get("customerName"),
            request_date=data.get("requestDate"),
            services=[ServiceItem.from_dict(s) for s in services if isinstance(s, dict)],
            notes=data.get("notes"),
            attachments=list(attachments) if isinstance(attachments, list) else None,
            is_complete=data.get("isComplete") is True,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "customerName": self.customer_name,
            "requestDate": self.request_date,
            "services": [s.to_dict() for s in self.services],
            "notes": self.notes,
            "isComplete": self.is_complete,
        }
        if self.attachments is not None:
            out["attachments"] = list(self.attachments)
        return out


@dataclass
class ValidationResult:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {"isValid": self.is_valid, "errors": list(self.errors), "warnings": list(self.warnings)}


@dataclass
class AIReply:
    """Reply produced by the orchestrator for either channel."""

    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    intent: Optional[str] = None  # routing decision, not persisted

    @classmethod
    def of(cls, content: str, reply_type: ReplyType, **extra: Any) -> "AIReply":
        meta: Dict[str, Any] = {"type": reply_type.value}
        meta.update(extra)
        return cls(content=content, metadata=meta)

    @property
    def reply_type(self) -> str:
        return str(self.metadata.get("type", ""))


@dataclass
class InboundMessage:
    """A message received from the external messaging client."""

    chat_id: str
    sender: str  # raw sender id, e.g. "6281234567890@c.us"
    body: str
    from_me: bool = False
    message_id: Optional[str] = None
    sender_number: Optional[str] = None  # contact number if the transport resolved one
