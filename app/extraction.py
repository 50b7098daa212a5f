"""Structured extraction of a QuotationRequest from a natural-language message."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional

from app.intent_helpers import _coerce_int, _ensure_json
from app.llm import CompletionError, ask
from app.prompts import build_extraction_prompt
from app.state import AIReply, QuotationRequest, ReplyType

logger = logging.getLogger(__name__)

MSG_PARSE_FAILED = (
    "Maaf, saya kesulitan memahami detail yang Anda berikan. "
    "Bisa tolong ulangi dengan format yang lebih jelas?"
)

_NUMERIC_FIELDS = (
    "connectionCount",
    "installationFee",
    "normalMonthlyFee",
    "discountedMonthlyFee",
)


@dataclass
class ExtractionResult:
    request: Optional[QuotationRequest] = None
    error_reply: Optional[AIReply] = None

    @property
    def ok(self) -> bool:
        return self.request is not None


def _normalize_service(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Numbers stay as the model produced them; numeric strings become ints."""
    out = dict(raw)
    for key in _NUMERIC_FIELDS:
        val = out.get(key)
        if isinstance(val, str):
            out[key] = _coerce_int(val)
    return out


def _to_request(obj: Dict[str, Any]) -> QuotationRequest:
    services = obj.get("services")
    if isinstance(services, list):
        obj = dict(obj, services=[_normalize_service(s) for s in services if isinstance(s, dict)])
    return QuotationRequest.from_dict(obj)


async def extract_quotation(
    message: str, completion: Any, today: Optional[date] = None
) -> ExtractionResult:
    today = today or date.today()
    try:
        raw = await ask(completion, build_extraction_prompt(message, today.isoformat()))
    except CompletionError as exc:
        logger.warning("Extraction call failed (%s): %s", type(exc).__name__, exc)
        return ExtractionResult(error_reply=AIReply.of(exc.user_message, ReplyType.ERROR))

    obj = _ensure_json(raw)
    if obj is None:
        logger.warning("No JSON object in extraction response")
        return ExtractionResult(error_reply=AIReply.of(MSG_PARSE_FAILED, ReplyType.ERROR))

    request = _to_request(obj)
    logger.info(
        "Extracted SPH request customer=%r services=%d complete=%s",
        request.customer_name,
        len(request.services),
        request.is_complete,
    )
    return ExtractionResult(request=request)
