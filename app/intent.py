"""LLM intent router: one completion call per message, never raises."""

from __future__ import annotations

import logging
from typing import Any

from app.intent_helpers import _ensure_json
from app.llm import ask
from app.prompts import INTENT_GENERAL, build_intent_prompt, intent_names

logger = logging.getLogger(__name__)


async def classify_intent(text: str, completion: Any) -> str:
    """Return one of the defined intent names, ``general_conversation`` on any failure."""
    try:
        raw = await ask(completion, build_intent_prompt(text))
        obj = _ensure_json(raw)
        intent = obj.get("intent") if obj else None
        if isinstance(intent, str) and intent in intent_names():
            logger.info("Intent detected: %s", intent, extra={"intent": intent})
            return intent
        logger.warning("Could not detect intent from LLM output, using %s", INTENT_GENERAL)
    except Exception:
        logger.exception("Intent classification failed, using %s", INTENT_GENERAL)
    return INTENT_GENERAL
