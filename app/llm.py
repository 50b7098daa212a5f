"""
Completion collaborator.

Wraps an OpenAI-compatible chat endpoint behind a single coroutine,
``complete(messages) -> str``, that fails with a small set of typed errors.
Callers that talk to a human use ``send_to_llm`` which maps every failure to
a fixed Indonesian sentence instead of raising.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, Sequence, Tuple

import openai
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

import app.config as cfg
from app.prompts import SYSTEM_INSTRUCTION

logger = logging.getLogger(__name__)

# (role, content) pairs; role is one of "system", "user", "assistant"
PromptMessages = Sequence[Tuple[str, str]]

MSG_UNAVAILABLE = "Maaf, layanan AI sedang tidak tersedia. Silakan coba lagi nanti."
MSG_UNAUTHORIZED = "Maaf, API key tidak valid. Silakan hubungi administrator."
MSG_RATE_LIMITED = "Maaf, terlalu banyak permintaan. Silakan coba lagi dalam beberapa saat."
MSG_TIMEOUT = "Maaf, permintaan timeout. Silakan coba lagi."
MSG_UNKNOWN = "Maaf, terjadi kesalahan dalam menghubungi layanan AI. Silakan coba lagi."
MSG_EMPTY = "Maaf, tidak ada respons dari AI."


class CompletionError(Exception):
    """Generic completion failure."""

    user_message = MSG_UNKNOWN


class CompletionUnavailable(CompletionError):
    user_message = MSG_UNAVAILABLE


class CompletionUnauthorized(CompletionError):
    user_message = MSG_UNAUTHORIZED


class CompletionRateLimited(CompletionError):
    user_message = MSG_RATE_LIMITED


class CompletionTimeout(CompletionError):
    user_message = MSG_TIMEOUT


def _to_langchain(messages: PromptMessages) -> List[Any]:
    out: List[Any] = []
    for role, content in messages:
        if role == "system":
            out.append(SystemMessage(content=content))
        elif role == "assistant":
            out.append(AIMessage(content=content))
        else:
            out.append(HumanMessage(content=content))
    return out


def _build_chat_model(settings: cfg.Settings) -> Optional[ChatOpenAI]:
    if not settings.LLM_API_URL or not settings.LLM_API_KEY:
        return None
    return ChatOpenAI(
        model=settings.LLM_MODEL,
        temperature=settings.LLM_TEMPERATURE,
        max_tokens=settings.LLM_MAX_TOKENS,
        timeout=settings.LLM_TIMEOUT_SECONDS,
        max_retries=0,
        base_url=settings.LLM_API_URL,
        api_key=settings.LLM_API_KEY,
        # some gateways authenticate with x-api-key instead of a bearer token
        default_headers={"x-api-key": settings.LLM_API_KEY},
    )


class CompletionClient:
    """Single-attempt chat completion with typed failures."""

    def __init__(self, llm: Any = None, settings: Optional[cfg.Settings] = None) -> None:
        self.settings = settings or cfg.settings
        self.llm = llm if llm is not None else _build_chat_model(self.settings)

    @property
    def configured(self) -> bool:
        return self.llm is not None

    async def complete(self, messages: PromptMessages) -> str:
        if self.llm is None:
            raise CompletionUnavailable("LLM_API_URL / LLM_API_KEY not configured")
        try:
            resp = await self.llm.ainvoke(_to_langchain(messages))
        except openai.AuthenticationError as exc:
            raise CompletionUnauthorized(str(exc)) from exc
        except openai.RateLimitError as exc:
            raise CompletionRateLimited(str(exc)) from exc
        except (openai.APITimeoutError, asyncio.TimeoutError) as exc:
            raise CompletionTimeout(str(exc)) from exc
        except openai.APIStatusError as exc:
            if exc.status_code == 401:
                raise CompletionUnauthorized(str(exc)) from exc
            if exc.status_code == 429:
                raise CompletionRateLimited(str(exc)) from exc
            raise CompletionError(str(exc)) from exc
        except Exception as exc:
            raise CompletionError(str(exc)) from exc
        content = resp.content if hasattr(resp, "content") else str(resp)
        if isinstance(content, list):
            content = "".join(p.get("text", "") if isinstance(p, dict) else str(p) for p in content)
        return (content or "").strip() or MSG_EMPTY


async def ask(completion: Any, prompt: str, system: str = SYSTEM_INSTRUCTION) -> str:
    """System instruction + one user turn. Raises CompletionError."""
    return await completion.complete([("system", system), ("user", prompt)])


async def send_to_llm(completion: Any, prompt: str, system: str = SYSTEM_INSTRUCTION) -> str:
    """Like ``ask`` but never raises: failures become a fixed user-facing sentence."""
    try:
        return await ask(completion, prompt, system)
    except CompletionError as exc:
        logger.warning("LLM call failed (%s): %s", type(exc).__name__, exc)
        return exc.user_message
