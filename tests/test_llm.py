import asyncio

import httpx
import openai
import pytest

from app.llm import (
    MSG_EMPTY,
    MSG_RATE_LIMITED,
    MSG_UNAUTHORIZED,
    MSG_UNAVAILABLE,
    CompletionClient,
    CompletionError,
    CompletionRateLimited,
    CompletionTimeout,
    CompletionUnauthorized,
    CompletionUnavailable,
    send_to_llm,
)

_REQ = httpx.Request("POST", "https://llm.example/v1/chat/completions")


class DummyResp:
    def __init__(self, content):
        self.content = content


class DummyLLM:
    def __init__(self, content="Halo!", exc=None):
        self.content = content
        self.exc = exc
        self.seen = None

    async def ainvoke(self, messages):
        self.seen = messages
        if self.exc:
            raise self.exc
        return DummyResp(self.content)


def _status_error(cls, code):
    return cls("boom", response=httpx.Response(code, request=_REQ), body=None)


def test_unconfigured_client_is_unavailable():
    client = CompletionClient()
    assert not client.configured
    with pytest.raises(CompletionUnavailable):
        asyncio.run(client.complete([("user", "halo")]))
    assert asyncio.run(send_to_llm(client, "halo")) == MSG_UNAVAILABLE


def test_complete_converts_roles_and_returns_text():
    llm = DummyLLM("  Tentu, saya bantu.  ")
    client = CompletionClient(llm=llm)
    out = asyncio.run(client.complete([("system", "sys"), ("user", "halo"), ("assistant", "hai")]))
    assert out == "Tentu, saya bantu."
    assert [m.type for m in llm.seen] == ["system", "human", "ai"]


def test_empty_content_becomes_fixed_sentence():
    client = CompletionClient(llm=DummyLLM(""))
    assert asyncio.run(client.complete([("user", "x")])) == MSG_EMPTY


@pytest.mark.parametrize(
    "exc, expected",
    [
        (_status_error(openai.AuthenticationError, 401), CompletionUnauthorized),
        (_status_error(openai.RateLimitError, 429), CompletionRateLimited),
        (openai.APITimeoutError(request=_REQ), CompletionTimeout),
        (asyncio.TimeoutError(), CompletionTimeout),
        (RuntimeError("socket closed"), CompletionError),
    ],
)
def test_upstream_errors_are_typed(exc, expected):
    client = CompletionClient(llm=DummyLLM(exc=exc))
    with pytest.raises(expected):
        asyncio.run(client.complete([("user", "x")]))


def test_send_to_llm_never_raises():
    auth = CompletionClient(llm=DummyLLM(exc=_status_error(openai.AuthenticationError, 401)))
    assert asyncio.run(send_to_llm(auth, "x")) == MSG_UNAUTHORIZED
    limited = CompletionClient(llm=DummyLLM(exc=_status_error(openai.RateLimitError, 429)))
    assert asyncio.run(send_to_llm(limited, "x")) == MSG_RATE_LIMITED
