import asyncio
import json
import os
import sys
import warnings

import pytest

# Ensure project root is on sys.path for `import app`, `import api`, etc.
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

# Keep test output quiet and the completion client unconfigured
os.environ["ENABLE_ACCESS_LOG"] = "0"
os.environ.pop("LLM_API_URL", None)
os.environ.pop("LLM_API_KEY", None)

# Suppress LangChain deprecation warnings
warnings.filterwarnings("ignore", category=DeprecationWarning, module="langchain.*")

from app.llm import CompletionError  # noqa: E402
from app.renderer import DocumentRenderer, RenderError  # noqa: E402
from app.store import Store  # noqa: E402


MAJU_JAYA_MESSAGE = (
    "buatkan SPH untuk PT Maju Jaya, internet 100 Mbps 2 sambungan, PSB 0, "
    "bulanan 800000 dari 1000000, tanggal 2024-01-15"
)


def maju_jaya(**overrides):
    service = {
        "serviceName": "Internet 100 Mbps",
        "connectionCount": 2,
        "installationFee": 0,
        "normalMonthlyFee": 1000000,
        "discountedMonthlyFee": 800000,
    }
    service.update(overrides.pop("service", {}))
    data = {
        "customerName": "PT Maju Jaya",
        "requestDate": "2024-01-15",
        "services": [service],
        "notes": None,
        "isComplete": True,
    }
    data.update(overrides)
    return data


class FakeCompletion:
    """Scripted completion collaborator: returns (or raises) responses in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    async def complete(self, messages):
        self.calls.append(list(messages))
        if not self.responses:
            raise CompletionError("no scripted response left")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FailingRenderer(DocumentRenderer):
    def render(self, document_id, html, title=""):
        raise RenderError("renderer offline")


class FakeClient:
    """In-memory stand-in for the messaging client."""

    def __init__(self, on_event, fail=None, hang=False):
        self.on_event = on_event
        self.fail = fail
        self.hang = hang
        self.initialized = 0
        self.destroyed = 0
        self.sent = []
        self.replies = []
        self.typing = []

    async def initialize(self):
        self.initialized += 1
        if self.hang:
            await asyncio.sleep(3600)
        if self.fail:
            raise self.fail

    async def destroy(self):
        self.destroyed += 1

    async def send_message(self, chat_id, text):
        self.sent.append((chat_id, text))

    async def reply(self, message, text):
        self.replies.append((message.chat_id, text))

    async def send_typing(self, chat_id):
        self.typing.append(chat_id)

    async def get_chats(self):
        return [{"id": "628111@c.us", "name": "Budi", "isGroup": False, "unreadCount": 0}]


@pytest.fixture
def store(tmp_path):
    return Store(str(tmp_path / "test.sqlite3"))


@pytest.fixture
def renderer(tmp_path):
    return DocumentRenderer(uploads_dir=str(tmp_path / "uploads"))


@pytest.fixture
def intent_json():
    return lambda name: json.dumps({"intent": name})
