"""Shared fakes for the object store, transport and inference backend."""

import copy
from typing import Any

import pytest

from contextkeeper.analysis.ledger import AnalysisLedger
from contextkeeper.analysis.store import ObjectStore, StoredRef
from contextkeeper.errors import TransportError
from contextkeeper.providers.base import InferenceBackend, LLMResponse
from contextkeeper.session.transport import ChatMessage, ConversationTransport


class FakeObjectStore(ObjectStore):
    """In-memory versioned store. Every revision is kept; reads return copies."""

    def __init__(self):
        self.revisions: dict[tuple[str, str], list[Any]] = {}
        self.writes = 0

    async def create_or_get_by_identity(self, obj):
        key = (obj.kind, obj.id)
        if key in self.revisions:
            return StoredRef(obj.id, len(self.revisions[key]), created=False)
        stored = copy.deepcopy(obj)
        stored.revision = 1
        self.revisions[key] = [stored]
        self.writes += 1
        return StoredRef(obj.id, 1, created=True)

    async def get_by_identity(self, kind, object_id):
        history = self.revisions.get((kind, object_id))
        if not history:
            return None
        return copy.deepcopy(history[-1])

    async def put_new_revision(self, obj):
        history = self.revisions.setdefault((obj.kind, obj.id), [])
        stored = copy.deepcopy(obj)
        stored.revision = len(history) + 1
        history.append(stored)
        self.writes += 1
        return stored.revision

    async def iterate(self, conversation_id, kind):
        for (k, _), history in list(self.revisions.items()):
            latest = history[-1]
            if k == kind and conversation_id in latest.conversations:
                yield copy.deepcopy(latest)

    async def list_conversations(self):
        seen: list[str] = []
        for history in self.revisions.values():
            for cid in history[-1].conversations:
                if cid not in seen:
                    seen.append(cid)
        return seen


class FakeTransport(ConversationTransport):
    """Serves canned histories and counts retrievals."""

    def __init__(self, histories: dict[str, list[ChatMessage]] | None = None):
        self.histories = histories or {}
        self.calls = 0
        self.fail = False

    async def retrieve_all_messages(self, conversation_id):
        self.calls += 1
        if self.fail:
            raise TransportError(f"cannot read {conversation_id}")
        return list(self.histories.get(conversation_id, []))


class FakeBackend(InferenceBackend):
    """Returns queued responses (or raises queued exceptions) in order."""

    def __init__(self, responses=None):
        super().__init__()
        self.responses = list(responses or [])
        self.calls: list[dict] = []

    async def chat(self, messages, model=None, on_stream=None, on_thinking_stream=None,
                   response_format=None, temperature=None, max_tokens=None, context_blob=None):
        self.calls.append({
            "messages": messages,
            "model": model,
            "response_format": response_format,
            "context_blob": context_blob,
        })
        if not self.responses:
            return LLMResponse(content="ok")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get_default_model(self):
        return "ollama/llama3.1"


def make_history(texts, sender="alice", start=1000.0):
    return [ChatMessage(text, sender, start + i) for i, text in enumerate(texts)]


@pytest.fixture
def store():
    return FakeObjectStore()


@pytest.fixture
def ledger(store):
    return AnalysisLedger(store)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def backend():
    return FakeBackend()
