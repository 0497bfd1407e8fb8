"""Shared fixtures for the Carrera Cars lead bot tests."""

import os
import pytest
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Ensure we use test/mock settings
os.environ.setdefault("LLM_PROVIDER", "openai")
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("WHATSAPP_WEBHOOK_VERIFY_TOKEN", "wa-verify")
os.environ.setdefault("FACEBOOK_WEBHOOK_VERIFY_TOKEN", "fb-verify")
os.environ.setdefault("CRON_SECRET", "cron-secret")

from api.channels.base import ChannelResponse
from database.models import Base
from funnel.state_machine import FunnelStateMachine
from llm.orchestrator import ConversationOrchestrator
from retrieval.context_builder import ContextBuilder
from retrieval.knowledge_retriever import RetrievalResult


# ── Fakes ─────────────────────────────────────────────────────────

class FakeEmbedder:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    async def embed_text(self, text):
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("embedding backend down")
        return [0.1] * 8


class FakeRetriever:
    def __init__(self, result=None):
        self.result = result or RetrievalResult()
        self.calls = []

    async def retrieve(self, session, query_embedding, tenant_id):
        self.calls.append(tenant_id)
        return self.result


class FakeGenerator:
    """Returns queued outputs in order; an Exception instance is raised instead."""

    def __init__(self, *outputs):
        self.outputs = list(outputs) or ["¡Hola! ¿Qué coche buscas?"]
        self.calls = []

    async def generate(self, system_prompt, history, new_message):
        self.calls.append({"system_prompt": system_prompt, "history": history, "message": new_message})
        output = self.outputs.pop(0) if len(self.outputs) > 1 else self.outputs[0]
        if isinstance(output, Exception):
            raise output
        return output


class FakeTransport:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []
        self.read = []

    async def send_message(self, message):
        if self.fail:
            return ChannelResponse(success=False, error="WhatsApp API error 500")
        self.sent.append(message)
        return ChannelResponse(success=True, message_id=f"wamid.out.{len(self.sent)}")

    async def mark_read(self, message_id):
        self.read.append(message_id)
        return True


class FakeNotifier:
    def __init__(self):
        self.notifications = []

    def notify_escalation(self, lead_name, conversation_label):
        self.notifications.append((lead_name, conversation_label))


class FakeSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


# ── Database ──────────────────────────────────────────────────────

@pytest.fixture
def session_factory(tmp_path):
    """File-backed SQLite database; NullPool keeps connections off any one event loop."""
    db_path = tmp_path / "leadbot.db"

    sync_engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()

    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    engine.sync_engine.dispose()


# ── Orchestrator ──────────────────────────────────────────────────

@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def retriever():
    return FakeRetriever()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def orchestrator(embedder, retriever, generator, transport, notifier, fake_sleep):
    return ConversationOrchestrator(
        embedding_service=embedder,
        retriever=retriever,
        context_builder=ContextBuilder(),
        generator=generator,
        transport=transport,
        notifier=notifier,
        state_machine=FunnelStateMachine(escalation_follow_up_hours=24),
        history_limit=10,
        follow_up_threshold_hours=24,
        sleep=fake_sleep,
    )


@pytest.fixture
def client():
    """FastAPI test client; the lifespan is not run so services can be swapped in."""
    from fastapi.testclient import TestClient
    from api.main import app
    return TestClient(app)
