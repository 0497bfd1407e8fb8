"""Tests for scheduled follow-ups and inactivity handling."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from database.models import ConversationMessage, Lead
from database.repositories import LeadRepository
from funnel.followups import FollowUpNotAllowed, FollowUpNotDelivered, FollowUpService, LeadNotFound
from funnel.states import LeadStatus
from llm.prompt_templates import PromptTemplates

NOW = datetime(2026, 3, 2, 10, 0, 0)


@pytest.fixture
def service(orchestrator):
    return FollowUpService(orchestrator, threshold_hours=24, max_follow_ups=3)


async def _add_lead(session_factory, **kwargs):
    defaults = {"name": "Lead", "status": "activo", "tenant_id": "default"}
    defaults.update(kwargs)
    async with session_factory() as session:
        lead = await LeadRepository(session).create(**defaults)
        await session.commit()
        return lead.id


async def _get(session_factory, lead_id):
    async with session_factory() as session:
        return await session.get(Lead, lead_id)


@pytest.mark.asyncio
async def test_silent_lead_gets_status_specific_follow_up(session_factory, service, transport, fake_sleep):
    lead_id = await _add_lead(session_factory, phone="+34600000001", last_message_at=NOW - timedelta(hours=25))

    async with session_factory() as session:
        report = await service.process_follow_ups(session, now=NOW)
        await session.commit()

    assert report.sent == 1
    assert transport.sent[0].content == PromptTemplates.FOLLOW_UP_MESSAGES[LeadStatus.ACTIVO][0]
    assert fake_sleep.delays == []

    lead = await _get(session_factory, lead_id)
    assert lead.follow_up_count == 1
    assert lead.next_follow_up_date == NOW + timedelta(hours=24)
    assert lead.last_contacted_at == NOW


@pytest.mark.asyncio
async def test_scheduled_date_drives_next_attempt(session_factory, service, transport):
    await _add_lead(
        session_factory, phone="+34600000002", status="calificado", follow_up_count=1,
        last_message_at=NOW - timedelta(days=2), next_follow_up_date=NOW + timedelta(hours=3),
    )
    due_id = await _add_lead(
        session_factory, phone="+34600000003", status="calificado", follow_up_count=1,
        last_message_at=NOW - timedelta(days=2), next_follow_up_date=NOW - timedelta(minutes=5),
    )

    async with session_factory() as session:
        report = await service.process_follow_ups(session, now=NOW)
        await session.commit()

    assert report.sent == 1
    assert transport.sent[0].to == "+34600000003"
    assert transport.sent[0].content == PromptTemplates.FOLLOW_UP_MESSAGES[LeadStatus.CALIFICADO][1]
    assert (await _get(session_factory, due_id)).follow_up_count == 2


@pytest.mark.asyncio
async def test_recent_human_and_phoneless_leads_are_left_alone(session_factory, service, transport):
    await _add_lead(session_factory, phone="+34600000004", last_message_at=NOW - timedelta(hours=2))
    await _add_lead(session_factory, phone="+34600000005", status="manager", last_message_at=NOW - timedelta(days=3))
    await _add_lead(session_factory, email="sin@telefono.es", last_message_at=NOW - timedelta(days=3))

    async with session_factory() as session:
        report = await service.process_follow_ups(session, now=NOW)

    assert report.sent == 0
    assert transport.sent == []


@pytest.mark.asyncio
async def test_failed_send_leaves_lead_untouched(session_factory, service, transport):
    transport.fail = True
    lead_id = await _add_lead(session_factory, phone="+34600000006", last_message_at=NOW - timedelta(days=2))

    async with session_factory() as session:
        report = await service.process_follow_ups(session, now=NOW)
        await session.commit()

    assert (report.sent, report.failed) == (0, 1)
    assert (await _get(session_factory, lead_id)).follow_up_count == 0


@pytest.mark.asyncio
async def test_exhausted_silent_leads_become_inactive(session_factory, service, transport):
    gone_id = await _add_lead(
        session_factory, phone="+34600000007", status="contactado", follow_up_count=3,
        last_message_at=NOW - timedelta(days=7),
    )
    waiting_id = await _add_lead(
        session_factory, phone="+34600000008", status="contactado", follow_up_count=3,
        last_message_at=NOW - timedelta(days=2),
    )

    async with session_factory() as session:
        report = await service.process_follow_ups(session, now=NOW)
        await session.commit()

    assert report.inactivated == 1
    assert transport.sent == []
    assert (await _get(session_factory, gone_id)).status == "inactivo"
    assert (await _get(session_factory, waiting_id)).status == "contactado"


# ── Manual follow-up ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_manual_follow_up_sends_and_reschedules(session_factory, service, transport):
    lead_id = await _add_lead(session_factory, phone="+34600000009", status="calificado", follow_up_count=1)

    async with session_factory() as session:
        count = await service.send_one(session, lead_id, now=NOW)
        await session.commit()

    assert count == 2
    assert transport.sent[0].content == PromptTemplates.FOLLOW_UP_MESSAGES[LeadStatus.CALIFICADO][1]
    lead = await _get(session_factory, lead_id)
    assert lead.follow_up_count == 2
    assert lead.next_follow_up_date == NOW + timedelta(hours=24)

    async with session_factory() as session:
        stored = (await session.execute(
            select(ConversationMessage).where(ConversationMessage.lead_id == lead_id)
        )).scalar_one()
    assert stored.direction == "outbound"
    assert stored.metadata_json["is_manual"] is True


@pytest.mark.asyncio
async def test_manual_follow_up_unknown_lead(session_factory, service):
    async with session_factory() as session:
        with pytest.raises(LeadNotFound):
            await service.send_one(session, "no-such-lead", now=NOW)


@pytest.mark.asyncio
@pytest.mark.parametrize("kwargs, reason", [
    ({"email": "sin@telefono.es"}, "no phone"),
    ({"phone": "+34600000010", "follow_up_count": 3}, "Maximum"),
    ({"phone": "+34600000011", "status": "manager"}, "doesn't allow"),
])
async def test_manual_follow_up_rejections(session_factory, service, transport, kwargs, reason):
    lead_id = await _add_lead(session_factory, **kwargs)

    async with session_factory() as session:
        with pytest.raises(FollowUpNotAllowed, match=reason):
            await service.send_one(session, lead_id, now=NOW)

    assert transport.sent == []


@pytest.mark.asyncio
async def test_manual_follow_up_not_delivered(session_factory, service, transport):
    transport.fail = True
    lead_id = await _add_lead(session_factory, phone="+34600000012")

    async with session_factory() as session:
        with pytest.raises(FollowUpNotDelivered):
            await service.send_one(session, lead_id, now=NOW)

    assert (await _get(session_factory, lead_id)).follow_up_count == 0


def test_follow_up_message_reuses_last_variant():
    last = PromptTemplates.FOLLOW_UP_MESSAGES[LeadStatus.PROPUESTA][-1]
    assert PromptTemplates.follow_up_message("propuesta", 7) == last
    assert PromptTemplates.follow_up_message("manager", 0) == PromptTemplates.DEFAULT_FOLLOW_UP


# ── Cron endpoint ─────────────────────────────────────────────────

class StubFollowUpService:
    def __init__(self):
        self.runs = 0

    async def process_follow_ups(self, session):
        from funnel.followups import FollowUpReport
        self.runs += 1
        return FollowUpReport(sent=2, failed=0, inactivated=1)

    async def send_one(self, session, lead_id):
        if lead_id == "missing":
            raise LeadNotFound(lead_id)
        if lead_id == "exhausted":
            raise FollowUpNotAllowed("Maximum follow-ups reached")
        if lead_id == "undeliverable":
            raise FollowUpNotDelivered(lead_id)
        return 2


@pytest.fixture
def cron_client(client, monkeypatch):
    from api.main import app
    from api.services import get_services
    from database.session import get_db

    async def no_db():
        yield None

    stub = StubFollowUpService()
    monkeypatch.setattr(get_services(), "follow_up_service", stub)
    app.dependency_overrides[get_db] = no_db
    yield client, stub
    app.dependency_overrides.clear()


def test_cron_requires_secret(cron_client):
    client, stub = cron_client
    assert client.get("/api/v1/cron/follow-ups").status_code == 401
    assert client.get("/api/v1/cron/follow-ups", headers={"Authorization": "Bearer wrong"}).status_code == 401
    assert stub.runs == 0


def test_cron_runs_follow_ups(cron_client):
    client, stub = cron_client
    resp = client.get("/api/v1/cron/follow-ups", headers={"Authorization": "Bearer cron-secret"})
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "sent": 2, "failed": 0, "inactivated": 1}
    assert stub.runs == 1


def test_manual_follow_up_endpoint(cron_client):
    client, _ = cron_client
    auth = {"Authorization": "Bearer cron-secret"}

    assert client.post("/api/v1/leads/lead-1/follow-up").status_code == 401

    resp = client.post("/api/v1/leads/lead-1/follow-up", headers=auth)
    assert resp.status_code == 200
    assert resp.json()["follow_up_count"] == 2


@pytest.mark.parametrize("lead_id, status_code", [
    ("missing", 404),
    ("exhausted", 400),
    ("undeliverable", 502),
])
def test_manual_follow_up_endpoint_errors(cron_client, lead_id, status_code):
    client, _ = cron_client
    resp = client.post(f"/api/v1/leads/{lead_id}/follow-up", headers={"Authorization": "Bearer cron-secret"})
    assert resp.status_code == status_code
