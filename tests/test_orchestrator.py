"""Tests for the conversation orchestrator."""

from datetime import datetime

import pytest
from sqlalchemy import select

from database.models import ConversationMessage, Lead, LeadPreference
from database.repositories import LeadRepository
from funnel.state_machine import ConversationCompleted
from funnel.states import LeadStatus
from llm.orchestrator import InboundMessage
from llm.prompt_templates import PromptTemplates
from llm.providers.base import GenerationError
from llm.update_extractor import UPDATE_DELIMITER

PHONE = "+34600111222"


async def _create_lead(session_factory, status="nuevo", **kwargs):
    async with session_factory() as session:
        lead = await LeadRepository(session).create(
            phone=PHONE, name="Lucía Gómez", status=status, tenant_id="default", **kwargs
        )
        await session.commit()
        return lead.id


async def _messages(session_factory, lead_id):
    async with session_factory() as session:
        result = await session.execute(
            select(ConversationMessage)
            .where(ConversationMessage.lead_id == lead_id)
            .order_by(ConversationMessage.created_at.asc())
        )
        return list(result.scalars().all())


async def _lead(session_factory, lead_id):
    async with session_factory() as session:
        return await session.get(Lead, lead_id)


@pytest.mark.asyncio
async def test_turn_persists_both_messages_and_applies_update(
    session_factory, orchestrator, generator, transport
):
    generator.outputs = [
        f'¡Genial! ¿Qué presupuesto tienes?\n{UPDATE_DELIMITER} {{"status": "calificado", "type": "particular"}}'
    ]
    lead_id = await _create_lead(session_factory)

    async with session_factory() as session:
        result = await orchestrator.handle_inbound(session, InboundMessage(
            phone=PHONE, text="Busco un SUV", external_id="wamid.in.1",
        ))
        await session.commit()

    assert result.sent is True
    assert result.reply == "¡Genial! ¿Qué presupuesto tienes?"
    assert [m.content for m in transport.sent] == ["¡Genial! ¿Qué presupuesto tienes?"]
    assert transport.read == ["wamid.in.1"]

    messages = await _messages(session_factory, lead_id)
    assert [(m.direction, m.status) for m in messages] == [("inbound", "received"), ("outbound", "sent")]
    assert messages[1].whatsapp_message_id == "wamid.out.1"
    assert UPDATE_DELIMITER not in messages[1].content

    lead = await _lead(session_factory, lead_id)
    assert lead.status == "calificado"
    assert lead.type == "particular"
    assert lead.last_contacted_at is not None
    assert lead.next_follow_up_date is None
    assert lead.last_message_at is not None


@pytest.mark.asyncio
async def test_unknown_phone_creates_lead(session_factory, orchestrator):
    async with session_factory() as session:
        result = await orchestrator.handle_inbound(session, InboundMessage(
            phone="+34611000000", text="Hola", name="Marta",
        ))
        await session.commit()

    lead = await _lead(session_factory, result.lead_id)
    assert lead.name == "Marta"
    assert lead.tenant_id == "default"


@pytest.mark.asyncio
async def test_history_excludes_current_message(session_factory, orchestrator, generator):
    await _create_lead(session_factory, status="activo")

    for text in ("Hola", "Busco un coche familiar"):
        async with session_factory() as session:
            await orchestrator.handle_inbound(session, InboundMessage(phone=PHONE, text=text))
            await session.commit()

    second_call = generator.calls[1]
    assert second_call["message"] == "Busco un coche familiar"
    assert [h.role for h in second_call["history"]] == ["user", "assistant"]
    assert second_call["history"][0].content == "Hola"
    assert "### Información actual del lead:" in second_call["system_prompt"]


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["manager", "comprador", "descartado", "inactivo"])
async def test_terminal_lead_is_not_answered(session_factory, orchestrator, generator, transport, status):
    lead_id = await _create_lead(session_factory, status=status)

    async with session_factory() as session:
        with pytest.raises(ConversationCompleted):
            await orchestrator.handle_inbound(session, InboundMessage(phone=PHONE, text="¿Hola?"))

    assert generator.calls == []
    assert transport.sent == []
    messages = await _messages(session_factory, lead_id)
    assert [m.direction for m in messages] == ["inbound"]
    lead = await _lead(session_factory, lead_id)
    assert lead.status == status


@pytest.mark.asyncio
async def test_escalation_notifies_once(session_factory, orchestrator, generator, notifier):
    generator.outputs = [
        f'Te paso con mi compañero.\n{UPDATE_DELIMITER} {{"status": "manager", "shouldEscalate": true}}'
    ]
    lead_id = await _create_lead(session_factory, status="evaluando")

    async with session_factory() as session:
        result = await orchestrator.handle_inbound(session, InboundMessage(phone=PHONE, text="Me lo quedo"))
        await session.commit()

    assert result.escalated is True
    assert notifier.notifications == [("Lucía Gómez", f"WhatsApp {PHONE}")]

    lead = await _lead(session_factory, lead_id)
    assert lead.status == "manager"
    assert lead.next_follow_up_date is not None

    # The lead is now past the bot; a second message never re-escalates
    async with session_factory() as session:
        with pytest.raises(ConversationCompleted):
            await orchestrator.handle_inbound(session, InboundMessage(phone=PHONE, text="¿Hola?"))
    assert len(notifier.notifications) == 1


@pytest.mark.asyncio
async def test_generation_failure_sends_fallback(session_factory, orchestrator, generator, transport):
    generator.outputs = [GenerationError("throttled")]
    lead_id = await _create_lead(session_factory, status="activo")

    async with session_factory() as session:
        result = await orchestrator.handle_inbound(session, InboundMessage(phone=PHONE, text="Hola"))
        await session.commit()

    assert result.fallback is True
    assert [m.content for m in transport.sent] == [PromptTemplates.FALLBACK_MESSAGE]
    lead = await _lead(session_factory, lead_id)
    assert lead.status == "activo"


@pytest.mark.asyncio
async def test_transport_failure_stores_no_outbound(session_factory, orchestrator, generator, transport):
    transport.fail = True
    generator.outputs = [f'Perfecto.\n{UPDATE_DELIMITER} {{"status": "activo"}}']
    lead_id = await _create_lead(session_factory, status="contactado")

    async with session_factory() as session:
        result = await orchestrator.handle_inbound(session, InboundMessage(
            phone=PHONE, text="Hola", external_id="wamid.in.9",
        ))
        await session.commit()

    assert result.sent is False
    assert result.outbound_message_id is None
    messages = await _messages(session_factory, lead_id)
    assert [m.direction for m in messages] == ["inbound"]
    # The funnel update is committed before delivery
    lead = await _lead(session_factory, lead_id)
    assert lead.status == "activo"


@pytest.mark.asyncio
async def test_embedding_failure_skips_grounding(session_factory, orchestrator, embedder, retriever, transport):
    embedder.fail = True
    lead_id = await _create_lead(session_factory, status="activo")

    async with session_factory() as session:
        result = await orchestrator.handle_inbound(session, InboundMessage(phone=PHONE, text="Hola"))
        await session.commit()

    assert result.sent is True
    assert retriever.calls == []
    messages = await _messages(session_factory, lead_id)
    assert messages[0].embedding is None


@pytest.mark.asyncio
async def test_inbound_resets_follow_up_counter(session_factory, orchestrator):
    lead_id = await _create_lead(
        session_factory, status="activo", follow_up_count=2, next_follow_up_date=datetime(2026, 1, 1)
    )

    async with session_factory() as session:
        await orchestrator.handle_inbound(session, InboundMessage(phone=PHONE, text="Sigo aquí"))
        await session.commit()

    lead = await _lead(session_factory, lead_id)
    assert lead.follow_up_count == 0
    assert lead.next_follow_up_date is None


def test_typing_delay_is_clamped(orchestrator):
    orchestrator.typing_delay_per_char = 0.05
    orchestrator.typing_delay_min = 2.0
    orchestrator.typing_delay_max = 15.0
    assert orchestrator.typing_delay("Hola") == 2.0
    assert orchestrator.typing_delay("x" * 100) == pytest.approx(5.0)
    assert orchestrator.typing_delay("x" * 1000) == 15.0


@pytest.mark.asyncio
async def test_reply_waits_for_typing_delay(session_factory, orchestrator, generator, fake_sleep):
    generator.outputs = ["x" * 100]
    await _create_lead(session_factory, status="activo")

    async with session_factory() as session:
        await orchestrator.handle_inbound(session, InboundMessage(phone=PHONE, text="Hola"))
        await session.commit()

    assert fake_sleep.delays == [pytest.approx(5.0)]


@pytest.mark.asyncio
async def test_welcome_moves_lead_to_contactado(session_factory, orchestrator, transport):
    lead_id = await _create_lead(session_factory)

    async with session_factory() as session:
        lead = await session.get(Lead, lead_id)
        assert await orchestrator.welcome(session, lead) is True
        await session.commit()

    assert transport.sent[0].content.startswith("Hola Lucía! Soy Pedro de Carrera Cars.")
    lead = await _lead(session_factory, lead_id)
    assert lead.status == LeadStatus.CONTACTADO.value
    assert lead.last_contacted_at is not None
    assert lead.next_follow_up_date is not None


@pytest.mark.asyncio
async def test_duplicate_inbound_skipped_when_dedup_enabled(session_factory, orchestrator, generator):
    orchestrator.dedupe_inbound = True
    await _create_lead(session_factory, status="activo")

    for _ in range(2):
        async with session_factory() as session:
            result = await orchestrator.handle_inbound(session, InboundMessage(
                phone=PHONE, text="Hola", external_id="wamid.dup",
            ))
            await session.commit()

    assert result.duplicate is True
    assert len(generator.calls) == 1


async def _preferences(session_factory, lead_id):
    async with session_factory() as session:
        result = await session.execute(select(LeadPreference).where(LeadPreference.lead_id == lead_id))
        return result.scalar_one_or_none()


@pytest.mark.asyncio
async def test_preferences_stored_and_shown_next_turn(session_factory, orchestrator, generator):
    generator.outputs = [
        f'¡Genial!\n{UPDATE_DELIMITER} {{"budget": "entre 15 y 20 mil", "preferredVehicleType": "SUV", '
        '"needsFinancing": true}',
        f'Entendido.\n{UPDATE_DELIMITER} {{"budget": "hasta 18000", "preferredFuelType": "diésel"}}',
    ]
    lead_id = await _create_lead(session_factory, status="activo")

    async with session_factory() as session:
        await orchestrator.handle_inbound(session, InboundMessage(phone=PHONE, text="Busco un SUV"))
        await session.commit()

    pref = await _preferences(session_factory, lead_id)
    assert pref.preferred_vehicle_type == "SUV"
    assert pref.needs_financing is True
    assert (pref.min_budget, pref.max_budget) == (15000.0, 20000.0)
    assert (await _lead(session_factory, lead_id)).budget == "entre 15 y 20 mil"

    async with session_factory() as session:
        await orchestrator.handle_inbound(session, InboundMessage(phone=PHONE, text="Mejor diésel"))
        await session.commit()

    assert "TIPO DE VEHÍCULO: SUV" in generator.calls[1]["system_prompt"]
    pref = await _preferences(session_factory, lead_id)
    assert pref.preferred_vehicle_type == "SUV"
    assert pref.preferred_fuel_type == "diésel"
    assert (pref.min_budget, pref.max_budget) == (None, 18000.0)


@pytest.mark.asyncio
async def test_turn_without_preferences_creates_no_row(session_factory, orchestrator, generator):
    generator.outputs = [f'Vale.\n{UPDATE_DELIMITER} {{"status": "activo"}}']
    lead_id = await _create_lead(session_factory)

    async with session_factory() as session:
        await orchestrator.handle_inbound(session, InboundMessage(phone=PHONE, text="Hola"))
        await session.commit()

    assert await _preferences(session_factory, lead_id) is None
