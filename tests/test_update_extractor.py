"""Tests for splitting model output into reply text and lead update."""

from funnel.states import LeadStatus, LeadType, Timeframe
from llm.update_extractor import (
    DEFAULT_REPLY,
    UPDATE_DELIMITER,
    Reply,
    ReplyWithUpdate,
    extract,
)


def test_plain_reply_without_block():
    result = extract("¡Perfecto! ¿Qué presupuesto tienes?")
    assert type(result) is Reply
    assert result.text == "¡Perfecto! ¿Qué presupuesto tienes?"
    assert result.update.is_empty
    assert result.should_escalate is False


def test_reply_with_update():
    raw = (
        "¡Genial! Te paso opciones.\n"
        f'{UPDATE_DELIMITER} {{"status": "calificado", "budget": "15000", '
        '"expectedPurchaseTimeframe": "un_mes", "type": "particular"}'
    )
    result = extract(raw)
    assert isinstance(result, ReplyWithUpdate)
    assert result.text == "¡Genial! Te paso opciones."
    assert result.update.status == LeadStatus.CALIFICADO
    assert result.update.budget == "15000"
    assert result.update.expected_purchase_timeframe == Timeframe.UN_MES
    assert result.update.type == LeadType.PARTICULAR
    assert UPDATE_DELIMITER not in result.text


def test_escalation_flag():
    result = extract(f'Te paso con mi compañero.\n{UPDATE_DELIMITER} {{"status": "manager", "shouldEscalate": true}}')
    assert result.should_escalate is True
    assert result.update.status == LeadStatus.MANAGER


def test_malformed_block_keeps_reply_and_drops_update():
    result = extract(f"Vale, lo miro.\n{UPDATE_DELIMITER} {{status: calificado")
    assert type(result) is Reply
    assert result.text == "Vale, lo miro."
    assert result.update.is_empty


def test_malformed_block_without_reply_text_uses_default():
    result = extract(f"{UPDATE_DELIMITER} not json at all")
    assert result.text == DEFAULT_REPLY


def test_unknown_keys_and_values_are_dropped():
    raw = f'Ok.\n{UPDATE_DELIMITER} {{"status": "vip", "name": "Hacker", "type": "empresa"}}'
    result = extract(raw)
    assert result.update.status is None
    assert result.update.type == LeadType.EMPRESA
    assert "name" not in result.update.as_dict()


def test_numeric_budget_becomes_string():
    result = extract(f'Ok.\n{UPDATE_DELIMITER} {{"budget": 20000}}')
    assert result.update.budget == "20000"


def test_code_fenced_block():
    raw = f'Perfecto.\n{UPDATE_DELIMITER}\n```json\n{{"status": "activo"}}\n```'
    result = extract(raw)
    assert result.update.status == LeadStatus.ACTIVO
    assert result.text == "Perfecto."


def test_empty_output_gets_default_reply():
    assert extract("").text == DEFAULT_REPLY
    assert extract(None).text == DEFAULT_REPLY


def test_preference_keys_are_extracted():
    raw = (
        "¡Perfecto! Busco opciones.\n"
        f'{UPDATE_DELIMITER} {{"preferredVehicleType": "SUV", "preferredBrand": "Toyota", '
        '"preferredFuelType": "híbrido", "preferredColors": "blanco, gris", '
        '"maxKilometers": "80.000 km", "minYear": 2019, "needsFinancing": "sí"}'
    )
    prefs = extract(raw).preferences
    assert prefs.as_dict() == {
        "preferred_vehicle_type": "SUV",
        "preferred_brand": "Toyota",
        "preferred_fuel_type": "híbrido",
        "preferred_colors": ["blanco", "gris"],
        "max_kilometers": 80000,
        "min_year": 2019,
        "needs_financing": True,
    }


def test_malformed_preference_values_are_dropped():
    raw = (
        "Vale.\n"
        f'{UPDATE_DELIMITER} {{"minYear": 1800, "maxYear": "pronto", "maxKilometers": -5, '
        '"preferredBrand": "  ", "preferredColors": 42, "needsFinancing": "quizás", '
        '"preferredTransmission": "automático"}'
    )
    assert extract(raw).preferences.as_dict() == {"preferred_transmission": "automático"}


def test_financing_declined_is_kept():
    result = extract(f'Entendido.\n{UPDATE_DELIMITER} {{"needsFinancing": false}}')
    assert result.preferences.needs_financing is False


def test_plain_reply_has_no_preferences():
    assert extract("Hola").preferences.as_dict() == {}
