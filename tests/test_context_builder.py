"""Tests for grounding context rendering."""

from database.models import InventoryItem, KnowledgeDocument, Lead, LeadPreference
from retrieval.context_builder import (
    DOCUMENTS_HEADER,
    INVENTORY_HEADER,
    LEAD_HEADER,
    PREFERENCES_HEADER,
    ContextBuilder,
    format_mileage,
    format_price,
)


def _lead(**kwargs):
    defaults = {"id": "lead-1", "name": "Lucía Gómez", "phone": "+34600111222", "status": "activo"}
    defaults.update(kwargs)
    return Lead(**defaults)


def _vehicle(**kwargs):
    defaults = {
        "id": "car-1",
        "marca": "SEAT",
        "modelo": "León",
        "version": "1.5 TSI FR",
        "precio_venta": 18000,
        "kilometros": 125000,
        "color": "Rojo",
        "sold": False,
    }
    defaults.update(kwargs)
    return InventoryItem(**defaults)


def test_spanish_price_format():
    assert format_price(18000) == "18.000€"
    assert format_price(24990.5) == "24.990,50€"
    assert format_price(950) == "950€"
    assert format_price(None) is None


def test_mileage_format():
    assert format_mileage(125000) == "125.000 km"
    assert format_mileage(None) is None


def test_sections_in_fixed_order():
    doc = KnowledgeDocument(id="doc-1", tenant_id="default", title="Garantía", content="Garantía de 12 meses.")
    ctx = ContextBuilder().build([doc], [_vehicle()], _lead())

    text = ctx.text
    assert text.index(DOCUMENTS_HEADER) < text.index(INVENTORY_HEADER) < text.index(LEAD_HEADER)
    assert "Garantía de 12 meses." in text
    assert ctx.document_count == 1
    assert ctx.vehicle_count == 1


def test_lead_section_always_present():
    ctx = ContextBuilder().build([], [], _lead())
    assert DOCUMENTS_HEADER not in ctx.text
    assert INVENTORY_HEADER not in ctx.text
    assert LEAD_HEADER in ctx.text


def test_vehicle_record_omits_missing_attributes():
    rendered = ContextBuilder.render_vehicle(_vehicle(motor=None, matricula=None))
    assert "VEHÍCULO: SEAT León 1.5 TSI FR" in rendered
    assert "PRECIO: 18.000€" in rendered
    assert "KILÓMETROS: 125.000 km" in rendered
    assert "MOTOR" not in rendered
    assert "MATRÍCULA" not in rendered


def test_unset_lead_fields_marked_not_specified():
    rendered = ContextBuilder.render_lead(_lead(budget="15000"))
    assert "ESTADO ACTUAL: activo" in rendered
    assert "PRESUPUESTO: 15000" in rendered
    assert "PLAZO DE COMPRA: No especificado" in rendered
    assert "EMAIL: No especificado" in rendered


def test_preferences_section_follows_lead():
    pref = LeadPreference(
        lead_id="lead-1",
        preferred_vehicle_type="SUV",
        preferred_colors=["blanco", "gris"],
        max_kilometers=80000,
        min_year=2019,
        min_budget=15000,
        max_budget=20000,
        needs_financing=False,
    )
    ctx = ContextBuilder().build([], [], _lead(), preferences=pref)

    text = ctx.text
    assert text.index(LEAD_HEADER) < text.index(PREFERENCES_HEADER)
    assert "TIPO DE VEHÍCULO: SUV" in text
    assert "COLORES: blanco, gris" in text
    assert "KILÓMETROS MÁX.: 80.000 km" in text
    assert "AÑOS: 2019-?" in text
    assert "PRESUPUESTO: 15.000€ - 20.000€" in text
    assert "FINANCIACIÓN: No" in text
    assert "MARCA" not in text


def test_budget_ceiling_rendered_as_upper_bound():
    rendered = ContextBuilder.render_preferences(LeadPreference(lead_id="lead-1", max_budget=18000))
    assert rendered == "PRESUPUESTO: hasta 18.000€"


def test_empty_preferences_section_omitted():
    ctx = ContextBuilder().build([], [], _lead(), preferences=LeadPreference(lead_id="lead-1"))
    assert PREFERENCES_HEADER not in ctx.text
