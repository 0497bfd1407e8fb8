"""
Context Builder for the Carrera Cars lead bot.

Renders retrieved documents, retrieved vehicles, the lead's known
attributes and stated vehicle preferences into the grounding block
appended to the system prompt.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from database.models import InventoryItem, KnowledgeDocument, Lead, LeadPreference

logger = logging.getLogger(__name__)

NOT_SPECIFIED = "No especificado"

DOCUMENTS_HEADER = "### Información relevante de la empresa:"
INVENTORY_HEADER = "### Vehículos disponibles:"
LEAD_HEADER = "### Información actual del lead:"
PREFERENCES_HEADER = "### Preferencias del lead:"


def _group_thousands(integer_part: int) -> str:
    return f"{integer_part:,}".replace(",", ".")


def format_price(amount: Optional[float]) -> Optional[str]:
    """Spanish price format: 18000 -> '18.000€', 24990.5 -> '24.990,50€'."""
    if amount is None:
        return None
    cents = round(float(amount) * 100)
    whole, frac = divmod(abs(cents), 100)
    sign = "-" if cents < 0 else ""
    if frac:
        return f"{sign}{_group_thousands(whole)},{frac:02d}€"
    return f"{sign}{_group_thousands(whole)}€"


def format_mileage(km: Optional[int]) -> Optional[str]:
    if km is None:
        return None
    return f"{_group_thousands(int(km))} km"


@dataclass
class Context:
    """Assembled grounding block."""
    text: str
    document_count: int = 0
    vehicle_count: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)


class ContextBuilder:
    """
    Builds the grounding context in a fixed order: documents, then
    vehicles, then the lead state.
    """

    def build(
        self,
        documents: List[KnowledgeDocument],
        items: List[InventoryItem],
        lead: Lead,
        preferences: Optional[LeadPreference] = None,
    ) -> Context:
        sections = []

        if documents:
            body = "\n\n".join(doc.content for doc in documents)
            sections.append(f"{DOCUMENTS_HEADER}\n\n{body}")

        if items:
            body = "\n\n".join(self.render_vehicle(item) for item in items)
            sections.append(f"{INVENTORY_HEADER}\n\n{body}")

        sections.append(f"{LEAD_HEADER}\n\n{self.render_lead(lead)}")

        if preferences is not None:
            body = self.render_preferences(preferences)
            if body:
                sections.append(f"{PREFERENCES_HEADER}\n\n{body}")

        return Context(
            text="\n\n".join(sections) + "\n",
            document_count=len(documents),
            vehicle_count=len(items),
            metadata={"lead_id": lead.id},
        )

    @staticmethod
    def render_vehicle(item: InventoryItem) -> str:
        """One record per vehicle; attributes that are not set are left out."""
        rows = [
            ("VEHÍCULO", item.display_name),
            ("TIPO", item.type),
            ("PRECIO", format_price(item.precio_venta)),
            ("KILÓMETROS", format_mileage(item.kilometros)),
            ("COLOR", item.color),
            ("MOTOR", item.motor),
            ("CARROCERÍA", item.carroceria),
            ("PUERTAS", item.puertas),
            ("TRANSMISIÓN", item.transmision),
            ("MATRÍCULA", item.matricula),
            ("DESCRIPCIÓN", item.description),
            ("URL", item.url),
        ]
        return "\n".join(f"{label}: {value}" for label, value in rows if value not in (None, ""))

    @staticmethod
    def render_lead(lead: Lead) -> str:
        rows = [
            ("ESTADO ACTUAL", lead.status),
            ("NOMBRE", lead.name),
            ("TELÉFONO", lead.phone),
            ("EMAIL", lead.email),
            ("PRESUPUESTO", lead.budget),
            ("PLAZO DE COMPRA", lead.expected_purchase_timeframe),
            ("TIPO DE CLIENTE", lead.type),
        ]
        return "\n".join(f"{label}: {value or NOT_SPECIFIED}" for label, value in rows)

    @staticmethod
    def render_preferences(pref: LeadPreference) -> str:
        """Only what the customer actually said; empty when nothing is known."""
        years = None
        if pref.min_year or pref.max_year:
            years = f"{pref.min_year or '?'}-{pref.max_year or '?'}"
        budget = None
        if pref.min_budget is not None or pref.max_budget is not None:
            low, high = format_price(pref.min_budget), format_price(pref.max_budget)
            budget = f"{low} - {high}" if low and high else (f"desde {low}" if low else f"hasta {high}")
        financing = None
        if pref.needs_financing is not None:
            financing = "Sí" if pref.needs_financing else "No"

        rows = [
            ("TIPO DE VEHÍCULO", pref.preferred_vehicle_type),
            ("MARCA", pref.preferred_brand),
            ("COMBUSTIBLE", pref.preferred_fuel_type),
            ("TRANSMISIÓN", pref.preferred_transmission),
            ("COLORES", ", ".join(pref.preferred_colors or []) or None),
            ("KILÓMETROS MÁX.", format_mileage(pref.max_kilometers)),
            ("AÑOS", years),
            ("PRESUPUESTO", budget),
            ("FINANCIACIÓN", financing),
        ]
        return "\n".join(f"{label}: {value}" for label, value in rows if value)
