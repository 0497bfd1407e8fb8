"""
Funnel vocabulary for the Carrera Cars lead bot.

Closed enumerations for lead status, purchase timeframe, customer type
and vehicle body type.
"""

from enum import Enum
from typing import Optional, Type, TypeVar

E = TypeVar("E", bound=Enum)


class LeadStatus(str, Enum):
    """Sales-funnel stage of a lead."""

    # Bot-driven progression
    NUEVO = "nuevo"
    CONTACTADO = "contactado"
    ACTIVO = "activo"
    CALIFICADO = "calificado"
    PROPUESTA = "propuesta"
    EVALUANDO = "evaluando"
    MANAGER = "manager"

    # Human-driven after escalation
    INICIADO = "iniciado"
    DOCUMENTACION = "documentacion"
    COMPRADOR = "comprador"

    # Terminal failure branches
    DESCARTADO = "descartado"
    SIN_INTERES = "sin_interes"
    INACTIVO = "inactivo"
    PERDIDO = "perdido"
    RECHAZADO = "rechazado"
    SIN_OPCIONES = "sin_opciones"


class Timeframe(str, Enum):
    """Expected purchase timeframe."""
    INMEDIATO = "inmediato"
    ESTA_SEMANA = "esta_semana"
    PROXIMA_SEMANA = "proxima_semana"
    DOS_SEMANAS = "dos_semanas"
    UN_MES = "un_mes"
    UNO_A_TRES_MESES = "1-3 meses"
    TRES_A_SEIS_MESES = "3-6 meses"
    MAS_DE_SEIS_MESES = "6+ meses"
    INDEFINIDO = "indefinido"


class LeadType(str, Enum):
    """Customer type."""
    AUTONOMO = "autonomo"
    EMPRESA = "empresa"
    PARTICULAR = "particular"
    PENSIONISTA = "pensionista"


class CarType(str, Enum):
    """Vehicle body type of an inventory item."""
    SEDAN = "sedan"
    SUV = "suv"
    HATCHBACK = "hatchback"
    COUPE = "coupe"
    DESCAPOTABLE = "descapotable"
    MONOVOLUMEN = "monovolumen"
    PICKUP = "pickup"
    ELECTRICO = "electrico"
    HIBRIDO = "hibrido"
    LUJO = "lujo"
    DEPORTIVO = "deportivo"
    FURGONETA_CARGA = "furgoneta_carga"
    FURGONETA_PASAJEROS = "furgoneta_pasajeros"
    FURGONETA_MIXTA = "furgoneta_mixta"
    OTRO = "otro"


class DocumentCategory(str, Enum):
    """Category of a knowledge document."""
    GENERAL = "general"
    VEHICULOS = "vehiculos"
    FINANCIACION = "financiacion"
    GARANTIA = "garantia"
    SERVICIOS = "servicios"
    FAQ = "faq"
    OTRO = "otro"


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MessageStatus(str, Enum):
    """Delivery status of a conversation message."""
    RECEIVED = "received"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class WebhookStatus(str, Enum):
    RECEIVED = "received"
    PROCESSED = "processed"
    ERROR = "error"


BOT_ACTIVE_STATUSES = frozenset({
    LeadStatus.NUEVO,
    LeadStatus.CONTACTADO,
    LeadStatus.ACTIVO,
    LeadStatus.CALIFICADO,
    LeadStatus.PROPUESTA,
    LeadStatus.EVALUANDO,
})

HUMAN_STATUSES = frozenset({
    LeadStatus.MANAGER,
    LeadStatus.INICIADO,
    LeadStatus.DOCUMENTACION,
    LeadStatus.COMPRADOR,
})

FAILURE_STATUSES = frozenset({
    LeadStatus.DESCARTADO,
    LeadStatus.SIN_INTERES,
    LeadStatus.INACTIVO,
    LeadStatus.PERDIDO,
    LeadStatus.RECHAZADO,
    LeadStatus.SIN_OPCIONES,
})

# Once a lead reaches one of these the bot no longer answers
BOT_TERMINAL_STATUSES = HUMAN_STATUSES | FAILURE_STATUSES


def parse_enum(enum_cls: Type[E], value) -> Optional[E]:
    """Return the member of enum_cls matching value, or None."""
    if value is None:
        return None
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        return None
