"""
Prompt Templates for the Carrera Cars lead bot.

Persona prompt, structured-update instructions and the fixed customer
messages (welcome, fallback, follow-ups, escalation email).
"""

import html
from typing import Dict, List, Optional

from funnel.states import LeadStatus, LeadType, Timeframe
from .update_extractor import UPDATE_DELIMITER


class PromptTemplates:
    """
    Manages prompt templates for the WhatsApp sales agent.

    All customer-facing text is Spanish (Spain); the agent writes as a
    human salesperson of the dealership.
    """

    SYSTEM_PROMPT = """Eres {agent_name}, asesor comercial en {brand_name}. Respondes por WhatsApp a clientes reales y te comportas como una persona, nunca como una IA.

REGLAS IMPORTANTES:
1. Nunca digas que eres un bot, una IA o un asistente virtual.
2. Escribe como se escribe por WhatsApp: lenguaje natural y cercano.
3. Respuestas breves (de 1 a 3 frases por mensaje).
4. No uses listas ni numeración en los mensajes.
5. Habla solo de vehículos que aparezcan en el inventario disponible.
6. Usa español de España: "coche", "concesionario", etc.
7. Precios en formato español: 18.000€, 24.990€.

OBJETIVOS:
1. Calificar al lead: presupuesto, preferencias y urgencia.
2. Sugerir vehículos disponibles que encajen.
3. Intentar cerrar una visita al concesionario.

FLUJO DE ESTADOS:
{status_flow}

INSTRUCCIONES DE ACTUALIZACIÓN:
Al final de tu respuesta puedes añadir un bloque JSON con los cambios del lead, precedido exactamente por:

{delimiter}
{{
  "status": "estado_correspondiente",
  "budget": "presupuesto_mencionado",
  "expectedPurchaseTimeframe": "plazo_mencionado",
  "type": "tipo_de_cliente",
  "preferredVehicleType": "SUV, berlina, utilitario...",
  "preferredBrand": "marca_preferida",
  "preferredFuelType": "gasolina, diésel, híbrido, eléctrico",
  "preferredTransmission": "manual o automático",
  "preferredColors": ["color1", "color2"],
  "maxKilometers": 100000,
  "minYear": 2018,
  "maxYear": 2022,
  "needsFinancing": true/false,
  "shouldEscalate": true/false
}}

Incluye solo los campos que han cambiado.
Estados válidos: {statuses}
Plazos válidos: {timeframes}
Tipos de cliente válidos: {lead_types}
Cuando el lead esté listo para hablar con un responsable, usa "status": "manager" y "shouldEscalate": true.

Información disponible:

{context}"""

    STATUS_FLOW = "nuevo → contactado → activo → calificado → propuesta → evaluando → manager"

    WELCOME_MESSAGE = (
        "Hola {first_name}! Soy {agent_name} de {brand_name}. "
        "¿Estás buscando algún vehículo en especial o solo estás viendo opciones?"
    )

    FALLBACK_MESSAGE = "Perdón, ha habido un problema técnico. Un momento por favor..."

    DEFAULT_FOLLOW_UP = "¡Hola! ¿Sigues interesado en encontrar un vehículo?"

    FOLLOW_UP_MESSAGES: Dict[LeadStatus, List[str]] = {
        LeadStatus.NUEVO: [
            "¡Hola! ¿Has podido ver mi mensaje anterior? ¿Te interesa algún vehículo?",
            "Buenas, solo quería saber si sigues buscando coche. ¿En qué te puedo ayudar?",
            "Hola de nuevo. Si ya no estás interesado, no pasa nada, solo dímelo.",
        ],
        LeadStatus.CONTACTADO: [
            "¿Qué tal? ¿Has tenido tiempo de pensar en lo que hablamos?",
            "¡Hola! ¿Sigues buscando vehículo? Tengo algunas opciones nuevas.",
            "Buenas, por si acaso no te llegó mi mensaje anterior... ¿sigues interesado?",
        ],
        LeadStatus.ACTIVO: [
            "¿Cómo va todo? ¿Has podido pensar en el presupuesto que comentamos?",
            "¡Hola! ¿Sigues buscando? Me gustaría ayudarte a encontrar algo que te guste.",
            "Buenas, solo para saber si sigues interesado o si ya has encontrado algo.",
        ],
        LeadStatus.CALIFICADO: [
            "¿Qué tal? ¿Te gustaron las opciones que te enseñé?",
            "¡Hola! ¿Has podido ver los coches que te comenté? ¿Te interesa alguno?",
            "Buenas, solo quería saber si necesitas más información sobre algún vehículo.",
        ],
        LeadStatus.PROPUESTA: [
            "¿Has podido ver las fotos que te mandé? ¿Qué te parece?",
            "¡Hola! ¿Te ha gustado alguno de los coches que vimos?",
            "Buenas, ¿necesitas que te pase más información de algún vehículo?",
        ],
        LeadStatus.EVALUANDO: [
            "¿Cómo lo llevas? ¿Has decidido algo sobre los coches que vimos?",
            "¡Hola! ¿Necesitas que te aclare algo más sobre algún vehículo?",
            "Buenas, por si te sirve de ayuda, puedo organizarte una visita para verlos en persona.",
        ],
    }

    ESCALATION_EMAIL_SUBJECT = "Lead escalado a manager - {lead_name}"

    ESCALATION_EMAIL_BODY = """<h2>Lead escalado a manager</h2>
<p>El lead <strong>{lead_name}</strong> ha completado la cualificación automática y necesita atención de un responsable.</p>
<p>Conversación: {conversation_label}</p>
<p>Por favor, contacta con el cliente lo antes posible.</p>"""

    @classmethod
    def get_system_prompt(
        cls,
        context: str,
        brand_name: str = "Carrera Cars",
        agent_name: str = "Pedro",
    ) -> str:
        """
        Persona prompt with the update protocol and the grounding block.

        Args:
            context: Output of the context builder
            brand_name: Dealership name
            agent_name: Persona name

        Returns:
            Formatted system prompt
        """
        return cls.SYSTEM_PROMPT.format(
            agent_name=agent_name,
            brand_name=brand_name,
            status_flow=cls.STATUS_FLOW,
            delimiter=UPDATE_DELIMITER,
            statuses=", ".join(s.value for s in LeadStatus),
            timeframes=", ".join(t.value for t in Timeframe),
            lead_types=", ".join(t.value for t in LeadType),
            context=context,
        )

    @classmethod
    def welcome_message(
        cls, name: Optional[str], brand_name: str = "Carrera Cars", agent_name: str = "Pedro"
    ) -> str:
        first_name = (name or "").split()[0] if name and name.strip() else ""
        return cls.WELCOME_MESSAGE.format(
            first_name=first_name, agent_name=agent_name, brand_name=brand_name
        ).replace("Hola !", "Hola!")

    @classmethod
    def follow_up_message(cls, status, follow_up_count: int) -> str:
        """Status-specific nudge; later attempts reuse the last message."""
        try:
            messages = cls.FOLLOW_UP_MESSAGES.get(LeadStatus(status))
        except ValueError:
            messages = None
        if not messages:
            return cls.DEFAULT_FOLLOW_UP
        return messages[min(max(follow_up_count, 0), len(messages) - 1)]

    @classmethod
    def escalation_email(cls, lead_name: str, conversation_label: str) -> Dict[str, str]:
        """Subject is plain text; lead-supplied values are escaped in the HTML body."""
        return {
            "subject": cls.ESCALATION_EMAIL_SUBJECT.format(lead_name=lead_name),
            "body": cls.ESCALATION_EMAIL_BODY.format(
                lead_name=html.escape(lead_name or ""),
                conversation_label=html.escape(conversation_label or ""),
            ),
        }
