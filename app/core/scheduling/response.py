"""
Response Generator for the WhatsApp assistant.

Fixed templates for booking outcomes, Claude for free conversation,
and a fixed apology whenever the model cannot be reached.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Optional, Sequence

from app.config import settings
from app.core.scheduling.formatting import (
    LocaleProfile,
    PT_BR,
    format_date,
    format_slot_list,
    format_time,
)
from app.infra.claude import ClaudeClient, get_claude_client

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """Você é um assistente virtual que responde mensagens de WhatsApp para {name}.

INFORMAÇÕES IMPORTANTES:
- Nome do profissional: {name}
- Tom de voz: {tone}
- Horário de funcionamento: {hours_start} às {hours_end}
- Duração dos atendimentos: {duration} minutos

HORÁRIOS DISPONÍVEIS NOS PRÓXIMOS DIAS:
{slots}

INSTRUÇÕES:
1. Responda de forma natural, usando o tom de voz especificado
2. Use emojis quando apropriado (mas sem exagero)
3. Seja educado, prestativo e profissional
4. Se o cliente perguntar sobre horários, ofereça as opções disponíveis
5. Se o cliente quiser agendar, confirme o horário escolhido
6. Se o cliente quiser cancelar ou reagendar, seja compreensivo
7. Mantenha as respostas curtas e diretas
8. Use linguagem brasileira natural

IMPORTANTE: Você está respondendo pelo WhatsApp, então seja conciso e objetivo."""


MESSAGES: dict[str, dict[str, str]] = {
    "pt-BR": {
        "booking_confirmed": "Perfeito! ✅ Seu horário está confirmado para {date} às {time}. Te espero! 😊",
        "booking_failed": "Desculpe, não consegui confirmar esse horário. Pode me passar outra opção?",
        "slot_taken": "Desculpe, esse horário já está ocupado. Pode me passar outra opção?",
        "slots": "Tenho esses horários disponíveis:\n\n{slots}\n\nQual funciona melhor pra você?",
        "slots_reschedule": "Sem problemas! Tenho esses horários disponíveis:\n\n{slots}\n\nQual prefere?",
        "no_slots": "No momento não tenho horários disponíveis nos próximos dias. Posso te avisar quando abrir uma vaga?",
        "no_slots_reschedule": "No momento não tenho outros horários disponíveis. Posso te avisar quando abrir uma vaga?",
        "cancelled": "Seu agendamento foi cancelado com sucesso. Se precisar remarcar, é só me avisar! 😊",
        "no_active": "Não encontrei nenhum agendamento ativo no seu nome. Quer marcar um horário?",
        "no_active_reschedule": "Não encontrei nenhum agendamento ativo no seu nome. Quer marcar um horário novo?",
        "unavailable": "Desculpe, estou com dificuldades técnicas no momento. Por favor, tente novamente em alguns instantes.",
        "empty_reply": "Desculpe, não consegui processar sua mensagem.",
    },
    "en-US": {
        "booking_confirmed": "Perfect! ✅ Your appointment is confirmed for {date} at {time}. See you then! 😊",
        "booking_failed": "Sorry, I couldn't confirm that time. Could you suggest another option?",
        "slot_taken": "Sorry, that time is already taken. Could you suggest another option?",
        "slots": "These times are available:\n\n{slots}\n\nWhich one works best for you?",
        "slots_reschedule": "No problem! These times are available:\n\n{slots}\n\nWhich do you prefer?",
        "no_slots": "There are no open times in the next few days. Shall I let you know when one opens up?",
        "no_slots_reschedule": "There are no other open times right now. Shall I let you know when one opens up?",
        "cancelled": "Your appointment has been cancelled. Just let me know if you want to book again! 😊",
        "no_active": "I couldn't find an active appointment under your number. Would you like to book one?",
        "no_active_reschedule": "I couldn't find an active appointment under your number. Would you like to book a new one?",
        "unavailable": "Sorry, I'm having technical difficulties right now. Please try again in a moment.",
        "empty_reply": "Sorry, I couldn't process your message.",
    },
}


@dataclass
class BusinessContext:
    """What the reply model needs to know about the professional."""

    name: str
    tone_of_voice: str
    business_hours_start: str
    business_hours_end: str
    appointment_duration: int
    available_slots: Sequence[datetime] = ()


class ResponseGenerator:
    """
    Template replies for booking outcomes plus LLM conversation.

    Templates are chosen by the locale profile; dates are rendered in the
    professional's timezone.
    """

    def __init__(
        self,
        claude_client: Optional[ClaudeClient] = None,
        profile: LocaleProfile = PT_BR,
        tz: Optional[tzinfo] = None,
    ):
        """Initialize generator.

        Args:
            claude_client: Claude client (uses singleton if not provided)
            profile: Locale for templates and dates
            tz: Zone used to render instants
        """
        self._claude_client = claude_client
        self.profile = profile
        self.tz = tz
        self._messages = MESSAGES.get(profile.code, MESSAGES["pt-BR"])

    async def _get_client(self) -> ClaudeClient:
        """Get Claude client."""
        if self._claude_client is None:
            self._claude_client = await get_claude_client()
        return self._claude_client

    # === LLM conversation ===

    def build_system_context(self, context: BusinessContext) -> str:
        """Render the system prompt for free-text replies."""
        slots_text = format_slot_list(
            context.available_slots, self.profile, self.tz, limit=5
        ) or "Nenhum horário disponível"

        return SYSTEM_PROMPT.format(
            name=context.name,
            tone=context.tone_of_voice,
            hours_start=context.business_hours_start,
            hours_end=context.business_hours_end,
            duration=context.appointment_duration,
            slots=slots_text,
        )

    async def generate_reply(
        self,
        system_context: str,
        history: list[dict],
        message: str,
    ) -> str:
        """Free-text reply using the conversation so far.

        Args:
            system_context: Rendered system prompt
            history: Prior turns, oldest first, ``{"role", "content"}``
            message: The client's current message

        Returns:
            Reply text; a fixed apology if the model fails
        """
        turns = list(history)
        # The inbound turn is persisted before history is read
        if turns and turns[-1].get("role") == "user" and turns[-1].get("content") == message:
            turns = turns[:-1]
        turns.append({"role": "user", "content": message})

        try:
            client = await self._get_client()
            response = await client.chat(
                messages=turns,
                system_prompt=system_context,
                model=settings.claude_reply_model,
                max_tokens=300,
                temperature=0.7,
            )
            return response.content.strip() or self._messages["empty_reply"]

        except Exception as e:
            logger.warning(f"LLM reply generation failed: {e}")
            return self._messages["unavailable"]

    # === Templates ===

    def booking_confirmed(self, start: datetime) -> str:
        return self._messages["booking_confirmed"].format(
            date=format_date(start, self.profile, self.tz),
            time=format_time(start, self.tz),
        )

    def booking_failed(self) -> str:
        """Calendar refused or could not be reached."""
        return self._messages["booking_failed"]

    def slot_taken(self) -> str:
        return self._messages["slot_taken"]

    def format_slots(self, slots: Sequence[datetime], reschedule: bool = False, limit: int = 3) -> str:
        """Offer up to ``limit`` slots, or say none are open."""
        if not slots:
            return self._messages["no_slots_reschedule" if reschedule else "no_slots"]

        listing = format_slot_list(slots, self.profile, self.tz, limit=limit)
        key = "slots_reschedule" if reschedule else "slots"
        return self._messages[key].format(slots=listing)

    def cancelled(self) -> str:
        return self._messages["cancelled"]

    def no_active_appointment(self, reschedule: bool = False) -> str:
        return self._messages["no_active_reschedule" if reschedule else "no_active"]

    def unavailable(self) -> str:
        """Generic apology when an external service is down."""
        return self._messages["unavailable"]
