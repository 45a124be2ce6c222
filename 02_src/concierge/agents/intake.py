"""Intake agent (A): normalizes user input and opens a ticket on the bus."""

import uuid
from dataclasses import dataclass

from ..bus import ITaskBus
from ..collaborators import IASRProvider
from ..errors import ASRFailure, InputError
from ..logging_config import get_logger
from ..models import (
    AgentName,
    ConversationTurn,
    Envelope,
    IntakeCompleted,
    ParsedQuestion,
    now_ms,
)
from ..session import SessionContextStore
from .intent import IntentClassifier

logger = get_logger(__name__)


INPUT_TYPES = ("text", "voice")


@dataclass
class IntakeResult:
    trace_id: str
    intent_category: str
    refined_question: str


class IntakeAgent:
    """Turns raw text or audio into a classified question.

    Every side effect (user turn, decision task, completion event) happens
    before ``handle`` returns; any of them failing fails the call.
    """

    name = AgentName.INTAKE

    def __init__(
        self,
        bus: ITaskBus,
        context_store: SessionContextStore,
        asr: IASRProvider | None = None,
        classifier: IntentClassifier | None = None,
    ):
        self._bus = bus
        self._context_store = context_store
        self._asr = asr
        self._classifier = classifier or IntentClassifier()

    async def handle(
        self,
        user_id: str,
        session_id: str,
        raw_input: str | bytes,
        input_type: str,
        merchant_id: str,
    ) -> IntakeResult:
        self._validate(user_id, session_id, raw_input, input_type, merchant_id)

        if input_type == "voice":
            text = await self._transcribe(raw_input)
        else:
            text = raw_input.strip()

        intent_category = self._classifier.classify(text)
        refined_question = self._classifier.refine(text, intent_category)
        trace_id = self.new_trace_id(merchant_id, user_id)

        await self._context_store.add_turn(
            merchant_id,
            user_id,
            session_id,
            ConversationTurn(
                role="user",
                content=text,
                refined=refined_question,
                intent=intent_category,
                input_type=input_type,
            ),
            ticket_id=trace_id,
        )

        parsed = Envelope.create(
            AgentName.INTAKE,
            AgentName.DECISION,
            ParsedQuestion(
                input_type=input_type,
                intent_category=intent_category,
                refined_question=refined_question,
                original_input=text,
                ticket_id=trace_id,
            ),
            trace_id=trace_id,
            merchant_id=merchant_id,
            user_id=user_id,
            session_id=session_id,
        )
        await self._bus.publish(parsed)
        await self._bus.publish(
            parsed.follow_up(
                AgentName.INTAKE,
                AgentName.OBSERVER,
                IntakeCompleted(
                    success=True,
                    input_type=input_type,
                    intent_category=intent_category,
                    refined_question=refined_question,
                    ticket_id=trace_id,
                ),
            )
        )

        logger.info(
            "Ticket %s opened: %s (%s)",
            trace_id,
            refined_question,
            intent_category,
            extra={"context": {"merchant_id": merchant_id, "input_type": input_type}},
        )
        return IntakeResult(
            trace_id=trace_id,
            intent_category=intent_category,
            refined_question=refined_question,
        )

    @staticmethod
    def new_trace_id(merchant_id: str, user_id: str) -> str:
        return f"ticket-{now_ms()}-{merchant_id}-{user_id}-{uuid.uuid4().hex[:6]}"

    @staticmethod
    def _validate(
        user_id: str,
        session_id: str,
        raw_input: str | bytes,
        input_type: str,
        merchant_id: str,
    ) -> None:
        for field_name, value in (
            ("merchant_id", merchant_id),
            ("user_id", user_id),
            ("session_id", session_id),
        ):
            if not isinstance(value, str) or not value.strip():
                raise InputError(f"{field_name} is required")

        if input_type not in INPUT_TYPES:
            raise InputError(f"Unsupported input type: {input_type!r}")

        if input_type == "voice":
            if not isinstance(raw_input, (bytes, bytearray)) or not raw_input:
                raise InputError("Voice input requires non-empty audio bytes")
        elif not isinstance(raw_input, str) or not raw_input.strip():
            raise InputError("Text input must be a non-empty string")

    async def _transcribe(self, audio: bytes) -> str:
        if self._asr is None:
            raise ASRFailure("No speech-to-text provider configured")

        result = await self._asr.speech_to_text(bytes(audio))
        if not result.success or not result.text.strip():
            logger.error("Speech recognition failed: %s", result.error)
            raise ASRFailure(
                result.error or "Speech recognition returned no text",
                provider=result.provider,
            )
        return result.text.strip()
