"""Cited chat answers: retrieval, generation and turn persistence"""
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Optional

from ..models.response import ChatMessageIn, ChatRequest
from .llm_service import build_system_prompt
from .retrieval import RetrievalResult
from .stream_protocol import (
    GenerationMode,
    StreamReceiver,
    encode_error_part,
    encode_finish_part,
    encode_text_part,
)

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "An error occurred while generating the answer. Please try again."

STREAM_STATUS = {
    GenerationMode.STRUCTURED: "success-stream-object",
    GenerationMode.FREE_TEXT: "success-stream-text",
}


@dataclass
class ChatTurn:
    """Everything needed to generate one answer"""
    session_id: Optional[str]
    apartment_id: Optional[str]
    apartment_name: str
    question: str
    messages: List[ChatMessageIn] = field(default_factory=list)
    retrieval: Optional[RetrievalResult] = None
    system_prompt: str = ""


class ChatService:
    """Orchestrate one streamed chat answer"""

    def __init__(
        self,
        retrieval,
        llm_service,
        chat_repository=None,
        generation_mode: GenerationMode = GenerationMode.STRUCTURED,
    ):
        """
        Initialize chat service

        Args:
            retrieval: RetrievalService building the context block
            llm_service: LLMService streaming the model output
            chat_repository: ChatRepository for sessions and stored turns
            generation_mode: Structured JSON answers or free text
        """
        self.retrieval = retrieval
        self.llm_service = llm_service
        self.chat_repository = chat_repository
        self.generation_mode = GenerationMode(generation_mode)

    @property
    def stream_status(self) -> str:
        """Value of the ``X-Chat-API-Status`` header"""
        return STREAM_STATUS[self.generation_mode]

    async def _resolve_apartment(self, session_id: Optional[str]):
        if not session_id or self.chat_repository is None:
            return None, ""
        session = await self.chat_repository.get_session(session_id)
        if session is None or not session.apartment_id:
            logger.info(f"Session {session_id} has no apartment; answering without documents")
            return None, ""
        name = await self.chat_repository.get_apartment_name(session.apartment_id)
        return session.apartment_id, name

    async def _store_turn(self, session_id: Optional[str], role: str, content: str, sources=None):
        if not session_id or self.chat_repository is None:
            return
        try:
            await self.chat_repository.add_message(session_id, role, content, sources)
        except Exception as e:
            # History is best effort; the answer has already been produced
            logger.error(f"Failed to store {role} message for session {session_id}: {e}")

    async def prepare(self, request: ChatRequest) -> ChatTurn:
        """Resolve the apartment, store the question and build the system prompt"""
        messages = [m for m in request.messages if m.content and m.content.strip()]
        question = next((m.content for m in reversed(messages) if m.role == "user"), "")

        apartment_id, apartment_name = await self._resolve_apartment(request.sessionId)
        turn = ChatTurn(
            session_id=request.sessionId,
            apartment_id=apartment_id,
            apartment_name=apartment_name,
            question=question,
            messages=messages,
        )

        if question:
            await self._store_turn(turn.session_id, "user", question)

        turn.retrieval = await self.retrieval.build_context(question, apartment_id)
        turn.system_prompt = build_system_prompt(apartment_name, turn.retrieval.context, self.generation_mode)
        logger.info(
            f"Chat turn prepared: session={turn.session_id}, apartment={apartment_id}, "
            f"passages={turn.retrieval.passages}, messages={len(messages)}"
        )
        return turn

    async def stream_chat(self, request: ChatRequest) -> AsyncIterator[str]:
        """
        Yield encoded stream records for one answer

        Failures before the first record propagate so the caller can answer
        with an error status; later failures end the stream with an error
        record.
        """
        turn = await self.prepare(request)
        receiver = StreamReceiver(self.generation_mode)
        emitted = False

        try:
            async for fragment in self.llm_service.stream(self.generation_mode, turn.system_prompt, turn.messages):
                record = encode_text_part(fragment)
                receiver.feed(record)
                emitted = True
                yield record
        except Exception:
            if not emitted:
                raise
            logger.exception(f"Answer generation failed mid-stream for session {turn.session_id}")
            yield encode_error_part(GENERIC_ERROR_MESSAGE)
            return

        yield encode_finish_part()

        result = receiver.result()
        logger.info(f"Answer streamed: {len(result.answer)} chars, {len(result.sources)} sources")
        await self._store_turn(turn.session_id, "assistant", result.answer, result.sources)
