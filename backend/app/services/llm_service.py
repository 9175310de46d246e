"""LLM service using Google Gemini"""
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from typing import AsyncIterator, List, Optional
import logging
from ..models.response import ChatMessageIn
from .retrieval import NO_DOCUMENTS_CONTEXT
from .stream_protocol import GenerationMode

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are a friendly assistant for condominium residents, many of whom are elderly or not used to computers and smartphones.
Read the condominium documents provided as context and answer the user's question concretely, adding the relevant details from the documents.

# Basic attitude
- Do not stop at announcing what you will explain; always write out the actual content in full.

# Answer rules
- Use plain, warm language that a middle-school student could understand, and avoid jargon.
- Use line breaks and bold text where it helps readability.
"""

STRUCTURED_RULES = """
# Output
- Put the answer body (Markdown) in `answer`.
- When the answer is based on the documents, list each source in `sources` using the SourceID, Page and Block values from the context.
"""

CITATION_RULES = """
# Citation rules (most important)
When you use information from the context, quote its prefix [SourceID: ..., Page: ..., Block: ...] exactly as given.
End every answer with a heading "References:" followed by a list in this form:

References:
* [Document title] (SourceID: actual id, Page: page number, Block: block id)
"""

# Schema of the structured answer object
CHAT_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "answer": {
            "type": "string",
            "description": "Friendly, detailed answer body in Markdown",
        },
        "sources": {
            "type": "array",
            "description": "Documents the answer is based on",
            "items": {
                "type": "object",
                "properties": {
                    "fileId": {"type": "string", "description": "Document UUID"},
                    "page": {"type": "string", "description": "Page number"},
                    "blockId": {"type": "string", "description": "Block number"},
                    "citation": {"type": "string", "description": "Short excerpt of the cited passage"},
                    "title": {"type": "string", "description": "Document title"},
                },
                "required": ["fileId"],
            },
        },
    },
    "required": ["answer", "sources"],
}


def build_system_prompt(apartment_name: str, context: str, mode: GenerationMode) -> str:
    """System prompt carrying the apartment, the retrieved context and the citation rules"""
    rules = STRUCTURED_RULES if mode == GenerationMode.STRUCTURED else ""
    return f"""{SYSTEM_PROMPT}{rules}
[Current condominium]
{apartment_name or 'Not specified'}

[Condominium documents (context)]
{context or NO_DOCUMENTS_CONTEXT}
{CITATION_RULES}"""


class LLMService:
    """Stream answers from Google Gemini"""

    def __init__(
        self,
        model_name: str = "gemini-2.0-flash",
        temperature: float = 0.2,
        google_api_key: Optional[str] = None,
    ):
        """
        Initialize LLM service

        Args:
            model_name: Name of the Gemini model
            temperature: Temperature for generation
            google_api_key: Google AI API key
        """
        self.model_name = model_name

        common = dict(
            model=model_name,
            temperature=temperature,
            max_output_tokens=4096,
            google_api_key=google_api_key,
            timeout=60,
            max_retries=2,
        )
        self.llm = ChatGoogleGenerativeAI(**common)
        # JSON mode constrained to the answer/sources schema
        self.structured_llm = ChatGoogleGenerativeAI(
            **common,
            response_mime_type="application/json",
            response_schema=CHAT_RESPONSE_SCHEMA,
        )

        logger.info(f"LLMService initialized with model: {model_name}")

    @staticmethod
    def to_langchain_messages(system_prompt: str, messages: List[ChatMessageIn]) -> List[BaseMessage]:
        """Convert chat history, dropping empty turns (Gemini rejects empty content)"""
        converted: List[BaseMessage] = [SystemMessage(content=system_prompt)]
        for message in messages:
            if not message.content or not message.content.strip():
                continue
            if message.role == "assistant":
                converted.append(AIMessage(content=message.content))
            else:
                converted.append(HumanMessage(content=message.content))
        return converted

    @staticmethod
    def _chunk_text(chunk) -> str:
        content = chunk.content
        if isinstance(content, str):
            return content
        # Newer integrations return a list of content parts
        return "".join(
            part.get("text", "") if isinstance(part, dict) else str(part)
            for part in content or []
        )

    async def stream(
        self,
        mode: GenerationMode,
        system_prompt: str,
        messages: List[ChatMessageIn],
    ) -> AsyncIterator[str]:
        """
        Stream raw model output

        In structured mode the fragments are pieces of one JSON object
        ``{answer, sources}``; in free-text mode they are answer text.
        """
        llm = self.structured_llm if mode == GenerationMode.STRUCTURED else self.llm
        prompt = self.to_langchain_messages(system_prompt, messages)

        chunk_count = 0
        async for chunk in llm.astream(prompt):
            text = self._chunk_text(chunk)
            if text:
                chunk_count += 1
                yield text

        logger.info(f"Streaming answer completed ({chunk_count} chunks, mode={mode.value})")
