"""Line-oriented streaming format for chat answers

Every record is ``<type>:<payload>\\n``:

- ``0:<json string>`` text fragment (plain answer text, or a piece of the JSON
  object in structured mode)
- ``d:<json object>`` terminal metadata
- ``e:<json object>`` error

The receiving side never assumes that a read ends on a record boundary.
"""
import codecs
import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterable, Callable, Dict, List, Optional, Tuple, Union

from ..models.response import Source
from ..utils.helpers import find_provenance_tags

logger = logging.getLogger(__name__)

TEXT_PART = "0"
FINISH_PART = "d"
ERROR_PART = "e"

ANSWER_FIELD_PATTERN = re.compile(r'"answer"\s*:\s*"((?:[^"\\]|\\.)*)', re.DOTALL)
SOURCE_OBJECT_PATTERN = re.compile(r'\{[^{}]*"fileId"[^{}]*\}', re.DOTALL)
REFERENCES_HEADING_PATTERN = re.compile(r"^\s*(?:#+\s*)?(?:\*\*)?(?:References|参考資料)(?:\*\*)?\s*[:：]?", re.MULTILINE)
REFERENCE_LINE_PATTERN = re.compile(r"^\s*[-*・]?\s*\[(?P<title>[^\]\n]+)\]\s*\(?(?P<tag>[^\n]*)$", re.MULTILINE)

# Accepts raw control characters inside strings, which models occasionally emit
_LENIENT_JSON = json.JSONDecoder(strict=False)


class GenerationMode(str, Enum):
    STRUCTURED = "structured"
    FREE_TEXT = "free_text"


@dataclass
class ChatTurnResult:
    answer: str
    sources: List[Source] = field(default_factory=list)
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

def encode_text_part(text: str) -> str:
    return f"{TEXT_PART}:{json.dumps(text, ensure_ascii=False)}\n"


def encode_finish_part(finish_reason: str = "stop") -> str:
    return f"{FINISH_PART}:{json.dumps({'finishReason': finish_reason}, separators=(',', ':'))}\n"


def encode_error_part(message: str) -> str:
    return f"{ERROR_PART}:{json.dumps({'message': message}, ensure_ascii=False)}\n"


# ---------------------------------------------------------------------------
# Decoding helpers
# ---------------------------------------------------------------------------

def _unescape_literal(text: str) -> str:
    return (
        text.replace("\\n", "\n")
        .replace('\\"', '"')
        .replace("\\r", "\r")
        .replace("\\t", "\t")
    )


def decode_fragment(payload: str) -> str:
    """Decode a text record payload; tolerate payloads that are not valid JSON"""
    try:
        value = json.loads(payload)
    except ValueError:
        text = payload
        if text.startswith('"'):
            text = text[1:]
        if text.endswith('"'):
            text = text[:-1]
        return _unescape_literal(text)
    return value if isinstance(value, str) else payload


def _decode_json_string_body(body: str) -> str:
    """Decode the inside of a JSON string literal that may be cut off mid-escape"""
    try:
        return _LENIENT_JSON.decode(f'"{body}"')
    except ValueError:
        pass
    trimmed = re.sub(r"\\u[0-9a-fA-F]{0,3}$", "", body)
    try:
        return _LENIENT_JSON.decode(f'"{trimmed}"')
    except ValueError:
        return _unescape_literal(trimmed)


def extract_partial_answer(buffer: str) -> str:
    """Current value of the ``answer`` field of a possibly incomplete JSON object"""
    match = ANSWER_FIELD_PATTERN.search(buffer)
    if not match:
        return ""
    return _decode_json_string_body(match.group(1))


def extract_partial_sources(buffer: str) -> List[Dict[str, Any]]:
    """Every complete ``{..."fileId"...}`` object found in the buffer"""
    found = []
    for match in SOURCE_OBJECT_PATTERN.finditer(buffer):
        try:
            value = _LENIENT_JSON.decode(match.group(0))
        except ValueError:
            continue
        if isinstance(value, dict):
            found.append(value)
    return found


def _load_object(buffer: str) -> Optional[Dict[str, Any]]:
    candidates = [buffer.strip()]
    start, end = buffer.find("{"), buffer.rfind("}")
    if 0 <= start < end:
        candidates.append(buffer[start:end + 1])

    for candidate in candidates:
        try:
            value = _LENIENT_JSON.decode(candidate)
        except ValueError:
            continue
        if isinstance(value, dict):
            return value
    return None


def parse_structured_output(buffer: str) -> Tuple[str, List[Dict[str, Any]]]:
    """
    Answer text and raw source objects from the accumulated structured output

    Full parse first, then the ``{...}`` slice, then pattern extraction.
    """
    obj = _load_object(buffer)
    if obj is not None:
        answer = obj.get("answer")
        sources = obj.get("sources")
        return (
            answer if isinstance(answer, str) else "",
            [s for s in sources if isinstance(s, dict)] if isinstance(sources, list) else [],
        )

    if not ANSWER_FIELD_PATTERN.search(buffer) and "{" not in buffer:
        # The model ignored the schema and answered in plain text
        return buffer.strip(), []

    logger.warning("Structured answer is not valid JSON; falling back to pattern extraction")
    return extract_partial_answer(buffer), extract_partial_sources(buffer)


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def source_from_dict(raw: Dict[str, Any]) -> Optional[Source]:
    file_id = _optional_str(raw.get("fileId"))
    if not file_id:
        return None
    return Source(
        fileId=file_id,
        page=_optional_str(raw.get("page")),
        blockId=_optional_str(raw.get("blockId")),
        citation=_optional_str(raw.get("citation")),
        title=_optional_str(raw.get("title")),
    )


def dedupe_sources(sources: List[Source]) -> List[Source]:
    """Keep one source per (fileId, page, blockId), filling gaps from later duplicates"""
    unique: Dict[tuple, Source] = {}
    for source in sources:
        key = source.dedupe_key()
        existing = unique.get(key)
        if existing is None:
            unique[key] = source.model_copy()
            continue
        if not existing.title and source.title:
            existing.title = source.title
        if not existing.citation and source.citation:
            existing.citation = source.citation
    return list(unique.values())


def _reference_titles(text: str) -> Dict[tuple, str]:
    headings = list(REFERENCES_HEADING_PATTERN.finditer(text))
    if not headings:
        return {}
    heading = headings[-1]

    titles = {}
    for line in REFERENCE_LINE_PATTERN.finditer(text, heading.end()):
        title = line.group("title").strip()
        if title.startswith("SourceID"):
            continue
        for key in find_provenance_tags(line.group("tag")):
            titles.setdefault(key, title)
    return titles


def extract_citations(text: str) -> List[Source]:
    """Sources for every provenance tag mentioned anywhere in the text"""
    titles = _reference_titles(text)
    sources = [
        Source(fileId=file_id, page=page, blockId=block, title=titles.get((file_id, page, block)))
        for file_id, page, block in find_provenance_tags(text)
    ]
    return dedupe_sources(sources)


def parse_chat_output(raw_text: str, mode: GenerationMode) -> ChatTurnResult:
    """Final answer and deduplicated sources of a completed stream"""
    if mode == GenerationMode.STRUCTURED:
        answer, raw_sources = parse_structured_output(raw_text)
        structured = [source for source in map(source_from_dict, raw_sources) if source]
    else:
        answer, structured = raw_text, []

    return ChatTurnResult(answer=answer, sources=dedupe_sources(structured + extract_citations(answer)))


# ---------------------------------------------------------------------------
# Receiver
# ---------------------------------------------------------------------------

class StreamReceiver:
    """Incremental decoder for the chat stream"""

    def __init__(self, mode: GenerationMode = GenerationMode.STRUCTURED):
        self.mode = mode
        self.finished = False
        self.finish_metadata: Dict[str, Any] = {}
        self.error: Optional[str] = None
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""
        self._parts: List[str] = []

    @property
    def raw_text(self) -> str:
        """Concatenation of every text fragment received so far"""
        return "".join(self._parts)

    @property
    def display_text(self) -> str:
        """Answer text to render before the stream is complete"""
        if self.mode == GenerationMode.STRUCTURED:
            return extract_partial_answer(self.raw_text)
        return self.raw_text

    def feed(self, chunk: Union[bytes, str]) -> List[str]:
        """
        Consume one read from the stream

        Returns:
            Text fragments completed by this read
        """
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        lines = (self._pending + text).split("\n")
        self._pending = lines.pop()
        return self._handle_lines(lines)

    def close(self) -> List[str]:
        """Flush a trailing record that was not newline-terminated"""
        remaining = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        return self._handle_lines([remaining])

    def _handle_lines(self, lines: List[str]) -> List[str]:
        fragments = []
        for line in lines:
            line = line.rstrip("\r")
            if not line:
                continue
            kind, separator, payload = line.partition(":")
            if not separator:
                logger.debug(f"Ignoring malformed stream record: {line[:50]}")
                continue

            if kind == TEXT_PART:
                fragment = decode_fragment(payload)
                self._parts.append(fragment)
                fragments.append(fragment)
            elif kind == FINISH_PART:
                self.finished = True
                try:
                    self.finish_metadata = json.loads(payload)
                except ValueError:
                    self.finish_metadata = {}
            elif kind == ERROR_PART:
                try:
                    value = json.loads(payload)
                except ValueError:
                    value = payload
                self.error = value.get("message", str(value)) if isinstance(value, dict) else str(value)
            else:
                logger.debug(f"Ignoring stream record of type {kind!r}")
        return fragments

    def result(self) -> ChatTurnResult:
        """Parse the accumulated output; call once the stream has ended"""
        self.close()
        result = parse_chat_output(self.raw_text, self.mode)
        result.error = self.error
        return result


async def receive_stream(
    chunks: AsyncIterable[bytes],
    mode: GenerationMode = GenerationMode.STRUCTURED,
    on_text: Optional[Callable[[str], Any]] = None,
) -> ChatTurnResult:
    """
    Consume a chat stream (e.g. ``response.aiter_bytes()`` of an httpx
    streaming response) and return the final turn

    Args:
        chunks: Raw reads of the response body
        mode: Generation mode announced by the server
        on_text: Called with the renderable answer text after each read that
            completed a fragment
    """
    receiver = StreamReceiver(mode)
    async for chunk in chunks:
        if receiver.feed(chunk) and on_text is not None:
            on_text(receiver.display_text)
    if receiver.close() and on_text is not None:
        on_text(receiver.display_text)
    return receiver.result()
