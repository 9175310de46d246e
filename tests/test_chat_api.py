from __future__ import annotations

import json

from fastapi.testclient import TestClient

from app.api.dependencies import get_chat_repository, get_chat_service
from app.main import app
from app.models.response import ChatSession
from app.services.chat_service import GENERIC_ERROR_MESSAGE, ChatService
from app.services.retrieval import NO_DOCUMENTS_CONTEXT, RetrievalService
from app.services.stream_protocol import GenerationMode, StreamReceiver
from conftest import FakeChatRepository, FakeDocumentRepository, FakeLLM

NO_SOURCES_ANSWER = json.dumps(
    {"answer": "資料がまだ登録されていないため、一般的な内容のみお答えします。", "sources": []},
    ensure_ascii=False,
)


def _chat_repository() -> FakeChatRepository:
    return FakeChatRepository(
        sessions=[ChatSession(id="s-1", apartment_id="a-1", title="Dues")],
        apartments={"a-1": "Sunrise Heights"},
    )


def _client(llm: FakeLLM, chats: FakeChatRepository, mode=GenerationMode.STRUCTURED) -> TestClient:
    service = ChatService(
        retrieval=RetrievalService(FakeDocumentRepository()),
        llm_service=llm,
        chat_repository=chats,
        generation_mode=mode,
    )
    app.dependency_overrides[get_chat_service] = lambda: service
    app.dependency_overrides[get_chat_repository] = lambda: chats
    return TestClient(app)


def _post(client: TestClient, session_id="s-1", messages=None):
    return client.post(
        "/api/chat",
        json={
            "sessionId": session_id,
            "messages": messages or [{"role": "user", "content": "管理費はいつ払いますか？"}],
        },
    )


def test_apartment_without_documents_streams_answer_with_placeholder_context() -> None:
    llm = FakeLLM([NO_SOURCES_ANSWER[:20], NO_SOURCES_ANSWER[20:]])
    chats = _chat_repository()
    client = _client(llm, chats)

    try:
        response = _post(client)
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert response.headers["x-chat-api-status"] == "success-stream-object"
    assert response.text.endswith('d:{"finishReason":"stop"}\n')

    prompt = llm.calls[0]["system_prompt"]
    assert NO_DOCUMENTS_CONTEXT in prompt
    assert "Sunrise Heights" in prompt

    receiver = StreamReceiver(GenerationMode.STRUCTURED)
    receiver.feed(response.content)
    assert receiver.result().answer.startswith("資料がまだ登録されていない")

    assert [(m.role, m.content) for m in chats.messages] == [
        ("user", "管理費はいつ払いますか？"),
        ("assistant", receiver.result().answer),
    ]


def test_generation_failure_before_output_returns_generic_500() -> None:
    llm = FakeLLM([], fail_after=0)
    client = _client(llm, _chat_repository())

    try:
        response = _post(client)
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    assert response.json() == {"error": {"message": GENERIC_ERROR_MESSAGE}}
    assert "backend unavailable" not in response.text


def test_failure_mid_stream_ends_with_error_record() -> None:
    llm = FakeLLM(["Hello", " there"], fail_after=1)
    chats = _chat_repository()
    client = _client(llm, chats, mode=GenerationMode.FREE_TEXT)

    try:
        response = _post(client)
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert response.headers["x-chat-api-status"] == "success-stream-text"
    lines = response.text.splitlines()
    assert lines[0] == '0:"Hello"'
    assert json.loads(lines[-1][2:]) == {"message": GENERIC_ERROR_MESSAGE}
    assert [m.role for m in chats.messages] == ["user"]


def test_free_text_answer_is_stored_with_its_citations() -> None:
    answer = (
        "Quiet hours begin at 22:00 [SourceID: doc-1, Page: 3, Block: 12].\n\n"
        "References:\n* [House Rules] (SourceID: doc-1, Page: 3, Block: 12)"
    )
    chats = _chat_repository()
    client = _client(FakeLLM([answer[:30], answer[30:]]), chats, mode=GenerationMode.FREE_TEXT)

    try:
        response = _post(client)
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    stored = chats.messages[-1]
    assert stored.role == "assistant"
    assert stored.content == answer
    assert [(s.fileId, s.page, s.blockId, s.title) for s in stored.sources] == [("doc-1", "3", "12", "House Rules")]


def test_empty_messages_are_not_sent_to_the_model() -> None:
    llm = FakeLLM(["ok"])
    client = _client(llm, _chat_repository(), mode=GenerationMode.FREE_TEXT)
    messages = [
        {"role": "user", "content": "First question"},
        {"role": "assistant", "content": ""},
        {"role": "user", "content": "Second question"},
    ]

    try:
        _post(client, messages=messages)
    finally:
        app.dependency_overrides.clear()

    assert [m.content for m in llm.calls[0]["messages"]] == ["First question", "Second question"]


def test_unknown_session_answers_without_documents() -> None:
    llm = FakeLLM(["ok"])
    chats = _chat_repository()
    client = _client(llm, chats, mode=GenerationMode.FREE_TEXT)

    try:
        response = _post(client, session_id="missing")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert "Not specified" in llm.calls[0]["system_prompt"]
    assert NO_DOCUMENTS_CONTEXT in llm.calls[0]["system_prompt"]


def test_session_history_in_creation_order() -> None:
    chats = _chat_repository()
    client = _client(FakeLLM(["ok"]), chats, mode=GenerationMode.FREE_TEXT)

    try:
        _post(client)
        history = client.get("/api/chat/sessions/s-1/messages")
        missing = client.get("/api/chat/sessions/nope/messages")
    finally:
        app.dependency_overrides.clear()

    assert history.status_code == 200
    assert [(m["role"], m["content"]) for m in history.json()] == [
        ("user", "管理費はいつ払いますか？"),
        ("assistant", "ok"),
    ]
    assert missing.status_code == 404
