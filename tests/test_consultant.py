from __future__ import annotations

import uuid

import pytest

from pathway import db as db_module
from pathway.services import consultant, gemini
from pathway.services.consultant import ConversationNotFound
from tests.utils.auth import anonymous_headers, build_auth_headers


class _Recorder:
    def __init__(self, reply="Consider applying early.", exc=None):
        self.reply = reply
        self.exc = exc
        self.calls = []

    def __call__(self, prompt, **kwargs):
        self.calls.append((prompt, kwargs))
        if self.exc:
            raise self.exc
        return self.reply


def test_send_message_creates_conversation_and_stores_both_messages():
    user_id = str(uuid.uuid4())
    gen = _Recorder()
    long_message = "How do I choose between engineering programs in Canada and the Netherlands?"
    with db_module.SessionLocal() as db:
        conversation, reply = consultant.send_message(
            db, user_id=user_id, message=long_message, generate=gen
        )
        assert reply.sender == "ai"
        assert reply.content == "Consider applying early."
        assert len(conversation.title) <= consultant.TITLE_LENGTH
        assert conversation.title.endswith("...")

        history = consultant.load_history(db, user_id=user_id, conversation_id=conversation.id)
        assert [(m.sender, m.content) for m in history] == [
            ("user", long_message),
            ("ai", "Consider applying early."),
        ]

        consultant.send_message(
            db,
            user_id=user_id,
            message="And scholarships?",
            conversation_id=conversation.id,
            generate=gen,
        )

    prompt, kwargs = gen.calls[-1]
    assert prompt == "And scholarships?"
    assert kwargs["system_instruction"] == consultant.SYSTEM_INSTRUCTION
    assert [h["role"] for h in kwargs["history"]] == ["user", "model"]


def test_user_message_survives_llm_failure():
    user_id = str(uuid.uuid4())
    with db_module.SessionLocal() as db:
        conversation = consultant.create_conversation(db, user_id=user_id)
        with pytest.raises(TimeoutError):
            consultant.send_message(
                db,
                user_id=user_id,
                message="Hello?",
                conversation_id=conversation.id,
                generate=_Recorder(exc=TimeoutError("slow")),
            )
        history = consultant.load_history(db, user_id=user_id, conversation_id=conversation.id)
        assert [m.sender for m in history] == ["user"]
        assert consultant.get_conversation(
            db, user_id=user_id, conversation_id=conversation.id
        ).title == "Hello?"


def test_other_users_conversation_is_not_found():
    owner = str(uuid.uuid4())
    with db_module.SessionLocal() as db:
        conversation = consultant.create_conversation(db, user_id=owner, title="Mine")
        stranger = str(uuid.uuid4())
        assert consultant.load_history(db, user_id=stranger, conversation_id=conversation.id) is None
        assert consultant.delete_conversation(
            db, user_id=stranger, conversation_id=conversation.id
        ) is False
        with pytest.raises(ConversationNotFound):
            consultant.send_message(
                db,
                user_id=stranger,
                message="hi",
                conversation_id=conversation.id,
                generate=_Recorder(),
            )


def test_history_is_capped():
    messages = [
        type("Msg", (), {"sender": "user" if i % 2 else "ai", "content": str(i)})()
        for i in range(30)
    ]
    history = consultant.to_history(messages)
    assert len(history) == consultant.HISTORY_LIMIT
    assert history[-1]["text"] == "29"


def test_chat_endpoint_authenticated(client, monkeypatch):
    gen = _Recorder(reply="  Start with your interests.  ")
    monkeypatch.setattr(gemini, "generate_content", gen)
    headers = build_auth_headers(email="student@example.com")

    resp = client.post("/v1/consultant/chat", json={"message": "Where do I start?"}, headers=headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["reply"]["content"] == "Start with your interests."
    assert body["title"] == "Where do I start?"
    assert body["usage"]["feature"] == "chat"
    conversation_id = body["conversation_id"]

    resp = client.get("/v1/consultant/conversations", headers=headers)
    assert [c["id"] for c in resp.json()] == [conversation_id]

    resp = client.get(f"/v1/consultant/conversations/{conversation_id}/messages", headers=headers)
    assert [m["sender"] for m in resp.json()] == ["user", "ai"]

    resp = client.delete(f"/v1/consultant/conversations/{conversation_id}", headers=headers)
    assert resp.status_code == 204
    resp = client.get(f"/v1/consultant/conversations/{conversation_id}/messages", headers=headers)
    assert resp.status_code == 404


def test_chat_endpoint_anonymous_uses_client_history(client, monkeypatch):
    gen = _Recorder(reply="Hi there")
    monkeypatch.setattr(gemini, "generate_content", gen)
    headers = anonymous_headers()

    payload = {
        "message": "Tell me about Oxford",
        "history": [
            {"sender": "user", "content": "hello"},
            {"sender": "ai", "content": "Hi, how can I help?"},
        ],
    }
    resp = client.post("/v1/consultant/chat", json=payload, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["conversation_id"] is None
    assert [h["role"] for h in gen.calls[0][1]["history"]] == ["user", "model"]

    resp = client.post("/v1/consultant/chat", json=payload, headers=headers)
    assert resp.status_code == 402
    assert resp.json()["error"] == "limit_reached"

    resp = client.get("/v1/consultant/conversations", headers=headers)
    assert resp.status_code == 401


def test_chat_endpoint_llm_errors(client, monkeypatch):
    headers = build_auth_headers()
    monkeypatch.setattr(gemini, "generate_content", _Recorder(exc=TimeoutError("slow")))
    resp = client.post("/v1/consultant/chat", json={"message": "hi"}, headers=headers)
    assert resp.status_code == 502
    assert resp.json()["detail"]["code"] == "LLM_TIMEOUT"

    monkeypatch.setattr(gemini, "generate_content", _Recorder(exc=RuntimeError("down")))
    resp = client.post("/v1/consultant/chat", json={"message": "hi"}, headers=headers)
    assert resp.status_code == 502
    assert resp.json()["detail"]["code"] == "LLM_ERROR"


def test_chat_endpoint_unknown_conversation(client, monkeypatch):
    recorder = _Recorder()
    monkeypatch.setattr(gemini, "generate_content", recorder)
    headers = build_auth_headers()
    before = client.get("/v1/limits/chat", headers=headers).json()["remaining"]

    resp = client.post(
        "/v1/consultant/chat",
        json={"message": "hi", "conversation_id": str(uuid.uuid4())},
        headers=headers,
    )
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "NOT_FOUND"
    assert recorder.calls == []

    after = client.get("/v1/limits/chat", headers=headers).json()["remaining"]
    assert after == before


def test_create_conversation_endpoint(client):
    resp = client.post(
        "/v1/consultant/conversations", json={"title": "Essays"}, headers=build_auth_headers()
    )
    assert resp.status_code == 201
    assert resp.json()["title"] == "Essays"
