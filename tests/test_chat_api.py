import pytest

from healthmate import ai_client
from healthmate.ai_client import ChatResult
from healthmate.routes.chat import APOLOGY_MESSAGE

from conftest import SAMPLE_SUMMARY


@pytest.fixture
def chat_calls(monkeypatch):
    calls = []

    async def fake_chat(user_message, context=""):
        calls.append((user_message, context))
        return ChatResult(success=True, response="Stay hydrated. Pani zyada piyen.", model="test-model")

    monkeypatch.setattr(ai_client, "generate_chat_response", fake_chat)
    return calls


def upload_report(client, headers, name="thyroid_panel.pdf"):
    response = client.post(
        "/reports/upload",
        files={"report": (name, b"%PDF-1.4 thyroid", "application/pdf")},
        headers=headers,
    )
    return response.json()["data"]["report"]["id"]


def test_get_chat_creates_empty_chat(client, auth_headers):
    response = client.get("/chat", headers=auth_headers)

    assert response.status_code == 200
    chat = response.json()["data"]["chat"]
    assert chat["messages"] == []
    assert chat["isActive"] is True


def test_send_message(client, auth_headers, chat_calls):
    response = client.post("/chat/message", json={"message": "  Is my report okay?  "}, headers=auth_headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["userMessage"]["role"] == "user"
    assert data["userMessage"]["content"] == "Is my report okay?"
    assert data["aiResponse"]["role"] == "assistant"
    assert data["aiResponse"]["content"] == "Stay hydrated. Pani zyada piyen."
    assert "timestamp" in data["aiResponse"]
    assert chat_calls == [("Is my report okay?", "")]

    messages = client.get("/chat", headers=auth_headers).json()["data"]["chat"]["messages"]
    assert [m["role"] for m in messages] == ["user", "assistant"]


def test_send_message_with_report_context(client, auth_headers, chat_calls):
    report_id = upload_report(client, auth_headers)

    response = client.post(
        "/chat/message",
        json={"message": "Explain my thyroid results", "reportId": report_id},
        headers=auth_headers,
    )

    assert response.status_code == 200
    assert response.json()["data"]["userMessage"]["reportId"] == report_id
    _, context = chat_calls[0]
    assert "thyroid_panel.pdf" in context
    assert SAMPLE_SUMMARY.english in context


def test_send_message_uses_recent_reports_without_report_id(client, auth_headers, chat_calls):
    upload_report(client, auth_headers, "lipids.pdf")

    client.post("/chat/message", json={"message": "Any concerns?"}, headers=auth_headers)

    _, context = chat_calls[0]
    assert context.startswith("Recent reports context:")
    assert "lipids.pdf" in context


def test_send_empty_message(client, auth_headers, chat_calls):
    response = client.post("/chat/message", json={"message": "   "}, headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["message"] == "Message cannot be empty"
    assert chat_calls == []


def test_send_message_ai_failure_stores_apology(client, auth_headers, monkeypatch):
    async def failing_chat(user_message, context=""):
        return ChatResult(success=False, error="quota exceeded")

    monkeypatch.setattr(ai_client, "generate_chat_response", failing_chat)

    response = client.post("/chat/message", json={"message": "Hello?"}, headers=auth_headers)

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Error generating AI response"
    assert body["data"]["aiResponse"]["content"] == APOLOGY_MESSAGE

    messages = client.get("/chat", headers=auth_headers).json()["data"]["chat"]["messages"]
    assert [m["content"] for m in messages] == ["Hello?", APOLOGY_MESSAGE]


def test_history_stats_search_and_clear(client, auth_headers, chat_calls):
    for text in ("What is HbA1c?", "Is my sugar high?", "Thanks"):
        client.post("/chat/message", json={"message": text}, headers=auth_headers)

    history = client.get("/chat/history", params={"limit": 2}, headers=auth_headers).json()["data"]
    assert history["totalMessages"] == 6
    assert history["hasMore"] is True
    assert len(history["messages"]) == 2

    stats = client.get("/chat/stats", headers=auth_headers).json()["data"]
    assert stats["totalMessages"] == 6
    assert stats["userMessages"] == 3
    assert stats["aiMessages"] == 3

    search = client.get("/chat/search", params={"query": "SUGAR"}, headers=auth_headers).json()["data"]
    assert search["totalResults"] == 1
    assert search["query"] == "SUGAR"
    assert search["messages"][0]["content"] == "Is my sugar high?"

    cleared = client.delete("/chat/history", headers=auth_headers)
    assert cleared.json()["message"] == "Chat history cleared successfully"
    assert client.get("/chat/stats", headers=auth_headers).json()["data"]["totalMessages"] == 0


def test_search_requires_query(client, auth_headers):
    response = client.get("/chat/search", headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["message"] == "Search query is required"


def test_clear_history_without_chat(client, auth_headers):
    response = client.delete("/chat/history", headers=auth_headers)

    assert response.status_code == 404
