import json

import httpx
import pytest
from fastapi.testclient import TestClient

from agent_chat.api.main import create_app
from agent_chat.config import Settings
from agent_chat.ingest.embedder import HashingEmbedder
from agent_chat.store import SqliteStore
from conftest import ScriptedChatModel, text_turn, tool_turn

HEADERS = {"X-User-Id": "user-1"}

WEATHER_SCHEMA = {
    "openapi": "3.0.0",
    "paths": {
        "/weather": {
            "get": {
                "operationId": "getWeather",
                "summary": "Current weather for a city",
                "parameters": [
                    {"name": "city", "in": "query", "required": True, "schema": {"type": "string"}}
                ],
            },
            "post": {"operationId": "setWeather"},
        }
    },
}


def _upstream(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/openapi.json":
        return httpx.Response(200, json=WEATHER_SCHEMA)
    if request.url.path == "/broken.json":
        return httpx.Response(200, json={"openapi": "3.0.0"})
    if request.url.path == "/weather":
        return httpx.Response(200, json={"city": request.url.params["city"], "sky": "sunny"})
    return httpx.Response(404)


def _client(tmp_path, llm=None, tool_server_loader=None) -> TestClient:
    async def no_servers(servers):
        return []

    app = create_app(
        Settings(database_path=str(tmp_path / "api.db"), openai_api_key=None),
        store=SqliteStore(tmp_path / "api.db"),
        llm=llm,
        embedder=HashingEmbedder(dimension=128),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(_upstream)),
        tool_server_loader=tool_server_loader or no_servers,
    )
    return TestClient(app)


def _events(response) -> list[dict]:
    return [json.loads(line) for line in response.text.splitlines() if line.strip()]


def _create_agent(client: TestClient) -> str:
    response = client.post("/api/agents", json={"name": "Support"}, headers=HEADERS)
    assert response.status_code == 201
    return response.json()["id"]


def test_health(tmp_path) -> None:
    response = _client(tmp_path).get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "llm_configured": False}


def test_agent_crud_is_scoped_to_the_caller(tmp_path) -> None:
    client = _client(tmp_path)
    agent_id = _create_agent(client)

    assert [a["id"] for a in client.get("/api/agents", headers=HEADERS).json()] == [agent_id]
    assert client.get("/api/agents", headers={"X-User-Id": "someone-else"}).json() == []

    other = client.get(f"/api/agents/{agent_id}", headers={"X-User-Id": "someone-else"})
    assert other.status_code == 404
    assert other.json() == {"error": "AGENT_NOT_FOUND"}

    updated = client.patch(
        f"/api/agents/{agent_id}", json={"description": "Answers questions"}, headers=HEADERS
    )
    assert updated.json()["description"] == "Answers questions"
    assert updated.json()["name"] == "Support"

    assert client.delete(f"/api/agents/{agent_id}", headers=HEADERS).status_code == 204
    assert client.get(f"/api/agents/{agent_id}", headers=HEADERS).status_code == 404


def test_missing_caller_identity_is_unauthorized(tmp_path) -> None:
    response = _client(tmp_path).get("/api/agents")

    assert response.status_code == 401
    assert response.json() == {"error": "UNAUTHORIZED"}


def test_invalid_body_is_rejected(tmp_path) -> None:
    response = _client(tmp_path).post("/api/agents", json={"name": "   "}, headers=HEADERS)

    assert response.status_code == 400
    assert response.json() == {"error": "INVALID_REQUEST"}


def test_document_upload_list_search_and_delete(tmp_path) -> None:
    client = _client(tmp_path)
    agent_id = _create_agent(client)
    text = "Refunds are issued within fourteen days of purchase.\n\nShipping takes three days."

    upload = client.post(
        f"/api/agents/{agent_id}/documents",
        files={"file": ("faq.txt", text.encode("utf-8"), "text/plain")},
        headers=HEADERS,
    )
    assert upload.status_code == 201
    document = upload.json()
    assert document["name"] == "faq.txt"
    assert document["chunk_count"] == 1

    listed = client.get(f"/api/agents/{agent_id}/documents", headers=HEADERS).json()
    assert [item["id"] for item in listed] == [document["id"]]

    search = client.post(
        f"/api/agents/{agent_id}/search", json={"query": "refunds", "top_k": 1}, headers=HEADERS
    )
    assert search.status_code == 200
    assert search.json()["items"][0]["doc_id"] == document["id"]

    deleted = client.delete(f"/api/agents/{agent_id}/documents/{document['id']}", headers=HEADERS)
    assert deleted.status_code == 204
    missing = client.delete(f"/api/agents/{agent_id}/documents/{document['id']}", headers=HEADERS)
    assert missing.json() == {"error": "DOCUMENT_NOT_FOUND"}


def test_unsupported_upload_is_rejected(tmp_path) -> None:
    client = _client(tmp_path)
    agent_id = _create_agent(client)

    response = client.post(
        f"/api/agents/{agent_id}/documents",
        files={"file": ("sheet.csv", b"a,b\n1,2", "text/csv")},
        headers=HEADERS,
    )

    assert response.status_code == 400
    assert response.json() == {"error": "INVALID_REQUEST"}
    assert client.get(f"/api/agents/{agent_id}/documents", headers=HEADERS).json() == []


def test_corrupt_pdf_upload_is_rejected(tmp_path) -> None:
    client = _client(tmp_path)
    agent_id = _create_agent(client)

    response = client.post(
        f"/api/agents/{agent_id}/documents",
        files={"file": ("report.pdf", b"not a pdf at all", "application/pdf")},
        headers=HEADERS,
    )

    assert response.status_code == 400
    assert response.json() == {"error": "INVALID_REQUEST"}
    assert client.get(f"/api/agents/{agent_id}/documents", headers=HEADERS).json() == []


def test_non_utf8_text_upload_is_stored(tmp_path) -> None:
    client = _client(tmp_path)
    agent_id = _create_agent(client)

    response = client.post(
        f"/api/agents/{agent_id}/documents",
        files={"file": ("menu.txt", b"caf\xe9 menu", "text/plain")},
        headers=HEADERS,
    )

    assert response.status_code == 201
    assert response.json()["chunk_count"] == 1


def test_openapi_integration_lifecycle(tmp_path) -> None:
    client = _client(tmp_path)
    agent_id = _create_agent(client)

    created = client.post(
        f"/api/agents/{agent_id}/openapis",
        json={
            "name": "weather",
            "schema_url": "https://weather.example.com/openapi.json",
            "api_url": "https://weather.example.com",
        },
        headers=HEADERS,
    )
    assert created.status_code == 201
    payload = created.json()
    assert [tool["function"]["name"] for tool in payload["tools"]] == ["getWeather"]

    fetched = client.get(f"/api/agents/{agent_id}/openapis/{payload['id']}", headers=HEADERS)
    assert fetched.json()["api_url"] == "https://weather.example.com"

    renamed = client.patch(
        f"/api/agents/{agent_id}/openapis/{payload['id']}", json={"name": "wx"}, headers=HEADERS
    )
    assert renamed.json()["name"] == "wx"
    assert len(renamed.json()["tools"]) == 1

    assert (
        client.delete(f"/api/agents/{agent_id}/openapis/{payload['id']}", headers=HEADERS).status_code
        == 204
    )
    gone = client.get(f"/api/agents/{agent_id}/openapis/{payload['id']}", headers=HEADERS)
    assert gone.json() == {"error": "OPENAPI_NOT_FOUND"}


@pytest.mark.parametrize("schema_path", ["/broken.json", "/missing.json"])
def test_unusable_openapi_schema_is_rejected(tmp_path, schema_path: str) -> None:
    client = _client(tmp_path)
    agent_id = _create_agent(client)

    response = client.post(
        f"/api/agents/{agent_id}/openapis",
        json={
            "name": "broken",
            "schema_url": f"https://weather.example.com{schema_path}",
            "api_url": "https://weather.example.com",
        },
        headers=HEADERS,
    )

    assert response.status_code == 400
    assert response.json() == {"error": "INVALID_REQUEST"}


def test_tool_server_crud_and_transport_validation(tmp_path) -> None:
    client = _client(tmp_path)
    agent_id = _create_agent(client)

    rejected = client.post(
        f"/api/agents/{agent_id}/tool-servers",
        json={"name": "local", "transport": "stdio", "url": "file:///tmp/server"},
        headers=HEADERS,
    )
    assert rejected.status_code == 400

    created = client.post(
        f"/api/agents/{agent_id}/tool-servers",
        json={"name": "inventory", "transport": "SSE", "url": "https://inventory.example.com/sse"},
        headers=HEADERS,
    )
    assert created.status_code == 201
    server = created.json()
    assert server["transport"] == "sse"

    updated = client.patch(
        f"/api/agents/{agent_id}/tool-servers/{server['id']}",
        json={"transport": "http"},
        headers=HEADERS,
    )
    assert updated.json()["transport"] == "http"

    listed = client.get(f"/api/agents/{agent_id}/tool-servers", headers=HEADERS).json()
    assert [item["name"] for item in listed] == ["inventory"]

    assert (
        client.delete(f"/api/agents/{agent_id}/tool-servers/{server['id']}", headers=HEADERS).status_code
        == 204
    )
    missing = client.get(f"/api/agents/{agent_id}/tool-servers/{server['id']}", headers=HEADERS)
    assert missing.json() == {"error": "TOOL_SERVER_NOT_FOUND"}


def test_chat_without_model_is_unavailable(tmp_path) -> None:
    client = _client(tmp_path)
    agent_id = _create_agent(client)

    response = client.post(f"/api/agents/{agent_id}/chat", json={"message": "hi"}, headers=HEADERS)

    assert response.status_code == 503
    assert response.json() == {"error": "MODEL_NOT_CONFIGURED"}


def test_chat_for_unknown_agent_is_rejected(tmp_path) -> None:
    client = _client(tmp_path, llm=ScriptedChatModel([]))

    response = client.post("/api/agents/nope/chat", json={"message": "hi"}, headers=HEADERS)

    assert response.status_code == 404
    assert response.json() == {"error": "AGENT_NOT_FOUND"}


def test_chat_streams_tool_calls_and_answer(tmp_path) -> None:
    model = ScriptedChatModel(
        [
            tool_turn(("getWeather", {"city": "Oslo"}, "call_1")),
            text_turn("It is ", "sunny in Oslo."),
        ]
    )
    client = _client(tmp_path, llm=model)
    agent_id = _create_agent(client)
    client.post(
        f"/api/agents/{agent_id}/openapis",
        json={
            "name": "weather",
            "schema_url": "https://weather.example.com/openapi.json",
            "api_url": "https://weather.example.com",
        },
        headers=HEADERS,
    )

    response = client.post(
        f"/api/agents/{agent_id}/chat", json={"message": "Weather in Oslo?"}, headers=HEADERS
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/x-ndjson")
    events = _events(response)
    assert [event["type"] for event in events] == [
        "tool_call",
        "tool_result",
        "token",
        "token",
        "done",
    ]
    assert events[0] == {"type": "tool_call", "tool": "getWeather", "args": {"city": "Oslo"}, "id": "call_1"}
    assert json.loads(events[1]["content"]) == {"city": "Oslo", "sky": "sunny"}
    assert "".join(e["content"] for e in events if e["type"] == "token") == "It is sunny in Oslo."
    assert sorted(tool["function"]["name"] for tool in model.bound_tools) == ["doc_search", "getWeather"]


def test_chat_reports_tool_server_discovery_failure(tmp_path) -> None:
    async def unreachable(servers):
        raise ConnectionError("inventory server unreachable")

    client = _client(tmp_path, llm=ScriptedChatModel([text_turn("unused")]), tool_server_loader=unreachable)
    agent_id = _create_agent(client)

    response = client.post(f"/api/agents/{agent_id}/chat", json={"message": "hi"}, headers=HEADERS)

    assert _events(response) == [{"type": "error", "message": "inventory server unreachable"}]
