"""HTTP API -- conversation lifecycle, model discovery, health."""

import asyncio
import json
from types import SimpleNamespace

import httpx
import pytest
import pytest_asyncio

from conftest import HANG
from roundtalk.api.gateway import create_app
from roundtalk.api.routes.conversations import stream_events
from roundtalk.llm import OllamaClient
from roundtalk.orchestration import TurnScheduler


def _agents_payload():
    return [
        {"name": "Model A", "model": "alpha"},
        {"name": "Model B", "model": "beta", "persona": "playful"},
    ]


@pytest_asyncio.fixture
async def http(client, config):
    app = create_app(client=client, config=config)
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as http_client:
        yield http_client


async def _poll(http, conversation_id: str, phase: str, timeout: float = 2.0) -> dict:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        body = (await http.get(f"/api/v1/conversations/{conversation_id}")).json()
        if body["phase"] == phase:
            return body
        if loop.time() > deadline:
            raise AssertionError(f"still {body['phase']}, expected {phase}")
        await asyncio.sleep(0.01)


class TestConversations:

    @pytest.mark.asyncio
    async def test_start_and_complete(self, http, server):
        server.script("alpha", "Hello from A")
        response = await http.post("/api/v1/conversations", json={
            "prompt": "Discuss tides",
            "agents": _agents_payload(),
            "max_turns": 1,
        })
        assert response.status_code == 201
        started = response.json()
        assert started["messages"][0]["text"] == "Discuss tides"
        assert started["agent_count"] == 2

        body = await _poll(http, started["conversation_id"], "completed")
        assert body["status"] == "Turn limit reached"
        assert [m["sender_name"] for m in body["messages"]] == ["User", "Model A", "Model B"]
        assert body["messages"][1]["text"] == "Hello from A"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [
        {"prompt": "Go", "agents": []},
        {"prompt": "", "agents": _agents_payload()},
        {"prompt": "Go", "agents": [{"name": "A", "model": "m", "persona": "pirate"}]},
        {"prompt": "Go", "agents": [{"name": "A", "model": "m", "port": 0}]},
        {"prompt": "Go", "agents": _agents_payload(), "max_turns": 0},
    ])
    async def test_bad_requests(self, http, payload):
        response = await http.post("/api/v1/conversations", json=payload)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_conversation(self, http):
        assert (await http.get("/api/v1/conversations/nope")).status_code == 404
        assert (await http.post("/api/v1/conversations/nope/cancel")).status_code == 404

    @pytest.mark.asyncio
    async def test_clarification_round_trip(self, http, server):
        server.script("alpha", "<clarifyWithUser>Budget?</clarifyWithUser>", "<conversationEnd/>")
        server.script("beta", "<conversationEnd/>")
        started = (await http.post("/api/v1/conversations", json={
            "prompt": "Plan a trip", "agents": _agents_payload(),
        })).json()
        conversation_id = started["conversation_id"]

        suspended = await _poll(http, conversation_id, "clarifying_suspended")
        assert suspended["pending_question"] == "Budget?"

        blank = await http.post(
            f"/api/v1/conversations/{conversation_id}/clarification", json={"answer": " "}
        )
        assert blank.status_code == 400

        answered = await http.post(
            f"/api/v1/conversations/{conversation_id}/clarification", json={"answer": "500 EUR"}
        )
        assert answered.status_code == 200
        assert answered.json()["pending_question"] is None

        done = await _poll(http, conversation_id, "terminated")
        assert "500 EUR" in [m["text"] for m in done["messages"]]

        late = await http.post(
            f"/api/v1/conversations/{conversation_id}/clarification", json={"answer": "again"}
        )
        assert late.status_code == 409

    @pytest.mark.asyncio
    async def test_cancel(self, http, server):
        server.script("alpha", HANG)
        started = (await http.post("/api/v1/conversations", json={
            "prompt": "Go", "agents": _agents_payload(),
        })).json()
        conversation_id = started["conversation_id"]
        await _poll(http, conversation_id, "awaiting_stream")

        response = await http.post(f"/api/v1/conversations/{conversation_id}/cancel")
        assert response.status_code == 200
        assert response.json()["phase"] == "cancelled"
        assert response.json()["status"] == "Cancelled by user"

        again = await http.post(f"/api/v1/conversations/{conversation_id}/cancel")
        assert again.json()["phase"] == "cancelled"
        assert len(again.json()["messages"]) == 1


class TestModelsAndHealth:

    @pytest.mark.asyncio
    async def test_health(self, http, server):
        server.script("alpha", HANG)
        body = (await http.get("/api/v1/health")).json()
        assert body["status"] == "healthy"
        assert body["active_conversations"] == 0

        started = (await http.post(
            "/api/v1/conversations", json={"prompt": "Go", "agents": _agents_payload()}
        )).json()
        body = (await http.get("/api/v1/health")).json()
        assert body["active_conversations"] == 1
        assert body["total_conversations"] == 1

        await http.post(f"/api/v1/conversations/{started['conversation_id']}/cancel")
        body = (await http.get("/api/v1/health")).json()
        assert body["active_conversations"] == 0

    @pytest.mark.asyncio
    async def test_models(self, http):
        response = await http.get("/api/v1/models", params={"host": "gpu-box", "port": 11435})
        assert response.status_code == 200
        body = response.json()
        assert (body["host"], body["port"]) == ("gpu-box", 11435)
        assert [m["name"] for m in body["models"]] == ["llama3.2", "mistral"]
        assert body["models"][1]["display"] == "mistral (3.8 GiB)"

    @pytest.mark.asyncio
    async def test_models_bad_endpoint(self, http):
        response = await http.get("/api/v1/models", params={"host": "not a host"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_models_unreachable_server(self, config):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        ollama = OllamaClient(transport=httpx.MockTransport(refuse))
        app = create_app(client=ollama, config=config)
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://test"
        ) as http:
            response = await http.get("/api/v1/models")
        await ollama.aclose()
        assert response.status_code == 502


def _parse_sse(chunk: str) -> tuple[str, dict]:
    event_line, data_line = chunk.strip().split("\n")
    return event_line.removeprefix("event: "), json.loads(data_line.removeprefix("data: "))


class TestEventStream:

    async def _open(self, app, scheduler: TurnScheduler):
        """Register the conversation and return the raw SSE body iterator."""
        app.state.conversations[scheduler.conversation_id] = scheduler
        response = await stream_events(scheduler.conversation_id, SimpleNamespace(app=app))
        return response.body_iterator

    @pytest.mark.asyncio
    async def test_slow_reader_receives_whole_transcript(self, client, server, agents, config):
        """A reader that falls behind still gets every queued event before done."""
        server.script("alpha", "Hello from A")
        app = create_app(client=client, config=config)
        scheduler = TurnScheduler(client, config.with_overrides(max_turns=2))
        body = await self._open(app, scheduler)

        kind, snapshot = _parse_sse(await body.__anext__())
        assert (kind, snapshot["phase"]) == ("snapshot", "idle")

        await scheduler.run("Discuss tides", agents)
        events = [_parse_sse(chunk) async for chunk in body]

        assert [kind for kind, _ in events][-2:] == ["phase", "done"]
        assert events[-1][1] == {"phase": "completed"}
        messages = [data["text"] for kind, data in events if kind == "message"]
        assert messages == ["Discuss tides", "Hello from A", "ok"]
        statuses = [data["status"] for kind, data in events if kind == "status"]
        assert statuses[-1] == "Turn limit reached"
        assert scheduler.store._listeners == []

    @pytest.mark.asyncio
    async def test_finished_conversation_sends_snapshot_and_done(
        self, client, server, agents, config
    ):
        app = create_app(client=client, config=config)
        scheduler = TurnScheduler(client, config.with_overrides(max_turns=1))
        await scheduler.run("Go", agents)
        body = await self._open(app, scheduler)

        events = [_parse_sse(chunk) async for chunk in body]

        assert [kind for kind, _ in events] == ["snapshot", "done"]
        assert len(events[0][1]["messages"]) == 3

    @pytest.mark.asyncio
    async def test_unread_stream_does_not_subscribe(self, client, config):
        app = create_app(client=client, config=config)
        scheduler = TurnScheduler(client, config)
        await self._open(app, scheduler)

        assert scheduler.store._listeners == []

    @pytest.mark.asyncio
    async def test_unknown_conversation_over_http(self, http):
        response = await http.get("/api/v1/conversations/nope/events")
        assert response.status_code == 404
