"""Test fixtures -- scripted Ollama server, agents, config, polling helper."""

import asyncio
import json

import httpx
import pytest
import pytest_asyncio

from roundtalk.agents import AgentDescriptor
from roundtalk.config import DialogueConfig
from roundtalk.llm import OllamaClient

HANG = object()


def ndjson(*records: dict) -> bytes:
    return b"".join(json.dumps(r).encode() + b"\n" for r in records)


def text_records(text: str, pieces: int = 3) -> bytes:
    """Stream `text` as a few response records followed by done:true."""
    size = max(1, -(-len(text) // pieces))
    parts = [text[i:i + size] for i in range(0, len(text), size)] or [""]
    return ndjson(*({"response": p, "done": False} for p in parts), {"response": "", "done": True})


class ScriptedServer:
    """
    Fake Ollama server for httpx.MockTransport.

    Each model has a queue of scripted replies, consumed one per generate
    call (the last one repeats):
      str          -> streamed as response records + done
      bytes / list -> raw body chunks, sent as-is (a trailing HANG stalls)
      int          -> error status with a short body
      HANG         -> one partial record, then the stream never ends
    """

    def __init__(self):
        self.scripts: dict[str, list] = {}
        self.requests: list[dict] = []
        self.models: list[dict] = [
            {"name": "mistral", "size": 4_113_301_824, "modified_at": "2025-01-02T10:00:00Z"},
            {"name": "llama3.2", "size": 2_019_393_189, "modified_at": "2025-01-01T10:00:00Z"},
        ]

    def script(self, model: str, *replies) -> None:
        self.scripts[model] = list(replies)

    def prompts_for(self, model: str) -> list[str]:
        return [r["prompt"] for r in self.requests if r["model"] == model]

    @property
    def call_order(self) -> list[str]:
        return [r["model"] for r in self.requests]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/tags":
            return httpx.Response(200, json={"models": self.models})

        body = json.loads(request.content)
        self.requests.append(body)
        queue = self.scripts.get(body["model"], ["ok"])
        reply = queue.pop(0) if len(queue) > 1 else queue[0]

        if reply is HANG:
            return httpx.Response(200, content=_hanging_stream())
        if isinstance(reply, int):
            return httpx.Response(reply, text="model exploded")
        if isinstance(reply, str):
            reply = text_records(reply)
        chunks = [reply] if isinstance(reply, bytes) else list(reply)
        return httpx.Response(200, content=_chunked(chunks))


async def _chunked(chunks: list):
    for chunk in chunks:
        if chunk is HANG:
            await asyncio.sleep(3600)
            continue
        yield chunk


async def _hanging_stream():
    yield ndjson({"response": "I am still thin", "done": False})
    await asyncio.sleep(3600)
    yield b""


@pytest.fixture
def server():
    return ScriptedServer()


@pytest.fixture
def config():
    return DialogueConfig(max_turns=3, context_window=12, request_timeout=5.0)


@pytest_asyncio.fixture
async def client(server, config):
    ollama = OllamaClient.from_config(config, transport=httpx.MockTransport(server.handler))
    yield ollama
    await ollama.aclose()


@pytest.fixture
def agents():
    return [
        AgentDescriptor.create(display_name="Model A", model_name="alpha", agent_id="agent-a"),
        AgentDescriptor.create(display_name="Model B", model_name="beta", agent_id="agent-b"),
    ]


async def wait_until(condition, timeout: float = 2.0) -> None:
    """Poll `condition()` until true; fail the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)
