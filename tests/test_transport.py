"""Transport client -- streaming calls, terminal outcomes, model listing."""

import asyncio

import httpx
import pytest

from conftest import HANG
from roundtalk.errors import TransportCancelled, TransportError
from roundtalk.llm import GenerationOptions, LineDecoder, OllamaClient, OutcomeKind
from roundtalk.llm.client import format_size


async def _collect(call) -> list[str]:
    decoder = LineDecoder()
    deltas = []
    async for chunk in call:
        deltas.extend(decoder.feed(chunk))
    deltas.extend(decoder.finish())
    return deltas


class TestGenerate:

    @pytest.mark.asyncio
    async def test_payload(self, client, server, agents):
        server.script("alpha", "hello")
        call = client.generate(agents[0], "Model A:")
        await _collect(call)
        await call.wait()
        assert server.requests == [{
            "model": "alpha",
            "prompt": "Model A:",
            "stream": True,
            "options": {"temperature": 0.7, "top_p": 0.9},
        }]

    @pytest.mark.asyncio
    async def test_streams_deltas_then_success(self, client, server, agents):
        server.script("alpha", [b'{"response":"Hel', b'lo"}\n{"response":" world"}\n', b'{"done":true}\n'])
        call = client.generate(agents[0], "p")
        assert "".join(await _collect(call)) == "Hello world"
        outcome = await call.wait()
        assert outcome.ok
        assert call.bytes_received > 0

    @pytest.mark.asyncio
    async def test_error_status(self, client, server, agents):
        server.script("alpha", 404)
        call = client.generate(agents[0], "p")
        assert await _collect(call) == []
        outcome = await call.wait()
        assert outcome.kind is OutcomeKind.ERROR
        assert outcome.error.status_code == 404
        assert outcome.error.agent_id == "agent-a"
        assert "model exploded" in outcome.error.reason

    @pytest.mark.asyncio
    async def test_connection_failure(self, agents):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with OllamaClient(transport=httpx.MockTransport(refuse)) as client:
            call = client.generate(agents[0], "p")
            outcome = await call.wait()
        assert outcome.kind is OutcomeKind.ERROR
        assert "ConnectError" in outcome.error.reason

    @pytest.mark.asyncio
    async def test_cancel_in_flight(self, client, server, agents):
        server.script("alpha", HANG)
        call = client.generate(agents[0], "p")
        chunks = []

        async def consume():
            async for chunk in call:
                chunks.append(chunk)

        consumer = asyncio.create_task(consume())
        while not chunks:
            await asyncio.sleep(0.01)
        assert call.cancel() is True
        await asyncio.wait_for(consumer, timeout=1)

        outcome = await call.wait()
        assert outcome.is_cancelled
        assert isinstance(outcome.error, TransportCancelled)
        assert call.cancel() is False

    @pytest.mark.asyncio
    async def test_close_after_done_settles_success(self, client, server, agents):
        server.script("alpha", HANG)
        call = client.generate(agents[0], "p")
        async for _ in call:
            call.close()
        assert (await call.wait()).ok

    @pytest.mark.asyncio
    async def test_unencodable_prompt_is_rejected_not_raised(self, client, agents):
        call = client.generate(agents[0], "\ud800 lone surrogate")
        outcome = await call.wait()
        assert outcome.kind is OutcomeKind.ERROR
        assert "encoding" in outcome.error.reason
        assert [c async for c in call] == []

    @pytest.mark.asyncio
    async def test_timeout(self, agents):
        def slow(request):
            raise httpx.ReadTimeout("too slow", request=request)

        async with OllamaClient(timeout=0.5, transport=httpx.MockTransport(slow)) as client:
            outcome = await client.generate(agents[0], "p").wait()
        assert outcome.error.reason == "timed out after 0.5s"

    @pytest.mark.asyncio
    async def test_options_from_config(self, server, agents):
        from roundtalk.config import DialogueConfig

        config = DialogueConfig(temperature=1.2, top_p=0.5)
        client = OllamaClient.from_config(config, transport=httpx.MockTransport(server.handler))
        assert client.options == GenerationOptions(temperature=1.2, top_p=0.5)
        assert client.build_payload(agents[0], "x")["options"] == {"temperature": 1.2, "top_p": 0.5}
        await client.aclose()


class TestModelListing:

    @pytest.mark.asyncio
    async def test_list_models_sorted(self, client, agents):
        models = await client.list_models(agents[0])
        assert [m.name for m in models] == ["llama3.2", "mistral"]
        assert models[0].display_string == "llama3.2 (1.9 GiB)"

    @pytest.mark.asyncio
    async def test_list_models_http_error(self, agents):
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        async with OllamaClient(transport=transport) as client:
            with pytest.raises(TransportError) as exc:
                await client.list_models(agents[0])
        assert exc.value.status_code == 500

    @pytest.mark.asyncio
    async def test_list_models_skips_bad_entries(self, agents):
        body = {"models": [{"name": "ok"}, {"size": 3}, "junk"]}
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=body))
        async with OllamaClient(transport=transport) as client:
            models = await client.list_models(agents[0])
        assert [m.display_string for m in models] == ["ok"]

    @pytest.mark.asyncio
    async def test_health_check(self, client, agents):
        assert await client.health_check(agents[0]) is True

        def refuse(request):
            raise httpx.ConnectError("down", request=request)

        async with OllamaClient(transport=httpx.MockTransport(refuse)) as down:
            assert await down.health_check(agents[0]) is False


def test_format_size():
    assert format_size(512) == "512 bytes"
    assert format_size(2048) == "2.0 KiB"
    assert format_size(4_113_301_824) == "3.8 GiB"

