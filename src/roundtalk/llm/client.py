"""
Streaming generate client for Ollama-compatible agent endpoints.

Wire contract:
    POST http://{host}:{port}/api/generate
    {"model": ..., "prompt": ..., "stream": true,
     "options": {"temperature": ..., "top_p": ...}}
    -> newline-delimited JSON records {"response": "...", "done": false}

Each call to `generate()` returns a GenerationCall. The call owns one
in-flight request: iterate it for raw byte chunks, then `await call.wait()`
for the terminal StreamOutcome, which is settled exactly once (success,
error or cancelled). `call.cancel()` may be invoked from any coroutine; it
stops the request and unblocks both the iterator and `wait()`.

    client = OllamaClient(options=GenerationOptions(temperature=0.7))
    call = client.generate(agent, prompt)
    async for chunk in call:
        deltas = decoder.feed(chunk)
    outcome = await call.wait()
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from ..agents import AgentDescriptor
from ..config import DEFAULT_REQUEST_TIMEOUT, DEFAULT_TEMPERATURE, DEFAULT_TOP_P, DialogueConfig
from ..errors import TransportCancelled, TransportError

logger = logging.getLogger(__name__)

GENERATE_PATH = "/api/generate"
TAGS_PATH = "/api/tags"
HEALTH_TIMEOUT_SECONDS = 10
MAX_ERROR_DETAIL = 200
JSON_HEADERS = {"Content-Type": "application/json"}


# =============================================================================
# DATA MODELS
# =============================================================================


@dataclass(frozen=True)
class GenerationOptions:
    """Sampling options sent with every generate request."""

    temperature: float = DEFAULT_TEMPERATURE
    top_p: float = DEFAULT_TOP_P

    def to_dict(self) -> dict[str, float]:
        return {"temperature": self.temperature, "top_p": self.top_p}


class OutcomeKind(Enum):
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class StreamOutcome:
    """Terminal signal of a GenerationCall."""

    kind: OutcomeKind
    error: TransportError | None = None

    @classmethod
    def success(cls) -> "StreamOutcome":
        return cls(OutcomeKind.SUCCESS)

    @classmethod
    def failed(cls, error: TransportError) -> "StreamOutcome":
        return cls(OutcomeKind.ERROR, error)

    @classmethod
    def cancelled(cls, agent_id: str) -> "StreamOutcome":
        return cls(OutcomeKind.CANCELLED, TransportCancelled(agent_id))

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @property
    def is_cancelled(self) -> bool:
        return self.kind is OutcomeKind.CANCELLED


@dataclass(frozen=True)
class ModelInfo:
    """A model installed on an agent endpoint (from /api/tags)."""

    name: str
    size: int | None = None
    modified_at: str | None = None

    @property
    def display_string(self) -> str:
        if self.size is None:
            return self.name
        return f"{self.name} ({format_size(self.size)})"


def format_size(num_bytes: int) -> str:
    """Binary byte count, e.g. 4661224676 -> '4.3 GiB'."""
    size = float(num_bytes)
    for unit in ("bytes", "KiB", "MiB", "GiB", "TiB"):
        if size < 1024 or unit == "TiB":
            if unit == "bytes":
                return f"{int(size)} bytes"
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TiB"


# =============================================================================
# GENERATION CALL
# =============================================================================


class GenerationCall:
    """One streaming generate request.

    A background task pumps response bytes into a queue; consumers iterate
    the call and then read the outcome. The outcome future is settled by
    whichever happens first: natural completion, a transport failure,
    `cancel()` or `close()`.
    """

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        self._outcome: asyncio.Future[StreamOutcome] = (
            asyncio.get_running_loop().create_future()
        )
        self._chunks: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._bytes_received = 0

    @classmethod
    def open(
        cls,
        http: httpx.AsyncClient,
        agent_id: str,
        url: str,
        body: bytes,
        timeout: float,
    ) -> "GenerationCall":
        call = cls(agent_id)
        call._task = asyncio.create_task(call._pump(http, url, body, timeout))
        return call

    @classmethod
    def rejected(cls, error: TransportError) -> "GenerationCall":
        """A call that failed before any request was sent."""
        call = cls(error.agent_id)
        call._settle(StreamOutcome.failed(error))
        call._chunks.put_nowait(None)
        return call

    @property
    def bytes_received(self) -> int:
        return self._bytes_received

    @property
    def settled(self) -> bool:
        return self._outcome.done()

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._chunks.get()
            if chunk is None:
                return
            yield chunk

    async def wait(self) -> StreamOutcome:
        """Wait for the terminal outcome. Never raises."""
        if self._task is not None:
            await asyncio.wait({self._task})
        if not self._outcome.done():
            self._settle(StreamOutcome.cancelled(self.agent_id))
        return self._outcome.result()

    def cancel(self) -> bool:
        """Abort the request. Returns False if the call had already settled."""
        if self._outcome.done():
            return False
        self._settle(StreamOutcome.cancelled(self.agent_id))
        self._stop()
        logger.info(f"[GenerationCall:{self.agent_id}] Cancelled in flight")
        return True

    def close(self) -> None:
        """End the stream early as a success (the final record was received)."""
        self._settle(StreamOutcome.success())
        self._stop()

    def _stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._chunks.put_nowait(None)

    def _settle(self, outcome: StreamOutcome) -> None:
        if not self._outcome.done():
            self._outcome.set_result(outcome)

    async def _pump(
        self, http: httpx.AsyncClient, url: str, body: bytes, timeout: float
    ) -> None:
        try:
            async with http.stream(
                "POST", url, content=body, headers=JSON_HEADERS, timeout=timeout
            ) as response:
                if not response.is_success:
                    raw = await response.aread()
                    detail = raw[:MAX_ERROR_DETAIL].decode("utf-8", errors="replace")
                    raise TransportError(
                        self.agent_id,
                        detail.strip() or response.reason_phrase,
                        status_code=response.status_code,
                    )
                async for chunk in response.aiter_bytes():
                    self._bytes_received += len(chunk)
                    self._chunks.put_nowait(chunk)
        except asyncio.CancelledError:
            self._settle(StreamOutcome.cancelled(self.agent_id))
            raise
        except TransportError as e:
            logger.error(f"[GenerationCall:{self.agent_id}] {e}")
            self._settle(StreamOutcome.failed(e))
        except httpx.TimeoutException:
            logger.error(
                f"[GenerationCall:{self.agent_id}] Timed out after {timeout}s on {url}"
            )
            self._settle(StreamOutcome.failed(
                TransportError(self.agent_id, f"timed out after {timeout}s")
            ))
        except httpx.HTTPError as e:
            logger.error(f"[GenerationCall:{self.agent_id}] Request to {url} failed: {e}")
            self._settle(StreamOutcome.failed(
                TransportError(self.agent_id, f"{type(e).__name__}: {e}")
            ))
        else:
            self._settle(StreamOutcome.success())
        finally:
            self._chunks.put_nowait(None)


# =============================================================================
# CLIENT
# =============================================================================


class OllamaClient:
    """
    HTTP client shared by every agent of a conversation.

    Usage:
        async with OllamaClient.from_config(config) as client:
            models = await client.list_models(agent)
            call = client.generate(agent, "Model A:")
    """

    def __init__(
        self,
        options: GenerationOptions | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._options = options or GenerationOptions()
        self._timeout = timeout
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)
        logger.debug(
            f"[OllamaClient] Initialized (temperature={self._options.temperature}, "
            f"top_p={self._options.top_p}, timeout={timeout}s)"
        )

    @classmethod
    def from_config(
        cls,
        config: DialogueConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "OllamaClient":
        return cls(
            options=GenerationOptions(temperature=config.temperature, top_p=config.top_p),
            timeout=config.request_timeout,
            transport=transport,
        )

    @property
    def options(self) -> GenerationOptions:
        return self._options

    def build_payload(self, agent: AgentDescriptor, prompt: str) -> dict[str, Any]:
        return {
            "model": agent.model_name,
            "prompt": prompt,
            "stream": True,
            "options": self._options.to_dict(),
        }

    def generate(self, agent: AgentDescriptor, prompt: str) -> GenerationCall:
        """Open a streaming generate request for one agent turn.

        Must be called from a running event loop. Encoding failures are
        reported through the returned call's outcome, never raised.
        """
        try:
            body = json.dumps(
                self.build_payload(agent, prompt), ensure_ascii=False
            ).encode("utf-8")
        except (TypeError, ValueError) as e:
            logger.error(f"[OllamaClient] Could not encode request for {agent.display_name}: {e}")
            return GenerationCall.rejected(
                TransportError(agent.id, f"request encoding failed: {e}")
            )

        url = f"{agent.base_url}{GENERATE_PATH}"
        logger.debug(
            f"[OllamaClient] POST {url} model={agent.model_name} "
            f"prompt={len(prompt)} chars"
        )
        return GenerationCall.open(self._http, agent.id, url, body, self._timeout)

    async def list_models(self, agent: AgentDescriptor) -> list[ModelInfo]:
        """Models installed on the agent's server (GET /api/tags)."""
        url = f"{agent.base_url}{TAGS_PATH}"
        try:
            response = await self._http.get(url)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                agent.id, f"model listing failed: {e.response.reason_phrase}",
                status_code=e.response.status_code,
            )
        except httpx.HTTPError as e:
            raise TransportError(agent.id, f"model listing failed: {type(e).__name__}: {e}")
        except ValueError as e:
            raise TransportError(agent.id, f"model listing returned invalid JSON: {e}")

        models = []
        for entry in data.get("models", []) if isinstance(data, dict) else []:
            if not isinstance(entry, dict) or not entry.get("name"):
                continue
            size = entry.get("size")
            models.append(ModelInfo(
                name=str(entry["name"]),
                size=size if isinstance(size, int) else None,
                modified_at=entry.get("modified_at"),
            ))
        models.sort(key=lambda m: m.name)
        logger.info(f"[OllamaClient] {len(models)} models available at {agent.base_url}")
        return models

    async def health_check(self, agent: AgentDescriptor) -> bool:
        """Check if the agent's server is reachable."""
        try:
            response = await self._http.get(
                f"{agent.base_url}{TAGS_PATH}", timeout=HEALTH_TIMEOUT_SECONDS
            )
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.debug(f"[OllamaClient] Health check failed for {agent.base_url}: {e}")
            return False

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "OllamaClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
