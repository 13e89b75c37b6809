"""
Agent transport -- streaming generate requests and NDJSON decoding.

Usage:
    from roundtalk.llm import LineDecoder, OllamaClient

    client = OllamaClient()
    call = client.generate(agent, prompt)
    decoder = LineDecoder()
    async for chunk in call:
        for delta in decoder.feed(chunk):
            print(delta, end="")
    outcome = await call.wait()
"""

from .client import (
    GenerationCall,
    GenerationOptions,
    ModelInfo,
    OllamaClient,
    OutcomeKind,
    StreamOutcome,
)
from .line_decoder import LineDecoder, StreamRecord, decode_record
