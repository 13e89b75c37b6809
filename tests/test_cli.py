"""CLI conversation driver -- clarification prompts and cancellation."""

import asyncio
import threading

import pytest

from conftest import wait_until
from roundtalk import cli
from roundtalk.orchestration import Phase, TurnScheduler


class TestDrive:

    @pytest.mark.asyncio
    async def test_answer_is_submitted(self, client, server, agents, config, monkeypatch):
        server.script("alpha", "<clarifyWithUser>Budget?</clarifyWithUser>", "<conversationEnd/>")
        server.script("beta", "<conversationEnd/>")
        questions = []

        def fake_ask(prompt, *args, **kwargs):
            questions.append(prompt)
            return "500 EUR"

        monkeypatch.setattr(cli.Prompt, "ask", fake_ask)
        scheduler = TurnScheduler(client, config)

        snapshot = await asyncio.wait_for(
            cli._drive(scheduler, "Plan a trip", agents, show_thinking=False), timeout=2
        )

        assert snapshot.phase is Phase.TERMINATED
        assert "500 EUR" in [m.text for m in snapshot.messages]
        assert len(questions) == 1
        assert "Budget?" in questions[0]

    @pytest.mark.asyncio
    async def test_cancel_while_prompting_does_not_wait_for_stdin(
        self, client, server, agents, config, monkeypatch
    ):
        """Cancelling during a prompt returns at once; the abandoned answer is ignored."""
        server.script("alpha", "<clarifyWithUser>Budget?</clarifyWithUser>")
        asked = threading.Event()
        release = threading.Event()

        def blocking_ask(*args, **kwargs):
            asked.set()
            release.wait(5)
            return "too late"

        monkeypatch.setattr(cli.Prompt, "ask", blocking_ask)
        scheduler = TurnScheduler(client, config)
        drive = asyncio.create_task(
            cli._drive(scheduler, "Plan a trip", agents, show_thinking=False)
        )

        await wait_until(asked.is_set)
        scheduler.cancel()
        try:
            snapshot = await asyncio.wait_for(drive, timeout=2)
        finally:
            release.set()

        assert snapshot.phase is Phase.CANCELLED
        assert "too late" not in [m.text for m in snapshot.messages]
