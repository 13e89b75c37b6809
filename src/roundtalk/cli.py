"""
roundtalk CLI - Run and serve round-robin LLM conversations.

Commands:
    roundtalk run PROMPT --agent "Name=model@host:port" ...   Run a conversation
    roundtalk models [HOST:PORT]                             List installed models
    roundtalk serve                                          Start the HTTP API
"""

import asyncio
import logging
import signal
import threading

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.prompt import Prompt
from rich.table import Table

from .agents import DEFAULT_HOST, DEFAULT_PORT, AgentDescriptor, AgentRegistry, PersonaPreset
from .config import DialogueConfig
from .errors import InvalidStateError, NoAgentsConfigured, TransportError
from .llm import OllamaClient
from .llm.client import format_size
from .orchestration import ConversationSnapshot, DialogueEvent, Phase, TurnScheduler
from .security import ValidationError, validate_host, validate_port

app = typer.Typer(help="Round-robin conversations between local LLM agents")
console = Console()
logger = logging.getLogger(__name__)

PHASE_STYLES = {
    Phase.TERMINATED: "green",
    Phase.COMPLETED: "green",
    Phase.CANCELLED: "yellow",
    Phase.ABORTED: "red",
}


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Round-robin conversations between local LLM agents."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
    )


# =============================================================================
# ARGUMENT PARSING
# =============================================================================


def parse_endpoint(value: str) -> tuple[str, int]:
    """Parse "host", "host:port" or "[v6]:port". Missing parts use the defaults."""
    value = value.strip()
    if not value:
        return DEFAULT_HOST, DEFAULT_PORT
    if value.startswith("["):
        host, _, rest = value[1:].partition("]")
        port = rest[1:] if rest.startswith(":") else ""
    elif value.count(":") == 1:
        host, _, port = value.partition(":")
    else:
        host, port = value, ""
    return validate_host(host or DEFAULT_HOST), validate_port(port) if port else DEFAULT_PORT


def parse_agent(spec: str, persona: PersonaPreset | None = None) -> AgentDescriptor:
    """Parse "Name=model@host:port". Name, host and port are optional."""
    name, sep, rest = spec.partition("=")
    if not sep:
        name, rest = "", spec
    model, _, endpoint = rest.partition("@")
    if not model.strip():
        raise ValidationError(f"agent {spec!r} has no model name")
    host, port = parse_endpoint(endpoint)
    return AgentDescriptor.create(
        display_name=name.strip() or model.strip(),
        model_name=model,
        host=host,
        port=port,
        persona=persona,
    )


# =============================================================================
# RUN
# =============================================================================


def _render_event(event: DialogueEvent, show_thinking: bool) -> None:
    if event.kind == "message":
        data = event.data
        if data["is_reasoning"]:
            if show_thinking:
                console.print(f"[dim italic]🤔 {data['sender_name']} thought: {data['text']}[/dim italic]")
        elif data["sender_id"] == "user":
            console.print(f"[bold magenta]{data['sender_name']}[/bold magenta]: {data['text']}\n")
        else:
            console.print(f"[bold cyan]{data['sender_name']}[/bold cyan]: {data['text']}\n")
    elif event.kind == "status" and event.data["status"]:
        console.print(f"[dim]{event.data['status']}[/dim]")


def _ask(question: str, agent_name: str) -> asyncio.Future:
    """
    Prompt on a daemon thread so an abandoned prompt never blocks exit.

    The returned future resolves with the typed answer. Cancelling it only
    detaches the caller; the thread stays parked on stdin until the process ends.
    """
    loop = asyncio.get_running_loop()
    answer: asyncio.Future = loop.create_future()

    def settle(text: str | None, error: BaseException | None) -> None:
        if answer.done():
            return
        if error is not None:
            answer.set_exception(error)
        else:
            answer.set_result(text)

    def prompt() -> None:
        try:
            text = Prompt.ask(
                f"[bold yellow]{agent_name} asks:[/bold yellow] {question}\n[bold]Your answer[/bold]"
            )
        except Exception as e:
            result = (None, e)
        else:
            result = (text, None)
        if not loop.is_closed():
            loop.call_soon_threadsafe(settle, *result)

    threading.Thread(target=prompt, name="roundtalk-prompt", daemon=True).start()
    return answer


async def _drive(
    scheduler: TurnScheduler,
    prompt: str,
    agents: list[AgentDescriptor],
    show_thinking: bool,
) -> ConversationSnapshot:
    """Run the conversation, answering clarification requests from stdin."""
    questions: asyncio.Queue[dict] = asyncio.Queue()

    def on_event(event: DialogueEvent) -> None:
        _render_event(event, show_thinking)
        if event.kind == "clarification" and event.data["pending"]:
            questions.put_nowait(event.data)

    scheduler.subscribe(on_event)
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, scheduler.cancel)
    except NotImplementedError:
        pass  # Windows: KeyboardInterrupt tears the loop down instead

    task = scheduler.start(prompt, agents)
    try:
        while not task.done():
            next_question = asyncio.ensure_future(questions.get())
            done, _ = await asyncio.wait(
                {task, next_question}, return_when=asyncio.FIRST_COMPLETED
            )
            if next_question not in done:
                next_question.cancel()
                continue
            pending = next_question.result()
            answer_future = _ask(pending["question"], pending["agent_name"])
            done, _ = await asyncio.wait(
                {task, answer_future}, return_when=asyncio.FIRST_COMPLETED
            )
            if answer_future not in done:
                answer_future.cancel()
                console.print("\n[dim]Conversation ended before the question was answered.[/dim]")
                break
            answer = answer_future.result()
            try:
                scheduler.submit_clarification_answer(answer)
            except ValidationError as e:
                console.print(f"[red]{e}[/red]")
                questions.put_nowait(pending)
            except InvalidStateError:
                logger.debug("[CLI] Conversation moved on before the answer arrived")
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass
    return await scheduler.wait()


@app.command()
def run(
    prompt: str = typer.Argument(..., help="Opening prompt for the conversation"),
    agent: list[str] = typer.Option(
        ..., "--agent", "-a", help='Participant as "Name=model@host:port" (repeatable)'
    ),
    persona: PersonaPreset = typer.Option(
        PersonaPreset.EXPERT, help="Persona preset applied to every agent"
    ),
    max_turns: int = typer.Option(None, help="Turn counter value that ends the conversation"),
    unlimited: bool = typer.Option(None, "--unlimited/--limited", help="Ignore the turn limit"),
    context_window: int = typer.Option(None, help="Messages of history per prompt"),
    show_thinking: bool = typer.Option(True, "--show-thinking/--hide-thinking"),
):
    """Run a conversation between the given agents."""
    try:
        config = DialogueConfig.from_env().with_overrides(
            max_turns=max_turns, unlimited=unlimited, context_window=context_window
        )
        registry = AgentRegistry(parse_agent(spec, persona) for spec in agent)
    except ValidationError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    async def _main() -> ConversationSnapshot:
        async with OllamaClient.from_config(config) as client:
            scheduler = TurnScheduler(client, config)
            return await _drive(scheduler, prompt, registry.enabled_agents(), show_thinking)

    try:
        snapshot = asyncio.run(_main())
    except NoAgentsConfigured as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    style = PHASE_STYLES.get(snapshot.phase, "white")
    table = Table(title="Conversation Summary")
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Outcome", f"[{style}]{snapshot.phase.value}[/{style}]")
    table.add_row("Status", snapshot.status)
    table.add_row("Turn", str(snapshot.turn))
    table.add_row("End votes", f"{snapshot.end_votes}/{snapshot.agent_count}")
    table.add_row("Messages", str(len(snapshot.messages)))
    console.print(table)

    if snapshot.phase is Phase.ABORTED:
        raise typer.Exit(1)


# =============================================================================
# MODELS
# =============================================================================


@app.command()
def models(
    endpoint: str = typer.Argument(
        f"{DEFAULT_HOST}:{DEFAULT_PORT}", help="Agent server as HOST:PORT"
    ),
):
    """List the models installed on an Ollama-compatible server."""
    try:
        host, port = parse_endpoint(endpoint)
        probe = AgentDescriptor.create(display_name="probe", model_name="", host=host, port=port)
    except ValidationError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    async def _list():
        async with OllamaClient() as client:
            return await client.list_models(probe)

    try:
        found = asyncio.run(_list())
    except TransportError as e:
        console.print(f"[bold red]Error:[/bold red] {e.reason}")
        raise typer.Exit(1)

    if not found:
        console.print(f"[yellow]No models installed at {probe.base_url}[/yellow]")
        return

    table = Table(title=f"Models at {probe.base_url}")
    table.add_column("Name", style="bold")
    table.add_column("Size")
    table.add_column("Modified")
    for model in found:
        table.add_row(
            model.name,
            format_size(model.size) if model.size is not None else "-",
            model.modified_at or "-",
        )
    console.print(table)


# =============================================================================
# SERVE
# =============================================================================


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Bind address"),
    port: int = typer.Option(8000, help="Bind port"),
    reload: bool = typer.Option(False, help="Reload on code changes"),
):
    """Start the HTTP API (uvicorn)."""
    import uvicorn

    console.print(f"\n[bold blue]roundtalk serve[/bold blue] on http://{host}:{port}\n")
    uvicorn.run(
        "roundtalk.api.gateway:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


if __name__ == "__main__":
    app()
