"""
FitCoach Orchestrator — Main CLI Entrypoint.

Wires all layers and runs the interactive chat loop.
"""

import argparse
import asyncio
import logging
import os
import sys
import uuid

import httpx
from rich import box
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from actions.executor import ActionExecutor
from actions.lifecycle import ActionLifecycleController
from conversation.history import ChatHistoryStore
from conversation.session import ChatSession
from conversation.threads import ThreadStore
from domains.handler import AgentRunner
from domains.registry import AGENT_REGISTRY
from intent.router import IntentRouter
from lookup.product_lookup import ProductLookup
from memory import SQLiteHealthStore, SQLiteSessionCache
from models.selector import ModelSelector
from observability.logger import Observability
from observability.usage import UsageRecorder
from orchestrator.dispatcher import MultiAgentDispatcher
from shared.models import DOMAINS, Action, Message
from shared.response_formatter import describe_action
from shared.settings import CoachSettings, load_settings

# ─── Configuration ──────────────────────────────────────────────

logger = logging.getLogger(__name__)
console = Console()

LOG_LEVEL = os.getenv("LOG_LEVEL", "WARNING").strip().upper() or "WARNING"

HELP_TEXT = (
    "[dim]/thread <domain> • /confirm <n> • /reject <n> • /actions • /quit[/dim]"
)


def setup_logging() -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


class Runtime:
    """Everything a session needs, plus the resources to close on exit."""

    def __init__(self, settings: CoachSettings, session_id: str | None = None):
        self.settings = settings
        self.session_id = session_id or os.getenv("COACH_SESSION_ID", "").strip() or uuid.uuid4().hex[:8]
        prefs = settings.preferences

        self.model_selector = ModelSelector(base_url=settings.model_base_url)
        self.health_store = SQLiteHealthStore(db_path=settings.health_db_path)
        self.session_cache = SQLiteSessionCache(db_path=settings.session_db_path)
        self.history_store = ChatHistoryStore(db_path=settings.history_db_path)
        self.lookup = ProductLookup(
            settings=settings.lookup,
            model_selector=self.model_selector,
            fallback_policy=settings.lookup_policy(),
            client=httpx.AsyncClient(headers={"Accept": "application/json"}),
            language=prefs.language,
            observability=Observability(self.session_id),
        )
        self.dispatcher = MultiAgentDispatcher(
            router=IntentRouter(settings.router),
            runner=AgentRunner(self.model_selector, settings.chat_policy(), settings.history_turns),
            lookup=self.lookup,
            usage_recorder=UsageRecorder(self.health_store),
            multi_agent_enabled=settings.multi_agent_enabled,
            session_id=self.session_id,
        )
        self.threads = ThreadStore(
            self.session_cache,
            namespace=f"{prefs.user_id}:{self.session_id}",
            message_cap=settings.thread_message_cap,
        )
        self.controller = ActionLifecycleController(
            ActionExecutor(self.health_store, user_id=prefs.user_id, language=prefs.language),
            sink=self.threads,
            observability=Observability(self.session_id),
        )
        self.session = ChatSession(
            dispatcher=self.dispatcher,
            threads=self.threads,
            controller=self.controller,
            health_store=self.health_store,
            preferences=prefs,
            history_store=self.history_store,
            history_turns=settings.history_turns,
        )

    def start(self) -> None:
        if not self.threads.load():
            logger.info("No cached threads for session %s", self.session_id)
        try:
            self.threads.hydrate(self.history_store, self.settings.preferences.user_id, self.settings.hydration_limit)
        except Exception:
            logger.exception("Chat history hydration failed")

    async def close(self) -> None:
        await self.dispatcher.drain()
        await self.lookup.close()
        await self.model_selector.close()
        self.history_store.close()
        self.session_cache.close()
        self.health_store.close()


# ─── Rendering ──────────────────────────────────────────────────

def render_message(message: Message) -> None:
    if message.is_error:
        console.print(Panel(Text(message.content, style="bold red"), title="❌ Error", border_style="red", box=box.ROUNDED))
        return
    title = "🤖 Assistant"
    subtitle = None
    if message.attribution:
        title = f"{message.attribution.icon} {message.attribution.name}"
        versions = ", ".join(f"{k} v{v}" for k, v in message.attribution.knowledge_versions.items())
        subtitle = f"[dim]{versions}[/dim]" if versions else None
    console.print(Panel(Text(message.content), title=title, subtitle=subtitle, border_style="cyan", box=box.ROUNDED))


def render_actions(actions: list[Action], language: str) -> None:
    if not actions:
        console.print("[dim]No pending actions.[/dim]")
        return
    table = Table(title="Pending actions", box=box.SIMPLE_HEAVY, header_style="bold cyan")
    table.add_column("#", style="bold white")
    table.add_column("Action", style="white")
    table.add_column("Details", style="white")
    table.add_column("Status", style="dim")
    for index, action in enumerate(actions, start=1):
        display = describe_action(action.directive, language)
        status = action.status if not action.error else f"{action.status}: {action.error}"
        table.add_row(str(index), f"{display.icon} {display.title}", display.summary, status)
    console.print(table)


def render_threads(runtime: Runtime) -> None:
    parts = []
    for domain in DOMAINS:
        config = AGENT_REGISTRY[domain]
        label = f"{config.icon} {domain} ({len(runtime.threads.messages(domain))})"
        parts.append(f"[bold cyan]{label}[/]" if domain == runtime.threads.active_domain else f"[dim]{label}[/dim]")
    console.print(" • ".join(parts))


# ─── Commands ───────────────────────────────────────────────────

def _select_action(runtime: Runtime, argument: str) -> Action | None:
    actions = runtime.session.pending_actions()
    try:
        index = int(argument) - 1
    except ValueError:
        console.print("[bold yellow]Usage:[/] /confirm <n> or /reject <n>")
        return None
    if not 0 <= index < len(actions):
        console.print(f"[bold yellow]No pending action #{argument}.[/]")
        return None
    return actions[index]


async def handle_command(runtime: Runtime, raw: str) -> bool:
    """Run a slash command. Returns False when the loop should stop."""
    command, _, argument = raw[1:].partition(" ")
    command = command.lower()
    argument = argument.strip()
    language = runtime.settings.preferences.language

    if command in ("quit", "exit", "q"):
        return False
    if command == "thread":
        if argument not in DOMAINS:
            console.print(f"[bold yellow]Unknown domain.[/] Choose one of: {', '.join(DOMAINS)}")
        else:
            runtime.session.switch(argument)
        render_threads(runtime)
    elif command == "actions":
        render_actions(runtime.session.pending_actions(), language)
    elif command == "confirm":
        action = _select_action(runtime, argument)
        if action is not None:
            with console.status("[green]Saving...[/green]", spinner="dots"):
                result = await runtime.session.confirm(action.id)
            if result.status == "failed":
                console.print(f"[bold red]Failed:[/] {result.error}")
            else:
                console.print(f"[bold green]✓ {describe_action(result.directive, language).summary}[/]")
    elif command == "reject":
        action = _select_action(runtime, argument)
        if action is not None:
            runtime.session.reject(action.id)
            console.print("[dim]Discarded.[/dim]")
    else:
        console.print(HELP_TEXT)
    return True


async def send_message(runtime: Runtime, text: str) -> None:
    live_text = Text()

    with Live(Panel(live_text, title="…", border_style="dim", box=box.ROUNDED), console=console, transient=True) as live:
        task = asyncio.create_task(runtime.session.send(text))
        while not task.done():
            messages = runtime.threads.messages()
            current = messages[-1] if messages else None
            if current is not None and current.role == "assistant":
                live.update(Panel(Text(current.content or "…"), title="…", border_style="dim", box=box.ROUNDED))
            await asyncio.sleep(0.05)
        final = await task

    render_message(final)
    if final.pending_actions:
        render_actions(runtime.session.pending_actions(), runtime.settings.preferences.language)


async def run_chat_loop() -> None:
    """Interactive chat loop."""
    settings = load_settings()
    try:
        runtime = Runtime(settings)
    except Exception as e:
        console.print(f"[bold red]Failed to initialize pipeline:[/] {e}")
        sys.exit(1)

    console.print(Panel(
        Text.from_markup(
            "[bold cyan]FitCoach[/bold cyan]\n"
            f"[dim]Model: {settings.chat_model} • Language: {settings.preferences.language} • "
            f"Mode: {settings.preferences.training_mode}[/dim]\n"
            f"{HELP_TEXT}"
        ),
        title="🏋️",
        border_style="cyan",
        box=box.DOUBLE,
    ))

    runtime.start()
    console.print(f"[dim]Session: {runtime.session_id}[/dim]")
    render_threads(runtime)
    console.print()

    try:
        while True:
            raw = console.input(f"[bold cyan]{runtime.threads.active_domain} → [/]").strip()
            if not raw:
                continue
            if raw.startswith("/"):
                if not await handle_command(runtime, raw):
                    console.print("[dim]Bis bald! 👋[/dim]")
                    break
                continue
            await send_message(runtime, raw)
    finally:
        await runtime.close()


# ─── One-shot commands ──────────────────────────────────────────

def admin_route(text: str) -> None:
    settings = load_settings()
    decision = IntentRouter(settings.router).classify_multi(text)
    table = Table(title="Routing", box=box.SIMPLE_HEAVY, header_style="bold cyan")
    table.add_column("Domain", style="cyan")
    table.add_column("Confidence", style="white")
    table.add_column("Matched", style="dim")
    for item in decision.decisions:
        table.add_row(item.domain, f"{item.confidence:.3f}", ", ".join(item.matched_keywords) or (item.reasoning or ""))
    console.print(table)


async def admin_lookup(query: str) -> None:
    settings = load_settings()
    selector = ModelSelector(base_url=settings.model_base_url)
    lookup = ProductLookup(
        settings=settings.lookup,
        model_selector=selector,
        fallback_policy=settings.lookup_policy(),
        language=settings.preferences.language,
    )
    try:
        with console.status("[yellow]Searching...[/yellow]", spinner="dots"):
            result = await lookup.resolve(query)
    finally:
        await lookup.close()
        await selector.close()
    style = "green" if result.found else "yellow"
    console.print(Panel(Text(result.summary), title=f"🔎 {result.source}", border_style=style, box=box.ROUNDED))


def main() -> None:
    """Entrypoint with CLI args."""
    setup_logging()

    parser = argparse.ArgumentParser(description="FitCoach Orchestrator")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("run", help="Run interactive chat")

    route_parser = subparsers.add_parser("route", help="Show routing decisions for a message")
    route_parser.add_argument("text", help="User message")

    serve_parser = subparsers.add_parser("serve", help="Run the OpenAI-compatible HTTP API")
    serve_parser.add_argument("--host", default=os.getenv("API_HOST", "127.0.0.1"))
    serve_parser.add_argument("--port", type=int, default=int(os.getenv("API_PORT", "8010")))

    lookup_parser = subparsers.add_parser("lookup", help="Resolve a product's nutrition values")
    lookup_parser.add_argument("query", help="Product name")

    args = parser.parse_args()

    if args.command == "route":
        admin_route(args.text)
    elif args.command == "serve":
        import uvicorn
        uvicorn.run("api.openai_server:app", host=args.host, port=args.port)
    elif args.command == "lookup":
        asyncio.run(admin_lookup(args.query))
    elif args.command == "run" or args.command is None:
        try:
            asyncio.run(run_chat_loop())
        except KeyboardInterrupt:
            pass
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
