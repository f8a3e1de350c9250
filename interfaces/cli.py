"""
interfaces/cli.py — Wayfarer CLI Interface

Interactive REPL over WayfarerService.
Uses rich for terminal rendering; input runs in a worker thread so the
event loop stays free for tool calls.

Features:
  - Coloured prompt with the current thread id
  - Replies rendered as Markdown, optional receipt after each answer
  - /why, /new, /receipts, /help, /quit
  - Graceful Ctrl+C / Ctrl+D handling

Usage:
    python main.py
    python main.py --thread my-trip --log-level DEBUG
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Optional

from pydantic import ValidationError
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.text import Text

from agent.receipts import format_receipt
from agent.service import ChatOutput, WayfarerService
from config.settings import Settings
from observability.logger import get_logger

log = get_logger(__name__)

# ── Constants ─────────────────────────────────────────────────────────────────

_HELP_TEXT = """
## Wayfarer CLI Commands

| Command | Description |
|---------|-------------|
| `/why` | Show the receipts (sources, decisions, self-check, budget) of the last answer |
| `/receipts` | Toggle printing the receipt after every answer |
| `/new` | Start a new conversation thread |
| `/help` | Show this help message |
| `/quit` / `exit` / Ctrl+D | Exit Wayfarer |

**Tips:**
- Ask about weather, packing, attractions or destinations, e.g. *What should I pack for Oslo in March?*
- Follow-ups reuse the city and dates from earlier turns when they still fit.
"""


# ── CLI Runner ────────────────────────────────────────────────────────────────


class CLIInterface:
    """
    Interactive REPL for Wayfarer.

    One CLI session talks to one thread at a time; /new switches threads.
    """

    def __init__(
        self,
        settings: Settings,
        service: WayfarerService,
        thread_id: Optional[str] = None,
        console: Optional[Console] = None,
    ):
        self.settings = settings
        self.service = service
        self.console = console or Console()
        self.thread_id = thread_id or _new_thread_id()
        self.show_receipts = False
        self._shutdown = asyncio.Event()

    # ── Startup ───────────────────────────────────────────────────────────────

    async def start(self) -> None:
        self._print_banner()
        await self._repl_loop()

    def _print_banner(self) -> None:
        agent = self.settings.agent
        provider = self.settings.default_llm_provider
        model = self.settings.default_llm_model
        self.console.print(
            Panel(
                f"[bold cyan]{agent.name}[/]  ·  [bold]v{agent.version}[/]  ·  "
                f"LLM: [cyan]{provider}[/]/[cyan]{model}[/]  ·  "
                f"Thread: [dim]{self.thread_id}[/]\n\n"
                f"Ask a travel question or type [bold]/help[/] for commands. "
                f"[bold]/quit[/] or Ctrl+D to exit.",
                border_style="cyan",
                padding=(0, 2),
            )
        )

    def _print_help(self) -> None:
        self.console.print(Markdown(_HELP_TEXT))

    # ── REPL Loop ─────────────────────────────────────────────────────────────

    async def _repl_loop(self) -> None:
        while not self._shutdown.is_set():
            try:
                user_input = await asyncio.to_thread(self.console.input, self._build_prompt())
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n[dim]Goodbye.[/]")
                break

            user_input = user_input.strip()
            if not user_input:
                continue
            if user_input.lower() in ("exit", "quit"):
                self.console.print("[dim]Goodbye.[/]")
                break

            await self.dispatch(user_input)

    def _build_prompt(self) -> str:
        return f"[bold cyan]wayfarer[/] [dim]({self.thread_id[:8]})[/] [bold]›[/] "

    async def dispatch(self, raw: str) -> None:
        """Route input to a command handler or send it as a message."""
        if raw.startswith("/"):
            cmd = raw.split(maxsplit=1)[0].lower()
            handlers = {
                "/help":     self._print_help,
                "/why":      self._cmd_why,
                "/receipts": self._cmd_toggle_receipts,
                "/new":      self._cmd_new,
                "/quit":     self._cmd_quit,
            }
            handler = handlers.get(cmd)
            if handler is None:
                self.console.print(f"[yellow]Unknown command: {cmd}. Type /help for commands.[/]")
                return
            result = handler()
            if asyncio.iscoroutine(result):
                await result
            return

        await self._cmd_ask(raw)

    # ── Commands ──────────────────────────────────────────────────────────────

    async def _cmd_ask(self, message: str) -> None:
        try:
            with self.console.status("[dim]Thinking…[/]", spinner="dots"):
                output = await self.service.handle_turn({
                    "message": message,
                    "thread_id": self.thread_id,
                    "receipts": self.show_receipts,
                })
        except ValidationError as e:
            problems = "; ".join(err["msg"] for err in e.errors())
            self.console.print(f"[yellow]Can't send that message: {problems}[/]")
            return
        self._render(output)

    async def _cmd_why(self) -> None:
        card = await self.service.why(self.thread_id)
        self.console.print(Panel(Text(card), title="[magenta]Receipts[/]", border_style="magenta", padding=(0, 1)))

    def _cmd_toggle_receipts(self) -> None:
        self.show_receipts = not self.show_receipts
        state = "on" if self.show_receipts else "off"
        self.console.print(f"[dim]Receipts after every answer: {state}[/]")

    def _cmd_new(self) -> None:
        self.thread_id = _new_thread_id()
        log.info("cli.new_thread", thread_id=self.thread_id)
        self.console.print(f"[dim]Started thread {self.thread_id}[/]")

    def _cmd_quit(self) -> None:
        self.console.print("[dim]Goodbye.[/]")
        self._shutdown.set()

    # ── Rendering ─────────────────────────────────────────────────────────────

    def _render(self, output: ChatOutput) -> None:
        text = output.reply.strip()
        if text:
            self.console.print(Panel(Markdown(text), border_style="cyan", padding=(0, 2)))
        if output.receipts is not None:
            self.console.print(Text(format_receipt(output.receipts), style="dim"))


# ── Public entry point ────────────────────────────────────────────────────────


async def run_cli(settings: Settings, service: WayfarerService, thread_id: Optional[str] = None) -> None:
    """
    Entry point called from main.py. The service must already be started.
    """
    cli = CLIInterface(settings=settings, service=service, thread_id=thread_id)
    log.info("cli.starting", thread_id=cli.thread_id)
    try:
        await cli.start()
    except KeyboardInterrupt:
        log.info("cli.interrupted")
    finally:
        log.info("cli.shutdown", thread_id=cli.thread_id)


def _new_thread_id() -> str:
    return uuid.uuid4().hex
