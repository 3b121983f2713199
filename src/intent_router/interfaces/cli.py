"""CLI: Typer app for routing a message locally and inspecting configuration."""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Optional

import httpx
import typer
from pydantic import ValidationError
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from intent_router.application.router import RouteRequest, TwoStageRouter
from intent_router.config import RouterConfig, load_config
from intent_router.domain import CapabilityResult, RawMessage
from intent_router.infrastructure.chat import build_generative_client
from intent_router.infrastructure.chat.ollama import discover_models
from intent_router.infrastructure.gateway import CapabilityGateway
from intent_router.infrastructure.message_store import InMemoryMessageStore
from intent_router.infrastructure.services import build_services

app = typer.Typer(help="intent-router: route chat messages to capabilities (Ollama by default).")

ASSISTANT_ID = "assistant"


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _load() -> RouterConfig:
    try:
        return load_config()
    except (ValidationError, ValueError) as e:
        rprint(f"[red]Invalid configuration:[/red]\n{e}")
        sys.exit(1)


def _render(result: CapabilityResult) -> None:
    style = "green" if result.success else ("yellow" if result.outcome.value == "busy" else "red")
    body = result.text if result.success else f"{result.error}"
    if result.images:
        body = f"{body or ''}\n[dim]{len(result.images)} image(s)[/dim]"
    if result.commentary:
        body = f"{body}\n\n[dim]{result.commentary}[/dim]"
    title = f"[bold]{result.capability.value}[/bold] · {result.route} · {result.outcome.value}"
    rprint(Panel(body or "", title=title, border_style=style))


@app.command()
def route(
    message: str = typer.Argument(..., help="Message text, as the user would type it."),
    transcript: Optional[Path] = typer.Option(
        None, "--transcript", "-t", help="JSON list of prior messages to use as channel history."
    ),
    reply_to: Optional[str] = typer.Option(None, "--reply-to", help="Id of the transcript message being replied to."),
    requester: str = typer.Option("user", "--requester", "-r", help="Display name of the person asking."),
    private: bool = typer.Option(False, "--private", help="Treat the conversation as a direct message."),
    thread: bool = typer.Option(False, "--thread", help="Treat the conversation as a thread."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose (DEBUG) logging to stderr."),
) -> None:
    """Route one message end-to-end and print the result."""
    _setup_logging(verbose)
    config = _load()
    store = InMemoryMessageStore.from_json(transcript) if transcript else InMemoryMessageStore()
    trigger = RawMessage(
        id="cli-trigger",
        content=message,
        author_id=f"cli:{requester}",
        author_name=requester,
        created_at_ms=int(time.time() * 1000),
        reply_to_id=reply_to,
    )
    router = TwoStageRouter(
        config,
        backend=build_generative_client(config.model),
        gateway=CapabilityGateway(),
        services=build_services(config),
        assistant_id=ASSISTANT_ID,
    )
    rprint(f"[dim]Using model: {config.model.model} at {config.model.base_url}[/dim]")
    try:
        result = asyncio.run(
            router.route(RouteRequest(message=trigger, store=store, is_private=private, in_thread=thread))
        )
    except httpx.ConnectError as e:
        rprint(f"[red]Service unreachable.[/red]\n  Error: {e}")
        sys.exit(1)
    _render(result)
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def keywords(
    all_: bool = typer.Option(False, "--all", "-a", help="Include disabled bindings."),
) -> None:
    """List configured keyword bindings."""
    config = _load()
    table = Table(title="Keyword bindings", show_header=True, header_style="bold")
    table.add_column("Keyword", style="cyan", no_wrap=True)
    table.add_column("Capability", style="green")
    table.add_column("Timeout", justify="right")
    table.add_column("Mode", style="dim")
    table.add_column("Description", overflow="fold")
    for b in config.keywords:
        if not b.enabled and not all_:
            continue
        keyword = f"{config.command_marker}{b.keyword}"
        if not b.enabled:
            keyword = f"[dim]{keyword} (disabled)[/dim]"
        mode = b.parameter_mode.value if b.parameter_mode else "-"
        table.add_row(keyword, b.capability.value, f"{b.timeout_ms / 1000:g}s", mode, b.description)
    Console().print(table)


@app.command()
def check() -> None:
    """Check that the generative backend is reachable and serves the configured models."""
    config = _load()
    models = discover_models(config.model.base_url)
    if models is None:
        rprint(f"[red]✗ Ollama unreachable at {config.model.base_url}[/red]")
        raise typer.Exit(code=1)
    wanted = {m for m in (config.model.model, config.model.final_model, config.model.inference_model) if m}
    missing = sorted(m for m in wanted if m not in models and f"{m}:latest" not in models)
    rprint(f"[green]✓ Ollama reachable[/green] ({len(models)} models)")
    for m in sorted(wanted):
        mark = "[red]✗[/red]" if m in missing else "[green]✓[/green]"
        rprint(f"  {mark} {m}")
    if missing:
        raise typer.Exit(code=1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
