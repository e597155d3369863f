"""Main entry point for agentloop."""

import asyncio
import sys
from pathlib import Path

import typer

from agentloop import __version__
from agentloop.agent import Agent
from agentloop.cli import TerminalUI
from agentloop.config import Config, set_config
from agentloop.events import TurnEndEvent
from agentloop.exceptions import AgentError, ConfigurationError
from agentloop.llm.registry import ModelRegistry
from agentloop.logging import configure_logging, log

app = typer.Typer(help="agentloop - a terminal coding agent")


async def run_turn(agent: Agent, ui: TerminalUI, text: str) -> None:
    """Run one user input, rendering events until the turn ends."""
    turn = asyncio.create_task(agent.handle_user_input(text))
    while True:
        event = await agent.events.get()
        ui.render_event(event)
        if isinstance(event, TurnEndEvent):
            break
    await turn


async def run_interactive(agent: Agent, ui: TerminalUI) -> None:
    """Read inputs until /exit or EOF."""
    ui.print_welcome(agent.session_id, agent.config.model.name)
    try:
        while True:
            try:
                text = (await asyncio.to_thread(ui.prompt)).strip()
            except EOFError:
                break
            if not text:
                continue

            command = ui.handle_special_command(text)
            if command is None:
                try:
                    await run_turn(agent, ui, text)
                except AgentError as e:
                    log.error("Turn failed", error=str(e))
                    ui.print_error(str(e))
                continue

            name, arg = command
            if name == "exit":
                break
            if name == "help":
                ui.print_help()
            elif name == "dump":
                path = agent.dump_messages(arg or None)
                ui.print_success(f"Messages dumped to {path}")
            elif name == "load":
                try:
                    count = agent.load_messages(arg or None)
                except AgentError as e:
                    ui.print_error(str(e))
                else:
                    ui.print_success(f"Loaded {count} messages")
            else:
                ui.print_error(f"Unknown command: {arg}")
    finally:
        await agent.close()


def load_config(config: str = "", model: str = "", no_stream: bool = False, verbose: bool = False) -> Config:
    """Load configuration and apply command-line overrides."""
    cfg = Config.from_yaml(Path(config)) if config else Config.load()
    if model:
        cfg.model.name = model
    if no_stream:
        cfg.ui.streaming = False
    if verbose:
        cfg.logging.level = "DEBUG"
    set_config(cfg)
    return cfg


@app.command()
def run(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    model: str = typer.Option("", "-m", "--model", help="Override model"),
    no_stream: bool = typer.Option(False, "--no-stream", help="Disable streaming"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Start an interactive session."""
    cfg = load_config(config, model, no_stream, verbose)
    configure_logging()

    ui = TerminalUI(config=cfg)
    try:
        agent = Agent(cfg)
    except ConfigurationError as e:
        ui.print_error(str(e))
        raise typer.Exit(code=1)

    try:
        asyncio.run(run_interactive(agent, ui))
    except KeyboardInterrupt:
        log.info("Shutting down...")
        sys.exit(0)


@app.command()
def models(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
) -> None:
    """List available model names."""
    cfg = load_config(config)
    for name in ModelRegistry.from_config(cfg).names():
        typer.echo(name)


@app.command()
def version() -> None:
    """Show version information."""
    typer.echo(f"agentloop v{__version__}")


if __name__ == "__main__":
    app()
