"""
fmchat CLI: terminal front end for the on-device chat core.

Registered as `fmchat` console script via pyproject.toml.
"""

from __future__ import annotations

import asyncio
import dataclasses
import os
import subprocess
import sys

import click

from .config import PLACEHOLDER_CONTENT, ChatSettings, setup_logging
from .exceptions import AppleFMSetupError, Unsupported
from .host import AppleFMHost
from .orchestrator import ChatOrchestrator, RenderSnapshot
from .protocols import ModelHost
from .session import SessionController, Stats

REPL_HELP = """\
Commands:
  /temp <0-1>     recreate the session with a new temperature
  /topk <1-40>    recreate the session with a new top-K
  /clear          start a fresh conversation
  /stats          show session token usage
  /raw            toggle printing the raw response after each answer
  /help           show this help
  /quit           exit"""


def create_host(settings: ChatSettings) -> ModelHost:
    return AppleFMHost(instructions=settings.instructions)


def format_stats(stats: Stats) -> str:
    return (
        f"temperature={stats.temperature:g} top_k={stats.top_k} "
        f"tokens={stats.tokens_so_far}/{stats.max_tokens} "
        f"({stats.tokens_left} left, {stats.usage_ratio:.0%} used)"
    )


class StreamPrinter:
    """Echo the in-progress assistant turn as it grows.

    Chunks are cumulative, so only the unseen suffix is written; when the
    answer is rewritten rather than extended it is printed again on a new line.
    """

    def __init__(self) -> None:
        self._shown = ""

    def __call__(self, snapshot: RenderSnapshot) -> None:
        if not snapshot.is_sending or not snapshot.turns:
            return
        content = snapshot.turns[-1].content
        if not self._shown and content == PLACEHOLDER_CONTENT:
            return
        if content.startswith(self._shown):
            click.echo(content[len(self._shown) :], nl=False)
        else:
            click.echo("\n" + content, nl=False)
        self._shown = content

    def finish(self) -> None:
        click.echo()
        self._shown = ""


async def _read_line(prompt: str) -> str | None:
    click.echo(prompt, nl=False)
    loop = asyncio.get_running_loop()
    line = await loop.run_in_executor(None, sys.stdin.readline)
    if not line:
        return None
    return line.rstrip("\n").rstrip("\r")


def _print_banner(orchestrator: ChatOrchestrator) -> None:
    banner = orchestrator.state.error_banner
    if banner:
        click.secho(banner, fg="red", err=True)


async def _apply_initial_config(
    orchestrator: ChatOrchestrator, temperature: float | None, top_k: int | None
) -> None:
    if temperature is not None and not await orchestrator.set_temperature(temperature):
        _print_banner(orchestrator)
    if top_k is not None and not await orchestrator.set_top_k(top_k):
        _print_banner(orchestrator)


async def _handle_command(orchestrator: ChatOrchestrator, line: str) -> bool:
    """Run one slash command. Returns False when the REPL should exit."""
    name, _, arg = line[1:].partition(" ")
    name = name.lower()
    arg = arg.strip()

    if name in {"quit", "exit", "q"}:
        return False
    if name == "help":
        click.echo(REPL_HELP)
    elif name == "stats":
        click.echo(format_stats(orchestrator.state.stats))
    elif name == "raw":
        shown = orchestrator.toggle_raw()
        click.echo(f"Raw response {'shown' if shown else 'hidden'}.")
    elif name == "clear":
        await orchestrator.clear()
        _print_banner(orchestrator)
        click.secho(orchestrator.transcript.last.content, fg="cyan")
    elif name in {"temp", "temperature", "topk"}:
        try:
            if name == "topk":
                top_k = int(arg)
                top_k_max = orchestrator.settings.top_k_max
                if not 1 <= top_k <= top_k_max:
                    raise ValueError(f"top-K must be between 1 and {top_k_max}")
                ok = await orchestrator.set_top_k(top_k)
            else:
                ok = await orchestrator.set_temperature(float(arg))
        except ValueError as exc:
            click.secho(f"Invalid value: {exc}", fg="yellow", err=True)
            return True
        if ok:
            click.echo(format_stats(orchestrator.state.stats))
        else:
            _print_banner(orchestrator)
    else:
        click.secho(f"Unknown command: /{name}. Type /help.", fg="yellow", err=True)
    return True


async def run_repl(
    orchestrator: ChatOrchestrator,
    printer: StreamPrinter,
    temperature: float | None = None,
    top_k: int | None = None,
) -> int:
    if not await orchestrator.start():
        _print_banner(orchestrator)
        return 2
    await _apply_initial_config(orchestrator, temperature, top_k)

    click.secho(orchestrator.transcript.last.content, fg="cyan")
    click.echo("Type /help for commands.")
    try:
        while True:
            line = await _read_line("you> ")
            if line is None:
                click.echo()
                break
            line = line.strip()
            if not line:
                continue
            if line.startswith("/"):
                if not await _handle_command(orchestrator, line):
                    break
                continue

            click.secho("assistant> ", fg="cyan", nl=False)
            await orchestrator.submit(line)
            printer.finish()
            if orchestrator.state.show_raw:
                click.secho(f"[raw] {orchestrator.state.raw_response!r}", dim=True)
    finally:
        await orchestrator.close()
    return 0


async def run_once(
    orchestrator: ChatOrchestrator,
    printer: StreamPrinter,
    prompt: str,
    temperature: float | None = None,
    top_k: int | None = None,
) -> int:
    if not await orchestrator.start():
        _print_banner(orchestrator)
        return 2
    await _apply_initial_config(orchestrator, temperature, top_k)
    try:
        await orchestrator.submit(prompt)
        printer.finish()
    finally:
        await orchestrator.close()
    last = orchestrator.transcript.last
    if last is not None and last.content.startswith("Error: "):
        return 1
    return 0


def _settings_from_context(ctx: click.Context, **overrides: object) -> ChatSettings:
    settings: ChatSettings = ctx.obj["settings"]
    values = {k: v for k, v in overrides.items() if v is not None}
    if not values:
        return settings
    return dataclasses.replace(settings, **values)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="fmchat")
@click.option("--log-level", default=None, help="Logging level (overrides FMCHAT_LOG_LEVEL).")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None) -> None:
    """Chat with the on-device language model."""
    try:
        settings = ChatSettings.from_env()
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc
    setup_logging(log_level or settings.log_level)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


_temperature_option = click.option(
    "--temperature", type=click.FloatRange(0.0, 1.0), default=None, help="Sampling temperature."
)
_top_k_option = click.option(
    "--top-k", type=click.IntRange(1, 40), default=None, help="Top-K sampling cutoff."
)
_stream_mode_option = click.option(
    "--stream-mode",
    type=click.Choice(["cumulative", "delta"]),
    default=None,
    help="How the host streams text: full snapshots (default) or increments.",
)


@cli.command()
@_temperature_option
@_top_k_option
@_stream_mode_option
@click.option("--instructions", default=None, help="System instructions for the session.")
@click.pass_context
def chat(
    ctx: click.Context,
    temperature: float | None,
    top_k: int | None,
    stream_mode: str | None,
    instructions: str | None,
) -> None:
    """Start an interactive chat.

    \b
    Examples:
        fmchat chat
        fmchat chat --temperature 0.3 --top-k 10
    """
    settings = _settings_from_context(ctx, stream_mode=stream_mode, instructions=instructions)
    printer = StreamPrinter()
    orchestrator = ChatOrchestrator(
        SessionController(create_host(settings)), settings=settings, on_change=printer
    )
    rc = asyncio.run(run_repl(orchestrator, printer, temperature=temperature, top_k=top_k))
    raise SystemExit(rc)


@cli.command()
@click.argument("prompt")
@_temperature_option
@_top_k_option
@_stream_mode_option
@click.pass_context
def ask(
    ctx: click.Context,
    prompt: str,
    temperature: float | None,
    top_k: int | None,
    stream_mode: str | None,
) -> None:
    """Stream a single answer to PROMPT and exit.

    Exit code is 1 when generation fails and 2 when the model is unavailable.
    """
    settings = _settings_from_context(ctx, stream_mode=stream_mode)
    printer = StreamPrinter()
    orchestrator = ChatOrchestrator(
        SessionController(create_host(settings)), settings=settings, on_change=printer
    )

    rc = asyncio.run(run_once(orchestrator, printer, prompt, temperature=temperature, top_k=top_k))
    raise SystemExit(rc)


@cli.command()
@click.pass_context
def doctor(ctx: click.Context) -> None:
    """Check that the on-device model can be reached and print its defaults."""
    settings: ChatSettings = ctx.obj["settings"]
    host = create_host(settings)

    async def _probe() -> int:
        try:
            capability = await host.probe()
        except Unsupported as exc:
            click.secho(f"On-device model unavailable: {exc.reason}", fg="red", err=True)
            return 2
        click.secho("On-device model available.", fg="green")
        click.echo(f"  default temperature: {capability.default_temperature:g}")
        click.echo(f"  default top-K:       {capability.default_top_k}")
        if capability.max_tokens is not None:
            click.echo(f"  context window:      {capability.max_tokens} tokens")
        return 0

    raise SystemExit(asyncio.run(_probe()))


# ── Shell Completions ─────────────────────────────────────────────────────────


@cli.command()
@click.argument("shell", type=click.Choice(["bash", "zsh", "fish"]))
def completions(shell: str) -> None:
    """Print the shell completion script for SHELL."""
    env_var = "_FMCHAT_COMPLETE"
    source_type = f"{shell}_source"
    try:
        result = subprocess.run(
            ["fmchat"],
            capture_output=True,
            text=True,
            env={**os.environ, env_var: source_type},
        )
    except FileNotFoundError:
        result = None
    if result is not None and result.stdout:
        click.echo(result.stdout)
    else:
        click.echo(f"  (Run: {env_var}={source_type} fmchat to generate the script directly)")


# ── Entry point ───────────────────────────────────────────────────────────────


def cli_entry() -> None:
    """Entry point for the console_scripts."""
    try:
        cli()
    except AppleFMSetupError as exc:
        click.secho(str(exc), fg="red", err=True)
        raise SystemExit(2) from exc
    except Unsupported as exc:
        click.secho(f"On-device model unavailable: {exc.reason}", fg="red", err=True)
        raise SystemExit(2) from exc


if __name__ == "__main__":
    cli_entry()
