#!/usr/bin/env python3
"""
Main CLI for todoscope - find annotation keywords and jump to them.

Usage:
    todoscope buffer FILE          - Search one file
    todoscope buffers FILE...      - Search several files
    todoscope dir [DIRECTORY]      - Search a directory tree with ripgrep
    todoscope project              - Search the current project
    todoscope shell                - Interactive session keeping the cache
"""

import asyncio
import functools
import shlex
import sys
from pathlib import Path
from typing import List, Optional

import click
from loguru import logger
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.text import Text

from ..engine.buffers import BufferRegistry
from ..engine.bus import EventBus
from ..engine.config import Config, LoggingConfig
from ..engine.errors import TodoscopeError
from ..engine.orchestrator import JumpTarget, SearchOrchestrator
from ..engine.runner import SearchRun
from .picker import ConsolePicker

console = Console()

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)

SHELL_HELP = """\
Commands:
  open FILE...          load files as buffers (the last one becomes current)
  ls                    list buffers
  switch NAME           make a buffer current
  buffer                search the current buffer
  all                   search all buffers
  dir [DIR] [-p]        search a directory (-p prompts for it)
  project               search the current project
  cache                 list cached directories
  clear-cache [--all]   drop one cached directory, or all of them
  help                  show this text
  quit                  leave the shell"""


def configure_logging(settings: LoggingConfig, verbose: bool = False) -> None:
    """Send log records to stderr, and to a rotating file when configured."""
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level="DEBUG" if verbose else settings.level)
    if settings.file is not None:
        log_file = Path(settings.file).expanduser()
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            rotation=settings.rotation,
            retention=settings.retention,
            level="DEBUG"
        )


def notice(message: str) -> None:
    console.print(Text(message, style="yellow"))


def build_orchestrator(config: Config) -> SearchOrchestrator:
    return SearchOrchestrator(
        config,
        picker=ConsolePicker(console),
        registry=BufferRegistry(),
        event_bus=EventBus(),
        notifier=notice,
    )


def show_jump(target: Optional[JumpTarget]) -> None:
    if target is None:
        return
    console.print(Text.assemble(("→ ", "green"), str(target)), soft_wrap=True)
    console.print(Text("  " + target.line_text.strip(), style="dim"))


def handle_errors(func):
    """Turn engine errors into click errors."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except TodoscopeError as e:
            raise click.ClickException(str(e))
    return wrapper


@click.group()
@click.option("--config", "-c", "config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Config file path")
@click.option("--comments-only", is_flag=True, help="Only keywords inside comments")
@click.option("--threshold", type=float, help="Seconds before a directory search counts as slow")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, config_path: Optional[Path], comments_only: bool, threshold: Optional[float], verbose: bool):
    """todoscope - find TODO, FIXME, BUG and HACK comments."""
    configure_logging(LoggingConfig(), verbose)
    try:
        config = Config.load(config_path)
    except ValueError as e:
        raise click.ClickException(f"Invalid configuration: {e}")
    configure_logging(config.logging, verbose)

    changes = {}
    if comments_only:
        changes["comments_only"] = True
    if threshold is not None:
        changes["slow_threshold"] = threshold
    if changes:
        config.reconfigure(**changes)
    ctx.obj = config


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
@handle_errors
def buffer(config: Config, file: Path):
    """Search one file."""
    orchestrator = build_orchestrator(config)
    orchestrator.registry.switch_to(orchestrator.registry.find_file(file))
    show_jump(orchestrator.search_current_buffer())


@cli.command()
@click.argument("files", nargs=-1, required=True,
                type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
@handle_errors
def buffers(config: Config, files: List[Path]):
    """Search several files."""
    orchestrator = build_orchestrator(config)
    for file in files:
        orchestrator.registry.find_file(file)
    show_jump(orchestrator.search_all_buffers())


@cli.command(name="dir")
@click.argument("directory", required=False, type=click.Path(exists=True, file_okay=False))
@click.option("--prompt", "-p", is_flag=True, help="Ask for the directory")
@click.pass_obj
@handle_errors
def dir_command(config: Config, directory: Optional[str], prompt: bool):
    """Search a directory tree."""
    asyncio.run(search_once(build_orchestrator(config), directory, prompt))


@cli.command()
@click.pass_obj
@handle_errors
def project(config: Config):
    """Search the project around the working directory."""
    asyncio.run(search_once(build_orchestrator(config), project=True))


async def settle(orchestrator: SearchOrchestrator, run: Optional[SearchRun]) -> None:
    """Wait until a run is either slow or delivered."""
    if run is None:
        await orchestrator.event_bus.drain()
        return
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        transient=True,
        console=console
    ) as progress:
        progress.add_task(description=f"Searching {run.directory}...", total=None)
        await run.settled.wait()
    if not run.became_slow:
        await orchestrator.event_bus.drain()


async def search_once(
    orchestrator: SearchOrchestrator,
    directory: Optional[str] = None,
    prompt: bool = False,
    project: bool = False,
) -> None:
    """Run one directory search to the end.

    A slow run only fills the cache, so once it is done the search is
    repeated to browse the cached results before the process exits.
    """
    await orchestrator.start()
    try:
        if project:
            run = orchestrator.search_project()
        else:
            run = orchestrator.search_directory(directory, prompt=prompt)
        await settle(orchestrator, run)
        await orchestrator.wait_idle()
        if run is not None and run.became_slow and run.directory in orchestrator.cache:
            orchestrator.search_directory(run.directory)
        show_jump(orchestrator.last_jump)
    finally:
        await orchestrator.stop()


@cli.command()
@click.pass_obj
def shell(config: Config):
    """Interactive session; slow searches are cached across commands."""
    asyncio.run(run_shell(build_orchestrator(config)))


async def run_shell(orchestrator: SearchOrchestrator) -> None:
    await orchestrator.start()
    loop = asyncio.get_running_loop()
    console.print(SHELL_HELP, markup=False)
    try:
        while True:
            try:
                line = await loop.run_in_executor(
                    None,
                    functools.partial(click.prompt, "todoscope", default="",
                                      show_default=False, prompt_suffix="> "),
                )
            except click.Abort:
                break
            try:
                words = shlex.split(line)
            except ValueError as e:
                console.print(f"[red]Error:[/red] {e}")
                continue
            if not words:
                continue
            if words[0] in ("quit", "exit"):
                break
            try:
                await shell_command(orchestrator, words[0], words[1:])
            except TodoscopeError as e:
                console.print(f"[red]Error:[/red] {e}")
            except OSError as e:
                console.print(f"[red]Error:[/red] {e}")
    finally:
        await orchestrator.stop()


async def shell_command(orchestrator: SearchOrchestrator, command: str, args: List[str]) -> None:
    registry = orchestrator.registry
    if command == "open":
        for path in args:
            registry.switch_to(registry.find_file(path))
    elif command == "ls":
        for b in registry.buffers:
            marker = "*" if b is registry.current else " "
            console.print(f"{marker} {b.name}  {b.path or ''}", markup=False)
    elif command == "switch" and args:
        target = registry.get(args[0])
        if target is None:
            console.print(f"[red]No buffer named {args[0]}[/red]")
        else:
            registry.switch_to(target)
    elif command == "buffer":
        show_jump(orchestrator.search_current_buffer())
    elif command == "all":
        show_jump(orchestrator.search_all_buffers())
    elif command in ("dir", "project"):
        orchestrator.last_jump = None
        if command == "project":
            run = orchestrator.search_project()
        else:
            paths = [a for a in args if a != "-p"]
            run = orchestrator.search_directory(paths[0] if paths else None, prompt="-p" in args)
        await settle(orchestrator, run)
        show_jump(orchestrator.last_jump)
    elif command == "cache":
        keys = orchestrator.cache.keys()
        if not keys:
            notice("No cached directories")
        for key in keys:
            console.print(key, markup=False)
    elif command == "clear-cache":
        orchestrator.clear_cache(all_entries="--all" in args)
    else:
        console.print(SHELL_HELP, markup=False)


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
