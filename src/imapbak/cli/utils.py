"""Shared CLI utilities and helpers."""

import sys
from functools import wraps
from pathlib import Path
from typing import Callable, TypeVar

import click
import humanize
from click import echo, prompt
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

from ..config import Config, load_config, split_folders
from ..diff import intersect
from ..imap import IMAPClient
from ..sync import QueryResult, run_with_retries

T = TypeVar("T")


def err(*args, **kwargs):
    """Print to stderr."""
    print(*args, file=sys.stderr, **kwargs)


def size_str(n: int) -> str:
    return humanize.naturalsize(n, binary=True)


# =============================================================================
# Configuration
# =============================================================================


def get_password(password_opt: str | None) -> str:
    """Get password from option, stdin (if piped), or prompt."""
    if password_opt:
        return password_opt
    elif not sys.stdin.isatty():
        return sys.stdin.readline().rstrip("\n")
    else:
        return prompt("Password", hide_input=True)


def complete_config(config: Config, need_password: bool = True) -> Config:
    """Prompt for server, user and password where the config has none."""
    server = config.server or prompt("IMAP server")
    user = config.user or prompt("Username")
    password = config.password
    if need_password and not password:
        password = get_password(None)
    return config.merged(server=server, user=user, password=password)


def config_options(f):
    """Add the shared connection/storage options, and pass a Config as ``config``."""
    options = [
        click.option('-c', '--config', 'config_path', type=click.Path(dir_okay=False), help="Config file (default ~/.config/imapbak/config.yaml)"),
        click.option('-s', '--server', help="IMAP server name"),
        click.option('-p', '--port', type=int, help="IMAP port number (default 993)"),
        click.option('-u', '--user', help="IMAP user name"),
        click.option('-P', '--password', help="IMAP password (prefer stdin or the prompt)"),
        click.option('--ssl/--no-ssl', default=None, help="Use IMAP over TLS (default on)"),
        click.option('-S', '--storage', type=click.Path(file_okay=False, path_type=Path), help="Local storage directory"),
        click.option('-r', '--restrict', help="Restrict command to a comma-separated list of folders"),
        click.option('--retries', type=int, help="Retry a failed session N times (default 3)"),
        click.option('--retry-delay', type=float, help="Seconds to wait between retries (default 10)"),
    ]

    @wraps(f)
    def wrapper(config_path, server, port, user, password, ssl, storage, restrict, retries, retry_delay, **kwargs):
        try:
            config = load_config(config_path)
        except (OSError, ValueError) as e:
            raise click.ClickException(f"Invalid config: {e}")
        config = config.merged(
            server=server,
            port=port,
            user=user,
            password=password,
            ssl=ssl,
            storage=storage,
            folders=split_folders(restrict) if restrict else None,
            retries=retries,
            retry_delay=retry_delay,
        )
        return f(config=config, **kwargs)

    for option in reversed(options):
        wrapper = option(wrapper)
    return wrapper


# =============================================================================
# IMAP sessions
# =============================================================================


def connect_client(config: Config) -> IMAPClient:
    """Connect and log in to the configured IMAP server."""
    client = IMAPClient(config.server, config.port, ssl=config.ssl)
    client.connect(config.user, config.password)
    return client


def run_session(config: Config, fn: Callable[[IMAPClient], T]) -> T:
    """Run ``fn`` with a fresh connection, retrying the whole session on failure."""
    def attempt() -> T:
        client = connect_client(config)
        try:
            return fn(client)
        finally:
            client.disconnect()

    def on_retry(n: int, e: Exception) -> None:
        err(f"Error: {e}")
        err(f"Retrying in {config.retry_delay:g}s ({n}/{config.retries})")

    return run_with_retries(attempt, config.retries, config.retry_delay, on_retry=on_retry)


def remote_folder_names(client: IMAPClient, config: Config) -> list[str]:
    """Folders on the server, restricted to config.folders if given."""
    names = client.list_folders()
    if config.folders:
        names = intersect(names, config.folders)
    return names


# =============================================================================
# Output
# =============================================================================


def make_progress(console: Console | None = None) -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        TextColumn("ETA"),
        TimeRemainingColumn(),
        console=console or Console(stderr=True),
    )


class ProgressReporter:
    """Feeds Synchronizer progress events into rich progress bars."""

    LABELS = {"list": "List", "download": "Download", "upload": "Upload", "delete": "Delete"}

    def __init__(self, progress: Progress):
        self.progress = progress
        self.tasks = {}

    def start(self, event: str, total: int) -> None:
        self.tasks[event] = self.progress.add_task(self.LABELS[event], total=total)

    def __call__(self, event: str, folder: str, amount: int) -> None:
        task = self.tasks.get(event)
        if task is None:
            return
        # list/delete bars count folders; transfer bars count bytes
        advance = 1 if event in ("list", "delete") else amount
        self.progress.update(task, description=f"{self.LABELS[event]} {folder}", advance=advance)


def print_summary(title: str, result: QueryResult) -> None:
    """Print pending/total counts, then one line per folder."""
    echo()
    echo(
        f"{title} ({result.pending_messages}/{result.total_messages} messages, "
        f"{size_str(result.pending_size)}/{size_str(result.total_size)})"
    )
    for f in result.folders:
        echo(f"|- {f.name} ({len(f.pending)}, {size_str(f.pending.size)})")
    echo()


# =============================================================================
# Click helpers
# =============================================================================


class AliasGroup(click.Group):
    """Click Group that supports command aliases."""

    def __init__(self, *args, aliases: dict[str, str] | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.aliases = aliases or {}
        # Build reverse mapping: command -> list of aliases
        self._cmd_aliases: dict[str, list[str]] = {}
        for alias, cmd in self.aliases.items():
            self._cmd_aliases.setdefault(cmd, []).append(alias)

    def get_command(self, ctx, cmd_name):
        cmd_name = self.aliases.get(cmd_name, cmd_name)
        return super().get_command(ctx, cmd_name)

    def resolve_command(self, ctx, args):
        _, cmd_name, args = super().resolve_command(ctx, args)
        cmd_name = self.aliases.get(cmd_name, cmd_name)
        return _, cmd_name, args

    def format_commands(self, ctx, formatter):
        """Write all commands with their aliases to the formatter."""
        commands = []
        for subcommand in self.list_commands(ctx):
            cmd = self.get_command(ctx, subcommand)
            if cmd is None or cmd.hidden:
                continue
            aliases = self._cmd_aliases.get(subcommand, [])
            if aliases:
                name = f"{subcommand} ({', '.join(sorted(aliases))})"
            else:
                name = subcommand
            help_text = cmd.get_short_help_str(limit=formatter.width)
            commands.append((name, help_text))

        if commands:
            with formatter.section("Commands"):
                formatter.write_dl(commands)
