"""Miscellaneous commands: init."""

import click
from click import echo, style

from ..config import save_config

from .utils import config_options


@click.command()
@config_options
def init(config):
    """Save server, user and storage settings to the config file.

    The password is never written; it is read from IMAPBAK_PASSWORD, piped
    stdin, or prompted for.

    \b
    Examples:
      imapbak init -s imap.example.com -u me@example.com -S ~/mail-backup
      imapbak init -c ./imapbak.yaml -s imap.example.com -u me
    """
    ctx = click.get_current_context()
    path = save_config(config, ctx.params.get("config_path"))
    echo(f"Config saved to {path}")
    if config.server and config.user:
        echo(f"Local storage: {config.local_path}")
    else:
        echo(style("Note: no server/user set yet, you'll be prompted for them", fg="yellow"))
