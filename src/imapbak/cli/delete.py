"""Delete command: purge old messages from the server."""

import sys
from datetime import date

import click
from click import echo, option

from ..errors import ImapBackupError
from ..sync import Synchronizer, months_ago

from .utils import (
    ProgressReporter,
    complete_config,
    config_options,
    err,
    make_progress,
    remote_folder_names,
    run_session,
)


@click.command()
@option('-m', '--months', type=click.IntRange(min=0), help="Delete messages older than this many months")
@option('-y', '--yes', 'force', is_flag=True, help="Don't ask for confirmation")
@config_options
def delete(config, months: int | None, force: bool):
    """Delete messages older than N months from the server.

    Local storage is never touched: run backup first.

    \b
    Examples:
      imapbak delete -m 12 -s imap.example.com -u me@example.com
      imapbak d -m 6 -r INBOX -y
    """
    config = config.merged(months=months, force=force or None)
    if config.months is None:
        err("Missing --months (or 'months' in the config file)")
        sys.exit(2)
    config = complete_config(config)

    today = date.today()
    before = months_ago(today, config.months)
    echo(
        f"Today is {today:%Y-%m-%d}, deleting messages {config.months} months or older, "
        f"so before {before:%Y-%m-%d}."
    )
    if not config.force and not click.confirm("Are you sure", default=False):
        echo("User did not confirm, aborting.")
        return

    def session(client):
        names = remote_folder_names(client, config)
        with make_progress() as progress:
            reporter = ProgressReporter(progress)
            reporter.start("delete", len(names))
            sync = Synchronizer(client, config.local_path, progress_callback=reporter)
            return sync.delete_before(names, before)

    try:
        total = run_session(config, session)
    except (ImapBackupError, OSError) as e:
        err(f"Error: {e}")
        sys.exit(1)

    echo(f"Total {total} messages deleted")
