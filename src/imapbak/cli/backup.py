"""Query and backup commands: compare the server against local storage and download."""

import sys

import click
from click import echo

from ..errors import ImapBackupError
from ..sync import Synchronizer

from .utils import (
    ProgressReporter,
    complete_config,
    config_options,
    err,
    make_progress,
    print_summary,
    remote_folder_names,
    run_session,
    size_str,
)


@click.command()
@config_options
def query(config):
    """List messages on the server that are not yet backed up.

    \b
    Examples:
      imapbak query -s imap.example.com -u me@example.com
      imapbak q -r INBOX,Sent
    """
    config = complete_config(config)

    def session(client):
        names = remote_folder_names(client, config)
        with make_progress() as progress:
            reporter = ProgressReporter(progress)
            reporter.start("list", len(names))
            sync = Synchronizer(client, config.local_path, progress_callback=reporter)
            return sync.query(names)

    try:
        result = run_session(config, session)
    except (ImapBackupError, OSError) as e:
        err(f"Error: {e}")
        sys.exit(1)

    print_summary(f"{config.server}/{config.user}", result)


@click.command()
@config_options
def backup(config):
    """Download new messages from the server into local storage.

    Messages are appended to <storage>/<server>/<user>/<folder>.mbox and
    indexed in the matching .idx file. Messages already stored are skipped,
    so running backup again only fetches what is new.

    \b
    Examples:
      imapbak backup -s imap.example.com -u me@example.com
      imapbak b -r INBOX
    """
    config = complete_config(config)

    def session(client):
        names = remote_folder_names(client, config)
        with make_progress() as progress:
            reporter = ProgressReporter(progress)
            reporter.start("list", len(names))
            sync = Synchronizer(client, config.local_path, progress_callback=reporter)
            result = sync.query(names)
        print_summary(f"{config.server}/{config.user}", result)
        if not result.pending_messages:
            return None

        with make_progress() as progress:
            reporter = ProgressReporter(progress)
            reporter.start("download", result.pending_size)
            sync.progress_callback = reporter
            return sync.backup(names, result)

    try:
        stats = run_session(config, session)
    except (ImapBackupError, OSError) as e:
        err(f"Error: {e}")
        sys.exit(1)

    if stats is None:
        echo("Nothing to back up.")
    else:
        echo(f"Backed up {stats.messages} messages ({size_str(stats.size)}) in {stats.folders} folders")
        echo(f"Local storage: {config.local_path}")
