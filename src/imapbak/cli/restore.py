"""Local query and restore commands: inspect local storage and upload it to the server."""

import sys

import click
from click import echo

from ..diff import intersect
from ..errors import ImapBackupError
from ..sync import Synchronizer

from .utils import (
    ProgressReporter,
    complete_config,
    config_options,
    err,
    make_progress,
    print_summary,
    run_session,
    size_str,
)


@click.command()
@config_options
def local(config):
    """List folders and messages in local storage.

    \b
    Examples:
      imapbak local -s imap.example.com -u me@example.com
    """
    config = complete_config(config, need_password=False)
    root = config.local_path

    try:
        with make_progress() as progress:
            reporter = ProgressReporter(progress)
            sync = Synchronizer(None, root, progress_callback=reporter)
            names = sync.local_folder_names()
            if config.folders:
                names = intersect(names, config.folders)
            reporter.start("list", len(names))
            result = sync.local_query(names)
    except (ImapBackupError, OSError) as e:
        err(f"Error: {e}")
        sys.exit(1)

    if not result.folders:
        echo(f"No local folders in {root}")
        return
    print_summary(str(root), result)


@click.command()
@config_options
def restore(config):
    """Upload locally stored messages that are missing on the server.

    Folders that don't exist on the server are created. Messages are
    uploaded with the time of their first Received header.

    \b
    Examples:
      imapbak restore -s imap.example.com -u me@example.com
      imapbak r -r INBOX
    """
    config = complete_config(config)
    root = config.local_path

    def session(client):
        with make_progress() as progress:
            reporter = ProgressReporter(progress)
            sync = Synchronizer(client, root, progress_callback=reporter, warning_callback=err)
            names = sync.local_folder_names()
            if config.folders:
                names = intersect(names, config.folders)
            reporter.start("list", len(names))
            result = sync.restore_query(names)
        print_summary(str(root), result)
        if not result.pending_messages:
            return None

        with make_progress() as progress:
            reporter = ProgressReporter(progress)
            reporter.start("upload", result.pending_size)
            sync.progress_callback = reporter
            return sync.restore(result=result)

    try:
        stats = run_session(config, session)
    except (ImapBackupError, OSError) as e:
        err(f"Error: {e}")
        sys.exit(1)

    if stats is None:
        echo("Nothing to restore.")
    else:
        echo(f"Restored {stats.messages} messages ({size_str(stats.size)}) in {stats.folders} folders")
        if stats.warnings:
            echo(f"Warnings: {len(stats.warnings)} messages uploaded with server time")
