"""CLI package for imapbak - back up, restore and purge IMAP mailboxes.

This package organizes CLI commands into modules:
- backup.py: query, backup (server -> local storage)
- restore.py: local, restore (local storage -> server)
- delete.py: delete old messages from the server
- misc.py: init
- utils.py: Shared utilities and helpers
"""

import click
from dotenv import load_dotenv

from .utils import AliasGroup

from .backup import backup, query
from .delete import delete
from .misc import init
from .restore import local, restore


@click.group(cls=AliasGroup, aliases={
    'b': 'backup',
    'd': 'delete',
    'i': 'init',
    'l': 'local',
    'q': 'query',
    'r': 'restore',
})
def main():
    """Back up, restore and purge messages on an IMAP server."""
    load_dotenv()


main.add_command(backup)
main.add_command(delete)
main.add_command(init)
main.add_command(local)
main.add_command(query)
main.add_command(restore)


__all__ = [
    'main',
    'backup',
    'delete',
    'init',
    'local',
    'query',
    'restore',
]
