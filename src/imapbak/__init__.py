"""IMAP backup: archive, restore and purge mailboxes with a local mbox store."""

from .diff import filter_out
from .errors import CorruptIndex, ImapBackupError, IOFailure, NotFound, ProtocolFailure
from .meta import FolderMeta, MessageMeta, composite_key
from .storage import LocalFolder, list_local_folders
from .sync import Synchronizer

__all__ = [
    "CorruptIndex",
    "FolderMeta",
    "IOFailure",
    "ImapBackupError",
    "LocalFolder",
    "MessageMeta",
    "NotFound",
    "ProtocolFailure",
    "Synchronizer",
    "composite_key",
    "filter_out",
    "list_local_folders",
]
