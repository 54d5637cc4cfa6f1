"""Typed failures raised by the local store, the diff engine and the IMAP adapter.

None of these are printed or handled inside the library; the CLI decides
whether to retry, abort, or report.
"""

from pathlib import Path


class ImapBackupError(Exception):
    """Base class for all imapbak failures."""


class NotFound(ImapBackupError, FileNotFoundError):
    """A local folder (or storage directory) does not exist yet.

    Distinct from other I/O errors so callers can treat it as "nothing
    backed up yet" and diff against an empty snapshot.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        super().__init__(f"{self.path}: not found")


class CorruptIndex(ImapBackupError, ValueError):
    """An index line failed to parse."""

    def __init__(self, path: str | Path, line_no: int, detail: str):
        self.path = Path(path)
        self.line_no = line_no
        self.detail = detail
        super().__init__(f"{self.path}:{line_no}: {detail}")


class IOFailure(ImapBackupError, OSError):
    """Open, read, write or seek failure on an archive or index file."""


class ProtocolFailure(ImapBackupError, RuntimeError):
    """The IMAP server returned an error or the connection failed."""


class ReceivedTimeError(ImapBackupError, ValueError):
    """A message has no parseable delivery timestamp."""
