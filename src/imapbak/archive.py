"""Append-only mbox-style archive of raw message bodies.

Each message is stored as::

    From <address> <asctime UTC>\n
    <raw body bytes>
    \n

Bodies are written exactly as received (no "From " quoting), so they may
contain lines that look like delimiters. Never split the archive on
delimiter lines; locate bodies by the (offset, size) pairs in the index.
"""

import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO

from .errors import IOFailure, NotFound

MBOX_SUFFIX = ".mbox"
DEFAULT_SENDER = "MAILER-DAEMON"


def from_line(from_address: str, received_time: datetime) -> bytes:
    """Build the delimiter line preceding a message body.

    Naive datetimes are taken as UTC.
    """
    if received_time.tzinfo is None:
        received_time = received_time.replace(tzinfo=timezone.utc)
    stamp = time.asctime(received_time.astimezone(timezone.utc).timetuple())
    sender = "".join(from_address.split()) or DEFAULT_SENDER
    return f"From {sender} {stamp}\n".encode("utf-8", "surrogateescape")


class FolderArchive:
    """An archive file opened either for reading ("r") or appending ("a")."""

    def __init__(self, path: str | Path, mode: str = "r"):
        if mode not in ("r", "a"):
            raise ValueError(f"Invalid mode: {mode!r}")
        self.path = Path(path)
        self.mode = mode
        self._file: BinaryIO | None = None

    def open(self) -> "FolderArchive":
        try:
            if self.mode == "r":
                self._file = open(self.path, "rb")
            else:
                fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
                self._file = os.fdopen(fd, "ab")
                self._file.seek(0, os.SEEK_END)
        except FileNotFoundError:
            if self.mode == "r":
                raise NotFound(self.path) from None
            raise IOFailure(f"{self.path}: cannot create archive") from None
        except OSError as e:
            raise IOFailure(f"{self.path}: {e.strerror or e}") from e
        return self

    def close(self) -> None:
        if not self._file:
            return
        f, self._file = self._file, None
        try:
            f.close()
        except OSError as e:
            raise IOFailure(f"{self.path}: {e.strerror or e}") from e

    @property
    def file(self) -> BinaryIO:
        if not self._file:
            raise RuntimeError(f"Archive not open: {self.path}")
        return self._file

    def __enter__(self):
        return self.open()

    def __exit__(self, *args):
        self.close()

    def append_message(self, from_address: str, received_time: datetime, body: bytes) -> int:
        """Append a message and return the offset of its first body byte."""
        if self.mode != "a":
            raise RuntimeError(f"Archive not open for appending: {self.path}")
        f = self.file
        try:
            f.write(from_line(from_address, received_time))
            offset = f.tell()
            f.write(body)
            f.write(b"\n")
        except OSError as e:
            raise IOFailure(f"{self.path}: {e.strerror or e}") from e
        return offset

    def flush(self) -> None:
        """Push buffered writes to the OS."""
        try:
            self.file.flush()
        except OSError as e:
            raise IOFailure(f"{self.path}: {e.strerror or e}") from e

    def read_at(self, offset: int, size: int) -> bytes:
        """Read exactly ``size`` bytes starting at ``offset``."""
        if self.mode != "r":
            raise RuntimeError(f"Archive not open for reading: {self.path}")
        f = self.file
        try:
            f.seek(offset)
            data = f.read(size)
        except (OSError, OverflowError) as e:
            raise IOFailure(f"{self.path}: cannot read {size} bytes at {offset}: {e}") from e
        if len(data) != size:
            raise IOFailure(
                f"{self.path}: short read at {offset}: wanted {size} bytes, got {len(data)}"
            )
        return data
