"""Line-oriented index of the messages stored in a local archive.

Each line records one message as four tab-separated decimal fields::

    <uid_validity>\t<uid>\t<size>\t<offset>\n

The file is append-only: lines are never rewritten or removed. The index is
the only way to locate a body in the archive (see ``imapbak.archive``).
"""

import os
from pathlib import Path
from typing import BinaryIO, Iterator

from .errors import CorruptIndex, IOFailure, NotFound
from .meta import U32_MAX, U64_MAX, MessageMeta

IDX_SUFFIX = ".idx"

# (field name, max value) in on-disk order
FIELDS = (
    ("uid_validity", U32_MAX),
    ("uid", U32_MAX),
    ("size", U32_MAX),
    ("offset", U64_MAX),
)


def format_record(rec: MessageMeta) -> bytes:
    """Serialize a record as one index line."""
    if rec.offset is None:
        raise ValueError(f"Record {rec.uid_validity}/{rec.uid} has no archive offset")
    values = (rec.uid_validity, rec.uid, rec.size, rec.offset)
    for (name, limit), value in zip(FIELDS, values):
        if not 0 <= value <= limit:
            raise ValueError(f"{name} out of range: {value}")
    return ("\t".join(str(v) for v in values) + "\n").encode("ascii")


def parse_record(line: bytes) -> MessageMeta:
    """Parse one index line (with or without its newline). Raises ValueError."""
    if line.endswith(b"\n"):
        line = line[:-1]
    parts = line.split(b"\t")
    if len(parts) != len(FIELDS):
        raise ValueError(f"expected {len(FIELDS)} fields, got {len(parts)}: {line!r}")

    values = []
    for (name, limit), part in zip(FIELDS, parts):
        if not part.isdigit():
            raise ValueError(f"{name} is not a decimal number: {part!r}")
        value = int(part)
        if value > limit:
            raise ValueError(f"{name} out of range: {value}")
        values.append(value)

    uid_validity, uid, size, offset = values
    return MessageMeta(uid_validity=uid_validity, uid=uid, size=size, offset=offset)


class FolderIndex:
    """An index file opened either for reading ("r") or appending ("a")."""

    def __init__(self, path: str | Path, mode: str = "r"):
        if mode not in ("r", "a"):
            raise ValueError(f"Invalid mode: {mode!r}")
        self.path = Path(path)
        self.mode = mode
        self.line_no = 0
        self._file: BinaryIO | None = None

    def open(self) -> "FolderIndex":
        """Open the file. Read mode raises NotFound if it doesn't exist."""
        try:
            if self.mode == "r":
                self._file = open(self.path, "rb")
            else:
                fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
                self._file = os.fdopen(fd, "ab")
        except FileNotFoundError:
            if self.mode == "r":
                raise NotFound(self.path) from None
            raise IOFailure(f"{self.path}: cannot create index") from None
        except OSError as e:
            raise IOFailure(f"{self.path}: {e.strerror or e}") from e
        self.line_no = 0
        return self

    def close(self) -> None:
        """Flush pending writes and release the file. Closing twice is a no-op."""
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
            raise RuntimeError(f"Index not open: {self.path}")
        return self._file

    def __enter__(self):
        return self.open()

    def __exit__(self, *args):
        self.close()

    def scan(self) -> Iterator[MessageMeta]:
        """Yield records in file order. Single pass; reopen to start over."""
        if self.mode != "r":
            raise RuntimeError(f"Index not open for reading: {self.path}")
        f = self.file
        while True:
            try:
                line = f.readline()
            except OSError as e:
                raise IOFailure(f"{self.path}: {e.strerror or e}") from e
            if not line:
                return
            self.line_no += 1
            try:
                rec = parse_record(line)
            except ValueError as e:
                raise CorruptIndex(self.path, self.line_no, str(e)) from None
            yield rec

    __iter__ = scan

    def load_all(self) -> tuple[dict[int, MessageMeta], int]:
        """Drain the index into a key -> record map.

        Returns the map and the UIDVALIDITY of the last record (0 if empty).
        If a key occurs more than once, the first record is kept.
        """
        records: dict[int, MessageMeta] = {}
        last_uid_validity = 0
        for rec in self.scan():
            records.setdefault(rec.key, rec)
            last_uid_validity = rec.uid_validity
        return records, last_uid_validity

    def append_record(self, rec: MessageMeta) -> None:
        """Append one record. Buffered until close()."""
        if self.mode != "a":
            raise RuntimeError(f"Index not open for appending: {self.path}")
        line = format_record(rec)
        try:
            self.file.write(line)
        except OSError as e:
            raise IOFailure(f"{self.path}: {e.strerror or e}") from e
        self.line_no += 1
