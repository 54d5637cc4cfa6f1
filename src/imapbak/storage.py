"""Local folder storage: one archive and one index file per folder."""

import os
from datetime import datetime
from pathlib import Path
from urllib.parse import quote, unquote

from .archive import MBOX_SUFFIX, FolderArchive
from .errors import IOFailure, NotFound
from .index import IDX_SUFFIX, FolderIndex
from .meta import FolderMeta, MessageMeta

# Characters kept verbatim in file names; everything else is percent-escaped
FOLDER_SAFE_CHARS = " !#$&'()+,;=@[]^{}~"


def folder_to_filename(folder: str) -> str:
    """Encode an IMAP folder name as a flat, reversible file name stem.

    'INBOX' -> 'INBOX', '[Gmail]/Sent Mail' -> '[Gmail]%2FSent Mail'
    """
    name = quote(folder, safe=FOLDER_SAFE_CHARS)
    if name.startswith("."):
        name = "%2E" + name[1:]
    return name


def filename_to_folder(stem: str) -> str:
    return unquote(stem)


def folder_paths(root: str | Path, folder: str) -> tuple[Path, Path]:
    """Return the (archive, index) paths for a folder."""
    stem = folder_to_filename(folder)
    root = Path(root)
    return root / f"{stem}{MBOX_SUFFIX}", root / f"{stem}{IDX_SUFFIX}"


def list_local_folders(root: str | Path) -> list[str]:
    """Names of all folders stored under ``root``, sorted."""
    root = Path(root)
    try:
        entries = list(os.scandir(root))
    except FileNotFoundError:
        raise NotFound(root) from None
    except OSError as e:
        raise IOFailure(f"{root}: {e.strerror or e}") from e

    names = []
    for entry in entries:
        if entry.is_dir() or not entry.name.endswith(IDX_SUFFIX):
            continue
        names.append(filename_to_folder(entry.name[: -len(IDX_SUFFIX)]))
    return sorted(names)


class LocalFolder:
    """A local mail folder: an .mbox archive and its .idx index.

    Open with ``open_read_only`` or ``open_append``; a handle is never both.
    Usable as a context manager, which closes both files on exit.
    """

    def __init__(self, name: str, archive: FolderArchive, index: FolderIndex):
        self.name = name
        self.archive = archive
        self.index = index

    @classmethod
    def open_read_only(cls, root: str | Path, name: str) -> "LocalFolder":
        """Open an existing folder for reading. Raises NotFound if it was never backed up."""
        mbox_path, idx_path = folder_paths(root, name)
        archive = FolderArchive(mbox_path, "r").open()
        try:
            index = FolderIndex(idx_path, "r").open()
        except BaseException:
            archive.close()
            raise
        return cls(name, archive, index)

    @classmethod
    def open_append(cls, root: str | Path, name: str) -> "LocalFolder":
        """Open a folder for appending, creating the directory and files as needed."""
        root = Path(root)
        try:
            root.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as e:
            raise IOFailure(f"{root}: {e.strerror or e}") from e
        mbox_path, idx_path = folder_paths(root, name)
        archive = FolderArchive(mbox_path, "a").open()
        try:
            index = FolderIndex(idx_path, "a").open()
        except BaseException:
            archive.close()
            raise
        return cls(name, archive, index)

    def close(self) -> None:
        """Close the archive, then flush and close the index."""
        try:
            self.archive.close()
        finally:
            self.index.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def read_all_index(self) -> FolderMeta:
        """Read the whole index as a folder snapshot.

        Records repeating an earlier key are dropped.
        """
        records, uid_validity = self.index.load_all()
        return FolderMeta(name=self.name, uid_validity=uid_validity, messages=list(records.values()))

    def append(
        self,
        uid_validity: int,
        uid: int,
        from_address: str,
        received_time: datetime,
        body: bytes,
    ) -> MessageMeta:
        """Store one message: archive first, then its index record.

        The archive is flushed before the record is written, so an index
        line never reaches disk ahead of the body it points to.
        """
        offset = self.archive.append_message(from_address, received_time, body)
        self.archive.flush()
        rec = MessageMeta(uid_validity=uid_validity, uid=uid, size=len(body), offset=offset)
        self.index.append_record(rec)
        return rec

    def read_message(self, rec: MessageMeta) -> bytes:
        """Read the raw body of a record from the archive."""
        if rec.offset is None:
            raise ValueError(f"Message {rec.uid_validity}/{rec.uid} is not stored locally")
        return self.archive.read_at(rec.offset, rec.size)
