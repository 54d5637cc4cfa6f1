"""Backup, restore and purge logic, driving an IMAP client and the local store."""

import calendar
import socket
import time
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Callable, Protocol, TypeVar

from .diff import filter_out, intersect
from .errors import NotFound, ProtocolFailure, ReceivedTimeError
from .meta import FolderMeta, MessageMeta
from .received import get_message_received
from .storage import LocalFolder, list_local_folders

T = TypeVar("T")

# progress_callback(event, folder, amount)
# event: "list" (one folder listed), "download"/"upload" (bytes transferred),
#        "delete" (messages deleted in folder)
ProgressCallback = Callable[[str, str, int], None]
WarningCallback = Callable[[str], None]

# Failures a fresh session can recover from. IOFailure is an OSError but is not listed
RETRYABLE_ERRORS = (ProtocolFailure, ConnectionError, TimeoutError, socket.gaierror)


class RemoteMailbox(Protocol):
    """The remote operations the synchronizer needs (see ``imapbak.imap.IMAPClient``)."""

    def list_folders(self) -> list[str]: ...
    def select_folder(self, folder: str, readonly: bool = True) -> tuple[int, int]: ...
    def fetch_meta(self, count: int, uid_validity: int): ...
    def fetch_messages(self, seq_nums: list[int]): ...
    def append_message(self, folder: str, when, raw: bytes) -> None: ...
    def search_before(self, before: date) -> list[int]: ...
    def delete_messages(self, seq_nums: list[int]) -> None: ...
    def create_folder(self, folder: str) -> None: ...


@dataclass
class FolderDiff:
    """A folder's full listing and the part of it still to be transferred."""
    total: FolderMeta
    pending: FolderMeta

    @property
    def name(self) -> str:
        return self.total.name


@dataclass
class QueryResult:
    """Per-folder diffs plus totals, as printed by the query commands."""
    folders: list[FolderDiff] = field(default_factory=list)

    @property
    def total_messages(self) -> int:
        return sum(len(f.total) for f in self.folders)

    @property
    def total_size(self) -> int:
        return sum(f.total.size for f in self.folders)

    @property
    def pending_messages(self) -> int:
        return sum(len(f.pending) for f in self.folders)

    @property
    def pending_size(self) -> int:
        return sum(f.pending.size for f in self.folders)


@dataclass
class SyncStats:
    """Counts of what a backup or restore run transferred."""
    folders: int = 0
    messages: int = 0
    size: int = 0
    warnings: list[str] = field(default_factory=list)


def months_ago(today: date, months: int) -> date:
    """The same day ``months`` months before ``today``, clamped to the month's end."""
    if months < 0:
        raise ValueError(f"months must be >= 0, got {months}")
    year, month = divmod(today.year * 12 + (today.month - 1) - months, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(today.day, last_day))


def run_with_retries(
    fn: Callable[[], T],
    retries: int,
    delay: float,
    on_retry: Callable[[int, Exception], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn``, retrying up to ``retries`` more times on remote or network errors.

    Local storage errors (IOFailure, NotFound, CorruptIndex) are raised at
    once. Waits ``delay`` seconds between attempts. The last error is re-raised.
    """
    attempt = 0
    while True:
        try:
            return fn()
        except RETRYABLE_ERRORS as e:
            if attempt >= retries:
                raise
            attempt += 1
            if on_retry:
                on_retry(attempt, e)
            sleep(delay)


class Synchronizer:
    """Compare and transfer messages between an IMAP account and local storage."""

    def __init__(
        self,
        client: RemoteMailbox,
        storage_root: str | Path,
        progress_callback: ProgressCallback | None = None,
        warning_callback: WarningCallback | None = None,
    ):
        self.client = client
        self.storage_root = Path(storage_root)
        self.progress_callback = progress_callback
        self.warning_callback = warning_callback

    def _progress(self, event: str, folder: str, amount: int = 0) -> None:
        if self.progress_callback:
            self.progress_callback(event, folder, amount)

    def _warn(self, message: str) -> None:
        if self.warning_callback:
            self.warning_callback(message)

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    def remote_folder_meta(self, name: str) -> FolderMeta:
        """List UIDs and sizes of all messages in a remote folder."""
        count, uid_validity = self.client.select_folder(name, readonly=True)
        folder = FolderMeta(name=name, uid_validity=uid_validity)
        if count:
            folder.messages = list(self.client.fetch_meta(count, uid_validity))
        return folder

    def local_folder_meta(self, name: str) -> FolderMeta:
        """Read a local folder's index, or an empty snapshot if never backed up."""
        try:
            with LocalFolder.open_read_only(self.storage_root, name) as lf:
                return lf.read_all_index()
        except NotFound:
            return FolderMeta(name=name)

    def local_folder_names(self) -> list[str]:
        try:
            return list_local_folders(self.storage_root)
        except NotFound:
            return []

    # -------------------------------------------------------------------------
    # Backup
    # -------------------------------------------------------------------------

    def query(self, names: list[str]) -> QueryResult:
        """For each remote folder, find messages not yet backed up."""
        result = QueryResult()
        for name in names:
            remote = self.remote_folder_meta(name)
            local = self.local_folder_meta(name)
            result.folders.append(FolderDiff(total=remote, pending=remote.without(local)))
            self._progress("list", name, 1)
        return result

    def backup(self, names: list[str], result: QueryResult | None = None) -> SyncStats:
        """Download all messages not yet backed up and append them to local storage."""
        result = result or self.query(names)
        stats = SyncStats()
        for diff in result.folders:
            if not diff.pending.messages:
                continue
            with LocalFolder.open_append(self.storage_root, diff.name) as lf:
                count, size = self.download_to(diff.pending, lf)
            stats.folders += 1
            stats.messages += count
            stats.size += size
        return stats

    def download_to(self, pending: FolderMeta, lf: LocalFolder) -> tuple[int, int]:
        """Fetch the given messages and append them to ``lf``. Returns (count, bytes)."""
        _, uid_validity = self.client.select_folder(pending.name, readonly=True)
        if uid_validity != pending.uid_validity:
            raise ProtocolFailure(
                f"UIDVALIDITY of {pending.name} changed from {pending.uid_validity} "
                f"to {uid_validity} during backup"
            )

        wanted = {m.seq_num: m for m in pending.messages}
        count = size = 0
        for msg in self.client.fetch_messages([m.seq_num for m in pending.messages]):
            expected = wanted.get(msg.seq_num)
            if expected is None or expected.uid != msg.uid:
                raise ProtocolFailure(
                    f"{pending.name}: server returned UID {msg.uid} for message {msg.seq_num}, "
                    f"expected {expected.uid if expected else 'none'}"
                )
            lf.append(uid_validity, msg.uid, msg.from_addr, msg.date, msg.body)
            count += 1
            size += len(msg.body)
            self._progress("download", pending.name, len(msg.body))
        return count, size

    # -------------------------------------------------------------------------
    # Restore
    # -------------------------------------------------------------------------

    def local_query(self, names: list[str] | None = None) -> QueryResult:
        """List every local folder (or only ``names``) with all its messages."""
        result = QueryResult()
        for name in names if names is not None else self.local_folder_names():
            with LocalFolder.open_read_only(self.storage_root, name) as lf:
                folder = lf.read_all_index()
            result.folders.append(FolderDiff(total=folder, pending=folder))
            self._progress("list", name, 1)
        return result

    def restore_query(self, names: list[str] | None = None) -> QueryResult:
        """For each local folder, find messages missing on the server.

        Folders missing on the server are created.
        """
        local_names = self.local_folder_names()
        if names is not None:
            local_names = intersect(local_names, names)
        remote_names = set(self.client.list_folders())

        result = QueryResult()
        for name in local_names:
            local = self.local_folder_meta(name)
            if name not in remote_names:
                self.client.create_folder(name)
            remote = self.remote_folder_meta(name)
            messages, _ = filter_out(local, remote)
            pending = FolderMeta(name=name, uid_validity=local.uid_validity, messages=messages)
            result.folders.append(FolderDiff(total=local, pending=pending))
            self._progress("list", name, 1)
        return result

    def restore(self, names: list[str] | None = None, result: QueryResult | None = None) -> SyncStats:
        """Upload local messages missing on the server."""
        result = result or self.restore_query(names)
        stats = SyncStats()
        for diff in result.folders:
            if not diff.pending.messages:
                continue
            with LocalFolder.open_read_only(self.storage_root, diff.name) as lf:
                for rec in diff.pending.messages:
                    self.upload(lf, rec, stats)
            stats.folders += 1
        return stats

    def upload(self, lf: LocalFolder, rec: MessageMeta, stats: SyncStats) -> None:
        raw = lf.read_message(rec)
        try:
            when = get_message_received(raw)
        except ReceivedTimeError as e:
            when = None
            warning = f"{lf.name}: validity {rec.uid_validity} uid {rec.uid}: {e}, using server time"
            stats.warnings.append(warning)
            self._warn(warning)
        self.client.append_message(lf.name, when, raw)
        stats.messages += 1
        stats.size += rec.size
        self._progress("upload", lf.name, rec.size)

    # -------------------------------------------------------------------------
    # Delete
    # -------------------------------------------------------------------------

    def delete_before(self, names: list[str], before: date) -> int:
        """Delete messages received before ``before`` from each folder. Returns the count."""
        total = 0
        for name in names:
            count, _ = self.client.select_folder(name, readonly=False)
            deleted = 0
            if count:
                seq_nums = self.client.search_before(before)
                if seq_nums:
                    self.client.delete_messages(seq_nums)
                    deleted = len(seq_nums)
            total += deleted
            self._progress("delete", name, deleted)
        return total
