"""IMAP client wrapper providing the remote operations used by backup and restore."""

import imaplib
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from email import policy
from email.parser import BytesHeaderParser
from email.utils import parseaddr, parsedate_to_datetime
from typing import Iterator

from .errors import ProtocolFailure
from .meta import MessageMeta
from .received import received_time_or

IMAP_PORT = 993
META_BATCH = 1000  # messages per metadata FETCH
BODY_BATCH = 50  # messages per body FETCH

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

LIST_RE = re.compile(r'\((?P<flags>[^)]*)\)\s+(?P<delim>"(?:[^"\\]|\\.)*"|NIL)\s+(?P<name>.*)$')
FETCH_RE = re.compile(rb"^(\d+) \(")
UID_RE = re.compile(rb"\bUID (\d+)")
SIZE_RE = re.compile(rb"\bRFC822\.SIZE (\d+)")


@dataclass
class FetchedMessage:
    """A message body fetched from the server, with the envelope fields we keep."""
    seq_num: int
    uid: int
    size: int
    from_addr: str
    date: datetime
    body: bytes


def quote_mailbox(name: str) -> str:
    """Quote a mailbox name for use as an IMAP astring."""
    return '"' + name.replace("\\", "\\\\").replace('"', '\\"') + '"'


def unquote_mailbox(name: str) -> str:
    name = name.strip()
    if len(name) >= 2 and name[0] == '"' and name[-1] == '"':
        return re.sub(r"\\(.)", r"\1", name[1:-1])
    return name


def seq_set(nums: list[int]) -> str:
    """Compact message numbers into an IMAP sequence set, e.g. [1, 2, 3, 7] -> '1:3,7'."""
    if not nums:
        raise ValueError("Empty sequence set")
    ranges = []
    nums = sorted(set(nums))
    start = prev = nums[0]
    for n in nums[1:]:
        if n == prev + 1:
            prev = n
            continue
        ranges.append((start, prev))
        start = prev = n
    ranges.append((start, prev))
    return ",".join(str(a) if a == b else f"{a}:{b}" for a, b in ranges)


def imap_date(d: date) -> str:
    """Format a date for SEARCH criteria (locale-independent), e.g. '02-Jan-2006'."""
    return f"{d.day:02d}-{MONTHS[d.month - 1]}-{d.year:04d}"


def parse_list_line(item: bytes | tuple) -> tuple[str, str] | None:
    """Parse one LIST response into (flags, name). Returns None for junk lines."""
    if item is None:
        return None
    if isinstance(item, tuple):
        # Name sent as a literal: (b'(\\HasNoChildren) "/" {7}', b'Folder1')
        head = item[0].decode("utf-8", "surrogateescape")
        match = LIST_RE.match(head)
        if not match:
            return None
        return match.group("flags"), item[1].decode("utf-8", "surrogateescape")
    decoded = item.decode("utf-8", "surrogateescape")
    match = LIST_RE.match(decoded)
    if not match:
        return None
    return match.group("flags"), unquote_mailbox(match.group("name"))


def envelope(raw: bytes) -> tuple[str, datetime]:
    """Sender address and date of a message, for its mbox delimiter line.

    Falls back to the Received timestamp, then to the epoch, if Date is
    missing or invalid.
    """
    msg = BytesHeaderParser(policy=policy.compat32).parsebytes(raw)
    _, from_addr = parseaddr(str(msg.get("From", "")))
    when = None
    if msg["Date"]:
        try:
            when = parsedate_to_datetime(str(msg["Date"]))
        except (TypeError, ValueError):
            when = None
    if when is None:
        when = received_time_or(raw, EPOCH)
    return from_addr, when


class IMAPClient:
    """Thin wrapper over imaplib raising ProtocolFailure on any server error."""

    def __init__(self, host: str, port: int = IMAP_PORT, ssl: bool = True):
        self.host = host
        self.port = port
        self.ssl = ssl
        self._conn: imaplib.IMAP4 | None = None

    def connect(self, user: str, password: str) -> None:
        try:
            if self.ssl:
                self._conn = imaplib.IMAP4_SSL(self.host, self.port)
            else:
                self._conn = imaplib.IMAP4(self.host, self.port)
            self._conn.login(user, password)
        except (imaplib.IMAP4.error, OSError) as e:
            self._conn = None
            raise ProtocolFailure(f"Cannot log in to {self.host}:{self.port} as {user}: {e}") from e

    def disconnect(self) -> None:
        if self._conn:
            try:
                self._conn.logout()
            except (imaplib.IMAP4.error, OSError):
                pass
            self._conn = None

    @property
    def conn(self) -> imaplib.IMAP4:
        if not self._conn:
            raise RuntimeError("Not connected")
        return self._conn

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.disconnect()

    def _call(self, what: str, method: str, *args) -> list:
        """Run an imaplib command, returning its data or raising ProtocolFailure."""
        try:
            typ, data = getattr(self.conn, method)(*args)
        except (imaplib.IMAP4.error, OSError) as e:
            raise ProtocolFailure(f"{what}: {e}") from e
        if typ != "OK":
            raise ProtocolFailure(f"{what}: {typ} {_text(data)}")
        return data

    def list_folders(self) -> list[str]:
        """Names of all selectable folders, sorted."""
        data = self._call("Failed to list folders", "list")
        names = []
        for item in data:
            parsed = parse_list_line(item)
            if not parsed:
                continue
            flags, name = parsed
            if "\\noselect" in flags.lower() or "\\nonexistent" in flags.lower():
                continue
            names.append(name)
        return sorted(names)

    def select_folder(self, folder: str, readonly: bool = True) -> tuple[int, int]:
        """Select a folder, return (message count, UIDVALIDITY)."""
        data = self._call(f"Failed to select folder {folder}", "select", quote_mailbox(folder), readonly)
        count = int(data[0]) if data and data[0] else 0
        _, validity = self.conn.response("UIDVALIDITY")
        if not validity or validity[0] is None:
            raise ProtocolFailure(f"Server sent no UIDVALIDITY for folder {folder}")
        return count, int(validity[0])

    def fetch_meta(self, count: int, uid_validity: int) -> Iterator[MessageMeta]:
        """Yield UID and size of messages 1..count of the selected folder."""
        for start in range(1, count + 1, META_BATCH):
            end = min(start + META_BATCH - 1, count)
            data = self._call(f"Failed to fetch messages {start}:{end}", "fetch", f"{start}:{end}", "(UID RFC822.SIZE)")
            for item in data:
                line = item[0] if isinstance(item, tuple) else item
                if not isinstance(line, bytes):
                    continue
                seq, uid, size = FETCH_RE.match(line), UID_RE.search(line), SIZE_RE.search(line)
                if not (seq and uid and size):
                    continue
                yield MessageMeta(
                    uid_validity=uid_validity,
                    uid=int(uid.group(1)),
                    size=int(size.group(1)),
                    seq_num=int(seq.group(1)),
                )

    def fetch_messages(self, seq_nums: list[int]) -> Iterator[FetchedMessage]:
        """Yield full messages for the given sequence numbers of the selected folder."""
        for i in range(0, len(seq_nums), BODY_BATCH):
            batch = seq_nums[i:i + BODY_BATCH]
            data = self._call("Failed to fetch message bodies", "fetch", seq_set(batch), "(UID BODY.PEEK[])")
            for j, item in enumerate(data):
                if not isinstance(item, tuple):
                    continue
                head, body = item[0], item[1]
                # UID may come after the literal, in the next response piece
                tail = data[j + 1] if j + 1 < len(data) and isinstance(data[j + 1], bytes) else b""
                seq, uid = FETCH_RE.match(head), UID_RE.search(head + tail)
                if not (seq and uid):
                    raise ProtocolFailure(f"Malformed FETCH response: {head[:80]!r}")
                from_addr, when = envelope(body)
                yield FetchedMessage(
                    seq_num=int(seq.group(1)),
                    uid=int(uid.group(1)),
                    size=len(body),
                    from_addr=from_addr,
                    date=when,
                    body=body,
                )

    def append_message(self, folder: str, when: datetime | None, raw: bytes) -> None:
        """Append a message to a folder, preserving its delivery time when known."""
        internal_date = None
        if when:
            if when.tzinfo is None:
                when = when.replace(tzinfo=timezone.utc)
            internal_date = imaplib.Time2Internaldate(when)
        self._call(f"Failed to append to {folder}", "append", quote_mailbox(folder), None, internal_date, raw)

    def search_before(self, before: date) -> list[int]:
        """Sequence numbers of messages in the selected folder received before a date."""
        data = self._call("Search failed", "search", None, "BEFORE", imap_date(before))
        if not data or not data[0]:
            return []
        return [int(n) for n in data[0].split()]

    def delete_messages(self, seq_nums: list[int]) -> None:
        """Flag messages as deleted and expunge the selected folder."""
        if not seq_nums:
            return
        self._call("Failed to flag messages", "store", seq_set(seq_nums), "+FLAGS.SILENT", r"(\Deleted)")
        self._call("Failed to expunge", "expunge")

    def create_folder(self, folder: str) -> None:
        self._call(f"Failed to create folder {folder}", "create", quote_mailbox(folder))


def _text(data) -> str:
    parts = []
    for item in data or []:
        if isinstance(item, bytes):
            parts.append(item.decode("utf-8", "replace"))
        elif item is not None:
            parts.append(str(item))
    return " ".join(parts)
