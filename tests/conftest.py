"""Shared fixtures: an in-memory IMAP server standing in for IMAPClient."""

import os
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

import pytest

from imapbak.errors import ProtocolFailure
from imapbak.imap import FetchedMessage, envelope
from imapbak.meta import MessageMeta


def make_message(
    n: int,
    size: int | None = None,
    received: str | None = "Mon, 02 Jan 2006 15:04:05 +0000",
    sender: str = "alice@example.com",
) -> bytes:
    """Build a small raw message, padded to ``size`` bytes if given."""
    headers = []
    if received:
        headers.append(f"Received: from mx.example.com by mail.example.com; {received}")
    headers += [
        f"From: Alice <{sender}>",
        "To: bob@example.com",
        f"Subject: Message {n}",
        "Date: Mon, 02 Jan 2006 15:00:00 +0000",
        f"Message-ID: <{n}@example.com>",
    ]
    raw = ("\r\n".join(headers) + "\r\n\r\n" + f"Body of message {n}\r\n").encode()
    if size is not None:
        assert size >= len(raw), f"message {n} needs at least {len(raw)} bytes"
        raw += b"x" * (size - len(raw))
    return raw


@dataclass
class FakeMessage:
    uid: int
    raw: bytes
    when: datetime | None = None


@dataclass
class FakeFolder:
    uid_validity: int
    messages: list[FakeMessage] = field(default_factory=list)
    next_uid: int = 1


class FakeMailbox:
    """In-memory server implementing the operations Synchronizer uses."""

    def __init__(self):
        self.folders: dict[str, FakeFolder] = {}
        self.selected: str | None = None
        self.readonly = True
        self.appended: list[tuple[str, datetime | None, bytes]] = []
        self.fetched: list[int] = []
        self.disconnected = 0
        self._next_validity = 100

    # Test setup helpers

    def add_folder(self, name: str, uid_validity: int | None = None) -> FakeFolder:
        if uid_validity is None:
            uid_validity = self._next_validity
            self._next_validity += 1
        folder = FakeFolder(uid_validity=uid_validity)
        self.folders[name] = folder
        return folder

    def add_message(self, folder: str, raw: bytes, uid: int | None = None, when: datetime | None = None) -> FakeMessage:
        f = self.folders[folder]
        if uid is None:
            uid = f.next_uid
        f.next_uid = max(f.next_uid, uid + 1)
        msg = FakeMessage(uid=uid, raw=raw, when=when)
        f.messages.append(msg)
        return msg

    # RemoteMailbox

    def _folder(self) -> FakeFolder:
        if self.selected is None:
            raise ProtocolFailure("No folder selected")
        return self.folders[self.selected]

    def list_folders(self) -> list[str]:
        return sorted(self.folders)

    def select_folder(self, folder: str, readonly: bool = True) -> tuple[int, int]:
        if folder not in self.folders:
            raise ProtocolFailure(f"Failed to select folder {folder}: NO Mailbox doesn't exist")
        self.selected = folder
        self.readonly = readonly
        f = self.folders[folder]
        return len(f.messages), f.uid_validity

    def fetch_meta(self, count: int, uid_validity: int):
        f = self._folder()
        for i, m in enumerate(f.messages[:count]):
            yield MessageMeta(uid_validity=uid_validity, uid=m.uid, size=len(m.raw), seq_num=i + 1)

    def fetch_messages(self, seq_nums: list[int]):
        f = self._folder()
        for seq in seq_nums:
            m = f.messages[seq - 1]
            self.fetched.append(m.uid)
            from_addr, when = envelope(m.raw)
            yield FetchedMessage(seq_num=seq, uid=m.uid, size=len(m.raw), from_addr=from_addr, date=when, body=m.raw)

    def append_message(self, folder: str, when: datetime | None, raw: bytes) -> None:
        if folder not in self.folders:
            raise ProtocolFailure(f"Failed to append to {folder}: NO [TRYCREATE]")
        self.appended.append((folder, when, raw))
        self.add_message(folder, raw, when=when)

    def search_before(self, before: date) -> list[int]:
        f = self._folder()
        return [i + 1 for i, m in enumerate(f.messages) if m.when and m.when.date() < before]

    def delete_messages(self, seq_nums: list[int]) -> None:
        if self.readonly:
            raise ProtocolFailure("Folder selected read-only")
        f = self._folder()
        drop = set(seq_nums)
        f.messages = [m for i, m in enumerate(f.messages) if i + 1 not in drop]

    def create_folder(self, folder: str) -> None:
        if folder in self.folders:
            raise ProtocolFailure(f"Failed to create folder {folder}: NO [ALREADYEXISTS]")
        self.add_folder(folder)

    def disconnect(self) -> None:
        self.disconnected += 1


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep the user's config file and IMAPBAK_* variables out of tests."""
    for key in list(os.environ):
        if key.startswith("IMAPBAK_"):
            monkeypatch.delenv(key)
    path = tmp_path / "config.yaml"
    monkeypatch.setenv("IMAPBAK_CONFIG", str(path))
    return path


@pytest.fixture
def mailbox():
    return FakeMailbox()


@pytest.fixture
def inbox(mailbox):
    """Server with INBOX (UIDVALIDITY 7) holding UIDs 1, 2, 3 of sizes 1000, 2000, 3000."""
    mailbox.add_folder("INBOX", uid_validity=7)
    for uid, size in ((1, 1000), (2, 2000), (3, 3000)):
        mailbox.add_message(
            "INBOX",
            make_message(uid, size=size),
            uid=uid,
            when=datetime(2020, uid, 1, tzinfo=timezone.utc),
        )
    return mailbox
