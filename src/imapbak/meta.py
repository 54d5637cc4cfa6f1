"""Message identity and folder metadata snapshots.

A snapshot describes a folder's messages at one point in time, either as
listed by the IMAP server or as recorded in the local index. Snapshots from
both sides are compared by composite key (see ``imapbak.diff``).
"""

from dataclasses import dataclass, field

U32_MAX = 0xFFFFFFFF
U64_MAX = 0xFFFFFFFFFFFFFFFF


def composite_key(uid_validity: int, uid: int) -> int:
    """Combine a folder's UIDVALIDITY and a message UID into one 64-bit key."""
    if not 0 <= uid_validity <= U32_MAX:
        raise ValueError(f"uid_validity out of range: {uid_validity}")
    if not 0 <= uid <= U32_MAX:
        raise ValueError(f"uid out of range: {uid}")
    return (uid_validity << 32) | uid


@dataclass(frozen=True)
class MessageMeta:
    """Metadata for one message, remote or local.

    ``seq_num`` is only known for messages listed from the server, and only
    valid for the session that listed them. ``offset`` is only known once the
    body has been written to the local archive.
    """
    uid_validity: int
    uid: int
    size: int
    offset: int | None = None
    seq_num: int | None = None

    @property
    def key(self) -> int:
        return composite_key(self.uid_validity, self.uid)


@dataclass
class FolderMeta:
    """Point-in-time description of a folder and its messages."""
    name: str
    uid_validity: int = 0
    messages: list[MessageMeta] = field(default_factory=list)

    @property
    def size(self) -> int:
        """Total size of all messages in bytes."""
        return sum(m.size for m in self.messages)

    def __len__(self) -> int:
        return len(self.messages)

    def keys(self) -> set[int]:
        return {m.key for m in self.messages}

    def without(self, other: "FolderMeta") -> "FolderMeta":
        """Return a copy of this snapshot minus every message also in ``other``."""
        from .diff import filter_out

        messages, _ = filter_out(self, other)
        return FolderMeta(name=self.name, uid_validity=self.uid_validity, messages=messages)
