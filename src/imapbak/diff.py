"""Set difference between folder snapshots, by composite key.

Used both ways: backup filters the remote listing by what is already stored
locally, restore filters the local index by what is already on the server.
"""

from .meta import FolderMeta, MessageMeta


def filter_out(source: FolderMeta, exclude: FolderMeta) -> tuple[list[MessageMeta], int]:
    """Return messages of ``source`` whose key is not in ``exclude``, and their total size.

    The result keeps the order of ``source``.
    """
    if not source.messages:
        return [], 0
    if not exclude.messages:
        return list(source.messages), source.size

    seen = exclude.keys()
    res = [m for m in source.messages if m.key not in seen]
    return res, sum(m.size for m in res)


def intersect(names: list[str], wanted: list[str]) -> list[str]:
    """Return the names present in both lists, in the order of ``names``."""
    have = set(wanted)
    return [n for n in names if n in have]
