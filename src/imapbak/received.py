"""Extract the delivery timestamp of a message from its Received header."""

from datetime import datetime
from email import policy
from email.parser import BytesHeaderParser
from email.utils import parsedate_to_datetime

from .errors import ReceivedTimeError


def get_message_received(raw: bytes) -> datetime:
    """Return the timestamp after the last ';' of the first Received header.

    Only the header block is parsed. Raises ReceivedTimeError if the header
    is missing or its date can't be parsed.
    """
    msg = BytesHeaderParser(policy=policy.compat32).parsebytes(raw)
    values = msg.get_all("Received")
    if not values:
        raise ReceivedTimeError("Missing Received field in message")
    value = " ".join(str(values[0]).split())
    if ";" not in value:
        raise ReceivedTimeError(f"Received field lacks semicolon: {value}")

    date_str = value.rsplit(";", 1)[1].strip()
    try:
        when = parsedate_to_datetime(date_str)
    except (TypeError, ValueError) as e:
        raise ReceivedTimeError(f"Unparseable Received date: {date_str!r}") from e
    if when is None:
        raise ReceivedTimeError(f"Unparseable Received date: {date_str!r}")
    return when


def received_time_or(raw: bytes, default: datetime | None) -> datetime | None:
    """Like get_message_received, but return ``default`` instead of raising."""
    try:
        return get_message_received(raw)
    except ReceivedTimeError:
        return default
