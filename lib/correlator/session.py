"""Session identifiers.

A session id is the only thing tying together artifacts written by
independent agent invocations, so it has a fixed, recognisable shape:

    collab-20261018-142530-payment-auth-K3J9X2QZ
    collab-20261018-142530-K3J9X2QZ

prefix, date, time, optional task label slug, random suffix.
"""

import re
import secrets
import string
from datetime import datetime
from typing import Optional

from .protocol import InvalidSessionIdError, SessionIdParts

DEFAULT_PREFIX = "collab"
SUFFIX_LENGTH = 8
SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
MAX_LABEL_LENGTH = 40

SESSION_ID_PATTERN = re.compile(
    r"(?P<prefix>[a-z][a-z0-9]*)-(?P<date>\d{8})-(?P<time>\d{6})-(?P<token>[A-Za-z0-9]+(?:-[A-Za-z0-9]+)*)"
)
_EMBEDDED_PATTERN = re.compile(r"(?<![A-Za-z0-9])" + SESSION_ID_PATTERN.pattern)


def slugify_label(label: str) -> str:
    """Reduce a free-form task label to lowercase words joined by hyphens."""
    slug = re.sub(r"[^a-z0-9]+", "-", label.lower()).strip("-")
    return slug[:MAX_LABEL_LENGTH].rstrip("-")


def random_suffix(length: int = SUFFIX_LENGTH) -> str:
    return "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(length))


def generate_session_id(
    label: Optional[str] = None,
    now: Optional[datetime] = None,
    prefix: str = DEFAULT_PREFIX,
    suffix_length: int = SUFFIX_LENGTH
) -> str:
    """Generate a new session identifier.

    Args:
        label: Optional task label, slugified into the token
        now: Timestamp to embed (default: current local time)
        prefix: Identifier prefix
        suffix_length: Length of the random A-Z0-9 suffix

    Returns:
        Session identifier string

    No collision detection is done; the random suffix is the only
    protection against two sessions sharing an id.
    """
    if not re.fullmatch(r"[a-z][a-z0-9]*", prefix):
        raise InvalidSessionIdError(f"Invalid session prefix: {prefix!r}")
    if suffix_length < 1:
        raise InvalidSessionIdError("Suffix length must be at least 1")

    now = now or datetime.now()
    stamp = now.strftime("%Y%m%d-%H%M%S")

    token = random_suffix(suffix_length)
    slug = slugify_label(label) if label else ""
    if slug:
        token = f"{slug}-{token}"

    return f"{prefix}-{stamp}-{token}"


def is_session_id(text: str) -> bool:
    return bool(text) and SESSION_ID_PATTERN.fullmatch(text.strip()) is not None


def parse_session_id(text: str) -> SessionIdParts:
    """Split a session identifier into its components.

    The last hyphen-separated piece of the token is the random suffix
    when it is uppercase/digits; anything before it is the label slug.
    """
    match = SESSION_ID_PATTERN.fullmatch(text.strip()) if text else None
    if match is None:
        raise InvalidSessionIdError(f"Not a session identifier: {text!r}")

    token = match.group("token")
    label = None
    head, _, tail = token.rpartition("-")
    if head and re.fullmatch(r"[A-Z0-9]+", tail):
        label = head

    return SessionIdParts(
        prefix=match.group("prefix"),
        date=match.group("date"),
        time=match.group("time"),
        token=token,
        label=label
    )


def find_session_ids(text: str) -> list:
    """Return every session identifier embedded in free text, in order."""
    return [m.group(0) for m in _EMBEDDED_PATTERN.finditer(text or "")]
