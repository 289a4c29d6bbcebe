"""Secret redaction for text leaving the process.

Artifacts land in a store that other agents, and other sessions, read
back. Plan and summary text is scrubbed before it is written, and log
records are scrubbed before they are emitted.
"""
import logging
import re
from typing import List, Optional, Pattern, Tuple

SECRET_PATTERNS: List[Tuple[str, Pattern]] = [
    ("credential assignment", re.compile(
        r'(api[_-]?key|token|secret|password|passwd|pwd)\s*[:=]\s*[\'"]?[\w\-]+[\'"]?', re.IGNORECASE
    )),
    ("anthropic key", re.compile(r'sk-ant-[A-Za-z0-9\-]{32,}')),
    ("openai key", re.compile(r'sk-[A-Za-z0-9]{32,}')),
    ("aws access key", re.compile(r'AKIA[A-Z0-9]{16}')),
    ("github token", re.compile(r'gh[pousr]_[A-Za-z0-9_]{36,}')),
    ("bearer token", re.compile(r'bearer\s+[\w\-_.~+/]+=*', re.IGNORECASE)),
    ("connection string", re.compile(
        r'(mongodb|postgres|postgresql|mysql|redis)://[^:\s]+:[^@\s]+@', re.IGNORECASE
    )),
]

REDACTED = '[REDACTED]'


def redact(text: str) -> Tuple[str, List[str]]:
    """Replace credentials with a marker.

    Returns:
        (redacted text, kinds of secret found, in pattern order)
    """
    if not text:
        return text, []

    found = []
    for kind, pattern in SECRET_PATTERNS:
        text, count = pattern.subn(REDACTED, text)
        if count:
            found.append(kind)
    return text, found


def sanitize(message: str) -> str:
    return redact(message)[0]


def is_sensitive(text: str) -> bool:
    if not text:
        return False
    return any(pattern.search(text) for _, pattern in SECRET_PATTERNS)


class SecureLogger:
    """Logger wrapper that redacts messages and string arguments.

    A bound session id is prefixed to every message, so records from
    interleaved sessions in one log stay distinguishable.
    """

    def __init__(self, logger: logging.Logger, session_id: Optional[str] = None):
        self._logger = logger
        self.session_id = session_id

    @property
    def name(self) -> str:
        return self._logger.name

    def bind(self, session_id: str) -> 'SecureLogger':
        return SecureLogger(self._logger, session_id)

    def _sanitize_args(self, args):
        return tuple(sanitize(arg) if isinstance(arg, str) else arg for arg in args)

    def _emit(self, level: int, msg: str, args, kwargs) -> None:
        if self.session_id:
            msg = f"[{self.session_id}] {msg}"
        self._logger.log(level, sanitize(msg), *self._sanitize_args(args), **kwargs)

    def debug(self, msg, *args, **kwargs):
        self._emit(logging.DEBUG, msg, args, kwargs)

    def info(self, msg, *args, **kwargs):
        self._emit(logging.INFO, msg, args, kwargs)

    def warning(self, msg, *args, **kwargs):
        self._emit(logging.WARNING, msg, args, kwargs)

    def error(self, msg, *args, **kwargs):
        self._emit(logging.ERROR, msg, args, kwargs)


def get_logger(name: str, session_id: Optional[str] = None) -> SecureLogger:
    return SecureLogger(logging.getLogger(name), session_id)
