"""Logging filter that masks push tokens in log records.

FCM registration tokens are delivery addresses for a specific device and
must not appear in full in operational logs.  The filter masks anything
shaped like an FCM token, keeping a short prefix so operators can still
correlate records.
"""

from __future__ import annotations

import logging
import re
from typing import Any

REDACTED = "[REDACTED]"

# Number of leading characters kept visible.
VISIBLE_PREFIX = 8

# ``<instance id>:<opaque payload>``, e.g. ``fKx...:APA91b...``.
FCM_TOKEN_RE = re.compile(r"[A-Za-z0-9_-]{8,}:[A-Za-z0-9_-]{60,}")


def mask_token(token: str) -> str:
    """Return *token* reduced to its prefix plus ``[REDACTED]``."""
    return f"{token[:VISIBLE_PREFIX]}…{REDACTED}"


class PushTokenRedactingFilter(logging.Filter):
    """A :class:`logging.Filter` that scrubs push tokens from log output."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact tokens in the log record's message and args."""
        record.msg = self._redact(record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._redact(v) for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self._redact(a) for a in record.args)
        return True  # never suppress the record itself

    def _redact(self, value: Any) -> Any:
        if isinstance(value, BaseException):
            value = str(value)
        if not isinstance(value, str):
            return value
        return FCM_TOKEN_RE.sub(lambda m: mask_token(m.group(0)), value)
