"""Logging filter that keeps the hub access token out of log output.

Config values whose *keys* match ``logging.redact_patterns`` (shell-style,
case-insensitive) are collected at startup; the filter replaces them with
``[REDACTED]`` in every record's message and arguments.
"""

from __future__ import annotations

import fnmatch
import logging
from typing import Any, Iterable

REDACTED = "[REDACTED]"


class SecretRedactingFilter(logging.Filter):
    """Scrub known secret values from log records; never drops a record."""

    def __init__(self, secret_values: Iterable[str] | None = None) -> None:
        super().__init__()
        self._secrets: list[str] = []
        for value in secret_values or ():
            self.add_secret(value)

    def add_secret(self, value: str) -> None:
        # single characters would shred every log line
        if value and len(value) > 1 and value not in self._secrets:
            self._secrets.append(value)

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        record.msg = self._redact(record.msg)
        if isinstance(record.args, dict):
            record.args = {k: self._redact(v) for k, v in record.args.items()}
        elif isinstance(record.args, tuple):
            record.args = tuple(self._redact(a) for a in record.args)
        return True

    def _redact(self, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        for secret in self._secrets:
            value = value.replace(secret, REDACTED)
        return value


def collect_secret_values(config_dict: dict[str, Any], patterns: list[str] | None = None) -> list[str]:
    """Return the string values in *config_dict* whose keys match *patterns*."""
    found: list[str] = []
    if patterns:
        _walk(config_dict, [p.lower() for p in patterns], found)
    return found


def _walk(obj: Any, patterns: list[str], out: list[str]) -> None:
    if isinstance(obj, dict):
        for key, val in obj.items():
            if isinstance(val, str) and any(fnmatch.fnmatch(str(key).lower(), p) for p in patterns):
                out.append(val)
            _walk(val, patterns, out)
    elif isinstance(obj, (list, tuple)):
        for item in obj:
            _walk(item, patterns, out)
