"""
Error registry: the YAML catalogue behind every RealifyError response.

Each entry maps an ``RLF-<DOMAIN>-NNN`` code to the public ``kind``, HTTP
status, retry hint and user-safe message. The file is validated as a whole
at startup; a broken catalogue stops the app instead of producing a wrong
error body at request time.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Iterable

import yaml

from realify.core.errors import CODE_PATTERN

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
DEFAULT_PATH = os.path.join(os.path.dirname(__file__), "registry.yaml")

VALID_DOMAINS = {"API", "AUTH", "BILL", "GEN", "STOR", "SYS"}
VALID_SEVERITIES = {"DEBUG", "INFO", "WARN", "ERROR", "CRITICAL"}
REQUIRED_FIELDS = {"code", "domain", "kind", "title", "severity", "retryable", "http_status", "safe_message"}


@dataclass(frozen=True)
class ErrorEntry:
    code: str
    domain: str
    kind: str
    title: str
    severity: str
    retryable: bool
    http_status: int
    safe_message: str


class RegistryValidationError(Exception):
    """Raised when registry.yaml has structural errors."""


def _parse_entry(idx: int, raw: Any) -> ErrorEntry:
    if not isinstance(raw, dict):
        raise RegistryValidationError(f"Entry {idx}: expected a mapping, got {type(raw).__name__}")

    missing = REQUIRED_FIELDS - set(raw)
    if missing:
        raise RegistryValidationError(f"Entry {idx} ({raw.get('code', '?')}): missing fields {sorted(missing)}")

    code = raw["code"]
    if not CODE_PATTERN.match(code):
        raise RegistryValidationError(f"Invalid code format: {code!r}")

    domain = raw["domain"]
    if domain != code.split("-")[1]:
        raise RegistryValidationError(f"{code}: domain {domain!r} doesn't match the code")
    if domain not in VALID_DOMAINS:
        raise RegistryValidationError(f"{code}: unknown domain {domain!r}")
    if raw["severity"] not in VALID_SEVERITIES:
        raise RegistryValidationError(f"{code}: unknown severity {raw['severity']!r}")

    status = int(raw["http_status"])
    if not 400 <= status <= 599:
        raise RegistryValidationError(f"{code}: http_status {status} is not an error status")

    return ErrorEntry(
        code=code,
        domain=domain,
        kind=raw["kind"],
        title=raw["title"],
        severity=raw["severity"],
        retryable=bool(raw["retryable"]),
        http_status=status,
        safe_message=raw["safe_message"],
    )


class ErrorRegistry:
    """Validated code → ErrorEntry lookup."""

    def __init__(self) -> None:
        self._entries: Dict[str, ErrorEntry] = {}

    def load(self, path: str | None = None, required: Iterable[str] = ()) -> None:
        """
        Parse and validate the catalogue, replacing any entries loaded before.

        ``required`` lists codes the application raises; each must be present.
        """
        with open(path or DEFAULT_PATH, "r") as f:
            data = yaml.safe_load(f) or {}

        version = data.get("schema_version")
        if version != SCHEMA_VERSION:
            raise RegistryValidationError(f"Unsupported schema_version: {version!r}")

        raw_entries = data.get("errors", [])
        if not isinstance(raw_entries, list):
            raise RegistryValidationError("'errors' must be a list")

        entries: Dict[str, ErrorEntry] = {}
        for idx, raw in enumerate(raw_entries):
            entry = _parse_entry(idx, raw)
            if entry.code in entries:
                raise RegistryValidationError(f"Duplicate code: {entry.code}")
            entries[entry.code] = entry

        unregistered = sorted(set(required) - set(entries))
        if unregistered:
            raise RegistryValidationError(f"Codes raised but not registered: {unregistered}")

        self._entries = entries
        logger.info("error_registry_loaded", extra={"count": len(entries)})

    def get(self, code: str) -> ErrorEntry | None:
        return self._entries.get(code)

    def lookup(self, code: str) -> ErrorEntry:
        """Lookup by code, raising KeyError if not found."""
        entry = self._entries.get(code)
        if entry is None:
            raise KeyError(f"Unknown error code: {code!r}")
        return entry


# Module-level singleton, loaded once at startup
error_registry = ErrorRegistry()
