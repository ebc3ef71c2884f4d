"""
Error registry: the per-code HTTP status, severity and remediation text.

``registry.yaml`` sits next to this module. Every BrokerError subclass code
must have an entry; the exception handler renders responses from it.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from dbbroker.core.errors import CODE_PATTERN

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_PATH = Path(__file__).with_name("registry.yaml")

VALID_DOMAINS = {"API", "VAL", "CONF", "ENG", "AUTH", "SYS"}
VALID_SEVERITIES = {"DEBUG", "INFO", "WARN", "ERROR", "CRITICAL"}
REQUIRED_FIELDS = {"code", "domain", "title", "severity", "retryable", "http_status", "safe_message", "remediation"}


@dataclass(frozen=True)
class ErrorEntry:
    code: str
    domain: str
    title: str
    severity: str
    retryable: bool
    http_status: int
    safe_message: str
    remediation: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)


class RegistryValidationError(Exception):
    """registry.yaml is structurally invalid."""


def _parse_entry(index: int, raw: Any) -> ErrorEntry:
    if not isinstance(raw, dict):
        raise RegistryValidationError(f"Entry {index}: expected a mapping")

    missing = REQUIRED_FIELDS - raw.keys()
    if missing:
        raise RegistryValidationError(
            f"Entry {index} ({raw.get('code', '?')}): missing fields {sorted(missing)}"
        )

    code = raw["code"]
    if not CODE_PATTERN.match(code):
        raise RegistryValidationError(f"Invalid code format: {code!r}")

    domain = raw["domain"]
    if domain not in VALID_DOMAINS:
        raise RegistryValidationError(f"{code}: unknown domain {domain!r}")
    if code.split("-")[1] != domain:
        raise RegistryValidationError(f"{code}: domain {domain!r} does not match the code")

    if raw["severity"] not in VALID_SEVERITIES:
        raise RegistryValidationError(f"{code}: unknown severity {raw['severity']!r}")

    http_status = int(raw["http_status"])
    if not 400 <= http_status <= 599:
        raise RegistryValidationError(f"{code}: http_status {http_status} is not an error status")

    remediation = raw["remediation"] or []
    if not isinstance(remediation, list):
        raise RegistryValidationError(f"{code}: remediation must be a list")

    return ErrorEntry(
        code=code,
        domain=domain,
        title=raw["title"],
        severity=raw["severity"],
        retryable=bool(raw["retryable"]),
        http_status=http_status,
        safe_message=raw["safe_message"],
        remediation=list(remediation),
        tags=list(raw.get("tags") or []),
    )


class ErrorRegistry:
    """Code -> ErrorEntry lookup, loaded from YAML."""

    def __init__(self) -> None:
        self._entries: Dict[str, ErrorEntry] = {}
        self._lock = threading.Lock()
        self.schema_version: int = 0

    @property
    def loaded(self) -> bool:
        return bool(self._entries)

    def load(self, path: Optional[str] = None) -> None:
        source = Path(path) if path else DEFAULT_REGISTRY_PATH
        data = yaml.safe_load(source.read_text(encoding="utf-8")) or {}

        raw_entries = data.get("errors", [])
        if not isinstance(raw_entries, list):
            raise RegistryValidationError("'errors' must be a list")

        entries: Dict[str, ErrorEntry] = {}
        for index, raw in enumerate(raw_entries):
            entry = _parse_entry(index, raw)
            if entry.code in entries:
                raise RegistryValidationError(f"Duplicate code: {entry.code}")
            entries[entry.code] = entry

        self._entries = entries
        self.schema_version = int(data.get("schema_version", 0))
        logger.info(
            "error_registry_loaded",
            extra={"count": len(entries), "schema_version": self.schema_version, "path": str(source)},
        )

    def ensure_loaded(self) -> None:
        if self._entries:
            return
        with self._lock:
            if not self._entries:
                self.load()

    def get(self, code: str) -> Optional[ErrorEntry]:
        return self._entries.get(code)

    def lookup(self, code: str) -> ErrorEntry:
        try:
            return self._entries[code]
        except KeyError:
            raise KeyError(f"Unknown error code: {code!r}") from None

    def all_codes(self) -> List[str]:
        return sorted(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


error_registry = ErrorRegistry()
