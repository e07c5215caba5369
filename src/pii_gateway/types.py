"""Core types."""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Literal

Provider = Literal["upstream", "local"]
SecretsAction = Literal["block", "redact", "route_local"]


@dataclass(frozen=True, slots=True)
class EntityMatch:
    """A single detected PII entity."""
    entity_type: str       # e.g. "EMAIL_ADDRESS", "PERSON"
    start: int
    end: int
    score: float           # 0.0–1.0 confidence
    text: str = ""
    source: str = ""       # "regex" | "presidio" | "custom"


@dataclass(frozen=True, slots=True)
class SecretMatch:
    """Per-type tally of secrets found in a request."""
    type: str
    count: int


@dataclass(frozen=True, slots=True)
class SecretSpan:
    """One occurrence of a secret, as a redaction span."""
    start: int
    end: int
    type: str


@dataclass(slots=True)
class PIIDetectionResult:
    has_pii: bool
    new_entities: list[EntityMatch] = field(default_factory=list)
    entities_by_message: list[list[EntityMatch]] = field(default_factory=list)
    language: str = "en"
    language_fallback: bool = False
    scan_time_ms: float = 0.0


@dataclass(slots=True)
class SecretsDetectionResult:
    detected: bool
    matches: list[SecretMatch] = field(default_factory=list)
    redactions: list[SecretSpan] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class RouteDecision:
    provider: Provider
    reason: str


@dataclass(slots=True)
class MaskedMessage:
    """Result of masking a message."""
    text: str                                   # masked text with tokens
    entities: list[EntityMatch] = field(default_factory=list)
    token_map: dict[str, str] = field(default_factory=dict)  # token → original


@dataclass(frozen=True, slots=True)
class StreamChunkResult:
    """Output of one streaming unmask step."""
    output: str
    remaining_buffer: str
