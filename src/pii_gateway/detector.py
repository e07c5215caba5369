"""PII detector — layered scan with conflict resolution.

Layer 1: Fast regex patterns (emails, phones, SSNs, IPs, etc.)
Layer 2: Presidio NER (names, locations, ...)
Layer 3: Custom scanners (user-provided callables)

All layers feed one conflict-resolution pass, so a regex EMAIL_ADDRESS and
a Presidio EMAIL_ADDRESS on the same value collapse into one entity.

Usage:
    detector = PIIDetector(DetectorConfig(use_presidio=False))
    result = detector.detect([{"role": "user", "content": "I'm bob@x.com"}])
    result.has_pii            # True
    result.new_entities[0]    # EntityMatch(entity_type="EMAIL_ADDRESS", ...)
"""

from __future__ import annotations
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Callable

from .conflicts import resolve_conflicts
from .patterns import scan_regex
from .types import EntityMatch, PIIDetectionResult
from .vault import Vault

logger = logging.getLogger(__name__)


@dataclass
class DetectorConfig:
    """Configuration for the PIIDetector."""
    use_presidio: bool = True         # enable Layer 2 (NER)
    language: str = "en"
    supported_languages: list[str] = field(default_factory=lambda: ["en"])
    score_threshold: float = 0.35     # minimum confidence, all layers
    presidio_entities: list[str] | None = None  # None = defaults
    custom_scanners: list[Callable[[str], list[EntityMatch]]] = field(default_factory=list)
    # Entity types to always skip (e.g. don't mask dates)
    skip_types: set[str] = field(default_factory=set)
    # Allow-list: values that should NEVER be masked
    allow_list: set[str] = field(default_factory=set)
    scan_roles: tuple[str, ...] = ("system", "user", "assistant")


class PIIDetector:
    """Layered PII detector.  Reusable across requests."""

    def __init__(self, config: DetectorConfig | None = None) -> None:
        self.config = config or DetectorConfig()

    def resolve_language(self) -> tuple[str, bool]:
        """Return ``(language, fell_back)`` for the configured language."""
        supported = self.config.supported_languages
        if not supported or self.config.language in supported:
            return self.config.language, False
        logger.warning(
            "Language %r not supported, falling back to %r",
            self.config.language, supported[0],
        )
        return supported[0], True

    def scan(self, text: str, *, language: str | None = None) -> list[EntityMatch]:
        """Detect PII in one text.  Returns resolved entities sorted by start."""
        if not text:
            return []
        language = language or self.config.language
        all_matches: list[EntityMatch] = []

        # --- Layer 1: Regex (fast, deterministic) ---
        all_matches.extend(scan_regex(text))

        # --- Layer 2: Presidio NER (if enabled) ---
        if self.config.use_presidio:
            from .presidio_layer import scan_presidio
            all_matches.extend(scan_presidio(
                text,
                language=language,
                entities=self.config.presidio_entities,
                score_threshold=self.config.score_threshold,
            ))

        # --- Layer 3: Custom scanners ---
        for scanner in self.config.custom_scanners:
            all_matches.extend(scanner(text))

        # --- Filter ---
        filtered = [
            m for m in all_matches
            if m.entity_type not in self.config.skip_types
            and text[m.start:m.end] not in self.config.allow_list
            and m.score >= self.config.score_threshold
        ]

        # --- Resolve overlaps; merged spans need their text re-read ---
        resolved = resolve_conflicts(filtered)
        return sorted(
            (replace(m, text=text[m.start:m.end]) for m in resolved),
            key=lambda m: m.start,
        )

    def detect(self, messages: list[dict], vault: Vault | None = None) -> PIIDetectionResult:
        """Scan OpenAI-format messages.

        ``new_entities`` excludes values the vault already holds, i.e. PII
        that was masked in an earlier turn of the same conversation.
        """
        started = time.perf_counter()
        language, fell_back = self.resolve_language()

        by_message: list[list[EntityMatch]] = []
        for msg in messages:
            content = msg.get("content")
            if msg.get("role") in self.config.scan_roles and isinstance(content, str):
                by_message.append(self.scan(content, language=language))
            else:
                by_message.append([])

        found = [e for entities in by_message for e in entities]
        new = [e for e in found if vault is None or not vault.knows_value(e.text)]
        elapsed_ms = (time.perf_counter() - started) * 1000

        logger.debug("PII scan: %d entities (%d new) in %.1fms", len(found), len(new), elapsed_ms)
        return PIIDetectionResult(
            has_pii=bool(found),
            new_entities=new,
            entities_by_message=by_message,
            language=language,
            language_fallback=fell_back,
            scan_time_ms=elapsed_ms,
        )
