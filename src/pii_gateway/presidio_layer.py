"""Layer 2 — Presidio NER-based detection for unstructured PII.

Catches names, organizations, locations, and other entities that
regex can't reliably detect. Uses spaCy under the hood.
"""

from __future__ import annotations
from typing import TYPE_CHECKING

from .types import EntityMatch

if TYPE_CHECKING:
    from presidio_analyzer import AnalyzerEngine

# Lazy singletons: spaCy loads on first use, one engine per language
_engines: dict[str, AnalyzerEngine] = {}


def _get_engine(language: str = "en") -> AnalyzerEngine:
    """Lazy-init the Presidio analyzer engine for a language."""
    engine = _engines.get(language)
    if engine is None:
        from presidio_analyzer import AnalyzerEngine
        from presidio_analyzer.nlp_engine import NlpEngineProvider

        model = "en_core_web_sm" if language == "en" else f"{language}_core_news_sm"
        provider = NlpEngineProvider(nlp_configuration={
            "nlp_engine_name": "spacy",
            "models": [{"lang_code": language, "model_name": model}],
        })
        engine = AnalyzerEngine(nlp_engine=provider.create_engine(), supported_languages=[language])
        _engines[language] = engine
    return engine


# Default entity types to detect (Presidio's full set is much larger)
DEFAULT_ENTITIES = [
    "PERSON",
    "LOCATION",
    "EMAIL_ADDRESS",
    "PHONE_NUMBER",
    "CREDIT_CARD",
    "IBAN_CODE",
    "IP_ADDRESS",
    "US_SSN",
    "NRP",           # nationality, religious, political group
    "MEDICAL_LICENSE",
]


def scan_presidio(
    text: str,
    *,
    language: str = "en",
    entities: list[str] | None = None,
    score_threshold: float = 0.35,
) -> list[EntityMatch]:
    """Run Presidio analysis on text.

    Args:
        text: Input text to scan.
        language: ISO language code.
        entities: Entity types to detect (None = DEFAULT_ENTITIES).
        score_threshold: Minimum confidence score.
    """
    engine = _get_engine(language)
    results = engine.analyze(
        text=text,
        language=language,
        entities=entities or DEFAULT_ENTITIES,
        score_threshold=score_threshold,
    )
    return [
        EntityMatch(
            entity_type=r.entity_type,
            start=r.start,
            end=r.end,
            score=r.score,
            text=text[r.start:r.end],
            source="presidio",
        )
        for r in results
        if r.start < r.end
    ]
