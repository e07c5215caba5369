"""Conflict resolution for overlapping detections.

Follows Presidio's anonymizer-engine approach for scored PII entities:

  Phase 1: merge overlapping entities of the same type (widen the span,
           keep the highest score)
  Phase 2: across types, drop entities that duplicate or sit inside an
           already-kept one; on identical spans the higher score wins

Secrets carry no score, so they use a stricter greedy pass instead: by
start, longer first, and any overlap with the last kept span drops the
later one.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Iterable, Protocol, TypeVar

from .errors import InvalidSpanError
from .intervals import Interval, group_by, is_contained_in, merge_overlapping


class ScoredEntity(Interval, Protocol):
    @property
    def score(self) -> float: ...
    @property
    def entity_type(self) -> str: ...


E = TypeVar("E", bound=ScoredEntity)
S = TypeVar("S", bound=Interval)


def _check_spans(spans: Iterable[Interval]) -> None:
    for span in spans:
        if span.start >= span.end:
            raise InvalidSpanError(span)


def _widen(a: E, b: E) -> E:
    return replace(
        a,
        start=min(a.start, b.start),
        end=max(a.end, b.end),
        score=max(a.score, b.score),
    )


def _remove_conflicting(entities: list[E]) -> list[E]:
    if len(entities) <= 1:
        return list(entities)

    ordered = sorted(entities, key=lambda e: (e.start, e.end, -e.score))
    kept: list[E] = []
    for entity in ordered:
        # is_contained_in also covers the identical-span case
        if not any(is_contained_in(entity, k) for k in kept):
            kept.append(entity)
    return kept


def resolve_conflicts(entities: list[E]) -> list[E]:
    """Resolve overlapping scored entities into a non-overlapping-by-containment set.

    Entities must be dataclass instances (merged spans are built with
    ``dataclasses.replace``).  The input list is not modified.

    Raises:
        InvalidSpanError: if any entity has ``start >= end``.
    """
    _check_spans(entities)
    if len(entities) <= 1:
        return list(entities)

    merged: list[E] = []
    for group in group_by(entities, lambda e: e.entity_type).values():
        merged.extend(merge_overlapping(group, _widen))

    return _remove_conflicting(merged)


def resolve_conflicts_simple(spans: list[S]) -> list[S]:
    """Greedy overlap removal for unscored spans (secrets).

    Spans touching end-to-start are both kept; any real overlap drops the
    later span.

    Raises:
        InvalidSpanError: if any span has ``start >= end``.
    """
    _check_spans(spans)
    if len(spans) <= 1:
        return list(spans)

    ordered = sorted(spans, key=lambda s: (s.start, -(s.end - s.start)))
    result: list[S] = [ordered[0]]
    for current in ordered[1:]:
        if current.start >= result[-1].end:
            result.append(current)
    return result
