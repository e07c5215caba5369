"""Interval geometry over half-open ``[start, end)`` spans.

Anything with integer ``start`` and ``end`` attributes qualifies; entity
matches and secret spans both do.
"""

from __future__ import annotations
from typing import Callable, Hashable, Iterable, Protocol, TypeVar


class Interval(Protocol):
    @property
    def start(self) -> int: ...
    @property
    def end(self) -> int: ...


T = TypeVar("T")
S = TypeVar("S", bound=Interval)
K = TypeVar("K", bound=Hashable)


def overlaps(a: Interval, b: Interval) -> bool:
    return a.start < b.end and b.start < a.end


def is_contained_in(a: Interval, b: Interval) -> bool:
    """True if ``a`` lies within ``b`` (equal spans count as contained)."""
    return b.start <= a.start and b.end >= a.end


def group_by(items: Iterable[T], key: Callable[[T], K]) -> dict[K, list[T]]:
    """Group items by key, preserving first-seen key order."""
    groups: dict[K, list[T]] = {}
    for item in items:
        groups.setdefault(key(item), []).append(item)
    return groups


def merge_overlapping(intervals: list[S], merge: Callable[[S, S], S]) -> list[S]:
    """Merge overlapping intervals with the given strategy.

    Sorted by start; each interval overlapping the last accepted one is
    folded into it via ``merge(last, current)``.  Returns a new list.
    """
    if len(intervals) <= 1:
        return list(intervals)

    ordered = sorted(intervals, key=lambda i: i.start)
    result: list[S] = [ordered[0]]
    for current in ordered[1:]:
        if overlaps(current, result[-1]):
            result[-1] = merge(result[-1], current)
        else:
            result.append(current)
    return result
