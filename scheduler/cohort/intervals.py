"""Set operations over half-open integer intervals [start, end)."""

from collections.abc import Iterable
from typing import NamedTuple


class Interval(NamedTuple):
    start: int
    end: int


class IntervalCount(NamedTuple):
    count: int
    interval: Interval


# Sorts before _START at the same instant, so back-to-back intervals never overlap.
_END = -1
_START = 1


def is_within(interval: tuple[int, int], t: int) -> bool:
    start, end = interval
    return start <= t < end


def contains(outer: tuple[int, int], inner: tuple[int, int]) -> bool:
    """Check if `inner` lies entirely within `outer`"""
    return outer[0] <= inner[0] and inner[1] <= outer[1]


def subtract(
    availability: Iterable[tuple[int, int]], blocked: Iterable[tuple[int, int]]
) -> list[Interval]:
    """Remove every blocked span from every availability interval.

    Each overlap leaves zero, one or two pieces of the original interval.
    The result is in derivation order, not sorted.
    """
    blocked = [Interval(*b) for b in blocked if b[1] > b[0]]
    result = []
    for interval in availability:
        pieces = [Interval(*interval)]
        for block in blocked:
            remaining = []
            for piece in pieces:
                if block.end <= piece.start or block.start >= piece.end:
                    remaining.append(piece)
                    continue
                if piece.start < block.start:
                    remaining.append(Interval(piece.start, block.start))
                if block.end < piece.end:
                    remaining.append(Interval(block.end, piece.end))
            pieces = remaining
        result.extend(pieces)
    return result


def flatten(intervals: Iterable[tuple[int, int]]) -> list[Interval]:
    """Sort one person's intervals and merge the ones that overlap or touch."""
    merged: list[Interval] = []
    for start, end in sorted(Interval(*i) for i in intervals):
        if end <= start:
            continue
        if merged and start <= merged[-1].end:
            merged[-1] = Interval(merged[-1].start, max(merged[-1].end, end))
        else:
            merged.append(Interval(start, end))
    return merged


def combine_with_counts(
    groups: Iterable[Iterable[tuple[int, int]]],
) -> list[IntervalCount]:
    """Sweep every group's intervals and report how many groups cover each span.

    Each group is flattened first, so one person's overlapping intervals count
    once. Returned spans are disjoint, sorted by start, have a positive count,
    and are maximal: neighbouring spans always have different counts.
    """
    events = []
    for group in groups:
        for start, end in flatten(group):
            events.append((start, _START))
            events.append((end, _END))
    events.sort()

    result: list[IntervalCount] = []
    count = 0
    prev_time = None
    for time, delta in events:
        if prev_time is not None and time > prev_time and count > 0:
            if (
                result
                and result[-1].count == count
                and result[-1].interval.end == prev_time
            ):
                result[-1] = IntervalCount(count, Interval(result[-1].interval.start, time))
            else:
                result.append(IntervalCount(count, Interval(prev_time, time)))
        count += delta
        prev_time = time
    return result
