"""Sorted sets of half-open integer ranges, used to track byte regions of a file."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator


@dataclass(frozen=True)
class Range:
    """A half-open interval ``[start, start + length)``."""

    start: int
    length: int

    def end(self) -> int:
        """Return the first position after the range."""
        return self.start + self.length

    def __str__(self) -> str:
        return f"[{self.start}, {self.start + self.length - 1}]"


class RangeSet:
    """A normalised set of disjoint, non-touching ranges kept in ascending order."""

    def __init__(self, ranges: Iterable[Range] = ()) -> None:
        self._ranges: list[Range] = []
        for range_ in ranges:
            self.add_range(range_)

    def __str__(self) -> str:
        return "(" + "".join(str(range_) for range_ in self._ranges) + ")"

    def __repr__(self) -> str:
        return f"RangeSet({self._ranges!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RangeSet):
            return NotImplemented
        return self._ranges == other._ranges

    def __len__(self) -> int:
        """Total number of positions covered by the set."""
        return sum(range_.length for range_ in self._ranges)

    def __iter__(self) -> Iterator[Range]:
        return iter(self._ranges)

    def __getitem__(self, index: int) -> Range:
        return self._ranges[index]

    def __contains__(self, value: int) -> bool:
        for range_ in self._ranges:
            if value < range_.start:
                return False
            if value < range_.end():
                return True
        return False

    def is_empty(self) -> bool:
        return not self._ranges

    def copy(self) -> RangeSet:
        result = RangeSet()
        result._ranges = list(self._ranges)
        return result

    def contained_length_from_value(self, value: int) -> int:
        """Number of consecutive covered positions starting at ``value``."""
        for range_ in self._ranges:
            if value < range_.start:
                return 0
            if value < range_.end():
                return range_.end() - value
        return 0

    def contains_range_set(self, other: RangeSet) -> bool:
        return all(
            self.contained_length_from_value(range_.start) >= range_.length
            for range_ in other
        )

    def add_range(self, range_: Range) -> None:
        if range_.length == 0:
            return

        for index, existing in enumerate(self._ranges):
            if range_.end() < existing.start:
                self._ranges.insert(index, range_)
                return
            if range_.start <= existing.end() and existing.start <= range_.end():
                new_start = min(range_.start, existing.start)
                new_end = range_.end()
                stop = index
                while stop < len(self._ranges) and self._ranges[stop].start <= new_end:
                    new_end = max(new_end, self._ranges[stop].end())
                    stop += 1
                self._ranges[index:stop] = [Range(new_start, new_end - new_start)]
                return

        self._ranges.append(range_)

    def add_range_set(self, other: RangeSet) -> None:
        for range_ in list(other):
            self.add_range(range_)

    def union(self, other: RangeSet) -> RangeSet:
        result = self.copy()
        result.add_range_set(other)
        return result

    def subtract_range(self, range_: Range) -> None:
        if range_.length == 0:
            return

        for index, existing in enumerate(self._ranges):
            if range_.end() <= existing.start:
                return
            if range_.start <= existing.start < range_.end():
                stop = index
                while stop < len(self._ranges) and self._ranges[stop].end() <= range_.end():
                    stop += 1
                del self._ranges[index:stop]
                if index < len(self._ranges) and self._ranges[index].start < range_.end():
                    remaining = self._ranges[index]
                    self._ranges[index] = Range(
                        range_.end(), remaining.end() - range_.end()
                    )
                return
            if range_.end() < existing.end():
                self._ranges[index:index + 1] = [
                    Range(existing.start, range_.start - existing.start),
                    Range(range_.end(), existing.end() - range_.end()),
                ]
                return
            if range_.start < existing.end():
                self._ranges[index] = Range(existing.start, range_.start - existing.start)

    def subtract_range_set(self, other: RangeSet) -> None:
        for range_ in list(other):
            self.subtract_range(range_)

    def minus(self, other: RangeSet) -> RangeSet:
        result = self.copy()
        result.subtract_range_set(other)
        return result

    def intersection(self, other: RangeSet) -> RangeSet:
        result = RangeSet()
        mine = iter(self._ranges)
        theirs = iter(other._ranges)
        a = next(mine, None)
        b = next(theirs, None)
        while a is not None and b is not None:
            if a.end() <= b.start:
                a = next(mine, None)
            elif b.end() <= a.start:
                b = next(theirs, None)
            else:
                start = max(a.start, b.start)
                end = min(a.end(), b.end())
                result.add_range(Range(start, end - start))
                if a.end() <= b.end():
                    a = next(mine, None)
                else:
                    b = next(theirs, None)
        return result