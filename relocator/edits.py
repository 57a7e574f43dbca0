"""Immutable edit plans and their atomic application to in-memory sources."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Tuple

from .errors import EditConflictError

# (line, column): line is 1-based, column is a 0-based character offset.
Position = Tuple[int, int]


@dataclass(frozen=True)
class TextEdit:
    """Replace the text between *start* and *end* (exclusive) with *text*.

    An edit with ``start == end`` is an insertion; an edit with empty *text*
    is a deletion.
    """

    path: str
    start: Position
    end: Position
    text: str

    @classmethod
    def insert_lines(cls, path: str, line: int, text: str) -> "TextEdit":
        """Insert *text* (whole lines) before line *line*."""
        return cls(path, (line, 0), (line, 0), text)

    @classmethod
    def replace_lines(cls, path: str, first: int, last: int, text: str) -> "TextEdit":
        """Replace lines *first*..*last* (inclusive) with *text*."""
        return cls(path, (first, 0), (last + 1, 0), text)

    @classmethod
    def delete_lines(cls, path: str, first: int, last: int) -> "TextEdit":
        return cls.replace_lines(path, first, last, "")

    def contains(self, other: "TextEdit") -> bool:
        """Return True if *other* lies entirely inside this edit's range."""
        return (
            self.path == other.path
            and self.start <= other.start
            and other.end <= self.end
        )

    def overlaps(self, other: "TextEdit") -> bool:
        if self.path != other.path:
            return False
        return self.start < other.end and other.start < self.end


@dataclass(frozen=True)
class EditPlan:
    """An ordered, immutable batch of edits produced by one read pass."""

    edits: Tuple[TextEdit, ...] = ()

    def __iter__(self) -> Iterator[TextEdit]:
        return iter(self.edits)

    def __len__(self) -> int:
        return len(self.edits)

    def extend(self, more: Iterable[TextEdit]) -> "EditPlan":
        return EditPlan(self.edits + tuple(more))

    def paths(self) -> List[str]:
        seen: Dict[str, None] = {}
        for edit in self.edits:
            seen.setdefault(edit.path, None)
        return list(seen)


def _line_starts(source: str) -> List[int]:
    """Return the offset at which each line of *source* begins."""
    starts = [0]
    for i, ch in enumerate(source):
        if ch == "\n":
            starts.append(i + 1)
    return starts


def _offset(starts: List[int], source: str, pos: Position, path: str) -> int:
    line, column = pos
    if line == len(starts) + 1 and column == 0:
        return len(source)
    if line < 1 or line > len(starts):
        raise EditConflictError(f"{path}: edit position {pos} is outside the file")
    offset = starts[line - 1] + column
    if offset > len(source):
        raise EditConflictError(f"{path}: edit position {pos} is outside the file")
    return offset


def apply_to_text(source: str, edits: List[TextEdit], path: str = "<text>") -> str:
    """Apply *edits* (all for one file) to *source* and return the result.

    Edits are applied bottom-up so earlier positions stay valid.  Insertions
    sharing a position keep their plan order, and an insertion at the start
    of a replaced range lands in front of the replacement.
    """
    if not edits:
        return source
    if not source.endswith("\n") and any(
        e.start[0] > source.count("\n") for e in edits
    ):
        source += "\n"
    starts = _line_starts(source)
    spans = []
    for index, edit in enumerate(edits):
        begin = _offset(starts, source, edit.start, path)
        end = _offset(starts, source, edit.end, path)
        if end < begin:
            raise EditConflictError(f"{path}: edit ends before it starts: {edit}")
        spans.append((begin, end, index, edit.text))

    furthest = -1
    for begin, end, _, _ in sorted(spans, key=lambda s: (s[0], s[1])):
        if begin < furthest:
            raise EditConflictError(f"{path}: overlapping edits at offset {begin}")
        if end > begin:
            furthest = max(furthest, end)

    result = source
    for begin, end, _, text in sorted(spans, key=lambda s: (s[0], s[1], s[2]), reverse=True):
        result = result[:begin] + text + result[end:]
    return result


def apply_edits(sources: Dict[str, str], plan: EditPlan) -> Dict[str, str]:
    """Return a copy of *sources* with every edit of *plan* applied.

    Raises :class:`EditConflictError` if an edit targets an unknown file or
    two edits overlap; *sources* itself is never modified.
    """
    grouped: Dict[str, List[TextEdit]] = {}
    for edit in plan:
        if edit.path not in sources:
            raise EditConflictError(f"edit targets unknown file {edit.path!r}")
        grouped.setdefault(edit.path, []).append(edit)

    result = dict(sources)
    for path, edits in grouped.items():
        result[path] = apply_to_text(sources[path], edits, path)
    return result
