"""Summary of a single relocator move."""

import difflib
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from unidiff import PatchSet


def unified_diff(before: Dict[str, str], after: Dict[str, str]) -> str:
    """Return a git-style unified diff of every file whose text changed."""
    chunks: List[str] = []
    for path in sorted(after):
        old = before.get(path, "")
        new = after[path]
        if old == new:
            continue
        chunks.extend(
            difflib.unified_diff(
                old.splitlines(keepends=True),
                new.splitlines(keepends=True),
                fromfile=f"a/{path}",
                tofile=f"b/{path}",
            )
        )
    text = "".join(line if line.endswith("\n") else line + "\n" for line in chunks)
    return text


@dataclass
class MoveReport:
    """Holds what one move did, for printing after the transaction commits."""

    root: str = ""
    source: str = ""
    target: str = ""

    moved: List[str] = field(default_factory=list)
    stayed: List[str] = field(default_factory=list)
    renamed: List[Tuple[str, str]] = field(default_factory=list)

    rewritten: int = 0
    fields_injected: List[str] = field(default_factory=list)
    fields_removed: List[str] = field(default_factory=list)
    imports_added: List[str] = field(default_factory=list)
    imports_removed: List[str] = field(default_factory=list)

    warnings: List[str] = field(default_factory=list)
    conflicts: List[str] = field(default_factory=list)

    # File and line tracking
    files_edited: List[str] = field(default_factory=list)
    lines_changed: int = 0
    diff: str = ""

    @property
    def helper_count(self) -> int:
        """Methods moved along with the root."""
        return max(len(self.moved) - 1, 0)

    def record_changes(self, before: Dict[str, str], after: Dict[str, str]) -> None:
        """Store the diff between *before* and *after* and count its changed lines."""
        self.diff = unified_diff(before, after)
        self.files_edited = []
        self.lines_changed = 0
        if not self.diff:
            return
        for patched_file in PatchSet.from_string(self.diff):
            self.files_edited.append(patched_file.path)
            self.lines_changed += patched_file.added + patched_file.removed

    def format_summary(self) -> List[str]:
        """Return a list of lines forming the human-readable move summary."""
        lines = ["--- relocator summary ---"]
        lines.append(f"moved: {self.root} -> {self.target}")
        lines.append(f"  helpers moved along: {self.helper_count}")
        if self.stayed:
            lines.append(
                f"  stayed in {self.source} ({len(self.stayed)}): "
                + ", ".join(self.stayed)
            )
            lines.append("    (still referenced from outside the moved group)")
        for old, new in self.renamed:
            lines.append(f"  renamed: {old} -> {new}")
        lines.append("edits:")
        lines.append(f"  call sites rewritten: {self.rewritten}")
        lines.append(f"  fields injected:      {len(self.fields_injected)}")
        lines.append(f"  fields removed:       {len(self.fields_removed)}")
        lines.append(f"  imports added:        {len(self.imports_added)}")
        lines.append(f"  imports removed:      {len(self.imports_removed)}")
        if self.warnings:
            lines.append(f"warnings ({len(self.warnings)}):")
            lines.extend(f"  {w}" for w in self.warnings)
        if self.conflicts:
            lines.append(f"conflicts, left unchanged ({len(self.conflicts)}):")
            lines.extend(f"  {c}" for c in self.conflicts)
        if self.files_edited:
            flist = ", ".join(self.files_edited)
            lines.append(f"files edited ({len(self.files_edited)}): {flist}")
        else:
            lines.append("files edited: none")
        lines.append(f"lines changed: {self.lines_changed}")
        return lines
