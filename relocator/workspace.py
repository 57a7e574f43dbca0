"""Load a project's sources and apply edit plans to them atomically."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

from .edits import EditPlan, apply_edits
from .errors import MoveError
from .symbols.index import ProjectIndex

# Directory names never loaded into a workspace (e.g. virtual environments).
_EXCLUDED_DIR_NAMES = frozenset(
    {".venv", "venv", "env", ".tox", "__pycache__", "node_modules", ".git"}
)


def file_to_module(path: str) -> str:
    """Convert a workspace-relative file path to a dotted Python module name."""
    module = str(Path(path).with_suffix("")).replace(os.sep, ".").replace("/", ".")
    if module == "__init__":
        return ""
    if module.endswith(".__init__"):
        module = module[: -len(".__init__")]
    return module


def _new_undefined_names(before_src: str, after_src: str) -> Set[str]:
    """Return the UndefinedName warnings present in after_src but not before_src.

    Compares pyflakes output before and after a move.  Pre-existing issues in
    the original source are ignored to avoid false positives.
    """
    import pyflakes.api
    import pyflakes.messages

    class _Collector:
        def __init__(self) -> None:
            self.names: set = set()

        def unexpectedError(self, filename, msg) -> None:  # pragma: no cover
            pass

        def syntaxError(
            self, filename, msg, lineno, offset, text
        ) -> None:  # pragma: no cover
            pass

        def flake(self, msg) -> None:
            if isinstance(msg, pyflakes.messages.UndefinedName):
                self.names.add(msg.message_args[0])

    try:
        before = _Collector()
        pyflakes.api.check(before_src, "<before>", reporter=before)
        after = _Collector()
        pyflakes.api.check(after_src, "<after>", reporter=after)
        return after.names - before.names
    except Exception:
        return set()


class Workspace:
    """The Python sources of one project, keyed by root-relative POSIX path.

    A workspace built without a *root* lives only in memory; committing a
    transaction then updates :attr:`sources` without touching the disk.
    """

    def __init__(self, sources: Dict[str, str], root: Optional[Path] = None) -> None:
        self.sources = dict(sources)
        self.root = root

    @classmethod
    def load(cls, root: Path, exclude_dirs: Iterable[str] = ()) -> "Workspace":
        """Read every ``*.py`` file under *root*, skipping excluded directories."""
        root = Path(root)
        excluded = _EXCLUDED_DIR_NAMES | set(exclude_dirs)
        sources: Dict[str, str] = {}
        for path in sorted(root.rglob("*.py")):
            rel = path.relative_to(root)
            if any(part in excluded for part in rel.parts[:-1]):
                continue
            try:
                sources[rel.as_posix()] = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
        return cls(sources, root)

    def module_names(self) -> Dict[str, str]:
        return {path: file_to_module(path) for path in self.sources}

    def index(self) -> ProjectIndex:
        return ProjectIndex.build(self.sources, self.module_names())

    def transaction(
        self, verify_undefined_names: bool = True, dry_run: bool = False
    ) -> "Transaction":
        return Transaction(self, verify_undefined_names, dry_run)

    def write(self, new_sources: Dict[str, str]) -> List[str]:
        """Store *new_sources* and write the files that changed; return their paths."""
        changed = [p for p, s in new_sources.items() if self.sources.get(p) != s]
        if self.root is not None:
            for path in changed:
                (self.root / path).write_text(new_sources[path], encoding="utf-8")
        self.sources.update({p: new_sources[p] for p in changed})
        return changed


class Transaction:
    """All-or-nothing application of edit plans to a :class:`Workspace`.

    Plans are applied to private working copies.  Leaving the ``with`` block
    normally verifies every changed file and commits them together; leaving
    it through an exception discards the working copies.
    """

    def __init__(
        self,
        workspace: Workspace,
        verify_undefined_names: bool = True,
        dry_run: bool = False,
    ) -> None:
        self.workspace = workspace
        self.verify_undefined_names = verify_undefined_names
        self.dry_run = dry_run
        self.original: Dict[str, str] = dict(workspace.sources)
        self.sources: Dict[str, str] = dict(workspace.sources)
        self.plans: List[EditPlan] = []
        self.committed = False

    def __enter__(self) -> "Transaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            self.sources = dict(self.original)
            self.plans = []
            return False
        self.verify()
        if not self.dry_run:
            self.workspace.write(self.sources)
            self.committed = True
        return False

    def apply(self, plan: EditPlan) -> None:
        if not len(plan):
            return
        self.sources = apply_edits(self.sources, plan)
        self.plans.append(plan)

    def index(self) -> ProjectIndex:
        return ProjectIndex.build(self.sources, self.workspace.module_names())

    def changed_files(self) -> List[str]:
        return [p for p, s in self.sources.items() if self.original.get(p) != s]

    def verify(self) -> None:
        """Raise MoveError if an edited file is not valid Python or gained undefined names."""
        for path in self.changed_files():
            source = self.sources[path]
            try:
                compile(source, path, "exec")
            except SyntaxError as exc:
                raise MoveError(f"{path}: output not valid Python: {exc}") from exc
            if self.verify_undefined_names:
                names = _new_undefined_names(self.original[path], source)
                if names:
                    raise MoveError(
                        f"{path}: move would introduce undefined names: "
                        + ", ".join(sorted(names))
                    )
