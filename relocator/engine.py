"""Load a project, run one move, and yield messages about it."""

from pathlib import Path
from typing import Generator, Optional

from .config import RelocatorConfig, load_config
from .errors import UnknownSymbolError
from .refactors.mover import MethodMover
from .report import MoveReport
from .workspace import Workspace


def run_move(
    method: str,
    target: str,
    root: Optional[Path] = None,
    config: Optional[RelocatorConfig] = None,
    field_visibility: Optional[str] = None,
    dry_run: bool = False,
    report: Optional[MoveReport] = None,
) -> Generator[str, None, None]:
    """Move *method* (``module.Class.method``) to *target* (``module.Class``).

    Yields one message per moved method, method left behind, warning and
    conflict.  Counters and the diff land in *report* when one is given.
    """
    root = Path(root) if root is not None else Path.cwd()
    if config is None:
        config = load_config(root)
    _report = report if report is not None else MoveReport()

    source, _, name = method.rpartition(".")
    if not source or not name:
        raise UnknownSymbolError(f"expected module.Class.method, got {method!r}")

    workspace = Workspace.load(root, config.exclude_dirs)
    mover = MethodMover(workspace, config, dry_run=dry_run, report=_report)
    moved = mover.move_method(method, source, target, field_visibility)

    for qname in _report.moved:
        if qname in moved:
            yield f"MOVED {qname} -> {_report.target}"
    for qname in _report.stayed:
        yield f"STAYED {qname}: still referenced from outside the moved group"
    for old, new in _report.renamed:
        yield f"RENAMED {old} -> {new}"
    for warning in _report.warnings:
        yield f"WARNING {warning}"
    for conflict in _report.conflicts:
        yield f"CONFLICT {conflict}"
    if dry_run:
        yield "dry run: no files written"
