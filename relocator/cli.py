"""CLI entry point: parse arguments, drive the engine, report to stdout."""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from .config import load_config
from .engine import run_move
from .errors import RelocatorError
from .report import MoveReport


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        self.print_usage(sys.stderr)
        print(f"relocator: {message}", file=sys.stderr)
        sys.exit(1)


def _build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="relocator",
        description="Move a method and the helpers only it uses to another class.",
    )
    parser.add_argument("method", metavar="METHOD", help="module.Class.method to move")
    parser.add_argument("target", metavar="TARGET", help="module.Class to move it to")
    parser.add_argument("--root", default=None, help="project root (default: cwd)")
    parser.add_argument(
        "--visibility",
        default=None,
        help='policy for injected fields, e.g. "private final" or "public"',
    )
    parser.add_argument(
        "--dry-run", action="store_true", help="compute the move without writing files"
    )
    parser.add_argument("--diff", action="store_true", help="print the unified diff")
    parser.add_argument(
        "--no-narrow",
        action="store_true",
        help="keep the names of moved helpers instead of making them private",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = _build_parser().parse_args(argv)
    root = Path(args.root) if args.root else Path.cwd()
    config = load_config(root)
    if args.visibility is not None:
        config.field_visibility = args.visibility
    if args.no_narrow:
        config.narrow_helpers = False

    report = MoveReport()
    try:
        for message in run_move(
            args.method,
            args.target,
            root=root,
            config=config,
            dry_run=args.dry_run,
            report=report,
        ):
            print(message)
    except RelocatorError as exc:
        print(f"relocator: {exc}", file=sys.stderr)
        sys.exit(1)
    if args.diff and report.diff:
        print(report.diff, end="")
    for line in report.format_summary():
        print(line)
