from __future__ import annotations

from textwrap import dedent
from typing import Dict

from relocator.symbols.index import ProjectIndex
from relocator.workspace import Workspace


def _sources(**files: str) -> Dict[str, str]:
    """Map ``pkg__mod="..."`` keyword arguments to ``{"pkg/mod.py": dedented}``."""
    return {
        name.replace("__", "/") + ".py": dedent(text).lstrip("\n")
        for name, text in files.items()
    }


def _workspace(**files: str) -> Workspace:
    return Workspace(_sources(**files))


def _index(**files: str) -> ProjectIndex:
    return _workspace(**files).index()
