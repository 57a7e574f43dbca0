"""Load relocator configuration from pyproject.toml and optional .relocator.toml."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


@dataclass
class RelocatorConfig:
    """Runtime configuration for relocator."""

    # Policy for fields injected into a class so it can reach moved code.
    # One of "private final", "private", "public final" or "public".
    field_visibility: str = "private final"

    # Rename moved helpers that are only called from inside the moved group
    # to a private name (leading underscore).
    narrow_helpers: bool = True

    # Reject the move when an edited file gains pyflakes UndefinedName
    # warnings that the original file did not have.
    verify_undefined_names: bool = True

    # Remove imports that became unused because of the move.
    optimize_imports: bool = True

    # Extra directory names skipped when loading the project, on top of the
    # built-in list (.venv, venv, env, .tox, __pycache__, node_modules, .git).
    exclude_dirs: List[str] = field(default_factory=list)


def _read_toml(path: Path) -> dict:
    """Read a TOML file; return empty dict if missing or unparseable."""
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except Exception:
        return {}


def _apply(cfg: RelocatorConfig, d: dict) -> None:
    """Overlay dict values onto cfg, ignoring unknown keys."""
    valid = set(cfg.__dataclass_fields__)
    for key, val in d.items():
        if key in valid:
            setattr(cfg, key, val)


def load_config(project_root: Optional[Path] = None) -> RelocatorConfig:
    """Load config from pyproject.toml [tool.relocator], then .relocator.toml."""
    if project_root is None:
        project_root = Path.cwd()
    cfg = RelocatorConfig()
    pyproject = _read_toml(project_root / "pyproject.toml")
    _apply(cfg, pyproject.get("tool", {}).get("relocator", {}))
    local = _read_toml(project_root / ".relocator.toml")
    _apply(cfg, local)
    return cfg
