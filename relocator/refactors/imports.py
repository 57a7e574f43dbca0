"""Plan the imports a move needs and prune the ones it leaves unused."""

from __future__ import annotations

import ast
import sys
from typing import Dict, List, Optional, Set, Tuple

from ..edits import TextEdit
from ..symbols.index import ProjectIndex
from ..symbols.model import Binding


def unused_imports(source: str) -> Set[str]:
    """Return pyflakes' names for the imports of *source* it reports as unused.

    Names use pyflakes' own spelling: ``os.path``, ``pkg.mod.name``,
    ``pkg.mod.name as alias``, ``.sibling.name``.
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
            if isinstance(msg, pyflakes.messages.UnusedImport):
                self.names.add(msg.message_args[0])

    try:
        collector = _Collector()
        pyflakes.api.check(source, "<source>", reporter=collector)
        return collector.names
    except Exception:
        return set()


def _pyflakes_name(node: ast.stmt, alias: ast.alias) -> str:
    """Spell an imported alias the way pyflakes reports it."""
    if isinstance(node, ast.ImportFrom):
        module = "." * (node.level or 0) + (node.module or "")
        full = module + alias.name if module.endswith(".") else f"{module}.{alias.name}"
        if alias.asname and alias.asname != alias.name:
            return f"{full} as {alias.asname}"
        return full
    if alias.asname and alias.name.split(".")[-1] != alias.asname:
        return f"{alias.name} as {alias.asname}"
    return alias.name


def prune_imports(path: str, source: str, names: Set[str]) -> List[TextEdit]:
    """Return edits removing or narrowing the top-level imports listed in *names*.

    ``from __future__`` and star imports are always preserved.  Multi-name
    imports are narrowed to the names that stay rather than dropped
    wholesale.  Imports sharing a line with other statements are left alone.
    """
    if not names:
        return []
    try:
        tree = ast.parse(source)
    except SyntaxError:
        return []
    lines = source.splitlines(keepends=True)
    edits: List[TextEdit] = []
    removed: Set[int] = set()
    for node in tree.body:
        if not isinstance(node, (ast.Import, ast.ImportFrom)):
            continue
        if isinstance(node, ast.ImportFrom) and node.module == "__future__":
            continue
        if any(a.name == "*" for a in node.names):
            continue
        trailing = lines[node.end_lineno - 1][node.end_col_offset :].strip()
        if node.col_offset != 0 or (trailing and not trailing.startswith("#")):
            continue

        kept = [a for a in node.names if _pyflakes_name(node, a) not in names]
        if len(kept) == len(node.names):
            continue
        if not kept:
            edits.append(TextEdit.delete_lines(path, node.lineno, node.end_lineno))
            removed.update(range(node.lineno, node.end_lineno + 1))
            continue
        alias_strs = [f"{a.name} as {a.asname}" if a.asname else a.name for a in kept]
        if isinstance(node, ast.ImportFrom):
            level_dots = "." * (node.level or 0)
            module = node.module or ""
            new_line = f"from {level_dots}{module} import {', '.join(alias_strs)}\n"
        else:
            new_line = f"import {', '.join(alias_strs)}\n"
        edits.append(TextEdit.replace_lines(path, node.lineno, node.end_lineno, new_line))

    # Blank lines left at the top of the file go as well.
    line = 1
    while line <= len(lines) and (line in removed or not lines[line - 1].strip()):
        line += 1
    if removed & set(range(1, line)):
        for blank in range(1, line):
            if blank not in removed:
                edits.append(TextEdit.delete_lines(path, blank, blank))
    return edits


class ImportPlanner:
    """Collect the import statements that files must gain, one per bound name.

    A name already bound in a module is never imported again; asking for a
    name that the module (or an earlier request) binds to something else
    fails instead.
    """

    def __init__(self, index: ProjectIndex) -> None:
        self._index = index
        # path → local name → (statement, absolute target)
        self._planned: Dict[str, Dict[str, Tuple[str, str]]] = {}

    def require(self, path: str, local: str, statement: str, target: str) -> bool:
        """Make *local* denote *target* in the file at *path*; False on a clash."""
        index = self._index
        binding = index.by_path[path].bindings.get(local)
        if binding is not None:
            return index.canonical(binding.target) == index.canonical(target)
        planned = self._planned.setdefault(path, {})
        if local in planned:
            return planned[local][1] == target
        planned[local] = (statement, target)
        return True

    def require_binding(self, path: str, binding: Binding, defining_module: str) -> bool:
        """Recreate a module-level *binding* of *defining_module* in *path*."""
        if binding.kind == "defined":
            target = binding.target
        else:
            target = self._index.canonical(binding.target)
        return self.require(path, binding.local, binding.import_text(defining_module), target)

    def name_for_type(self, path: str, type_qname: str) -> Optional[str]:
        """Return an expression naming *type_qname* in *path*, importing it if needed."""
        index = self._index
        info = index.by_path[path]
        decl = index.types[type_qname]
        if decl.module == info.module:
            return decl.name
        for local, binding in info.bindings.items():
            if binding.kind != "defined" and index.canonical(binding.target) == type_qname:
                return local
        statement = f"from {decl.module} import {decl.name}"
        if self.require(path, decl.name, statement, type_qname):
            return decl.name
        return None

    def added(self) -> List[Tuple[str, str]]:
        return [
            (path, statement)
            for path, planned in self._planned.items()
            for statement, _ in planned.values()
        ]

    def _is_stdlib(self, dotted: str) -> bool:
        root = dotted.split(".")[0]
        return root in sys.stdlib_module_names and root not in self._index.modules

    def edits(self) -> List[TextEdit]:
        """Insert the planned imports, standard library ones ahead of the rest."""
        edits = []
        for path, planned in self._planned.items():
            if not planned:
                continue
            info = self._index.by_path[path]
            stdlib = [s for s, target in planned.values() if self._is_stdlib(target)]
            others = [s for s, target in planned.values() if not self._is_stdlib(target)]
            if not info.anchor_is_import:
                text = "".join(f"{statement}\n" for statement in stdlib + others)
                # Keep blank lines between the new imports and the docstring
                # or code they sit next to.
                if info.import_anchor_line == 0:
                    text += "\n\n"
                else:
                    text = "\n" + text
                edits.append(TextEdit.insert_lines(path, info.import_anchor_line + 1, text))
                continue
            if stdlib:
                ends = [end for _, end, root in info.import_lines if self._is_stdlib(root)]
                line = max(ends) + 1 if ends else info.import_lines[0][0]
                text = "".join(f"{statement}\n" for statement in stdlib)
                edits.append(TextEdit.insert_lines(path, line, text))
            if others:
                text = "".join(f"{statement}\n" for statement in others)
                edits.append(TextEdit.insert_lines(path, info.import_anchor_line + 1, text))
        return edits
