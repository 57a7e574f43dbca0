"""Give a class a field of another class's type."""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Set, Tuple

from ..edits import TextEdit
from ..symbols.index import ProjectIndex
from ..symbols.model import TypeDecl
from ..visibility import Visibility
from .imports import ImportPlanner


def _pascal_to_snake(name: str) -> str:
    """Convert PascalCase to snake_case (e.g. TaxService → tax_service)."""
    s = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    s = re.sub(r"([a-z\d])([A-Z])", r"\1_\2", s)
    return s.lower()


class FieldInjector:
    """Plan field declarations so that classes can reach relocated code.

    Injection is idempotent per ``(owner, field type)``: the first request
    either finds an existing field of that type or plans a new one, and every
    later request reuses that answer.  Nothing is written until the planned
    :attr:`edits` are applied.
    """

    def __init__(
        self, index: ProjectIndex, visibility: Visibility, imports: ImportPlanner
    ) -> None:
        self._index = index
        self._visibility = visibility
        self._imports = imports
        self._fields: Dict[Tuple[str, str], str] = {}
        self._reserved: Dict[str, Set[str]] = {}
        self.edits: List[TextEdit] = []
        # (owner qname, field name) of every field this injector created.
        self.injected: List[Tuple[str, str]] = []

    def field_name(self, owner: str, field_type: str) -> Optional[str]:
        """Return the field of *owner* holding a *field_type*, once injected or found."""
        return self._fields.get((owner, field_type))

    def reserve(self, owner: str, name: str) -> None:
        """Keep *name* free in *owner* (it is about to be taken by a moved method)."""
        self._reserved.setdefault(owner, set()).add(name)

    def inject_field_if_needed(self, owner: str, field_type: str) -> bool:
        """Ensure *owner* has a field of *field_type*; True if one was created.

        Returns False (and plans nothing) when *owner* already declares a
        field of that type, when an earlier call handled the same pair, when
        either class is unknown, or when *owner* has a one-line body that a
        declaration cannot be added to.
        """
        key = (owner, field_type)
        if key in self._fields:
            return False
        decl = self._index.types.get(owner)
        type_decl = self._index.types.get(field_type)
        if decl is None or type_decl is None:
            return False
        existing = self._index.field_of_type(owner, field_type)
        if existing is not None:
            self._fields[key] = existing.name
            return False
        if decl.body_start_line is None:
            return False
        type_name = self._imports.name_for_type(decl.path, field_type)
        if type_name is None:
            return False
        if self._defined_later(decl, type_decl):
            type_name = f'"{type_name}"'

        annotation = type_name
        if self._visibility.is_final:
            if not self._imports.require(
                decl.path, "Final", "from typing import Final", "typing.Final"
            ):
                return False
            annotation = f"Final[{type_name}]"
        name = self._free_name(decl, _pascal_to_snake(type_decl.name))
        text = f"{decl.body_indent}{name}: {annotation}"
        if decl.is_record:
            text += " = None"
        line = self._insert_line(decl)
        text += "\n"
        if line in {m.start_line for m in decl.methods}:
            text += "\n"
        self.edits.append(TextEdit.insert_lines(decl.path, line, text))
        self._fields[key] = name
        self._reserved.setdefault(owner, set()).add(name)
        self.injected.append((owner, name))
        return True

    def _defined_later(self, decl: TypeDecl, type_decl: TypeDecl) -> bool:
        """True when a class body annotation naming *type_decl* would run before it exists."""
        if type_decl.module != decl.module or type_decl.start_line < decl.start_line:
            return False
        return not self._index.modules[decl.module].postpones_annotations

    def _free_name(self, decl: TypeDecl, base: str) -> str:
        base = self._visibility.apply_to_name(base)
        reserved = self._reserved.get(decl.qname, set())
        candidate, n = base, 2
        while candidate in reserved or self._index.has_member(decl.qname, candidate):
            candidate = f"{base}_{n}"
            n += 1
        return candidate

    def _insert_line(self, decl: TypeDecl) -> int:
        """After the last instance field, else after the docstring, else at the top."""
        instance_fields = [f for f in decl.fields if f.in_body and not f.is_static]
        if instance_fields:
            return max(f.end_line for f in instance_fields) + 1
        if decl.docstring_end_line is not None:
            return decl.docstring_end_line + 1
        starts = [m.start_line for m in decl.methods]
        starts += [f.start_line for f in decl.fields if f.in_body]
        return min([decl.body_start_line] + starts)
