"""Rewrite member references so they still reach methods after a move."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from ..analysis.references import ClassifiedReference
from ..edits import TextEdit
from ..symbols.index import ProjectIndex
from ..symbols.model import CallerScope, Reference
from .field_injector import FieldInjector
from .imports import ImportPlanner

_STATIC_KINDS = ("staticmethod", "classmethod")


class ReferenceRewriter:
    """Collect the edits that re-point references for one move.

    Edits inside methods that are about to move are kept per method in
    :attr:`body_edits` (they travel with the copied text); all other edits go
    to :attr:`edits`.  Sites that cannot be rewritten mechanically are listed
    in :attr:`conflicts` and left untouched.
    """

    def __init__(
        self,
        index: ProjectIndex,
        injector: FieldInjector,
        imports: ImportPlanner,
        source: str,
        target: str,
    ) -> None:
        self._index = index
        self._injector = injector
        self._imports = imports
        self._source = index.types[source]
        self._target = index.types[target]
        self.edits: List[TextEdit] = []
        self.body_edits: Dict[str, List[TextEdit]] = {}
        self.conflicts: List[str] = []
        self.warnings: List[str] = []
        self.rewritten = 0

    # ------------------------------------------------------------------ #
    # Helpers                                                             #
    # ------------------------------------------------------------------ #

    def _conflict(self, ref: Reference, reason: str) -> None:
        self.conflicts.append(f"{ref.describe()}: {reason}")

    def _scope(self, ref: Reference) -> Optional[CallerScope]:
        return self._index.callers.get(ref.caller) if ref.caller is not None else None

    def _is_static(self, method_qname: str) -> bool:
        return self._index.methods[method_qname].kind in _STATIC_KINDS

    def _add_body_edit(self, method: str, edit: TextEdit) -> bool:
        """Record *edit* for a moving method unless it overlaps an earlier one."""
        edits = self.body_edits.setdefault(method, [])
        for other in edits:
            if other.overlaps(edit) or other.contains(edit) or edit.contains(other):
                return False
        edits.append(edit)
        return True

    def _covered(self, method: str, ref: Reference) -> bool:
        span = self._replace(ref, "")
        return any(e.overlaps(span) or e.contains(span) for e in self.body_edits.get(method, []))

    def _replace(self, ref: Reference, text: str) -> TextEdit:
        return TextEdit(ref.path, ref.start, ref.end, text)

    def _rename(self, ref: Reference, new_name: str) -> TextEdit:
        return TextEdit(ref.path, ref.name_start, ref.end, new_name)

    def _back_reference(self) -> Optional[str]:
        """Field of the target class pointing back at an instance of the source class."""
        self._injector.inject_field_if_needed(self._target.qname, self._source.qname)
        return self._injector.field_name(self._target.qname, self._source.qname)

    def _source_class_name(self) -> Optional[str]:
        """Name of the source class as seen from the target class's module."""
        return self._imports.name_for_type(self._target.path, self._source.qname)

    def _source_handle(self, scope: CallerScope) -> Optional[str]:
        """Expression reaching the source side from a moved method's body."""
        if scope.kind == "classmethod":
            return self._source_class_name()
        field = self._back_reference()
        if field is None:
            return None
        return f"{scope.receiver}.{field}"

    # ------------------------------------------------------------------ #
    # References into moving methods                                      #
    # ------------------------------------------------------------------ #

    def rewrite_for_caller_staying(self, cref: ClassifiedReference, new_name: str) -> None:
        """Point a reference from code that stays behind at the method's new home.

        Callers inside the target class call the method through their own
        receiver; other callers go through a field of the target type, which
        is injected into their class when missing.  Static and class methods
        are reached through the target class name instead.
        """
        ref = cref.ref
        text = self._staying_caller_text(cref, new_name)
        if text is not None:
            self.edits.append(self._replace(ref, text))
            self.rewritten += 1

    def _staying_caller_text(self, cref: ClassifiedReference, new_name: str) -> Optional[str]:
        ref = cref.ref
        scope = self._scope(ref)
        static_callee = self._is_static(cref.callee)
        if not ref.rewritable:
            self._conflict(ref, "receiver is not a plain name")
            return None
        if cref.receiver_is_class and not static_callee:
            self._conflict(ref, "instance method called through its class")
            return None
        if cref.caller_in_target and scope is not None and scope.receiver is not None:
            if scope.kind == "classmethod" and not static_callee:
                self._conflict(ref, "class method cannot reach an instance method")
                return None
            return f"{scope.receiver}.{new_name}"
        if static_callee:
            type_name = self._imports.name_for_type(ref.path, self._target.qname)
            if type_name is None:
                self._conflict(ref, f"name {self._target.name!r} is taken in {ref.path}")
                return None
            return f"{type_name}.{new_name}"
        if (
            scope is None
            or scope.owner is None
            or scope.receiver is None
            or scope.kind == "classmethod"
        ):
            self._conflict(ref, "caller has no instance to hold a field")
            return None
        self._injector.inject_field_if_needed(scope.owner, self._target.qname)
        field = self._injector.field_name(scope.owner, self._target.qname)
        if field is None:
            self._conflict(ref, "could not add a field to the calling class")
            return None
        return f"{scope.receiver}.{field}.{new_name}"

    def rewrite_for_caller_moving(self, cref: ClassifiedReference, new_name: str) -> None:
        """Make a reference between two moving methods a direct call."""
        ref = cref.ref
        scope = self._scope(ref)
        if ref.qualifier is None:
            if new_name != ref.name:
                self._add_body_edit(ref.caller, self._rename(ref, new_name))
            return
        if not ref.rewritable:
            self._conflict(ref, "receiver is not a plain name")
            return
        if scope.receiver is not None and (
            scope.kind != "classmethod" or self._is_static(cref.callee)
        ):
            text = f"{scope.receiver}.{new_name}"
        elif self._is_static(cref.callee):
            text = f"{self._target.name}.{new_name}"
        else:
            self._conflict(ref, "caller has no instance receiver")
            return
        if self._add_body_edit(ref.caller, self._replace(ref, text)):
            self.rewritten += 1

    # ------------------------------------------------------------------ #
    # References out of moving methods                                    #
    # ------------------------------------------------------------------ #

    def rewrite_stay_call_from_moved(self, cref: ClassifiedReference, new_name: str) -> None:
        """Route a moved method's call to a method that stays behind.

        Calls through the receiver go through the back-reference field of
        the source type; calls through any other receiver keep it.
        """
        ref = cref.ref
        scope = self._scope(ref)
        if ref.qualifier is not None:
            if new_name != ref.name:
                self._add_body_edit(ref.caller, self._rename(ref, new_name))
            return
        handle = self._source_handle(scope)
        if handle is None:
            self._conflict(ref, "could not add a back-reference field")
            return
        if self._add_body_edit(ref.caller, self._replace(ref, f"{handle}.{new_name}")):
            self.rewritten += 1

    def rewrite_external_field_calls(self, method: str, externals: Iterable[str]) -> None:
        """Re-point ``self.<field>.m()`` calls at the target's field of the same type."""
        scope = self._index.callers.get(method)
        if scope is None or scope.receiver is None:
            return
        externals = set(externals)
        for ref in self._index.references_in(method):
            chain = ref.receiver_chain
            if ref.target is None or chain is None or len(chain) != 2:
                continue
            if chain[0] != scope.receiver:
                continue
            owner = self._index.methods[ref.target].owner
            source_field = self._index.find_field(self._source.qname, chain[1])
            if owner not in externals or source_field is None:
                continue
            if source_field.type_qname != owner:
                continue
            field = self._injector.field_name(self._target.qname, owner)
            if field is None or field == chain[1]:
                continue
            text = f"{scope.receiver}.{field}.{ref.name}"
            if self._add_body_edit(method, self._replace(ref, text)):
                self.rewritten += 1

    def rewrite_receiver_accesses(
        self, method: str, moving: Iterable[str], renames: Dict[str, str]
    ) -> None:
        """Route the remaining receiver accesses of a moved method to the source side.

        ``self.x`` where ``x`` is a member of the source class (and not a
        moving method) becomes ``self.<back-reference>.x``; a bare ``self``
        becomes the back-reference itself.  Unresolvable receiver accesses
        that neither class defines are reported as warnings.
        """
        scope = self._index.callers.get(method)
        if scope is None or scope.receiver is None:
            return
        moving = set(moving)
        source = self._source.qname
        for ref in sorted(self._index.references_in(method), key=lambda r: r.start):
            if ref.qualifier is not None or ref.target in moving or self._covered(method, ref):
                continue
            if not self._index.has_member(source, ref.name):
                if ref.target is None and not self._index.has_member(self._target.qname, ref.name):
                    self.warnings.append(
                        f"{ref.describe()}: unresolved attribute of the moved method's receiver"
                    )
                continue
            handle = self._source_handle(scope)
            if handle is None:
                self._conflict(ref, "could not add a back-reference field")
                continue
            name = renames.get(ref.target, ref.name) if ref.target else ref.name
            if self._add_body_edit(method, self._replace(ref, f"{handle}.{name}")):
                self.rewritten += 1
        for start, end in scope.bare_receiver_uses:
            handle = self._source_handle(scope)
            if handle is None:
                self.conflicts.append(
                    f"{self._source.path}:{start[0]}: could not add a back-reference field"
                )
                continue
            self._add_body_edit(method, TextEdit(self._source.path, start, end, handle))
        if scope.uses_super:
            self.warnings.append(
                f"{method}: uses super(), which resolves against the target class after the move"
            )

    # ------------------------------------------------------------------ #
    # Renames                                                             #
    # ------------------------------------------------------------------ #

    def rename_reference(self, ref: Reference, new_name: str, moving: Iterable[str]) -> None:
        """Rename one reference, in place or inside a moving method's copy."""
        edit = self._rename(ref, new_name)
        if ref.caller in set(moving):
            self._add_body_edit(ref.caller, edit)
        else:
            self.edits.append(edit)
