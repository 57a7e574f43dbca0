"""Find and classify member references relevant to a move."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Collection, Iterable, List, Optional, Set

from ..symbols.index import ProjectIndex
from ..symbols.model import Reference


@dataclass
class ClassifiedReference:
    """A reference to a method together with where its caller ends up."""

    ref: Reference
    callee: str
    caller_moves: bool  # the containing method is itself moving
    caller_in_target: bool  # the containing method already lives in the target class
    qualifier: Optional[str]  # receiver text, None for ``self.name`` / ``cls.name``
    receiver_is_class: bool  # receiver names a class (``Order.create``)


class ReferenceClassifier:
    """Project-wide reference queries over one :class:`ProjectIndex` snapshot."""

    def __init__(self, index: ProjectIndex) -> None:
        self.index = index

    def find_references_of(self, methods: Iterable[str]) -> List[Reference]:
        """Return every reference resolving to one of *methods*, in file order."""
        refs: List[Reference] = []
        for method in dict.fromkeys(methods):
            refs.extend(self.index.references_to(method))
        return sorted(refs, key=lambda r: (r.path, r.start, r.end))

    def classify(
        self, ref: Reference, move_set: Collection[str], target: str
    ) -> ClassifiedReference:
        return ClassifiedReference(
            ref=ref,
            callee=ref.target or "",
            caller_moves=ref.caller in move_set,
            caller_in_target=ref.caller_type == target,
            qualifier=ref.qualifier,
            receiver_is_class=self.index.receiver_is_class(ref),
        )

    def find_external_types_referenced_in_methods(
        self, move_set: Iterable[str], source: str, target: str
    ) -> List[str]:
        """Return classes other than *source*/*target* whose methods the moving code calls.

        Base classes of either side count as the side itself.  The result is
        duplicate-free and ordered by first reference.
        """
        excluded = {source, target}
        excluded.update(self.index.ancestors(source))
        excluded.update(self.index.ancestors(target))
        found: List[str] = []
        for method in dict.fromkeys(move_set):
            for ref in self.index.references_in(method):
                if ref.target is None:
                    continue
                owner = self.index.methods[ref.target].owner
                if owner not in excluded and owner not in found:
                    found.append(owner)
        return found

    def collect_used_types(self, method: str) -> Set[str]:
        """Return the project classes *method*'s signature and body mention.

        Covers annotations (including string forward references), decorators,
        constructor calls and any other read of a module-level name denoting a
        class, directly or through a module (``models.Order``).
        """
        scope = self.index.callers.get(method)
        if scope is None:
            return set()
        used: Set[str] = set()
        for name in scope.global_reads:
            qname = self.index.resolve_type_chain(scope.module, (name,))
            if qname is not None:
                used.add(qname)
        for chain in scope.chains:
            if chain[0] not in scope.global_reads:
                continue
            qname = self.index.resolve_type_chain(scope.module, chain)
            if qname is not None:
                used.add(qname)
        return used
