"""Build the intra-class method call graph."""

from __future__ import annotations

from typing import Dict, Set

from ..symbols.index import ProjectIndex


def build_call_graph(index: ProjectIndex, type_qname: str) -> Dict[str, Set[str]]:
    """Return the call graph of the methods of *type_qname*.

    The returned dict maps every method qualified name of the class (in
    declaration order) to the set of method qualified names it references
    whose owner is exactly that class.  Calls resolving to base classes or
    other classes add no edge, and references whose target cannot be resolved
    statically are skipped.  Self-loops (direct recursion) are kept.
    """
    decl = index.types[type_qname]
    graph: Dict[str, Set[str]] = {}
    for method in decl.methods:
        callees = graph.setdefault(method.qname, set())
        for ref in index.references_in(method.qname):
            if ref.target is None:
                continue
            if index.methods[ref.target].owner == type_qname:
                callees.add(ref.target)
    return graph
