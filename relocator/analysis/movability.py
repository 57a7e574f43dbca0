"""Decide which methods reachable from a root method can move with it."""

from __future__ import annotations

from typing import Dict, List, Set, Tuple

from ..symbols.index import ProjectIndex
from .call_graph import build_call_graph


def collect_group(graph: Dict[str, Set[str]], root: str) -> List[str]:
    """Return *root* and every method it reaches in *graph*.

    The result follows the key order of *graph* (declaration order), so the
    root is not necessarily first.  Cycles are handled by the visited set.
    """
    visited: Set[str] = set()
    stack = [root]
    while stack:
        method = stack.pop()
        if method in visited:
            continue
        visited.add(method)
        stack.extend(graph.get(method, ()))
    return [m for m in graph if m in visited]


def _can_move(
    index: ProjectIndex,
    method: str,
    owner: str,
    members: Set[str],
    cache: Dict[str, bool],
) -> bool:
    """Return True if every reference to *method* comes from a movable group member.

    *cache* doubles as the in-progress marker: a method is stored as True on
    entry so that a cycle back to it assumes movability, and overwritten with
    the real answer on exit.
    """
    if method in cache:
        return cache[method]
    cache[method] = True
    result = True
    for ref in index.references_to(method):
        if ref.caller_type != owner or ref.caller is None or ref.caller not in members:
            result = False
            break
        if ref.caller == method:
            continue
        if not _can_move(index, ref.caller, owner, members, cache):
            result = False
            break
    cache[method] = result
    return result


def _propagate_falsity(
    index: ProjectIndex, group: List[str], root: str, cache: Dict[str, bool]
) -> None:
    """Mark methods unmovable while any group caller of theirs is unmovable.

    A method evaluated while one of its callers was still in progress saw the
    tentative True of that caller; this pass corrects such answers.
    """
    members = set(group)
    changed = True
    while changed:
        changed = False
        for method in group:
            if method == root or not cache[method]:
                continue
            for ref in index.references_to(method):
                caller = ref.caller
                if caller in members and caller != method and not cache[caller]:
                    cache[method] = False
                    changed = True
                    break


def compute_group(index: ProjectIndex, root: str) -> Dict[str, bool]:
    """Return the movability map of the methods reachable from *root*.

    Keys are *root* and every method of its class it transitively references,
    in declaration order.  The root always maps to True.  Any other method
    maps to True only when all of its references come from group members of
    the same class that are themselves movable.
    """
    owner = index.methods[root].owner
    graph = build_call_graph(index, owner)
    group = collect_group(graph, root)
    members = set(group)
    cache: Dict[str, bool] = {root: True}
    for method in group:
        _can_move(index, method, owner, members, cache)
    _propagate_falsity(index, group, root, cache)
    return {method: cache[method] for method in group}


def partition(group: Dict[str, bool]) -> Tuple[List[str], List[str]]:
    """Split a movability map into ``(move_set, stay_set)`` lists."""
    move = [m for m, movable in group.items() if movable]
    stay = [m for m, movable in group.items() if not movable]
    return move, stay
