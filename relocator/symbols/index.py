"""Project-wide symbol table and reference index."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Set

import libcst as cst

from .collector import collect_module
from .model import CallerScope, Chain, FieldDecl, MethodDecl, ModuleInfo, Reference, TypeDecl

# Re-export chains longer than this are treated as unresolvable.
_MAX_ALIAS_DEPTH = 16


class ProjectIndex:
    """Declarations and resolved member references of every module in a project.

    An index is a snapshot: it is built from one set of sources and goes stale
    as soon as any of them is edited.
    """

    def __init__(self, modules: Dict[str, ModuleInfo], parse_errors: Dict[str, str]) -> None:
        self.modules = modules
        self.parse_errors = parse_errors
        self.by_path: Dict[str, ModuleInfo] = {m.path: m for m in modules.values()}
        self.types: Dict[str, TypeDecl] = {}
        self.methods: Dict[str, MethodDecl] = {}
        self.callers: Dict[str, CallerScope] = {}
        self.references: List[Reference] = []
        self.member_uses: Dict[str, int] = {}
        for info in modules.values():
            for decl in info.types:
                self.types[decl.qname] = decl
                for method in decl.methods:
                    self.methods[method.qname] = method
            self.callers.update(info.callers)
            self.references.extend(info.references)
            for name, count in info.member_uses.items():
                self.member_uses[name] = self.member_uses.get(name, 0) + count
        self._refs_to: Dict[str, List[Reference]] = {}
        self._refs_in: Dict[str, List[Reference]] = {}
        self._resolve()

    @classmethod
    def build(cls, sources: Dict[str, str], module_names: Dict[str, str]) -> "ProjectIndex":
        """Parse every source; files that fail to parse are listed in parse_errors."""
        modules: Dict[str, ModuleInfo] = {}
        errors: Dict[str, str] = {}
        for path in sorted(sources):
            module = module_names[path]
            try:
                modules[module] = collect_module(path, module, sources[path])
            except cst.ParserSyntaxError as exc:
                errors[path] = str(exc)
        return cls(modules, errors)

    # ------------------------------------------------------------------ #
    # Name resolution                                                     #
    # ------------------------------------------------------------------ #

    def canonical(self, dotted: str) -> str:
        """Follow re-exports (``from .models import Order`` in ``pkg/__init__``)."""
        for _ in range(_MAX_ALIAS_DEPTH):
            if dotted in self.types or dotted in self.modules:
                return dotted
            parts = dotted.split(".")
            for i in range(len(parts) - 1, 0, -1):
                module = ".".join(parts[:i])
                if module in self.modules:
                    binding = self.modules[module].bindings.get(parts[i])
                    if binding is None or binding.kind == "defined":
                        return dotted
                    dotted = ".".join([binding.target] + parts[i + 1 :])
                    break
            else:
                return dotted
        return dotted

    def resolve_name(self, module: str, chain: Chain) -> Optional[str]:
        """Return the absolute dotted name *chain* denotes inside *module*."""
        info = self.modules.get(module)
        if info is None or not chain:
            return None
        binding = info.bindings.get(chain[0])
        if binding is None:
            return None
        return self.canonical(".".join((binding.target,) + tuple(chain[1:])))

    def resolve_type_chain(self, module: str, chain: Optional[Chain]) -> Optional[str]:
        """Return the project class the longest prefix of *chain* names, if any."""
        if not chain:
            return None
        for i in range(len(chain), 0, -1):
            qname = self.resolve_name(module, chain[:i])
            if qname in self.types:
                return qname
        return None

    def find_type(self, dotted: str) -> Optional[TypeDecl]:
        return self.types.get(self.canonical(dotted))

    def ancestors(self, type_qname: str) -> List[str]:
        """Project base classes of *type_qname*, depth-first in base order."""
        result: List[str] = []
        stack = list(reversed(self.types[type_qname].bases)) if type_qname in self.types else []
        while stack:
            base = stack.pop()
            if base in result or base == type_qname:
                continue
            result.append(base)
            stack.extend(reversed(self.types[base].bases))
        return result

    def _lineage(self, type_qname: str) -> List[TypeDecl]:
        return [self.types[t] for t in [type_qname] + self.ancestors(type_qname) if t in self.types]

    def find_method(self, type_qname: Optional[str], name: str) -> Optional[MethodDecl]:
        """Look *name* up on *type_qname* and then its bases."""
        if type_qname is None:
            return None
        for decl in self._lineage(type_qname):
            method = decl.method(name)
            if method is not None:
                return method
            if decl.field_named(name) is not None:
                return None
        return None

    def find_field(self, type_qname: Optional[str], name: str) -> Optional[FieldDecl]:
        if type_qname is None:
            return None
        for decl in self._lineage(type_qname):
            found = decl.field_named(name)
            if found is not None:
                return found
        return None

    def field_type(self, type_qname: Optional[str], name: str) -> Optional[str]:
        found = self.find_field(type_qname, name)
        return found.type_qname if found is not None else None

    def has_member(self, type_qname: str, name: str) -> bool:
        return any(name in decl.member_names() for decl in self._lineage(type_qname))

    # ------------------------------------------------------------------ #
    # References                                                          #
    # ------------------------------------------------------------------ #

    def _resolve(self) -> None:
        for info in self.modules.values():
            for decl in info.types:
                decl.bases = [
                    t for t in (self.resolve_type_chain(info.module, c) for c in decl.base_chains) if t
                ]
        for info in self.modules.values():
            for decl in info.types:
                for f in decl.fields:
                    f.type_qname = self.resolve_type_chain(info.module, f.type_chain)
        for ref in self.references:
            method = self.find_method(self.receiver_type(ref), ref.name)
            if method is not None:
                ref.target = method.qname
                self._refs_to.setdefault(method.qname, []).append(ref)
            if ref.caller is not None:
                self._refs_in.setdefault(ref.caller, []).append(ref)

    def receiver_type(self, ref: Reference) -> Optional[str]:
        """Return the project class of *ref*'s receiver, or None if unknown."""
        info = self.by_path.get(ref.path)
        if info is None:
            return None
        if ref.ctor_chain is not None:
            return self.resolve_type_chain(info.module, ref.ctor_chain)
        chain = ref.receiver_chain
        if chain is None:
            return None
        scope = self.callers.get(ref.caller) if ref.caller is not None else None
        head, rest = chain[0], chain[1:]
        if scope is not None and scope.receiver == head and scope.owner is not None:
            current: Optional[str] = scope.owner
        elif scope is not None and head in scope.local_types:
            current = self.resolve_type_chain(info.module, scope.local_types[head])
        else:
            current = None
            for i in range(len(chain), 0, -1):
                qname = self.resolve_name(info.module, chain[:i])
                if qname in self.types:
                    current, rest = qname, chain[i:]
                    break
        for attr in rest:
            current = self.field_type(current, attr)
        return current

    def receiver_is_class(self, ref: Reference) -> bool:
        """True when *ref*'s receiver names a class itself (``Order.create``)."""
        info = self.by_path.get(ref.path)
        if info is None or ref.receiver_chain is None:
            return False
        scope = self.callers.get(ref.caller) if ref.caller is not None else None
        if scope is not None and ref.receiver_chain[0] in scope.local_types:
            return False
        if scope is not None and ref.receiver_chain[0] == scope.receiver:
            return scope.kind == "classmethod" and len(ref.receiver_chain) == 1
        return self.resolve_name(info.module, ref.receiver_chain) in self.types

    def references_to(self, method_qname: str) -> List[Reference]:
        return list(self._refs_to.get(method_qname, []))

    def references_in(self, caller_qname: str) -> List[Reference]:
        return list(self._refs_in.get(caller_qname, []))

    def field_uses(self, name: str) -> int:
        return self.member_uses.get(name, 0)

    def field_of_type(self, owner_qname: str, type_qname: str) -> Optional[FieldDecl]:
        """Return the first field *owner_qname* itself declares with type *type_qname*."""
        decl = self.types.get(owner_qname)
        if decl is None:
            return None
        for f in decl.fields:
            if f.type_qname == type_qname and not f.is_static:
                return f
        return None

    # ------------------------------------------------------------------ #
    # Lookups                                                             #
    # ------------------------------------------------------------------ #

    def owner_of(self, method_qname: str) -> Optional[TypeDecl]:
        method = self.methods.get(method_qname)
        return self.types.get(method.owner) if method is not None else None

    def methods_named(self, method_qname: str) -> List[MethodDecl]:
        """Every definition of a method (a property and its setter share a name)."""
        decl = self.owner_of(method_qname)
        if decl is None:
            return []
        name = method_qname.rsplit(".", 1)[1]
        return [m for m in decl.methods if m.name == name]

    def module_of(self, type_qname: str) -> ModuleInfo:
        return self.modules[self.types[type_qname].module]

    def global_reads(self, caller_qnames: Iterable[str]) -> Set[str]:
        names: Set[str] = set()
        for qname in caller_qnames:
            scope = self.callers.get(qname)
            if scope is not None:
                names |= scope.global_reads
        return names
