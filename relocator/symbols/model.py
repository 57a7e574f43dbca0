"""Declarations and references extracted from Python modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from ..edits import Position
from ..visibility import Visibility

# A dotted name as written in source, e.g. ("models", "Order").
Chain = Tuple[str, ...]


@dataclass
class Binding:
    """A module-level name and what it denotes."""

    local: str  # name bound in the module
    kind: str  # "import" | "from" | "defined"
    target: str  # absolute dotted name the binding denotes
    module: str = ""  # imported module ("from" / "import" kinds)
    name: str = ""  # imported name ("from" kind)

    def import_text(self, defining_module: str) -> str:
        """Return an absolute import statement recreating this binding elsewhere."""
        if self.kind == "import":
            if self.local == self.module.split(".")[0]:
                return f"import {self.module}"
            return f"import {self.module} as {self.local}"
        if self.kind == "from":
            module, name = self.module, self.name
        else:
            module, name = defining_module, self.local
        if name == self.local:
            return f"from {module} import {name}"
        return f"from {module} import {name} as {self.local}"


@dataclass
class FieldDecl:
    """A field of a class.

    ``in_body`` fields are class-body declarations (``x: T`` / ``X = 1``) and
    can be deleted.  Instance attributes assigned through the receiver in a
    method (``self.x = ...``) are recorded with ``in_body=False``.
    """

    owner: str
    name: str
    type_chain: Optional[Chain] = None
    type_qname: Optional[str] = None  # resolved by the index
    is_static: bool = False
    in_body: bool = True
    start_line: int = 0
    end_line: int = 0


@dataclass
class MethodDecl:
    """A function defined directly in a class body."""

    owner: str
    name: str
    kind: str  # "instance" | "classmethod" | "staticmethod" | "property"
    receiver: Optional[str]  # first parameter name, None for static methods
    start_line: int  # first attached comment or decorator line
    end_line: int
    indent: str  # leading whitespace of the def line
    name_start: Position = (0, 0)
    name_end: Position = (0, 0)

    @property
    def qname(self) -> str:
        return f"{self.owner}.{self.name}"

    @property
    def visibility(self) -> Visibility:
        return Visibility.of_name(self.name)


@dataclass
class TypeDecl:
    """A top-level class."""

    module: str
    path: str
    name: str
    start_line: int
    end_line: int
    body_indent: str
    # First line of the body, None for one-line suites (``class A: pass``).
    body_start_line: Optional[int]
    docstring_end_line: Optional[int] = None
    statement_count: int = 0
    is_record: bool = False
    base_chains: List[Chain] = field(default_factory=list)
    bases: List[str] = field(default_factory=list)  # resolved by the index
    methods: List[MethodDecl] = field(default_factory=list)
    fields: List[FieldDecl] = field(default_factory=list)

    @property
    def qname(self) -> str:
        return f"{self.module}.{self.name}"

    def method(self, name: str) -> Optional[MethodDecl]:
        found = None
        for method in self.methods:
            if method.name == name:
                found = method  # a later definition replaces an earlier one
        return found

    def field_named(self, name: str) -> Optional[FieldDecl]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def member_names(self) -> Set[str]:
        return {m.name for m in self.methods} | {f.name for f in self.fields}


@dataclass
class CallerScope:
    """Name information for one method or module-level function."""

    qname: str
    module: str
    owner: Optional[str]  # class qname for methods
    receiver: Optional[str]
    kind: str = "function"
    local_types: Dict[str, Chain] = field(default_factory=dict)
    global_reads: Set[str] = field(default_factory=set)
    chains: Set[Chain] = field(default_factory=set)
    # Spans of receiver-parameter reads that are not attribute receivers.
    bare_receiver_uses: List[Tuple[Position, Position]] = field(default_factory=list)
    uses_super: bool = False


@dataclass
class Reference:
    """One ``receiver.name`` expression, called or not.

    ``qualifier`` is the receiver's source text, or None when the receiver is
    the enclosing method's own receiver parameter (``self`` / ``cls``).
    """

    path: str
    start: Position
    end: Position
    name_start: Position
    name: str
    receiver_text: str
    receiver_chain: Optional[Chain]  # None for compound receivers
    ctor_chain: Optional[Chain]  # set when the receiver is ``T(...)``
    is_call: bool
    caller: Optional[str]
    caller_type: Optional[str]
    qualifier: Optional[str] = None
    target: Optional[str] = None  # resolved method qname

    @property
    def line(self) -> int:
        return self.start[0]

    @property
    def rewritable(self) -> bool:
        """A chain of plain names can be dropped without losing side effects."""
        return self.receiver_chain is not None

    def describe(self) -> str:
        return f"{self.path}:{self.line}: {self.receiver_text}.{self.name}"


@dataclass
class ModuleInfo:
    """Everything collected from one parsed module."""

    module: str
    path: str
    bindings: Dict[str, Binding] = field(default_factory=dict)
    types: List[TypeDecl] = field(default_factory=list)
    callers: Dict[str, CallerScope] = field(default_factory=dict)
    references: List[Reference] = field(default_factory=list)
    member_uses: Dict[str, int] = field(default_factory=dict)
    # Line after which new imports go (0 = top of file).
    import_anchor_line: int = 0
    anchor_is_import: bool = False
    # (first line, last line, top-level package) of each module-level import;
    # the package is "" for relative imports.
    import_lines: List[Tuple[int, int, str]] = field(default_factory=list)

    @property
    def postpones_annotations(self) -> bool:
        """True under ``from __future__ import annotations``."""
        binding = self.bindings.get("annotations")
        return binding is not None and binding.kind == "from" and binding.module == "__future__"
