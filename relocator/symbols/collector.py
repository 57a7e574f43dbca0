"""Collect declarations and member references from one module with libcst."""

from __future__ import annotations

from typing import List, Optional, Tuple

import libcst as cst
from libcst.metadata import MetadataWrapper, PositionProvider, ScopeProvider

from .model import (
    Binding,
    CallerScope,
    Chain,
    FieldDecl,
    MethodDecl,
    ModuleInfo,
    Reference,
    TypeDecl,
)

# Decorators (last dotted part) that make a class a record: its declared
# fields are constructor parameters.
_RECORD_DECORATORS = frozenset({"dataclass", "define", "frozen", "mutable", "s", "attrs"})
_RECORD_BASES = frozenset({"NamedTuple", "TypedDict", "BaseModel"})

# Annotation wrappers whose first argument is the declared type.
_UNWRAP_SUBSCRIPTS = frozenset({"Optional", "Final", "ClassVar", "Annotated"})

_PROPERTY_DECORATORS = frozenset(
    {"property", "cached_property", "setter", "getter", "deleter"}
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _find_attached_comment_start(lines: List[str], stmt_start: int) -> int:
    """Return the 1-indexed first line of comments attached to *stmt_start*.

    A comment line directly above the statement (no blank line in between)
    is considered attached.  Scanning stops at any non-comment line.
    """
    first_comment = stmt_start
    i = stmt_start - 2  # 0-indexed line just before stmt_start
    while i >= 0:
        stripped = lines[i].strip()
        if stripped.startswith("#"):
            first_comment = i + 1
            i -= 1
        else:
            break
    return first_comment


def _indent_of(line: str) -> str:
    return line[: len(line) - len(line.lstrip(" \t"))]


def _module_to_str(node: Optional[cst.BaseExpression]) -> str:
    """Convert a libcst module node to a dotted string."""
    chain = _attribute_chain(node) if node is not None else None
    return ".".join(chain) if chain else ""


def _resolve_relative_module(
    file_module: str, is_package: bool, num_dots: int, suffix: str
) -> str:
    """Resolve a relative import to an absolute module path.

    file_module: dotted module path of the importing file (e.g. "pkg.api")
    is_package:  True when the importing file is a package ``__init__``
    num_dots:    1 for ".", 2 for "..", etc.
    suffix:      "service" for "from .service import x", or "" for "from . import x"
    """
    parts = file_module.split(".") if file_module else []
    drop = num_dots - 1 if is_package else num_dots
    package_parts = parts[: len(parts) - drop] if drop <= len(parts) else []
    if suffix:
        return ".".join(package_parts + [suffix])
    return ".".join(package_parts)


def _attribute_chain(node: cst.BaseExpression) -> Optional[Chain]:
    """Return ``("a", "b", "c")`` for ``a.b.c``; None for anything else."""
    parts: List[str] = []
    while isinstance(node, cst.Attribute):
        parts.append(node.attr.value)
        node = node.value
    if isinstance(node, cst.Name):
        parts.append(node.value)
        return tuple(reversed(parts))
    return None


def _is_none(node: cst.BaseExpression) -> bool:
    return isinstance(node, cst.Name) and node.value == "None"


def _annotation_chain(node: Optional[cst.BaseExpression]) -> Optional[Chain]:
    """Return the dotted name of the class an annotation declares, if any.

    ``Optional[T]``, ``T | None``, ``Final[T]``, ``ClassVar[T]`` and string
    forward references all yield ``T``.  Container types yield None.
    """
    if node is None:
        return None
    if isinstance(node, cst.Annotation):
        node = node.annotation
    if isinstance(node, (cst.Name, cst.Attribute)):
        if _is_none(node):
            return None
        return _attribute_chain(node)
    if isinstance(node, cst.SimpleString):
        value = node.evaluated_value
        if not isinstance(value, str):
            return None
        try:
            return _annotation_chain(cst.parse_expression(value))
        except cst.ParserSyntaxError:
            return None
    if isinstance(node, cst.Subscript):
        base = _attribute_chain(node.value)
        args = [
            el.slice.value for el in node.slice if isinstance(el.slice, cst.Index)
        ]
        if base is None or not args:
            return None
        if base[-1] in _UNWRAP_SUBSCRIPTS:
            return _annotation_chain(args[0])
        if base[-1] == "Union":
            real = [a for a in args if not _is_none(a)]
            if len(real) == 1:
                return _annotation_chain(real[0])
        return None
    if isinstance(node, cst.BinaryOperation) and isinstance(node.operator, cst.BitOr):
        if _is_none(node.right):
            return _annotation_chain(node.left)
        if _is_none(node.left):
            return _annotation_chain(node.right)
    return None


def _is_classvar(annotation: cst.Annotation) -> bool:
    node = annotation.annotation
    if isinstance(node, cst.Subscript):
        node = node.value
    chain = _attribute_chain(node)
    return chain is not None and chain[-1] == "ClassVar"


def _ctor_chain(node: Optional[cst.BaseExpression]) -> Optional[Chain]:
    """Return the callee's dotted name for ``T(...)`` expressions."""
    if isinstance(node, cst.Call):
        return _attribute_chain(node.func)
    return None


def _decorator_chains(decorators) -> List[Chain]:
    chains = []
    for decorator in decorators:
        expr = decorator.decorator
        if isinstance(expr, cst.Call):
            expr = expr.func
        chain = _attribute_chain(expr)
        if chain is not None:
            chains.append(chain)
    return chains


def _method_kind(decorators) -> str:
    for chain in _decorator_chains(decorators):
        if chain[-1] == "staticmethod":
            return "staticmethod"
        if chain[-1] == "classmethod":
            return "classmethod"
        if chain[-1] in _PROPERTY_DECORATORS:
            return "property"
    return "instance"


def _all_params(params: cst.Parameters) -> List[cst.Param]:
    result = list(params.posonly_params) + list(params.params)
    if isinstance(params.star_arg, cst.Param):
        result.append(params.star_arg)
    result.extend(params.kwonly_params)
    if params.star_kwarg is not None:
        result.append(params.star_kwarg)
    return result


def _is_docstring(stmt: cst.BaseStatement) -> bool:
    return (
        isinstance(stmt, cst.SimpleStatementLine)
        and len(stmt.body) == 1
        and isinstance(stmt.body[0], cst.Expr)
        and isinstance(stmt.body[0].value, (cst.SimpleString, cst.ConcatenatedString))
    )


def _is_import(stmt: cst.BaseStatement) -> bool:
    return isinstance(stmt, cst.SimpleStatementLine) and any(
        isinstance(s, (cst.Import, cst.ImportFrom)) for s in stmt.body
    )


def _import_root(stmt: cst.SimpleStatementLine) -> str:
    for small in stmt.body:
        if isinstance(small, cst.Import):
            return _module_to_str(small.names[0].name).split(".")[0]
        if isinstance(small, cst.ImportFrom):
            if small.relative:
                return ""
            return _module_to_str(small.module).split(".")[0]
    return ""


# ---------------------------------------------------------------------------
# Visitor
# ---------------------------------------------------------------------------


class _ModuleCollector(cst.CSTVisitor):
    """Visit one module and fill in a :class:`ModuleInfo`."""

    METADATA_DEPENDENCIES = (PositionProvider, ScopeProvider)

    def __init__(self, info: ModuleInfo, lines: List[str], is_package: bool) -> None:
        self.info = info
        self._lines = lines
        self._is_package = is_package
        self._module: Optional[cst.Module] = None
        # ("class", TypeDecl | None) or ("function", CallerScope | None)
        self._frames: List[Tuple[str, object]] = []
        self._spans: List[Tuple[int, int, CallerScope]] = []
        self._called: set = set()
        # Name nodes that are not reads: attribute names, class names and
        # class-body assignment targets.
        self._not_loads: set = set()
        self._receiver_names: set = set()

    def _pos(self, node: cst.CSTNode):
        return self.get_metadata(PositionProvider, node)

    def _caller(self) -> Optional[CallerScope]:
        for kind, obj in self._frames:
            if kind == "function" and obj is not None:
                return obj
        return None

    def _enclosing_type(self) -> Optional[TypeDecl]:
        if self._frames and self._frames[0][0] == "class":
            return self._frames[0][1]
        return None

    # -- module ----------------------------------------------------------

    def visit_Module(self, node: cst.Module) -> Optional[bool]:
        self._module = node
        self._collect_bindings(node.body)
        anchor = 0
        for i, stmt in enumerate(node.body):
            if _is_import(stmt):
                pos = self._pos(stmt)
                anchor = pos.end.line
                self.info.anchor_is_import = True
                self.info.import_lines.append(
                    (pos.start.line, pos.end.line, _import_root(stmt))
                )
            elif i == 0 and _is_docstring(stmt):
                anchor = self._pos(stmt).end.line
        self.info.import_anchor_line = anchor
        return True

    def leave_Module(self, original_node: cst.Module) -> None:
        scope = self.get_metadata(ScopeProvider, original_node)
        for assignment in scope.assignments:
            name = assignment.name.split(".")[0]
            for access in assignment.references:
                line = self._pos(access.node).start.line
                for start, end, caller in self._spans:
                    if start <= line <= end:
                        caller.global_reads.add(name)
                        break

    def _collect_bindings(self, body) -> None:
        module = self.info.module
        for stmt in body:
            if isinstance(stmt, (cst.ClassDef, cst.FunctionDef)):
                local = stmt.name.value
                self.info.bindings[local] = Binding(local, "defined", f"{module}.{local}")
            elif isinstance(stmt, cst.If):
                self._collect_bindings(stmt.body.body)
                if isinstance(stmt.orelse, cst.Else):
                    self._collect_bindings(stmt.orelse.body.body)
            elif isinstance(stmt, cst.Try):
                self._collect_bindings(stmt.body.body)
            elif isinstance(stmt, cst.SimpleStatementLine):
                for small in stmt.body:
                    self._collect_small_binding(small)

    def _collect_small_binding(self, small: cst.BaseSmallStatement) -> None:
        module = self.info.module
        bindings = self.info.bindings
        if isinstance(small, cst.Import):
            for alias in small.names:
                dotted = _module_to_str(alias.name)
                if alias.asname is not None and isinstance(alias.asname.name, cst.Name):
                    local = alias.asname.name.value
                    bindings[local] = Binding(local, "import", dotted, module=dotted)
                else:
                    local = dotted.split(".")[0]
                    bindings[local] = Binding(local, "import", local, module=dotted)
        elif isinstance(small, cst.ImportFrom):
            if isinstance(small.names, cst.ImportStar):
                return
            suffix = _module_to_str(small.module)
            if small.relative:
                source = _resolve_relative_module(
                    module, self._is_package, len(small.relative), suffix
                )
            else:
                source = suffix
            for alias in small.names:
                name = _module_to_str(alias.name)
                local = name
                if alias.asname is not None and isinstance(alias.asname.name, cst.Name):
                    local = alias.asname.name.value
                bindings[local] = Binding(
                    local, "from", f"{source}.{name}", module=source, name=name
                )
        elif isinstance(small, cst.Assign):
            for target in small.targets:
                if isinstance(target.target, cst.Name):
                    local = target.target.value
                    bindings[local] = Binding(local, "defined", f"{module}.{local}")
        elif isinstance(small, cst.AnnAssign) and isinstance(small.target, cst.Name):
            local = small.target.value
            bindings[local] = Binding(local, "defined", f"{module}.{local}")

    def visit_Import(self, node: cst.Import) -> Optional[bool]:
        return False

    def visit_ImportFrom(self, node: cst.ImportFrom) -> Optional[bool]:
        return False

    # -- classes ---------------------------------------------------------

    def visit_ClassDef(self, node: cst.ClassDef) -> Optional[bool]:
        decl = None
        self._not_loads.add(id(node.name))
        if not self._frames:
            decl = self._type_decl(node)
            self.info.types.append(decl)
        self._frames.append(("class", decl))
        return True

    def leave_ClassDef(self, original_node: cst.ClassDef) -> None:
        self._frames.pop()

    def _type_decl(self, node: cst.ClassDef) -> TypeDecl:
        pos = self._pos(node)
        start = pos.start.line
        if node.decorators:
            start = self._pos(node.decorators[0].decorator).start.line
        decl = TypeDecl(
            module=self.info.module,
            path=self.info.path,
            name=node.name.value,
            start_line=_find_attached_comment_start(self._lines, start),
            end_line=pos.end.line,
            body_indent="    ",
            body_start_line=None,
        )
        for arg in node.bases:
            chain = _attribute_chain(arg.value)
            if chain is not None and arg.keyword is None:
                decl.base_chains.append(chain)
        decl.is_record = any(
            c[-1] in _RECORD_DECORATORS for c in _decorator_chains(node.decorators)
        ) or any(c[-1] in _RECORD_BASES for c in decl.base_chains)

        body = node.body
        decl.statement_count = len(body.body)
        if not isinstance(body, cst.IndentedBlock) or not body.body:
            return decl
        first = body.body[0]
        decl.body_start_line = self._pos(first).start.line
        decl.body_indent = _indent_of(self._lines[decl.body_start_line - 1])
        if _is_docstring(first):
            decl.docstring_end_line = self._pos(first).end.line
        for stmt in body.body:
            self._collect_body_field(decl, stmt)
        return decl

    def _collect_body_field(self, decl: TypeDecl, stmt: cst.BaseStatement) -> None:
        if not isinstance(stmt, cst.SimpleStatementLine) or len(stmt.body) != 1:
            return
        small = stmt.body[0]
        pos = self._pos(stmt)
        start = _find_attached_comment_start(self._lines, pos.start.line)
        if isinstance(small, cst.AnnAssign) and isinstance(small.target, cst.Name):
            self._not_loads.add(id(small.target))
            decl.fields.append(
                FieldDecl(
                    owner=decl.qname,
                    name=small.target.value,
                    type_chain=_annotation_chain(small.annotation),
                    is_static=_is_classvar(small.annotation),
                    start_line=start,
                    end_line=pos.end.line,
                )
            )
        elif isinstance(small, cst.Assign):
            names = [t.target.value for t in small.targets if isinstance(t.target, cst.Name)]
            deletable = len(small.targets) == 1 and len(names) == 1
            self._not_loads.update(id(t.target) for t in small.targets)
            for name in names:
                decl.fields.append(
                    FieldDecl(
                        owner=decl.qname,
                        name=name,
                        type_chain=_ctor_chain(small.value),
                        is_static=True,
                        in_body=deletable,
                        start_line=start,
                        end_line=pos.end.line,
                    )
                )

    # -- functions -------------------------------------------------------

    def visit_FunctionDef(self, node: cst.FunctionDef) -> Optional[bool]:
        scope = None
        self._not_loads.add(id(node.name))
        self._not_loads.update(id(p.name) for p in _all_params(node.params))
        module = self.info.module
        if not self._frames:
            scope = CallerScope(
                qname=f"{module}.{node.name.value}", module=module, owner=None, receiver=None
            )
        elif len(self._frames) == 1 and self._enclosing_type() is not None:
            decl = self._enclosing_type()
            method = self._method_decl(decl, node)
            decl.methods.append(method)
            scope = self.info.callers.get(method.qname) or CallerScope(
                qname=method.qname,
                module=module,
                owner=decl.qname,
                receiver=method.receiver,
                kind=method.kind,
            )
        if scope is not None:
            self.info.callers[scope.qname] = scope
            for param in _all_params(node.params):
                chain = _annotation_chain(param.annotation)
                if chain is not None and param.name.value != scope.receiver:
                    scope.local_types[param.name.value] = chain
            start = self._pos(node).start.line
            if node.decorators:
                start = self._pos(node.decorators[0].decorator).start.line
            self._spans.append((start, self._pos(node).end.line, scope))
        self._frames.append(("function", scope))
        return True

    def leave_FunctionDef(self, original_node: cst.FunctionDef) -> None:
        self._frames.pop()

    def _method_decl(self, decl: TypeDecl, node: cst.FunctionDef) -> MethodDecl:
        kind = _method_kind(node.decorators)
        receiver = None
        if kind != "staticmethod":
            params = list(node.params.posonly_params) + list(node.params.params)
            if params:
                receiver = params[0].name.value
        pos = self._pos(node)
        start = pos.start.line
        if node.decorators:
            start = self._pos(node.decorators[0].decorator).start.line
        name_pos = self._pos(node.name)
        return MethodDecl(
            owner=decl.qname,
            name=node.name.value,
            kind=kind,
            receiver=receiver,
            start_line=_find_attached_comment_start(self._lines, start),
            end_line=pos.end.line,
            indent=_indent_of(self._lines[pos.start.line - 1]),
            name_start=(name_pos.start.line, name_pos.start.column),
            name_end=(name_pos.end.line, name_pos.end.column),
        )

    # -- local and instance types ------------------------------------------

    def visit_AnnAssign(self, node: cst.AnnAssign) -> Optional[bool]:
        scope = self._caller()
        if scope is None:
            return True
        chain = _annotation_chain(node.annotation)
        if isinstance(node.target, cst.Name):
            if chain is not None:
                scope.local_types.setdefault(node.target.value, chain)
        else:
            self._record_instance_field(scope, node.target, chain)
        return True

    def visit_Assign(self, node: cst.Assign) -> Optional[bool]:
        scope = self._caller()
        if scope is None:
            return True
        chain = _ctor_chain(node.value)
        if chain is None and isinstance(node.value, cst.Name):
            chain = scope.local_types.get(node.value.value)
        for target in node.targets:
            if isinstance(target.target, cst.Name):
                if chain is not None:
                    scope.local_types.setdefault(target.target.value, chain)
            else:
                self._record_instance_field(scope, target.target, chain)
        return True

    def _record_instance_field(
        self, scope: CallerScope, target: cst.BaseExpression, chain: Optional[Chain]
    ) -> None:
        decl = self._enclosing_type()
        target_chain = _attribute_chain(target)
        if (
            decl is None
            or scope.owner != decl.qname
            or scope.receiver is None
            or target_chain is None
            or len(target_chain) != 2
            or target_chain[0] != scope.receiver
        ):
            return
        existing = decl.field_named(target_chain[1])
        if existing is None:
            decl.fields.append(
                FieldDecl(
                    owner=decl.qname,
                    name=target_chain[1],
                    type_chain=chain,
                    is_static=scope.kind == "classmethod",
                    in_body=False,
                )
            )
        elif existing.type_chain is None and chain is not None:
            existing.type_chain = chain

    # -- references --------------------------------------------------------

    def visit_Call(self, node: cst.Call) -> Optional[bool]:
        self._called.add(id(node.func))
        return True

    def visit_Arg(self, node: cst.Arg) -> Optional[bool]:
        if node.keyword is not None:
            name = node.keyword.value
            self.info.member_uses[name] = self.info.member_uses.get(name, 0) + 1
        return True

    def visit_Name(self, node: cst.Name) -> Optional[bool]:
        if id(node) in self._not_loads:
            return True
        scope = self._caller()
        if scope is not None:
            scope.chains.add((node.value,))
            if node.value == "super":
                scope.uses_super = True
            elif node.value == scope.receiver and id(node) not in self._receiver_names:
                pos = self._pos(node)
                scope.bare_receiver_uses.append(
                    ((pos.start.line, pos.start.column), (pos.end.line, pos.end.column))
                )
        elif self._frames and self._frames[-1][0] == "class":
            # Class-body code can read earlier class attributes by bare name.
            name = node.value
            self.info.member_uses[name] = self.info.member_uses.get(name, 0) + 1
        return True

    def visit_Attribute(self, node: cst.Attribute) -> Optional[bool]:
        name = node.attr.value
        self._not_loads.add(id(node.attr))
        self._receiver_names.add(id(node.value))
        self.info.member_uses[name] = self.info.member_uses.get(name, 0) + 1
        scope = self._caller()
        if scope is not None:
            full = _attribute_chain(node)
            if full is not None:
                scope.chains.add(full)

        receiver_chain = _attribute_chain(node.value)
        caller_type = scope.owner if scope is not None else None
        if scope is None and self._enclosing_type() is not None:
            caller_type = self._enclosing_type().qname
        qualifier: Optional[str] = self._module.code_for_node(node.value)
        if (
            scope is not None
            and scope.receiver is not None
            and receiver_chain == (scope.receiver,)
        ):
            qualifier = None
        pos = self._pos(node)
        name_pos = self._pos(node.attr)
        self.info.references.append(
            Reference(
                path=self.info.path,
                start=(pos.start.line, pos.start.column),
                end=(pos.end.line, pos.end.column),
                name_start=(name_pos.start.line, name_pos.start.column),
                name=name,
                receiver_text=self._module.code_for_node(node.value),
                receiver_chain=receiver_chain,
                ctor_chain=_ctor_chain(node.value),
                is_call=id(node) in self._called,
                caller=scope.qname if scope is not None else None,
                caller_type=caller_type,
                qualifier=qualifier,
            )
        )
        return True


def collect_module(path: str, module: str, source: str) -> ModuleInfo:
    """Parse *source* and return everything the index needs from it.

    Raises ``libcst.ParserSyntaxError`` when the source does not parse.
    """
    tree = cst.parse_module(source)
    info = ModuleInfo(module=module, path=path)
    lines = source.splitlines(keepends=True)
    is_package = path.endswith("__init__.py")
    wrapper = MetadataWrapper(tree)
    wrapper.visit(_ModuleCollector(info, lines, is_package))
    return info
