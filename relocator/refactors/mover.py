"""Move a method, and the helpers only it needs, from one class to another."""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Set, Union

from ..analysis.movability import compute_group, partition
from ..analysis.references import ClassifiedReference, ReferenceClassifier
from ..config import RelocatorConfig
from ..edits import EditPlan, TextEdit, apply_to_text
from ..errors import MoveError, UnknownSymbolError
from ..report import MoveReport
from ..symbols.index import ProjectIndex
from ..symbols.model import MethodDecl, TypeDecl
from ..visibility import Visibility, is_dunder
from ..workspace import Transaction, Workspace
from .field_injector import FieldInjector
from .imports import ImportPlanner, prune_imports, unused_imports
from .rewriter import ReferenceRewriter

_ACCESSOR_DECORATOR = r"^(\s*@){name}(\.(?:setter|getter|deleter)\b)"


def _is_blank(lines: List[str], line: int) -> bool:
    return 1 <= line <= len(lines) and not lines[line - 1].strip()


def _runs(numbers: Set[int]) -> List[tuple]:
    """Group line numbers into ``(first, last)`` runs of consecutive lines."""
    runs: List[tuple] = []
    for n in sorted(numbers):
        if runs and runs[-1][1] == n - 1:
            runs[-1] = (runs[-1][0], n)
        else:
            runs.append((n, n))
    return runs


def _reindent(text: str, old: str, new: str) -> str:
    out = []
    for line in text.splitlines(keepends=True):
        if not line.strip():
            out.append("\n")
        elif line.startswith(old):
            out.append(new + line[len(old) :])
        else:
            out.append(line)
    return "".join(out)


class MethodMover:
    """Relocate methods between classes of one :class:`Workspace`.

    ``move_method`` runs the whole operation inside a single transaction: the
    analysis reads one index snapshot, the rewrite, injection, import and
    transplant edits are planned against it and applied together, and the
    field and import clean-up passes read a fresh index of the edited text.
    Nothing reaches the workspace unless every phase succeeds and the output
    verifies.
    """

    def __init__(
        self,
        workspace: Workspace,
        config: Optional[RelocatorConfig] = None,
        dry_run: bool = False,
        report: Optional[MoveReport] = None,
    ) -> None:
        self.workspace = workspace
        self.config = config if config is not None else RelocatorConfig()
        self.dry_run = dry_run
        self.report = report if report is not None else MoveReport()

    # ------------------------------------------------------------------ #
    # Entry point                                                         #
    # ------------------------------------------------------------------ #

    def move_method(
        self,
        root: str,
        source: str,
        target: str,
        field_visibility: Union[str, Visibility, None] = None,
    ) -> Set[str]:
        """Move *root* from class *source* to class *target*; return the moved methods.

        *root* is a qualified method name (``pkg.mod.Class.method``) or a bare
        method name of *source*.  The returned names are the qualified names
        the methods had before the move.
        """
        if field_visibility is None:
            field_visibility = self.config.field_visibility
        if not isinstance(field_visibility, Visibility):
            field_visibility = Visibility.parse(field_visibility)

        index = self.workspace.index()
        root_decl, source_decl, target_decl = self._resolve(index, root, source, target)
        report = self.report
        report.root = root_decl.qname
        report.source = source_decl.qname
        report.target = target_decl.qname
        for path, error in sorted(index.parse_errors.items()):
            report.warnings.append(f"{path}: not analyzed, parse error: {error}")

        with self.workspace.transaction(
            verify_undefined_names=self.config.verify_undefined_names,
            dry_run=self.dry_run,
        ) as txn:
            move = self._run(txn, index, root_decl, source_decl, target_decl, field_visibility)
        report.record_changes(txn.original, txn.sources)
        return set(move)

    def _resolve(self, index: ProjectIndex, root: str, source: str, target: str):
        source_decl = index.find_type(source)
        if source_decl is None:
            raise UnknownSymbolError(f"unknown source class {source!r}")
        target_decl = index.find_type(target)
        if target_decl is None:
            raise UnknownSymbolError(f"unknown target class {target!r}")
        if "." not in root:
            root = f"{source_decl.qname}.{root}"
        owner, _, name = root.rpartition(".")
        owner_decl = index.find_type(owner)
        method = index.methods.get(f"{owner_decl.qname}.{name}") if owner_decl else None
        if method is None:
            raise UnknownSymbolError(f"unknown method {root!r}")
        if method.owner != source_decl.qname:
            raise UnknownSymbolError(f"{root} is not a method of {source_decl.qname}")
        if source_decl.qname == target_decl.qname:
            raise MoveError(f"{root} already belongs to {target_decl.qname}")
        if is_dunder(method.name):
            raise MoveError(f"{root}: special methods cannot be moved")
        return method, source_decl, target_decl

    # ------------------------------------------------------------------ #
    # Phases                                                              #
    # ------------------------------------------------------------------ #

    def _run(
        self,
        txn: Transaction,
        index: ProjectIndex,
        root: MethodDecl,
        source: TypeDecl,
        target: TypeDecl,
        visibility: Visibility,
    ) -> List[str]:
        report = self.report

        # Phase 1: which methods travel with the root.
        move, stay = partition(compute_group(index, root.qname))
        move_set = set(move)
        report.moved = list(move)
        report.stayed = list(stay)
        self._warn_unresolved(index, move)

        classifier = ReferenceClassifier(index)
        incoming = [
            classifier.classify(r, move_set, target.qname)
            for r in classifier.find_references_of(move)
        ]
        outgoing = [
            classifier.classify(r, move_set, target.qname)
            for r in classifier.find_references_of(stay)
        ]
        new_names = self._moved_names(index, move, root, target, incoming)
        stay_names = self._stay_names(index, source, outgoing)

        imports = ImportPlanner(index)
        injector = FieldInjector(index, visibility, imports)
        for name in new_names.values():
            injector.reserve(target.qname, name)
        rewriter = ReferenceRewriter(index, injector, imports, source.qname, target.qname)

        # Phase 2: references into the moving methods.
        for cref in incoming:
            new_name = new_names[cref.callee]
            if cref.caller_moves:
                rewriter.rewrite_for_caller_moving(cref, new_name)
            else:
                rewriter.rewrite_for_caller_staying(cref, new_name)

        # Phase 3: moved code calling back into methods that stay.
        for cref in outgoing:
            new_name = stay_names.get(cref.callee, cref.ref.name)
            if cref.caller_moves:
                rewriter.rewrite_stay_call_from_moved(cref, new_name)
            elif new_name != cref.ref.name:
                rewriter.rename_reference(cref.ref, new_name, move_set)
        self._rename_stay_definitions(index, txn, stay_names, rewriter)

        # Phase 4: classes the moved code reaches through fields of the source.
        externals = classifier.find_external_types_referenced_in_methods(
            move, source.qname, target.qname
        )
        for external in externals:
            injector.inject_field_if_needed(target.qname, external)
        for method in move:
            rewriter.rewrite_external_field_calls(method, externals)
        renames = dict(stay_names)
        for method in move:
            rewriter.rewrite_receiver_accesses(method, move_set, renames)

        # Phase 5: names the moved bodies need in the target module.
        if source.module != target.module:
            self._plan_imports(index, classifier, imports, move, source, target)

        # Phase 6: copy the methods into the target and delete the originals.
        defs = sorted(
            (d for q in move for d in index.methods_named(q)), key=lambda d: d.start_line
        )
        self._rename_moved_definitions(txn, source, defs, new_names, rewriter)
        source_injected = any(owner == source.qname for owner, _ in injector.injected)
        plan = EditPlan(tuple(rewriter.edits))
        plan = plan.extend(injector.edits)
        plan = plan.extend(imports.edits())
        plan = plan.extend(self._transplant(txn, source, defs, target, rewriter))
        plan = plan.extend(self._delete_originals(txn, defs, source, source_injected))
        txn.apply(plan)

        report.rewritten = rewriter.rewritten
        report.warnings.extend(rewriter.warnings)
        report.conflicts.extend(rewriter.conflicts)
        report.fields_injected = [f"{owner}.{name}" for owner, name in injector.injected]
        report.imports_added = [f"{path}: {stmt}" for path, stmt in imports.added()]
        report.renamed.extend(
            (q, new_names[q]) for q in move if new_names[q] != index.methods[q].name
        )

        # Phase 7: drop fields nothing uses any more.
        touched = {source.qname, target.qname}
        touched.update(c.ref.caller_type for c in incoming + outgoing if c.ref.caller_type)
        self._collect_garbage_fields(txn, index, touched, injector)

        # Phase 8: remove the imports the move left unused.
        if self.config.optimize_imports:
            self._normalize_imports(txn)
        return move

    def _warn_unresolved(self, index: ProjectIndex, move: List[str]) -> None:
        """Flag dynamic calls that may have meant one of the moving methods."""
        names = {index.methods[q].name for q in move}
        for ref in index.references:
            if ref.target is None and ref.is_call and ref.name in names:
                self.report.warnings.append(
                    f"{ref.describe()}: call could not be resolved and may refer to a moved method"
                )

    def _moved_names(
        self,
        index: ProjectIndex,
        move: List[str],
        root: MethodDecl,
        target: TypeDecl,
        incoming: List[ClassifiedReference],
    ) -> Dict[str, str]:
        """Pick the name each moving method gets in the target class.

        A method still referenced from outside the target class after the move
        must be public.  The root otherwise keeps its name, and helpers used
        only by moved code become private when ``narrow_helpers`` is set.
        """
        names: Dict[str, str] = {}
        for qname in move:
            decl = index.methods[qname]
            external = any(
                c.callee == qname and not c.caller_moves and c.ref.caller_type != target.qname
                for c in incoming
            )
            if external:
                vis = Visibility.PUBLIC
            elif qname == root.qname or not self.config.narrow_helpers:
                vis = decl.visibility
            else:
                vis = Visibility.PRIVATE
            names[qname] = vis.apply_to_name(decl.name)

        if len(set(names.values())) != len(names):
            raise MoveError(f"moved methods would share a name in {target.qname}")
        for qname, name in names.items():
            if index.has_member(target.qname, name):
                raise MoveError(f"{target.qname} already has a member named {name!r}")
        return names

    def _stay_names(
        self, index: ProjectIndex, source: TypeDecl, outgoing: List[ClassifiedReference]
    ) -> Dict[str, str]:
        """Make the methods that moved code calls back into public."""
        names: Dict[str, str] = {}
        for cref in outgoing:
            if not cref.caller_moves or cref.callee in names:
                continue
            old = index.methods[cref.callee].name
            new = Visibility.PUBLIC.apply_to_name(old)
            if new == old:
                continue
            if index.has_member(source.qname, new):
                raise MoveError(
                    f"cannot make {cref.callee} public: {source.qname} already has {new!r}"
                )
            names[cref.callee] = new
        return names

    def _rename_definition(
        self,
        txn: Transaction,
        path: str,
        decl: MethodDecl,
        new_name: str,
        rewriter: ReferenceRewriter,
        in_moved_body: Optional[str],
    ) -> None:
        edits = [TextEdit(path, decl.name_start, decl.name_end, new_name)]
        # Property accessors refer to the property by name in their decorator.
        lines = txn.sources[path].splitlines()
        pattern = re.compile(_ACCESSOR_DECORATOR.format(name=re.escape(decl.name)))
        for line in range(decl.start_line, decl.name_start[0]):
            match = pattern.match(lines[line - 1])
            if match:
                edits.append(
                    TextEdit(path, (line, match.end(1)), (line, match.start(2)), new_name)
                )
        for edit in edits:
            if in_moved_body is not None:
                rewriter.body_edits.setdefault(in_moved_body, []).append(edit)
            else:
                rewriter.edits.append(edit)

    def _rename_stay_definitions(
        self,
        index: ProjectIndex,
        txn: Transaction,
        stay_names: Dict[str, str],
        rewriter: ReferenceRewriter,
    ) -> None:
        for qname, new_name in stay_names.items():
            for decl in index.methods_named(qname):
                path = index.types[decl.owner].path
                self._rename_definition(txn, path, decl, new_name, rewriter, None)
            self.report.renamed.append((qname, new_name))

    def _rename_moved_definitions(
        self,
        txn: Transaction,
        source: TypeDecl,
        defs: List[MethodDecl],
        new_names: Dict[str, str],
        rewriter: ReferenceRewriter,
    ) -> None:
        for decl in defs:
            new_name = new_names[decl.qname]
            if new_name != decl.name:
                self._rename_definition(txn, source.path, decl, new_name, rewriter, decl.qname)

    def _plan_imports(
        self,
        index: ProjectIndex,
        classifier: ReferenceClassifier,
        imports: ImportPlanner,
        move: List[str],
        source: TypeDecl,
        target: TypeDecl,
    ) -> None:
        source_info = index.by_path[source.path]
        for name in sorted(index.global_reads(move)):
            binding = source_info.bindings.get(name)
            if binding is None:
                continue
            if not imports.require_binding(target.path, binding, source.module):
                raise MoveError(
                    f"{target.path}: name {name!r} already means something else"
                )
        for method in move:
            for used in sorted(classifier.collect_used_types(method)):
                if imports.name_for_type(target.path, used) is None:
                    raise MoveError(
                        f"{target.path}: cannot import {used}, its name is already taken"
                    )

    def _transplant(
        self,
        txn: Transaction,
        source: TypeDecl,
        defs: List[MethodDecl],
        target: TypeDecl,
        rewriter: ReferenceRewriter,
    ) -> List[TextEdit]:
        """Return the insertion of every moving definition at the end of *target*."""
        if target.body_start_line is None:
            raise MoveError(f"{target.qname} has a one-line body; give it an indented body first")
        lines = txn.sources[source.path].splitlines(keepends=True)
        chunks = []
        for decl in defs:
            text = "".join(lines[decl.start_line - 1 : decl.end_line])
            if not text.endswith("\n"):
                text += "\n"
            shift = decl.start_line - 1
            local = []
            for edit in rewriter.body_edits.get(decl.qname, []):
                if decl.start_line <= edit.start[0] <= decl.end_line:
                    local.append(
                        TextEdit(
                            decl.qname,
                            (edit.start[0] - shift, edit.start[1]),
                            (edit.end[0] - shift, edit.end[1]),
                            edit.text,
                        )
                    )
            text = apply_to_text(text, local, decl.qname)
            chunks.append("\n" + _reindent(text, decl.indent, target.body_indent))
        return [TextEdit.insert_lines(target.path, target.end_line + 1, "".join(chunks))]

    def _delete_originals(
        self,
        txn: Transaction,
        defs: List[MethodDecl],
        source: TypeDecl,
        keep_body: bool,
    ) -> List[TextEdit]:
        """Return the deletion of every moving definition from *source*.

        Each definition goes together with the blank lines that follow it; at
        the end of the class the blank lines in front of it go instead.
        """
        lines = txn.sources[source.path].splitlines(keepends=True)
        deleted: Set[int] = set()
        for decl in defs:
            deleted.update(range(decl.start_line, decl.end_line + 1))
            line = decl.end_line + 1
            while line < source.end_line and _is_blank(lines, line):
                deleted.add(line)
                line += 1
        if source.end_line in deleted:
            line = source.end_line
            while line in deleted:
                line -= 1
            while line > source.start_line and _is_blank(lines, line):
                deleted.add(line)
                line -= 1

        edits = [TextEdit.delete_lines(source.path, first, last) for first, last in _runs(deleted)]
        if len(defs) >= source.statement_count and not keep_body:
            edits.append(
                TextEdit.insert_lines(
                    source.path, source.end_line + 1, f"{source.body_indent}pass\n"
                )
            )
        return edits

    def _collect_garbage_fields(
        self,
        txn: Transaction,
        before: ProjectIndex,
        touched: Set[str],
        injector: FieldInjector,
    ) -> None:
        """Delete declared fields of *touched* classes that the move left unused.

        A field goes when nothing uses its name any more and it either was in
        use before the move or was added by it.  Record-like classes only lose
        fields this move added.
        """
        after = txn.index()
        injected = set(injector.injected)
        edits: List[TextEdit] = []
        for qname in sorted(touched):
            decl = after.types.get(qname)
            if decl is None:
                continue
            lines = txn.sources[decl.path].splitlines(keepends=True)
            dead = []
            for f in decl.fields:
                if not f.in_body or is_dunder(f.name):
                    continue
                was_injected = (qname, f.name) in injected
                if decl.is_record and not was_injected:
                    continue
                if after.field_uses(f.name) > 0:
                    continue
                if was_injected or before.field_uses(f.name) > 0:
                    dead.append(f)
            for f in dead:
                last = f.end_line
                # A field opening the body takes the blank lines after it along.
                if f.start_line == decl.body_start_line or _is_blank(lines, f.start_line - 1):
                    while last + 1 < decl.end_line and _is_blank(lines, last + 1):
                        last += 1
                edits.append(TextEdit.delete_lines(decl.path, f.start_line, last))
                self.report.fields_removed.append(f"{qname}.{f.name}")
            if dead and len(dead) >= decl.statement_count:
                edits.append(
                    TextEdit.insert_lines(decl.path, decl.end_line + 1, f"{decl.body_indent}pass\n")
                )
        txn.apply(EditPlan(tuple(edits)))

    def _normalize_imports(self, txn: Transaction) -> None:
        edits: List[TextEdit] = []
        for path in txn.changed_files():
            newly_unused = unused_imports(txn.sources[path]) - unused_imports(txn.original[path])
            if not newly_unused:
                continue
            edits.extend(prune_imports(path, txn.sources[path], newly_unused))
            self.report.imports_removed.extend(f"{path}: {name}" for name in sorted(newly_unused))
        txn.apply(EditPlan(tuple(edits)))


def move_method(
    workspace: Workspace,
    root: str,
    source: str,
    target: str,
    field_visibility: Union[str, Visibility, None] = None,
    config: Optional[RelocatorConfig] = None,
) -> Set[str]:
    """Move *root* from *source* to *target* in *workspace*; see :class:`MethodMover`."""
    return MethodMover(workspace, config).move_method(root, source, target, field_visibility)
