"""Tests for relocator.workspace: loading, transactions and verification."""

import pytest

from relocator.edits import EditPlan, TextEdit
from relocator.errors import MoveError
from relocator.workspace import Workspace, _new_undefined_names, file_to_module


def _plan(*edits):
    return EditPlan(tuple(edits))


# ---------------------------------------------------------------------------
# file_to_module
# ---------------------------------------------------------------------------


def test_file_to_module():
    assert file_to_module("pkg/mod.py") == "pkg.mod"
    assert file_to_module("pkg/sub/__init__.py") == "pkg.sub"
    assert file_to_module("top.py") == "top"
    assert file_to_module("__init__.py") == ""


# ---------------------------------------------------------------------------
# _new_undefined_names
# ---------------------------------------------------------------------------


def test_new_undefined_names_ignores_existing():
    before = "x = y\n"
    after = "x = y\nz = w\n"
    assert _new_undefined_names(before, after) == {"w"}


def test_new_undefined_names_none_added():
    assert _new_undefined_names("a = 1\n", "a = 2\n") == set()


# ---------------------------------------------------------------------------
# Workspace.load
# ---------------------------------------------------------------------------


def test_load_skips_excluded_dirs(tmp_path):
    (tmp_path / "pkg").mkdir()
    (tmp_path / "pkg" / "mod.py").write_text("x = 1\n", encoding="utf-8")
    (tmp_path / ".venv").mkdir()
    (tmp_path / ".venv" / "lib.py").write_text("y = 1\n", encoding="utf-8")
    (tmp_path / "build").mkdir()
    (tmp_path / "build" / "gen.py").write_text("z = 1\n", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("not python\n", encoding="utf-8")

    ws = Workspace.load(tmp_path, exclude_dirs=["build"])

    assert set(ws.sources) == {"pkg/mod.py"}
    assert ws.module_names() == {"pkg/mod.py": "pkg.mod"}


def test_load_skips_undecodable_files(tmp_path):
    (tmp_path / "bad.py").write_bytes(b"\x80\x81\x82")
    (tmp_path / "good.py").write_text("x = 1\n", encoding="utf-8")
    ws = Workspace.load(tmp_path)
    assert set(ws.sources) == {"good.py"}


# ---------------------------------------------------------------------------
# Transaction
# ---------------------------------------------------------------------------


def test_transaction_commits_to_disk(tmp_path):
    (tmp_path / "a.py").write_text("x = 1\n", encoding="utf-8")
    ws = Workspace.load(tmp_path)
    with ws.transaction() as txn:
        txn.apply(_plan(TextEdit.replace_lines("a.py", 1, 1, "x = 2\n")))
        assert txn.changed_files() == ["a.py"]
    assert txn.committed
    assert ws.sources["a.py"] == "x = 2\n"
    assert (tmp_path / "a.py").read_text(encoding="utf-8") == "x = 2\n"


def test_transaction_rolls_back_on_exception(tmp_path):
    (tmp_path / "a.py").write_text("x = 1\n", encoding="utf-8")
    ws = Workspace.load(tmp_path)
    with pytest.raises(RuntimeError):
        with ws.transaction() as txn:
            txn.apply(_plan(TextEdit.replace_lines("a.py", 1, 1, "x = 2\n")))
            raise RuntimeError("boom")
    assert not txn.committed
    assert ws.sources["a.py"] == "x = 1\n"
    assert (tmp_path / "a.py").read_text(encoding="utf-8") == "x = 1\n"


def test_transaction_dry_run_does_not_write(tmp_path):
    (tmp_path / "a.py").write_text("x = 1\n", encoding="utf-8")
    ws = Workspace.load(tmp_path)
    with ws.transaction(dry_run=True) as txn:
        txn.apply(_plan(TextEdit.replace_lines("a.py", 1, 1, "x = 2\n")))
    assert not txn.committed
    assert txn.sources["a.py"] == "x = 2\n"
    assert ws.sources["a.py"] == "x = 1\n"
    assert (tmp_path / "a.py").read_text(encoding="utf-8") == "x = 1\n"


def test_in_memory_workspace_commit():
    ws = Workspace({"a.py": "x = 1\n"})
    with ws.transaction() as txn:
        txn.apply(_plan(TextEdit.insert_lines("a.py", 2, "y = x\n")))
    assert ws.sources["a.py"] == "x = 1\ny = x\n"


def test_empty_plan_is_not_recorded():
    ws = Workspace({"a.py": "x = 1\n"})
    with ws.transaction() as txn:
        txn.apply(EditPlan())
    assert txn.plans == []
    assert txn.changed_files() == []


def test_verify_rejects_syntax_error():
    ws = Workspace({"a.py": "x = 1\n"})
    with pytest.raises(MoveError, match="not valid Python"):
        with ws.transaction() as txn:
            txn.apply(_plan(TextEdit.replace_lines("a.py", 1, 1, "x = (\n")))
    assert ws.sources["a.py"] == "x = 1\n"


def test_verify_rejects_new_undefined_names():
    ws = Workspace({"a.py": "x = 1\n"})
    with pytest.raises(MoveError, match="undefined names: missing"):
        with ws.transaction() as txn:
            txn.apply(_plan(TextEdit.insert_lines("a.py", 2, "y = missing\n")))
    assert ws.sources["a.py"] == "x = 1\n"


def test_verify_undefined_names_can_be_disabled():
    ws = Workspace({"a.py": "x = 1\n"})
    with ws.transaction(verify_undefined_names=False) as txn:
        txn.apply(_plan(TextEdit.insert_lines("a.py", 2, "y = missing\n")))
    assert ws.sources["a.py"] == "x = 1\ny = missing\n"


def test_transaction_index_sees_working_copy():
    ws = Workspace({"m.py": "class A:\n    pass\n"})
    with ws.transaction() as txn:
        txn.apply(_plan(TextEdit.insert_lines("m.py", 3, "\n\nclass B:\n    pass\n")))
        assert "m.B" in txn.index().types
        assert "m.B" not in ws.index().types
