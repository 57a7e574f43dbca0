"""Tests for relocator.report.MoveReport."""

from relocator.report import MoveReport, unified_diff


def _filled() -> MoveReport:
    r = MoveReport(root="orders.Order.total", source="orders.Order", target="billing.Invoice")
    r.moved = ["orders.Order.total", "orders.Order._tax"]
    r.stayed = ["orders.Order.fee"]
    r.renamed = [("orders.Order._fee", "fee")]
    r.rewritten = 3
    r.fields_injected = ["billing.Invoice._order"]
    r.imports_added = ["billing.py: from typing import Final"]
    r.warnings = ["orders.py:9: uses super()"]
    r.conflicts = ["reports.py:4: order.total: caller has no instance to hold a field"]
    r.files_edited = ["billing.py", "orders.py"]
    r.lines_changed = 12
    return r


# ---------------------------------------------------------------------------
# unified_diff
# ---------------------------------------------------------------------------


def test_unified_diff_skips_unchanged_files():
    before = {"a.py": "x = 1\n", "b.py": "y = 1\n"}
    after = {"a.py": "x = 2\n", "b.py": "y = 1\n"}
    diff = unified_diff(before, after)
    assert diff.startswith("--- a/a.py\n+++ b/a.py\n")
    assert "-x = 1\n+x = 2\n" in diff
    assert "b.py" not in diff


def test_unified_diff_terminates_last_line():
    diff = unified_diff({"a.py": "x = 1"}, {"a.py": "x = 2"})
    assert diff.endswith("+x = 2\n")


# ---------------------------------------------------------------------------
# record_changes
# ---------------------------------------------------------------------------


def test_record_changes_counts_added_and_removed_lines():
    r = MoveReport()
    r.record_changes(
        {"a.py": "x = 1\ny = 2\n", "b.py": "z = 3\n"},
        {"a.py": "x = 1\n", "b.py": "z = 3\nw = 4\nv = 5\n"},
    )
    assert r.files_edited == ["a.py", "b.py"]
    assert r.lines_changed == 3
    assert r.diff


def test_record_changes_nothing_changed():
    r = MoveReport(files_edited=["stale.py"], lines_changed=9)
    r.record_changes({"a.py": "x\n"}, {"a.py": "x\n"})
    assert r.files_edited == []
    assert r.lines_changed == 0
    assert r.diff == ""


# ---------------------------------------------------------------------------
# format_summary
# ---------------------------------------------------------------------------


def test_helper_count():
    assert MoveReport().helper_count == 0
    assert _filled().helper_count == 1


def test_format_summary_full():
    lines = _filled().format_summary()
    assert lines[0] == "--- relocator summary ---"
    assert "moved: orders.Order.total -> billing.Invoice" in lines
    assert "  helpers moved along: 1" in lines
    assert "  stayed in orders.Order (1): orders.Order.fee" in lines
    assert "  renamed: orders.Order._fee -> fee" in lines
    assert "  call sites rewritten: 3" in lines
    assert "warnings (1):" in lines
    assert "conflicts, left unchanged (1):" in lines
    assert "files edited (2): billing.py, orders.py" in lines
    assert lines[-1] == "lines changed: 12"


def test_format_summary_minimal():
    lines = MoveReport(root="m.A.f", target="m.B").format_summary()
    assert "files edited: none" in lines
    assert not any(line.startswith("warnings") for line in lines)
    assert not any("stayed in" in line for line in lines)
