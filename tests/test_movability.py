"""Tests for the call graph and the movable-group analysis."""

from relocator.analysis.call_graph import build_call_graph
from relocator.analysis.movability import collect_group, compute_group, partition

from .helpers import _index

_SERVICE = """
    class Service:
        def run(self):
            return self.a()

        def a(self):
            return self.b()

        def b(self):
            return self.a()

        def unrelated(self):
            return 1
"""

_CLIENT_OF_B = """
    from svc import Service


    class Client:
        def go(self, s: Service):
            return s.b()
"""


# ---------------------------------------------------------------------------
# build_call_graph
# ---------------------------------------------------------------------------


def test_call_graph_has_intra_class_edges_only():
    index = _index(
        m="""
        class Helper:
            def help(self):
                return 1


        class A:
            helper: Helper

            def f(self):
                self.g()
                return self.helper.help()

            def g(self):
                return self.g()

            def h(self, thing):
                return thing.f()
        """
    )
    graph = build_call_graph(index, "m.A")
    assert list(graph) == ["m.A.f", "m.A.g", "m.A.h"]
    assert graph["m.A.f"] == {"m.A.g"}
    assert graph["m.A.g"] == {"m.A.g"}  # recursion keeps its self-loop
    assert graph["m.A.h"] == set()  # unresolved receiver adds no edge


def test_call_graph_ignores_inherited_methods():
    index = _index(
        m="""
        class Base:
            def audit(self):
                return 1


        class Child(Base):
            def run(self):
                return self.audit()
        """
    )
    assert build_call_graph(index, "m.Child") == {"m.Child.run": set()}


# ---------------------------------------------------------------------------
# collect_group
# ---------------------------------------------------------------------------


def test_collect_group_follows_cycles_in_declaration_order():
    graph = {"x": set(), "b": {"a"}, "r": {"a"}, "a": {"b"}}
    assert collect_group(graph, "r") == ["b", "r", "a"]


def test_collect_group_root_only():
    assert collect_group({"r": set(), "x": {"r"}}, "r") == ["r"]


# ---------------------------------------------------------------------------
# compute_group
# ---------------------------------------------------------------------------


def test_group_is_reachable_closure():
    index = _index(svc=_SERVICE)
    group = compute_group(index, "svc.Service.run")
    assert set(group) == {"svc.Service.run", "svc.Service.a", "svc.Service.b"}


def test_cycle_without_external_callers_is_movable():
    index = _index(svc=_SERVICE)
    group = compute_group(index, "svc.Service.run")
    assert group == {
        "svc.Service.run": True,
        "svc.Service.a": True,
        "svc.Service.b": True,
    }


def test_external_caller_in_cycle_flips_both():
    index = _index(svc=_SERVICE, client=_CLIENT_OF_B)
    group = compute_group(index, "svc.Service.run")
    assert group == {
        "svc.Service.run": True,
        "svc.Service.a": False,
        "svc.Service.b": False,
    }


def test_root_is_forced_movable():
    index = _index(
        svc=_SERVICE,
        client="""
        from svc import Service


        class Client:
            def go(self, s: Service):
                return s.run()
        """,
    )
    group = compute_group(index, "svc.Service.run")
    assert group["svc.Service.run"] is True
    assert group["svc.Service.a"] is True


def test_helper_called_by_non_group_method_stays():
    index = _index(
        m="""
        class Order:
            def total(self):
                return self.tax()

            def tax(self):
                return 1

            def summary(self):
                return self.tax()
        """
    )
    group = compute_group(index, "m.Order.total")
    assert group == {"m.Order.total": True, "m.Order.tax": False}


def test_falsity_propagates_down_the_chain():
    index = _index(
        m="""
        class A:
            def root(self):
                return self.mid()

            def mid(self):
                return self.leaf()

            def leaf(self):
                return 1

            def other(self):
                return self.mid()
        """
    )
    group = compute_group(index, "m.A.root")
    # mid is called from outside the group, so leaf (called only by mid) stays too
    assert group == {"m.A.root": True, "m.A.mid": False, "m.A.leaf": False}


def test_module_level_caller_blocks_movability():
    index = _index(
        m="""
        class A:
            def root(self):
                return self.helper()

            def helper(self):
                return 1


        def use(a: A):
            return a.helper()
        """
    )
    assert compute_group(index, "m.A.root")["m.A.helper"] is False


# ---------------------------------------------------------------------------
# partition
# ---------------------------------------------------------------------------


def test_partition_is_disjoint_and_complete():
    index = _index(svc=_SERVICE, client=_CLIENT_OF_B)
    group = compute_group(index, "svc.Service.run")
    move, stay = partition(group)
    assert move == ["svc.Service.run"]
    assert stay == ["svc.Service.a", "svc.Service.b"]
    assert not set(move) & set(stay)
    assert set(move) | set(stay) == set(group)


def test_movable_methods_have_no_outside_callers():
    index = _index(svc=_SERVICE)
    move, _ = partition(compute_group(index, "svc.Service.run"))
    assert len(move) == 3
    for method in move:
        if method == "svc.Service.run":
            continue
        for ref in index.references_to(method):
            assert ref.caller in move
            assert ref.caller_type == "svc.Service"
