"""Tests for relocator.symbols: collection, name resolution and the reference index."""

import libcst as cst

from relocator.symbols.collector import (
    _annotation_chain,
    _resolve_relative_module,
    collect_module,
)
from relocator.symbols.index import ProjectIndex

from .helpers import _index

_MODELS = """
    from typing import Optional


    class Order:
        \"\"\"An order.\"\"\"

        RATE = 0.1
        customer: Optional["Customer"] = None

        def __init__(self, items):
            self.items = items

        def total(self):
            return sum(self.items) + self._tax()

        # Tax on the whole order.
        def _tax(self):
            return sum(self.items) * self.RATE

        @staticmethod
        def create():
            return Order([])

        @property
        def size(self):
            return len(self.items)


    class Customer:
        pass
"""

_BILLING = """
    from models import Order


    class Invoice:
        order: Order

        def amount(self):
            return self.order.total()

        def describe(self, other: Order):
            return other.size


    def build():
        return Order.create()
"""


def _project():
    return _index(models=_MODELS, billing=_BILLING)


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------


def test_resolve_relative_module():
    assert _resolve_relative_module("pkg.api", False, 1, "service") == "pkg.service"
    assert _resolve_relative_module("pkg.sub.api", False, 2, "utils") == "pkg.utils"
    assert _resolve_relative_module("pkg", True, 1, "models") == "pkg.models"
    assert _resolve_relative_module("pkg.api", False, 1, "") == "pkg"


def _chain(text):
    return _annotation_chain(cst.parse_expression(text))


def test_annotation_chain_unwraps():
    assert _chain("Order") == ("Order",)
    assert _chain("models.Order") == ("models", "Order")
    assert _chain("Optional[Order]") == ("Order",)
    assert _chain("typing.Final[Order]") == ("Order",)
    assert _chain("Order | None") == ("Order",)
    assert _chain("None | Order") == ("Order",)
    assert _chain("Union[Order, None]") == ("Order",)
    assert _chain("'Order'") == ("Order",)
    assert _chain("ClassVar['models.Order']") == ("models", "Order")


def test_annotation_chain_rejects_containers():
    assert _chain("List[Order]") is None
    assert _chain("Union[Order, Customer]") is None
    assert _chain("None") is None
    assert _chain("'not valid ('") is None


# ---------------------------------------------------------------------------
# collect_module
# ---------------------------------------------------------------------------


def test_collect_types_and_methods():
    index = _project()
    order = index.types["models.Order"]
    assert [m.name for m in order.methods] == ["__init__", "total", "_tax", "create", "size"]
    assert order.docstring_end_line == 5
    assert order.body_start_line == 5
    assert order.body_indent == "    "
    assert order.statement_count == 8
    assert not order.is_record

    create = order.method("create")
    assert create.kind == "staticmethod"
    assert create.receiver is None
    size = order.method("size")
    assert size.kind == "property"
    assert size.receiver == "self"


def test_method_span_includes_attached_comment():
    index = _project()
    tax = index.methods["models.Order._tax"]
    assert tax.start_line == 16
    assert tax.end_line == 18
    assert tax.name_start == (17, 8)
    assert tax.name_end == (17, 12)
    assert tax.indent == "    "


def test_collect_fields():
    index = _project()
    order = index.types["models.Order"]
    rate = order.field_named("RATE")
    assert rate.is_static and rate.in_body
    customer = order.field_named("customer")
    assert not customer.is_static and customer.in_body
    assert customer.type_qname == "models.Customer"
    items = order.field_named("items")
    assert items is not None and not items.in_body


def test_record_like_class():
    index = _index(
        m="""
        from dataclasses import dataclass
        from typing import NamedTuple


        @dataclass
        class Point:
            x: int


        class Pair(NamedTuple):
            a: int
        """
    )
    assert index.types["m.Point"].is_record
    assert index.types["m.Pair"].is_record


def test_one_line_class_has_no_body_start():
    index = _index(m="class A: pass\n")
    assert index.types["m.A"].body_start_line is None


def test_bindings_and_import_anchor():
    info = collect_module(
        "pkg/api.py",
        "pkg.api",
        '"""Doc."""\nimport os.path\nfrom . import models as m\nfrom .svc import Tax\nX = 1\n',
    )
    assert info.bindings["os"].target == "os"
    assert info.bindings["os"].module == "os.path"
    assert info.bindings["m"].target == "pkg.models"
    assert info.bindings["Tax"].target == "pkg.svc.Tax"
    assert info.bindings["X"].kind == "defined"
    assert info.import_anchor_line == 4
    assert info.anchor_is_import


def test_import_anchor_after_docstring():
    info = collect_module("m.py", "m", '"""Doc."""\n\nclass A:\n    pass\n')
    assert info.import_anchor_line == 1
    assert not info.anchor_is_import


# ---------------------------------------------------------------------------
# references
# ---------------------------------------------------------------------------


def test_self_call_reference():
    index = _project()
    (ref,) = index.references_to("models.Order._tax")
    assert ref.caller == "models.Order.total"
    assert ref.caller_type == "models.Order"
    assert ref.qualifier is None
    assert ref.is_call
    assert ref.receiver_chain == ("self",)


def test_reference_through_typed_field():
    index = _project()
    (ref,) = index.references_to("models.Order.total")
    assert ref.path == "billing.py"
    assert ref.caller == "billing.Invoice.amount"
    assert ref.caller_type == "billing.Invoice"
    assert ref.qualifier == "self.order"
    assert ref.start == (8, 15)
    assert ref.end == (8, 31)
    assert ref.name_start == (8, 26)


def test_reference_through_annotated_parameter_is_not_a_call():
    index = _project()
    (ref,) = index.references_to("models.Order.size")
    assert ref.caller == "billing.Invoice.describe"
    assert ref.qualifier == "other"
    assert not ref.is_call


def test_reference_through_class_from_module_function():
    index = _project()
    (ref,) = index.references_to("models.Order.create")
    assert ref.caller == "billing.build"
    assert ref.caller_type is None
    assert index.receiver_is_class(ref)


def test_constructor_receiver():
    index = _index(
        m="""
        class A:
            def f(self):
                return 1


        def g():
            return A().f()
        """
    )
    (ref,) = index.references_to("m.A.f")
    assert ref.ctor_chain == ("A",)
    assert not ref.rewritable


def test_unresolved_reference_has_no_target():
    index = _index(
        m="""
        def g(thing):
            return thing.total()
        """
    )
    (ref,) = index.references
    assert ref.target is None


def test_inherited_method_resolves_to_base():
    index = _index(
        m="""
        class Base:
            def audit(self):
                return None


        class Child(Base):
            def run(self):
                return self.audit()
        """
    )
    assert index.ancestors("m.Child") == ["m.Base"]
    (ref,) = index.references_to("m.Base.audit")
    assert ref.caller == "m.Child.run"


def test_field_shadows_method_lookup():
    index = _index(
        m="""
        class A:
            total: int

            def use(self):
                return self.total
        """
    )
    assert index.find_method("m.A", "total") is None


def test_caller_scope_reads():
    index = _project()
    create = index.callers["models.Order.create"]
    assert "Order" in create.global_reads
    amount = index.callers["billing.Invoice.amount"]
    assert amount.global_reads == set()
    assert index.global_reads(["models.Order.create", "billing.build"]) == {"Order"}


def test_bare_receiver_use_and_super():
    index = _index(
        m="""
        class A:
            def f(self):
                register(self)
                return super().f()
        """
    )
    scope = index.callers["m.A.f"]
    assert scope.bare_receiver_uses == [((3, 17), (3, 21))]
    assert scope.uses_super


def test_field_uses_count_attribute_accesses():
    index = _project()
    assert index.field_uses("items") >= 4
    assert index.field_uses("customer") == 0


# ---------------------------------------------------------------------------
# resolution across modules
# ---------------------------------------------------------------------------


def test_canonical_follows_reexport():
    index = ProjectIndex.build(
        {
            "pkg/__init__.py": "from .models import Order\n",
            "pkg/models.py": "class Order:\n    pass\n",
            "app.py": "from pkg import Order\n",
        },
        {"pkg/__init__.py": "pkg", "pkg/models.py": "pkg.models", "app.py": "app"},
    )
    assert index.canonical("pkg.Order") == "pkg.models.Order"
    assert index.resolve_name("app", ("Order",)) == "pkg.models.Order"
    assert index.find_type("pkg.Order").name == "Order"


def test_parse_errors_are_collected():
    index = _index(good="x = 1\n", broken="def f(:\n")
    assert "broken.py" in index.parse_errors
    assert "good" in index.modules


def test_methods_named_returns_property_and_setter():
    index = _index(
        m="""
        class A:
            @property
            def value(self):
                return self._value

            @value.setter
            def value(self, v):
                self._value = v
        """
    )
    defs = index.methods_named("m.A.value")
    assert len(defs) == 2
    assert [d.kind for d in defs] == ["property", "property"]
