"""Tests for overload grouping and call-arrival candidate selection."""

from __future__ import annotations

import pytest

from classbind import AmbiguousOverload, Callable, HandleTable, InvalidHandle, NoMatchingOverload
from classbind.codec import CallbackRef, HandleRef, RecordValue, SequenceValue, Value
from classbind.overload import OverloadSet, constructor_set, group_overloads
from classbind.types import PrimitiveKind, parse_type


def func(name, *params):
    return Callable(name, tuple(parse_type(p) for p in params))


def i32(value):
    return Value(PrimitiveKind.INT32, value)


def f64(value):
    return Value(PrimitiveKind.FLOAT64, value)


@pytest.fixture
def table():
    return HandleTable()


@pytest.fixture
def select(ir, table):
    def run(overloads, args):
        return overloads.select(args, table.describe, ir.is_subclass)

    return run


class TestGrouping:
    def test_groups_by_name_and_orders_by_arity(self):
        groups = group_overloads("A", [func("f", "int", "int"), func("g"), func("f", "int"), func("f", "double")])
        assert list(groups) == ["f", "g"]
        assert [c.signature() for c in groups["f"].candidates] == ["f(int32)", "f(float64)", "f(int32, int32)"]
        assert groups["f"].key == "A.f"
        assert groups["f"].min_arity == 1
        assert groups["f"].max_arity == 2

    def test_constructor_set(self):
        ctors = constructor_set("A", [Callable("A", (parse_type("int"),), is_static=True), Callable("A", is_static=True)])
        assert ctors.key == "A.A"
        assert [c.arity for c in ctors.candidates] == [0, 1]

    def test_opaque_class_has_no_constructor_set(self):
        assert constructor_set("A", []) is None


class TestSelect:
    def test_by_arity(self, select):
        group = OverloadSet("A", "A", (func("A"), func("A", "int"), func("A", "int", "ClassB*")))
        assert select(group, [])[0] == 0
        assert select(group, [i32(1)])[0] == 1

    def test_handle_argument(self, select, table):
        b = table.register(object(), "exclusive", "ClassB")
        group = OverloadSet("A", "A", (func("A", "int"), func("A", "int", "ClassB*")))
        index, cand = select(group, [i32(1), HandleRef(b)])
        assert index == 1
        assert cand.arity == 2

    def test_exact_beats_widening(self, select):
        group = OverloadSet("A", "Scale", (func("Scale", "double"), func("Scale", "int")))
        assert select(group, [i32(3)])[0] == 1
        assert select(group, [f64(3.0)])[0] == 0

    def test_ambiguous_widening(self, select):
        group = OverloadSet("A", "f", (func("f", "int64"), func("f", "double")))
        with pytest.raises(AmbiguousOverload) as exc:
            select(group, [i32(3)])
        assert "f(int64), f(float64)" in str(exc.value)

    def test_no_match_lists_candidates(self, select):
        group = OverloadSet("A", "A", (func("A", "int"), func("A", "fn(int) -> int")))
        with pytest.raises(NoMatchingOverload) as exc:
            select(group, [Value(PrimitiveKind.STRING, "x")])
        message = str(exc.value)
        assert "A.A" in message
        assert "(string)" in message
        assert "A(int32)" in message

    def test_subclass_handle_widens(self, select, table):
        sub = table.register(object(), "exclusive", "ClassBSub")
        group = OverloadSet("A", "f", (func("f", "ClassB&"),))
        assert select(group, [HandleRef(sub)])[0] == 0

    def test_subclass_prefers_exact_class(self, select, table):
        sub = table.register(object(), "exclusive", "ClassBSub")
        group = OverloadSet("A", "f", (func("f", "ClassB*"), func("f", "ClassBSub*")))
        assert select(group, [HandleRef(sub)])[0] == 1

    def test_unrelated_class(self, select, table):
        a = table.register(object(), "exclusive", "ClassA")
        group = OverloadSet("A", "f", (func("f", "ClassB*"),))
        with pytest.raises(NoMatchingOverload):
            select(group, [HandleRef(a)])

    def test_null_handle(self, select):
        group = OverloadSet("A", "f", (func("f", "ClassB*?"),))
        assert select(group, [HandleRef(0)])[0] == 0
        strict = OverloadSet("A", "f", (func("f", "ClassB*"),))
        with pytest.raises(NoMatchingOverload):
            select(strict, [HandleRef(0)])

    def test_shared_parameter_needs_shared_handle(self, select, table):
        exclusive = table.register(object(), "exclusive", "SharedClass")
        shared = table.register(object(), "shared", "SharedClass")
        group = OverloadSet("A", "f", (func("f", "shared<SharedClass>"),))
        assert select(group, [HandleRef(shared)])[0] == 0
        with pytest.raises(NoMatchingOverload):
            select(group, [HandleRef(exclusive)])

    def test_released_handle_fails_before_matching(self, select, table):
        b = table.register(object(), "exclusive", "ClassB")
        table.release(b)
        group = OverloadSet("A", "f", (func("f", "int"),))
        with pytest.raises(InvalidHandle):
            select(group, [HandleRef(b)])

    def test_callback_argument(self, select):
        group = OverloadSet("A", "f", (func("f", "int"), func("f", "fn(int) -> int")))
        assert select(group, [CallbackRef(1)])[0] == 1

    def test_record_argument(self, select):
        group = OverloadSet("A", "f", (func("f", "Vec"), func("f", "Rect")))
        assert select(group, [RecordValue("Rect", {})])[0] == 1

    def test_sequence_argument(self, select):
        group = OverloadSet("A", "f", (func("f", "float[]"),))
        assert select(group, [SequenceValue(PrimitiveKind.INT32, (1, 2))])[0] == 0
        with pytest.raises(NoMatchingOverload):
            select(group, [SequenceValue(PrimitiveKind.STRING, ("a",))])

    def test_narrow_integer_by_value(self, select):
        group = OverloadSet("A", "f", (func("f", "uint8"),))
        assert select(group, [i32(255)])[0] == 0
        with pytest.raises(NoMatchingOverload):
            select(group, [i32(256)])
