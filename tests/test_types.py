"""Tests for the type model: spelling parser, resolution and conversion ranking."""

from __future__ import annotations

import pytest

from classbind import DeclarationCollector, TypeModel, UnmappableType, parse_type
from classbind.types import (
    BorrowedReference,
    Callback,
    ExclusivePointer,
    Match,
    Primitive,
    PrimitiveKind,
    PrimitiveSequence,
    SharedHandle,
    Strategy,
    StructByValue,
    host_int_kind,
    is_writable_field,
    primitive_match,
    strategy_of,
)


INT32 = Primitive(PrimitiveKind.INT32)


# ---- Spelling parser ----


class TestParseType:
    @pytest.mark.parametrize(
        "spelling, kind",
        [
            ("int", PrimitiveKind.INT32),
            ("unsigned int", PrimitiveKind.UINT32),
            ("long long", PrimitiveKind.INT64),
            ("uint8_t", PrimitiveKind.UINT8),
            ("float", PrimitiveKind.FLOAT32),
            ("double", PrimitiveKind.FLOAT64),
            ("bool", PrimitiveKind.BOOL),
            ("const char *", PrimitiveKind.STRING),
            ("const std::string&", PrimitiveKind.STRING),
            ("float64", PrimitiveKind.FLOAT64),
        ],
    )
    def test_primitives(self, spelling, kind):
        assert parse_type(spelling) == Primitive(kind)

    def test_pointer(self):
        assert parse_type("ClassB*") == ExclusivePointer("ClassB")
        assert parse_type("const ClassB *") == ExclusivePointer("ClassB")

    def test_nullable_pointer(self):
        assert parse_type("ClassB*?") == ExclusivePointer("ClassB", nullable=True)

    def test_shared(self):
        assert parse_type("std::shared_ptr<SharedClass>") == SharedHandle("SharedClass")
        assert parse_type("shared<SharedClass>?") == SharedHandle("SharedClass", nullable=True)

    def test_reference(self):
        assert parse_type("ClassB&") == BorrowedReference("ClassB")
        assert parse_type("const Vec &") == BorrowedReference("Vec", const=True)

    def test_struct_by_value(self):
        assert parse_type("Vec") == StructByValue("Vec")

    def test_callback(self):
        assert parse_type("fn(int, float) -> int") == Callback(
            (INT32, Primitive(PrimitiveKind.FLOAT32)), INT32
        )
        assert parse_type("fn()") == Callback(())

    def test_std_function(self):
        assert parse_type("std::function<int(int)>") == Callback((INT32,), INT32)
        assert parse_type("std::function<void(void)>") == Callback(())

    def test_sequences(self):
        assert parse_type("float[]") == PrimitiveSequence(PrimitiveKind.FLOAT32)
        assert parse_type("std::vector<int>") == PrimitiveSequence(PrimitiveKind.INT32)

    @pytest.mark.parametrize(
        "spelling",
        ["", "int*", "int&", "std::string[]", "int?", "Vec?", "fn(int) int", "a b c"],
    )
    def test_unparseable(self, spelling):
        with pytest.raises(UnmappableType):
            parse_type(spelling)

    def test_str_round_trip(self):
        for spelling in ["int32", "ClassB*?", "shared<S>", "const Vec&", "fn(int32) -> float64", "uint8[]"]:
            assert str(parse_type(spelling)) == spelling


class TestStrategy:
    def test_every_variant_has_a_strategy(self):
        assert strategy_of(INT32) is Strategy.VALUE
        assert strategy_of(StructByValue("Vec")) is Strategy.RECORD
        assert strategy_of(ExclusivePointer("A")) is Strategy.EXCLUSIVE
        assert strategy_of(SharedHandle("A")) is Strategy.SHARED
        assert strategy_of(BorrowedReference("A")) is Strategy.BORROWED
        assert strategy_of(Callback(())) is Strategy.CALLBACK
        assert strategy_of(PrimitiveSequence(PrimitiveKind.BOOL)) is Strategy.SEQUENCE

    def test_unknown_type(self):
        with pytest.raises(UnmappableType):
            strategy_of("int")

    def test_reference_fields_are_read_only(self):
        assert not is_writable_field(BorrowedReference("A"))
        assert is_writable_field(ExclusivePointer("A"))


# ---- Resolution ----


def collect(build):
    decls = DeclarationCollector("t")
    build(decls)
    return decls.finish()


class TestResolve:
    def test_fixture_resolves(self, ir):
        resolved = TypeModel(ir).resolve_ir()
        ctor = resolved.classes["ClassA"].constructors[3]
        assert ctor.params == (Callback((INT32,), INT32),)

    def test_const_struct_reference_becomes_value(self, resolved):
        set_vec = [m for m in resolved.classes["ClassA"].methods if m.name == "SetVec"][0]
        assert set_vec.params == (StructByValue("Vec"),)

    def test_undeclared_class(self):
        def build(d):
            d.open_class("A")
            d.method("Use", ("Missing*",))

        with pytest.raises(UnmappableType) as exc:
            TypeModel(collect(build)).resolve_ir()
        assert "A.Use (param 1)" in str(exc.value)

    def test_class_by_value(self):
        def build(d):
            d.open_class("A")
            d.open_class("B")
            d.method("Take", ("A",))

        with pytest.raises(UnmappableType, match="cannot cross by value"):
            TypeModel(collect(build)).resolve_ir()

    def test_mutable_struct_reference(self):
        def build(d):
            d.struct("Vec", {"x": "float"})
            d.open_class("A")
            d.method("Take", ("Vec&",))

        with pytest.raises(UnmappableType, match="mutable reference"):
            TypeModel(collect(build)).resolve_ir()

    def test_pointer_to_struct(self):
        def build(d):
            d.struct("Vec", {"x": "float"})
            d.open_class("A")
            d.method("Take", ("Vec*",))

        with pytest.raises(UnmappableType, match="no handle semantics"):
            TypeModel(collect(build)).resolve_ir()

    def test_callback_return_rejected(self):
        def build(d):
            d.open_class("A")
            d.method("Get", (), "fn(int) -> int")

        with pytest.raises(UnmappableType, match="only be passed as parameters"):
            TypeModel(collect(build)).resolve_ir()

    def test_nested_callback_rejected(self):
        def build(d):
            d.open_class("A")
            d.method("Take", ("fn(fn(int)) -> int",))

        with pytest.raises(UnmappableType):
            TypeModel(collect(build)).resolve_ir()

    def test_struct_field_must_be_value(self):
        def build(d):
            d.open_class("A")
            d.struct("Holder", {"a": "A*"})

        with pytest.raises(UnmappableType, match="struct fields"):
            TypeModel(collect(build)).resolve_ir()

    def test_struct_cycle(self):
        def build(d):
            d.typedef("OuterRef", "Outer")
            d.struct("Inner", {"outer": "OuterRef"})
            d.struct("Outer", {"inner": "Inner"})

        with pytest.raises(UnmappableType, match="contains itself"):
            TypeModel(collect(build)).resolve_ir()

    def test_typedef_to_class_pointer(self):
        def build(d):
            d.open_class("Widget")
            d.typedef("WidgetAlias", "Widget")
            d.open_class("A")
            d.method("Take", ("WidgetAlias*",))

        resolved = TypeModel(collect(build)).resolve_ir()
        assert resolved.classes["A"].methods[0].params == (ExclusivePointer("Widget"),)

    def test_typedef_cycle(self):
        def build(d):
            d.typedef("X", "Y")
            d.typedef("Y", "X")
            d.open_class("A")
            d.method("Take", ("X",))

        with pytest.raises(UnmappableType, match="typedef cycle"):
            TypeModel(collect(build)).resolve_ir()


class TestSpellings:
    def test_cpp_types(self, resolved):
        model = TypeModel(resolved)
        assert model.cpp_type(None) == "void"
        assert model.cpp_type(INT32) == "int32_t"
        assert model.cpp_type(ExclusivePointer("ClassB")) == "ClassB *"
        assert model.cpp_type(SharedHandle("SharedClass")) == "std::shared_ptr<SharedClass>"
        assert model.cpp_type(Callback((INT32,), INT32)) == "std::function<int32_t(int32_t)>"
        assert model.cpp_type(PrimitiveSequence(PrimitiveKind.FLOAT32)) == "std::vector<float>"

    def test_native_name(self):
        def build(d):
            d.open_class("Widget", native_name="ui::Widget")

        model = TypeModel(collect(build))
        assert model.cpp_type(BorrowedReference("Widget")) == "ui::Widget &"

    def test_py_annotations(self, resolved):
        model = TypeModel(resolved)
        assert model.py_annotation(None) == "None"
        assert model.py_annotation(Primitive(PrimitiveKind.UINT16)) == "int"
        assert model.py_annotation(Primitive(PrimitiveKind.STRING)) == "str"
        assert model.py_annotation(ExclusivePointer("ClassB", nullable=True)) == "ClassB | None"
        assert model.py_annotation(Callback((INT32,))) == "Callable[[int], None]"
        assert model.py_annotation(PrimitiveSequence(PrimitiveKind.FLOAT64)) == "list[float]"


# ---- Conversion ranking ----


class TestPrimitiveMatch:
    def test_exact(self):
        assert primitive_match(PrimitiveKind.INT32, PrimitiveKind.INT32) is Match.EXACT

    def test_integer_widening(self):
        assert primitive_match(PrimitiveKind.INT16, PrimitiveKind.INT64) is Match.WIDEN
        assert primitive_match(PrimitiveKind.UINT8, PrimitiveKind.INT16) is Match.WIDEN

    def test_integer_narrowing_by_value(self):
        assert primitive_match(PrimitiveKind.INT32, PrimitiveKind.UINT8, 200) is Match.WIDEN
        assert primitive_match(PrimitiveKind.INT32, PrimitiveKind.UINT8, 300) is None
        assert primitive_match(PrimitiveKind.INT32, PrimitiveKind.UINT32, -1) is None

    def test_integer_to_float(self):
        assert primitive_match(PrimitiveKind.INT64, PrimitiveKind.FLOAT32) is Match.WIDEN

    def test_float_conversions(self):
        assert primitive_match(PrimitiveKind.FLOAT64, PrimitiveKind.FLOAT32) is Match.WIDEN
        assert primitive_match(PrimitiveKind.FLOAT32, PrimitiveKind.INT32) is None

    def test_unrelated(self):
        assert primitive_match(PrimitiveKind.STRING, PrimitiveKind.INT32) is None
        assert primitive_match(PrimitiveKind.BOOL, PrimitiveKind.INT32) is None

    def test_host_int_kind(self):
        assert host_int_kind(5) is PrimitiveKind.INT32
        assert host_int_kind(-(2**31)) is PrimitiveKind.INT32
        assert host_int_kind(2**31) is PrimitiveKind.INT64
        assert host_int_kind(2**63) is PrimitiveKind.UINT64
        with pytest.raises(OverflowError):
            host_int_kind(2**64)
