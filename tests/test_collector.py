"""Tests for the declaration collector and the IR it produces."""

from __future__ import annotations

import json

import pytest

from classbind import (
    IR,
    SHARED,
    DeclarationCollector,
    DeclarationError,
    DuplicateDeclaration,
    NameCollision,
    UnknownBase,
)
from classbind.types import ExclusivePointer, Primitive, PrimitiveKind


class TestRegistration:
    def test_fixture_shape(self, ir):
        assert list(ir.classes) == ["ClassB", "ClassBSub", "SharedClass", "ClassA"]
        assert list(ir.structs) == ["Vec", "Rect"]
        class_a = ir.classes["ClassA"]
        assert len(class_a.constructors) == 4
        assert [m.name for m in class_a.static_methods] == ["StaticMethod"]
        assert class_a.static_fields[0].initial == 7
        assert ir.classes["ClassBSub"].base == "ClassB"
        assert ir.classes["SharedClass"].holder == SHARED

    def test_members_apply_to_open_class(self):
        decls = DeclarationCollector()
        decls.open_class("A")
        decls.method("Run")
        decls.open_class("B")
        decls.method("Run", ("A*",), "int")
        ir = decls.finish()
        assert ir.classes["A"].methods[0].params == ()
        b_run = ir.classes["B"].methods[0]
        assert b_run.params == (ExclusivePointer("A"),)
        assert b_run.returns == Primitive(PrimitiveKind.INT32)

    def test_native_names(self):
        decls = DeclarationCollector()
        decls.open_class("Widget", native_name="ui::Widget")
        decls.constructor("int", native_name="Create")
        decls.method("size", (), "int", native_name="GetSize")
        cls = decls.finish().classes["Widget"]
        assert cls.native_name == "ui::Widget"
        assert cls.constructors[0].native_name == "Create"
        assert cls.methods[0].native_name == "GetSize"

    def test_overloads_with_distinct_signatures(self):
        decls = DeclarationCollector()
        decls.open_class("A")
        decls.method("Scale", ("int",))
        decls.method("Scale", ("double",))
        assert len(decls.finish().classes["A"].methods) == 2


class TestRegistrationErrors:
    def test_member_outside_class(self):
        decls = DeclarationCollector()
        with pytest.raises(DeclarationError):
            decls.method("Run")

    def test_member_after_struct(self):
        decls = DeclarationCollector()
        decls.open_class("A")
        decls.struct("Vec", {"x": "float"})
        with pytest.raises(DeclarationError):
            decls.field("y", "float")

    def test_duplicate_class(self):
        decls = DeclarationCollector()
        decls.open_class("A")
        with pytest.raises(DuplicateDeclaration):
            decls.struct("A", {})

    def test_duplicate_signature(self):
        decls = DeclarationCollector()
        decls.open_class("A")
        decls.constructor("int")
        with pytest.raises(DuplicateDeclaration):
            decls.constructor("int32")

    def test_duplicate_struct_field(self):
        decls = DeclarationCollector()
        with pytest.raises(DuplicateDeclaration):
            decls.struct("Vec", [("x", "float"), ("x", "float")])

    def test_unknown_base(self):
        decls = DeclarationCollector()
        with pytest.raises(UnknownBase):
            decls.open_class("Sub", base="Base")

    def test_class_cannot_derive_from_itself(self):
        decls = DeclarationCollector()
        decls.open_class("Loop")
        with pytest.raises(UnknownBase):
            decls.declare_base("Loop")

    def test_struct_base(self):
        decls = DeclarationCollector()
        decls.struct("Vec", {"x": "float"})
        with pytest.raises(UnknownBase, match="is a struct"):
            decls.open_class("A", base="Vec")

    def test_second_base(self):
        decls = DeclarationCollector()
        decls.open_class("A")
        decls.open_class("B")
        decls.open_class("C", base="A")
        with pytest.raises(DuplicateDeclaration):
            decls.declare_base("B")

    def test_field_method_collision(self):
        decls = DeclarationCollector()
        decls.open_class("A")
        decls.field("size", "int")
        with pytest.raises(NameCollision):
            decls.method("size")

    def test_method_field_collision(self):
        decls = DeclarationCollector()
        decls.open_class("A")
        decls.static_method("size")
        with pytest.raises(NameCollision):
            decls.static_field("size", "int")

    def test_bad_holder(self):
        decls = DeclarationCollector()
        with pytest.raises(DeclarationError):
            decls.open_class("A", holder="borrowed")

    def test_frozen_after_finish(self):
        decls = DeclarationCollector()
        decls.finish()
        with pytest.raises(DeclarationError):
            decls.open_class("A")


class TestEntries:
    ENTRIES = [
        {"kind": "struct", "name": "Point", "fields": [{"name": "x", "type": "int"}]},
        {"kind": "class", "name": "Shape"},
        {"kind": "method", "name": "Area", "returns": "double"},
        {"kind": "class", "name": "Circle"},
        {"kind": "base", "name": "Shape"},
        {"kind": "constructor", "params": ["double"]},
        {"kind": "field", "name": "radius", "type": "double"},
        {"kind": "static_field", "name": "count", "type": "int", "value": 3},
        {"kind": "static_method", "name": "Unit", "returns": "Circle*"},
        {"kind": "typedef", "name": "Visitor", "type": "fn(Shape&)"},
    ]

    def test_consume(self):
        decls = DeclarationCollector("shapes")
        decls.consume(self.ENTRIES)
        ir = decls.finish()
        circle = ir.classes["Circle"]
        assert circle.base == "Shape"
        assert circle.static_fields[0].initial == 3
        assert circle.static_methods[0].returns == ExclusivePointer("Circle")
        assert ir.typedefs == {"Visitor": "fn(Shape&)"}
        assert ir.is_subclass("Circle", "Shape")

    def test_unknown_kind(self):
        decls = DeclarationCollector()
        with pytest.raises(DeclarationError, match="unknown declaration kind"):
            decls.consume([{"kind": "enum", "name": "E"}])

    def test_missing_key(self):
        decls = DeclarationCollector()
        decls.consume([{"kind": "class", "name": "A"}])
        with pytest.raises(DeclarationError, match="missing 'type'"):
            decls.consume([{"kind": "field", "name": "x"}])

    def test_ir_load(self, tmp_path):
        path = tmp_path / "decls.json"
        path.write_text(json.dumps({"module": "shapes", "prefix": "shp_", "decls": self.ENTRIES}))
        ir = IR.load(str(path))
        assert ir.module == "shapes"
        assert ir.prefix == "shp_"
        assert "Circle" in ir.classes


class TestIRQueries:
    def test_ancestors(self, ir):
        assert ir.ancestors("ClassBSub") == ["ClassB"]
        assert ir.ancestors("ClassB") == []

    def test_method_table_includes_inherited(self, ir):
        table = ir.method_table("ClassBSub")
        assert set(table) == {"Foo", "Bar"}
        assert table["Foo"].owner == "ClassB"

    def test_static_table(self, ir):
        assert set(ir.static_table("ClassA")) == {"StaticMethod"}

    def test_struct_order_puts_dependencies_first(self):
        decls = DeclarationCollector()
        decls.struct("Rect", {"min": "Vec", "max": "Vec"})
        decls.struct("Vec", {"x": "float"})
        ir = decls.finish()
        assert [s.name for s in ir.struct_order()] == ["Vec", "Rect"]
