"""
Struct binding generation module

Generates boundary record codec functions for value structs. Records are
written field by field in declaration order; nested structs reuse the
codec of the inner struct, so structs are emitted dependencies first.
"""

from typing import TYPE_CHECKING

from .codegen import CodeGen, Symbols
from .types import Primitive, StructByValue

if TYPE_CHECKING:
    from .ir import IR, StructDecl, Field


class StructGenerator:
    """Generates record write/read functions for structs"""

    def __init__(self, ir: 'IR', symbols: Symbols):
        self.ir = ir
        self.symbols = symbols

    def generate_all(self, gen: CodeGen):
        for struct in self.ir.struct_order():
            self.generate_writer(struct, gen)
            self.generate_reader(struct, gen)

    def generate_declarations(self, gen: CodeGen):
        """Forward declarations, so thunks and trampolines can use any record"""
        for struct in self.ir.struct_order():
            gen.line(f'static void {self.symbols.record_writer(struct.name)}'
                     f'(classbind::Writer &w, const {struct.name} &v);')
            gen.line(f'static {struct.name} {self.symbols.record_reader(struct.name)}(classbind::Reader &r);')
        gen.line()

    def generate_writer(self, struct: 'StructDecl', gen: CodeGen):
        with gen.block(f'static void {self.symbols.record_writer(struct.name)}'
                       f'(classbind::Writer &w, const {struct.name} &v) {{'):
            if not struct.fields:
                gen.line('(void)w; (void)v;')
            for fld in struct.fields:
                gen.line(self._write_field(fld))
        gen.line()

    def generate_reader(self, struct: 'StructDecl', gen: CodeGen):
        with gen.block(f'static {struct.name} {self.symbols.record_reader(struct.name)}(classbind::Reader &r) {{'):
            if not struct.fields:
                gen.line('(void)r;')
            gen.line(f'{struct.name} v{{}};')
            for fld in struct.fields:
                gen.line(self._read_field(fld))
            gen.line('return v;')
        gen.line()

    def _write_field(self, fld: 'Field') -> str:
        if isinstance(fld.type, StructByValue):
            return f'{self.symbols.record_writer(fld.type.name)}(w, v.{fld.name});'
        assert isinstance(fld.type, Primitive)
        return f'w.put_{fld.type.kind.value}(v.{fld.name});'

    def _read_field(self, fld: 'Field') -> str:
        if isinstance(fld.type, StructByValue):
            return f'v.{fld.name} = {self.symbols.record_reader(fld.type.name)}(r);'
        return f'v.{fld.name} = r.get_{fld.type.kind.value}();'
