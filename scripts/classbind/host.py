"""
Host module generation

Generates the Python module the host imports: one dataclass record per
struct, one wrapper class per class (mirroring the inheritance chain) and an
attach() function binding the wrappers to a HostSession.
"""

from typing import TYPE_CHECKING

from .codegen import CodeGen, Symbols, py_name
from .overload import constructor_set
from .types import Primitive, StructByValue, PrimitiveKind, is_writable_field

if TYPE_CHECKING:
    from .ir import IR, ClassDecl, StructDecl, Field
    from .overload import OverloadSet


class HostGenerator:
    """Generates the host wrapper module"""

    def __init__(self, ir: 'IR', symbols: Symbols):
        self.ir = ir
        self.symbols = symbols

    def generate(self) -> str:
        gen = CodeGen()
        gen.line('"""')
        gen.line(f'Host wrappers for {self.ir.module}')
        gen.line()
        if self.ir.comment:
            gen.line(self.ir.comment)
            gen.line()
        gen.line('Auto-generated by classbind, do not edit.')
        gen.line('"""')
        gen.line()
        if self.ir.structs:
            nested = any(isinstance(f.type, StructByValue)
                         for s in self.ir.structs.values() for f in s.fields)
            names = 'dataclass as _dataclass, field as _field' if nested else 'dataclass as _dataclass'
            gen.line(f'from dataclasses import {names}')
            gen.line()
        gen.line('from classbind import proxy as _proxy')
        gen.line()
        gen.line(f"_binding = _proxy.Binding('{self.ir.module}', '{self.ir.prefix}')")
        gen.line()

        for struct in self.ir.struct_order():
            gen.line()
            self.generate_record(struct, gen)
        for cls in self.ir.class_order():
            gen.line()
            self.generate_class(cls, gen)

        gen.line()
        with gen.block('def attach(session):', ''):
            gen.line('"""Bind the wrappers of this module to a HostSession"""')
            gen.line('_binding.attach(session)')
        return gen.output()

    # --------------------------------------------------------------------------
    # Records
    # --------------------------------------------------------------------------

    def generate_record(self, struct: 'StructDecl', gen: CodeGen):
        spellings = ', '.join(f"{f.name}='{f.type}'" for f in struct.fields)
        args = f"'{struct.name}', {spellings}" if spellings else f"'{struct.name}'"
        gen.line(f'@_binding.record({args})')
        gen.line('@_dataclass')
        with gen.block(f'class {struct.name}(_proxy.HostRecord):', ''):
            if not struct.fields:
                gen.line('pass')
            for fld in struct.fields:
                gen.line(f'{fld.name}: {self._annotation(fld)} = {self._default(fld)}')
        gen.line()

    @staticmethod
    def _annotation(fld: 'Field') -> str:
        if isinstance(fld.type, StructByValue):
            return fld.type.name
        kind = fld.type.kind
        if kind.is_integer:
            return 'int'
        if kind.is_float:
            return 'float'
        return 'bool' if kind is PrimitiveKind.BOOL else 'str'

    @staticmethod
    def _default(fld: 'Field') -> str:
        if isinstance(fld.type, StructByValue):
            return f'_field(default_factory={fld.type.name})'
        assert isinstance(fld.type, Primitive)
        kind = fld.type.kind
        if kind.is_integer:
            return '0'
        if kind.is_float:
            return '0.0'
        return 'False' if kind is PrimitiveKind.BOOL else "''"

    # --------------------------------------------------------------------------
    # Classes
    # --------------------------------------------------------------------------

    def generate_class(self, cls: 'ClassDecl', gen: CodeGen):
        s = self.symbols
        base = cls.base or '_proxy.HostProxy'

        gen.line(f"@_binding.proxy('{cls.name}')")
        with gen.block(f'class {cls.name}({base}):', ''):
            gen.line(f'"""{cls.name} ({cls.holder})"""')
            gen.line()

            ctors = constructor_set(cls.name, cls.constructors)
            if ctors is not None:
                self._wrapper(ctors, '__init__', s.constructor(cls.name), gen, construct=True)
            elif cls.base:
                gen.line('__init__ = _proxy.HostProxy.__init__')
                gen.line()

            for name, method, static in self.ir.member_groups(cls.name):
                if method is not None and static is not None:
                    gen.line(f"{py_name(name)} = _proxy.DualMethod('{s.method(method.owner, name)}', "
                             f"'{s.static_method(static.owner, name)}')")
                    gen.line()
                elif method is not None:
                    self._wrapper(method, py_name(name), s.method(method.owner, name), gen)
                else:
                    self._wrapper(static, py_name(name), s.static_method(static.owner, name), gen, static=True)

            for fld in cls.fields:
                setter = f"'{s.setter(cls.name, fld.name)}'" if is_writable_field(fld.type) else 'None'
                gen.line(f"{py_name(fld.name)} = _proxy.InstanceField('{s.getter(cls.name, fld.name)}', {setter})")
            if cls.fields:
                gen.line()

            for fld in cls.static_fields:
                self._static_accessors(cls, fld, gen)

    def _wrapper(self, overloads: 'OverloadSet', name: str, symbol: str, gen: CodeGen,
                 construct: bool = False, static: bool = False):
        """One host method per dispatch group; a single candidate gets named parameters"""
        if len(overloads.candidates) == 1:
            params = [f'arg{i}' for i in range(overloads.candidates[0].arity)]
            signature = ', '.join(params)
            args = f'({signature},)' if len(params) == 1 else f'({signature})'
        else:
            signature = '*args'
            args = 'args'

        receiver = 'cls' if static else 'self'
        header = f'def {name}({receiver}, {signature}):' if signature else f'def {name}({receiver}):'
        if static:
            gen.line('@classmethod')
        with gen.block(header, ''):
            if construct:
                gen.line(f"self._construct('{symbol}', {args})")
            elif static:
                gen.line(f"return cls._call_static('{symbol}', {args})")
            else:
                gen.line(f"return self._call('{symbol}', {args})")
        gen.line()

    def _static_accessors(self, cls: 'ClassDecl', fld: 'Field', gen: CodeGen):
        s = self.symbols
        gen.line('@classmethod')
        with gen.block(f'def get_{fld.name}(cls):', ''):
            gen.line(f"return cls._call_static('{s.static_getter(cls.name, fld.name)}', ())")
        gen.line()
        if is_writable_field(fld.type):
            gen.line('@classmethod')
            with gen.block(f'def set_{fld.name}(cls, value):', ''):
                gen.line(f"cls._call_static('{s.static_setter(cls.name, fld.name)}', (value,))")
            gen.line()
