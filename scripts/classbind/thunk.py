"""
Thunk generation module

Generates the native (C++) side of the boundary: one exported thunk per
dispatch group, field accessor, destructor and handle operation. Every thunk
reads its call frame through classbind::Call, selects a candidate at call
arrival and never lets a native exception escape.
"""

from typing import Optional, TYPE_CHECKING

from .codegen import CodeGen, Symbols, c_string, cpp_encode, cpp_decode, cpp_literal
from .ir import SHARED
from .overload import OverloadSet, constructor_set, group_overloads
from .types import Callback, ExclusivePointer, SharedHandle, is_writable_field

if TYPE_CHECKING:
    from .callback import CallbackGenerator
    from .ir import IR, ClassDecl, Callable, Field
    from .types import TypeModel, TypeRef

# dispatch group kinds
CONSTRUCTOR = 'constructor'
METHOD = 'method'
STATIC = 'static'


class ThunkGenerator:
    """Generates exported thunk functions"""

    def __init__(self, ir: 'IR', model: 'TypeModel', symbols: Symbols,
                 callbacks: 'CallbackGenerator', export_macro: str):
        self.ir = ir
        self.model = model
        self.symbols = symbols
        self.callbacks = callbacks
        self.export = export_macro

    # --------------------------------------------------------------------------
    # Thunk frame
    # --------------------------------------------------------------------------

    def _begin(self, symbol: str, gen: CodeGen):
        gen.line(f'{self.export} void {symbol}(classbind::Call *call) {{')
        gen.indent()
        gen.line('try {')
        gen.indent()

    def _end(self, gen: CodeGen):
        gen.dedent()
        gen.line('} catch (const classbind::BoundaryError &e) {')
        gen.line('    call->fail(e);')
        gen.line('} catch (const std::exception &e) {')
        gen.line('    call->native_error(e.what());')
        gen.line('} catch (...) {')
        gen.line('    call->native_error("unknown native exception");')
        gen.line('}')
        gen.dedent()
        gen.line('}')
        gen.line()

    def _self(self, cls: 'ClassDecl', gen: CodeGen):
        gen.line(f'{cls.native_name} *self = call->self<{cls.native_name}>("{cls.name}");')

    # --------------------------------------------------------------------------
    # Classes
    # --------------------------------------------------------------------------

    def generate_class(self, cls: 'ClassDecl', gen: CodeGen):
        """Generate all thunks declared by one class; inherited ones are not repeated"""
        gen.line(f'// {cls.name}' + (f' : {cls.base}' if cls.base else ''))
        gen.line()

        ctors = constructor_set(cls.name, cls.constructors)
        if ctors is not None:
            self.generate_group(self.symbols.constructor(cls.name), ctors, cls, gen, CONSTRUCTOR)
        if cls.destructible:
            self.generate_destructor(cls, gen)

        for name, overloads in group_overloads(cls.name, cls.methods).items():
            self.generate_group(self.symbols.method(cls.name, name), overloads, cls, gen, METHOD)
        for name, overloads in group_overloads(cls.name, cls.static_methods).items():
            self.generate_group(self.symbols.static_method(cls.name, name), overloads, cls, gen, STATIC)

        for fld in cls.fields:
            self.generate_field(cls, fld, gen)
        for fld in cls.static_fields:
            self.generate_static_field(cls, fld, gen)

    def generate_group(self, symbol: str, overloads: OverloadSet, cls: 'ClassDecl', gen: CodeGen,
                       kind: str = METHOD):
        """Generate one dispatch group"""
        is_ctor = kind == CONSTRUCTOR
        receiver = kind == METHOD

        gen.line(f'// {overloads.key}: ' + ' | '.join(c.signature() for c in overloads.candidates))
        self._begin(symbol, gen)
        if receiver:
            self._self(cls, gen)
        self._candidates(overloads, gen)
        with gen.block(f'switch (call->select("{overloads.key}", candidates, {len(overloads.candidates)})) {{'):
            for index, cand in enumerate(overloads.candidates):
                with gen.block(f'case {index}: {{'):
                    args = self._decode_args(cand, gen)
                    if is_ctor:
                        self._construct(cls, cand, args, gen)
                    elif receiver:
                        self._result(cand.returns, f'self->{cand.native_name}({args})', gen)
                    else:
                        self._result(cand.returns, f'{cls.native_name}::{cand.native_name}({args})', gen)
                    gen.line('break;')
        self._end(gen)

    def _candidates(self, overloads: OverloadSet, gen: CodeGen):
        with gen.block('static const char *const candidates[] = {', '};'):
            for cand in overloads.candidates:
                gen.line(c_string(','.join(str(p) for p in cand.params)) + ',')

    def _decode_args(self, cand: 'Callable', gen: CodeGen) -> str:
        names = []
        for i, param in enumerate(cand.params):
            name = f'a{i}'
            if isinstance(param, Callback):
                trampoline = self.callbacks.trampoline_name(param)
                gen.line(f'auto {name} = {trampoline}(call->arg_callback({i}));')
            else:
                decode = cpp_decode(self.model, self.symbols, param, 'call->arg', i)
                gen.line(f'{_declare(self.model.cpp_type(param), name)} = {decode};')
            names.append(name)
        return ', '.join(names)

    def _construct(self, cls: 'ClassDecl', cand: 'Callable', args: str, gen: CodeGen):
        if cand.native_name != cls.native_name:
            expr = f'{cls.native_name}::{cand.native_name}({args})'
        elif cls.holder == SHARED:
            expr = f'std::make_shared<{cls.native_name}>({args})'
        else:
            expr = f'new {cls.native_name}({args})'
        produced = SharedHandle(cls.name) if cls.holder == SHARED else ExclusivePointer(cls.name)
        gen.line(cpp_encode(self.symbols, produced, 'call->ret', expr))

    def _result(self, returns: Optional['TypeRef'], expr: str, gen: CodeGen, borrowed: bool = False):
        if returns is None:
            gen.line(f'{expr};')
            gen.line('call->ret_void();')
        else:
            gen.line(cpp_encode(self.symbols, returns, 'call->ret', expr, borrowed))

    # --------------------------------------------------------------------------
    # Fields
    # --------------------------------------------------------------------------

    def generate_field(self, cls: 'ClassDecl', fld: 'Field', gen: CodeGen):
        self._begin(self.symbols.getter(cls.name, fld.name), gen)
        self._self(cls, gen)
        self._result(fld.type, f'self->{fld.name}', gen, borrowed=True)
        self._end(gen)

        if is_writable_field(fld.type):
            self._begin(self.symbols.setter(cls.name, fld.name), gen)
            self._self(cls, gen)
            self._setter_select(cls, fld, gen)
            gen.line(f'self->{fld.name} = {cpp_decode(self.model, self.symbols, fld.type, "call->arg", 0)};')
            gen.line('call->ret_void();')
            self._end(gen)

    def generate_static_field(self, cls: 'ClassDecl', fld: 'Field', gen: CodeGen):
        """Static members are emitted once per class"""
        target = f'{cls.native_name}::{fld.name}'
        self._begin(self.symbols.static_getter(cls.name, fld.name), gen)
        self._result(fld.type, target, gen, borrowed=True)
        self._end(gen)

        if is_writable_field(fld.type):
            self._begin(self.symbols.static_setter(cls.name, fld.name), gen)
            self._setter_select(cls, fld, gen)
            gen.line(f'{target} = {cpp_decode(self.model, self.symbols, fld.type, "call->arg", 0)};')
            gen.line('call->ret_void();')
            self._end(gen)

    def _setter_select(self, cls: 'ClassDecl', fld: 'Field', gen: CodeGen):
        gen.line(f'static const char *const candidates[] = {{{c_string(str(fld.type))}}};')
        gen.line(f'call->select("{cls.name}.{fld.name}", candidates, 1);')

    # --------------------------------------------------------------------------
    # Handles
    # --------------------------------------------------------------------------

    def generate_destructor(self, cls: 'ClassDecl', gen: CodeGen):
        self._begin(self.symbols.destructor(cls.name), gen)
        gen.line(f'call->ret_bool(call->release_self("{cls.name}"));')
        self._end(gen)

    def generate_handle_thunks(self, gen: CodeGen):
        """Module-level retain/release of any handle"""
        self._begin(self.symbols.retain, gen)
        gen.line('call->retain_self();')
        gen.line('call->ret_void();')
        self._end(gen)

        self._begin(self.symbols.release, gen)
        gen.line('call->ret_bool(call->release_self(nullptr));')
        self._end(gen)

    def generate_entry_points(self, gen: CodeGen):
        """C entry points a host loader drives the thunks through"""
        entry = self.symbols.entry_point
        with gen.block(f'{self.export} classbind::Call *{entry("call_new")}'
                       f'(const uint8_t *payload, size_t size) {{'):
            gen.line('return classbind::call_new(payload, size);')
        with gen.block(f'{self.export} const uint8_t *{entry("call_response")}'
                       f'(const classbind::Call *call, size_t *size) {{'):
            gen.line('return classbind::call_response(call, size);')
        with gen.block(f'{self.export} void {entry("call_free")}(classbind::Call *call) {{'):
            gen.line('classbind::call_free(call);')
        with gen.block(f'{self.export} void {entry("set_host")}(const classbind::HostFunctions *host) {{'):
            gen.line('classbind::set_host(*host);')
        with gen.block(f'{self.export} classbind::Thunk {entry("lookup")}'
                       f'(const char *cls, const char *name, bool is_static) {{'):
            gen.line('return classbind::lookup(cls, name, is_static);')
        gen.line()

    def generate_init(self, gen: CodeGen):
        """Class registry and captured static field values"""
        with gen.block(f'{self.export} void {self.symbols.init}(void) {{'):
            for cls in self.ir.class_order():
                destructible = 'true' if cls.destructible else 'false'
                base = f'"{cls.base}"' if cls.base else 'nullptr'
                types = cls.native_name
                if cls.base:
                    types += f', {self.model.native_name(cls.base)}'
                gen.line(f'classbind::declare_class<{types}>("{cls.name}", {base}, {destructible});')
            for cls in self.ir.class_order():
                self._dispatch_table(cls, gen)
            for struct in self.ir.struct_order():
                spelling = ','.join(str(f.type) for f in struct.fields)
                gen.line(f'classbind::declare_struct("{struct.name}", {c_string(spelling)});')
            for cls in self.ir.class_order():
                for fld in cls.static_fields:
                    if fld.initial is not None:
                        gen.line(f'{cls.native_name}::{fld.name} = {cpp_literal(fld.initial)};')
        gen.line()

    def _dispatch_table(self, cls: 'ClassDecl', gen: CodeGen):
        """Member name -> thunk of a class, inherited groups resolved to their declaring class"""
        s = self.symbols
        for name, overloads in self.ir.method_table(cls.name).items():
            gen.line(f'classbind::declare_method("{cls.name}", "{name}", false, '
                     f'{s.method(overloads.owner, name)});')
        for name, overloads in self.ir.static_table(cls.name).items():
            gen.line(f'classbind::declare_method("{cls.name}", "{name}", true, '
                     f'{s.static_method(overloads.owner, name)});')


def _declare(cpp_type: str, name: str) -> str:
    if cpp_type.endswith(('*', '&')):
        return f'{cpp_type}{name}'
    return f'{cpp_type} {name}'
