"""
Code generation utilities

Indented line builder and the symbol naming shared by the native thunks,
the host wrappers and the reference boundary.
"""

from typing import Optional, TYPE_CHECKING
import keyword

from .errors import UnmappableType
from .types import (
    Primitive, StructByValue, ExclusivePointer, SharedHandle, BorrowedReference, PrimitiveSequence,
)

if TYPE_CHECKING:
    from .types import TypeModel, TypeRef


class CodeGen:
    """Code generation helper with indentation support"""

    def __init__(self, indent_str: str = '    '):
        self._lines: list[str] = []
        self._indent: int = 0
        self._indent_str: str = indent_str

    def line(self, text: str = ''):
        """Add a line with current indentation"""
        if text:
            self._lines.append(self._indent_str * self._indent + text)
        else:
            self._lines.append('')

    def indent(self):
        self._indent += 1

    def dedent(self):
        if self._indent > 0:
            self._indent -= 1

    def block(self, header: str, footer: str = '}'):
        """Context manager for code blocks; an empty footer closes nothing"""
        return _BlockContext(self, header, footer)

    def output(self) -> str:
        """Get generated code as string"""
        return '\n'.join(self._lines) + '\n'


class _BlockContext:
    """Context manager for indented code blocks"""

    def __init__(self, gen: CodeGen, header: str, footer: str):
        self._gen = gen
        self._header = header
        self._footer = footer

    def __enter__(self):
        self._gen.line(self._header)
        self._gen.indent()
        return self

    def __exit__(self, *args):
        self._gen.dedent()
        if self._footer:
            self._gen.line(self._footer)


# ==============================================================================
# Symbol names
# ==============================================================================

DESTRUCTOR = '__destroy__'


class Symbols:
    """Thunk symbol names for one declaration set

    Examples (prefix 'bind_'):
        ClassA constructors   -> bind_ClassA_new
        ClassA.MakeAB         -> bind_ClassA_MakeAB
        ClassA::StaticMethod  -> bind_ClassA_static_StaticMethod
        ClassA.foo getter     -> bind_ClassA_get_foo
        ClassA destructor     -> bind_ClassA___destroy__
    """

    def __init__(self, prefix: str):
        self.prefix = prefix

    def constructor(self, cls: str) -> str:
        return f'{self.prefix}{cls}_new'

    def destructor(self, cls: str) -> str:
        return f'{self.prefix}{cls}_{DESTRUCTOR}'

    def method(self, cls: str, name: str) -> str:
        return f'{self.prefix}{cls}_{name}'

    def static_method(self, cls: str, name: str) -> str:
        return f'{self.prefix}{cls}_static_{name}'

    def getter(self, cls: str, name: str) -> str:
        return f'{self.prefix}{cls}_get_{name}'

    def setter(self, cls: str, name: str) -> str:
        return f'{self.prefix}{cls}_set_{name}'

    def static_getter(self, cls: str, name: str) -> str:
        return f'{self.prefix}{cls}_static_get_{name}'

    def static_setter(self, cls: str, name: str) -> str:
        return f'{self.prefix}{cls}_static_set_{name}'

    def record_writer(self, struct: str) -> str:
        return f'{self.prefix}write_{struct}'

    def record_reader(self, struct: str) -> str:
        return f'{self.prefix}read_{struct}'

    def trampoline(self, index: int) -> str:
        return f'{self.prefix}trampoline_{index}'

    def entry_point(self, name: str) -> str:
        """Module-level C entry point, e.g. bind__call_new"""
        return f'{self.prefix}_{name}'

    @property
    def init(self) -> str:
        return self.entry_point('init')

    @property
    def retain(self) -> str:
        return self.entry_point('retain')

    @property
    def release(self) -> str:
        return self.entry_point('release')


def py_name(name: str) -> str:
    """Host attribute name; Python keywords get a trailing underscore"""
    if keyword.iskeyword(name):
        return name + '_'
    return name


def c_string(text: str) -> str:
    """C string literal"""
    escaped = text.replace('\\', '\\\\').replace('"', '\\"')
    return f'"{escaped}"'


# ==============================================================================
# Native value conversion
# ==============================================================================

def cpp_encode(symbols: Symbols, type_ref: 'TypeRef', target: str, expr: str,
               borrowed: bool = False) -> str:
    """Statement writing a native value to a frame

    target is the writing member prefix, e.g. 'call->ret' or 'cc.arg'.
    """
    if isinstance(type_ref, Primitive):
        return f'{target}_{type_ref.kind.value}({expr});'
    if isinstance(type_ref, StructByValue):
        return f'{symbols.record_writer(type_ref.name)}({target}_record("{type_ref.name}"), {expr});'
    if isinstance(type_ref, SharedHandle):
        return f'{target}_shared({expr}, "{type_ref.name}");'
    if isinstance(type_ref, BorrowedReference):
        return f'{target}_object(&({expr}), "{type_ref.name}", classbind::BORROWED);'
    if isinstance(type_ref, ExclusivePointer):
        ownership = 'BORROWED' if borrowed else 'EXCLUSIVE'
        return f'{target}_object({expr}, "{type_ref.name}", classbind::{ownership});'
    if isinstance(type_ref, PrimitiveSequence):
        return f'{target}_seq_{type_ref.kind.value}({expr});'
    raise UnmappableType(f'{type_ref} cannot be sent from native code')


def cpp_decode(model: 'TypeModel', symbols: Symbols, type_ref: 'TypeRef', source: str,
               index: Optional[int] = None) -> str:
    """Expression reading a native value from a frame

    source is the reading member prefix, e.g. 'call->arg' or 'cc.result'.
    """
    args = '' if index is None else str(index)
    if isinstance(type_ref, Primitive):
        return f'{source}_{type_ref.kind.value}({args})'
    if isinstance(type_ref, StructByValue):
        return f'{symbols.record_reader(type_ref.name)}({source}_record({args}))'
    native = model.native_name(getattr(type_ref, 'name', ''))
    if isinstance(type_ref, SharedHandle):
        return f'{source}_shared<{native}>({args})'
    if isinstance(type_ref, BorrowedReference):
        return f'*{source}_object<{native}>({args})'
    if isinstance(type_ref, ExclusivePointer):
        return f'{source}_object<{native}>({args})'
    if isinstance(type_ref, PrimitiveSequence):
        return f'{source}_seq_{type_ref.kind.value}({args})'
    raise UnmappableType(f'{type_ref} cannot be received by native code')


def cpp_literal(value: object) -> str:
    """C++ literal for a captured initial value"""
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, str):
        return c_string(value)
    raise UnmappableType(f'no literal for initial value {value!r}')
