"""
Type model module

Vocabulary of marshalable types, their boundary-crossing strategies, the
type spelling parser, and the conversion ranking used by overload dispatch.
"""

from dataclasses import dataclass, replace
from enum import Enum, IntEnum
from typing import Optional, Union, TYPE_CHECKING

from .errors import UnmappableType

if TYPE_CHECKING:
    from .ir import IR, Callable, Field


class PrimitiveKind(Enum):
    INT8 = 'int8'
    INT16 = 'int16'
    INT32 = 'int32'
    INT64 = 'int64'
    UINT8 = 'uint8'
    UINT16 = 'uint16'
    UINT32 = 'uint32'
    UINT64 = 'uint64'
    FLOAT32 = 'float32'
    FLOAT64 = 'float64'
    BOOL = 'bool'
    STRING = 'string'

    @property
    def is_integer(self) -> bool:
        return self.value.startswith(('int', 'uint'))

    @property
    def is_signed(self) -> bool:
        return self.value.startswith('int')

    @property
    def is_float(self) -> bool:
        return self in (PrimitiveKind.FLOAT32, PrimitiveKind.FLOAT64)

    @property
    def is_numeric(self) -> bool:
        return self.is_integer or self.is_float

    @property
    def bits(self) -> int:
        if self.is_integer or self.is_float:
            return int(''.join(ch for ch in self.value if ch.isdigit()))
        return 8 if self is PrimitiveKind.BOOL else 0

    @property
    def range(self) -> tuple[int, int]:
        """Inclusive value range of an integer kind"""
        if self.is_signed:
            return -(1 << (self.bits - 1)), (1 << (self.bits - 1)) - 1
        return 0, (1 << self.bits) - 1


# C/C++ spellings accepted for primitives
PRIMITIVE_ALIASES = {
    'char': PrimitiveKind.INT8,
    'signed char': PrimitiveKind.INT8,
    'unsigned char': PrimitiveKind.UINT8,
    'short': PrimitiveKind.INT16,
    'unsigned short': PrimitiveKind.UINT16,
    'int': PrimitiveKind.INT32,
    'unsigned int': PrimitiveKind.UINT32,
    'unsigned': PrimitiveKind.UINT32,
    'long': PrimitiveKind.INT64,
    'unsigned long': PrimitiveKind.UINT64,
    'long long': PrimitiveKind.INT64,
    'unsigned long long': PrimitiveKind.UINT64,
    'size_t': PrimitiveKind.UINT64,
    'float': PrimitiveKind.FLOAT32,
    'double': PrimitiveKind.FLOAT64,
    'std::string': PrimitiveKind.STRING,
    'const char *': PrimitiveKind.STRING,
    'const char*': PrimitiveKind.STRING,
    'const std::string &': PrimitiveKind.STRING,
    'const std::string&': PrimitiveKind.STRING,
}
for _kind in PrimitiveKind:
    PRIMITIVE_ALIASES[_kind.value] = _kind
    if _kind.is_integer:
        PRIMITIVE_ALIASES[f'{_kind.value}_t'] = _kind

CPP_PRIMITIVES = {
    PrimitiveKind.INT8: 'int8_t',
    PrimitiveKind.INT16: 'int16_t',
    PrimitiveKind.INT32: 'int32_t',
    PrimitiveKind.INT64: 'int64_t',
    PrimitiveKind.UINT8: 'uint8_t',
    PrimitiveKind.UINT16: 'uint16_t',
    PrimitiveKind.UINT32: 'uint32_t',
    PrimitiveKind.UINT64: 'uint64_t',
    PrimitiveKind.FLOAT32: 'float',
    PrimitiveKind.FLOAT64: 'double',
    PrimitiveKind.BOOL: 'bool',
    PrimitiveKind.STRING: 'std::string',
}


# ==============================================================================
# TypeRef variants
# ==============================================================================

@dataclass(frozen=True)
class Primitive:
    kind: PrimitiveKind

    def __str__(self) -> str:
        return self.kind.value


@dataclass(frozen=True)
class StructByValue:
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class ExclusivePointer:
    name: str
    nullable: bool = False

    def __str__(self) -> str:
        return f'{self.name}*' + ('?' if self.nullable else '')


@dataclass(frozen=True)
class SharedHandle:
    name: str
    nullable: bool = False

    def __str__(self) -> str:
        return f'shared<{self.name}>' + ('?' if self.nullable else '')


@dataclass(frozen=True)
class BorrowedReference:
    name: str
    const: bool = False

    def __str__(self) -> str:
        return ('const ' if self.const else '') + f'{self.name}&'


@dataclass(frozen=True)
class Callback:
    params: tuple['TypeRef', ...]
    returns: Optional['TypeRef'] = None

    def __str__(self) -> str:
        args = ', '.join(str(p) for p in self.params)
        return f'fn({args}) -> {self.returns or "void"}'


@dataclass(frozen=True)
class PrimitiveSequence:
    kind: PrimitiveKind

    def __str__(self) -> str:
        return f'{self.kind.value}[]'


TypeRef = Union[Primitive, StructByValue, ExclusivePointer, SharedHandle,
                BorrowedReference, Callback, PrimitiveSequence]

HANDLE_TYPES = (ExclusivePointer, SharedHandle, BorrowedReference)


class Strategy(Enum):
    """How a type crosses the boundary"""
    VALUE = 'value'
    RECORD = 'record'
    EXCLUSIVE = 'exclusive'
    SHARED = 'shared'
    BORROWED = 'borrowed'
    CALLBACK = 'callback'
    SEQUENCE = 'sequence'


_STRATEGIES = {
    Primitive: Strategy.VALUE,
    StructByValue: Strategy.RECORD,
    ExclusivePointer: Strategy.EXCLUSIVE,
    SharedHandle: Strategy.SHARED,
    BorrowedReference: Strategy.BORROWED,
    Callback: Strategy.CALLBACK,
    PrimitiveSequence: Strategy.SEQUENCE,
}


def strategy_of(type_ref: TypeRef) -> Strategy:
    """Marshaling strategy for a type"""
    try:
        return _STRATEGIES[type(type_ref)]
    except KeyError:
        raise UnmappableType(f'no strategy for {type_ref!r}') from None


def is_nullable(type_ref: TypeRef) -> bool:
    return isinstance(type_ref, (ExclusivePointer, SharedHandle)) and type_ref.nullable


def is_writable_field(type_ref: TypeRef) -> bool:
    """Reference fields are read-only"""
    return not isinstance(type_ref, BorrowedReference)


# ==============================================================================
# Spelling parser
# ==============================================================================

def _split_top_level(text: str) -> list[str]:
    """Split on commas that are not nested in <> or ()"""
    parts = []
    depth = 0
    current = ''
    for ch in text:
        if ch in '<(':
            depth += 1
        elif ch in '>)':
            depth -= 1
        if ch == ',' and depth == 0:
            parts.append(current.strip())
            current = ''
        else:
            current += ch
    if current.strip():
        parts.append(current.strip())
    return parts


def _closing_paren(text: str, start: int) -> int:
    depth = 0
    for i in range(start, len(text)):
        if text[i] == '(':
            depth += 1
        elif text[i] == ')':
            depth -= 1
            if depth == 0:
                return i
    raise UnmappableType(f'unbalanced parentheses in {text!r}')


def _normalize(text: str) -> str:
    return ' '.join(text.replace('*', ' *').replace('&', ' &').split())


def _primitive_kind(text: str) -> Optional[PrimitiveKind]:
    text = text.strip()
    if text in PRIMITIVE_ALIASES:
        return PRIMITIVE_ALIASES[text]
    return PRIMITIVE_ALIASES.get(_normalize(text))


def _is_identifier(text: str) -> bool:
    parts = text.split('::')
    return all(p and (p[0].isalpha() or p[0] == '_') and p.replace('_', '').isalnum() for p in parts)


def parse_return(text: Optional[str]) -> Optional[TypeRef]:
    """Parse a return type spelling; void (or nothing) means no result"""
    if text is None or text.strip() in ('', 'void'):
        return None
    return parse_type(text)


def parse_type(text: str) -> TypeRef:
    """Parse a type spelling into a TypeRef

    Examples:
        int -> Primitive(INT32)
        ClassB* -> ExclusivePointer('ClassB')
        std::shared_ptr<SharedClass>? -> SharedHandle('SharedClass', nullable=True)
        fn(int32) -> int32 -> Callback((Primitive(INT32),), Primitive(INT32))
    """
    if not isinstance(text, str) or not text.strip():
        raise UnmappableType(f'empty type spelling {text!r}')
    text = text.strip()

    # a trailing ? after a callback belongs to its return type
    nullable = text.endswith('?') and not text.startswith('fn(')
    if nullable:
        text = text[:-1].strip()

    result = _parse_unqualified(text)
    if nullable:
        if not isinstance(result, (ExclusivePointer, SharedHandle)):
            raise UnmappableType(f'only pointers and shared handles can be nullable: {text!r}?')
        result = replace(result, nullable=True)
    return result


def _parse_unqualified(text: str) -> TypeRef:
    kind = _primitive_kind(text)
    if kind is not None:
        return Primitive(kind)

    if text.startswith('fn('):
        close = _closing_paren(text, 2)
        params = tuple(parse_type(p) for p in _split_top_level(text[3:close]))
        rest = text[close + 1:].strip()
        returns = None
        if rest:
            if not rest.startswith('->'):
                raise UnmappableType(f'expected -> in callback type {text!r}')
            returns = parse_return(rest[2:])
        return Callback(params, returns)

    if text.startswith('std::function<') and text.endswith('>'):
        inner = text[len('std::function<'):-1].strip()
        open_idx = inner.find('(')
        if open_idx < 0:
            raise UnmappableType(f'malformed function type {text!r}')
        close = _closing_paren(inner, open_idx)
        returns = parse_return(inner[:open_idx])
        args = [a for a in _split_top_level(inner[open_idx + 1:close]) if a != 'void']
        return Callback(tuple(parse_type(a) for a in args), returns)

    for opener in ('std::shared_ptr<', 'shared<'):
        if text.startswith(opener) and text.endswith('>'):
            name = text[len(opener):-1].strip()
            if not _is_identifier(name):
                raise UnmappableType(f'shared handle must name a class: {text!r}')
            return SharedHandle(name)

    if text.startswith('std::vector<') and text.endswith('>'):
        return _parse_sequence(text[len('std::vector<'):-1], text)
    if text.endswith('[]'):
        return _parse_sequence(text[:-2], text)

    if text.endswith('&'):
        inner = text[:-1].strip()
        const = inner.startswith('const ')
        if const:
            inner = inner[len('const '):].strip()
        if _is_identifier(inner) and _primitive_kind(inner) is None:
            return BorrowedReference(inner, const=const)
        raise UnmappableType(f'references are only supported to declared types: {text!r}')

    if text.endswith('*'):
        inner = text[:-1].strip()
        if inner.startswith('const '):
            inner = inner[len('const '):].strip()
        if _is_identifier(inner) and _primitive_kind(inner) is None:
            return ExclusivePointer(inner)
        raise UnmappableType(f'pointers are only supported to declared classes: {text!r}')

    if _is_identifier(text):
        return StructByValue(text)

    raise UnmappableType(f'cannot parse type {text!r}')


def _parse_sequence(inner: str, text: str) -> PrimitiveSequence:
    kind = _primitive_kind(inner)
    if kind is None or kind is PrimitiveKind.STRING:
        raise UnmappableType(f'sequences must hold numeric or bool elements: {text!r}')
    return PrimitiveSequence(kind)


# ==============================================================================
# Conversion ranking
# ==============================================================================

class Match(IntEnum):
    """Rank of an argument against a parameter"""
    WIDEN = 1
    EXACT = 2


def primitive_match(arg: PrimitiveKind, param: PrimitiveKind,
                    value: Optional[object] = None) -> Optional[Match]:
    """Rank a primitive argument kind against a parameter kind

    Integers widen to wider integers and to floating kinds; an integer value
    that fits a narrower integer parameter is accepted too (host literals
    are encoded at int32 or wider). float32 and float64 convert both ways.
    """
    if arg is param:
        return Match.EXACT
    if arg.is_integer and param.is_integer:
        lo, hi = arg.range
        plo, phi = param.range
        if plo <= lo and hi <= phi:
            return Match.WIDEN
        if isinstance(value, int) and plo <= value <= phi:
            return Match.WIDEN
        return None
    if arg.is_integer and param.is_float:
        return Match.WIDEN
    if arg.is_float and param.is_float:
        return Match.WIDEN
    return None


def host_int_kind(value: int) -> PrimitiveKind:
    """Wire kind for a host integer literal"""
    if PrimitiveKind.INT32.range[0] <= value <= PrimitiveKind.INT32.range[1]:
        return PrimitiveKind.INT32
    if PrimitiveKind.INT64.range[0] <= value <= PrimitiveKind.INT64.range[1]:
        return PrimitiveKind.INT64
    if 0 <= value <= PrimitiveKind.UINT64.range[1]:
        return PrimitiveKind.UINT64
    raise OverflowError(f'integer {value} does not fit any boundary integer kind')


# ==============================================================================
# Type model
# ==============================================================================

class TypeModel:
    """Resolves and classifies every type of a declaration set"""

    def __init__(self, ir: 'IR'):
        self.ir = ir

    def resolve(self, type_ref: TypeRef, decl: str, position: str) -> TypeRef:
        """Expand typedefs and check that every named entity is mappable"""
        type_ref = self._expand(type_ref, decl, position, set())

        if isinstance(type_ref, StructByValue):
            if self.ir.get_class(type_ref.name) is not None:
                raise UnmappableType(f'class {type_ref.name} cannot cross by value', decl, position)
            if self.ir.get_struct(type_ref.name) is None:
                raise UnmappableType(f'undeclared type {type_ref.name}', decl, position)

        elif isinstance(type_ref, BorrowedReference):
            if self.ir.get_struct(type_ref.name) is not None:
                if not type_ref.const:
                    raise UnmappableType(f'mutable reference to struct {type_ref.name}', decl, position)
                return StructByValue(type_ref.name)
            self._require_class(type_ref.name, decl, position)

        elif isinstance(type_ref, (ExclusivePointer, SharedHandle)):
            self._require_class(type_ref.name, decl, position)

        elif isinstance(type_ref, Callback):
            if not position.startswith('param'):
                raise UnmappableType('callbacks can only be passed as parameters', decl, position)
            inner = [type_ref.returns] + list(type_ref.params)
            if any(isinstance(t, Callback) for t in inner):
                raise UnmappableType('callbacks cannot take or return callbacks', decl, position)
            params = tuple(self.resolve(p, decl, f'{position} callback param {i + 1}')
                           for i, p in enumerate(type_ref.params))
            returns = None
            if type_ref.returns is not None:
                returns = self.resolve(type_ref.returns, decl, f'{position} callback return')
            return Callback(params, returns)

        strategy_of(type_ref)
        return type_ref

    def _expand(self, type_ref: TypeRef, decl: str, position: str, seen: set[str]) -> TypeRef:
        """Follow typedef aliases; names behind handles are aliased too"""
        name = getattr(type_ref, 'name', None)
        if name is None or name not in self.ir.typedefs:
            return type_ref
        if name in seen:
            raise UnmappableType(f'typedef cycle through {name}', decl, position)
        seen.add(name)
        target = parse_type(self.ir.typedefs[name])
        if isinstance(type_ref, StructByValue):
            return self._expand(target, decl, position, seen)
        if not isinstance(target, StructByValue):
            raise UnmappableType(f'typedef {name} does not name a class', decl, position)
        return self._expand(replace(type_ref, name=target.name), decl, position, seen)

    def _require_class(self, name: str, decl: str, position: str):
        if self.ir.get_class(name) is None:
            if self.ir.get_struct(name) is not None:
                raise UnmappableType(f'struct {name} has no handle semantics', decl, position)
            raise UnmappableType(f'undeclared class {name}', decl, position)

    def _resolve_callable(self, owner: str, func: 'Callable') -> 'Callable':
        decl = f'{owner}.{func.name}'
        params = tuple(self.resolve(p, decl, f'param {i + 1}') for i, p in enumerate(func.params))
        returns = None
        if func.returns is not None:
            returns = self.resolve(func.returns, decl, 'return')
        return replace(func, params=params, returns=returns)

    def _resolve_field(self, owner: str, fld: 'Field', in_struct: bool) -> 'Field':
        resolved = self.resolve(fld.type, f'{owner}.{fld.name}', 'field')
        if in_struct and not isinstance(resolved, (Primitive, StructByValue)):
            raise UnmappableType(f'struct fields must be primitives or structs, not {resolved}',
                                 f'{owner}.{fld.name}', 'field')
        if isinstance(resolved, Callback):
            raise UnmappableType('callback fields are not supported', f'{owner}.{fld.name}', 'field')
        return replace(fld, type=resolved)

    def resolve_ir(self) -> 'IR':
        """Return a copy of the IR with every type resolved and checked"""
        structs = {}
        for struct in self.ir.structs.values():
            fields = tuple(self._resolve_field(struct.name, f, True) for f in struct.fields)
            structs[struct.name] = replace(struct, fields=fields)

        classes = {}
        for cls in self.ir.classes.values():
            classes[cls.name] = replace(
                cls,
                constructors=tuple(self._resolve_callable(cls.name, c) for c in cls.constructors),
                methods=tuple(self._resolve_callable(cls.name, m) for m in cls.methods),
                static_methods=tuple(self._resolve_callable(cls.name, m) for m in cls.static_methods),
                fields=tuple(self._resolve_field(cls.name, f, False) for f in cls.fields),
                static_fields=tuple(self._resolve_field(cls.name, f, False) for f in cls.static_fields),
            )

        resolved = replace(self.ir, structs=structs, classes=classes)
        self._check_struct_cycles(resolved)
        return resolved

    def _check_struct_cycles(self, ir: 'IR'):
        """By-value structs cannot contain themselves"""
        def visit(name: str, path: list[str]):
            if name in path:
                cycle = ' -> '.join(path + [name])
                raise UnmappableType(f'struct contains itself by value: {cycle}', path[0], 'field')
            for fld in ir.structs[name].fields:
                if isinstance(fld.type, StructByValue):
                    visit(fld.type.name, path + [name])

        for name in ir.structs:
            visit(name, [])

    # --------------------------------------------------------------------------
    # Spellings for emitted code
    # --------------------------------------------------------------------------

    def native_name(self, name: str) -> str:
        cls = self.ir.get_class(name)
        return cls.native_name if cls is not None else name

    def cpp_type(self, type_ref: Optional[TypeRef]) -> str:
        """Native (C++) spelling of a type"""
        if type_ref is None:
            return 'void'
        if isinstance(type_ref, Primitive):
            return CPP_PRIMITIVES[type_ref.kind]
        if isinstance(type_ref, StructByValue):
            return type_ref.name
        if isinstance(type_ref, ExclusivePointer):
            return f'{self.native_name(type_ref.name)} *'
        if isinstance(type_ref, SharedHandle):
            return f'std::shared_ptr<{self.native_name(type_ref.name)}>'
        if isinstance(type_ref, BorrowedReference):
            return f'{self.native_name(type_ref.name)} &'
        if isinstance(type_ref, Callback):
            args = ', '.join(self.cpp_type(p) for p in type_ref.params)
            return f'std::function<{self.cpp_type(type_ref.returns)}({args})>'
        if isinstance(type_ref, PrimitiveSequence):
            return f'std::vector<{CPP_PRIMITIVES[type_ref.kind]}>'
        raise UnmappableType(f'no native spelling for {type_ref!r}')

    def py_annotation(self, type_ref: Optional[TypeRef]) -> str:
        """Host (Python) annotation of a type"""
        if type_ref is None:
            return 'None'
        if isinstance(type_ref, Primitive):
            kind = type_ref.kind
            if kind.is_integer:
                return 'int'
            if kind.is_float:
                return 'float'
            return 'bool' if kind is PrimitiveKind.BOOL else 'str'
        if isinstance(type_ref, StructByValue):
            return type_ref.name
        if isinstance(type_ref, HANDLE_TYPES):
            return type_ref.name + (' | None' if is_nullable(type_ref) else '')
        if isinstance(type_ref, Callback):
            args = ', '.join(self.py_annotation(p) for p in type_ref.params)
            return f'Callable[[{args}], {self.py_annotation(type_ref.returns)}]'
        if isinstance(type_ref, PrimitiveSequence):
            return f'list[{self.py_annotation(Primitive(type_ref.kind))}]'
        return 'Any'
