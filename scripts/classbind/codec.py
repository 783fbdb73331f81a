"""
Boundary wire codec

Little-endian, fixed-width encoding of tagged values, call frames and
response frames. Both sides of the boundary share the struct declarations,
so records carry their fields untagged in declaration order.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from types import MappingProxyType
from typing import Mapping, Optional, TYPE_CHECKING
import struct

from .errors import WireError, boundary_error
from .ir import OWNERSHIPS
from .types import PrimitiveKind, Primitive, StructByValue

if TYPE_CHECKING:
    from .ir import StructDecl


class Tag(IntEnum):
    INT8 = 0
    INT16 = 1
    INT32 = 2
    INT64 = 3
    UINT8 = 4
    UINT16 = 5
    UINT32 = 6
    UINT64 = 7
    FLOAT32 = 8
    FLOAT64 = 9
    BOOL = 10
    STRING = 11
    RECORD = 16
    HANDLE = 17
    OBJECT = 18
    CALLBACK = 19
    SEQUENCE = 20
    VOID = 21


PRIMITIVE_TAGS = {kind: Tag[kind.name] for kind in PrimitiveKind}
TAG_PRIMITIVES = {tag: kind for kind, tag in PRIMITIVE_TAGS.items()}

FORMATS = {
    PrimitiveKind.INT8: '<b',
    PrimitiveKind.INT16: '<h',
    PrimitiveKind.INT32: '<i',
    PrimitiveKind.INT64: '<q',
    PrimitiveKind.UINT8: '<B',
    PrimitiveKind.UINT16: '<H',
    PrimitiveKind.UINT32: '<I',
    PrimitiveKind.UINT64: '<Q',
    PrimitiveKind.FLOAT32: '<f',
    PrimitiveKind.FLOAT64: '<d',
    PrimitiveKind.BOOL: '<?',
}

STATUS_OK = 0
STATUS_ERROR = 1


# ==============================================================================
# Decoded values
# ==============================================================================

@dataclass(frozen=True)
class Value:
    """Primitive value with its wire kind"""
    kind: PrimitiveKind
    value: object


@dataclass(frozen=True)
class RecordValue:
    """Struct copy; nested structs are RecordValues too. Fields are read-only."""
    name: str
    fields: Mapping[str, object] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        object.__setattr__(self, 'fields', MappingProxyType(dict(self.fields)))


@dataclass(frozen=True)
class HandleRef:
    """Object argument; id 0 is no object"""
    id: int


@dataclass(frozen=True)
class ObjectRef:
    """Object produced by the native side"""
    id: int
    class_name: str
    ownership: str


@dataclass(frozen=True)
class CallbackRef:
    """Standing handle to a host-resident function"""
    id: int


@dataclass(frozen=True)
class SequenceValue:
    kind: PrimitiveKind
    values: tuple = ()


def describe_value(value) -> str:
    """Short kind description for diagnostics"""
    if isinstance(value, Value):
        return value.kind.value
    if isinstance(value, RecordValue):
        return value.name
    if isinstance(value, HandleRef):
        return 'handle' if value.id else 'null'
    if isinstance(value, ObjectRef):
        return value.class_name
    if isinstance(value, CallbackRef):
        return 'callback'
    if isinstance(value, SequenceValue):
        return f'{value.kind.value}[]'
    return type(value).__name__


def coerce(kind: PrimitiveKind, value: object) -> object:
    """Convert a Python value to the representation of a primitive kind"""
    if kind is PrimitiveKind.BOOL:
        return bool(value)
    if kind is PrimitiveKind.STRING:
        if isinstance(value, bytes):
            return value.decode('utf-8')
        return str(value)
    if kind.is_float:
        return float(value)
    if isinstance(value, float) and not value.is_integer():
        raise WireError(f'{value!r} is not an integer for {kind.value}')
    return int(value)


# ==============================================================================
# Writer / Reader
# ==============================================================================

class Writer:
    """Builds a frame"""

    def __init__(self, structs: Optional[dict[str, 'StructDecl']] = None):
        self.structs = structs or {}
        self._buf = bytearray()

    def getvalue(self) -> bytes:
        return bytes(self._buf)

    def _pack(self, fmt: str, value):
        try:
            self._buf += struct.pack(fmt, value)
        except (struct.error, OverflowError) as e:
            raise WireError(f'cannot encode {value!r}: {e}') from None

    def u8(self, value: int):
        self._pack('<B', value)

    def u32(self, value: int):
        self._pack('<I', value)

    def u64(self, value: int):
        self._pack('<Q', value)

    def string(self, value: str):
        data = value.encode('utf-8')
        self.u32(len(data))
        self._buf += data

    def primitive(self, kind: PrimitiveKind, value):
        """Untagged primitive"""
        value = coerce(kind, value)
        if kind is PrimitiveKind.STRING:
            self.string(value)
        else:
            self._pack(FORMATS[kind], value)

    def record_body(self, name: str, fields: Mapping[str, object]):
        """Untagged struct fields in declaration order"""
        decl = self.structs.get(name)
        if decl is None:
            raise WireError(f'unknown struct {name}')
        for fld in decl.fields:
            if fld.name not in fields:
                raise WireError(f'struct {name} is missing field {fld.name}')
            self._field(fld.type, fields[fld.name])

    def _field(self, type_ref, value):
        if isinstance(type_ref, Primitive):
            self.primitive(type_ref.kind, value)
        elif isinstance(type_ref, StructByValue):
            if not isinstance(value, RecordValue):
                raise WireError(f'expected {type_ref.name} record, got {value!r}')
            self.record_body(type_ref.name, value.fields)
        else:
            raise WireError(f'struct field of type {type_ref} cannot be encoded')

    def value(self, value):
        """Tagged value; None is void"""
        if value is None:
            self.u8(Tag.VOID)
        elif isinstance(value, Value):
            self.u8(PRIMITIVE_TAGS[value.kind])
            self.primitive(value.kind, value.value)
        elif isinstance(value, RecordValue):
            self.u8(Tag.RECORD)
            self.string(value.name)
            self.record_body(value.name, value.fields)
        elif isinstance(value, HandleRef):
            self.u8(Tag.HANDLE)
            self.u64(value.id)
        elif isinstance(value, ObjectRef):
            self.u8(Tag.OBJECT)
            self.u64(value.id)
            self.string(value.class_name)
            self.u8(OWNERSHIPS.index(value.ownership))
        elif isinstance(value, CallbackRef):
            self.u8(Tag.CALLBACK)
            self.u64(value.id)
        elif isinstance(value, SequenceValue):
            self.u8(Tag.SEQUENCE)
            self.u8(PRIMITIVE_TAGS[value.kind])
            self.u32(len(value.values))
            for item in value.values:
                self.primitive(value.kind, item)
        else:
            raise WireError(f'cannot encode {value!r}')


class Reader:
    """Reads a frame"""

    def __init__(self, data: bytes, structs: Optional[dict[str, 'StructDecl']] = None):
        self.structs = structs or {}
        self._data = memoryview(data)
        self._pos = 0

    @property
    def at_end(self) -> bool:
        return self._pos >= len(self._data)

    def _take(self, size: int) -> memoryview:
        if self._pos + size > len(self._data):
            raise WireError(f'truncated frame: need {size} bytes at offset {self._pos}')
        chunk = self._data[self._pos:self._pos + size]
        self._pos += size
        return chunk

    def _unpack(self, fmt: str):
        return struct.unpack(fmt, self._take(struct.calcsize(fmt)))[0]

    def u8(self) -> int:
        return self._unpack('<B')

    def u32(self) -> int:
        return self._unpack('<I')

    def u64(self) -> int:
        return self._unpack('<Q')

    def string(self) -> str:
        size = self.u32()
        try:
            return bytes(self._take(size)).decode('utf-8')
        except UnicodeDecodeError as e:
            raise WireError(f'invalid string: {e}') from None

    def primitive(self, kind: PrimitiveKind):
        if kind is PrimitiveKind.STRING:
            return self.string()
        return self._unpack(FORMATS[kind])

    def record_body(self, name: str) -> RecordValue:
        decl = self.structs.get(name)
        if decl is None:
            raise WireError(f'unknown struct {name}')
        fields = {}
        for fld in decl.fields:
            if isinstance(fld.type, Primitive):
                fields[fld.name] = self.primitive(fld.type.kind)
            elif isinstance(fld.type, StructByValue):
                fields[fld.name] = self.record_body(fld.type.name)
            else:
                raise WireError(f'struct field of type {fld.type} cannot be decoded')
        return RecordValue(name, fields)

    def _tag(self) -> Tag:
        raw = self.u8()
        try:
            return Tag(raw)
        except ValueError:
            raise WireError(f'unknown tag {raw}') from None

    def _kind(self) -> PrimitiveKind:
        tag = self._tag()
        if tag not in TAG_PRIMITIVES:
            raise WireError(f'tag {tag.name} is not a primitive kind')
        return TAG_PRIMITIVES[tag]

    def value(self):
        """Tagged value; void decodes to None"""
        tag = self._tag()
        if tag in TAG_PRIMITIVES:
            kind = TAG_PRIMITIVES[tag]
            return Value(kind, self.primitive(kind))
        if tag is Tag.VOID:
            return None
        if tag is Tag.RECORD:
            return self.record_body(self.string())
        if tag is Tag.HANDLE:
            return HandleRef(self.u64())
        if tag is Tag.OBJECT:
            handle_id = self.u64()
            class_name = self.string()
            ownership = self.u8()
            if ownership >= len(OWNERSHIPS):
                raise WireError(f'unknown ownership {ownership}')
            return ObjectRef(handle_id, class_name, OWNERSHIPS[ownership])
        if tag is Tag.CALLBACK:
            return CallbackRef(self.u64())
        if tag is Tag.SEQUENCE:
            kind = self._kind()
            count = self.u32()
            return SequenceValue(kind, tuple(self.primitive(kind) for _ in range(count)))
        raise WireError(f'unexpected tag {tag.name}')


# ==============================================================================
# Frames
# ==============================================================================

def encode_call(args: list, receiver: Optional[int] = None,
                structs: Optional[dict] = None) -> bytes:
    """Call frame: receiver flag [+ u64 id], u8 count, tagged args"""
    w = Writer(structs)
    if receiver is None:
        w.u8(0)
    else:
        w.u8(1)
        w.u64(receiver)
    if len(args) > 255:
        raise WireError('too many arguments')
    w.u8(len(args))
    for arg in args:
        w.value(arg)
    return w.getvalue()


def decode_call(data: bytes, structs: Optional[dict] = None) -> tuple[Optional[int], list]:
    r = Reader(data, structs)
    receiver = r.u64() if r.u8() else None
    args = [r.value() for _ in range(r.u8())]
    if not r.at_end:
        raise WireError('trailing bytes after call frame')
    return receiver, args


def encode_ok(value=None, structs: Optional[dict] = None) -> bytes:
    w = Writer(structs)
    w.u8(STATUS_OK)
    w.value(value)
    return w.getvalue()


def encode_error(code: str, message: str) -> bytes:
    w = Writer()
    w.u8(STATUS_ERROR)
    w.string(code)
    w.string(message)
    return w.getvalue()


def decode_response(data: bytes, structs: Optional[dict] = None):
    """Decode a response frame; error frames raise their boundary error"""
    r = Reader(data, structs)
    status = r.u8()
    if status == STATUS_ERROR:
        code = r.string()
        message = r.string()
        raise boundary_error(code, message)
    if status != STATUS_OK:
        raise WireError(f'unknown response status {status}')
    return r.value()
