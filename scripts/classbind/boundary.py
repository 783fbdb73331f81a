"""
Reference native boundary

Executes the dispatch thunks of a declaration set against Python stand-ins
for the native classes. Every thunk takes a call frame and returns a
response frame, exactly like the generated C++ thunks do, so the host
wrappers can be exercised without a compiler.
"""

from contextlib import contextmanager
from dataclasses import make_dataclass, field as dc_field
from typing import Callable as CallableType, Optional, Protocol, TYPE_CHECKING
import logging
import weakref

from .codec import (
    Value, RecordValue, HandleRef, ObjectRef, SequenceValue,
    coerce, encode_call, decode_call, encode_ok, encode_error, decode_response,
)
from .codegen import Symbols, DESTRUCTOR
from .errors import (
    BoundaryError, InvalidHandle, NativeError, CallbackError, WireError, MissingImplementation,
)
from .ir import Callable, EXCLUSIVE, SHARED, BORROWED
from .lifetime import HandleTable, NULL_HANDLE
from .overload import OverloadSet, constructor_set, group_overloads
from .types import (
    Primitive, StructByValue, ExclusivePointer, SharedHandle, BorrowedReference,
    Callback, PrimitiveSequence, PrimitiveKind, HANDLE_TYPES, TypeModel,
    is_nullable, is_writable_field,
)

if TYPE_CHECKING:
    from .ir import IR, ClassDecl, Field

logger = logging.getLogger(__name__)

Thunk = CallableType[[bytes], bytes]


class CallbackHost(Protocol):
    """Host side of callback trampolines"""

    def invoke_callback(self, callback_id: int, payload: bytes) -> bytes:
        ...

    def hold_callback(self, callback_id: int):
        ...

    def drop_callback(self, callback_id: int):
        ...


def record_type(decl) -> type:
    """Default native stand-in for a struct: a dataclass of its fields"""
    fields = [(f.name, object, dc_field(default=None)) for f in decl.fields]
    return make_dataclass(decl.name, fields)


class NativeRuntime:
    """Native side of the boundary for one declaration set

    natives maps class names to their implementation: a Python class whose
    constructor and attributes mirror the declared ones. Classes without
    constructors or static methods may be left out.
    """

    def __init__(self, ir: 'IR', natives: dict[str, object],
                 records: Optional[dict[str, type]] = None):
        self.ir = TypeModel(ir).resolve_ir()
        self.symbols = Symbols(self.ir.prefix)
        self.handles = HandleTable()
        self.natives = dict(natives)
        self.records = {name: (records or {}).get(name) or record_type(decl)
                        for name, decl in self.ir.structs.items()}
        self.host: Optional[CallbackHost] = None

        self._thunks: dict[str, Thunk] = {}
        self._statics: dict[tuple[str, str], object] = {}
        self._class_tags: dict[type, str] = {}
        self._scopes: list[list[int]] = []
        self._build()

    def connect(self, host: CallbackHost):
        """Attach the host that serves callback invocations"""
        self.host = host

    @property
    def exported(self) -> list[str]:
        """Names of all thunks"""
        return list(self._thunks)

    # ==========================================================================
    # Dispatch
    # ==========================================================================

    def invoke(self, symbol: str, payload: bytes) -> bytes:
        """Run one thunk; every failure becomes an error frame"""
        thunk = self._thunks.get(symbol)
        if thunk is None:
            return encode_error(BoundaryError.code, f'unknown symbol {symbol}')
        try:
            with self._call_scope():
                result = thunk(payload)
            return encode_ok(result, self.ir.structs)
        except BoundaryError as e:
            logger.debug('%s failed: %s: %s', symbol, e.code, e)
            return encode_error(e.code, str(e))
        except WireError as e:
            return encode_error(BoundaryError.code, f'malformed frame for {symbol}: {e}')
        except Exception as e:
            logger.debug('%s raised %s', symbol, type(e).__name__)
            return encode_error(NativeError.code, f'{type(e).__name__}: {e}')

    @contextmanager
    def _call_scope(self):
        """References taken over during a call are released when it returns"""
        pending: list[int] = []
        self._scopes.append(pending)
        try:
            yield
        finally:
            self._scopes.pop()
            for handle_id in pending:
                self.handles.release(handle_id)

    # ==========================================================================
    # Thunk table
    # ==========================================================================

    def _build(self):
        self._thunks[self.symbols.retain] = self._retain_thunk
        self._thunks[self.symbols.release] = self._release_thunk

        for cls in self.ir.class_order():
            impl = self.natives.get(cls.name)
            if impl is None and (cls.constructors or cls.static_methods):
                raise MissingImplementation(f'no native implementation bound to class {cls.name}')
            if isinstance(impl, type):
                self._class_tags[impl] = cls.name
            self._build_class(cls, impl)

        logger.debug('native runtime %s: %d thunks', self.ir.module, len(self._thunks))

    def _build_class(self, cls: 'ClassDecl', impl: Optional[object]):
        s = self.symbols

        ctors = constructor_set(cls.name, cls.constructors)
        if ctors is not None:
            self._thunks[s.constructor(cls.name)] = self._constructor_thunk(cls, impl, ctors)
        if cls.destructible:
            self._thunks[s.destructor(cls.name)] = self._destructor_thunk(cls)

        for name, overloads in group_overloads(cls.name, cls.methods).items():
            self._thunks[s.method(cls.name, name)] = self._method_thunk(cls, overloads)
        for name, overloads in group_overloads(cls.name, cls.static_methods).items():
            self._thunks[s.static_method(cls.name, name)] = self._static_thunk(impl, overloads)

        for fld in cls.fields:
            self._thunks[s.getter(cls.name, fld.name)] = self._getter_thunk(cls, fld)
            if is_writable_field(fld.type):
                self._thunks[s.setter(cls.name, fld.name)] = self._setter_thunk(cls, fld)
        for fld in cls.static_fields:
            self._init_static(cls, impl, fld)
            self._thunks[s.static_getter(cls.name, fld.name)] = self._static_getter_thunk(cls, impl, fld)
            if is_writable_field(fld.type):
                self._thunks[s.static_setter(cls.name, fld.name)] = self._static_setter_thunk(cls, impl, fld)

    # --------------------------------------------------------------------------
    # Handle thunks
    # --------------------------------------------------------------------------

    def _receiver_id(self, payload: bytes) -> tuple[int, list]:
        receiver, args = decode_call(payload, self.ir.structs)
        if receiver is None:
            raise InvalidHandle('call frame carries no receiver handle')
        return receiver, args

    def _retain_thunk(self, payload: bytes):
        handle_id, _ = self._receiver_id(payload)
        self.handles.retain(handle_id)

    def _release_thunk(self, payload: bytes):
        handle_id, _ = self._receiver_id(payload)
        return Value(PrimitiveKind.BOOL, self.handles.release(handle_id))

    def _destructor_thunk(self, cls: 'ClassDecl') -> Thunk:
        def thunk(payload: bytes):
            handle_id, _ = self._receiver_id(payload)
            if self.handles.is_live(handle_id):
                self._receiver(cls.name, handle_id)
            return Value(PrimitiveKind.BOOL, self.handles.release(handle_id))
        return thunk

    def _receiver(self, owner: str, handle_id: int) -> object:
        """Live object behind a receiver handle, checked against its class"""
        entry = self.handles.entry(handle_id)
        if not self.ir.is_subclass(entry.class_tag, owner):
            raise InvalidHandle(f'handle #{handle_id} is a {entry.class_tag}, not a {owner}')
        return entry.obj

    def destructor_for(self, class_name: str) -> Optional[CallableType[[object], None]]:
        """Destructor hook of a class; None when instances are never destroyed"""
        if not self.ir.classes[class_name].destructible:
            return None

        def destroy(obj):
            hook = getattr(obj, DESTRUCTOR, None)
            if hook is not None:
                hook()
        return destroy

    # --------------------------------------------------------------------------
    # Callable thunks
    # --------------------------------------------------------------------------

    def _select(self, overloads: OverloadSet, args: list) -> 'Callable':
        _, cand = overloads.select(args, self.handles.describe, self.ir.is_subclass)
        return cand

    def _constructor_thunk(self, cls: 'ClassDecl', impl, overloads: OverloadSet) -> Thunk:
        def thunk(payload: bytes):
            _, args = decode_call(payload, self.ir.structs)
            cand = self._select(overloads, args)
            factory = impl if cand.native_name == cls.native_name else getattr(impl, cand.native_name)
            obj = self._call(factory, cand, args)
            handle_id = self.handles.register(obj, cls.holder, cls.name, self.destructor_for(cls.name))
            return ObjectRef(handle_id, cls.name, cls.holder)
        return thunk

    def _method_thunk(self, cls: 'ClassDecl', overloads: OverloadSet) -> Thunk:
        def thunk(payload: bytes):
            handle_id, args = self._receiver_id(payload)
            obj = self._receiver(cls.name, handle_id)
            cand = self._select(overloads, args)
            result = self._call(getattr(obj, cand.native_name), cand, args)
            return self.to_wire(cand.returns, result)
        return thunk

    def _static_thunk(self, impl, overloads: OverloadSet) -> Thunk:
        def thunk(payload: bytes):
            _, args = decode_call(payload, self.ir.structs)
            cand = self._select(overloads, args)
            result = self._call(getattr(impl, cand.native_name), cand, args)
            return self.to_wire(cand.returns, result)
        return thunk

    def _call(self, func, cand: 'Callable', args: list):
        """Convert arguments, then call; shared arguments are held for the call"""
        held = [a.id for a, p in zip(args, cand.params)
                if isinstance(p, SharedHandle) and isinstance(a, HandleRef) and a.id]
        native_args = [self.to_native(p, a) for p, a in zip(cand.params, args)]
        for handle_id in held:
            self.handles.retain(handle_id)
        try:
            return func(*native_args)
        finally:
            for handle_id in held:
                self.handles.release(handle_id)

    # --------------------------------------------------------------------------
    # Field thunks
    # --------------------------------------------------------------------------

    def _getter_thunk(self, cls: 'ClassDecl', fld: 'Field') -> Thunk:
        def thunk(payload: bytes):
            handle_id, _ = self._receiver_id(payload)
            obj = self._receiver(cls.name, handle_id)
            return self.to_wire(fld.type, getattr(obj, fld.name), borrowed=True)
        return thunk

    def _setter_thunk(self, cls: 'ClassDecl', fld: 'Field') -> Thunk:
        def thunk(payload: bytes):
            handle_id, args = self._receiver_id(payload)
            obj = self._receiver(cls.name, handle_id)
            setattr(obj, fld.name, self._field_value(cls, fld, args))
        return thunk

    def _init_static(self, cls: 'ClassDecl', impl, fld: 'Field'):
        initial = fld.initial
        if initial is None and isinstance(fld.type, Primitive):
            initial = coerce(fld.type.kind, 0)
        if impl is not None:
            setattr(impl, fld.name, initial)
        else:
            self._statics[cls.name, fld.name] = initial

    def _static_getter_thunk(self, cls: 'ClassDecl', impl, fld: 'Field') -> Thunk:
        def thunk(payload: bytes):
            if impl is not None:
                value = getattr(impl, fld.name)
            else:
                value = self._statics[cls.name, fld.name]
            return self.to_wire(fld.type, value, borrowed=True)
        return thunk

    def _static_setter_thunk(self, cls: 'ClassDecl', impl, fld: 'Field') -> Thunk:
        def thunk(payload: bytes):
            _, args = decode_call(payload, self.ir.structs)
            value = self._field_value(cls, fld, args)
            if impl is not None:
                setattr(impl, fld.name, value)
            else:
                self._statics[cls.name, fld.name] = value
        return thunk

    def _field_value(self, cls: 'ClassDecl', fld: 'Field', args: list):
        setter = OverloadSet(cls.name, fld.name, (_setter_signature(fld),))
        self._select(setter, args)
        return self.to_native(fld.type, args[0])

    # ==========================================================================
    # Value conversion
    # ==========================================================================

    def to_native(self, type_ref, value):
        """Decoded wire value -> native value of a parameter type"""
        if isinstance(type_ref, Primitive):
            return coerce(type_ref.kind, value.value)
        if isinstance(type_ref, StructByValue):
            return self._make_record(value)
        if isinstance(type_ref, HANDLE_TYPES):
            if value.id == NULL_HANDLE:
                return None
            return self.handles.resolve(value.id)
        if isinstance(type_ref, Callback):
            return self._trampoline(value.id, type_ref)
        if isinstance(type_ref, PrimitiveSequence):
            return [coerce(type_ref.kind, v) for v in value.values]
        raise WireError(f'cannot convert {value!r} to {type_ref}')

    def _make_record(self, value: RecordValue):
        decl = self.ir.structs[value.name]
        kwargs = {}
        for fld in decl.fields:
            raw = value.fields[fld.name]
            if isinstance(fld.type, StructByValue):
                kwargs[fld.name] = self._make_record(raw)
            else:
                kwargs[fld.name] = coerce(fld.type.kind, raw)
        return self.records[value.name](**kwargs)

    def to_wire(self, type_ref, value, borrowed: bool = False):
        """Native value -> wire value of a result type

        Objects become handles with the ownership their type transfers;
        borrowed forces a non-owning handle (field reads).
        """
        if type_ref is None:
            return None
        if isinstance(type_ref, Primitive):
            return Value(type_ref.kind, coerce(type_ref.kind, value))
        if isinstance(type_ref, StructByValue):
            return self._record_value(type_ref.name, value)
        if isinstance(type_ref, HANDLE_TYPES):
            if value is None:
                return HandleRef(NULL_HANDLE)
            ownership = _OWNERSHIP[type(type_ref)]
            if borrowed and ownership != SHARED:
                ownership = BORROWED
            return self.produce(value, type_ref.name, ownership)
        if isinstance(type_ref, PrimitiveSequence):
            return SequenceValue(type_ref.kind, tuple(coerce(type_ref.kind, v) for v in value))
        raise WireError(f'cannot convert {value!r} to {type_ref}')

    def _record_value(self, name: str, value) -> RecordValue:
        decl = self.ir.structs[name]
        fields = {}
        for fld in decl.fields:
            raw = value[fld.name] if isinstance(value, dict) else getattr(value, fld.name)
            if isinstance(fld.type, StructByValue):
                fields[fld.name] = self._record_value(fld.type.name, raw)
            else:
                fields[fld.name] = coerce(fld.type.kind, raw)
        return RecordValue(name, fields)

    def produce(self, obj: object, declared: str, ownership: str) -> ObjectRef:
        """Handle for an object crossing to the host, tagged with its runtime class"""
        class_tag = self.class_tag(obj, declared)
        handle_id = self.handles.produce(obj, ownership, class_tag, self.destructor_for(class_tag))
        entry = self.handles.entry(handle_id)
        return ObjectRef(handle_id, entry.class_tag, entry.ownership)

    def class_tag(self, obj: object, declared: str) -> str:
        """Most-derived declared class of a native object"""
        for klass in type(obj).__mro__:
            tag = self._class_tags.get(klass)
            if tag is not None and self.ir.is_subclass(tag, declared):
                return tag
        return declared

    # ==========================================================================
    # Callbacks
    # ==========================================================================

    def _trampoline(self, callback_id: int, sig: Callback):
        """Native-callable function forwarding to a host callback"""
        def trampoline(*args):
            if len(args) != len(sig.params):
                raise CallbackError(
                    f'callback #{callback_id} takes {len(sig.params)} arguments, got {len(args)}')
            if self.host is None:
                raise CallbackError(f'callback #{callback_id} invoked with no host connected')
            wire_args = [self.to_wire(p, a) for p, a in zip(sig.params, args)]
            payload = encode_call(wire_args, None, self.ir.structs)
            result = decode_response(self.host.invoke_callback(callback_id, payload), self.ir.structs)
            return self._callback_result(callback_id, sig.returns, result)

        trampoline.callback_id = callback_id
        if self.host is not None:
            self.host.hold_callback(callback_id)
            weakref.finalize(trampoline, self.host.drop_callback, callback_id).atexit = False
        return trampoline

    def _callback_result(self, callback_id: int, returns, result):
        if isinstance(result, HandleRef) and result.id != NULL_HANDLE:
            self._take_over(result.id)
        if returns is None:
            return None
        if result is None and is_nullable(returns):
            return None
        expected = OverloadSet('callback', f'#{callback_id}', (_result_signature(returns),))
        try:
            self._select(expected, [result])
        except BoundaryError as e:
            raise CallbackError(f'callback #{callback_id} returned the wrong type: {e}') from None
        return self.to_native(returns, result)

    def _take_over(self, handle_id: int):
        """Own the reference a callback passed along with a shared result"""
        if not self.handles.is_live(handle_id) or self.handles.ownership_of(handle_id) != SHARED:
            return
        if self._scopes:
            self._scopes[-1].append(handle_id)
        else:
            self.handles.hold_natively(handle_id)
            self.handles.release(handle_id)


def _setter_signature(fld: 'Field') -> Callable:
    return Callable(f'set_{fld.name}', (fld.type,))


def _result_signature(returns) -> Callable:
    return Callable('return', (returns,))


_OWNERSHIP = {
    ExclusivePointer: EXCLUSIVE,
    SharedHandle: SHARED,
    BorrowedReference: BORROWED,
}
