"""
Host side of the boundary

HostSession marshals host values into call frames, turns response frames
back into host values and serves callback invocations coming from the
native side. Generated host modules register their wrapper classes with a
Binding and attach it to a session.
"""

from typing import Optional, Protocol, TYPE_CHECKING
import logging
import weakref

from .codec import (
    Value, RecordValue, HandleRef, ObjectRef, CallbackRef, SequenceValue,
    encode_call, decode_call, encode_ok, encode_error, decode_response,
)
from .codegen import Symbols
from .errors import BoundaryError, CallbackError, DoubleRelease, InvalidHandle, WireError
from .ir import Field, StructDecl, SHARED
from .lifetime import NULL_HANDLE
from .types import PrimitiveKind, host_int_kind, parse_type

if TYPE_CHECKING:
    from .ir import IR

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Carries call frames to the native side"""

    def invoke(self, symbol: str, payload: bytes) -> bytes:
        ...


# ==============================================================================
# Wrapper bases
# ==============================================================================

class HostRecord:
    """Base of generated struct records (dataclasses)"""
    __bind_name__ = ''
    __bind_fields__ = ()


class HostProxy:
    """Base of generated class wrappers; holds one handle"""
    __binding__: Optional['Binding'] = None
    __bind_class__ = ''

    _session: Optional['HostSession'] = None
    _handle = NULL_HANDLE
    _ownership = ''
    _released = True
    _finalizer = None

    def __init__(self, *args):
        raise TypeError(f'{type(self).__name__} has no constructors')

    @classmethod
    def _session_for(cls) -> 'HostSession':
        if cls.__binding__ is None:
            raise TypeError(f'{cls.__name__} is not registered with a binding')
        return cls.__binding__.require_session()

    def _construct(self, symbol: str, args: tuple):
        session = self._session_for()
        ref = session.exchange(symbol, args)
        if not isinstance(ref, ObjectRef):
            raise WireError(f'{symbol} did not return an object')
        session.adopt(self, ref)

    def _call(self, symbol: str, args: tuple):
        return self._session.call(symbol, args, receiver=self.handle)

    @classmethod
    def _call_static(cls, symbol: str, args: tuple):
        return cls._session_for().call(symbol, args)

    @property
    def handle(self) -> int:
        if self._released:
            raise InvalidHandle(f'{self!r} has been released')
        return self._handle

    @property
    def ownership(self) -> str:
        return self._ownership

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> bool:
        """Give up this wrapper's handle; True if the native object was destroyed"""
        if self._session is None:
            raise InvalidHandle(f'{self!r} is not bound to a session')
        return self._session.release_proxy(self)

    def destroy(self) -> bool:
        return self.release()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        if not self._released:
            self.release()

    def __eq__(self, other):
        if not isinstance(other, HostProxy):
            return NotImplemented
        return self._session is other._session and self._handle == other._handle

    def __hash__(self):
        return hash(self._handle)

    def __repr__(self):
        state = 'released' if self._released else self._ownership
        return f'<{type(self).__name__} #{self._handle} {state}>'


class InstanceField:
    """Instance field forwarded to getter/setter thunks; no setter means read-only"""

    def __init__(self, getter: str, setter: Optional[str] = None):
        self.getter = getter
        self.setter = setter
        self.name = ''

    def __set_name__(self, owner, name):
        self.name = name

    def __get__(self, obj, owner=None):
        if obj is None:
            return self
        return obj._call(self.getter, ())

    def __set__(self, obj, value):
        if self.setter is None:
            raise AttributeError(f'field {self.name} is read-only')
        obj._call(self.setter, (value,))


class DualMethod:
    """Name bound as an instance method and a static method at once"""

    def __init__(self, method: str, static: str):
        self.method = method
        self.static = static

    def __get__(self, obj, owner=None):
        if obj is None:
            return lambda *args: owner._call_static(self.static, args)
        return lambda *args: obj._call(self.method, args)


# ==============================================================================
# Binding registry
# ==============================================================================

class Binding:
    """Wrapper classes and records of one generated host module"""

    def __init__(self, module: str, prefix: str):
        self.module = module
        self.symbols = Symbols(prefix)
        self.classes: dict[str, type] = {}
        self.records: dict[str, type] = {}
        self.session: Optional['HostSession'] = None

    def proxy(self, name: str):
        """Class decorator registering a wrapper class"""
        def register(cls):
            cls.__binding__ = self
            cls.__bind_class__ = name
            self.classes[name] = cls
            return cls
        return register

    def record(self, name: str, **fields: str):
        """Class decorator registering a record with its field type spellings"""
        def register(cls):
            cls.__bind_name__ = name
            cls.__bind_fields__ = tuple(fields.items())
            self.records[name] = cls
            return cls
        return register

    def attach(self, session: 'HostSession'):
        session.register(self)
        self.session = session

    def require_session(self) -> 'HostSession':
        if self.session is None:
            raise RuntimeError(f'binding {self.module} is not attached to a session')
        return self.session


# ==============================================================================
# Session
# ==============================================================================

class HostSession:
    """Host end of one boundary"""

    def __init__(self, transport: Transport):
        self.transport = transport
        self.structs: dict[str, StructDecl] = {}
        self._classes: dict[str, type] = {}
        self._records: dict[str, type] = {}
        self._proxies: weakref.WeakValueDictionary = weakref.WeakValueDictionary()
        self._callbacks: dict[int, object] = {}
        self._callback_ids: dict[int, int] = {}
        self._native_refs: dict[int, int] = {}
        self._in_flight: dict[int, int] = {}
        self._next_callback = 1

    def register(self, binding: Binding):
        """Make a binding's classes and records known to this session"""
        self._classes.update(binding.classes)
        self._records.update(binding.records)
        for name, record in binding.records.items():
            fields = tuple(Field(fname, parse_type(spelling)) for fname, spelling in record.__bind_fields__)
            self.structs[name] = StructDecl(name, fields)
        logger.debug('attached %s: %d classes, %d records',
                     binding.module, len(binding.classes), len(binding.records))

    # --------------------------------------------------------------------------
    # Calls
    # --------------------------------------------------------------------------

    def exchange(self, symbol: str, args: tuple, receiver: Optional[int] = None):
        """Send a call frame; returns the decoded wire value

        Callbacks sent with the call are dropped afterwards unless the native
        side kept them.
        """
        sent = []
        try:
            wire = []
            for arg in args:
                value = self.to_wire(arg)
                if isinstance(value, CallbackRef):
                    self._in_flight[value.id] = self._in_flight.get(value.id, 0) + 1
                    sent.append(value.id)
                wire.append(value)
            payload = encode_call(wire, receiver, self.structs)
            return decode_response(self.transport.invoke(symbol, payload), self.structs)
        finally:
            for callback_id in sent:
                self._settle(callback_id)

    def call(self, symbol: str, args: tuple = (), receiver: Optional[int] = None):
        return self.from_wire(self.exchange(symbol, args, receiver))

    def adopt(self, proxy: HostProxy, ref: ObjectRef):
        """Bind a wrapper to a handle produced by the native side"""
        proxy._session = self
        proxy._handle = ref.id
        proxy._ownership = ref.ownership
        proxy._released = False
        if ref.ownership == SHARED:
            symbol = type(proxy).__binding__.symbols.release
            proxy._finalizer = weakref.finalize(proxy, self._finalize, symbol, ref.id)
        else:
            self._proxies[ref.id] = proxy
        logger.debug('adopt #%d %s %s', ref.id, ref.ownership, ref.class_name)

    def release_proxy(self, proxy: HostProxy) -> bool:
        if proxy._released:
            raise DoubleRelease(f'{proxy!r} was already released')
        proxy._released = True
        if proxy._finalizer is not None:
            proxy._finalizer.detach()
        elif self._proxies.get(proxy._handle) is proxy:
            del self._proxies[proxy._handle]
        return self.call(type(proxy).__binding__.symbols.release, (), receiver=proxy._handle)

    def _finalize(self, symbol: str, handle_id: int):
        try:
            self.call(symbol, (), receiver=handle_id)
        except BoundaryError as e:
            logger.warning('release of collected handle #%d failed: %s', handle_id, e)

    # --------------------------------------------------------------------------
    # Callbacks
    # --------------------------------------------------------------------------

    @property
    def live_callbacks(self) -> int:
        return len(self._callbacks)

    def callback_id(self, fn) -> int:
        """Handle of a host function; a function keeps its id while it is registered"""
        callback_id = self._callback_ids.get(id(fn))
        if callback_id is None:
            callback_id = self._next_callback
            self._next_callback += 1
            self._callback_ids[id(fn)] = callback_id
            self._callbacks[callback_id] = fn
        return callback_id

    def release_callback(self, fn):
        """Drop a function now, even if the native side still holds it"""
        callback_id = self._callback_ids.get(id(fn))
        if callback_id is None:
            raise InvalidHandle(f'{fn!r} has no callback handle')
        self._forget(callback_id)

    def hold_callback(self, callback_id: int):
        """The native side kept a reference to a callback"""
        self._native_refs[callback_id] = self._native_refs.get(callback_id, 0) + 1

    def drop_callback(self, callback_id: int):
        """The native side let go of a callback reference"""
        refs = self._native_refs.get(callback_id, 0) - 1
        if refs > 0:
            self._native_refs[callback_id] = refs
            return
        self._native_refs.pop(callback_id, None)
        if callback_id not in self._in_flight:
            self._forget(callback_id)

    def _settle(self, callback_id: int):
        flight = self._in_flight[callback_id] - 1
        if flight > 0:
            self._in_flight[callback_id] = flight
            return
        del self._in_flight[callback_id]
        if callback_id not in self._native_refs:
            self._forget(callback_id)

    def _forget(self, callback_id: int):
        fn = self._callbacks.pop(callback_id, None)
        if fn is None:
            return
        if self._callback_ids.get(id(fn)) == callback_id:
            del self._callback_ids[id(fn)]
        self._native_refs.pop(callback_id, None)
        logger.debug('callback #%d dropped', callback_id)

    def invoke_callback(self, callback_id: int, payload: bytes) -> bytes:
        """Run a host function for the native side; failures become error frames

        A shared object handed back gains a reference that the native side
        takes over.
        """
        fn = self._callbacks.get(callback_id)
        if fn is None:
            return encode_error(CallbackError.code, f'callback #{callback_id} has been released')
        try:
            _, args = decode_call(payload, self.structs)
            result = fn(*[self.from_wire(a) for a in args])
            if result is None:
                return encode_ok(None, self.structs)
            value = self.to_wire(result)
            if isinstance(result, HostProxy) and result.ownership == SHARED:
                self.call(type(result).__binding__.symbols.retain, (), receiver=result.handle)
            return encode_ok(value, self.structs)
        except BoundaryError as e:
            return encode_error(e.code, str(e))
        except Exception as e:
            logger.debug('callback #%d raised %s', callback_id, type(e).__name__)
            return encode_error(CallbackError.code, f'{type(e).__name__}: {e}')

    # --------------------------------------------------------------------------
    # Value conversion
    # --------------------------------------------------------------------------

    def to_wire(self, value):
        """Host value -> wire value"""
        if value is None:
            return HandleRef(NULL_HANDLE)
        if isinstance(value, HostProxy):
            return HandleRef(value.handle)
        if isinstance(value, HostRecord):
            return self._record_value(value)
        if isinstance(value, bool):
            return Value(PrimitiveKind.BOOL, value)
        if isinstance(value, int):
            return Value(host_int_kind(value), value)
        if isinstance(value, float):
            return Value(PrimitiveKind.FLOAT64, value)
        if isinstance(value, str):
            return Value(PrimitiveKind.STRING, value)
        if isinstance(value, (list, tuple)):
            return SequenceValue(_sequence_kind(value), tuple(value))
        if callable(value):
            return CallbackRef(self.callback_id(value))
        raise TypeError(f'{type(value).__name__} values cannot cross the boundary')

    def _record_value(self, record: HostRecord) -> RecordValue:
        fields = {}
        for name, _ in record.__bind_fields__:
            value = getattr(record, name)
            fields[name] = self._record_value(value) if isinstance(value, HostRecord) else value
        return RecordValue(record.__bind_name__, fields)

    def from_wire(self, value):
        """Wire value -> host value"""
        if value is None:
            return None
        if isinstance(value, Value):
            return value.value
        if isinstance(value, RecordValue):
            return self._make_record(value)
        if isinstance(value, SequenceValue):
            return list(value.values)
        if isinstance(value, ObjectRef):
            return self._proxy(value)
        if isinstance(value, HandleRef) and value.id == NULL_HANDLE:
            return None
        raise WireError(f'unexpected value {value!r} from the native side')

    def _make_record(self, value: RecordValue):
        record = self._records.get(value.name)
        if record is None:
            raise WireError(f'no host record registered for {value.name}')
        fields = {name: self._make_record(v) if isinstance(v, RecordValue) else v
                  for name, v in value.fields.items()}
        return record(**fields)

    def _proxy(self, ref: ObjectRef) -> HostProxy:
        if ref.ownership != SHARED:
            cached = self._proxies.get(ref.id)
            if cached is not None:
                return cached
        klass = self._classes.get(ref.class_name)
        if klass is None:
            raise WireError(f'no host wrapper registered for {ref.class_name}')
        proxy = klass.__new__(klass)
        self.adopt(proxy, ref)
        return proxy


def _sequence_kind(values) -> PrimitiveKind:
    if all(isinstance(v, bool) for v in values) and values:
        return PrimitiveKind.BOOL
    if all(isinstance(v, str) for v in values) and values:
        return PrimitiveKind.STRING
    if any(isinstance(v, float) for v in values):
        return PrimitiveKind.FLOAT64
    kinds = {host_int_kind(v) for v in values}
    for kind in (PrimitiveKind.UINT64, PrimitiveKind.INT64):
        if kind in kinds:
            if kind is PrimitiveKind.UINT64 and any(v < 0 for v in values):
                raise OverflowError('sequence mixes negative and unsigned 64-bit integers')
            return kind
    return PrimitiveKind.INT32


def loopback(ir: 'IR', natives: dict[str, object], records: Optional[dict[str, type]] = None) -> HostSession:
    """Session wired to an in-process reference native runtime"""
    from .boundary import NativeRuntime

    runtime = NativeRuntime(ir, natives, records)
    session = HostSession(runtime)
    runtime.connect(session)
    return session
