"""
Declaration collector module

Builds a validated IR from an ordered sequence of registrations:
class-open, base-declare, constructor, method, static method, field,
static field, struct and typedef.
"""

from dataclasses import dataclass, field
from typing import Optional, Union

from .errors import DeclarationError, DuplicateDeclaration, UnknownBase, NameCollision
from .ir import IR, ClassDecl, StructDecl, Callable, Field, HOLDERS, EXCLUSIVE
from .types import TypeRef, parse_type, parse_return

TypeSpec = Union[str, TypeRef]


def _as_type(spec: TypeSpec) -> TypeRef:
    if isinstance(spec, str):
        return parse_type(spec)
    return spec


def _as_return(spec: Optional[TypeSpec]) -> Optional[TypeRef]:
    if spec is None or isinstance(spec, str):
        return parse_return(spec)
    return spec


@dataclass
class _ClassBuilder:
    """Mutable class declaration while registration is open"""
    name: str
    native_name: str
    holder: str
    destructible: bool
    base: Optional[str] = None
    constructors: list[Callable] = field(default_factory=list)
    methods: list[Callable] = field(default_factory=list)
    static_methods: list[Callable] = field(default_factory=list)
    fields: list[Field] = field(default_factory=list)
    static_fields: list[Field] = field(default_factory=list)

    def field_names(self) -> set[str]:
        return {f.name for f in self.fields} | {f.name for f in self.static_fields}

    def method_names(self) -> set[str]:
        return {m.name for m in self.methods} | {m.name for m in self.static_methods}

    def freeze(self) -> ClassDecl:
        return ClassDecl(
            name=self.name,
            base=self.base,
            constructors=tuple(self.constructors),
            methods=tuple(self.methods),
            static_methods=tuple(self.static_methods),
            fields=tuple(self.fields),
            static_fields=tuple(self.static_fields),
            native_name=self.native_name,
            holder=self.holder,
            destructible=self.destructible,
        )


class DeclarationCollector:
    """Collects registrations into an IR"""

    def __init__(self, module: str = 'bindings', prefix: str = 'bind_', comment: str = ''):
        self.module = module
        self.prefix = prefix
        self.comment = comment
        self._classes: dict[str, _ClassBuilder] = {}
        self._structs: dict[str, StructDecl] = {}
        self._typedefs: dict[str, str] = {}
        self._current: Optional[_ClassBuilder] = None
        self._finished = False

    # --------------------------------------------------------------------------
    # Registration surface
    # --------------------------------------------------------------------------

    def open_class(self, name: str, base: Optional[str] = None, native_name: Optional[str] = None,
                   holder: str = EXCLUSIVE, destructible: bool = True):
        """Open a class; following member registrations apply to it"""
        self._check_open()
        self._claim_name(name)
        if holder not in HOLDERS:
            raise DeclarationError(f'class {name}: holder must be one of {HOLDERS}, not {holder!r}')
        self._current = _ClassBuilder(name, native_name or name, holder, destructible)
        self._classes[name] = self._current
        if base is not None:
            self.declare_base(base)

    def declare_base(self, base: str):
        cls = self._require_class('base')
        if cls.base is not None:
            raise DuplicateDeclaration(f'class {cls.name} already derives from {cls.base}')
        if base == cls.name or base not in self._classes:
            if base in self._structs:
                raise UnknownBase(f'class {cls.name}: base {base} is a struct')
            raise UnknownBase(f'class {cls.name}: base {base} is not declared before it')
        cls.base = base

    def constructor(self, *params: TypeSpec, native_name: Optional[str] = None):
        cls = self._require_class('constructor')
        ctor = Callable(cls.name, tuple(_as_type(p) for p in params),
                        returns=None, is_static=True, native_name=native_name or cls.native_name)
        self._add_overload(cls, cls.constructors, ctor, 'constructor')

    def method(self, name: str, params: tuple = (), returns: Optional[TypeSpec] = None,
               native_name: Optional[str] = None):
        cls = self._require_class('method')
        if name in cls.field_names():
            raise NameCollision(f'class {cls.name}: method {name} collides with a field')
        func = Callable(name, tuple(_as_type(p) for p in params), _as_return(returns),
                        is_static=False, native_name=native_name or name)
        self._add_overload(cls, cls.methods, func, 'method')

    def static_method(self, name: str, params: tuple = (), returns: Optional[TypeSpec] = None,
                      native_name: Optional[str] = None):
        cls = self._require_class('static method')
        if name in cls.field_names():
            raise NameCollision(f'class {cls.name}: static method {name} collides with a field')
        func = Callable(name, tuple(_as_type(p) for p in params), _as_return(returns),
                        is_static=True, native_name=native_name or name)
        self._add_overload(cls, cls.static_methods, func, 'static method')

    def field(self, name: str, type: TypeSpec):
        cls = self._require_class('field')
        self._check_field_name(cls, name)
        cls.fields.append(Field(name, _as_type(type)))

    def static_field(self, name: str, type: TypeSpec, initial: object = None):
        """Static field; its initial value is captured now"""
        cls = self._require_class('static field')
        self._check_field_name(cls, name)
        cls.static_fields.append(Field(name, _as_type(type), initial))

    def struct(self, name: str, fields: Union[dict, list]):
        """Value struct, fields given as {name: type} or [(name, type), ...]"""
        self._check_open()
        self._claim_name(name)
        items = fields.items() if isinstance(fields, dict) else fields
        decl_fields = []
        seen = set()
        for fname, ftype in items:
            if fname in seen:
                raise DuplicateDeclaration(f'struct {name}: field {fname} declared twice')
            seen.add(fname)
            decl_fields.append(Field(fname, _as_type(ftype)))
        self._structs[name] = StructDecl(name, tuple(decl_fields))
        self._current = None

    def typedef(self, name: str, spelling: str):
        self._check_open()
        self._claim_name(name)
        self._typedefs[name] = spelling

    # --------------------------------------------------------------------------
    # Entry lists (JSON declaration files)
    # --------------------------------------------------------------------------

    def consume(self, entries: list[dict]):
        """Register a list of dict entries, in order"""
        for entry in entries:
            kind = entry.get('kind')
            try:
                if kind == 'class':
                    self.open_class(entry['name'], base=entry.get('base'),
                                    native_name=entry.get('native_name'),
                                    holder=entry.get('holder', EXCLUSIVE),
                                    destructible=entry.get('destructible', True))
                elif kind == 'base':
                    self.declare_base(entry['name'])
                elif kind == 'constructor':
                    self.constructor(*entry.get('params', []), native_name=entry.get('native_name'))
                elif kind == 'method':
                    self.method(entry['name'], tuple(entry.get('params', [])),
                                entry.get('returns'), entry.get('native_name'))
                elif kind == 'static_method':
                    self.static_method(entry['name'], tuple(entry.get('params', [])),
                                       entry.get('returns'), entry.get('native_name'))
                elif kind == 'field':
                    self.field(entry['name'], entry['type'])
                elif kind == 'static_field':
                    self.static_field(entry['name'], entry['type'], entry.get('value'))
                elif kind == 'struct':
                    self.struct(entry['name'], [(f['name'], f['type']) for f in entry.get('fields', [])])
                elif kind == 'typedef':
                    self.typedef(entry['name'], entry['type'])
                else:
                    raise DeclarationError(f'unknown declaration kind {kind!r}')
            except KeyError as e:
                raise DeclarationError(f'{kind} entry is missing {e.args[0]!r}: {entry}') from None

    def finish(self) -> IR:
        """Freeze the collected declarations"""
        self._check_open()
        self._finished = True
        self._current = None
        return IR(
            module=self.module,
            prefix=self.prefix,
            classes={name: b.freeze() for name, b in self._classes.items()},
            structs=dict(self._structs),
            typedefs=dict(self._typedefs),
            comment=self.comment,
        )

    # --------------------------------------------------------------------------
    # Checks
    # --------------------------------------------------------------------------

    def _check_open(self):
        if self._finished:
            raise DeclarationError('declarations are frozen once collection has finished')

    def _claim_name(self, name: str):
        if name in self._classes or name in self._structs or name in self._typedefs:
            raise DuplicateDeclaration(f'{name} is already declared')

    def _require_class(self, what: str) -> _ClassBuilder:
        self._check_open()
        if self._current is None:
            raise DeclarationError(f'{what} declared outside of a class')
        return self._current

    def _check_field_name(self, cls: _ClassBuilder, name: str):
        if name in cls.field_names():
            raise DuplicateDeclaration(f'class {cls.name}: field {name} declared twice')
        if name in cls.method_names():
            raise NameCollision(f'class {cls.name}: field {name} collides with a method')

    def _add_overload(self, cls: _ClassBuilder, members: list[Callable], func: Callable, what: str):
        for other in members:
            if other.name == func.name and other.params == func.params:
                raise DuplicateDeclaration(f'class {cls.name}: {what} {func.signature()} declared twice')
        members.append(func)
