"""
IR (Intermediate Representation) module

Declarations of classes, structs, callables and fields, as built by the
declaration collector. The IR is immutable once collection has finished.
"""

from dataclasses import dataclass, field
from typing import Optional, TYPE_CHECKING
import json

if TYPE_CHECKING:
    from .types import TypeRef
    from .overload import OverloadSet


# Ownership modes; a class holder is one of the first two
EXCLUSIVE = 'exclusive'
SHARED = 'shared'
BORROWED = 'borrowed'
HOLDERS = (EXCLUSIVE, SHARED)
OWNERSHIPS = (EXCLUSIVE, SHARED, BORROWED)


@dataclass(frozen=True)
class Field:
    """Instance or static field"""
    name: str
    type: 'TypeRef'
    initial: object = None


@dataclass(frozen=True)
class Callable:
    """Constructor, method or static method"""
    name: str
    params: tuple['TypeRef', ...] = ()
    returns: Optional['TypeRef'] = None
    is_static: bool = False
    native_name: str = ''

    def __post_init__(self):
        if not self.native_name:
            object.__setattr__(self, 'native_name', self.name)

    @property
    def arity(self) -> int:
        return len(self.params)

    def signature(self) -> str:
        args = ', '.join(str(p) for p in self.params)
        return f'{self.name}({args})'


@dataclass(frozen=True)
class StructDecl:
    """Value struct: copied field-wise at the boundary"""
    name: str
    fields: tuple[Field, ...] = ()


@dataclass(frozen=True)
class ClassDecl:
    """Class with handle (identity) semantics"""
    name: str
    base: Optional[str] = None
    constructors: tuple[Callable, ...] = ()
    methods: tuple[Callable, ...] = ()
    static_methods: tuple[Callable, ...] = ()
    fields: tuple[Field, ...] = ()
    static_fields: tuple[Field, ...] = ()
    native_name: str = ''
    holder: str = EXCLUSIVE
    destructible: bool = True

    def __post_init__(self):
        if not self.native_name:
            object.__setattr__(self, 'native_name', self.name)


@dataclass(frozen=True)
class IR:
    """Intermediate representation of a declaration set"""
    module: str
    prefix: str = 'bind_'
    classes: dict[str, ClassDecl] = field(default_factory=dict)
    structs: dict[str, StructDecl] = field(default_factory=dict)
    typedefs: dict[str, str] = field(default_factory=dict)
    comment: str = ''

    @classmethod
    def load(cls, json_path: str) -> 'IR':
        """Load IR from a JSON declaration file"""
        with open(json_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> 'IR':
        """Create IR from a dictionary of ordered registration entries"""
        from .collector import DeclarationCollector

        collector = DeclarationCollector(
            module=data.get('module', 'bindings'),
            prefix=data.get('prefix', 'bind_'),
            comment=data.get('comment', ''),
        )
        collector.consume(data.get('decls', []))
        return collector.finish()

    def get_class(self, name: str) -> Optional[ClassDecl]:
        return self.classes.get(name)

    def get_struct(self, name: str) -> Optional[StructDecl]:
        return self.structs.get(name)

    def ancestors(self, name: str) -> list[str]:
        """Base chain of a class, nearest first"""
        chain = []
        cls = self.classes[name]
        while cls.base is not None:
            chain.append(cls.base)
            cls = self.classes[cls.base]
        return chain

    def is_subclass(self, name: str, base: str) -> bool:
        """True if name is base or derives from it"""
        return name == base or base in self.ancestors(name)

    def method_table(self, name: str) -> dict[str, 'OverloadSet']:
        """Own and inherited instance methods; the most-derived definition wins"""
        return self._member_table(name, lambda c: c.methods)

    def static_table(self, name: str) -> dict[str, 'OverloadSet']:
        """Own and inherited static methods; the most-derived definition wins"""
        return self._member_table(name, lambda c: c.static_methods)

    def member_groups(self, name: str) -> list[tuple[str, Optional['OverloadSet'], Optional['OverloadSet']]]:
        """Names a class redefines, as (name, instance group, static group)

        Either group may come from an ancestor when the class declares the
        other one; names the class does not touch are left to its base.
        """
        methods = self.method_table(name)
        statics = self.static_table(name)
        groups = []
        for key in dict.fromkeys([*methods, *statics]):
            method = methods.get(key)
            static = statics.get(key)
            owners = {g.owner for g in (method, static) if g is not None}
            if name in owners:
                groups.append((key, method, static))
        return groups

    def _member_table(self, name: str, members) -> dict[str, 'OverloadSet']:
        from .overload import group_overloads

        table = {}
        for owner in [name] + self.ancestors(name):
            for key, overloads in group_overloads(owner, members(self.classes[owner])).items():
                table.setdefault(key, overloads)
        return table

    def struct_order(self) -> list[StructDecl]:
        """Structs with nested struct dependencies first"""
        from .types import StructByValue

        ordered: list[StructDecl] = []
        done: set[str] = set()

        def visit(struct: StructDecl):
            if struct.name in done:
                return
            done.add(struct.name)
            for fld in struct.fields:
                if isinstance(fld.type, StructByValue) and fld.type.name in self.structs:
                    visit(self.structs[fld.type.name])
            ordered.append(struct)

        for struct in self.structs.values():
            visit(struct)
        return ordered

    def class_order(self) -> list[ClassDecl]:
        """Classes with bases first (declaration order already guarantees it)"""
        return list(self.classes.values())
