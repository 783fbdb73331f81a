"""
Stub generation module

Generates a .pyi file for the host module so IDEs and type checkers see
the declared signatures instead of the *args forwarding wrappers.
"""

from typing import TYPE_CHECKING

from .codegen import py_name
from .overload import constructor_set
from .types import is_writable_field

if TYPE_CHECKING:
    from .ir import IR, ClassDecl, StructDecl, Callable
    from .overload import OverloadSet
    from .types import TypeModel


class StubGenerator:
    """Generates .pyi type stubs for the host module"""

    def __init__(self, ir: 'IR', model: 'TypeModel'):
        self.ir = ir
        self.model = model

    def generate(self) -> str:
        """Generate complete stub file"""
        lines = []
        lines.append(f'# Type stubs for the {self.ir.module} host module')
        lines.append('# Auto-generated by classbind, do not edit')
        lines.append('')
        lines.append('from typing import Callable, overload')
        lines.append('')
        lines.append('from classbind.proxy import HostProxy, HostRecord, HostSession')
        lines.append('')

        for struct in self.ir.struct_order():
            lines.append('')
            lines.extend(self._gen_record(struct))
        for cls in self.ir.class_order():
            lines.append('')
            lines.extend(self._gen_class(cls))

        lines.append('')
        lines.append('def attach(session: HostSession) -> None: ...')
        return '\n'.join(lines) + '\n'

    def _gen_record(self, struct: 'StructDecl') -> list[str]:
        lines = [f'class {struct.name}(HostRecord):']
        params = []
        for fld in struct.fields:
            annotation = self.model.py_annotation(fld.type)
            lines.append(f'    {fld.name}: {annotation}')
            params.append(f'{fld.name}: {annotation} = ...')
        lines.append(f'    def __init__(self{"".join(", " + p for p in params)}) -> None: ...')
        return lines

    def _gen_class(self, cls: 'ClassDecl') -> list[str]:
        lines = [f'class {cls.name}({cls.base or "HostProxy"}):']

        ctors = constructor_set(cls.name, cls.constructors)
        if ctors is not None:
            lines.extend(self._gen_group(ctors, '__init__', 'self'))

        for name, method, static in self.ir.member_groups(cls.name):
            if method is not None:
                lines.extend(self._gen_group(method, py_name(name), 'self'))
            else:
                lines.extend(self._gen_group(static, py_name(name), 'cls'))

        for fld in cls.fields:
            lines.append(f'    {py_name(fld.name)}: {self.model.py_annotation(fld.type)}')

        for fld in cls.static_fields:
            annotation = self.model.py_annotation(fld.type)
            lines.append('    @classmethod')
            lines.append(f'    def get_{fld.name}(cls) -> {annotation}: ...')
            if is_writable_field(fld.type):
                lines.append('    @classmethod')
                lines.append(f'    def set_{fld.name}(cls, value: {annotation}) -> None: ...')

        if len(lines) == 1:
            lines.append('    ...')
        return lines

    def _gen_group(self, overloads: 'OverloadSet', name: str, receiver: str) -> list[str]:
        lines = []
        multiple = len(overloads.candidates) > 1
        for cand in overloads.candidates:
            if multiple:
                lines.append('    @overload')
            if receiver == 'cls':
                lines.append('    @classmethod')
            lines.append(f'    def {name}({self._params(cand, receiver)}) -> {self._returns(cand, name)}: ...')
        return lines

    def _params(self, cand: 'Callable', receiver: str) -> str:
        params = [receiver]
        params.extend(f'arg{i}: {self.model.py_annotation(p)}' for i, p in enumerate(cand.params))
        return ', '.join(params)

    def _returns(self, cand: 'Callable', name: str) -> str:
        if name == '__init__':
            return 'None'
        return self.model.py_annotation(cand.returns)
