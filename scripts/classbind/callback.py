"""
Callback binding generation module

Generates trampolines: each turns a callback handle received from the host
into a std::function that performs a synchronous round trip to the host
function whenever native code calls it. One trampoline is emitted per
distinct callback signature.
"""

from typing import TYPE_CHECKING

from .codegen import CodeGen, Symbols, cpp_encode, cpp_decode
from .types import Callback

if TYPE_CHECKING:
    from .ir import IR
    from .types import TypeModel


class CallbackGenerator:
    """Generates callback trampoline functions"""

    def __init__(self, ir: 'IR', model: 'TypeModel', symbols: Symbols):
        self.ir = ir
        self.model = model
        self.symbols = symbols
        self._signatures: dict[Callback, str] = {}
        self._collect()

    def _collect(self):
        for cls in self.ir.class_order():
            for func in cls.constructors + cls.methods + cls.static_methods:
                for param in func.params:
                    if isinstance(param, Callback) and param not in self._signatures:
                        self._signatures[param] = self.symbols.trampoline(len(self._signatures))

    @property
    def signatures(self) -> dict[Callback, str]:
        return dict(self._signatures)

    def trampoline_name(self, sig: Callback) -> str:
        return self._signatures[sig]

    def generate_all(self, gen: CodeGen):
        for sig, name in self._signatures.items():
            self.generate_trampoline(sig, name, gen)

    def generate_trampoline(self, sig: Callback, name: str, gen: CodeGen):
        """Generate trampoline function for one callback signature"""
        func_type = self.model.cpp_type(sig)
        ret_type = self.model.cpp_type(sig.returns)
        params = ', '.join(f'{self.model.cpp_type(p)} a{i}' for i, p in enumerate(sig.params))

        gen.line(f'// {sig}')
        with gen.block(f'static {func_type} {name}(classbind::CallbackHandle handle) {{'):
            with gen.block(f'return [handle]({params}) -> {ret_type} {{', '};'):
                gen.line(f'classbind::CallbackCall cc(handle, {len(sig.params)});')
                for i, param in enumerate(sig.params):
                    gen.line(cpp_encode(self.symbols, param, 'cc.arg', f'a{i}'))
                gen.line('cc.invoke();')
                if sig.returns is not None:
                    gen.line(f'return {cpp_decode(self.model, self.symbols, sig.returns, "cc.result")};')
        gen.line()
