"""
Main generator module

Orchestrates all components: declarations are collected into the IR, every
type is resolved by the type model, members are grouped into dispatch groups
and the emitters write the native thunks, the host module and its stubs.
"""

from dataclasses import replace
from typing import Optional
import json
import os

from .ir import IR
from .codegen import CodeGen, Symbols
from .collector import DeclarationCollector
from .errors import UnknownBase
from .types import TypeModel
from .struct import StructGenerator
from .thunk import ThunkGenerator
from .callback import CallbackGenerator
from .host import HostGenerator
from .stubs import StubGenerator

# Output file suffixes
NATIVE_SUFFIX = '.cpp'
HOST_SUFFIX = '.py'
STUB_SUFFIX = '.pyi'

# Runtime header shipped with the package, copied next to the outputs
RUNTIME_DIR = os.path.join(os.path.dirname(__file__), 'runtime')

# Standard headers the thunks rely on
STD_HEADERS = ['cstddef', 'cstdint', 'exception', 'functional', 'memory', 'string', 'vector']


class GeneratorConfig:
    """Configuration for one generated module"""

    def __init__(self, module: str = 'bindings', prefix: str = 'bind_'):
        self.module = module
        self.prefix = prefix
        self.export_macro = 'CLASSBIND_API'
        self.runtime_header = 'classbind_runtime.h'
        self.includes: list[str] = []
        self.ignores: set[str] = set()


class Generator:
    """Main binding generator"""

    def __init__(self, output_base: str, config: Optional[GeneratorConfig] = None):
        self.output_base = output_base
        self.config = config or GeneratorConfig()
        self.decls = DeclarationCollector(self.config.module, self.config.prefix)
        self._ir: Optional[IR] = None

    def ignore(self, *names: str):
        """Skip classes ('ClassA') or members ('ClassA.Foo') by name"""
        self.config.ignores.update(names)

    def include(self, *headers: str):
        """Headers declaring the native classes and structs"""
        self.config.includes.extend(headers)

    def load(self, json_path: str):
        """Append the declarations of a JSON file; its module/prefix keys configure the output"""
        with open(json_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        self.config.module = data.get('module', self.config.module)
        self.config.prefix = data.get('prefix', self.config.prefix)
        self.config.includes.extend(data.get('includes', []))
        self.decls.consume(data.get('decls', []))

    # --------------------------------------------------------------------------
    # IR
    # --------------------------------------------------------------------------

    def build_ir(self) -> IR:
        """Freeze the declarations and resolve every type"""
        if self._ir is None:
            ir = self.decls.finish()
            ir = replace(ir, module=self.config.module, prefix=self.config.prefix)
            ir = self._apply_ignores(ir)
            self._ir = TypeModel(ir).resolve_ir()
        return self._ir

    def _apply_ignores(self, ir: IR) -> IR:
        ignores = self.config.ignores
        if not ignores:
            return ir

        def keep(owner: str, members):
            return tuple(m for m in members if f'{owner}.{m.name}' not in ignores)

        classes = {}
        for name, cls in ir.classes.items():
            if name in ignores:
                continue
            if cls.base in ignores:
                raise UnknownBase(f'class {name}: base {cls.base} is ignored')
            classes[name] = replace(
                cls,
                methods=keep(name, cls.methods),
                static_methods=keep(name, cls.static_methods),
                fields=keep(name, cls.fields),
                static_fields=keep(name, cls.static_fields),
            )
        structs = {name: s for name, s in ir.structs.items() if name not in ignores}
        return replace(ir, classes=classes, structs=structs)

    # --------------------------------------------------------------------------
    # Generation
    # --------------------------------------------------------------------------

    def generate(self) -> dict[str, str]:
        """Generate all outputs; returns the written paths by kind"""
        print('=== Generating bindings:')
        ir = self.build_ir()
        outputs = {
            'native': (NATIVE_SUFFIX, self.generate_native(ir)),
            'host': (HOST_SUFFIX, self.generate_host(ir)),
            'stubs': (STUB_SUFFIX, self.generate_stubs(ir)),
        }

        out_dir = os.path.dirname(self.output_base)
        if out_dir:
            os.makedirs(out_dir, exist_ok=True)
        outputs_dir = out_dir or '.'

        paths = {}
        for kind, (suffix, text) in outputs.items():
            path = self.output_base + suffix
            print(f'  {ir.module} => {path}')
            with open(path, 'w', newline='\n') as f:
                f.write(text)
            paths[kind] = path

        runtime = os.path.join(outputs_dir, self.config.runtime_header)
        print(f'  runtime => {runtime}')
        with open(runtime, 'w', newline='\n') as f:
            f.write(self.runtime_source())
        paths['runtime'] = runtime
        return paths

    def generate_native(self, ir: IR) -> str:
        """Generate the C++ thunk translation unit"""
        gen = CodeGen()
        symbols = Symbols(ir.prefix)
        model = TypeModel(ir)
        macro = self.config.export_macro

        # Header
        gen.line('/* machine generated by classbind, do not edit */')
        if ir.comment:
            gen.line(f'/* {ir.comment} */')
        for header in STD_HEADERS:
            gen.line(f'#include <{header}>')
        gen.line()
        gen.line(f'#include "{self.config.runtime_header}"')
        for header in self.config.includes:
            gen.line(f'#include "{header}"')
        gen.line()

        # Export macro
        gen.line(f'#ifndef {macro}')
        gen.line('  #ifdef _WIN32')
        gen.line(f'    #define {macro} extern "C" __declspec(dllexport)')
        gen.line('  #else')
        gen.line(f'    #define {macro} extern "C" __attribute__((visibility("default")))')
        gen.line('  #endif')
        gen.line('#endif')
        gen.line()

        # Create generators
        struct_gen = StructGenerator(ir, symbols)
        callback_gen = CallbackGenerator(ir, model, symbols)
        thunk_gen = ThunkGenerator(ir, model, symbols, callback_gen, macro)

        if ir.structs:
            struct_gen.generate_declarations(gen)
            struct_gen.generate_all(gen)
        callback_gen.generate_all(gen)

        for cls in ir.class_order():
            thunk_gen.generate_class(cls, gen)

        thunk_gen.generate_handle_thunks(gen)
        thunk_gen.generate_init(gen)
        thunk_gen.generate_entry_points(gen)
        return gen.output()

    def runtime_source(self) -> str:
        """Text of the native runtime header the thunks include"""
        with open(os.path.join(RUNTIME_DIR, 'classbind_runtime.h'), 'r', encoding='utf-8') as f:
            return f.read()

    def generate_host(self, ir: IR) -> str:
        """Generate the Python host module"""
        return HostGenerator(ir, Symbols(ir.prefix)).generate()

    def generate_stubs(self, ir: IR) -> str:
        """Generate the .pyi stubs of the host module"""
        return StubGenerator(ir, TypeModel(ir)).generate()
