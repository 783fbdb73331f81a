"""
classbind - declaration-driven class binding generator

Exposes native class hierarchies (constructors, methods, fields, statics,
inheritance, value structs, shared objects and callbacks) to a Python host
across a call boundary. The generator emits C++ thunks, a Python host module
and its stubs; the reference boundary runs the same declarations against
Python stand-ins for the native classes.
"""

from .ir import IR, ClassDecl, StructDecl, Callable, Field, EXCLUSIVE, SHARED, BORROWED
from .types import TypeModel, parse_type
from .collector import DeclarationCollector
from .codegen import CodeGen, Symbols
from .errors import (
    ClassbindError, GenerationError, BoundaryError,
    DeclarationError, DuplicateDeclaration, UnknownBase, NameCollision,
    UnmappableType, MissingImplementation,
    NoMatchingOverload, AmbiguousOverload, InvalidHandle, DoubleRelease,
    NativeError, CallbackError, WireError,
)
from .lifetime import HandleTable
from .boundary import NativeRuntime
from .proxy import HostSession, HostProxy, HostRecord, loopback
from .generator import Generator, GeneratorConfig

__all__ = [
    'IR', 'ClassDecl', 'StructDecl', 'Callable', 'Field', 'EXCLUSIVE', 'SHARED', 'BORROWED',
    'TypeModel', 'parse_type',
    'DeclarationCollector',
    'CodeGen', 'Symbols',
    'ClassbindError', 'GenerationError', 'BoundaryError',
    'DeclarationError', 'DuplicateDeclaration', 'UnknownBase', 'NameCollision',
    'UnmappableType', 'MissingImplementation',
    'NoMatchingOverload', 'AmbiguousOverload', 'InvalidHandle', 'DoubleRelease',
    'NativeError', 'CallbackError', 'WireError',
    'HandleTable',
    'NativeRuntime',
    'HostSession', 'HostProxy', 'HostRecord', 'loopback',
    'Generator', 'GeneratorConfig',
]
