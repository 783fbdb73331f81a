"""Shared fixtures: the fixture declarations, native stand-ins and a loopback session."""

from __future__ import annotations

import sys
import types
from dataclasses import dataclass, field

import pytest

from bindings import fixture
from classbind import DeclarationCollector, Symbols, TypeModel, loopback
from classbind.host import HostGenerator


@dataclass
class NativeVec:
    x: float = 0.0
    y: float = 0.0


@dataclass
class NativeRect:
    min: NativeVec = field(default_factory=NativeVec)
    max: NativeVec = field(default_factory=NativeVec)
    label: int = 0


@pytest.fixture
def events():
    """(event, class name[, detail]) tuples logged by the native stand-ins"""
    return []


@pytest.fixture
def natives(events):
    class ClassB:
        def __init__(self):
            self.calls = 0
            events.append(("new", type(self).__name__))

        def Foo(self, x):
            self.calls += x

        def __destroy__(self):
            events.append(("destroy", type(self).__name__))

    class ClassBSub(ClassB):
        def Bar(self, text):
            if not text:
                raise ValueError("empty text")
            return f"bar:{text}"

    class SharedClass:
        def __init__(self):
            events.append(("new", "SharedClass"))

        def Thing(self):
            return 42

        def __destroy__(self):
            events.append(("destroy", "SharedClass"))

    class ClassA:
        def __init__(self, *args):
            x = args[0] if args else 0
            if callable(x):
                x = x(2)
            self.foo = x
            self.b = args[1] if len(args) > 1 else None
            self.vec = NativeVec()
            self.bounds = NativeRect()
            self.inner = ClassBSub()
            self.shared = None
            self.handler = None
            events.append(("new", "ClassA", len(args)))

        @staticmethod
        def StaticMethod():
            return 99

        def MakeAB(self):
            return ClassB()

        def Partner(self):
            return self.inner

        def UseB(self, b):
            b.Foo(1)
            return b.calls

        def GetVec(self):
            return self.vec

        def SetVec(self, vec):
            self.vec = vec

        def GetBounds(self):
            return self.bounds

        def SetBounds(self, bounds):
            self.bounds = bounds

        def DoShared(self, shared):
            return shared.Thing()

        def MakeShared(self):
            if self.shared is None:
                self.shared = SharedClass()
            return self.shared

        def AddOne(self, fn, x):
            return fn(x) + 1

        def SetHandler(self, fn):
            self.handler = fn

        def Fire(self, x):
            return self.handler(x)

        def Roundtrip(self, fn):
            return fn(SharedClass())

        def Fresh(self, fn):
            return fn()

        def Scale(self, value):
            return value * 2

        def Sum(self, values):
            return sum(values)

        def __destroy__(self):
            events.append(("destroy", "ClassA"))

    return {
        "ClassA": ClassA,
        "ClassB": ClassB,
        "ClassBSub": ClassBSub,
        "SharedClass": SharedClass,
    }


@pytest.fixture
def records():
    return {"Vec": NativeVec, "Rect": NativeRect}


@pytest.fixture
def ir():
    decls = DeclarationCollector("fixture")
    fixture.declare(decls)
    return decls.finish()


@pytest.fixture
def resolved(ir):
    return TypeModel(ir).resolve_ir()


@pytest.fixture
def session(ir, natives, records):
    return loopback(ir, natives, records)


@pytest.fixture
def runtime(session):
    return session.transport


@pytest.fixture
def make_host(monkeypatch):
    """Generate a host module for an IR and execute it; attached when a session is given"""

    def build(ir, session=None):
        resolved = TypeModel(ir).resolve_ir()
        source = HostGenerator(resolved, Symbols(resolved.prefix)).generate()
        module = types.ModuleType(f"{resolved.module}_host")
        monkeypatch.setitem(sys.modules, module.__name__, module)
        exec(compile(source, f"<{module.__name__}>", "exec"), module.__dict__)
        if session is not None:
            module.attach(session)
        return module

    return build


@pytest.fixture
def host(ir, session, make_host):
    """The generated fixture host module, attached to the loopback session"""
    return make_host(ir, session)
