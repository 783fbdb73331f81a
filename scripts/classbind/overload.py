"""
Overload resolution module

At generation time same-named callables are grouped into ordered dispatch
groups; at call arrival the matching candidate is selected from the decoded
argument payload.
"""

from dataclasses import dataclass
from typing import Callable as CallableType, Iterable, Optional

from .codec import Value, RecordValue, HandleRef, CallbackRef, SequenceValue, describe_value
from .errors import NoMatchingOverload, AmbiguousOverload
from .ir import Callable, SHARED
from .types import (
    Primitive, StructByValue, SharedHandle, Callback, PrimitiveSequence,
    HANDLE_TYPES, Match, is_nullable, primitive_match,
)

# handle id -> (class tag, ownership); raises InvalidHandle
DescribeHandle = CallableType[[int], tuple[str, str]]
IsSubclass = CallableType[[str, str], bool]


@dataclass(frozen=True)
class OverloadSet:
    """Candidates sharing one dispatch key"""
    owner: str
    name: str
    candidates: tuple[Callable, ...]

    @property
    def key(self) -> str:
        return f'{self.owner}.{self.name}'

    @property
    def is_static(self) -> bool:
        return self.candidates[0].is_static

    @property
    def max_arity(self) -> int:
        return max(c.arity for c in self.candidates)

    @property
    def min_arity(self) -> int:
        return min(c.arity for c in self.candidates)

    def select(self, args: list, describe: DescribeHandle, is_subclass: IsSubclass) -> tuple[int, Callable]:
        """Pick the candidate for a call; returns (index, candidate)"""
        # stale handles fail before any matching
        for arg in args:
            if isinstance(arg, HandleRef) and arg.id:
                describe(arg.id)

        matches = []
        for index, cand in enumerate(self.candidates):
            if cand.arity != len(args):
                continue
            ranks = [self._rank(arg, param, describe, is_subclass)
                     for arg, param in zip(args, cand.params)]
            if any(r is None for r in ranks):
                continue
            matches.append((index, cand, all(r is Match.EXACT for r in ranks)))

        if not matches:
            raise NoMatchingOverload(
                f'{self.key}: no overload accepts ({describe_args(args)}); '
                f'candidates: {", ".join(c.signature() for c in self.candidates)}')
        if len(matches) == 1:
            return matches[0][0], matches[0][1]

        exact = [m for m in matches if m[2]]
        if len(exact) == 1:
            return exact[0][0], exact[0][1]
        tied = exact or matches
        raise AmbiguousOverload(
            f'{self.key}: ({describe_args(args)}) matches '
            f'{", ".join(m[1].signature() for m in tied)}')

    @staticmethod
    def _rank(arg, param, describe: DescribeHandle, is_subclass: IsSubclass) -> Optional[Match]:
        if isinstance(param, Primitive):
            if isinstance(arg, Value):
                return primitive_match(arg.kind, param.kind, arg.value)
            return None

        if isinstance(param, StructByValue):
            if isinstance(arg, RecordValue) and arg.name == param.name:
                return Match.EXACT
            return None

        if isinstance(param, HANDLE_TYPES):
            if not isinstance(arg, HandleRef):
                return None
            if not arg.id:
                return Match.EXACT if is_nullable(param) else None
            class_tag, ownership = describe(arg.id)
            if isinstance(param, SharedHandle) and ownership != SHARED:
                return None
            if class_tag == param.name:
                return Match.EXACT
            if is_subclass(class_tag, param.name):
                return Match.WIDEN
            return None

        if isinstance(param, Callback):
            return Match.EXACT if isinstance(arg, CallbackRef) else None

        if isinstance(param, PrimitiveSequence):
            if not isinstance(arg, SequenceValue):
                return None
            ranks = [primitive_match(arg.kind, param.kind, v) for v in arg.values]
            if not ranks:
                ranks = [primitive_match(arg.kind, param.kind)]
            if any(r is None for r in ranks):
                return None
            return min(ranks)

        return None


def describe_args(args: list) -> str:
    return ', '.join(describe_value(a) for a in args)


def group_overloads(owner: str, callables: Iterable[Callable]) -> dict[str, OverloadSet]:
    """Partition callables by name; candidates ordered by arity, then declaration"""
    groups: dict[str, list[Callable]] = {}
    for func in callables:
        groups.setdefault(func.name, []).append(func)
    return {
        name: OverloadSet(owner, name, tuple(sorted(funcs, key=lambda f: f.arity)))
        for name, funcs in groups.items()
    }


def constructor_set(owner: str, constructors: Iterable[Callable]) -> Optional[OverloadSet]:
    """Constructors dispatch under the class name; None for opaque classes"""
    ctors = tuple(sorted(constructors, key=lambda f: f.arity))
    if not ctors:
        return None
    return OverloadSet(owner, owner, ctors)
