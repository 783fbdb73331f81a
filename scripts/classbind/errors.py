"""
Error types

Generation-time errors abort code generation. Boundary errors are raised at
dispatch time, travel across the boundary as error frames and are re-raised
on the host side by their wire code.
"""

from typing import Optional


class ClassbindError(Exception):
    """Root of all classbind errors"""


# ==============================================================================
# Generation-time errors
# ==============================================================================

class GenerationError(ClassbindError):
    """Fatal error while collecting declarations or emitting code"""


class DeclarationError(GenerationError):
    """Malformed or out-of-order registration"""


class DuplicateDeclaration(GenerationError):
    """A name or signature was registered twice"""


class UnknownBase(GenerationError):
    """A class names a base that is not (yet) declared"""


class NameCollision(GenerationError):
    """A field and a method share a name within one class"""


class UnmappableType(GenerationError):
    """A type has no boundary-crossing strategy"""

    def __init__(self, message: str, decl: Optional[str] = None, position: Optional[str] = None):
        self.decl = decl
        self.position = position
        if decl:
            where = f'{decl} ({position})' if position else decl
            message = f'{where}: {message}'
        super().__init__(message)


class MissingImplementation(GenerationError):
    """A declared class has no native implementation bound to it"""


# ==============================================================================
# Boundary (dispatch-time) errors
# ==============================================================================

class BoundaryError(ClassbindError):
    """Error reported to the caller across the boundary"""
    code = 'BoundaryError'


class NoMatchingOverload(BoundaryError):
    code = 'NoMatchingOverload'


class AmbiguousOverload(BoundaryError):
    code = 'AmbiguousOverload'


class InvalidHandle(BoundaryError):
    """Unknown, released, or wrongly typed handle id"""
    code = 'InvalidHandle'


class DoubleRelease(BoundaryError):
    code = 'DoubleRelease'


class NativeError(BoundaryError):
    """An exception raised by native code inside a thunk"""
    code = 'NativeError'


class CallbackError(BoundaryError):
    """A host callback failed or returned a value of the wrong type"""
    code = 'CallbackError'


class WireError(ClassbindError):
    """Truncated or malformed boundary frame"""


BOUNDARY_ERRORS: dict[str, type[BoundaryError]] = {
    cls.code: cls for cls in (
        BoundaryError, NoMatchingOverload, AmbiguousOverload,
        InvalidHandle, DoubleRelease, NativeError, CallbackError,
    )
}


def boundary_error(code: str, message: str) -> BoundaryError:
    """Rebuild a boundary error from its wire code"""
    return BOUNDARY_ERRORS.get(code, BoundaryError)(message)
