"""
Fixture binding configuration

Declares the class set used by the test-suite and the default CLI run:
- ClassB with a ClassBSub subclass
- ClassA: overloaded constructors (including a callback constructor),
  value structs, shared objects, stored and per-call callbacks, fields
  and statics
- SharedClass: a reference counted class
- Vec / Rect: value structs, Rect nesting Vec
"""

from classbind import Generator


def declare(decls):
    """Register the fixture declarations with a DeclarationCollector"""

    # ==========================================================================
    # Structs
    # ==========================================================================

    decls.struct('Vec', {'x': 'float', 'y': 'float'})
    decls.struct('Rect', {'min': 'Vec', 'max': 'Vec', 'label': 'int'})
    decls.typedef('Callback', 'fn(int) -> int')

    # ==========================================================================
    # Classes
    # ==========================================================================

    decls.open_class('ClassB')
    decls.constructor()
    decls.method('Foo', ('int',))
    decls.field('calls', 'int')

    decls.open_class('ClassBSub', base='ClassB')
    decls.constructor()
    decls.method('Bar', ('std::string',), 'std::string')

    decls.open_class('SharedClass', holder='shared')
    decls.constructor()
    decls.method('Thing', (), 'int')

    decls.open_class('ClassA')
    decls.constructor()
    decls.constructor('int')
    decls.constructor('int', 'ClassB*')
    decls.constructor('Callback')
    decls.static_method('StaticMethod', (), 'int')
    decls.method('MakeAB', (), 'ClassB*')
    decls.method('Partner', (), 'ClassB&')
    decls.method('UseB', ('ClassB&',), 'int')
    decls.method('GetVec', (), 'Vec')
    decls.method('SetVec', ('const Vec&',))
    decls.method('GetBounds', (), 'Rect')
    decls.method('SetBounds', ('Rect',))
    decls.method('DoShared', ('std::shared_ptr<SharedClass>',), 'int')
    decls.method('MakeShared', (), 'std::shared_ptr<SharedClass>')
    decls.method('AddOne', ('Callback', 'int'), 'int')
    decls.method('SetHandler', ('Callback',))
    decls.method('Fire', ('int',), 'int')
    decls.method('Roundtrip', ('fn(shared<SharedClass>) -> shared<SharedClass>',), 'shared<SharedClass>')
    decls.method('Fresh', ('fn() -> shared<SharedClass>',), 'shared<SharedClass>')
    decls.method('Scale', ('double',), 'double')
    decls.method('Scale', ('int',), 'int')
    decls.method('Sum', ('float[]',), 'double')
    decls.field('foo', 'int')
    decls.static_field('counter', 'int', 7)


def configure(gen: Generator):
    gen.config.module = 'fixture'
    gen.include('fixture.h')
    declare(gen.decls)
