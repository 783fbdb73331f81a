#!/usr/bin/env python3
"""
gen_bindings.py - class binding generator entry point

Generates C++ thunks, the Python host module and its stubs from a JSON
declaration file, or from the fixture configuration when none is given.

Usage:
    python scripts/gen_bindings.py [DECLS.json] OUTBASE [--module M] [--prefix P] [-v]
"""

import argparse
import logging
import os
import sys

# Get paths
script_dir = os.path.dirname(os.path.abspath(__file__))

# Add scripts directory to path
sys.path.insert(0, script_dir)

from classbind import Generator, GenerationError
from bindings import fixture


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Generate class bindings')
    parser.add_argument('paths', nargs='+', metavar='PATH',
                        help='[DECLS.json] OUTBASE; outputs are OUTBASE.cpp/.py/.pyi')
    parser.add_argument('--module', default=None,
                        help='Host module name (overrides the declaration file)')
    parser.add_argument('--prefix', default=None,
                        help='Thunk symbol prefix (overrides the declaration file)')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Log debug output')
    args = parser.parse_args(argv)
    if len(args.paths) > 2:
        parser.error('expected at most two paths: [DECLS.json] OUTBASE')
    return args


def main(argv=None) -> int:
    args = parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)

    *decls_path, output_base = args.paths
    gen = Generator(output_base)
    try:
        if decls_path:
            gen.load(decls_path[0])
        else:
            fixture.configure(gen)
        if args.module:
            gen.config.module = args.module
        if args.prefix:
            gen.config.prefix = args.prefix
        gen.generate()
    except GenerationError as e:
        print(f'error: {e}', file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
