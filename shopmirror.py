#!/usr/bin/env python3
"""
Convenience shim to run shopmirror from a source checkout.
Usage: python shopmirror.py {metadata,media,all,convert} [--help]
"""

from shopmirror.cli import main


if __name__ == "__main__":
    main()
