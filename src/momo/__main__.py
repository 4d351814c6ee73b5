"""Momo CLI entry point.

This module is invoked when running `python -m momo` or the `momo` console
script.
"""

import sys

from momo.app import main

if __name__ == "__main__":
    sys.exit(main())
