"""Module entry point for running autograph as a package.

Allows: python -m autograph <command>
"""

import sys

from autograph.cli import main

if __name__ == '__main__':
    sys.exit(main())
