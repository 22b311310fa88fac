"""Entry point for ``python -m selfswap``."""

import sys

from selfswap.cli import main

if __name__ == "__main__":
    sys.exit(main())
