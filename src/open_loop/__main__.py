"""Entry point for the OpenLoop package."""

import sys

from open_loop.main import main

if __name__ == "__main__":
    sys.exit(main())
