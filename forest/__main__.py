"""Allow running the engine as a module: python -m forest."""

import sys

from forest.runner import main

if __name__ == "__main__":
    sys.exit(main())
