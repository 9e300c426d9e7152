"""Entry point for the console relay."""

import sys

from console_relay.cli import main

if __name__ == "__main__":
    sys.exit(main())
