"""
Initiative Ledger - Main entry point.
"""

import sys

from initiative_ledger.cli import main

if __name__ == "__main__":
    sys.exit(main())
