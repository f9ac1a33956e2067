"""
Main entry point for the office bot.
"""

import sys

from cli import main

if __name__ == "__main__":
    sys.exit(main())
