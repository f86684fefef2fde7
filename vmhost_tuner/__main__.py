"""
Entry point for running vmhost_tuner as a module.

Usage:
    sudo python -m vmhost_tuner
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
