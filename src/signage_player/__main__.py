"""
Entry point for: python -m signage_player
"""

import sys

from .player import main

if __name__ == "__main__":
    sys.exit(main())
