#!/usr/bin/env python3
"""
RoadSync entry point for direct module execution.

This module allows running RoadSync via 'python -m roadsync'.
"""

import sys

from .main import main

if __name__ == "__main__":
    sys.exit(main())
