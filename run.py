#!/usr/bin/env python3
"""
Launcher script for edgeindex.
Run this script to apply or inspect index releases.
"""

import sys
import os

# Add the current directory to Python path so we can import edgeindex
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

# Import and run the main function
from edgeindex.main import main

if __name__ == "__main__":
    raise SystemExit(main())
