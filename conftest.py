"""
Pytest configuration for the SSM Connect unit tests.

The modules live flat under src/ and import each other by bare name, so
src/ goes on sys.path before collection.
"""

import os
import sys

ROOT_DIR = os.path.dirname(__file__)
SRC_DIR = os.path.join(ROOT_DIR, "src")

if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)
