#!/usr/bin/env python3
"""
SSM Connect: interactive AWS Systems Manager session launcher.

- Choose an AWS profile (SSO sessions are refreshed automatically)
- Choose an SSM managed Linux instance
- Open a Session Manager shell, then pick another instance or profile

This script supports running directly from a source checkout that uses the
src/ layout. It adds the local `src/` directory to sys.path before importing
the CLI. For regular use, prefer installing the project and using the
`ssm-connect` console script.
"""

import os
import sys

# Add src/ to path to import modules directly
REPO_ROOT = os.path.dirname(os.path.abspath(__file__))
SRC_PATH = os.path.join(REPO_ROOT, "src")
if SRC_PATH not in sys.path:
    sys.path.insert(0, SRC_PATH)

from cli import main

if __name__ == "__main__":
    sys.exit(main())
