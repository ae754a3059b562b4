#!/usr/bin/env python3
"""Run the Garden orchestrator daemon from a source checkout."""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from cli import cli

if __name__ == "__main__":
    cli(["serve", *sys.argv[1:]])
