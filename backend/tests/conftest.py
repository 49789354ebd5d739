"""Pytest configuration for the Hyugepick backend test suite."""

import sys
from pathlib import Path

# Tests import the flat backend modules directly (e.g. `import geometry`).
sys.path.insert(0, str(Path(__file__).parent.parent))
