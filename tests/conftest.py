"""Pytest configuration.

Tests may run without the project installed (no `pip install -e .`), in which
case the repository root is not on `sys.path` and imports like
`import users_core...` or `from tests.fakes import ...` fail.

This file ensures the repository root is importable.
"""

from __future__ import annotations

import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
