"""Test configuration helpers."""

from __future__ import annotations

import os
import sys
from pathlib import Path


def _ensure_project_root_on_path() -> None:
    """Add the repository root to ``sys.path`` when running ``pytest`` as a script."""

    root = Path(__file__).resolve().parents[1]
    root_str = str(root)
    if root_str not in sys.path:
        sys.path.insert(0, root_str)


_ensure_project_root_on_path()

# splitbot.db builds its engine at import time.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AUTO_RUN_MIGRATIONS", "false")
