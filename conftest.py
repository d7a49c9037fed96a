"""Pytest session hooks applied across the entire repository.

The settings packages live at the repository root rather than underneath a
``src/`` directory. When ``pytest`` is invoked through its console script,
``sys.path[0]`` points at the script location instead of the project, so the
root is prepended here to match ``python -m pytest``.
"""

from __future__ import annotations

import sys
from pathlib import Path


def _ensure_repo_root_on_path() -> None:
    """Add the repository root to ``sys.path`` if it is missing."""

    repo_root = Path(__file__).resolve().parent
    repo_str = str(repo_root)
    if repo_str not in sys.path:
        sys.path.insert(0, repo_str)


_ensure_repo_root_on_path()
