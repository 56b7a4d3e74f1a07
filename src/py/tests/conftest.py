"""
conftest.py — Put src/py/ on sys.path so tests import shape_runner without
an install, and provide the fixtures shared by the test modules.
"""

import sys
from pathlib import Path

import pytest

_pkg_dir = str(Path(__file__).resolve().parent.parent)
if _pkg_dir not in sys.path:
    sys.path.insert(0, _pkg_dir)

from shape_runner import RunnerConfig  # noqa: E402


@pytest.fixture
def design_input() -> dict:
    return {"repo_summary": "A blog", "constraints": ["Use SQLite"]}


@pytest.fixture
def valid_design() -> dict:
    return {
        "name": "Comment Moderation",
        "rationale": "Keeps spam out of the blog. **SQLite** is enough for the volume.",
        "components": [
            {
                "id": "moderation-service",
                "responsibility": "Scores and queues new comments",
                "api": "POST /api/comments/:id/review",
            },
            {
                "id": "comments-db",
                "responsibility": "Stores comments and review state",
                "api": "comments(id, post_id, body, status)",
            },
        ],
        "risks": ["False positives hide legitimate comments"],
    }


@pytest.fixture
def fast_config() -> RunnerConfig:
    """Default budgets with no backoff delay and a short per-call timeout."""
    return RunnerConfig(
        call_timeout_s=2.0,
        backoff_initial_ms=0,
        jitter_mode="none",
    )
