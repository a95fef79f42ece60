"""
pytest configuration

Goals:
- keep tests fast and deterministic
- silence the tagged diagnostic prints of every engine
- shrink default grid unless a test overrides explicitly
"""

import os
import sys

import pytest

# Ensure project root on sys.path for 'pyplanet' imports
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)


@pytest.fixture(autouse=True)
def _quiet_env(monkeypatch):
    # Small grid by default (tests can override via monkeypatch in the test)
    monkeypatch.setenv("PP_WIDTH", os.getenv("PP_WIDTH", "24"))
    monkeypatch.setenv("PP_HEIGHT", os.getenv("PP_HEIGHT", "12"))
    monkeypatch.setenv("PP_WORKERS", os.getenv("PP_WORKERS", "2"))
    # No tagged prints from engines or the scheduler
    for name in ("PP_ATM_DIAG", "PP_HYDRO_DIAG", "PP_LIFE_DIAG", "PP_SCHED_DIAG"):
        monkeypatch.setenv(name, "0")
    yield
