import os
import sys
from pathlib import Path

import pytest

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def pytest_addoption(parser):
    parser.addoption(
        "--run-slow",
        action="store_true",
        default=False,
        help="Run slow subprocess tests",
    )


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "slow: mark slow subprocess tests (use --run-slow)"
    )


def pytest_collection_modifyitems(config, items):
    # Slow tests - CLI flag or env var
    run_slow = (
        config.getoption("--run-slow")
        or os.getenv("VARIETYMCP_RUN_SLOW_TESTS") == "1"
    )
    if not run_slow:
        skip_slow = pytest.mark.skip(
            reason="slow tests skipped (use --run-slow or VARIETYMCP_RUN_SLOW_TESTS=1)"
        )
        for item in items:
            if "slow" in item.keywords:
                item.add_marker(skip_slow)


@pytest.fixture
def clean_environment(monkeypatch):
    """Ensure tests run with a clean environment.

    Unsets VARIETYMCP_* variables that would override config defaults.
    """
    for key in [k for k in os.environ if k.startswith("VARIETYMCP_")]:
        monkeypatch.delenv(key, raising=False)
    yield


@pytest.fixture
def fake_server_script() -> Path:
    """Path to the stdio MCP server used by subprocess tests."""
    return FIXTURES_DIR / "fake_mcp_server.py"


@pytest.fixture
def python_executable() -> str:
    return sys.executable
