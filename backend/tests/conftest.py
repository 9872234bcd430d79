"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend to avoid sandbox restrictions
that can affect the Trio backend (e.g., socketpair permission errors), and
give every test a fresh in-memory directory so accounts and sessions never
leak between cases.
"""
import os
import sys
from pathlib import Path

import pytest

# Ensure modules in backend/ are importable across tests
REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_DIR = REPO_ROOT / "backend"
TESTS_DIR = BACKEND_DIR / "tests"
for p in (str(BACKEND_DIR), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)

# Keep import-time wiring on the in-memory store regardless of the shell env.
os.environ["ROSTER_STORE_BACKEND"] = "memory"
os.environ.pop("ROSTER_ENV", None)
os.environ.pop("ROSTER_BOOTSTRAP_ADMIN_USER_ID", None)
os.environ.pop("ROSTER_BOOTSTRAP_ADMIN_PASSWORD", None)

TEST_SECRET = "test-secret-for-roster-unit-tests-0123456789"

# bcrypt's minimum cost factor keeps the suite fast.
FAST_ROUNDS = 4


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _clear_env_toggles(monkeypatch: pytest.MonkeyPatch):
    """Ensure a dev environment and clear toggles per test.

    Why:
        Config guard tests set ROSTER_ENV=prod and related variables. A missed
        cleanup would make unrelated tests run with production semantics.
    """
    for var in (
        "ROSTER_ENV",
        "ROSTER_TRUST_PROXY",
        "ROSTER_MAX_UPLOAD_BYTES",
        "ROSTER_SESSION_TTL_DAYS",
        "ROSTER_SESSION_SECRET",
        "ROSTER_BOOTSTRAP_ADMIN_USER_ID",
        "ROSTER_BOOTSTRAP_ADMIN_PASSWORD",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("ROSTER_STORE_BACKEND", "memory")
    yield


@pytest.fixture(autouse=True)
def _reset_app_wiring(_clear_env_toggles, monkeypatch: pytest.MonkeyPatch):
    """Rebuild `web.main` services on fresh in-memory stores for each test."""
    from identity_access.action_log import InMemoryActionLog
    from identity_access.credentials import BcryptComparator
    from identity_access.stores import InMemoryAccountStore
    from web import main
    from web.config import load_settings

    monkeypatch.setenv("ROSTER_SESSION_SECRET", TEST_SECRET)
    main.configure(
        load_settings(),
        store=InMemoryAccountStore(),
        action_log=InMemoryActionLog(),
        comparator=BcryptComparator(rounds=FAST_ROUNDS),
    )
    yield
