"""Root conftest for the acmerenew test suite."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Make ``src/`` and the shared test helpers importable without installing
# ---------------------------------------------------------------------------
_TESTS = Path(__file__).resolve().parent
_SRC = str(_TESTS.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)
if str(_TESTS) not in sys.path:
    sys.path.insert(0, str(_TESTS))


# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def pki():
    """Root -> intermediate CA pair used to sign test leaves."""
    import support

    return support.make_pki()


@pytest.fixture()
def settings_factory(tmp_path: Path):
    """Build real settings rooted in *tmp_path*, with fast polling."""
    import support

    def _factory(**sections):
        return support.make_settings(tmp_path, **sections)

    return _factory


# ---------------------------------------------------------------------------
# Config singleton cleanup -- autouse so every test gets a fresh slate
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def fresh_config():
    """Reset the RenewConfig singleton before and after every test."""
    from acmerenew.config.renew_config import RenewConfig

    RenewConfig.reset()
    yield
    RenewConfig.reset()
