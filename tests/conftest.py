"""Shared fixtures for the vault tests.

Argon2 costs are dropped to the minimum so the suite stays fast; the
production defaults live in ``claudia_vault.vault.config``.
"""
import pytest

from claudia_vault.vault.config import KdfParams, VaultConfig
from claudia_vault.vault.session_vault import VaultSession
from claudia_vault.vault.workspace import Workspace

PASSWORD = "correct horse battery staple"
NEW_PASSWORD = "tr0ub4dor&3"

FAST_PARAMS = KdfParams(time_cost=1, memory_cost=8, parallelism=1)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def params():
    return FAST_PARAMS


@pytest.fixture
def config():
    return VaultConfig(
        idle_timeout=900,
        passwords_timeout=600,
        kdf=FAST_PARAMS,
        hash_params=FAST_PARAMS,
        max_workers=2,
    )


@pytest.fixture
def workspace(tmp_path):
    return Workspace(tmp_path / "workspace")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session(workspace, config, clock):
    """A fresh, not yet set up, vault session."""
    return VaultSession(workspace, config, clock=clock)


@pytest.fixture
def unlocked(session):
    """A session that has been set up with ``PASSWORD``."""
    session.setup(PASSWORD)
    return session
