"""
PaperDB Test Suite — Shared fixtures.

Run:  pytest tests/ -v
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from paperdb.db.blobstore import MemoryBlobStore
from paperdb.db.logstore import sign_entry
from paperdb.db.memory import MemoryLogBackend, MemoryLogNetwork
from paperdb.engine.config import AccessConfig, PaperDBConfig
from paperdb.engine.database import PaperDB
from paperdb.security.identity import Ed25519IdentityProvider
from paperdb.types.registry import default_registry


# ---------------------------------------------------------------------------
# Environment setup: no config file discovery in unit tests
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch, tmp_path):
    """Reset the global config and keep discovery away from the real CWD."""
    import paperdb.engine.config as cfg_mod

    cfg_mod._config = None
    monkeypatch.delenv(cfg_mod.CONFIG_ENV_VAR, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def provider():
    return Ed25519IdentityProvider()


@pytest.fixture
def identity_x(provider):
    return provider.create_identity()


@pytest.fixture
def identity_y(provider):
    return provider.create_identity()


@pytest.fixture
def registry():
    return default_registry()


@pytest.fixture
def network():
    return MemoryLogNetwork()


@pytest.fixture
def make_db(registry):
    """
    Factory for PaperDB instances on in-memory stores.

    Instances built with the same ``blobs`` and ``network`` behave like
    peers sharing one blob network.
    """
    def _make(identity, network=None, blobs=None, fail_open=True):
        config = PaperDBConfig(access=AccessConfig(fail_open=fail_open))
        return PaperDB(
            identity,
            MemoryLogBackend(identity, network),
            blobs if blobs is not None else MemoryBlobStore(),
            registry=registry,
            config=config,
        )

    return _make


@pytest.fixture
def db(make_db, identity_x):
    return make_db(identity_x)


@pytest.fixture
def make_entry():
    """Build a signed LogEntry without a log store."""
    def _make(payload, identity, clock=1):
        return sign_entry(payload, identity, clock)

    return _make


@pytest.fixture
def fake_db(registry):
    """Stand-in for the root PaperDB as seen by access controllers."""
    return SimpleNamespace(registry=registry)
