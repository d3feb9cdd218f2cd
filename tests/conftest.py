from __future__ import annotations

import pytest

import auditswarm.persistence as persistence
from auditswarm.persistence import InMemoryWorkflowStore


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path):
    for var in ("AUDITSWARM_DATABASE_URL", "DATABASE_URL"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("AUDITSWARM_CONFIG", str(tmp_path / "missing-config.yaml"))
    persistence.set_store(None)
    yield
    persistence.set_store(None)


@pytest.fixture
def store() -> InMemoryWorkflowStore:
    return InMemoryWorkflowStore()
