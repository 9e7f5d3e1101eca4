"""Shared fixtures for committee tests."""

import pytest

from order_committee.audit import InMemoryAuditSink
from order_committee.config.settings import Settings
from order_committee.models import CandidateChoice, EvidenceContract


@pytest.fixture
def contract() -> EvidenceContract:
    return EvidenceContract(
        task_id="task-001",
        candidates=(
            CandidateChoice(id="col-A", label="Item Code", samples=("SKU-100", "SKU-200")),
            CandidateChoice(id="col-B", label="Description", samples=("Blue widget",)),
            CandidateChoice(id="col-C", label="Notes", samples=("fragile",)),
        ),
        target_fields=("sku", "description"),
    )


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        committee_size=3,
        min_successful_providers=2,
        provider_timeout_seconds=0.5,
        max_concurrent_provider_calls=8,
        audit_dir=tmp_path / "audit",
        weights_file=tmp_path / "weights.json",
    )


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()
