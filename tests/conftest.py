"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from adaptive_review.config import Settings  # noqa: E402
from adaptive_review.models import Card, ProgressRecord, ReviewEvent  # noqa: E402
from adaptive_review.store import InMemoryCacheStore, InMemoryProgressStore  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (require database)")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def now():
    """Fixed reference time (a Wednesday, midday UTC)."""
    return datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    """Settings isolated from any local .env file."""
    return Settings(_env_file=None, database_url="sqlite:///:memory:")


@pytest.fixture
def sample_cards():
    """Three cards of one document across two topics."""
    return [
        Card(id="card-a", question="What is mitosis?", answer="Cell division",
             topic="Biology", order_index=0, document_id="doc-1"),
        Card(id="card-b", question="What is ATP?", answer="Energy carrier",
             topic="Biology", order_index=1, document_id="doc-1"),
        Card(id="card-c", question="What is a mole?", answer="6.022e23 particles",
             topic="Chemistry", order_index=2, document_id="doc-1"),
    ]


@pytest.fixture
def memory_store(sample_cards):
    """In-memory progress store preloaded with the sample cards."""
    return InMemoryProgressStore(sample_cards)


@pytest.fixture
def cache_store():
    return InMemoryCacheStore()


@pytest.fixture
def make_progress():
    """Factory for progress records due ``due_in_days`` from ``now`` (negative = overdue)."""

    def _make(card_id, now, due_in_days=0.0, learner_id="learner-1", **kwargs):
        kwargs.setdefault("review_count", 1)
        return ProgressRecord(
            learner_id=learner_id,
            card_id=card_id,
            due_at=now + timedelta(days=due_in_days),
            last_reviewed_at=now - timedelta(days=1),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_review():
    """Factory for review events."""

    def _make(card_id, at, correct=True, confidence=3, response_time_ms=2000, learner_id="learner-1"):
        return ReviewEvent(
            card_id=card_id,
            correct=correct,
            confidence=confidence,
            response_time_ms=response_time_ms,
            created_at=at,
            learner_id=learner_id,
        )

    return _make
