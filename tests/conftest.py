"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from turbo_credits.services.transaction.schemas import (
    ChainType,
    RawEvent,
    RawStage,
    TransactionStatus,
)


@pytest.fixture(scope="session")
def app():
    """Create FastAPI application for testing."""
    from turbo_credits.main import create_app

    return create_app()


@pytest.fixture
def client(app):
    """Create test client."""
    with TestClient(app) as client:
        yield client


@pytest.fixture(scope="function")
def settings():
    """Create settings instance for testing."""
    from turbo_credits.core.config import Settings

    return Settings(environment="testing")


@pytest.fixture
def avail_record():
    """Initialised Avail purchase record."""
    return TransactionStatus(chain_type=ChainType.AVAIL)


@pytest.fixture
def evm_record():
    """Initialised Base Sepolia purchase record."""
    return TransactionStatus(
        chain_type=ChainType.EVM,
        chain_id=84532,
        evm_chain_url="https://sepolia.basescan.org",
    )


@pytest.fixture
def make_event():
    """Factory for raw events with increasing timestamps."""
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    counter = {"n": 0}

    def _make(stage: RawStage, **kwargs) -> RawEvent:
        counter["n"] += 1
        kwargs.setdefault("observed_at", start + timedelta(seconds=counter["n"]))
        return RawEvent(stage=stage, **kwargs)

    return _make
