"""
conftest.py - Shared pytest fixtures for harness tests

Provides common fixtures used across unit and conformance tests:
- In-memory clients (default supply, small supply)
- A deployed ledger with the deployer as monetary policy
- Quiet simulation configuration
"""

import pytest
from decimal import Decimal
from typing import Tuple

from rebase_harness import (
    InMemoryLedgerClient,
    SimulationConfig,
    StaticPricingSource,
    DEFAULT_INITIAL_SUPPLY,
)


# =============================================================================
# CLIENT FIXTURES
# =============================================================================

@pytest.fixture
def client():
    """In-memory client with the default 50,000,000 initial supply."""
    return InMemoryLedgerClient(initial_supply=DEFAULT_INITIAL_SUPPLY)


@pytest.fixture
def small_client():
    """In-memory client with a tiny supply, where rounding is coarse."""
    return InMemoryLedgerClient(initial_supply=1000)


def deploy(client: InMemoryLedgerClient) -> Tuple[str, str, str]:
    """Deploy a ledger and authorize the deployer to rebase. Returns (handle, deployer, user)."""
    deployer, user = client.accounts()[:2]
    handle = client.deploy_ledger(deployer, "xBTC", "xBTC")
    client.set_monetary_policy(handle, deployer)
    return handle, deployer, user


@pytest.fixture
def deployed(client):
    """(client, handle, deployer, user) with the deployer holding the whole supply."""
    handle, deployer, user = deploy(client)
    return client, handle, deployer, user


@pytest.fixture
def small_deployed(small_client):
    """Same as deployed, on the small-supply client."""
    handle, deployer, user = deploy(small_client)
    return small_client, handle, deployer, user


# =============================================================================
# CONFIG FIXTURES
# =============================================================================

@pytest.fixture
def quiet_config():
    """Default simulation configuration without per-round output."""
    return SimulationConfig(verbose=False)


@pytest.fixture
def static_pricing():
    """ETH priced at 700 USD."""
    return StaticPricingSource({"ETH": Decimal("700")})
