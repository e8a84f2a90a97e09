"""
rebase_harness - Verification harness for rebasing ledgers

Drives a rebasing ledger (a token whose total supply is periodically rescaled,
scaling every balance proportionally) through pseudo-random growth and
contraction cycles, checking that transfers stay exact under integer rounding,
and tracks operation costs against a recorded baseline.

Usage:
    from rebase_harness import InMemoryLedgerClient, SimulationConfig, SimulationDriver

    client = InMemoryLedgerClient(initial_supply=50_000_000)
    driver = SimulationDriver.provision(client, SimulationConfig(seed="fragments.org"))
    result = driver.run()
    assert result.succeeded, result.error
"""

# Core types
from .core import (
    LedgerClient,
    Account,
    LedgerHandle,
    OperationReceipt,
    RebaseRecord,
    RoundResult,
    SimulationState,
    HarnessError,
    LedgerClientError,
    CommunicationFailure,
    RevertFailure,
    AuthorizationFailure,
    InvariantViolation,
    RoundCapExceeded,
    SamplerExhausted,
    ExternalRateLookupFailure,
    CostDriftFailure,
    rebase_amount,
    scaled_growth_rate,
    MAX_UINT128,
    MAX_UINT256,
    MAX_SUPPLY,
    DEFAULT_SEED,
    DEFAULT_GROWTH_MIN,
    DEFAULT_GROWTH_MAX,
    DEFAULT_INITIAL_SUPPLY,
    DEFAULT_MAX_ROUNDS,
)

# Growth sampling
from .sampler import (
    Sampler,
    ARC4Random,
    UniformGrowthSampler,
    SequenceSampler,
    quantize_growth_rate,
)

# Ledger clients
from .memory import FragmentsLedger, InMemoryLedgerClient

# Checks and simulation
from .checker import InvariantChecker
from .simulation import SimulationConfig, SimulationDriver, SimulationResult

# Cost regression
from .gas import (
    CostRegressionHarness,
    GasConfig,
    compare_gas,
    verify_gas,
    load_baseline,
    save_baseline,
)

# Pricing sources
from .pricing import (
    PricingSource,
    StaticPricingSource,
    HttpPricingSource,
    FallbackPricingSource,
)

# Termination analysis
from .analysis import expected_log_growth, expected_rounds, summarize_rounds

__all__ = [
    # Core
    'LedgerClient', 'Account', 'LedgerHandle', 'OperationReceipt', 'RebaseRecord',
    'RoundResult', 'SimulationState',
    'HarnessError', 'LedgerClientError', 'CommunicationFailure', 'RevertFailure',
    'AuthorizationFailure', 'InvariantViolation', 'RoundCapExceeded', 'SamplerExhausted',
    'ExternalRateLookupFailure', 'CostDriftFailure',
    'rebase_amount', 'scaled_growth_rate',
    'MAX_UINT128', 'MAX_UINT256', 'MAX_SUPPLY', 'DEFAULT_SEED', 'DEFAULT_GROWTH_MIN',
    'DEFAULT_GROWTH_MAX', 'DEFAULT_INITIAL_SUPPLY', 'DEFAULT_MAX_ROUNDS',
    # Sampling
    'Sampler', 'ARC4Random', 'UniformGrowthSampler', 'SequenceSampler', 'quantize_growth_rate',
    # Ledger clients
    'FragmentsLedger', 'InMemoryLedgerClient',
    # Checks and simulation
    'InvariantChecker', 'SimulationConfig', 'SimulationDriver', 'SimulationResult',
    # Cost regression
    'CostRegressionHarness', 'GasConfig', 'compare_gas', 'verify_gas',
    'load_baseline', 'save_baseline',
    # Pricing
    'PricingSource', 'StaticPricingSource', 'HttpPricingSource', 'FallbackPricingSource',
    # Analysis
    'expected_log_growth', 'expected_rounds', 'summarize_rounds',
]

__version__ = '1.0.0'
