"""
simulation.py - Stochastic rebase simulation driver

Drives a rebasing ledger through pseudo-random growth and contraction cycles.

Each round:
1. Sample a growth rate g
2. Project the rebase delta floor(supply * g) in integer space
3. Stop (COMPLETE) if supply + delta would reach the maximum supply
4. Rebase at the next epoch
5. Check 1-unit and max-denomination transfers in both directions
6. Re-read the total supply as the new estimate

Any InvariantViolation or ledger failure ends the run in VIOLATED. Nothing is
retried: every round depends on the exact post-state of the previous one.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from .core import (
    Account,
    LedgerClient,
    LedgerHandle,
    RoundResult,
    SimulationState,
    HarnessError,
    InvariantViolation,
    RoundCapExceeded,
    rebase_amount,
    MAX_SUPPLY,
    DEFAULT_SEED,
    DEFAULT_GROWTH_MIN,
    DEFAULT_GROWTH_MAX,
    DEFAULT_MAX_ROUNDS,
    DEFAULT_LEDGER_NAME,
    DEFAULT_LEDGER_SYMBOL,
)
from .checker import InvariantChecker
from .sampler import Sampler, UniformGrowthSampler


@dataclass(frozen=True)
class SimulationConfig:
    """
    Configuration of a simulation run.

    Attributes:
        seed: Seed string of the growth sampler
        growth_min: Lower bound of sampled growth rates
        growth_max: Upper bound of sampled growth rates
        max_supply: Supply bound at which the run completes
        max_rounds: Safety cap on the number of rounds
        initial_supply: Expected supply of the freshly deployed ledger; provision
            raises if the ledger reports another value (None skips the check)
        name: Ledger display name used at deployment
        symbol: Ledger symbol used at deployment
        verbose: Print a summary per round
    """
    seed: str = DEFAULT_SEED
    growth_min: Decimal = DEFAULT_GROWTH_MIN
    growth_max: Decimal = DEFAULT_GROWTH_MAX
    max_supply: int = MAX_SUPPLY
    max_rounds: int = DEFAULT_MAX_ROUNDS
    initial_supply: Optional[int] = None
    name: str = DEFAULT_LEDGER_NAME
    symbol: str = DEFAULT_LEDGER_SYMBOL
    verbose: bool = True

    def __post_init__(self):
        if self.growth_min > self.growth_max:
            raise ValueError(f"growth_min {self.growth_min} exceeds growth_max {self.growth_max}")
        if self.growth_min < Decimal("-1"):
            raise ValueError(f"growth_min {self.growth_min} would make the supply negative")
        if self.max_supply <= 0:
            raise ValueError("max_supply must be positive")
        if self.max_rounds <= 0:
            raise ValueError("max_rounds must be positive")
        if self.initial_supply is not None and self.initial_supply <= 0:
            raise ValueError("initial_supply must be positive")

    def make_sampler(self) -> UniformGrowthSampler:
        return UniformGrowthSampler(self.seed, self.growth_min, self.growth_max)


@dataclass
class SimulationResult:
    """
    Outcome of a run.

    Attributes:
        state: COMPLETE or VIOLATED (RUNNING only while the run is in progress)
        rounds: Completed rounds, in order
        error: The failure that ended a VIOLATED run
        final_supply: Last total supply read from the ledger
    """
    state: SimulationState = SimulationState.RUNNING
    rounds: List[RoundResult] = field(default_factory=list)
    error: Optional[HarnessError] = None
    final_supply: int = 0

    @property
    def succeeded(self) -> bool:
        return self.state is SimulationState.COMPLETE

    @property
    def epochs(self) -> List[int]:
        return [r.epoch for r in self.rounds]


class SimulationDriver:
    """
    Runs the rebase simulation against a ledger.

    The driver is the only writer to the ledger during a run. It owns the epoch
    counter and the supply estimate; balances are always read from the ledger.

    Example:
        client = InMemoryLedgerClient()
        driver = SimulationDriver.provision(client, SimulationConfig(verbose=False))
        result = driver.run()
        assert result.succeeded
    """

    def __init__(
        self,
        client: LedgerClient,
        handle: LedgerHandle,
        deployer: Account,
        user: Account,
        config: Optional[SimulationConfig] = None,
        sampler: Optional[Sampler] = None,
    ):
        """
        Initialize the driver.

        Args:
            client: Ledger client
            handle: Deployed ledger, with deployer as monetary policy
            deployer: Account authorized to rebase; holds the initial supply
            user: Counterparty for transfer checks
            config: Run configuration (default: SimulationConfig())
            sampler: Growth-rate source (default: built from config)
        """
        self.client = client
        self.handle = handle
        self.deployer = deployer
        self.user = user
        self.config = config or SimulationConfig()
        self.sampler = sampler or self.config.make_sampler()
        self.verbose = self.config.verbose
        self.checker = InvariantChecker(client, handle, verbose=self.verbose)
        self.state = SimulationState.RUNNING
        self.epoch = 0
        self.supply = client.total_supply(handle)

    @classmethod
    def provision(
        cls,
        client: LedgerClient,
        config: Optional[SimulationConfig] = None,
        sampler: Optional[Sampler] = None,
    ) -> "SimulationDriver":
        """
        Deploy a ledger with the first two provisioned accounts and return a driver for it.

        The first account deploys the ledger and becomes its monetary policy.

        Raises:
            ValueError: If fewer than two accounts exist, or the deployed supply
                        differs from config.initial_supply
        """
        config = config or SimulationConfig()
        accounts = client.accounts()
        if len(accounts) < 2:
            raise ValueError(f"Simulation needs two accounts, got {len(accounts)}")
        deployer, user = accounts[0], accounts[1]
        handle = client.deploy_ledger(deployer, config.name, config.symbol)
        if config.initial_supply is not None:
            supply = client.total_supply(handle)
            if supply != config.initial_supply:
                raise ValueError(
                    f"Deployed ledger has supply {supply}, configured {config.initial_supply}"
                )
        client.set_monetary_policy(handle, deployer)
        return cls(client, handle, deployer, user, config=config, sampler=sampler)

    def step(self) -> Optional[RoundResult]:
        """
        Run one round.

        Returns:
            The round's result, or None if the run completed instead

        Raises:
            InvariantViolation: If a transfer check fails
            LedgerClientError: If a ledger call fails
        """
        growth_rate = self.sampler.next()
        supply_delta = rebase_amount(self.supply, growth_rate)
        if self.supply + supply_delta >= self.config.max_supply:
            self.state = SimulationState.COMPLETE
            return None

        self.epoch += 1
        self.client.rebase(self.handle, self.epoch, supply_delta, self.deployer)
        post_rebase_supply = self.client.total_supply(self.handle)

        if self.verbose:
            print(f"Rebased iteration {self.epoch}")
            print(f"Rebased by {supply_delta} {self.config.symbol}")
            print(f"Total supply is now {post_rebase_supply} {self.config.symbol}")

        try:
            self.checker.check_round(self.deployer, self.user)
        except InvariantViolation as e:
            e.epoch = self.epoch
            raise

        self.supply = self.client.total_supply(self.handle)
        return RoundResult(self.epoch, growth_rate, supply_delta, self.supply)

    def run(self) -> SimulationResult:
        """
        Run rounds until the supply bound is reached or a failure occurs.

        Returns:
            SimulationResult in state COMPLETE or VIOLATED
        """
        result = SimulationResult(final_supply=self.supply)
        try:
            while self.state is SimulationState.RUNNING:
                if len(result.rounds) >= self.config.max_rounds:
                    raise RoundCapExceeded(
                        f"No completion after {self.config.max_rounds} rounds "
                        f"(supply {self.supply}, bound {self.config.max_supply})"
                    )
                round_result = self.step()
                if round_result is not None:
                    result.rounds.append(round_result)
                    result.final_supply = round_result.total_supply
        except HarnessError as e:
            self.state = SimulationState.VIOLATED
            result.error = e
            if self.verbose:
                print(f"✗ VIOLATED after {len(result.rounds)} rounds: {e}")

        result.state = self.state
        if self.verbose and result.succeeded:
            print(f"✓ COMPLETE after {len(result.rounds)} rounds, supply {result.final_supply}")
        return result
